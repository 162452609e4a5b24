# services/auth_service.py
import logging
import threading
from typing import Any, Callable, List, Optional

logger = logging.getLogger(__name__)

UserListener = Callable[[Optional[Any]], None]


class AuthError(Exception):
    pass


class AuthContext:
    """
    Current user of one session plus sign-in/-up/-out against Supabase Auth.

    Create one per session and pass it to whatever needs the user;
    listeners are called with the new user (or None) on every change.
    """

    def __init__(self, client):
        self.client = client
        self._user = None
        self._listeners: List[UserListener] = []
        self._lock = threading.Lock()

    @property
    def current_user(self):
        return self._user

    @property
    def is_authenticated(self) -> bool:
        return self._user is not None

    def subscribe(self, listener: UserListener) -> Callable[[], None]:
        """
        Returns a function that removes the listener again.
        """
        with self._lock:
            self._listeners.append(listener)
        return lambda: self.unsubscribe(listener)

    def unsubscribe(self, listener: UserListener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def _set_user(self, user) -> None:
        self._user = user
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            listener(user)

    def sign_in(self, email: str, password: str):
        try:
            resp = self.client.auth.sign_in_with_password({"email": email, "password": password})
        except Exception as e:
            logger.warning("Sign-in failed for %s: %s", email, e)
            raise AuthError("Anmeldung fehlgeschlagen") from e

        if not getattr(resp, "user", None):
            raise AuthError("Anmeldung fehlgeschlagen")

        self._set_user(resp.user)
        logger.info("Signed in %s", email)
        return resp.user

    def sign_up(self, email: str, password: str, password_confirm: Optional[str] = None):
        if password_confirm is not None and password != password_confirm:
            raise AuthError("Passwörter stimmen nicht überein")

        try:
            resp = self.client.auth.sign_up({"email": email, "password": password})
        except Exception as e:
            logger.warning("Sign-up failed for %s: %s", email, e)
            raise AuthError("Registrierung fehlgeschlagen") from e

        user = getattr(resp, "user", None)
        if not user:
            raise AuthError("Registrierung fehlgeschlagen")

        # without email confirmation the sign-up also opens a session
        if getattr(resp, "session", None):
            self._set_user(user)
        logger.info("Registered %s", email)
        return user

    def sign_out(self) -> None:
        try:
            self.client.auth.sign_out()
        except Exception as e:
            logger.error("Sign-out failed: %s", e)
            raise AuthError("Fehler beim Abmelden") from e
        finally:
            self._set_user(None)
