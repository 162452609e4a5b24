# services/upload_service.py
import io
import logging
import re
import socket
import threading
import time
from typing import Any, Callable, Optional

from googleapiclient.discovery import Resource
from googleapiclient.errors import HttpError

from domain.models import ImageFile
from utils.notifications import Notifier, log_notify
from .drive_service import (
    create_resumable_upload,
    ensure_file_public_and_get_url,
    ensure_folder_path,
)

logger = logging.getLogger(__name__)

MAX_RETRIES = 3  # attempts in total, not retries after the first one
RETRY_DELAY_SECONDS = 2.0
UPLOAD_TIMEOUT_SECONDS = 60
CHUNK_SIZE = 256 * 1024  # Drive requires multiples of 256 KiB

UNAUTHORIZED_STATUS = (401, 403)

ProgressCallback = Callable[[float], None]


class UploadError(Exception):
    pass


class UploadUnauthorized(UploadError):
    def __init__(self, detail: str = ""):
        super().__init__("Keine Berechtigung für den Upload")
        self.detail = detail


class UploadCanceled(UploadError):
    def __init__(self):
        super().__init__("Upload wurde abgebrochen")


class UploadTimeout(UploadError):
    def __init__(self, seconds: float):
        super().__init__(f"Upload-Timeout nach {seconds:g} Sekunden erreicht")
        self.seconds = seconds


class UploadExhausted(UploadError):
    def __init__(self, attempts: int):
        super().__init__(f"Upload fehlgeschlagen nach {attempts} Versuchen")
        self.attempts = attempts


def sanitize_filename(name: str) -> str:
    return re.sub(r"[^A-Za-z0-9.-]", "_", name)


def unique_filename(name: str, timestamp_ms: int) -> str:
    return f"{timestamp_ms}-{sanitize_filename(name)}"


def backoff_delay(attempt: int, base_delay: float = RETRY_DELAY_SECONDS) -> float:
    """
    Delay slept before the given attempt (1-based). The first attempt
    starts immediately, then 2s, 4s, 8s, ...
    """
    if attempt <= 1:
        return 0.0
    return base_delay * 2 ** (attempt - 2)


class UploadClient:
    """
    Uploads one file to Drive with progress, a per-attempt deadline and
    bounded exponential backoff.

    Unauthorized and canceled uploads fail immediately; everything else,
    timeouts included, is retried until MAX_RETRIES attempts are used.
    """

    def __init__(
            self,
            drive: Resource,
            root_folder_id: str,
            *,
            notify: Notifier = log_notify,
            max_retries: int = MAX_RETRIES,
            retry_delay: float = RETRY_DELAY_SECONDS,
            timeout_seconds: float = UPLOAD_TIMEOUT_SECONDS,
            chunksize: int = CHUNK_SIZE,
            sleep: Callable[[float], None] = time.sleep,
            clock: Callable[[], float] = time.monotonic,
            timestamp_ms: Callable[[], int] = lambda: int(time.time() * 1000),
            http_factory: Optional[Callable[[float], Any]] = None,
    ):
        self.drive = drive
        self.root_folder_id = root_folder_id
        self.notify = notify
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.timeout_seconds = timeout_seconds
        self.chunksize = chunksize
        self._sleep = sleep
        self._clock = clock
        self._timestamp_ms = timestamp_ms
        self._http_factory = http_factory

    def upload(
            self,
            file: ImageFile,
            destination_path: str,
            on_progress: Optional[ProgressCallback] = None,
            cancel_event: Optional[threading.Event] = None,
    ) -> str:
        """
        Returns the public URL of the uploaded file.
        """
        last_error: Optional[Exception] = None

        for attempt in range(1, self.max_retries + 1):
            if attempt > 1:
                self._sleep(backoff_delay(attempt, self.retry_delay))
                self.notify(
                    f"Upload wird wiederholt (Versuch {attempt}/{self.max_retries})",
                    "info",
                )

            try:
                return self._attempt(file, destination_path, on_progress, cancel_event)
            except (UploadUnauthorized, UploadCanceled) as e:
                logger.error("Upload of %s aborted: %s", file.name, e)
                raise
            except Exception as e:
                last_error = e
                logger.warning(
                    "Upload of %s failed (%d/%d): %s",
                    file.name,
                    attempt,
                    self.max_retries,
                    e,
                )

        logger.error("Giving up uploading %s: %s", file.name, last_error)
        raise UploadExhausted(self.max_retries) from last_error

    def _attempt(
            self,
            file: ImageFile,
            destination_path: str,
            on_progress: Optional[ProgressCallback],
            cancel_event: Optional[threading.Event],
    ) -> str:
        deadline = self._clock() + self.timeout_seconds
        stream = io.BytesIO(file.content)
        # chunks go over a connection owned by this attempt, so its socket
        # timeout can follow the deadline without touching other uploads
        http = self._http_factory(self.timeout_seconds) if self._http_factory else None

        try:
            folder_id = ensure_folder_path(self.drive, self.root_folder_id, destination_path)
            filename = unique_filename(file.name, self._timestamp_ms())

            request = create_resumable_upload(
                self.drive,
                folder_id,
                filename,
                file.mime_type,
                stream,
                self.chunksize,
            )

            response = None
            while response is None:
                if cancel_event is not None and cancel_event.is_set():
                    raise UploadCanceled()
                remaining = deadline - self._clock()
                if remaining <= 0:
                    raise UploadTimeout(self.timeout_seconds)
                if http is not None:
                    cap_socket_timeout(http, remaining)

                status, response = request.next_chunk(http=http, num_retries=0)

                # a chunk that returns after the deadline does not count,
                # not even the last one
                if self._clock() >= deadline:
                    raise UploadTimeout(self.timeout_seconds)

                if status is not None and on_progress:
                    on_progress(_percent(status.resumable_progress, status.total_size))

            if on_progress:
                on_progress(100.0)

            url = ensure_file_public_and_get_url(self.drive, response["id"])
            logger.info('Uploaded "%s" to %s as fileId=%s', filename, destination_path, response["id"])
            return url

        except HttpError as e:
            status_code = getattr(e.resp, "status", None)
            if status_code in UNAUTHORIZED_STATUS:
                raise UploadUnauthorized(str(e)) from e
            raise
        except (socket.timeout, TimeoutError) as e:
            raise UploadTimeout(self.timeout_seconds) from e
        finally:
            # abandoned resumable sessions expire on the Drive side
            stream.close()
            if http is not None:
                _close_http(http)


def cap_socket_timeout(http, seconds: float) -> None:
    """
    Limit the socket timeout of an httplib2.Http (or an AuthorizedHttp
    wrapping one) and of the connections it already holds.
    """
    inner = getattr(http, "http", http)
    inner.timeout = seconds
    for conn in getattr(inner, "connections", {}).values():
        conn.timeout = seconds
        if getattr(conn, "sock", None) is not None:
            conn.sock.settimeout(seconds)


def _close_http(http) -> None:
    inner = getattr(http, "http", http)
    inner.close()


def _percent(transferred: int, total: Optional[int]) -> float:
    if not total:
        return 0.0
    return transferred / total * 100
