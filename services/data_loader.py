# services/data_loader.py
import logging
import time
from dataclasses import dataclass
from typing import Callable, List, Optional

from domain.models import DeliveryRecord, Supplier
from utils.notifications import Notifier, log_notify

logger = logging.getLogger(__name__)

RELOAD_MIN_INTERVAL_SECONDS = 1.0
LOAD_MAX_RETRIES = 3
LOAD_RETRY_BASE_SECONDS = 1.0


class DataLoadError(Exception):
    pass


@dataclass
class LoadedData:
    suppliers: List[Supplier]
    deliveries: List[DeliveryRecord]


class InitialDataLoader:
    """
    Loads suppliers and deliveries when a view is opened.

    A reload requested less than a second after the previous one is
    dropped. A failed load is retried in the background after 1s, 2s and
    4s before DataLoadError is raised for a manual retry prompt.
    """

    def __init__(
            self,
            store,
            *,
            notify: Notifier = log_notify,
            max_retries: int = LOAD_MAX_RETRIES,
            base_delay: float = LOAD_RETRY_BASE_SECONDS,
            min_interval: float = RELOAD_MIN_INTERVAL_SECONDS,
            sleep: Callable[[float], None] = time.sleep,
            clock: Callable[[], float] = time.monotonic,
    ):
        self.store = store
        self.notify = notify
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.min_interval = min_interval
        self._sleep = sleep
        self._clock = clock
        self._last_attempt: Optional[float] = None

    def load(self) -> Optional[LoadedData]:
        """
        Returns None when the request was dropped by the rate limit.
        """
        now = self._clock()
        if self._last_attempt is not None and now - self._last_attempt < self.min_interval:
            logger.debug("Reload dropped, last attempt %.3fs ago", now - self._last_attempt)
            return None
        self._last_attempt = now

        last_error = ""
        for retry in range(self.max_retries + 1):
            if retry:
                self._sleep(self.base_delay * 2 ** (retry - 1))
                self._last_attempt = self._clock()

            try:
                return self._load_once()
            except DataLoadError as e:
                last_error = str(e)
                logger.error(
                    "Fehler beim Laden der Daten (Versuch %d/%d): %s",
                    retry + 1,
                    self.max_retries + 1,
                    e,
                )
                if retry == 0:
                    self.notify(f"Fehler beim Laden der Daten: {e}", "error")

        raise DataLoadError(last_error or "Unbekannter Fehler beim Laden der Daten")

    def _load_once(self) -> LoadedData:
        try:
            ok_s, msg_s, suppliers = self.store.fetch_suppliers()
            ok_d, msg_d, deliveries = self.store.fetch_deliveries()
        except Exception as e:
            raise DataLoadError(str(e)) from e

        if not ok_s:
            raise DataLoadError(msg_s)
        if not ok_d:
            raise DataLoadError(msg_d)

        return LoadedData(suppliers=suppliers, deliveries=deliveries)
