# services/search_service.py
import logging
import threading
from dataclasses import replace
from typing import Any, Callable, List, Optional

from domain.models import DeliveryRecord, SearchParams

logger = logging.getLogger(__name__)

SEARCH_DEBOUNCE_SECONDS = 0.3


class Debouncer:
    """
    Single-slot delayed call: scheduling a new call cancels the pending one.
    """

    def __init__(
            self,
            delay: float = SEARCH_DEBOUNCE_SECONDS,
            timer_factory: Callable[..., Any] = threading.Timer,
    ):
        self.delay = delay
        self._timer_factory = timer_factory
        self._timer = None
        self._generation = 0
        self._lock = threading.Lock()

    @property
    def pending(self) -> bool:
        with self._lock:
            return self._timer is not None

    def schedule(self, fn: Callable[[], None]) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            self._generation += 1
            timer = self._timer_factory(self.delay, self._fire, args=(fn, self._generation))
            timer.daemon = True
            self._timer = timer
        timer.start()

    def _fire(self, fn: Callable[[], None], generation: int) -> None:
        with self._lock:
            # a newer schedule() may have raced this timer; keep its handle
            if generation == self._generation:
                self._timer = None
        fn()

    def cancel(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None


class SearchController:
    """
    Keeps the current search parameters and re-runs the search 300ms
    after the last change.
    """

    def __init__(self, store, debouncer: Optional[Debouncer] = None):
        self.store = store
        self.debouncer = debouncer or Debouncer()
        self.params = SearchParams()
        self._lock = threading.Lock()
        self._results: List[DeliveryRecord] = []
        self._error: Optional[str] = None
        self._searching = False
        self._revision = 0
        self._issued = 0

    def update(self, **changes) -> None:
        """
        Change one or more SearchParams fields, e.g. update(search_text="bio").
        Empty strings clear a filter.
        """
        cleaned = {k: (v if v != "" else None) for k, v in changes.items()}
        with self._lock:
            new_params = replace(self.params, **cleaned)
            if new_params == self.params and self._revision:
                return
            self.params = new_params
        self.debouncer.schedule(self.run_now)

    def run_now(self) -> None:
        with self._lock:
            self._issued += 1
            seq = self._issued
            params = self.params
            self._searching = True

        try:
            ok, msg, results = self.store.search_deliveries(params)
        except Exception as e:
            ok, msg, results = False, str(e), []

        with self._lock:
            if seq != self._issued:
                # a newer search started meanwhile, its result wins
                logger.debug("Dropping stale search result (%d < %d)", seq, self._issued)
                return
            self._searching = False
            self._revision += 1
            if ok:
                self._results = results
                self._error = None
            else:
                logger.error("Suchfehler: %s", msg)
                self._error = msg

    @property
    def results(self) -> List[DeliveryRecord]:
        with self._lock:
            return list(self._results)

    @property
    def error(self) -> Optional[str]:
        with self._lock:
            return self._error

    @property
    def searching(self) -> bool:
        with self._lock:
            return self._searching or self.debouncer.pending

    @property
    def revision(self) -> int:
        with self._lock:
            return self._revision
