import logging
from typing import Callable

logger = logging.getLogger(__name__)

# notify(message, kind) where kind is one of "info", "success", "warning", "error"
Notifier = Callable[[str, str], None]


def log_notify(message: str, kind: str = "info") -> None:
    """Fallback notifier for code running outside of a page."""
    level = logging.ERROR if kind == "error" else logging.INFO
    logger.log(level, "[%s] %s", kind, message)
