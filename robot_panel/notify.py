"""Toast notifications raised by the core for the operator."""

import logging
from typing import Callable

logger = logging.getLogger(__name__)

# (message, level) where level is one of "info", "success", "error"
Notifier = Callable[[str, str], None]


def log_notifier(message: str, level: str = "info") -> None:
    """Fallback notifier when no UI is attached."""
    if level == "error":
        logger.warning(f"[toast] {message}")
    else:
        logger.info(f"[toast] {message}")
