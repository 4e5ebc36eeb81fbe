"""
Session Gate - PIN check in front of the control panel.

A single shared PIN is compared once per browser session. Sessions that
pass keep a flag in their session storage and skip the gate afterwards.
There is no attempt counting or lockout; the error indicator is purely
cosmetic and clears itself after a short delay.
"""

import asyncio
import logging
from typing import MutableMapping, Optional

from .notify import Notifier, log_notifier

logger = logging.getLogger(__name__)

LOCK_ERROR_KEY = "lock_error"
LOCK_ERROR_MESSAGE = "Incorrect PIN. Try again."


class SessionGate:
    """
    PIN gate operating on per-browser session storage.

    Session storage is any mutable mapping scoped to one browser session
    (the panel server keeps one dict per session cookie).
    """

    def __init__(
        self,
        pin: str,
        session_key: str,
        notify: Optional[Notifier] = None,
        error_clear_delay: float = 1.5,
    ):
        """
        Initialize the gate.

        Args:
            pin: The shared passcode
            session_key: Storage key of the authenticated flag
            notify: Toast callback (message, level)
            error_clear_delay: Seconds before the error indicator clears
        """
        self.pin = pin
        self.session_key = session_key
        self.notify = notify or log_notifier
        self.error_clear_delay = error_clear_delay

    def is_authenticated(self, session: MutableMapping) -> bool:
        return session.get(self.session_key) is True

    def lock_error(self, session: MutableMapping) -> Optional[str]:
        return session.get(LOCK_ERROR_KEY)

    def check_passcode(self, entered: str, session: MutableMapping) -> bool:
        """
        Compare the entered PIN with the configured one.

        Args:
            entered: PIN as typed by the operator
            session: Session storage of the browser that submitted it

        Returns:
            True if access is granted
        """
        if entered == self.pin:
            session[self.session_key] = True
            session.pop(LOCK_ERROR_KEY, None)
            logger.info("Access granted")
            self.notify("Access granted", "success")
            return True

        logger.warning("Incorrect PIN entered")
        session[LOCK_ERROR_KEY] = LOCK_ERROR_MESSAGE
        self._schedule_error_clear(session)
        return False

    def _schedule_error_clear(self, session: MutableMapping) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop to time the indicator: leave it until the next attempt
            return
        loop.call_later(self.error_clear_delay, self._clear_error, session)

    @staticmethod
    def _clear_error(session: MutableMapping) -> None:
        session.pop(LOCK_ERROR_KEY, None)
