"""
Error taxonomy for the control panel.

Every failure the panel surfaces to the operator is one of these. None of
them is fatal: the caller reports it and the panel stays usable.
"""


class PanelError(Exception):
    """Base class for operator-visible failures."""

    kind = "panel_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InputError(PanelError):
    """Rejected input (empty endpoint, empty script, malformed values)."""

    kind = "input_error"


class NotConnected(PanelError):
    """Operation requires a live bridge connection."""

    kind = "not_connected"

    def __init__(self, message: str = "Not connected to robot"):
        super().__init__(message)


class TransportError(PanelError):
    """Handshake or connection failure. Safe to retry with connect()."""

    kind = "transport_error"


class RequestError(PanelError):
    """A service call failed or was left unanswered when the link closed."""

    kind = "request_error"


class OperationInProgress(PanelError):
    """The same kind of operation is already in flight."""

    kind = "operation_in_progress"


class AccessDenied(PanelError):
    """Session has not passed the PIN gate."""

    kind = "access_denied"

    def __init__(self, message: str = "Locked: enter PIN first"):
        super().__init__(message)
