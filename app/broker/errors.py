"""Classified failures raised by the broker, account, and instrument layers."""


class DhanBridgeError(Exception):
    """Base error carrying a human-readable message."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NoActiveAccount(DhanBridgeError):
    """An operation needs a linked, active account and none exists."""

    def __init__(self, message: str = "No active Dhan account linked") -> None:
        super().__init__(message)


class BrokerRejected(DhanBridgeError):
    """The broker answered with a 4xx/5xx status.

    ``body`` holds the raw response text so the broker's own diagnostic
    reaches the caller unchanged.
    """

    def __init__(self, status_code: int, body: str, message: str = "") -> None:
        super().__init__(
            message or f"Broker rejected request with status {status_code}: {body}"
        )
        self.status_code = status_code
        self.body = body


class TransportError(DhanBridgeError):
    """The broker could not be reached (DNS, timeout, connection reset)."""


class MalformedRecord(DhanBridgeError):
    """A single broker record could not be normalized."""


class IndexLoadFailure(DhanBridgeError):
    """The security master could not be fetched or parsed."""
