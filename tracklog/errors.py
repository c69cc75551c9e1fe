"""Exception hierarchy for tracklog."""


class TrackerError(Exception):
    """Base class for all tracklog errors."""


class ValidationError(TrackerError):
    """A mutation was given bad input. Raised before any state change."""


class ImportDataError(TrackerError):
    """An import payload was malformed. Raised before any state change."""


class NotConfiguredError(TrackerError):
    """Remote sync was attempted without credentials or a document id."""


class RemoteDocumentError(TrackerError):
    """The remote document exists but does not have the expected shape."""


class NetworkError(TrackerError):
    """Connection-level failure (DNS, TCP, TLS, broken stream)."""


class RequestTimeoutError(NetworkError):
    """No response arrived within the per-attempt timeout."""


class HttpError(TrackerError):
    """The server answered with a non-2xx status."""

    def __init__(self, status: int, body: str = ""):
        self.status = status
        self.body = body
        super().__init__(f"HTTP {status}: {body}" if body else f"HTTP {status}")

    @property
    def retryable(self) -> bool:
        return self.status >= 500
