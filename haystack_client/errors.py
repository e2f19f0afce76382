"""Error types for the Haystack client."""


class HaystackError(Exception):
    """Base exception for Haystack client errors."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class TransportError(HaystackError):
    """Raised when a network or decoding failure prevents an operation."""

    def is_retryable(self) -> bool:
        return False


class ConnectionError(TransportError):
    """Raised when unable to connect to the server."""

    def __init__(self, message: str):
        super().__init__(f"Connection error: {message}")

    def is_retryable(self) -> bool:
        return True


class HttpError(TransportError):
    """Raised for HTTP errors."""

    def __init__(self, status: int, message: str):
        self.status = status
        super().__init__(f"HTTP {status}: {message}")

    def is_retryable(self) -> bool:
        return self.status >= 500


class NotFoundError(HttpError):
    """Raised when a record or watch subscription does not exist."""

    def __init__(self, message: str):
        super().__init__(404, message)


class ApiError(TransportError):
    """Raised for error grids returned by the server."""

    def __init__(self, code: str, message: str, trace: str = ""):
        self.code = code
        self.trace = trace
        super().__init__(f"API error [{code}]: {message}")


class SubscriptionLostError(HaystackError):
    """Raised when the server invalidates an open watch subscription."""

    def __init__(self, watch_id: str, message: str = "subscription lost"):
        self.watch_id = watch_id
        super().__init__(f"Watch {watch_id}: {message}")


class ClosedError(HaystackError):
    """Raised when a closed watch or subject is used."""

    def __init__(self, what: str = "watch"):
        super().__init__(f"The {what} is closed")
