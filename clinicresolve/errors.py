"""
Fetch error taxonomy.

These are raised by the HTTP transport and caught at the strategy/source
boundary, where they become "no result for this attempt". Not-found and
partial aggregation are reported through result objects, not exceptions.
"""


class FetchError(ValueError):
    """Base class for a single failed probe or source fetch."""

    error_type = "FetchError"

    def __init__(self, message: str, url: str | None = None):
        super().__init__(message)
        self.url = url


class NetworkError(FetchError):
    """Endpoint unreachable or connection refused."""

    error_type = "NetworkError"


class ProbeTimeout(FetchError):
    """Probe exceeded its time bound."""

    error_type = "Timeout"


class NotFoundError(FetchError):
    """Backend answered 404 for the requested entity."""

    error_type = "NotFound"


class MalformedResponse(FetchError):
    """Non-JSON or shape-violating payload."""

    error_type = "MalformedResponse"


class BackendError(FetchError):
    """Backend answered with an error status other than 404."""

    error_type = "BackendError"

    def __init__(self, message: str, url: str | None = None, status: int | None = None):
        super().__init__(message, url=url)
        self.status = status
