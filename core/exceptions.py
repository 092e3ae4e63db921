"""Custom exception hierarchy for the edge proxy."""


class ProxyError(Exception):
    """Base exception for all proxy errors."""


class ConfigurationError(ProxyError):
    """Raised when configuration is missing or invalid."""


class UpstreamError(ProxyError):
    """Raised when a call to the upstream API fails.

    A response received from upstream is never an error at this layer,
    whatever its status code; it is relayed to the caller as-is.

    Attributes:
        message: Error message
        status_code: HTTP status code to report for the failure (optional)
        provider: Upstream host the call was made to (optional)
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        provider: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.provider = provider


class UpstreamTimeoutError(UpstreamError):
    """Raised when an upstream attempt does not answer within the timeout."""

    def __init__(
        self,
        message: str,
        provider: str | None = None,
    ) -> None:
        super().__init__(message, status_code=None, provider=provider)


class UpstreamConnectionError(UpstreamError):
    """Raised when the transport to the upstream fails (DNS, reset, TLS)."""

    def __init__(
        self,
        message: str,
        provider: str | None = None,
    ) -> None:
        super().__init__(message, status_code=None, provider=provider)


class RetriesExhaustedError(UpstreamError):
    """Raised when every attempt failed; carries only the last error.

    Attributes:
        last_error: Error raised by the final attempt
        attempts: Number of attempts made
    """

    def __init__(self, last_error: UpstreamError, attempts: int) -> None:
        super().__init__(
            str(last_error),
            status_code=502,
            provider=last_error.provider,
        )
        self.last_error = last_error
        self.attempts = attempts
