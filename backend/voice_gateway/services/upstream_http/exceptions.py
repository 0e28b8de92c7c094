class UpstreamHTTPError(Exception):
    """Base exception for unary forwarding failures.

    ``code`` is the machine-readable error identifier returned to the caller.
    """

    code = "UPSTREAM_ERROR"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class UpstreamTimeoutError(UpstreamHTTPError):
    """Raised when the provider does not answer within the request timeout."""

    code = "UPSTREAM_TIMEOUT"


class UpstreamRequestError(UpstreamHTTPError):
    """Raised when the request could not be delivered (DNS, refused, TLS, ...)."""

    code = "UPSTREAM_REQUEST_FAILED"


class UpstreamResponseError(UpstreamHTTPError):
    """Raised when the provider's response body cannot be decoded."""

    code = "UPSTREAM_MALFORMED_RESPONSE"
