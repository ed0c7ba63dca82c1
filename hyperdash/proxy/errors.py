"""
Proxy error taxonomy.

Each error carries the HTTP status it maps to; routes render it inside the
standard {ok: false, error, timestamp} envelope.
"""


class GatewayError(Exception):
    """Base class for errors surfaced to dashboard clients"""

    status_code: int = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidRequestError(GatewayError):
    """Missing or unusable symbol, unsupported request type, malformed body"""

    status_code = 400


class UpstreamError(GatewayError):
    """Exchange or aggregator unreachable, timed out, or returned nothing usable"""

    status_code = 502


class RateLimitExceeded(GatewayError):
    """Client exceeded the per-IP request window"""

    status_code = 429

    def __init__(self, message: str = "Rate limit exceeded. Please wait before making more requests.",
                 retry_after_ms: int = 0):
        super().__init__(message)
        self.retry_after_ms = retry_after_ms
