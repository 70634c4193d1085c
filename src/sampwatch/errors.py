"""Exception hierarchy shared by the query pipeline and the rate limiter.

Brief:
  Transport- and decode-level failures (QueryTimeout, SocketError,
  MalformedResponse) are recovered by the fallback coordinator; the remaining
  classes are surfaced to callers.
"""

from __future__ import annotations

from typing import Optional


class SampwatchError(Exception):
    """Base class for all sampwatch errors."""


class ConfigError(SampwatchError):
    """Raised when configuration cannot be loaded or validated."""


class QueryError(SampwatchError):
    """Base class for failures of a server query."""

    code = "QUERY_ERROR"


class InvalidAddress(QueryError):
    """Brief: Host or port failed validation; never retried."""

    code = "INVALID_ADDRESS"


class DNSResolutionFailed(QueryError):
    """Brief: Host name could not be resolved to an IPv4 address."""

    code = "DNS_RESOLUTION_FAILED"


class QueryTimeout(QueryError):
    """Brief: No response datagram arrived within the query timeout."""

    code = "TIMEOUT"


# Short alias matching the error taxonomy name.
Timeout = QueryTimeout


class SocketError(QueryError):
    """Brief: Socket-level failure while sending or receiving."""

    code = "SOCKET_ERROR"


class MalformedResponse(QueryError):
    """Brief: Response buffer was truncated or not a valid reply."""

    code = "MALFORMED_RESPONSE"


class AllBackendsFailed(QueryError):
    """Brief: Every configured query strategy failed for an address.

    Inputs:
      - message: Human readable summary.
      - last_error: The final underlying exception, kept for diagnostics.
    """

    code = "SERVER_OFFLINE"

    def __init__(self, message: str, last_error: Optional[BaseException] = None):
        super().__init__(message)
        self.last_error = last_error


class RateLimitError(SampwatchError):
    """Base class for admission failures.

    Inputs:
      - message: Human readable summary.
      - retry_after_seconds: Suggested wait before retrying (0 when never).
    """

    def __init__(self, message: str, retry_after_seconds: int = 0):
        super().__init__(message)
        self.retry_after_seconds = int(retry_after_seconds)


class RateLimited(RateLimitError):
    pass


class Blocked(RateLimitError):
    pass


class Blacklisted(RateLimitError):
    pass


class QueueTimeout(RateLimitError):
    """Brief: A queued request was not admitted before its timeout elapsed."""


class InvalidPattern(SampwatchError):
    """Brief: A cache search pattern is not a valid regular expression."""
