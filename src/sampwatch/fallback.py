import logging
import time
from typing import Callable, List, Optional, Sequence, Tuple

from .backends.base import BackendResult, QueryBackend
from .errors import AllBackendsFailed, DNSResolutionFailed, InvalidAddress, QueryError
from .models import ServerAddress

logger = logging.getLogger("sampwatch.fallback")

DEFAULT_BACKOFF_MS = 500

# Failures that no other strategy can fix; surfaced without trying the rest.
_NOT_RETRIED = (InvalidAddress, DNSResolutionFailed)


class FallbackCoordinator:
    """
    Tries query backends in priority order until one returns a usable answer.

    A backend "succeeds" only when its result carries a non-empty hostname.
    Between attempts a fixed backoff is applied so an unreachable host is not
    hammered. There is no memory across calls: every query starts from the
    first backend.

    Args:
        backends: Ordered list of QueryBackend instances.
        backoff_ms: Delay between consecutive attempts.
        sleep: Injectable sleep function (seconds), mainly for tests.
    """

    def __init__(
        self,
        backends: Sequence[QueryBackend],
        backoff_ms: int = DEFAULT_BACKOFF_MS,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if not backends:
            raise ValueError("FallbackCoordinator needs at least one backend")
        self.backends: List[QueryBackend] = list(backends)
        self.backoff_ms = max(0, int(backoff_ms))
        self._sleep = sleep

    @property
    def backend_names(self) -> List[str]:
        return [b.name for b in self.backends]

    def query(self, address: ServerAddress) -> Tuple[BackendResult, str]:
        """
        Query address through the backend cascade.

        Returns:
            (result, backend_name) for the first backend that succeeded.

        Raises:
            InvalidAddress / DNSResolutionFailed immediately.
            AllBackendsFailed when every backend failed, carrying the last error.
        """
        last_error: Optional[BaseException] = None

        for index, backend in enumerate(self.backends):
            if index > 0 and self.backoff_ms:
                self._sleep(self.backoff_ms / 1000.0)
            try:
                logger.debug("Querying %s via backend %s", address, backend.name)
                result = backend.query(address)
            except _NOT_RETRIED:
                raise
            except QueryError as e:
                logger.debug("Backend %s failed for %s: %s", backend.name, address, e)
                last_error = e
                continue

            hostname = str((result.data or {}).get("hostname") or "").strip()
            if not hostname:
                logger.debug(
                    "Backend %s returned no hostname for %s, trying next",
                    backend.name,
                    address,
                )
                last_error = QueryError(f"{backend.name} returned an empty hostname")
                continue

            if index > 0:
                logger.info("Backend %s answered for %s after %d failure(s)", backend.name, address, index)
            return result, backend.name

        logger.warning("All backends failed for %s. Last error: %s", address, last_error)
        raise AllBackendsFailed(
            f"server {address} is offline or unreachable", last_error=last_error
        )
