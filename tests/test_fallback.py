"""
Brief: Tests for FallbackCoordinator ordering, backoff and error surfacing.

Inputs:
  - None

Outputs:
  - None
"""

import pytest

from sampwatch.backends.base import BackendResult, QueryBackend
from sampwatch.errors import (
    AllBackendsFailed,
    DNSResolutionFailed,
    InvalidAddress,
    MalformedResponse,
    QueryTimeout,
)
from sampwatch.fallback import FallbackCoordinator
from sampwatch.models import ServerAddress


class _ScriptedBackend(QueryBackend):
    def __init__(self, label, outcome):
        super().__init__(timeout_ms=10)
        self.label = label
        self.outcome = outcome
        self.calls = 0

    @property
    def name(self):
        return self.label

    def query(self, address):
        self.calls += 1
        if isinstance(self.outcome, BaseException):
            raise self.outcome
        return BackendResult(data=self.outcome, latency_ms=7)


ADDR = ServerAddress.parse("127.0.0.1", 7777)


def test_third_backend_answers_after_two_timeouts():
    """
    Brief: Two failing backends are skipped and exactly two backoffs happen.

    Inputs:
      - backends a, b raising QueryTimeout and c returning a hostname

    Outputs:
      - None: Asserts winner, call counts and sleeps
    """
    sleeps = []
    a = _ScriptedBackend("a", QueryTimeout("a"))
    b = _ScriptedBackend("b", QueryTimeout("b"))
    c = _ScriptedBackend("c", {"hostname": "ok"})
    coord = FallbackCoordinator([a, b, c], backoff_ms=500, sleep=sleeps.append)

    result, name = coord.query(ADDR)
    assert name == "c"
    assert result.data["hostname"] == "ok"
    assert (a.calls, b.calls, c.calls) == (1, 1, 1)
    assert sleeps == [0.5, 0.5]


def test_first_success_has_no_backoff():
    """Brief: A successful first backend never sleeps or tries the rest."""
    sleeps = []
    a = _ScriptedBackend("a", {"hostname": "first"})
    b = _ScriptedBackend("b", {"hostname": "second"})
    _, name = FallbackCoordinator([a, b], sleep=sleeps.append).query(ADDR)
    assert name == "a"
    assert b.calls == 0
    assert sleeps == []


def test_all_failed_carries_last_error():
    """Brief: Exhaustion raises AllBackendsFailed with the final error attached."""
    last = MalformedResponse("garbage")
    coord = FallbackCoordinator(
        [_ScriptedBackend("a", QueryTimeout("t")), _ScriptedBackend("b", last)],
        backoff_ms=0,
        sleep=lambda s: None,
    )
    with pytest.raises(AllBackendsFailed) as excinfo:
        coord.query(ADDR)
    assert excinfo.value.last_error is last
    assert excinfo.value.code == "SERVER_OFFLINE"


def test_empty_hostname_counts_as_failure():
    """Brief: A result without hostname falls through to the next backend."""
    a = _ScriptedBackend("a", {"hostname": "  "})
    b = _ScriptedBackend("b", {"hostname": "real"})
    _, name = FallbackCoordinator([a, b], backoff_ms=0).query(ADDR)
    assert name == "b"


@pytest.mark.parametrize("exc", [InvalidAddress("bad"), DNSResolutionFailed("nx")])
def test_unrecoverable_errors_are_not_retried(exc):
    """Brief: InvalidAddress and DNSResolutionFailed stop the cascade immediately."""
    sleeps = []
    a = _ScriptedBackend("a", exc)
    b = _ScriptedBackend("b", {"hostname": "never"})
    with pytest.raises(type(exc)):
        FallbackCoordinator([a, b], sleep=sleeps.append).query(ADDR)
    assert b.calls == 0
    assert sleeps == []


def test_coordinator_requires_backends():
    """Brief: An empty backend list is a configuration error."""
    with pytest.raises(ValueError):
        FallbackCoordinator([])


def test_backend_names():
    """Brief: backend_names lists backends in priority order."""
    coord = FallbackCoordinator([_ScriptedBackend("x", {}), _ScriptedBackend("y", {})])
    assert coord.backend_names == ["x", "y"]
