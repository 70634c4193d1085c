"""
Brief: Tests for query backend discovery and alias resolution.

Inputs:
  - None

Outputs:
  - None
"""

import pytest

from sampwatch.backends.base import QueryBackend, backend_aliases
from sampwatch.backends.registry import build_backends, discover_backends, get_backend_class
from sampwatch.backends.samp import InfoOnlyBackend, SampQueryBackend


def test_discover_registers_aliases_and_default_names():
    """
    Brief: Every declared alias of the public backends is registered.

    Inputs:
      - None

    Outputs:
      - None: Asserts registry contents
    """
    registry = discover_backends()
    assert registry["samp"] is SampQueryBackend
    assert registry["full"] is SampQueryBackend
    assert registry["info_only"] is InfoOnlyBackend
    assert registry["info"] is InfoOnlyBackend
    # Private helper bases are never registered.
    assert all(not cls.__name__.startswith("_") for cls in registry.values())


def test_get_backend_class_normalizes_names():
    """Brief: Lookup ignores case and accepts dashes."""
    assert get_backend_class("INFO-ONLY") is InfoOnlyBackend


def test_get_backend_class_unknown_suggests():
    """Brief: Unknown aliases raise KeyError with suggestions."""
    with pytest.raises(KeyError) as excinfo:
        get_backend_class("sampp")
    assert "samp" in str(excinfo.value)


def test_build_backends_preserves_order_and_timeout():
    """Brief: Backends are built in the given order with the shared timeout."""
    backends = build_backends(["info_only", "samp"], timeout_ms=1234)
    assert [type(b) for b in backends] == [InfoOnlyBackend, SampQueryBackend]
    assert all(b.timeout_ms == 1234 for b in backends)


def test_backend_aliases_decorator_and_base_query():
    """Brief: The decorator sets aliases; the base query is abstract."""

    @backend_aliases("dummy", "noop")
    class DummyBackend(QueryBackend):
        pass

    b = DummyBackend(timeout_ms=10, extra="x")
    assert DummyBackend.aliases == ("dummy", "noop")
    assert b.name == "dummy"
    assert b.config == {"extra": "x"}
    with pytest.raises(NotImplementedError):
        b.query(None)
