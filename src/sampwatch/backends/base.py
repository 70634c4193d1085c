from __future__ import annotations

from typing import Any, Dict, NamedTuple

from ..models import ServerAddress


def backend_aliases(*aliases: str):
    """Brief: Decorator to set aliases on a query backend class for discovery.

    Inputs:
      - *aliases: Variable number of alias strings.

    Outputs:
      - Callable that applies the aliases to a QueryBackend subclass and returns it.

    Example:
      >>> from sampwatch.backends.base import QueryBackend, backend_aliases
      >>> @backend_aliases('dummy', 'noop')
      ... class DummyBackend(QueryBackend):
      ...     pass
      >>> DummyBackend.aliases
      ('dummy', 'noop')
    """

    def _wrap(cls: type) -> type:
        cls.aliases = tuple(aliases)
        return cls

    return _wrap


class BackendResult(NamedTuple):
    """Raw backend output plus the measured round trip in milliseconds."""

    data: Dict[str, Any]
    latency_ms: int


class QueryBackend:
    """Base class for server query strategies.

    Brief:
      A QueryBackend turns a ServerAddress into a backend-native mapping. The
      shape of that mapping is backend specific; sampwatch.normalizer maps it
      to a ServerRecord. Failures are raised as sampwatch.errors.QueryError
      subclasses.

    Inputs:
      - timeout_ms: Per round-trip timeout in milliseconds.
      - **config: Implementation-specific options.

    Outputs:
      - QueryBackend instance.
    """

    aliases: tuple[str, ...] = ()

    def __init__(self, timeout_ms: int = 3000, **config: object) -> None:
        self.timeout_ms = int(timeout_ms)
        self.config = dict(config)

    @property
    def name(self) -> str:
        """Brief: Identifier recorded as ServerRecord.source_backend."""

        if self.aliases:
            return self.aliases[0]
        return type(self).__name__

    def query(self, address: ServerAddress) -> BackendResult:
        """Brief: Query one server.

        Inputs:
          - address: Target server.

        Outputs:
          - BackendResult with the backend-native mapping.
        """

        raise NotImplementedError("QueryBackend.query() must be implemented by a subclass")
