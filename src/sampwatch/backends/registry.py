from __future__ import annotations

import difflib
import functools
import importlib
import inspect
import pkgutil
from typing import Dict, List, Sequence, Type

from .base import QueryBackend

BACKENDS_PACKAGE = "sampwatch.backends"


def _normalize(alias: str) -> str:
    return alias.strip().lower().replace("-", "_")


def _backend_classes(module) -> List[Type[QueryBackend]]:
    """Brief: Public QueryBackend subclasses defined in module itself."""

    return [
        obj
        for _, obj in inspect.getmembers(module, inspect.isclass)
        if issubclass(obj, QueryBackend)
        and obj is not QueryBackend
        and obj.__module__ == module.__name__
        and not obj.__name__.startswith("_")
    ]


@functools.lru_cache(maxsize=4)
def discover_backends(package_name: str = BACKENDS_PACKAGE) -> Dict[str, Type[QueryBackend]]:
    """Brief: Import every module under package_name and index backends by alias.

    Inputs:
      - package_name: Package path to scan.

    Outputs:
      - Dict[str, Type[QueryBackend]] mapping normalized aliases to classes.
        A class without aliases is registered under its lowercased name.

    Raises:
      - ValueError when two classes claim the same alias.
    """

    pkg = importlib.import_module(package_name)
    registry: Dict[str, Type[QueryBackend]] = {}

    for modinfo in pkgutil.walk_packages(pkg.__path__, pkg.__name__ + "."):
        module = importlib.import_module(modinfo.name)
        for cls in _backend_classes(module):
            aliases = getattr(cls, "aliases", ()) or (cls.__name__.lower(),)
            for alias in map(_normalize, aliases):
                owner = registry.setdefault(alias, cls)
                if owner is not cls:
                    raise ValueError(
                        f"backend alias {alias!r} claimed by both "
                        f"{owner.__module__}.{owner.__name__} and {cls.__module__}.{cls.__name__}"
                    )

    return registry


def get_backend_class(name: str) -> Type[QueryBackend]:
    """Brief: Resolve a backend alias to its class.

    Inputs:
      - name: Alias such as 'samp' or 'info_only'.

    Outputs:
      - QueryBackend subclass.

    Raises:
      - KeyError with close-match suggestions when unknown.
    """

    registry = discover_backends()
    key = _normalize(name)
    if key in registry:
        return registry[key]
    suggestions = difflib.get_close_matches(key, list(registry), n=3)
    hint = f"; did you mean {', '.join(suggestions)}?" if suggestions else ""
    raise KeyError(f"unknown query backend {name!r}{hint}")


def build_backends(names: Sequence[str], timeout_ms: int, **config: object) -> List[QueryBackend]:
    """Brief: Instantiate backends in fallback order.

    Inputs:
      - names: Ordered backend aliases.
      - timeout_ms: Per round-trip timeout passed to every backend.

    Outputs:
      - list of QueryBackend instances.
    """

    return [get_backend_class(n)(timeout_ms=timeout_ms, **config) for n in names]
