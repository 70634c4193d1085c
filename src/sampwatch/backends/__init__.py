from .base import BackendResult, QueryBackend, backend_aliases
from .samp import InfoOnlyBackend, SampQueryBackend

__all__ = [
    "BackendResult",
    "InfoOnlyBackend",
    "QueryBackend",
    "SampQueryBackend",
    "backend_aliases",
]
