"""sampwatch package"""

from .engine import LookupResult, QueryEngine
from .models import Decision, PlayerEntry, QueryOpcode, ServerAddress, ServerRecord

__all__ = [
    "Decision",
    "LookupResult",
    "PlayerEntry",
    "QueryEngine",
    "QueryOpcode",
    "ServerAddress",
    "ServerRecord",
]
