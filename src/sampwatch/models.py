from __future__ import annotations

import copy
import dataclasses
import enum
import ipaddress
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .errors import InvalidAddress

UNKNOWN = "Unknown"
DEFAULT_MAPNAME = "San Andreas"

# RFC 1123 label: alnum, inner hyphens, 1..63 chars.
_LABEL_RE = re.compile(r"^(?!-)[A-Za-z0-9-]{1,63}(?<!-)$")
_DOTTED_QUAD_RE = re.compile(r"^\d{1,3}(\.\d{1,3}){3}$")


class QueryOpcode(str, enum.Enum):
    """Single-character protocol selector for a query packet."""

    INFO = "i"
    RULES = "r"
    PLAYERS = "d"


def _is_valid_hostname(host: str) -> bool:
    """Brief: Return True when host is a syntactically valid DNS name.

    Inputs:
      - host: Candidate host name (trailing dot allowed).

    Outputs:
      - bool
    """

    name = host[:-1] if host.endswith(".") else host
    if not name or len(name) > 253:
        return False
    labels = name.split(".")
    # All-numeric final label would be a broken IPv4 literal, not a name.
    if labels[-1].isdigit():
        return False
    return all(_LABEL_RE.match(label) for label in labels)


@dataclass(frozen=True)
class ServerAddress:
    """Brief: Immutable (host, port) pair identifying a game server.

    Inputs:
      - host: Dotted-quad IPv4 literal or DNS name.
      - port: UDP port in 1..65535.

    Outputs:
      - ServerAddress instance; use parse() to validate untrusted input.

    Example:
      >>> ServerAddress.parse("127.0.0.1", "7777").key
      '127.0.0.1:7777'
    """

    host: str
    port: int

    @classmethod
    def parse(cls, host: Any, port: Any) -> "ServerAddress":
        """Brief: Validate raw host/port input and build a ServerAddress.

        Inputs:
          - host: str IPv4 literal or DNS name.
          - port: int or numeric string.

        Outputs:
          - ServerAddress

        Raises:
          - InvalidAddress when host or port is missing or malformed.
        """

        if host is None or not str(host).strip():
            raise InvalidAddress("host is required")
        if port is None or str(port).strip() == "":
            raise InvalidAddress("port is required")

        h = str(host).strip()
        if _DOTTED_QUAD_RE.match(h):
            try:
                ipaddress.IPv4Address(h)
            except ValueError:
                raise InvalidAddress(f"invalid IPv4 address: {h!r}")
        elif not _is_valid_hostname(h):
            raise InvalidAddress(f"invalid host: {h!r}")

        try:
            p = int(str(port).strip())
        except (TypeError, ValueError):
            raise InvalidAddress(f"invalid port: {port!r}")
        if p < 1 or p > 65535:
            raise InvalidAddress(f"port out of range 1-65535: {p}")
        return cls(host=h.lower(), port=p)

    @property
    def is_ip_literal(self) -> bool:
        try:
            ipaddress.IPv4Address(self.host)
        except ValueError:
            return False
        return True

    @property
    def key(self) -> str:
        return f"{self.host}:{self.port}"

    def __str__(self) -> str:
        return self.key


@dataclass(frozen=True)
class PlayerEntry:
    id: int
    name: str
    score: int


@dataclass
class ServerRecord:
    """Brief: Canonical server state produced by the normalizer.

    Notes:
      - player_count and max_players are always populated (default 0);
        player_count_known is False when no backend reported a count.
      - rules ordering carries no meaning.
    """

    hostname: str = UNKNOWN
    gamemode: str = UNKNOWN
    mapname: str = DEFAULT_MAPNAME
    passworded: bool = False
    player_count: int = 0
    player_count_known: bool = True
    max_players: int = 0
    rules: Dict[str, str] = field(default_factory=dict)
    players: List[PlayerEntry] = field(default_factory=list)
    latency_ms: int = 0
    source_backend: str = ""

    def copy(self) -> "ServerRecord":
        return copy.deepcopy(self)

    def to_dict(self) -> Dict[str, Any]:
        return dataclasses.asdict(self)


@dataclass
class Decision:
    """Brief: Outcome of a rate-limit admission check.

    Outputs:
      - allowed: True when the request may proceed.
      - remaining: Requests left in the current window.
      - retry_after_seconds: Suggested wait when denied (0 when allowed).
      - reason: Short machine-readable code ('ok', 'rate_limited', ...).
    """

    allowed: bool
    remaining: int = 0
    retry_after_seconds: int = 0
    reason: str = "ok"
    blocked: bool = False
    blacklisted: bool = False
    whitelisted: bool = False
    pattern: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return dataclasses.asdict(self)
