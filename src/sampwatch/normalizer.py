"""Map backend-native result shapes to the canonical ServerRecord.

This is the only place where default values are decided: explicit field
first, then documented aliases, then the zero value or sentinel string.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Mapping, Optional

from .models import DEFAULT_MAPNAME, UNKNOWN, PlayerEntry, ServerRecord

HOSTNAME_KEYS = ("hostname", "name", "host_name")
GAMEMODE_KEYS = ("gamemode", "game_mode", "gametype")
MAPNAME_KEYS = ("mapname", "map", "map_name")
PASSWORD_KEYS = ("passworded", "password", "locked")
PLAYER_COUNT_KEYS = (
    "players",
    "player_count",
    "playerCount",
    "online",
    "numplayers",
    "players_online",
)
MAX_PLAYERS_KEYS = ("maxplayers", "max_players", "maxPlayers", "max")
PLAYER_LIST_KEYS = ("player_list", "playerList", "players")

_TRUE_STRINGS = {"1", "true", "yes", "on"}


def _first(data: Mapping[str, Any], keys: Iterable[str]) -> Any:
    for k in keys:
        if k in data and data[k] is not None:
            return data[k]
    return None


def _as_str(value: Any, default: str) -> str:
    if value is None:
        return default
    s = str(value).strip()
    return s or default


def _as_count(value: Any) -> int:
    """Brief: Coerce a player-count style value to a uint16 (0 on junk).

    Notes:
      - A list value is treated as a player list and counted.
    """

    if isinstance(value, (list, tuple)):
        value = len(value)
    if isinstance(value, bool):
        return int(value)
    try:
        n = int(value)
    except (TypeError, ValueError):
        return 0
    return min(max(n, 0), 0xFFFF)


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in _TRUE_STRINGS
    return bool(value)


def _as_players(value: Any) -> List[PlayerEntry]:
    players: List[PlayerEntry] = []
    if not isinstance(value, (list, tuple)):
        return players
    for index, item in enumerate(value):
        if isinstance(item, PlayerEntry):
            players.append(item)
            continue
        if isinstance(item, Mapping):
            pid = item.get("id", index)
            name = item.get("name", "")
            score = item.get("score", 0)
        else:
            # Bare names, as some lighter backends report them.
            pid, name, score = index, item, 0
        try:
            players.append(PlayerEntry(id=int(pid) & 0xFF, name=str(name), score=int(score)))
        except (TypeError, ValueError):
            continue
    return players


def normalize(
    raw: Optional[Mapping[str, Any]],
    source_backend: str = "",
    latency_ms: int = 0,
) -> ServerRecord:
    """Brief: Build a ServerRecord from any backend's output.

    Inputs:
      - raw: Backend-native mapping (may be None or partial).
      - source_backend: Name of the backend that produced raw.
      - latency_ms: Measured round trip for the query.

    Outputs:
      - ServerRecord with every field populated.

    Example:
      >>> normalize({"hostname": "x", "playerCount": 3}).player_count
      3
    """

    data: Mapping[str, Any] = raw or {}

    rules_raw = data.get("rules")
    rules: Dict[str, str] = {}
    if isinstance(rules_raw, Mapping):
        rules = {str(k): str(v) for k, v in rules_raw.items()}

    player_list = None
    for key in PLAYER_LIST_KEYS:
        candidate = data.get(key)
        if isinstance(candidate, (list, tuple)):
            player_list = candidate
            break

    count = _first(data, PLAYER_COUNT_KEYS)
    return ServerRecord(
        hostname=_as_str(_first(data, HOSTNAME_KEYS), UNKNOWN),
        gamemode=_as_str(_first(data, GAMEMODE_KEYS), UNKNOWN),
        mapname=_as_str(_first(data, MAPNAME_KEYS), DEFAULT_MAPNAME),
        passworded=_as_bool(_first(data, PASSWORD_KEYS)),
        player_count=_as_count(count),
        player_count_known=count is not None,
        max_players=_as_count(_first(data, MAX_PLAYERS_KEYS)),
        rules=rules,
        players=_as_players(player_list),
        latency_ms=max(0, int(latency_ms or 0)),
        source_backend=str(source_backend or ""),
    )
