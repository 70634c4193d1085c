"""SA-MP query protocol codec.

Brief:
  Builds query request packets and decodes the three reply kinds (info,
  rules, players). Every read is bounds-checked against the buffer length and
  truncation surfaces as MalformedResponse, never IndexError or struct.error.
  Where real servers omit optional trailing data the decoders return what they
  managed to read.

Wire format (all integers little-endian):
  request  = b"SAMP" | ipv4[4] | port:u16 | opcode:u8
  reply    = request header echo (11 bytes) | opcode specific payload
"""

from __future__ import annotations

import ipaddress
import logging
import struct
from typing import Any, Dict, List, Tuple

from ..errors import MalformedResponse
from ..models import DEFAULT_MAPNAME, UNKNOWN, QueryOpcode

logger = logging.getLogger(__name__)

MAGIC = b"SAMP"
HEADER_LEN = 11

_U8 = struct.Struct("<B")
_U16 = struct.Struct("<H")
_U32 = struct.Struct("<I")
_I32 = struct.Struct("<i")


def encode_request(ip: str, port: int, opcode: QueryOpcode) -> bytes:
    """Brief: Encode a query request packet.

    Inputs:
      - ip: Dotted-quad IPv4 address of the target (already resolved).
      - port: Target UDP port.
      - opcode: QueryOpcode selecting the reply kind.

    Outputs:
      - bytes: 11-byte request packet.

    Example:
      >>> encode_request("192.168.1.1", 7777, QueryOpcode.INFO)
      b'SAMP\\xc0\\xa8\\x01\\x01a\\x1ei'
    """

    try:
        packed_ip = ipaddress.IPv4Address(ip).packed
    except ValueError as exc:
        raise ValueError(f"encode_request needs an IPv4 literal, got {ip!r}") from exc
    return MAGIC + packed_ip + _U16.pack(int(port) & 0xFFFF) + opcode.value.encode("ascii")


class _Reader:
    """Bounds-checked cursor over a reply buffer."""

    __slots__ = ("buf", "offset")

    def __init__(self, buf: bytes, offset: int = 0) -> None:
        self.buf = buf
        self.offset = offset

    @property
    def remaining(self) -> int:
        return len(self.buf) - self.offset

    def _unpack(self, fmt: struct.Struct, what: str) -> int:
        if self.remaining < fmt.size:
            raise MalformedResponse(
                f"truncated reading {what} at offset {self.offset} "
                f"(need {fmt.size}, have {self.remaining})"
            )
        (value,) = fmt.unpack_from(self.buf, self.offset)
        self.offset += fmt.size
        return value

    def u8(self, what: str = "u8") -> int:
        return self._unpack(_U8, what)

    def u16(self, what: str = "u16") -> int:
        return self._unpack(_U16, what)

    def u32(self, what: str = "u32") -> int:
        return self._unpack(_U32, what)

    def i32(self, what: str = "i32") -> int:
        return self._unpack(_I32, what)

    def raw(self, length: int, what: str = "bytes") -> bytes:
        if length < 0 or self.remaining < length:
            raise MalformedResponse(
                f"truncated reading {what} at offset {self.offset} "
                f"(need {length}, have {self.remaining})"
            )
        data = self.buf[self.offset : self.offset + length]
        self.offset += length
        return data

    def text(self, length: int, what: str = "string") -> str:
        return self.raw(length, what).decode("utf-8", errors="replace")


def _check_header(buf: bytes, opcode: QueryOpcode) -> _Reader:
    """Brief: Validate the echoed request header and return a reader past it.

    Inputs:
      - buf: Raw reply datagram.
      - opcode: Opcode the request was sent with.

    Outputs:
      - _Reader positioned at the first payload byte.
    """

    if len(buf) < HEADER_LEN:
        raise MalformedResponse(f"reply shorter than header ({len(buf)} bytes)")
    if buf[:4] != MAGIC:
        raise MalformedResponse(f"bad magic {buf[:4]!r}")
    echoed = buf[HEADER_LEN - 1 : HEADER_LEN]
    if echoed != opcode.value.encode("ascii"):
        raise MalformedResponse(
            f"opcode mismatch: expected {opcode.value!r}, got {echoed!r}"
        )
    return _Reader(buf, HEADER_LEN)


def decode_info(buf: bytes) -> Dict[str, Any]:
    """Brief: Decode an info ('i') reply.

    Inputs:
      - buf: Raw reply datagram.

    Outputs:
      - dict with keys password, players, maxplayers, hostname, gamemode,
        mapname.

    Notes:
      - The fixed fields and hostname are mandatory; gamemode and mapname
        default to 'Unknown' and 'San Andreas' when the buffer ends early.
    """

    r = _check_header(buf, QueryOpcode.INFO)
    password = r.u8("password flag")
    players = r.u16("player count")
    maxplayers = r.u16("max players")
    hostname = r.text(r.u32("hostname length"), "hostname")

    optional: List[str] = []
    for name in ("gamemode", "mapname"):
        try:
            optional.append(r.text(r.u32(f"{name} length"), name))
        except MalformedResponse as exc:
            logger.debug("info reply missing %s: %s", name, exc)
            break

    gamemode = optional[0] if len(optional) > 0 else UNKNOWN
    mapname = optional[1] if len(optional) > 1 else DEFAULT_MAPNAME
    return {
        "password": password == 1,
        "players": players,
        "maxplayers": maxplayers,
        "hostname": hostname,
        "gamemode": gamemode or UNKNOWN,
        "mapname": mapname or DEFAULT_MAPNAME,
    }


def decode_rules(buf: bytes) -> Dict[str, str]:
    """Brief: Decode a rules ('r') reply into a name -> value mapping.

    Inputs:
      - buf: Raw reply datagram.

    Outputs:
      - dict of rules; a missing count or malformed pair ends the list early.
    """

    rules: Dict[str, str] = {}
    if len(buf) < HEADER_LEN:
        return rules
    r = _check_header(buf, QueryOpcode.RULES)
    try:
        count = r.u16("rule count")
    except MalformedResponse:
        return rules
    for _ in range(count):
        try:
            name = r.text(r.u8("rule name length"), "rule name")
            value = r.text(r.u8("rule value length"), "rule value")
        except MalformedResponse as exc:
            logger.debug("rules reply truncated after %d rules: %s", len(rules), exc)
            break
        rules[name] = value
    return rules


def decode_players(buf: bytes) -> List[Dict[str, Any]]:
    """Brief: Decode a detailed players ('d') reply.

    Inputs:
      - buf: Raw reply datagram.

    Outputs:
      - list of {'id', 'name', 'score'} dicts decoded before any truncation.
    """

    players: List[Dict[str, Any]] = []
    if len(buf) < HEADER_LEN:
        return players
    r = _check_header(buf, QueryOpcode.PLAYERS)
    try:
        count = r.u16("player count")
    except MalformedResponse:
        return players
    for _ in range(count):
        try:
            pid = r.u8("player id")
            name = r.text(r.u8("player name length"), "player name")
            score = r.i32("player score")
        except MalformedResponse as exc:
            logger.debug("players reply truncated after %d players: %s", len(players), exc)
            break
        players.append({"id": pid, "name": name, "score": score})
    return players


_DECODERS = {
    QueryOpcode.INFO: decode_info,
    QueryOpcode.RULES: decode_rules,
    QueryOpcode.PLAYERS: decode_players,
}


def decode_response(opcode: QueryOpcode, buf: bytes) -> Any:
    """Brief: Dispatch to the decoder for opcode."""

    return _DECODERS[opcode](buf)


def _encode_text(value: str, length_fmt: struct.Struct) -> bytes:
    data = value.encode("utf-8")
    return length_fmt.pack(len(data)) + data


def encode_info_response(
    request: bytes,
    *,
    hostname: str,
    gamemode: str,
    mapname: str,
    players: int = 0,
    maxplayers: int = 0,
    password: bool = False,
) -> bytes:
    """Brief: Build an info reply for a request (used by stub servers and tests).

    Inputs:
      - request: The 11-byte request being answered (echoed as header).
      - hostname/gamemode/mapname: Server strings.
      - players/maxplayers/password: Fixed fields.

    Outputs:
      - bytes: Info reply datagram.
    """

    return (
        request[:HEADER_LEN]
        + _U8.pack(1 if password else 0)
        + _U16.pack(players)
        + _U16.pack(maxplayers)
        + _encode_text(hostname, _U32)
        + _encode_text(gamemode, _U32)
        + _encode_text(mapname, _U32)
    )


def encode_rules_response(request: bytes, rules: List[Tuple[str, str]]) -> bytes:
    body = _U16.pack(len(rules))
    for name, value in rules:
        body += _encode_text(name, _U8) + _encode_text(value, _U8)
    return request[:HEADER_LEN] + body


def encode_players_response(request: bytes, players: List[Tuple[int, str, int]]) -> bytes:
    body = _U16.pack(len(players))
    for pid, name, score in players:
        body += _U8.pack(pid) + _encode_text(name, _U8) + _I32.pack(score)
    return request[:HEADER_LEN] + body
