"""
Brief: Tests for sampwatch.models address validation and record helpers.

Inputs:
  - None

Outputs:
  - None
"""

import pytest

from sampwatch.errors import InvalidAddress
from sampwatch.models import PlayerEntry, ServerAddress, ServerRecord


@pytest.mark.parametrize(
    "host,port",
    [
        ("127.0.0.1", "7777"),
        ("play.example.com", 7777),
        ("Server-1.Example.ORG", "65535"),
        ("10.0.0.1", 1),
    ],
)
def test_parse_accepts_valid(host, port):
    """Brief: IPv4 literals and RFC 1123 names with ports in range are accepted."""
    addr = ServerAddress.parse(host, port)
    assert addr.port == int(port)
    assert addr.host == host.lower()


@pytest.mark.parametrize(
    "host,port",
    [
        (None, 7777),
        ("", 7777),
        ("127.0.0.1", None),
        ("127.0.0.1", ""),
        ("127.0.0.1", "0"),
        ("127.0.0.1", "65536"),
        ("127.0.0.1", "abc"),
        ("256.1.1.1", 7777),
        ("bad_host!", 7777),
        ("-lead.example.com", 7777),
        ("1.2.3", 7777),
    ],
)
def test_parse_rejects_invalid(host, port):
    """Brief: Missing or malformed host/port raises InvalidAddress."""
    with pytest.raises(InvalidAddress):
        ServerAddress.parse(host, port)


def test_address_key_and_literal_flag():
    """Brief: key is host:port and is_ip_literal distinguishes names."""
    assert ServerAddress.parse("1.2.3.4", 7777).key == "1.2.3.4:7777"
    assert str(ServerAddress.parse("1.2.3.4", 7777)) == "1.2.3.4:7777"
    assert ServerAddress.parse("1.2.3.4", 7777).is_ip_literal
    assert not ServerAddress.parse("example.com", 7777).is_ip_literal


def test_record_copy_is_deep():
    """Brief: Mutating a copy never touches the original."""
    rec = ServerRecord(hostname="h", rules={"a": "1"}, players=[PlayerEntry(1, "x", 0)])
    dup = rec.copy()
    dup.rules["a"] = "2"
    dup.players.append(PlayerEntry(2, "y", 0))
    assert rec.rules == {"a": "1"}
    assert len(rec.players) == 1


def test_record_defaults():
    """Brief: Defaults use the sentinel strings and zero counts."""
    rec = ServerRecord()
    assert rec.hostname == "Unknown"
    assert rec.mapname == "San Andreas"
    assert rec.player_count == 0 and rec.max_players == 0
    assert rec.to_dict()["players"] == []
