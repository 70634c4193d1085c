"""
Brief: Unit tests for the UDP transport using a local SA-MP stub server.

Inputs:
  - None

Outputs:
  - None
"""

import socket
import threading
import time

import pytest

from sampwatch.errors import DNSResolutionFailed, QueryTimeout, SocketError
from sampwatch.models import QueryOpcode
from sampwatch.protocol.codec import decode_info, encode_info_response, encode_request
from sampwatch.transports.udp import resolve_ipv4, udp_query


class _SampStub:
    """Answers 'i' queries with a fixed info reply; ignores everything else."""

    def __init__(self):
        self.sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        self.sock.bind(("127.0.0.1", 0))
        self.addr = self.sock.getsockname()
        self._stop = False
        self.thread = threading.Thread(target=self._loop, daemon=True)

    def start(self):
        self.thread.start()
        time.sleep(0.02)

    def _loop(self):
        while not self._stop:
            try:
                self.sock.settimeout(0.2)
                data, peer = self.sock.recvfrom(4096)
            except Exception:
                continue
            if len(data) < 11 or data[10:11] != b"i":
                continue
            reply = encode_info_response(
                data, hostname="Stub Server", gamemode="Freeroam", mapname="LS", players=4, maxplayers=32
            )
            try:
                self.sock.sendto(reply, peer)
            except Exception:
                pass

    def close(self):
        self._stop = True
        try:
            self.sock.close()
        except Exception:
            pass


@pytest.fixture(scope="module")
def samp_stub():
    s = _SampStub()
    s.start()
    try:
        yield s
    finally:
        s.close()


def test_udp_query_info_roundtrip(samp_stub):
    """
    Brief: An info request to the stub returns a decodable info reply.

    Inputs:
      - samp_stub: local UDP server fixture

    Outputs:
      - None: Asserts decoded fields
    """
    host, port = samp_stub.addr
    pkt = encode_request(host, port, QueryOpcode.INFO)
    resp = udp_query(host, port, pkt, timeout_ms=500)
    info = decode_info(resp)
    assert info["hostname"] == "Stub Server"
    assert info["players"] == 4


def test_udp_query_times_out_when_unanswered(samp_stub):
    """Brief: The stub ignores 'r' queries, so the call times out."""
    host, port = samp_stub.addr
    pkt = encode_request(host, port, QueryOpcode.RULES)
    with pytest.raises(QueryTimeout):
        udp_query(host, port, pkt, timeout_ms=100)


def test_udp_timeout_unroutable():
    # Use unroutable address 203.0.113.1 (TEST-NET-3) to trigger timeout quickly
    with pytest.raises((QueryTimeout, SocketError)):
        udp_query("203.0.113.1", 9, b"SAMP", timeout_ms=10)


def test_udp_socket_error_is_wrapped(monkeypatch):
    """Brief: OSError from sendto surfaces as SocketError."""

    class _BadSock:
        def settimeout(self, t):
            pass

        def sendto(self, data, addr):
            raise OSError("network unreachable")

        def close(self):
            self.closed = True

    bad = _BadSock()
    monkeypatch.setattr(socket, "socket", lambda *a, **k: bad)
    with pytest.raises(SocketError):
        udp_query("127.0.0.1", 7777, b"SAMP", timeout_ms=10)
    assert bad.closed


def test_resolve_ipv4_literal_and_failure(monkeypatch):
    """Brief: Literals pass through; resolver errors become DNSResolutionFailed."""
    assert resolve_ipv4("127.0.0.1") == "127.0.0.1"

    def _fail(*a, **k):
        raise socket.gaierror("no such host")

    monkeypatch.setattr(socket, "getaddrinfo", _fail)
    with pytest.raises(DNSResolutionFailed):
        resolve_ipv4("does-not-exist.invalid")


def test_resolve_ipv4_uses_first_ipv4(monkeypatch):
    """Brief: The first AF_INET sockaddr is returned."""
    monkeypatch.setattr(
        socket,
        "getaddrinfo",
        lambda *a, **k: [(socket.AF_INET, socket.SOCK_DGRAM, 17, "", ("198.51.100.7", 0))],
    )
    assert resolve_ipv4("play.example.com") == "198.51.100.7"


class _ScriptedSock:
    """Replays queued (data, peer) datagrams, then times out."""

    def __init__(self, datagrams):
        self.datagrams = list(datagrams)
        self.timeouts = []
        self.closed = False

    def settimeout(self, t):
        self.timeouts.append(t)

    def sendto(self, data, addr):
        self.sent_to = addr

    def recvfrom(self, size):
        if not self.datagrams:
            raise socket.timeout()
        return self.datagrams.pop(0)

    def close(self):
        self.closed = True


def test_udp_query_ignores_datagrams_from_other_senders(monkeypatch):
    """
    Brief: A datagram from a foreign address is dropped; the server's reply wins.

    Inputs:
      - monkeypatched socket replaying a stray datagram then the real reply

    Outputs:
      - None: Asserts the server's payload is returned
    """
    sock = _ScriptedSock([(b"spoofed", ("10.9.9.9", 7777)), (b"genuine", ("127.0.0.1", 7777))])
    monkeypatch.setattr(socket, "socket", lambda *a, **k: sock)
    assert udp_query("127.0.0.1", 7777, b"SAMP", timeout_ms=200) == b"genuine"
    assert sock.sent_to == ("127.0.0.1", 7777)
    assert len(sock.timeouts) == 2
    assert sock.closed


def test_udp_query_wrong_port_only_times_out(monkeypatch):
    """Brief: Replies from the right host but another port never satisfy the query."""
    sock = _ScriptedSock([(b"other", ("127.0.0.1", 7778))])
    monkeypatch.setattr(socket, "socket", lambda *a, **k: sock)
    with pytest.raises(QueryTimeout):
        udp_query("127.0.0.1", 7777, b"SAMP", timeout_ms=200)
    assert sock.closed
