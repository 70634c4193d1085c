import ipaddress
import logging
import socket
import time
from typing import Optional

from ..errors import DNSResolutionFailed, QueryTimeout, SocketError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_MS = 3000
MAX_DATAGRAM = 65535


def resolve_ipv4(host: str) -> str:
    """
    Brief: Resolve host to a dotted-quad IPv4 address.

    Inputs:
    - host: IPv4 literal or DNS name

    Outputs:
    - str: IPv4 address (literals are returned unchanged)

    Notes:
    - Resolution is performed on every call; nothing is cached here.

    Example:
        >>> resolve_ipv4('127.0.0.1')
        '127.0.0.1'
    """
    try:
        return str(ipaddress.IPv4Address(host))
    except ValueError:
        pass
    try:
        infos = socket.getaddrinfo(host, None, socket.AF_INET, socket.SOCK_DGRAM)
    except (socket.gaierror, UnicodeError) as e:
        raise DNSResolutionFailed(f"could not resolve {host!r}: {e}")
    for family, _type, _proto, _canon, sockaddr in infos:
        if family == socket.AF_INET and sockaddr:
            return str(sockaddr[0])
    raise DNSResolutionFailed(f"no IPv4 address for {host!r}")


def udp_query(
    host: str,
    port: int,
    payload: bytes,
    *,
    timeout_ms: int = DEFAULT_TIMEOUT_MS,
    source_ip: Optional[str] = None,
) -> bytes:
    """
    Brief: Perform a single UDP request/response round trip.

    Inputs:
    - host: target IPv4 address
    - port: target UDP port
    - payload: request datagram
    - timeout_ms: how long to wait for the single reply
    - source_ip: optional source address to bind

    Outputs:
    - bytes: the first datagram received from (host, port)

    Notes:
    - Datagrams from any other sender are dropped and the wait continues
      until the deadline.
    - The socket is closed on every path, so a reply arriving after the
      timeout is discarded by the kernel.

    Example:
        >>> try:
        ...     udp_query('127.0.0.1', 7777, b'SAMP')
        ... except (QueryTimeout, SocketError):
        ...     pass
    """
    try:
        s = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    except OSError as e:
        raise SocketError(f"UDP socket error: {e}")
    try:
        if source_ip:
            s.bind((source_ip, 0))
        target = (host, int(port))
        deadline = time.monotonic() + timeout_ms / 1000.0
        s.settimeout(timeout_ms / 1000.0)
        s.sendto(payload, target)
        while True:
            data, peer = s.recvfrom(MAX_DATAGRAM)
            if peer[:2] == target:
                return data
            logger.debug("dropping stray datagram from %s:%s while querying %s:%s", peer[0], peer[1], host, port)
            left = deadline - time.monotonic()
            if left <= 0:
                raise socket.timeout()
            s.settimeout(left)
    except socket.timeout:
        raise QueryTimeout(f"no reply from {host}:{port} within {timeout_ms} ms")
    except OSError as e:
        raise SocketError(f"UDP error talking to {host}:{port}: {e}")
    finally:
        s.close()
