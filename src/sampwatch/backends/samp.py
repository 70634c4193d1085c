from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Dict, Optional

from ..errors import MalformedResponse, QueryError
from ..models import QueryOpcode, ServerAddress
from ..protocol.codec import decode_response, encode_request
from ..transports.udp import resolve_ipv4, udp_query
from .base import BackendResult, QueryBackend, backend_aliases

logger = logging.getLogger(__name__)

Transport = Callable[..., bytes]


class _CodecBackend(QueryBackend):
    """Shared plumbing for backends built on the raw codec and UDP transport.

    Inputs:
      - timeout_ms: Per opcode round-trip timeout.
      - transport: Optional udp_query-compatible callable (tests inject fakes).
      - resolver: Optional resolve_ipv4-compatible callable.
    """

    def __init__(
        self,
        timeout_ms: int = 3000,
        *,
        transport: Optional[Transport] = None,
        resolver: Optional[Callable[[str], str]] = None,
        **config: object,
    ) -> None:
        super().__init__(timeout_ms=timeout_ms, **config)
        self._transport = transport or udp_query
        self._resolver = resolver or resolve_ipv4

    def _round_trip(self, ip: str, port: int, opcode: QueryOpcode) -> Any:
        """Brief: Send one opcode and decode its reply.

        Inputs:
          - ip: Resolved IPv4 address.
          - port: Target port.
          - opcode: Which query to send.

        Outputs:
          - Decoded reply (dict for info/rules, list for players).
        """

        packet = encode_request(ip, port, opcode)
        reply = self._transport(ip, port, packet, timeout_ms=self.timeout_ms)
        if not reply:
            raise MalformedResponse(f"empty {opcode.name.lower()} reply from {ip}:{port}")
        return decode_response(opcode, reply)


@backend_aliases("samp", "full", "codec")
class SampQueryBackend(_CodecBackend):
    """Full query: info, rules and players fetched concurrently.

    Brief:
      The three opcodes go out on independent sockets at once and the backend
      waits for all of them. A rules or players failure leaves that part empty;
      an info failure fails the whole query because hostname and player counts
      are mandatory.
    """

    def query(self, address: ServerAddress) -> BackendResult:
        ip = self._resolver(address.host)
        port = address.port
        started = time.monotonic()

        with ThreadPoolExecutor(max_workers=3, thread_name_prefix="sampwatch-query") as executor:
            futures = {
                opcode: executor.submit(self._round_trip, ip, port, opcode)
                for opcode in (QueryOpcode.INFO, QueryOpcode.RULES, QueryOpcode.PLAYERS)
            }
            info = futures[QueryOpcode.INFO].result()
            latency_ms = int((time.monotonic() - started) * 1000)

            rules: Dict[str, str] = {}
            players: list = []
            try:
                rules = futures[QueryOpcode.RULES].result()
            except QueryError as exc:
                logger.debug("rules query for %s failed: %s", address, exc)
            try:
                players = futures[QueryOpcode.PLAYERS].result()
            except QueryError as exc:
                logger.debug("players query for %s failed: %s", address, exc)

        data = dict(info)
        data["rules"] = rules
        data["playerList"] = players
        return BackendResult(data=data, latency_ms=latency_ms)


@backend_aliases("info_only", "info", "light")
class InfoOnlyBackend(_CodecBackend):
    """Lightweight query sending only the info opcode.

    Brief:
      One datagram each way. Useful as a second strategy for servers that
      rate-limit or drop rules/players queries.
    """

    def query(self, address: ServerAddress) -> BackendResult:
        ip = self._resolver(address.host)
        started = time.monotonic()
        info = self._round_trip(ip, address.port, QueryOpcode.INFO)
        latency_ms = int((time.monotonic() - started) * 1000)
        return BackendResult(data=dict(info), latency_ms=latency_ms)
