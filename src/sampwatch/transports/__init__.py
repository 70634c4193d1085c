from .udp import resolve_ipv4, udp_query

__all__ = ["resolve_ipv4", "udp_query"]
