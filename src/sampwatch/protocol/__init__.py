from .codec import (
    HEADER_LEN,
    MAGIC,
    decode_info,
    decode_players,
    decode_response,
    decode_rules,
    encode_request,
)

__all__ = [
    "HEADER_LEN",
    "MAGIC",
    "decode_info",
    "decode_players",
    "decode_response",
    "decode_rules",
    "encode_request",
]
