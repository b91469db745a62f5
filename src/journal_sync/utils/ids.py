"""
ids.py - Time-ordered record identifiers.

Record ids are UUID v7 values rendered as 32 lowercase hex digits.
The first 12 digits are the creation time in milliseconds, so ids
sort by creation time as plain strings.
"""

import secrets
import time

_RAND_A_BITS = 12
_RAND_B_BITS = 62


def new_record_id() -> str:
    """Return a new opaque, time-ordered record id."""
    t_ms = time.time_ns() // 1_000_000
    value = (t_ms & 0xFFFF_FFFF_FFFF) << 80
    value |= 0x7 << 76
    value |= secrets.randbits(_RAND_A_BITS) << 64
    value |= 0b10 << 62
    value |= secrets.randbits(_RAND_B_BITS)
    return f"{value:032x}"


def record_id_timestamp_ms(record_id: str) -> int:
    """Creation time (ms since epoch) encoded in a record id."""
    return int(record_id[:12], 16)
