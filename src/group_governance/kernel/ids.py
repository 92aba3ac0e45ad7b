"""
ID generation using UUIDv7 (time-ordered UUIDs)

Groups, ballots, polls and events all get sortable identifiers, so the
event log and the deadline index are naturally ordered by creation time.
"""

import secrets
import time


def generate_id() -> str:
    """
    Generate a UUIDv7-like identifier (time-ordered UUID)

    Format: 8-4-4-4-12 hex characters (36 chars with hyphens)
    First 48 bits: Unix timestamp in milliseconds
    Remaining bits: version/variant markers and randomness

    Returns:
        Sortable UUID string (e.g., "01908e9a-3b87-7000-8000-123456789abc")
    """
    timestamp_48 = int(time.time() * 1000) & 0xFFFFFFFFFFFF

    rand_a = secrets.randbits(12)
    rand_b = secrets.randbits(62)

    time_high = (timestamp_48 >> 16) & 0xFFFFFFFF
    time_low = timestamp_48 & 0xFFFF
    version_and_rand = 0x7000 | rand_a
    variant_and_rand = 0x8000 | ((rand_b >> 48) & 0x3FFF)
    node = rand_b & 0xFFFFFFFFFFFF

    return (
        f"{time_high:08x}-{time_low:04x}-{version_and_rand:04x}-"
        f"{variant_and_rand:04x}-{node:012x}"
    )
