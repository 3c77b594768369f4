"""Opaque string ids for auctions, bids, counter offers and notifications.

An id is 12 hex digits of wall-clock milliseconds followed by 10 random hex
digits, so ids sort roughly by creation time and never need coordination
between server instances sharing one store.
"""

import secrets
import time
import uuid

ID_LENGTH = 22


def generate_id() -> str:
    return f"{time.time_ns() // 1_000_000:012x}{secrets.token_hex(5)}"


def generate_instance_id() -> str:
    """Opaque tag identifying this server process on the shared broadcast channel."""
    return f"inst_{uuid.uuid4().hex[:12]}"
