"""Identifier generation."""

import hashlib
import secrets
import time

# Number of leading characters shown by the CLI.
ID_DISPLAY_LENGTH = 8

# Hex characters kept from the digest (64 bits).
ID_LENGTH = 16


def new_id() -> str:
    """
    Generate a new memory identifier.

    Digests the nanosecond clock together with a random nonce, so two ids
    created in the same instant still differ. Lowercase hex, safe to print
    and to match by prefix.
    """
    seed = f"{time.time_ns()}:{secrets.token_hex(8)}"
    return hashlib.sha256(seed.encode("utf-8")).hexdigest()[:ID_LENGTH]


def short_id(memory_id: str) -> str:
    """Return the display prefix of an identifier."""
    return memory_id[:ID_DISPLAY_LENGTH]
