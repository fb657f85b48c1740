# Overview: Generators for human-readable order/return numbers and opaque tokens.

from __future__ import annotations

import secrets
import time

_ALPHABET = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"


def to_base36(value: int) -> str:
    if value < 0:
        raise ValueError("value must be non-negative")
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_ALPHABET[rem])
    return "".join(reversed(digits))


def _random_suffix(length: int = 4) -> str:
    return "".join(secrets.choice(_ALPHABET) for _ in range(length))


def _document_number(prefix: str, now_ms: int | None = None) -> str:
    """
    PREFIX-<base36 epoch millis>-<4 random base36 chars>.

    Not unique by construction; the table's unique constraint is the authority.
    """
    if now_ms is None:
        now_ms = time.time_ns() // 1_000_000
    return f"{prefix}-{to_base36(now_ms)}-{_random_suffix()}"


def generate_order_number(now_ms: int | None = None) -> str:
    return _document_number("ORD", now_ms)


def generate_return_number(now_ms: int | None = None) -> str:
    return _document_number("RMA", now_ms)


def generate_recovery_token() -> str:
    """64 hex characters (32 random bytes)."""
    return secrets.token_hex(32)
