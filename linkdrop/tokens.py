"""Shared-secret tokens: generation and timing-safe comparison."""

from __future__ import annotations

import secrets
import string
from typing import Union

ALPHABET = string.ascii_letters + string.digits
MIN_TOKEN_LENGTH = 32

TokenLike = Union[str, bytes]


def _as_bytes(value: TokenLike) -> bytes:
    if isinstance(value, str):
        return value.encode("utf-8")
    return bytes(value)


def verify(candidate: TokenLike, expected: TokenLike) -> bool:
    """Compare two tokens in time independent of where they first differ.

    Only a difference in length returns early; the length of the configured
    token is not secret.
    """
    left = _as_bytes(candidate)
    right = _as_bytes(expected)
    if len(left) != len(right):
        return False

    result = 0
    for x, y in zip(left, right):
        result |= x ^ y
    return result == 0


def generate(length: int = MIN_TOKEN_LENGTH) -> str:
    """Return a random alphanumeric token suitable for URLs."""
    if length < 1:
        raise ValueError("Token length must be positive.")
    return "".join(secrets.choice(ALPHABET) for _ in range(length))
