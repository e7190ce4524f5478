"""Utility functions and helpers."""

from supportchat.utils.security import (
    Identity,
    create_access_token,
    decode_token,
    resolve_identity,
    get_current_identity,
)

__all__ = [
    "Identity",
    "create_access_token",
    "decode_token",
    "resolve_identity",
    "get_current_identity",
]
