"""Address normalization helpers."""

from __future__ import annotations

import re

_EVM_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")


def normalize_address(value: str | None) -> str:
    """Normalize on-chain address keys for internal maps/dedup.

    EVM addresses are case-insensitive and get lowercased; other chains (base58 mints)
    are case-sensitive and only get stripped.
    """
    text = str(value or "").strip()
    if is_evm_address(text):
        return text.lower()
    return text


def is_evm_address(value: str | None) -> bool:
    return bool(_EVM_ADDRESS_RE.match(str(value or "").strip()))
