"""Fast non-cryptographic fingerprint used to deduplicate captured turns."""

from __future__ import annotations

import struct

_MASK32 = 0xFFFFFFFF


def fingerprint(role: str, content: str, prefix: int = 200) -> str:
    """
    Hash ``role + ":" + content[:prefix]`` into a signed 32-bit decimal string.

    The hash is the classic ``h = h * 31 + unit`` over UTF-16 code units with
    32-bit wraparound, so values match what an in-page script computing
    ``(h << 5) - h + s.charCodeAt(i)`` produces for the same text. The prefix
    is likewise counted in UTF-16 code units.

    Args:
        role: ``"user"`` or ``"assistant"``.
        content: Normalized message text.
        prefix: Number of content code units folded into the hash.

    Returns:
        The hash as a decimal string (may be negative).
    """
    data = f"{role}:".encode("utf-16-le") + content.encode("utf-16-le")[: prefix * 2]
    h = 0
    for (unit,) in struct.iter_unpack("<H", data):
        h = (h * 31 + unit) & _MASK32
    if h & 0x80000000:
        h -= 1 << 32
    return str(h)
