from __future__ import annotations

import logging
from typing import Any, Optional

logger = logging.getLogger(__name__)

ADDRESS_HEX_LEN = 40
_MAX_WORD = 2**256


def parse_quantity(raw: Any) -> int:
    """
    Best-effort parse of an RPC quantity ("0x5208", "21000", 21000).
    Anything unparsable degrades to 0.
    """
    if raw is None or raw == "" or raw == "0x":
        return 0
    if isinstance(raw, bool):
        return int(raw)
    if isinstance(raw, int):
        return raw
    try:
        if isinstance(raw, float):
            return int(raw)
        s = str(raw).strip()
        if s[:2].lower() == "0x":
            return int(s, 16)
        return int(s)
    except (TypeError, ValueError, OverflowError):
        logger.debug("unparsable quantity %r, using 0", raw)
        return 0


def hex_slice_to_int(data: str, start: int, end: int) -> int:
    chunk = data[start:end]
    if not chunk:
        return 0
    try:
        return int(chunk, 16)
    except ValueError:
        logger.debug("unparsable hex word %r, using 0", chunk)
        return 0


def word_to_address(word: str) -> str:
    # right-most 20 bytes of a 32-byte word
    return "0x" + word[-ADDRESS_HEX_LEN:].lower().rjust(ADDRESS_HEX_LEN, "0")


def decode_stack_address(raw: Any) -> Optional[str]:
    """
    Decode an EVM stack value into an address (right-most 20 bytes).

    Accepts 0x-prefixed hex strings, bare hex strings (older geth) and ints.
    Returns None when the value cannot be interpreted; callers decide whether
    that is worth a warning.
    """
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, int):
        if raw < 0 or raw >= _MAX_WORD:
            return None
        return "0x" + format(raw % (1 << 160), "040x")
    if not isinstance(raw, str):
        return None
    s = raw.strip()
    if s[:2].lower() == "0x":
        s = s[2:]
    if not s or len(s) > 64:
        return None
    try:
        int(s, 16)
    except ValueError:
        return None
    return word_to_address(s)


def short(addr: str) -> str:
    if not addr or len(addr) < 10:
        return addr
    return f"{addr[:6]}...{addr[-4:]}"


def preview(data: str, length: int = 10) -> str:
    if not data:
        return ""
    return data[:length] + "..." if len(data) > length else data
