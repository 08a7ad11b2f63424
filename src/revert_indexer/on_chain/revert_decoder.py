"""
Decode the human-readable reason out of a revert payload.

A reverted call may return ABI-encoded diagnostic data. Solidity emits two
standard shapes:

- ``Error(string)``   selector 0x08c379a0, followed by an ABI ``string``
- ``Panic(uint256)``  selector 0x4e487b71, followed by an ABI ``uint256`` code

Anything else (custom errors, bare ``revert()``, truncated or garbage data) is
reported as a decode failure by returning ``None``; the caller decides which
fallback text to store.
"""

from typing import Optional, Union

from eth_abi import decode as abi_decode
from eth_utils import decode_hex

from revert_indexer.variables import ERROR_SELECTOR, PANIC_REASONS, PANIC_SELECTOR


def payload_bytes(payload: Union[bytes, str, None]) -> Optional[bytes]:
    """Hex text (with or without 0x) or raw bytes -> bytes; None when not hex."""
    if payload is None:
        return None
    if isinstance(payload, (bytes, bytearray, memoryview)):
        return bytes(payload)
    try:
        return decode_hex(payload)
    except (ValueError, TypeError):
        return None


def _panic_reason(code: int) -> str:
    reason = PANIC_REASONS.get(code)
    if reason is None:
        return f"unknown panic code: {hex(code)}"
    return reason


def _string_fits(body: bytes) -> bool:
    """Offset word, length word and string bytes all lie inside ``body``.

    Non-strict decoding silently truncates a short string, so the bounds are
    checked here; padding after the string is not required.
    """
    if len(body) < 32:
        return False
    offset = int.from_bytes(body[:32], "big")
    if offset + 32 > len(body):
        return False
    length = int.from_bytes(body[offset:offset + 32], "big")
    return offset + 32 + length <= len(body)


def decode_revert_reason(payload: Union[bytes, str, None]) -> Optional[str]:
    """Return the revert reason carried by ``payload``, or None if it cannot be unpacked.

    Never raises: arbitrary bytes and arbitrary text are valid input.
    """
    data = payload_bytes(payload)
    if not data or len(data) < 4:
        return None

    selector, body = data[:4], data[4:]
    try:
        if selector == ERROR_SELECTOR:
            if not _string_fits(body):
                return None
            # nodes return reasons without trailing padding or with junk in it
            (reason,) = abi_decode(["string"], body, strict=False)
            return reason
        if selector == PANIC_SELECTOR:
            (code,) = abi_decode(["uint256"], body, strict=False)
            return _panic_reason(code)
    except Exception:
        # eth_abi raises a mix of DecodingError, OverflowError and
        # UnicodeDecodeError for hostile offsets, lengths and text
        return None
    return None
