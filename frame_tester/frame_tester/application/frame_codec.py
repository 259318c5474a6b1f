"""Conversion between typed text, hex strings and raw frames.

Text typed by the user may embed raw byte values with a backslash escape:
``"AB\\0d\\0a"`` becomes ``41420d0a``. The two characters after a backslash
are copied verbatim into the hex output; whether they are valid hex digits is
checked only when the hex string is decoded.
"""

from __future__ import annotations

import binascii
import string

from frame_tester.domain.errors import MalformedFrameError


ESCAPE_CHAR = "\\"
_HEX_DIGITS = frozenset(string.hexdigits)
_WHITESPACE = str.maketrans("", "", string.whitespace)


def _char_to_hex(char: str) -> str:
    code = ord(char)
    if code <= 0xFF:
        return f"{code:02x}"
    return char.encode("utf-8").hex()


def text_to_hex(text: str) -> str:
    parts: list[str] = []
    i = 0
    while i < len(text):
        if text[i] == ESCAPE_CHAR and i + 2 < len(text):
            parts.append(text[i + 1 : i + 3])
            i += 3
        else:
            parts.append(_char_to_hex(text[i]))
            i += 1
    return "".join(parts)


def decode_hex(hex_string: str) -> bytes:
    compact = hex_string.translate(_WHITESPACE)
    if len(compact) % 2:
        raise MalformedFrameError(f"Hex string has odd length ({len(compact)}).")
    for offset in range(0, len(compact), 2):
        group = compact[offset : offset + 2]
        if not set(group) <= _HEX_DIGITS:
            raise MalformedFrameError(f"Invalid hex group {group!r} at offset {offset}.")
    try:
        return binascii.unhexlify(compact)
    except (binascii.Error, ValueError) as exc:
        raise MalformedFrameError(str(exc)) from exc


def encode(text: str) -> bytes:
    return decode_hex(text_to_hex(text))


def bytes_to_hex(data: bytes) -> str:
    return data.hex()


def bytes_to_display_pair(data: bytes) -> tuple[str, str]:
    # one character per byte, no charset negotiation
    return data.decode("latin-1"), data.hex()


def display_text_to_bytes(text: str) -> bytes:
    """Inverse of the text half of :func:`bytes_to_display_pair`."""
    return text.encode("latin-1")
