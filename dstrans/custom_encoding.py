"""
Bespoke 16-bit character set used by Tingle no Koi no Balloon Trip.

Every character is a little-endian 16-bit code. Printable codes map onto
ASCII and onto blocks of Shift_JIS punctuation and kana; a handful of code
ranges carry inline control values. The lookup tables are built once at
import time and never modified afterwards.
"""

import struct
from typing import Dict, Optional, Tuple

from .errors import FormatError, OutOfRangeError

TERMINATOR = 0xFFFF
LESS_THAN = 0x001C
GREATER_THAN = 0x001E
RAW_CODES = (0x0251, 0x02D4, 0x03BE, 0x0500)
HEX_DIGITS = "0123456789ABCDEF"


def _unicode_range(code_start: int, char_start: int, length: int) -> Dict[int, str]:
    return {code_start + i: chr(char_start + i) for i in range(length)}


def _shift_jis_range(code_start: int, sjis_start: int, length: int) -> Dict[int, str]:
    lead = sjis_start >> 8
    trail = sjis_start & 0xFF
    raw = b"".join(bytes((lead, trail + i)) for i in range(length))
    chars = raw.decode("cp932")
    return {code_start + i: chars[i] for i in range(length)}


def _build_tables() -> Tuple[Dict[int, str], Dict[str, int]]:
    code_to_char: Dict[int, str] = {}
    # 0x3C and 0x3E are skipped; they are written as <lt> and <gt>
    for block in (
        _unicode_range(0x0000, 0x0020, 28),
        _unicode_range(0x001D, 0x003D, 1),
        _unicode_range(0x001F, 0x003F, 64),
        # Shift_JIS punctuation and symbols
        _shift_jis_range(0x00E0, 0x8140, 63),
        _shift_jis_range(0x011F, 0x8180, 45),
        # hiragana
        _shift_jis_range(0x0151, 0x829F, 83),
        # katakana
        _shift_jis_range(0x01B1, 0x8340, 63),
        _shift_jis_range(0x01F0, 0x8380, 23),
    ):
        code_to_char.update(block)
    char_to_code = {char: code for code, char in code_to_char.items()}
    return code_to_char, char_to_code


CODE_TO_CHAR, CHAR_TO_CODE = _build_tables()


def decode_custom(data: bytes, offset: int = 0, length: Optional[int] = None) -> str:
    """Decode a run of 16-bit codes into escaped text.

    Args:
        data: Source buffer
        offset: Offset of the first code
        length: Number of bytes to decode (None for the rest of the buffer)

    Returns:
        Decoded text with control codes as bracketed tags

    Raises:
        FormatError: If a code has no character or control meaning
        OutOfRangeError: If a code or parameter is cut off by the buffer end
    """
    end = len(data) if length is None else offset + length
    if end > len(data):
        raise OutOfRangeError(offset, end - offset, len(data))
    parts = []
    i = offset
    while i < end:
        if i + 2 > end:
            raise OutOfRangeError(i, 2, end)
        code = struct.unpack_from("<H", data, i)[0]
        i += 2
        if code in CODE_TO_CHAR:
            parts.append(CODE_TO_CHAR[code])
        elif code == TERMINATOR:
            continue
        elif 0xF000 <= code <= 0xF00F:
            parts.append(f"<{HEX_DIGITS[code & 0xF]}>")
        elif 0xF100 <= code <= 0xF10F:
            if i + 2 > end:
                raise OutOfRangeError(i, 2, end)
            value = struct.unpack_from("<H", data, i)[0]
            i += 2
            parts.append(f"<{HEX_DIGITS[code & 0xF]}:{value}>")
        elif code == LESS_THAN:
            parts.append("<lt>")
        elif code == GREATER_THAN:
            parts.append("<gt>")
        elif code in RAW_CODES:
            parts.append(f"<h{code:04X}>")
        else:
            raise FormatError(
                f"Unsupported character [{code:04X}]",
                value=code,
                position=i - 2,
                partial_text="".join(parts),
            )
    return "".join(parts)


def _encode_tag(tag: str) -> bytes:
    if tag == "lt":
        return struct.pack("<H", LESS_THAN)
    if tag == "gt":
        return struct.pack("<H", GREATER_THAN)
    if len(tag) == 5 and tag[0] == "h":
        try:
            return struct.pack("<H", int(tag[1:], 16))
        except ValueError:
            pass
    elif len(tag) == 1 and tag in HEX_DIGITS:
        return struct.pack("<H", 0xF000 | HEX_DIGITS.index(tag))
    elif len(tag) > 2 and tag[1] == ":" and tag[0] in HEX_DIGITS:
        try:
            value = int(tag[2:], 10)
        except ValueError:
            value = -1
        if 0 <= value <= 0xFFFF:
            return struct.pack("<HH", 0xF100 | HEX_DIGITS.index(tag[0]), value)
    raise FormatError(f"Unrecognized control code <{tag}>", value=tag)


def encode_custom(text: str) -> bytes:
    """Encode escaped text into 16-bit codes followed by the FFFF terminator.

    Raises:
        FormatError: For unknown characters, unknown tags or an unterminated tag
    """
    out = bytearray()
    i = 0
    while i < len(text):
        char = text[i]
        if char == "<":
            end = text.find(">", i + 1)
            if end == -1:
                raise FormatError("Found opening tag with no closing tag", value=text[i:], position=i)
            out += _encode_tag(text[i + 1:end])
            i = end + 1
            continue
        code = CHAR_TO_CODE.get(char)
        if code is None:
            raise FormatError(f"Unsupported character [{char}]", value=char, position=i)
        out += struct.pack("<H", code)
        i += 1
    out += struct.pack("<H", TERMINATOR)
    return bytes(out)
