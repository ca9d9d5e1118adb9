"""
Text transcoders: game bytes <-> escaped, editable text.

Each game stores text differently. A transcoder decodes a run of bytes into
a single-line string in which line breaks, control codes and special glyphs
appear as escapes (``\\n``, ``<$1B>``, ``<happy>``), and encodes such a
string back into the exact bytes the game expects.
"""

import re
from pathlib import Path
from typing import Dict, Optional, Tuple, Type

from .custom_encoding import decode_custom, encode_custom
from .errors import FormatError, OutOfRangeError

LEGACY_CODEPAGE = "cp932"


class TextTranscoder:
    """Interface shared by every game-specific transcoder."""

    name = ""

    def decode(self, data: bytes, offset: int = 0, length: Optional[int] = None) -> str:
        """Decode bytes starting at offset.

        Args:
            data: Source buffer
            offset: First byte of the string
            length: Exact byte count; None to stop at a NUL or the buffer end

        Returns:
            Escaped text
        """
        raise NotImplementedError

    def encode(self, text: str) -> bytes:
        """Encode escaped text back into game bytes."""
        raise NotImplementedError


class ShiftJisTranscoder(TextTranscoder):
    """Transcoder for games built on the Shift_JIS code page.

    Subclasses describe their game by data: ``special_sequences`` maps raw
    byte sequences to the escape or tag that replaces them, and the two
    ``char_*_map`` tables remap characters before encoding and after
    decoding. ``_decode_control`` and ``_encode_tag`` handle parameterised
    codes that a fixed table cannot express.
    """

    name = "saga"
    codepage = LEGACY_CODEPAGE
    tags_enabled = False
    special_sequences: Dict[bytes, str] = {
        b"\r": "\\r",
        b"\n": "\\n",
    }
    char_decode_map: Dict[str, str] = {}
    char_encode_map: Dict[str, str] = {}

    def __init__(self):
        self._tokens: Dict[str, bytes] = {
            token: seq for seq, token in self.special_sequences.items()
        }
        self._escapes = sorted(
            (token for token in self._tokens if not token.startswith("<")),
            key=len,
            reverse=True,
        )
        self._escape_starts = {token[0] for token in self._escapes}

    @staticmethod
    def is_lead_byte(value: int) -> bool:
        """Whether a byte starts a two-byte Shift_JIS character."""
        return not (value < 0x80 or 0xA0 <= value <= 0xDF)

    def decode(self, data: bytes, offset: int = 0, length: Optional[int] = None) -> str:
        end = len(data) if length is None else min(len(data), offset + length)
        parts = []
        i = offset
        while i < end:
            value = data[i]
            if value == 0x00 and length is None:
                break

            pair = bytes(data[i:min(i + 2, end)])
            if len(pair) == 2 and pair in self.special_sequences:
                parts.append(self.special_sequences[pair])
                i += 2
                continue
            single = bytes(data[i:i + 1])
            if single in self.special_sequences:
                parts.append(self.special_sequences[single])
                i += 1
                continue

            control = self._decode_control(data, i, end, parts)
            if control is not None:
                token, size = control
                parts.append(token)
                i += size
                continue

            if self.is_lead_byte(value):
                if i + 2 > end:
                    raise OutOfRangeError(i, 2, end)
                char = self._decode_legacy(data[i:i + 2], i, parts)
                parts.append(self.char_decode_map.get(char, char))
                i += 2
            else:
                parts.append(self._decode_legacy(data[i:i + 1], i, parts))
                i += 1

        return "".join(parts)

    def encode(self, text: str) -> bytes:
        out = bytearray()
        i = 0
        while i < len(text):
            char = text[i]

            if char in self._escape_starts:
                token = next((t for t in self._escapes if text.startswith(t, i)), None)
                if token is not None:
                    out += self._tokens[token]
                    i += len(token)
                    continue

            if char == "<" and self.tags_enabled:
                end = text.find(">", i + 1)
                if end == -1:
                    raise FormatError(
                        "Found opening tag with no closing tag", value=text[i:], position=i
                    )
                tag = text[i + 1:end]
                sequence = self._tokens.get(f"<{tag}>")
                if sequence is None:
                    sequence = self._encode_tag(tag)
                if sequence is None:
                    raise FormatError(f'Unrecognized control code "{tag}"', value=tag, position=i)
                out += sequence
                i = end + 1
                continue

            out += self._encode_char(char, i)
            i += 1

        return bytes(out)

    def _decode_control(
        self, data: bytes, index: int, end: int, parts: list
    ) -> Optional[Tuple[str, int]]:
        """Translate a control byte at index into (token, size), or None."""
        return None

    def _encode_tag(self, tag: str) -> Optional[bytes]:
        """Translate a tag not found in special_sequences, or None."""
        return None

    def _decode_legacy(self, raw: bytes, position: int, parts: list) -> str:
        try:
            return bytes(raw).decode(self.codepage)
        except UnicodeDecodeError:
            raise FormatError(
                f"Undecodable byte sequence {bytes(raw).hex().upper()}",
                value=bytes(raw),
                position=position,
                partial_text="".join(parts),
            )

    def _encode_char(self, char: str, position: int) -> bytes:
        mapped = self.char_encode_map.get(char, char)
        try:
            return mapped.encode(self.codepage)
        except UnicodeEncodeError:
            raise FormatError(f"Cannot encode character {char!r}", value=char, position=position)


class SagaTranscoder(ShiftJisTranscoder):
    """SaGa 2: plain Shift_JIS with escaped line breaks."""

    name = "saga"


class MamoruTranscoder(ShiftJisTranscoder):
    """Ore ga Omae wo Mamoru: Shift_JIS with colour codes and icon glyphs."""

    name = "mamoru"
    tags_enabled = True
    special_sequences = {
        b"\r": "\\r",
        b"\n": "\\n",
        b"\x81\xE1": "<[>",
        b"\x81\xE2": "<]>",
        b"\x87\x54": "<I>",
        b"\x87\x55": "<II>",
        b"\x87\x56": "<III>",
        b"\x87\x85": "<icon:consumable>",
        b"\x87\x86": "<icon:ingredient>",
        b"\x87\x87": "<icon:keyitem>",
        b"\x87\x88": "<icon:sword1>",
        b"\x87\x89": "<icon:sword2>",
        b"\x87\x8A": "<icon:sword3>",
        b"\x87\x8B": "<icon:sword4>",
        b"\x87\x8C": "<icon:circle>",
        b"\x87\x8D": "<icon:chest>",
    }

    def _decode_control(self, data, index, end, parts):
        value = data[index]
        if value >= 0x20:
            return None
        # 1B 43 xx sets the text colour
        if value == 0x1B and index + 2 < end and data[index + 1] == 0x43:
            return f"<C{data[index + 2]:02X}>", 3
        return f"<${value:02X}>", 1

    def _encode_tag(self, tag):
        try:
            if tag.startswith("C") and len(tag) > 1:
                return bytes((0x1B, 0x43, int(tag[1:], 16)))
            if tag.startswith("$") and len(tag) > 1:
                return bytes((int(tag[1:], 16),))
        except ValueError:
            raise FormatError(f'Malformed control code "{tag}"', value=tag)
        return None


SUMMON_SINGLE = (
    " !\"#$%&'()*+,-./0123456789:;<=>?@ABCDEFGHIJKLMNOPQRSTUVWXYZ[\\]^_`"
    "abcdefghijklmnopqrstuvwxyz{|}~"
)
SUMMON_DUAL = (
    "ΑΒΓΔΕΖΗΘΙΚΛΜΝΞΟΠΡΣΤΥΦΧΨΩαβγδεζηθικλμνξοπρστυφχψω"
    "АБВГДЕЁЖЗИЙКЛМНОПРСТУФХЦЧШЩЪЫЬЭЮЯабвгдеёжзийклм"
)
# Characters with escape meaning keep their double-byte glyph when decoded.
_SUMMON_SYNTAX = "<>\\"


class SummonTranscoder(ShiftJisTranscoder):
    """Summon Night X: FF-prefixed control codes and a remapped font.

    Dialogue boxes cannot show single-byte ASCII, so the game's font reuses
    Greek and Cyrillic double-byte slots for it. Typed ASCII is written into
    those slots and decoded back to ASCII.
    """

    name = "summon"
    tags_enabled = True
    special_sequences = {
        b"\xFF\x20": "<br>",
        b"\xFF\x21": "\\n",
        b"\xFF\x60": "<neutral>",
        b"\xFF\x61": "<happy>",
        b"\xFF\x62": "<stern>",
        b"\xFF\x63": "<surprised>",
        b"\xFF\x64": "<upset>",
        b"\xFF\x65": "<sad>",
        b"\xFF\x66": "<tender>",
        b"\xFF\x67": "<cheerful>",
        b"\xFF\x6B": "<angry>",
        b"\xFF\xFB": "<gold>",
        b"\xFF\xFC": "<chars>",
        b"\xFF\xFE": "<votes>",
    }
    char_encode_map = dict(zip(SUMMON_SINGLE, SUMMON_DUAL))
    char_decode_map = {
        dual: single
        for single, dual in zip(SUMMON_SINGLE, SUMMON_DUAL)
        if single not in _SUMMON_SYNTAX
    }

    def _decode_control(self, data, index, end, parts):
        if data[index] != 0xFF:
            return None
        if index + 1 >= end:
            raise OutOfRangeError(index, 2, end)
        raise FormatError(
            f"Unrecognized control code FF{data[index + 1]:02X}",
            value=bytes(data[index:index + 2]),
            position=index,
            partial_text="".join(parts),
        )


class MapleTranscoder(TextTranscoder):
    """MapleStory DS: UTF-16LE text with tabs and line breaks escaped.

    A literal backslash is doubled so that game text containing ``\\n``
    survives a round trip. Both directions scan left to right in one pass.
    """

    name = "maple"
    escapes = {
        "\\": "\\\\",
        "\t": "[\\t]",
        "\r": "\\r",
        "\n": "\\n",
    }
    unescapes = {escaped: raw for raw, escaped in escapes.items()}
    escape_pattern = re.compile(r"[\\\t\r\n]")
    unescape_pattern = re.compile(r"\[\\t\]|\\[\\rn]")

    def decode(self, data: bytes, offset: int = 0, length: Optional[int] = None) -> str:
        if length is None:
            end = offset
            while end + 1 < len(data) and (data[end] or data[end + 1]):
                end += 2
            length = end - offset
        if offset + length > len(data):
            raise OutOfRangeError(offset, length, len(data))
        try:
            text = bytes(data[offset:offset + length]).decode("utf-16-le")
        except UnicodeDecodeError as e:
            raise FormatError(f"Invalid UTF-16 text: {e.reason}", position=offset)
        return self.escape_pattern.sub(lambda m: self.escapes[m.group()], text)

    def encode(self, text: str) -> bytes:
        text = self.unescape_pattern.sub(lambda m: self.unescapes[m.group()], text)
        try:
            return text.encode("utf-16-le")
        except UnicodeEncodeError as e:
            raise FormatError(f"Cannot encode text: {e.reason}", value=text)


class TingleTranscoder(TextTranscoder):
    """Tingle's Balloon Trip: bespoke 16-bit character set."""

    name = "tingle"

    def decode(self, data: bytes, offset: int = 0, length: Optional[int] = None) -> str:
        return decode_custom(data, offset, length)

    def encode(self, text: str) -> bytes:
        return encode_custom(text)


class TableTranscoder(TextTranscoder):
    """Transcoder driven by a .tbl table file.

    Table lines have the form ``XX=c`` or ``XXXX=c`` (one- or two-byte
    keys). Values written as ``<NAME>`` are control codes; ``<END>`` and
    ``<NULL>`` end a string when decoding without an explicit length.
    """

    name = "table"
    END_CODES = ("<END>", "<NULL>")

    def __init__(self, table_path: Optional[str] = None):
        """Initialize encoding table.

        Args:
            table_path: Path to .tbl file. If None, creates empty table.
        """
        self.bytes_to_text: Dict[bytes, str] = {}
        self.text_to_bytes: Dict[str, bytes] = {}
        self.control_codes: Dict[bytes, str] = {}
        self.max_key_length = 1
        self.max_value_length = 1

        if table_path:
            self.load_table(table_path)

    def load_table(self, table_path: str) -> None:
        """Load encoding table from .tbl file.

        Args:
            table_path: Path to .tbl file

        Raises:
            FileNotFoundError: If table file doesn't exist
            FormatError: If table format is invalid
        """
        table_file = Path(table_path)
        if not table_file.exists():
            raise FileNotFoundError(f"Table file not found: {table_path}")

        with open(table_file, "r", encoding="utf-8") as f:
            for line_num, line in enumerate(f, 1):
                line = line.rstrip("\n\r")  # Only remove line endings, preserve spaces

                if not line or line.lstrip().startswith("#"):
                    continue

                try:
                    self.add_mapping_line(line)
                except ValueError as e:
                    raise FormatError(
                        f"Invalid table format at line {line_num}: {e}", file_name=str(table_path)
                    )

    def add_mapping_line(self, line: str) -> None:
        """Parse a single ``hex=value`` line from a table file."""
        if "=" not in line:
            return

        hex_part, value = line.split("=", 1)
        hex_part = hex_part.strip()
        if len(hex_part) not in (2, 4):
            raise ValueError(f"Invalid hex value: {hex_part}")
        key = bytes.fromhex(hex_part)
        self.add_mapping(key, value)

    def add_mapping(self, key: bytes, value: str) -> None:
        if value.startswith("<") and value.endswith(">") and len(value) > 2:
            self.control_codes[key] = value
        else:
            self.bytes_to_text[key] = value
            self.max_value_length = max(self.max_value_length, len(value))
        self.text_to_bytes.setdefault(value, key)
        self.max_key_length = max(self.max_key_length, len(key))

    def decode(self, data: bytes, offset: int = 0, length: Optional[int] = None) -> str:
        end = len(data) if length is None else min(len(data), offset + length)
        parts = []
        i = offset
        while i < end:
            for size in range(min(self.max_key_length, end - i), 0, -1):
                key = bytes(data[i:i + size])
                if key in self.control_codes:
                    token = self.control_codes[key]
                    break
                if key in self.bytes_to_text:
                    token = self.bytes_to_text[key]
                    break
            else:
                raise FormatError(
                    f"Unrecognized byte {data[i]:02X}",
                    value=data[i],
                    position=i,
                    partial_text="".join(parts),
                )
            if length is None and token in self.END_CODES:
                break
            parts.append(token)
            i += size
        return "".join(parts)

    def encode(self, text: str) -> bytes:
        out = bytearray()
        i = 0
        while i < len(text):
            if text[i] == "<":
                end = text.find(">", i + 1)
                if end == -1:
                    raise FormatError("Found opening tag with no closing tag", value=text[i:], position=i)
                tag = text[i:end + 1]
                if tag in self.text_to_bytes:
                    out += self.text_to_bytes[tag]
                    i = end + 1
                    continue
                if "<" not in self.text_to_bytes:
                    raise FormatError(f"Unknown control code: {tag}", value=tag, position=i)

            for size in range(min(self.max_value_length, len(text) - i), 0, -1):
                chunk = text[i:i + size]
                if chunk in self.text_to_bytes:
                    out += self.text_to_bytes[chunk]
                    i += size
                    break
            else:
                raise FormatError(f"Cannot encode character: {text[i]!r}", value=text[i], position=i)

        return bytes(out)

    def get_stats(self) -> Dict[str, int]:
        """Get statistics about the loaded table.

        Returns:
            Dictionary with table statistics
        """
        return {
            "characters": len(self.bytes_to_text),
            "control_codes": len(self.control_codes),
            "multi_byte_keys": sum(1 for key in self.bytes_to_text if len(key) > 1),
            "total_mappings": len(self.bytes_to_text) + len(self.control_codes),
        }


TRANSCODERS: Dict[str, Type[TextTranscoder]] = {
    "saga": SagaTranscoder,
    "mamoru": MamoruTranscoder,
    "summon": SummonTranscoder,
    "maple": MapleTranscoder,
    "tingle": TingleTranscoder,
    "table": TableTranscoder,
}


def get_transcoder(name: str, **kwargs) -> TextTranscoder:
    """Create a registered transcoder by name.

    Args:
        name: Registry key, e.g. "saga" or "summon"
        **kwargs: Passed to the transcoder constructor (``table_path`` for "table")

    Raises:
        ValueError: If no transcoder is registered under name
    """
    try:
        transcoder_class = TRANSCODERS[name]
    except KeyError:
        raise ValueError(f"Unknown transcoder: {name}")
    return transcoder_class(**kwargs)
