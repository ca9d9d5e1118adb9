"""
Nitro font (NFTR) reader and writer.

An NFTR file is a 16-byte Nitro header followed by chunks: FINF (font
info), CGLP (glyph bitmaps), CWDH (glyph widths) and one or more chained
CMAP chunks mapping character codes to glyph indices. Every chunk is padded
to a 4-byte boundary.

Glyphs are kept as rows of pixel intensities (0 = transparent, up to
``2**bits_per_pixel - 1`` = fully opaque).
"""

import bisect
import logging
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Dict, List, Optional, Sequence, Tuple

from .byte_codec import Buffer, ByteCodec
from .errors import FormatError

logger = logging.getLogger(__name__)

Glyph = List[List[int]]

CHUNK_ALIGNMENT = 4
HEADER_SIZE = 0x10
BLANK_INDEX = 0xFFFF

FONT_SIGNATURE = 0x4E465452  # "RTFN" on disk
FINF_SIGNATURE = 0x46494E46
CGLP_SIGNATURE = 0x43474C50
CWDH_SIGNATURE = 0x43574448
CMAP_SIGNATURE = 0x434D4150

# Offsets in FINF and CMAP point 8 bytes into the target chunk
SECTION_POINTER_BIAS = 8


def _aligned(size: int) -> int:
    return ByteCodec.round_up(size, CHUNK_ALIGNMENT)


def _pad(data: bytearray, size: int) -> bytes:
    return bytes(data.ljust(size, b"\x00"))


def _check_chunk(raw: Buffer, offset: int, expected: int, name: str) -> None:
    signature = ByteCodec.read_u32(raw, offset)
    if signature != expected:
        raise FormatError(
            f"Chunk at 0x{offset:X} is not {name} format", value=signature, position=offset
        )


class CharacterMapType(IntEnum):
    RANGE = 0
    LIST = 1
    MAP = 2


@dataclass
class NitroHeader:
    """Standard header shared by all Nitro files."""
    signature: int = FONT_SIGNATURE
    byte_order_mark: int = 0x0100FEFF
    file_size: int = 0
    section_count: int = 0

    size = HEADER_SIZE

    @classmethod
    def read(cls, raw: Buffer, signature: int = FONT_SIGNATURE) -> "NitroHeader":
        """Parse and validate the header at the start of a file.

        Raises:
            FormatError: If the signature or header size is wrong
        """
        found = ByteCodec.read_u32(raw, 0)
        if found != signature:
            raise FormatError(
                f"File signature 0x{found:08X} does not match expected value 0x{signature:08X}",
                value=found,
            )
        header_size = ByteCodec.read_u16(raw, 0x0C)
        if header_size != HEADER_SIZE:
            raise FormatError(
                f"Header size {header_size} does not match expected value {HEADER_SIZE}",
                value=header_size,
            )
        return cls(
            signature=found,
            byte_order_mark=ByteCodec.read_u32(raw, 0x04),
            file_size=ByteCodec.read_u32(raw, 0x08),
            section_count=ByteCodec.read_u16(raw, 0x0E),
        )

    def write(self) -> bytes:
        out = bytearray(HEADER_SIZE)
        ByteCodec.write_u32(out, 0x00, self.signature)
        ByteCodec.write_u32(out, 0x04, self.byte_order_mark)
        ByteCodec.write_u32(out, 0x08, self.file_size)
        ByteCodec.write_u16(out, 0x0C, HEADER_SIZE)
        ByteCodec.write_u16(out, 0x0E, self.section_count)
        return bytes(out)


@dataclass
class FontInfoChunk:
    """FINF chunk: font-wide values and the locations of the other chunks.

    Offsets are held as chunk start positions; the file stores them 8
    bytes further on.
    """
    unknown1: int = 0
    unknown2: int = 0
    glyph_offset: int = 0
    width_offset: int = 0
    map_offset: int = 0

    size = 0x1C

    @classmethod
    def read(cls, raw: Buffer, offset: int) -> "FontInfoChunk":
        _check_chunk(raw, offset, FINF_SIGNATURE, "FINF")
        chunk_size = ByteCodec.read_u32(raw, offset + 4)
        if chunk_size != cls.size:
            raise FormatError(
                f"FINF size {chunk_size} does not match expected value {cls.size}",
                value=chunk_size,
                position=offset,
            )
        return cls(
            unknown1=ByteCodec.read_i32(raw, offset + 0x08),
            unknown2=ByteCodec.read_i32(raw, offset + 0x0C),
            glyph_offset=ByteCodec.read_i32(raw, offset + 0x10) - SECTION_POINTER_BIAS,
            width_offset=ByteCodec.read_i32(raw, offset + 0x14) - SECTION_POINTER_BIAS,
            map_offset=ByteCodec.read_i32(raw, offset + 0x18) - SECTION_POINTER_BIAS,
        )

    def write(self) -> bytes:
        out = bytearray(self.size)
        ByteCodec.write_u32(out, 0x00, FINF_SIGNATURE)
        ByteCodec.write_u32(out, 0x04, self.size)
        ByteCodec.write_i32(out, 0x08, self.unknown1)
        ByteCodec.write_i32(out, 0x0C, self.unknown2)
        ByteCodec.write_i32(out, 0x10, self.glyph_offset + SECTION_POINTER_BIAS)
        ByteCodec.write_i32(out, 0x14, self.width_offset + SECTION_POINTER_BIAS)
        ByteCodec.write_i32(out, 0x18, self.map_offset + SECTION_POINTER_BIAS)
        return bytes(out)


def unpack_glyph(data: bytes, width: int, height: int, bits_per_pixel: int) -> Glyph:
    """Unpack MSB-first packed pixels into rows of intensities."""
    bits = int.from_bytes(data, "big")
    total = len(data) * 8
    mask = (1 << bits_per_pixel) - 1
    rows = []
    position = 0
    for _ in range(height):
        row = []
        for _ in range(width):
            position += bits_per_pixel
            row.append((bits >> (total - position)) & mask)
        rows.append(row)
    return rows


def pack_glyph(glyph: Glyph, bits_per_pixel: int) -> bytes:
    """Pack rows of intensities MSB-first, zero-filling the last byte."""
    out = bytearray()
    accumulator = 0
    pending = 0
    for row in glyph:
        for value in row:
            accumulator = (accumulator << bits_per_pixel) | value
            pending += bits_per_pixel
            while pending >= 8:
                pending -= 8
                out.append((accumulator >> pending) & 0xFF)
            accumulator &= (1 << pending) - 1
    if pending:
        out.append((accumulator << (8 - pending)) & 0xFF)
    return bytes(out)


@dataclass
class GlyphChunk:
    """CGLP chunk: every glyph bitmap, all the same size."""
    width: int
    height: int
    bits_per_pixel: int
    glyphs: List[Glyph] = field(default_factory=list)
    unknown1: int = 0
    unknown2: int = 0

    header_size = 0x10

    @property
    def bytes_per_glyph(self) -> int:
        return -(-self.width * self.height * self.bits_per_pixel // 8)

    @property
    def size(self) -> int:
        return _aligned(self.header_size + len(self.glyphs) * self.bytes_per_glyph)

    @classmethod
    def read(cls, raw: Buffer, offset: int, count: int) -> "GlyphChunk":
        """Read ``count`` glyphs from the chunk at offset."""
        _check_chunk(raw, offset, CGLP_SIGNATURE, "CGLP")
        width = ByteCodec.read_u8(raw, offset + 0x08)
        height = ByteCodec.read_u8(raw, offset + 0x09)
        bytes_per_glyph = ByteCodec.read_u16(raw, offset + 0x0A)
        chunk = cls(
            width=width,
            height=height,
            bits_per_pixel=ByteCodec.read_u16(raw, offset + 0x0E),
            unknown1=ByteCodec.read_u8(raw, offset + 0x0C),
            unknown2=ByteCodec.read_u8(raw, offset + 0x0D),
        )
        if bytes_per_glyph < chunk.bytes_per_glyph:
            raise FormatError(
                f"CGLP stores {bytes_per_glyph} bytes per glyph, "
                f"{width}x{height} at {chunk.bits_per_pixel}bpp needs {chunk.bytes_per_glyph}",
                value=bytes_per_glyph,
                position=offset,
            )

        start = offset + cls.header_size
        end = start + count * bytes_per_glyph
        if end > len(raw):
            raise FormatError("CGLP chunk is truncated", position=offset)
        for i in range(count):
            data = bytes(raw[start + i * bytes_per_glyph:start + (i + 1) * bytes_per_glyph])
            chunk.glyphs.append(unpack_glyph(data, width, height, chunk.bits_per_pixel))
        return chunk

    def write(self) -> bytes:
        out = bytearray(self.header_size)
        ByteCodec.write_u32(out, 0x00, CGLP_SIGNATURE)
        ByteCodec.write_u32(out, 0x04, self.size)
        ByteCodec.write_u8(out, 0x08, self.width)
        ByteCodec.write_u8(out, 0x09, self.height)
        ByteCodec.write_u16(out, 0x0A, self.bytes_per_glyph)
        ByteCodec.write_u8(out, 0x0C, self.unknown1)
        ByteCodec.write_u8(out, 0x0D, self.unknown2)
        ByteCodec.write_u16(out, 0x0E, self.bits_per_pixel)
        for glyph in self.glyphs:
            out += pack_glyph(glyph, self.bits_per_pixel).ljust(self.bytes_per_glyph, b"\x00")
        return _pad(out, self.size)


@dataclass
class WidthChunk:
    """CWDH chunk: (x offset, width, advance) for each glyph index."""
    entries: List[Tuple[int, int, int]] = field(default_factory=list)
    unknown: int = 0

    header_size = 0x10

    @property
    def size(self) -> int:
        return _aligned(self.header_size + 3 * len(self.entries))

    @classmethod
    def read(cls, raw: Buffer, offset: int) -> "WidthChunk":
        _check_chunk(raw, offset, CWDH_SIGNATURE, "CWDH")
        first = ByteCodec.read_u16(raw, offset + 0x08)
        last = ByteCodec.read_u16(raw, offset + 0x0A)
        unknown = ByteCodec.read_i32(raw, offset + 0x0C)
        if unknown != 0:
            raise FormatError(f"Unrecognized CWDH value: {unknown}", value=unknown, position=offset)

        entries = []
        position = offset + cls.header_size
        for _ in range(1 + last - first):
            entries.append((
                ByteCodec.read_u8(raw, position),
                ByteCodec.read_u8(raw, position + 1),
                ByteCodec.read_u8(raw, position + 2),
            ))
            position += 3
        return cls(entries, unknown)

    def write(self) -> bytes:
        out = bytearray(self.header_size)
        ByteCodec.write_u32(out, 0x00, CWDH_SIGNATURE)
        ByteCodec.write_u32(out, 0x04, self.size)
        ByteCodec.write_u16(out, 0x08, 0)
        ByteCodec.write_u16(out, 0x0A, len(self.entries) - 1)
        ByteCodec.write_i32(out, 0x0C, self.unknown)
        for x_offset, width, next_offset in self.entries:
            out += bytes((x_offset, width, next_offset))
        return _pad(out, self.size)


@dataclass
class CharacterMapChunk:
    """CMAP chunk: a code -> glyph index mapping of one of three types.

    RANGE maps start..end onto consecutive indices from a base index, LIST
    stores one index per code from start to end (0xFFFF for unused codes)
    and MAP stores explicit (code, index) pairs.
    """
    map_type: CharacterMapType
    start_code: int = 0
    end_code: int = 0
    mappings: Dict[int, int] = field(default_factory=dict)
    unknown: int = 0
    next_offset: int = 0

    header_size = 0x14

    @property
    def size(self) -> int:
        if self.map_type == CharacterMapType.RANGE:
            return _aligned(self.header_size + 2)
        if self.map_type == CharacterMapType.LIST:
            return _aligned(self.header_size + 2 * len(self.mappings))
        return _aligned(self.header_size + 2 + 4 * len(self.mappings))

    @classmethod
    def read(cls, raw: Buffer, offset: int) -> "CharacterMapChunk":
        _check_chunk(raw, offset, CMAP_SIGNATURE, "CMAP")
        try:
            map_type = CharacterMapType(ByteCodec.read_u16(raw, offset + 0x0C))
        except ValueError:
            raise FormatError(
                "Unknown CMAP type", value=ByteCodec.read_u16(raw, offset + 0x0C), position=offset
            )
        next_offset = ByteCodec.read_i32(raw, offset + 0x10)
        chunk = cls(
            map_type=map_type,
            start_code=ByteCodec.read_u16(raw, offset + 0x08),
            end_code=ByteCodec.read_u16(raw, offset + 0x0A),
            unknown=ByteCodec.read_u16(raw, offset + 0x0E),
            next_offset=next_offset - SECTION_POINTER_BIAS if next_offset else 0,
        )

        body = offset + cls.header_size
        if map_type == CharacterMapType.RANGE:
            base = ByteCodec.read_u16(raw, body)
            for i, code in enumerate(range(chunk.start_code, chunk.end_code + 1)):
                chunk.mappings[code] = base + i
        elif map_type == CharacterMapType.LIST:
            for i, code in enumerate(range(chunk.start_code, chunk.end_code + 1)):
                chunk.mappings[code] = ByteCodec.read_u16(raw, body + 2 * i)
        else:
            count = ByteCodec.read_u16(raw, body)
            for i in range(count):
                code = ByteCodec.read_u16(raw, body + 2 + 4 * i)
                chunk.mappings[code] = ByteCodec.read_u16(raw, body + 4 + 4 * i)
        return chunk

    @classmethod
    def from_character_set(cls, character_set: "CharacterSet", indices: Dict[int, int]) -> "CharacterMapChunk":
        """Build the map for a character set given each code's glyph index."""
        codes = [character.code for character in character_set.characters]
        chunk = cls(character_set.map_type)
        if chunk.map_type == CharacterMapType.MAP:
            chunk.start_code, chunk.end_code = 0x0000, 0xFFFF
            chunk.mappings = {code: indices[code] for code in codes}
        elif codes:
            chunk.start_code, chunk.end_code = codes[0], codes[-1]
            if chunk.map_type == CharacterMapType.LIST:
                present = set(codes)
                chunk.mappings = {
                    code: indices[code] if code in present else BLANK_INDEX
                    for code in range(codes[0], codes[-1] + 1)
                }
            else:
                chunk.mappings = {code: indices[code] for code in codes}
        return chunk

    def write(self) -> bytes:
        out = bytearray(self.header_size)
        ByteCodec.write_u32(out, 0x00, CMAP_SIGNATURE)
        ByteCodec.write_u32(out, 0x04, self.size)
        ByteCodec.write_u16(out, 0x08, self.start_code)
        ByteCodec.write_u16(out, 0x0A, self.end_code)
        ByteCodec.write_u16(out, 0x0C, int(self.map_type))
        ByteCodec.write_u16(out, 0x0E, self.unknown)
        ByteCodec.write_i32(out, 0x10, self.next_offset + SECTION_POINTER_BIAS if self.next_offset else 0)

        if self.map_type == CharacterMapType.RANGE:
            out += ByteCodec.pack_u16(self.mappings.get(self.start_code, 0))
        elif self.map_type == CharacterMapType.LIST:
            for index in self.mappings.values():
                out += ByteCodec.pack_u16(index)
        else:
            out += ByteCodec.pack_u16(len(self.mappings))
            for code, index in self.mappings.items():
                out += ByteCodec.pack_u16(code)
                out += ByteCodec.pack_u16(index)
        return _pad(out, self.size)


@dataclass
class Character:
    """One glyph together with its metrics and character code."""
    code: int
    glyph: Glyph
    x_offset: int = 0
    width: int = 0
    next_offset: int = 0

    @property
    def height(self) -> int:
        return len(self.glyph)

    def resize(self, width: int, height: int) -> None:
        """Resize the glyph canvas, keeping the image anchored to the bottom-left."""
        shift = height - len(self.glyph)
        resized = [[0] * width for _ in range(height)]
        for y, row in enumerate(self.glyph):
            target = y + shift
            if 0 <= target < height:
                copied = row[:width]
                resized[target][:len(copied)] = copied
        self.glyph = resized


class CharacterSet:
    """Characters that share one CMAP chunk, kept sorted by code."""

    def __init__(self, map_type: CharacterMapType, characters: Optional[Sequence[Character]] = None):
        self.map_type = map_type
        self.characters: List[Character] = sorted(characters or [], key=lambda c: c.code)

    def add(self, character: Character) -> None:
        codes = [c.code for c in self.characters]
        self.characters.insert(bisect.bisect(codes, character.code), character)

    @classmethod
    def from_chunks(
        cls, cmap: CharacterMapChunk, widths: WidthChunk, glyphs: GlyphChunk
    ) -> "CharacterSet":
        characters = []
        for code, index in cmap.mappings.items():
            if index == BLANK_INDEX:
                continue
            if index >= len(glyphs.glyphs) or index >= len(widths.entries):
                raise FormatError(f"Character 0x{code:04X} maps to missing glyph {index}", value=index)
            x_offset, width, next_offset = widths.entries[index]
            glyph = [list(row) for row in glyphs.glyphs[index]]
            characters.append(Character(code, glyph, x_offset, width, next_offset))
        return cls(cmap.map_type, characters)


class NitroFont:
    """A complete NFTR font."""

    def __init__(self, header: NitroHeader, info: FontInfoChunk, glyphs: GlyphChunk, widths: WidthChunk):
        self.header = header
        self.info = info
        self.glyph_chunk = glyphs
        self.width_chunk = widths
        self.character_sets: List[CharacterSet] = []
        self.codes: List[int] = []
        self._by_code: Dict[int, Character] = {}

    @classmethod
    def load(cls, raw: Buffer) -> "NitroFont":
        """Parse an NFTR file.

        Args:
            raw: Complete file contents

        Returns:
            The loaded font

        Raises:
            FormatError: If a signature, size or map entry is invalid
        """
        header = NitroHeader.read(raw)
        info = FontInfoChunk.read(raw, HEADER_SIZE)
        widths = WidthChunk.read(raw, info.width_offset)
        glyphs = GlyphChunk.read(raw, info.glyph_offset, len(widths.entries))
        font = cls(header, info, glyphs, widths)

        offset = info.map_offset
        for _ in range(header.section_count - 3):
            cmap = CharacterMapChunk.read(raw, offset)
            font.character_sets.append(CharacterSet.from_chunks(cmap, widths, glyphs))
            offset = cmap.next_offset
        font._rebuild_indices()
        logger.debug(f"Loaded font with {len(font.codes)} characters in {len(font.character_sets)} maps")
        return font

    @property
    def characters(self) -> List[Character]:
        return [self._by_code[code] for code in self.codes]

    @property
    def width(self) -> int:
        chars = self.characters
        return len(chars[0].glyph[0]) if chars and chars[0].glyph else self.glyph_chunk.width

    @property
    def height(self) -> int:
        chars = self.characters
        return chars[0].height if chars else self.glyph_chunk.height

    def get_character(self, code: int) -> Optional[Character]:
        return self._by_code.get(code)

    def add_character_set(self, character_set: CharacterSet) -> None:
        """Append a character set, rejecting codes the font already has.

        Raises:
            ValueError: If any character code is already present
        """
        for character in character_set.characters:
            if character.code in self._by_code:
                raise ValueError(f"A character with code 0x{character.code:04X} already exists in the font")
        self.character_sets.append(character_set)
        self._rebuild_indices()

    def resize(self, width: int, height: int) -> None:
        for character in self.characters:
            character.resize(width, height)

    def create_blank_glyph(self) -> Glyph:
        return [[0] * self.width for _ in range(self.height)]

    def save(self) -> bytes:
        """Serialize the font with glyphs ordered by ascending character code."""
        characters = self.characters
        glyphs = GlyphChunk(
            width=self.width,
            height=self.height,
            bits_per_pixel=self.glyph_chunk.bits_per_pixel,
            glyphs=[c.glyph for c in characters],
            unknown1=self.glyph_chunk.unknown1,
            unknown2=self.glyph_chunk.unknown2,
        )
        widths = WidthChunk(
            entries=[(c.x_offset, c.width, c.next_offset) for c in characters],
            unknown=self.width_chunk.unknown,
        )
        indices = {code: index for index, code in enumerate(self.codes)}

        self.info.glyph_offset = HEADER_SIZE + FontInfoChunk.size
        self.info.width_offset = self.info.glyph_offset + glyphs.size
        self.info.map_offset = self.info.width_offset + widths.size

        maps = []
        offset = self.info.map_offset
        for character_set in self.character_sets:
            cmap = CharacterMapChunk.from_character_set(character_set, indices)
            offset += cmap.size
            cmap.next_offset = offset
            maps.append(cmap)
        if maps:
            maps[-1].next_offset = 0

        self.header.section_count = 3 + len(maps)
        self.header.file_size = offset
        self.glyph_chunk = glyphs
        self.width_chunk = widths

        out = bytearray(self.header.write())
        out += self.info.write()
        out += glyphs.write()
        out += widths.write()
        for cmap in maps:
            out += cmap.write()
        return bytes(out)

    def _rebuild_indices(self) -> None:
        self._by_code = {}
        for character_set in self.character_sets:
            for character in character_set.characters:
                self._by_code[character.code] = character
        self.codes = sorted(self._by_code)
