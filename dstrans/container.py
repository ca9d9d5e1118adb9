"""
Generic string-table codec for DS container files.

``ContainerCodec`` loads a raw file into a ``ContainerDocument`` (decoded
strings plus whatever non-string bytes are needed to rebuild the file) and
saves an edited document back to bytes. The file layout is chosen by the
``ContainerFormat`` the codec is built with.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

from .byte_codec import Buffer, ByteCodec
from .encoding import TextTranscoder
from .errors import FormatError, OutOfRangeError
from .formats import ContainerFormat, Layout

logger = logging.getLogger(__name__)


@dataclass
class ContainerDocument:
    """Strings decoded from one container file.

    ``strings`` is a flat list, a list of sections, or (record tables) a list
    of sections of records of string slots. Its shape must not change between
    load and save; only the text may be edited.
    """
    format: ContainerFormat
    strings: list
    retained: Dict[str, Any] = field(default_factory=dict)
    file_name: str = ""

    def string_count(self) -> int:
        """Total number of strings at every nesting level."""
        return len(self.flat_strings())

    def flat_strings(self) -> List[str]:
        """All strings in table order, ignoring sections."""
        return flatten(self.strings)


def flatten(items: list) -> List[str]:
    """Flatten a nested string table into a single list."""
    flat: List[str] = []
    for item in items:
        if isinstance(item, list):
            flat.extend(flatten(item))
        else:
            flat.append(item)
    return flat


Loaded = Tuple[list, Dict[str, Any]]


class ContainerCodec:
    """Load and save string tables for one container format."""

    def __init__(self, fmt: ContainerFormat, transcoder: TextTranscoder):
        """Initialize codec.

        Args:
            fmt: Description of the file layout
            transcoder: Text transcoder for the game the file belongs to
        """
        self.format = fmt
        self.transcoder = transcoder
        self._loaders: Dict[Layout, Callable[[Buffer], Loaded]] = {
            Layout.LENGTH_TABLE: self._load_length_table,
            Layout.SECTION_TABLE: self._load_section_table,
            Layout.PREFIXED_GROUPS: self._load_prefixed_groups,
            Layout.TERMINATED_TABLE: self._load_terminated_table,
            Layout.RECORD_TABLE: self._load_record_table,
            Layout.FIXED_SLOTS: self._load_fixed_slots,
            Layout.GMM_TABLE: self._load_gmm_table,
            Layout.LANGUAGE_DB: self._load_language_db,
        }
        self._savers: Dict[Layout, Callable[[list, Dict[str, Any]], bytes]] = {
            Layout.LENGTH_TABLE: self._save_length_table,
            Layout.SECTION_TABLE: self._save_section_table,
            Layout.PREFIXED_GROUPS: self._save_prefixed_groups,
            Layout.TERMINATED_TABLE: self._save_terminated_table,
            Layout.RECORD_TABLE: self._save_record_table,
            Layout.FIXED_SLOTS: self._save_fixed_slots,
            Layout.GMM_TABLE: self._save_gmm_table,
            Layout.LANGUAGE_DB: self._save_language_db,
        }

    def load(self, raw: Buffer, file_name: str = "") -> ContainerDocument:
        """Decode every string in a container file.

        Args:
            raw: Complete file contents
            file_name: Name used in error messages

        Returns:
            Document holding the strings and retained metadata

        Raises:
            FormatError: On a signature mismatch or undecodable text
            OutOfRangeError: If a table entry points outside the file
        """
        self._check_signature(raw, file_name)
        try:
            strings, retained = self._loaders[self.format.layout](raw)
        except FormatError as e:
            if e.file_name or not file_name:
                raise
            raise e.with_file(file_name) from e

        document = ContainerDocument(self.format, strings, retained, file_name)
        logger.debug(f"Loaded {document.string_count()} strings from {file_name or self.format.name}")
        return document

    def save(self, document: ContainerDocument) -> bytes:
        """Rebuild a container file from an edited document.

        The complete buffer is built in memory; nothing is written to disk.

        Raises:
            FormatError: If a string cannot be encoded, exceeds a format limit,
                or the table shape no longer matches the original file
        """
        try:
            return self._savers[self.format.layout](document.strings, document.retained)
        except FormatError as e:
            if e.file_name or not document.file_name:
                raise
            raise e.with_file(document.file_name) from e

    def load_file(self, path: Path) -> ContainerDocument:
        path = Path(path)
        with open(path, "rb") as f:
            raw = f.read()
        return self.load(raw, str(path))

    def save_file(self, document: ContainerDocument, path: Optional[Path] = None) -> int:
        """Save a document over its game file.

        Args:
            document: Document to save
            path: Destination; defaults to the file the document came from

        Returns:
            Number of bytes written
        """
        target = Path(path or document.file_name)
        data = self.save(document)
        with open(target, "wb") as f:
            f.write(data)
        logger.info(f"Saved {target} ({len(data)} bytes)")
        return len(data)

    def _check_signature(self, raw: Buffer, file_name: str) -> None:
        fmt = self.format
        if fmt.signature is None:
            return
        try:
            value = ByteCodec.read_u32(raw, fmt.signature_offset)
        except OutOfRangeError:
            value = None
        if value != fmt.signature:
            found = "missing" if value is None else f"0x{value:08X}"
            raise FormatError(
                f"Not {fmt.name.upper()} format (signature {found}, expected 0x{fmt.signature:08X})",
                file_name=file_name,
                value=value,
            )

    def _decode(self, raw: Buffer, offset: int, length: Optional[int] = None) -> str:
        if length is not None and offset + length > len(raw):
            raise OutOfRangeError(offset, length, len(raw))
        return self.transcoder.decode(raw, offset, length)

    def _encode(self, text: str) -> bytes:
        return self.transcoder.encode(text)

    @staticmethod
    def _check_count(kind: str, actual: int, expected: int) -> None:
        if actual != expected:
            raise FormatError(
                f"{kind} count changed from {expected} to {actual}; strings cannot be added or removed",
                value=actual,
            )

    # Flat (offset, length) table relative to the table start

    def _count_position(self, raw: Buffer) -> int:
        position = self.format.count_offset
        if self.format.size_field_offset is not None:
            position += ByteCodec.read_u32(raw, self.format.size_field_offset)
        return position

    def _load_length_table(self, raw: Buffer) -> Loaded:
        count_position = self._count_position(raw)
        count = ByteCodec.read_u32(raw, count_position)
        table = count_position + 4

        strings = []
        for offset, length in self._read_pairs(raw, table, count):
            strings.append(self._decode(raw, table + offset, length))
        return strings, {"header": bytes(raw[:count_position])}

    def _save_length_table(self, strings: list, retained: Dict[str, Any]) -> bytes:
        out = bytearray(retained["header"])
        out += ByteCodec.pack_u32(len(strings))
        out += self._build_pair_table(strings)
        return bytes(out)

    def _read_pairs(self, raw: Buffer, table: int, count: int) -> List[Tuple[int, int]]:
        return [
            (ByteCodec.read_u32(raw, table + 8 * i), ByteCodec.read_u32(raw, table + 8 * i + 4))
            for i in range(count)
        ]

    def _build_pair_table(self, strings: List[str]) -> bytes:
        """Pointer table of (offset, length) pairs followed by the string data."""
        table = bytearray()
        data = bytearray()
        base = 8 * len(strings)
        for text in strings:
            encoded = self._encode(text)
            table += ByteCodec.pack_u32(base + len(data))
            table += ByteCodec.pack_u32(len(encoded))
            data += encoded
        return bytes(table + data)

    # Sections, each with its own count and (offset, length) table

    def _load_section_table(self, raw: Buffer) -> Loaded:
        fmt = self.format
        section_count = ByteCodec.read_u32(raw, fmt.count_offset)
        sections = []
        for pointer in ByteCodec.read_pointer_table(raw, fmt.table_offset, section_count):
            count = ByteCodec.read_u32(raw, pointer)
            table = pointer + 4
            sections.append([
                self._decode(raw, table + offset, length)
                for offset, length in self._read_pairs(raw, table, count)
            ])
        return sections, {}

    def _save_section_table(self, sections: list, retained: Dict[str, Any]) -> bytes:
        fmt = self.format
        out = bytearray(fmt.table_offset + 4 * len(sections))
        if fmt.signature is not None:
            ByteCodec.write_u32(out, fmt.signature_offset, fmt.signature)
        ByteCodec.write_u32(out, fmt.count_offset, len(sections))

        for k, section in enumerate(sections):
            ByteCodec.write_u32(out, fmt.table_offset + 4 * k, len(out))
            out += ByteCodec.pack_u32(len(section))
            out += self._build_pair_table(section)
        return bytes(out)

    # Groups of u16-length-prefixed strings behind one pointer each

    @staticmethod
    def prefix_padding(stored_length: int) -> int:
        """Zero bytes written after a length-prefixed string.

        The stored length counts the encoded bytes plus an implicit
        terminator, so an odd stored length means an even byte count.
        """
        if stored_length == 0:
            return 0
        return 2 if stored_length % 2 == 1 else 1

    def _load_prefixed_groups(self, raw: Buffer) -> Loaded:
        fmt = self.format
        count = ByteCodec.read_u32(raw, fmt.count_offset)
        groups = []
        for offset in ByteCodec.read_pointer_table(raw, fmt.table_offset, count):
            group = []
            for _ in range(fmt.group_size):
                stored = ByteCodec.read_u16(raw, offset)
                group.append(self._decode(raw, offset + 2, stored - 1 if stored > 0 else 0))
                offset += 2 + stored + (1 if stored % 2 == 1 else 0)
            groups.append(group)

        if fmt.nested:
            return groups, {}
        return [text for group in groups for text in group], {}

    def _save_prefixed_groups(self, strings: list, retained: Dict[str, Any]) -> bytes:
        fmt = self.format
        if fmt.nested:
            groups = strings
        else:
            if len(strings) % fmt.group_size:
                raise FormatError(
                    f"String count {len(strings)} is not a multiple of {fmt.group_size}",
                    value=len(strings),
                )
            groups = [strings[i:i + fmt.group_size] for i in range(0, len(strings), fmt.group_size)]

        out = bytearray(fmt.table_offset + 4 * len(groups))
        if fmt.signature is not None:
            ByteCodec.write_u32(out, fmt.signature_offset, fmt.signature)
        ByteCodec.write_u32(out, fmt.count_offset, len(groups))

        for i, group in enumerate(groups):
            self._check_count(f"Group {i} string", len(group), fmt.group_size)
            ByteCodec.write_u32(out, fmt.table_offset + 4 * i, len(out))
            for text in group:
                encoded = self._encode(text)
                stored = len(encoded) + 1 if encoded else 0
                if stored > 0xFFFF:
                    raise FormatError(f'String too long for a 16-bit length: "{text}"', value=text)
                out += ByteCodec.pack_u16(stored)
                out += encoded
                out += bytes(self.prefix_padding(stored))
            if fmt.alignment:
                out += bytes(ByteCodec.pad_length(len(out), fmt.alignment))
        return bytes(out)

    # NUL-terminated strings behind a table of text-relative offsets

    def _load_terminated_table(self, raw: Buffer) -> Loaded:
        fmt = self.format
        record_count = ByteCodec.read_u32(raw, fmt.record_count_offset)
        count = ByteCodec.read_u32(raw, fmt.count_offset)
        table = fmt.table_offset + fmt.record_stride * record_count
        text_start = table + 4 * count

        strings = [
            self._decode(raw, text_start + offset)
            for offset in ByteCodec.read_pointer_table(raw, table, count)
        ]
        return strings, {"header": bytes(raw[:table])}

    def _save_terminated_table(self, strings: list, retained: Dict[str, Any]) -> bytes:
        header = bytearray(retained["header"])
        ByteCodec.write_u32(header, self.format.count_offset, len(strings))

        table = bytearray()
        data = bytearray()
        for text in strings:
            encoded = self._encode(text)
            table += ByteCodec.pack_u32(len(data))
            data += encoded
            # terminator, widened to two bytes after an even length
            data += b"\x00\x00" if len(encoded) % 2 == 0 else b"\x00"
        return bytes(header + table + data)

    # Fixed-size records with absolute pointer fields, grouped in sections

    def _load_record_table(self, raw: Buffer) -> Loaded:
        fmt = self.format
        section_count = ByteCodec.read_u32(raw, fmt.count_offset)
        if section_count > len(fmt.record_lengths):
            raise FormatError(
                f"File has {section_count} sections but only "
                f"{len(fmt.record_lengths)} record layouts are configured",
                value=section_count,
            )

        sections = []
        records = []
        for k in range(section_count):
            entry = fmt.table_offset + 8 * k
            count = ByteCodec.read_u32(raw, entry)
            table = ByteCodec.read_u32(raw, entry + 4)
            length = fmt.record_lengths[k]
            pointers = fmt.pointer_offsets[k]

            section_records = []
            section_strings = []
            for j in range(count):
                start = table + j * length
                if start + length > len(raw):
                    raise OutOfRangeError(start, length, len(raw))
                section_records.append(bytes(raw[start:start + length]))
                section_strings.append([
                    self._decode(raw, ByteCodec.read_u32(raw, start + p)) for p in pointers
                ])
            records.append(section_records)
            sections.append(section_strings)

        return sections, {"header": bytes(raw[:fmt.count_offset]), "records": records}

    def _save_record_table(self, sections: list, retained: Dict[str, Any]) -> bytes:
        fmt = self.format
        records = retained["records"]
        self._check_count("Section", len(sections), len(records))

        out = bytearray(retained["header"])
        out += ByteCodec.pack_u32(len(sections))
        out += bytes(8 * len(sections))

        for k, section in enumerate(sections):
            self._check_count(f"Section {k} record", len(section), len(records[k]))
            pointers = fmt.pointer_offsets[k]

            patched = []
            for j, slots in enumerate(section):
                self._check_count(f"Section {k} record {j} string", len(slots), len(pointers))
                record = bytearray(records[k][j])
                for pointer, text in zip(pointers, slots):
                    ByteCodec.write_u32(record, pointer, len(out))
                    out += self._encode(text)
                    out += b"\x00"
                patched.append(record)

            if fmt.alignment:
                out += bytes(ByteCodec.pad_length(len(out), fmt.alignment))
            entry = fmt.table_offset + 8 * k
            ByteCodec.write_u32(out, entry, len(section))
            ByteCodec.write_u32(out, entry + 4, len(out))
            for record in patched:
                out += record
        return bytes(out)

    # Strings stored in place inside fixed-size records

    def _slot_offsets(self, raw: Buffer, count: int) -> List[int]:
        fmt = self.format
        base = fmt.slot_base_bias + ByteCodec.read_u32(raw, fmt.slot_base_field)
        return [base + i * fmt.record_stride for i in range(count)]

    def _load_fixed_slots(self, raw: Buffer) -> Loaded:
        fmt = self.format
        count = ByteCodec.read_u32(raw, fmt.count_offset)
        strings = []
        for offset in self._slot_offsets(raw, count):
            length = ByteCodec.read_cstring_length(raw, offset, fmt.max_length)
            strings.append(self._decode(raw, offset, length))
        return strings, {"original": bytes(raw)}

    def _save_fixed_slots(self, strings: list, retained: Dict[str, Any]) -> bytes:
        fmt = self.format
        out = bytearray(retained["original"])
        count = ByteCodec.read_u32(out, fmt.count_offset)
        self._check_count("String", len(strings), count)

        for offset, text in zip(self._slot_offsets(out, count), strings):
            encoded = self._encode(text)
            if len(encoded) > fmt.max_length:
                raise FormatError(
                    f'String length {len(encoded)} exceeds maximum of {fmt.max_length}: "{text}"',
                    value=text,
                )
            if offset + fmt.max_length > len(out):
                raise OutOfRangeError(offset, fmt.max_length, len(out))
            out[offset:offset + fmt.max_length] = encoded.ljust(fmt.max_length, b"\x00")
        return bytes(out)

    # Message table with a u16-length-prefixed text section

    def _load_gmm_table(self, raw: Buffer) -> Loaded:
        fmt = self.format
        count = ByteCodec.read_u16(raw, fmt.count_offset)
        text_section = fmt.table_offset + fmt.record_stride * count

        strings = []
        for i in range(count):
            pointer = ByteCodec.read_u32(raw, fmt.table_offset + fmt.record_stride * i + fmt.pointer_field)
            start = text_section + pointer
            length = ByteCodec.read_u16(raw, start)
            strings.append(self._decode(raw, start + 2, length))
        return strings, {"header": bytes(raw[:text_section])}

    def _save_gmm_table(self, strings: list, retained: Dict[str, Any]) -> bytes:
        fmt = self.format
        header = bytearray(retained["header"])
        self._check_count("String", len(strings), ByteCodec.read_u16(header, fmt.count_offset))

        # The text section opens with its own total length
        text = bytearray(2)
        for i, value in enumerate(strings):
            encoded = self._encode(value)
            ByteCodec.write_u32(header, fmt.table_offset + fmt.record_stride * i + fmt.pointer_field, len(text))
            text += ByteCodec.pack_u16(len(encoded))
            text += encoded

        total = len(header) + len(text)
        if total > 0xFFFF:
            raise FormatError(f"File size 0x{total:X} exceeds the 16-bit length field", value=total)
        ByteCodec.write_u16(text, 0, len(text))
        ByteCodec.write_u16(header, 0, total)
        return bytes(header + text)

    # Block-structured language database

    def _load_language_db(self, raw: Buffer) -> Loaded:
        fmt = self.format
        if len(raw) < fmt.header_length:
            raise OutOfRangeError(0, fmt.header_length, len(raw))
        table_count = ByteCodec.read_i16(raw, 0)
        string_count = ByteCodec.read_i32(raw, fmt.count_offset)

        tables = []
        texts = []
        for i in range(table_count):
            entry = fmt.table_offset + 0x10 * i
            table_offset = ByteCodec.read_i32(raw, entry + 4)
            text_offset = ByteCodec.read_i32(raw, entry + 8)
            block_length = ByteCodec.read_i32(raw, entry + 12)
            tables.append(bytes(raw[table_offset:text_offset]))
            texts.append(bytes(raw[text_offset:table_offset + block_length]))

        strings = []
        empty = []
        if table_count > 0:
            # Only the first block holds text; the others carry blank tables
            text_offset = ByteCodec.read_i32(raw, fmt.table_offset + 8)
            for j in range(string_count):
                length = ByteCodec.read_i16(tables[0], fmt.record_stride * j + fmt.length_field)
                if length <= 0:
                    empty.append(j)
                    strings.append("")
                    continue
                strings.append(self._decode(raw, text_offset, length))
                text_offset += length

        retained = {
            "header": bytes(raw[:fmt.header_length]),
            "tables": tables,
            "texts": texts,
            "empty": empty,
        }
        return strings, retained

    def _save_language_db(self, strings: list, retained: Dict[str, Any]) -> bytes:
        fmt = self.format
        header = bytearray(retained["header"])
        tables = [bytearray(table) for table in retained["tables"]]
        texts = list(retained["texts"])
        empty = set(retained["empty"])
        self._check_count("String", len(strings), ByteCodec.read_i32(header, fmt.count_offset))

        if tables:
            text = bytearray()
            for j, value in enumerate(strings):
                if j in empty:
                    if value:
                        logger.warning(f"Ignoring text for empty record {j}: {value!r}")
                    continue
                encoded = self._encode(value)
                if len(encoded) > 0x7FFF:
                    raise FormatError(f'String too long for a 16-bit length: "{value}"', value=value)
                ByteCodec.write_i16(tables[0], fmt.record_stride * j + fmt.length_field, len(encoded))
                text += encoded
            text += bytes(ByteCodec.pad_length(len(text), fmt.alignment))
            texts[0] = bytes(text)

        offset = fmt.header_length
        body = bytearray()
        for i, (table, text) in enumerate(zip(tables, texts)):
            entry = fmt.table_offset + 0x10 * i
            ByteCodec.write_i32(header, entry + 4, offset)
            ByteCodec.write_i32(header, entry + 8, offset + len(table))
            ByteCodec.write_i32(header, entry + 12, len(table) + len(text))
            body += table
            body += text
            offset += len(table) + len(text)
        return bytes(header + body)
