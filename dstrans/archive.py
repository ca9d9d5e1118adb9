"""
Archive pack/unpack for container-of-container files.

Archives treat their children as opaque byte blobs. Unpacking writes each
child to disk together with a YAML manifest; packing reads the manifest
back, since child identifiers and folder tables are not recoverable from
the children themselves.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Sequence, Tuple

import yaml

from .byte_codec import Buffer, ByteCodec
from .errors import FormatError

logger = logging.getLogger(__name__)

MANIFEST_SUFFIX = ".manifest.yaml"

KNOWN_SIGNATURES: Dict[int, str] = {
    0x4352414E: "NARC",
    0x4E414E52: "NANR",
    0x4E434552: "NCER",
    0x4E434752: "NCGR",
    0x4E434C52: "NCLR",
    0x4E465452: "NFTR",
    0x4E534352: "NSCR",
    0x4341784E: "NXAC",
    0x5844494E: "NIDX",
    0x43474E44: "DNGC",
    0x42504344: "DCPB",
    0x54534D44: "DMST",
}

MIN_SIGNATURE_SIZE = 4


def sniff_signature(data: Buffer) -> str:
    """Classify a child file by its first four bytes.

    Returns:
        A name from KNOWN_SIGNATURES, "DAT" for unknown data, or "EMPTY"
        when the data is too small to carry a signature
    """
    if len(data) < MIN_SIGNATURE_SIZE:
        return "EMPTY"
    return KNOWN_SIGNATURES.get(ByteCodec.read_u32(data, 0), "DAT")


@dataclass
class ArchiveEntry:
    """One child file's placement inside a parent archive."""
    identifier: int
    offset: int
    size: int
    data: bytes
    name: str = ""
    file_type: str = ""


def write_manifest(path: Path, manifest: Dict[str, Any]) -> None:
    with open(path, "w", encoding="utf-8") as f:
        yaml.safe_dump(manifest, f, sort_keys=False, allow_unicode=True)


def read_manifest(path: Path) -> Dict[str, Any]:
    """Load an archive manifest written during unpack.

    Raises:
        FileNotFoundError: If the archive was never unpacked
        FormatError: If the manifest is not a mapping
    """
    manifest_file = Path(path)
    if not manifest_file.exists():
        raise FileNotFoundError(f"Archive manifest not found: {path}")

    with open(manifest_file, "r", encoding="utf-8") as f:
        manifest = yaml.safe_load(f)
    if not isinstance(manifest, dict):
        raise FormatError("Archive manifest is not a mapping", file_name=str(path))
    return manifest


def manifest_path(directory: Path, stem: str) -> Path:
    return Path(directory) / f"{stem}{MANIFEST_SUFFIX}"


class DpkArchive:
    """Summon Night X pack file: a flat table of (id, offset, size) entries.

    The header and every child are padded to 16 bytes with 0xEE, and the
    stored size includes the child's padding.
    """

    name = "dpk"
    table_offset = 0x04
    entry_length = 0x0C
    alignment = 0x10
    padding_byte = 0xEE
    child_extension = ".dtx"
    text_threshold = 0x10

    def unpack(self, raw: Buffer) -> List[ArchiveEntry]:
        """Slice every child out of a pack file.

        Args:
            raw: Complete archive contents

        Returns:
            Entries in table order
        """
        count = ByteCodec.read_u32(raw, 0)
        entries = []
        for i in range(count):
            entry = self.table_offset + i * self.entry_length
            identifier = ByteCodec.read_u32(raw, entry)
            offset = ByteCodec.read_u32(raw, entry + 4)
            size = ByteCodec.read_u32(raw, entry + 8)
            entries.append(ArchiveEntry(identifier, offset, size, bytes(raw[offset:offset + size])))
        return entries

    def pack(self, children: Sequence[Tuple[int, bytes]]) -> bytes:
        """Build a pack file from (identifier, data) pairs in archive order."""
        table_length = self.table_offset + self.entry_length * len(children)
        header_length = ByteCodec.round_up(table_length, self.alignment)

        header = bytearray(ByteCodec.pack_u32(len(children)))
        body = bytearray()
        for identifier, data in children:
            padded = ByteCodec.round_up(len(data), self.alignment)
            header += ByteCodec.pack_u32(identifier)
            header += ByteCodec.pack_u32(header_length + len(body))
            header += ByteCodec.pack_u32(padded)
            body += data
            body += bytes([self.padding_byte]) * (padded - len(data))
        header += bytes([self.padding_byte]) * (header_length - table_length)
        return bytes(header + body)

    def child_name(self, stem: str, index: int, count: int) -> str:
        """File name of a child, e.g. ``conf.07.dtx`` for index 7 of 12."""
        return f"{stem}.{index:0{len(str(count))}d}{self.child_extension}"

    def is_text_candidate(self, entry: ArchiveEntry) -> bool:
        return entry.size > self.text_threshold

    def unpack_to_directory(self, raw: Buffer, directory: Path, stem: str) -> List[Path]:
        """Write every child and the manifest to a directory.

        Returns:
            Paths of the children large enough to hold text
        """
        directory = Path(directory)
        directory.mkdir(parents=True, exist_ok=True)
        entries = self.unpack(raw)

        text_children = []
        for index, entry in enumerate(entries):
            entry.name = self.child_name(stem, index, len(entries))
            child_path = directory / entry.name
            with open(child_path, "wb") as f:
                f.write(entry.data)
            if self.is_text_candidate(entry):
                text_children.append(child_path)
            else:
                logger.debug(f"Skipping {entry.name}: {entry.size} bytes is too small for text")

        write_manifest(manifest_path(directory, stem), {
            "format": self.name,
            "identifiers": [entry.identifier for entry in entries],
            "text_children": [path.name for path in text_children],
        })
        logger.info(f"Unpacked {len(entries)} files from {stem}")
        return text_children

    def pack_from_directory(self, directory: Path, stem: str) -> bytes:
        directory = Path(directory)
        manifest = read_manifest(manifest_path(directory, stem))
        identifiers = manifest.get("identifiers", [])

        children = []
        for index, identifier in enumerate(identifiers):
            with open(directory / self.child_name(stem, index, len(identifiers)), "rb") as f:
                children.append((identifier, f.read()))
        return self.pack(children)

    def text_children(self, directory: Path, stem: str) -> List[Path]:
        manifest = read_manifest(manifest_path(directory, stem))
        return [Path(directory) / name for name in manifest.get("text_children", [])]

    def nested_archives(self, directory: Path, stem: str) -> List[Path]:
        return []


@dataclass
class NexonFolder:
    name: str
    count: int


class NexonArchive:
    """MapleStory DS ``NxAC`` archive with a folder/file two-level table.

    Header layout: u16 folder count at 0x04, u16 file count at 0x06, file
    table offset at 0x08, data offset at 0x0C, folder sizes from 0x20 (one
    u16 every four bytes) followed by NUL-terminated folder names. File
    table entries hold a data-relative offset and the unpadded size.
    """

    name = "nexon"
    signature = 0x4341784E
    folder_table_offset = 0x20
    alignment = 4
    padding_byte = 0xFF

    extensions = {
        "NARC": ".NARC",
        "NANR": ".NANR",
        "NCER": ".NCER",
        "NCGR": ".NCGR",
        "NCLR": ".NCLR",
        "NFTR": ".NFTR",
        "NSCR": ".NSCR",
        "GMM": ".GMM.KOREAN",
        "DAT": ".dat",
        "EMPTY": "",
    }

    # Children that carry no signature but are known message tables
    gmm_keys = frozenset(
        f"IN/STAGE/GLOBAL:{index}"
        for index in (
            0, 1, 2, 28, 30, 32, 33, 34, 39, 41, 42, 44, 45, 47,
            50, 52, 53, 59, 60, 62, 64, 65, 67, 68, 71,
        )
    )

    def read_folders(self, raw: Buffer) -> List[NexonFolder]:
        folder_count = ByteCodec.read_u16(raw, 0x04)
        counts = [
            ByteCodec.read_u16(raw, self.folder_table_offset + 4 * i) for i in range(folder_count)
        ]

        folders = []
        offset = self.folder_table_offset + 4 * folder_count
        for count in counts:
            length = ByteCodec.read_cstring_length(raw, offset)
            name = bytes(raw[offset:offset + length]).decode("ascii")
            folders.append(NexonFolder(name, count))
            offset += length + 1
        return folders

    def classify(self, data: bytes, folder: str, index: int) -> str:
        file_type = sniff_signature(data)
        if file_type not in self.extensions:
            file_type = "DAT"
        if file_type == "DAT" and f"{folder}:{index}" in self.gmm_keys:
            file_type = "GMM"
        return file_type

    def child_name(self, folder: str, index: int, file_type: str) -> str:
        return f"{folder}/{index}{self.extensions.get(file_type, '.dat')}"

    def unpack(self, raw: Buffer, file_name: str = "") -> List[ArchiveEntry]:
        """Slice every child out of an archive and classify it.

        Raises:
            FormatError: On a signature mismatch or a file table that does
                not fit the folder table
        """
        signature = ByteCodec.read_u32(raw, 0)
        if signature != self.signature:
            raise FormatError("Not a Nexon archive", file_name=file_name, value=signature)

        file_count = ByteCodec.read_u16(raw, 0x06)
        file_table = ByteCodec.read_u32(raw, 0x08)
        data_offset = ByteCodec.read_u32(raw, 0x0C)
        folders = self.read_folders(raw)
        if sum(folder.count for folder in folders) < file_count:
            raise FormatError(
                f"Folder table lists fewer than {file_count} files", file_name=file_name, value=file_count
            )

        entries = []
        for i, (folder, index) in enumerate(self._iter_slots(folders, file_count)):
            offset = data_offset + ByteCodec.read_u32(raw, file_table + 8 * i)
            size = ByteCodec.read_u32(raw, file_table + 8 * i + 4)
            data = bytes(raw[offset:offset + size])
            file_type = self.classify(data, folder.name, index)
            entries.append(ArchiveEntry(
                identifier=i,
                offset=offset,
                size=size,
                data=data,
                name=self.child_name(folder.name, index, file_type),
                file_type=file_type,
            ))
        return entries

    @staticmethod
    def _iter_slots(folders: List[NexonFolder], file_count: int):
        """Yield (folder, index within folder) for each file in table order."""
        emitted = 0
        for folder in folders:
            for index in range(folder.count):
                if emitted == file_count:
                    return
                yield folder, index
                emitted += 1

    def pack(self, header: bytes, children: Sequence[bytes]) -> bytes:
        """Rebuild an archive from its preserved header and child data.

        Args:
            header: Original bytes up to the data offset
            children: Child contents in file table order
        """
        out = bytearray(header)
        file_table = ByteCodec.read_u32(out, 0x08)
        self._check_children(len(children), ByteCodec.read_u16(out, 0x06))

        body = bytearray()
        for i, data in enumerate(children):
            ByteCodec.write_u32(out, file_table + 8 * i, len(body))
            ByteCodec.write_u32(out, file_table + 8 * i + 4, len(data))
            body += data
            body += bytes([self.padding_byte]) * ByteCodec.pad_length(len(data), self.alignment)
        return bytes(out + body)

    @staticmethod
    def _check_children(actual: int, expected: int) -> None:
        if actual != expected:
            raise FormatError(f"Archive expects {expected} files, got {actual}", value=actual)

    def unpack_to_directory(self, raw: Buffer, directory: Path, stem: str) -> List[Path]:
        """Write every child and the manifest to a directory.

        Returns:
            Paths of the GMM message tables found in the archive
        """
        directory = Path(directory)
        entries = self.unpack(raw, stem)
        data_offset = ByteCodec.read_u32(raw, 0x0C)

        text_children = []
        for entry in entries:
            child_path = directory / stem / entry.name
            child_path.parent.mkdir(parents=True, exist_ok=True)
            with open(child_path, "wb") as f:
                f.write(entry.data)
            if entry.file_type == "GMM":
                text_children.append(child_path)

        directory.mkdir(parents=True, exist_ok=True)
        write_manifest(manifest_path(directory, stem), {
            "format": self.name,
            "header": ByteCodec.bytes_to_hex(raw, 0, data_offset),
            "folders": [{"name": f.name, "count": f.count} for f in self.read_folders(raw)],
            "files": [{"name": e.name, "type": e.file_type} for e in entries],
        })
        logger.info(f"Unpacked {len(entries)} files from {stem} ({len(text_children)} message tables)")
        return text_children

    def pack_from_directory(self, directory: Path, stem: str) -> bytes:
        directory = Path(directory)
        manifest = read_manifest(manifest_path(directory, stem))
        header = ByteCodec.hex_to_bytes(manifest["header"])

        children = []
        for entry in manifest.get("files", []):
            with open(directory / stem / entry["name"], "rb") as f:
                children.append(f.read())
        return self.pack(header, children)

    def text_children(self, directory: Path, stem: str) -> List[Path]:
        manifest = read_manifest(manifest_path(directory, stem))
        return [
            Path(directory) / stem / entry["name"]
            for entry in manifest.get("files", [])
            if entry.get("type") == "GMM"
        ]

    def nested_archives(self, directory: Path, stem: str) -> List[Path]:
        """Paths of the NARC children, which hold further message tables."""
        manifest = read_manifest(manifest_path(directory, stem))
        return [
            Path(directory) / stem / entry["name"]
            for entry in manifest.get("files", [])
            if entry.get("type") == "NARC"
        ]


ARCHIVES = {
    DpkArchive.name: DpkArchive,
    NexonArchive.name: NexonArchive,
}


def get_archive(name: str):
    """Create a registered archive codec by name.

    Raises:
        ValueError: If no archive format has that name
    """
    try:
        archive_class = ARCHIVES[name.lower()]
    except KeyError:
        raise ValueError(f"Unknown archive format: {name}")
    return archive_class()
