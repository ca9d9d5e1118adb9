"""
Batch export/import driver.

A game profile (YAML) lists the container files and archives of one game.
``TranslationPipeline`` walks that list, exporting strings to editable text
files or importing them back into the game files. Each file is processed on
its own: a failure is logged and recorded in the file's result, and the
batch carries on with the next file.
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from .archive import ARCHIVES, get_archive, manifest_path
from .container import ContainerCodec
from .encoding import TRANSCODERS, TextTranscoder, get_transcoder
from .formats import ContainerFormat, get_format, load_formats
from .narc import NarcToolService
from .text_files import DEFAULT_ENCODING, export_document, import_document

logger = logging.getLogger(__name__)

CACHE_FILENAME = ".dstrans_cache.json"
NARC_FORMAT = "narc"
TEXT_SUFFIX = ".txt"


def nested_folder(archive_path: Path) -> Path:
    """Folder a nested NARC child unpacks into, named after the child."""
    return archive_path.with_suffix("")


def files_with_extension(folder: Path, extension: str) -> List[Path]:
    return sorted(p for p in folder.rglob("*") if p.is_file() and p.name.endswith(extension))


def require_keys(item: Any, kind: str, keys=("path", "format")) -> None:
    if not isinstance(item, dict):
        raise ValueError(f"{kind} entry must be a mapping, got {item!r}")
    missing = [key for key in keys if not item.get(key)]
    if missing:
        raise ValueError(f"{kind} entry {item!r} is missing {', '.join(missing)}")


@dataclass
class FileEntry:
    """One container file listed in a game profile."""
    path: str
    format: str
    transcoder: Optional[str] = None


@dataclass
class ArchiveEntrySpec:
    """One archive listed in a game profile."""
    path: str
    format: str
    child_format: Optional[str] = None


@dataclass
class FileResult:
    """Outcome of processing one file in a batch."""
    path: str
    success: bool
    error: Optional[str] = None
    strings: int = 0
    skipped: bool = False


@dataclass
class GameProfile:
    """Per-game settings loaded from a YAML profile."""
    name: str
    transcoder: str
    text_encoding: str = DEFAULT_ENCODING
    table: Optional[str] = None
    game_dir: str = "."
    text_dir: str = "text"
    cache_dir: str = "cache"
    narctool: str = "narctool"
    narc_timeout: float = 20.0
    files: List[FileEntry] = field(default_factory=list)
    archives: List[ArchiveEntrySpec] = field(default_factory=list)
    formats: Dict[str, ContainerFormat] = field(default_factory=dict)

    @classmethod
    def load(cls, profile_path: str) -> "GameProfile":
        """Load a game profile.

        Args:
            profile_path: Path to YAML profile

        Returns:
            Validated profile

        Raises:
            FileNotFoundError: If the profile does not exist
            ValueError: If an entry is incomplete or names an unknown format or transcoder
            yaml.YAMLError: If the profile is not valid YAML
        """
        profile_file = Path(profile_path)
        if not profile_file.exists():
            raise FileNotFoundError(f"Profile not found: {profile_path}")

        with open(profile_file, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValueError(f"Profile {profile_path} must be a mapping")
        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GameProfile":
        game = data.get('game') or {}
        paths = data.get('paths') or {}
        tools = data.get('tools') or {}

        profile = cls(
            name=game.get('name', 'Unknown'),
            transcoder=game.get('transcoder', ''),
            text_encoding=game.get('text_encoding', DEFAULT_ENCODING),
            table=game.get('table'),
            game_dir=paths.get('game_dir', '.'),
            text_dir=paths.get('text_dir', 'text'),
            cache_dir=paths.get('cache_dir', 'cache'),
            narctool=tools.get('narctool', 'narctool'),
            narc_timeout=float(tools.get('narc_timeout', 20.0)),
            formats=load_formats(data.get('formats')),
        )

        for item in data.get('files') or []:
            require_keys(item, "File")
            entry = FileEntry(
                path=item['path'],
                format=item['format'],
                transcoder=item.get('transcoder'),
            )
            profile.check_format(entry.format, entry.path)
            profile.check_transcoder(entry.transcoder or profile.transcoder, entry.path)
            profile.files.append(entry)

        for item in data.get('archives') or []:
            require_keys(item, "Archive")
            archive = ArchiveEntrySpec(
                path=item['path'],
                format=item['format'].lower(),
                child_format=item.get('child_format'),
            )
            if archive.format not in ARCHIVES and archive.format != NARC_FORMAT:
                raise ValueError(f"Archive '{archive.path}' has unknown format '{archive.format}'")
            if archive.child_format:
                profile.check_format(archive.child_format, archive.path)
            profile.archives.append(archive)

        profile.check_transcoder(profile.transcoder, "game")
        return profile

    def check_format(self, name: str, entry: str) -> None:
        try:
            get_format(name, self.formats)
        except ValueError as e:
            raise ValueError(f"Entry '{entry}': {e}")

    @staticmethod
    def check_transcoder(name: str, entry: str) -> None:
        if name not in TRANSCODERS:
            raise ValueError(f"Entry '{entry}': unknown transcoder '{name}'")


class TimestampCache:
    """Modification times of text files imported by the last run."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self.entries: Dict[str, float] = {}
        if self.path.exists():
            with open(self.path, "r", encoding="utf-8") as f:
                self.entries = json.load(f)

    def is_current(self, key: str, text_path: Path) -> bool:
        return self.entries.get(key) == text_path.stat().st_mtime

    def update(self, key: str, text_path: Path) -> None:
        self.entries[key] = text_path.stat().st_mtime

    def save(self) -> None:
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump(self.entries, f, indent=2, sort_keys=True)


class TranslationPipeline:
    """
    Runs export, import and archive steps over every file of a game profile.
    """

    def __init__(
        self,
        profile: GameProfile,
        root: str = ".",
        narc_service: Optional[NarcToolService] = None,
        use_cache: bool = True,
    ):
        """
        Initialize the pipeline.

        Args:
            profile: Game profile listing the files to process
            root: Project directory that profile paths are relative to
            narc_service: Helper used for NARC archives
            use_cache: Skip imports whose text file has not changed
        """
        self.profile = profile
        self.root = Path(root)
        self.narc_service = narc_service or NarcToolService(profile.narctool, profile.narc_timeout)
        self.use_cache = use_cache
        self._transcoders: Dict[str, TextTranscoder] = {}

    @property
    def game_dir(self) -> Path:
        return self.root / self.profile.game_dir

    @property
    def text_dir(self) -> Path:
        return self.root / self.profile.text_dir

    @property
    def cache_dir(self) -> Path:
        return self.root / self.profile.cache_dir

    def get_transcoder(self, name: Optional[str] = None) -> TextTranscoder:
        name = name or self.profile.transcoder
        if name not in self._transcoders:
            if self.profile.table and name == "table":
                self._transcoders[name] = get_transcoder(name, table_path=str(self.root / self.profile.table))
            else:
                self._transcoders[name] = get_transcoder(name)
        return self._transcoders[name]

    def get_codec(self, format_name: str, transcoder: Optional[str] = None) -> ContainerCodec:
        fmt = get_format(format_name, self.profile.formats)
        return ContainerCodec(fmt, self.get_transcoder(transcoder))

    def text_path(self, relative: str) -> Path:
        return self.text_dir / (relative + TEXT_SUFFIX)

    # Batch operations

    def export_all(self) -> List[FileResult]:
        """Export every listed file and every unpacked archive child to text."""
        results = []
        for entry, game_path, label in self._targets():
            results.append(self._run(label, self._export_file, entry, game_path, label))
        self._log_summary("Export", results)
        return results

    def import_all(self) -> List[FileResult]:
        """Import every changed text file and save the game files."""
        cache = TimestampCache(self.root / CACHE_FILENAME) if self.use_cache else None
        results = []
        for entry, game_path, label in self._targets():
            results.append(self._run(label, self._import_file, entry, game_path, label, cache))
        if cache is not None:
            cache.save()
        self._log_summary("Import", results)
        return results

    def unpack_archives(self) -> List[FileResult]:
        """Unpack every listed archive into the cache directory."""
        results = [
            self._run(archive.path, self._unpack_archive, archive)
            for archive in self.profile.archives
        ]
        self._log_summary("Unpack", results)
        return results

    def pack_archives(self) -> List[FileResult]:
        """Rebuild every listed archive from its unpacked children."""
        results = [
            self._run(archive.path, self._pack_archive, archive)
            for archive in self.profile.archives
        ]
        self._log_summary("Pack", results)
        return results

    # Per-file steps

    def _run(self, label: str, step, *args) -> FileResult:
        try:
            return step(*args)
        except Exception as e:
            logger.exception(f"Failed to process {label}")
            return FileResult(label, False, str(e))

    def _export_file(self, entry: FileEntry, game_path: Path, label: str) -> FileResult:
        codec = self.get_codec(entry.format, entry.transcoder)
        document = codec.load_file(game_path)
        count = export_document(document, self.text_path(label), self.profile.text_encoding)
        return FileResult(label, True, strings=count)

    def _import_file(
        self, entry: FileEntry, game_path: Path, label: str, cache: Optional[TimestampCache]
    ) -> FileResult:
        text_path = self.text_path(label)
        if not text_path.exists():
            raise FileNotFoundError(f"Text file not found: {text_path}")
        if cache is not None and cache.is_current(label, text_path):
            logger.debug(f"Skipping {label}: text file unchanged since last import")
            return FileResult(label, True, skipped=True)

        codec = self.get_codec(entry.format, entry.transcoder)
        document = codec.load_file(game_path)
        count = import_document(document, text_path, self.profile.text_encoding)
        codec.save_file(document, game_path)
        if cache is not None:
            cache.update(label, text_path)
        return FileResult(label, True, strings=count)

    def _unpack_archive(self, archive: ArchiveEntrySpec) -> FileResult:
        game_path = self.game_dir / archive.path
        stem = Path(archive.path).name
        if archive.format == NARC_FORMAT:
            outcome = self.narc_service.unpack(game_path, self.cache_dir / stem)
            return FileResult(archive.path, outcome.success, None if outcome.success else outcome.message)

        with open(game_path, "rb") as f:
            raw = f.read()
        codec = get_archive(archive.format)
        children = codec.unpack_to_directory(raw, self.cache_dir, stem)

        # NARC children are unpacked next to themselves: UI/0.NARC -> UI/0/
        for nested in codec.nested_archives(self.cache_dir, stem):
            outcome = self.narc_service.unpack(nested, nested_folder(nested))
            if not outcome.success:
                return FileResult(archive.path, False, f"{nested.name}: {outcome.message}")
        return FileResult(archive.path, True, strings=len(children))

    def _pack_archive(self, archive: ArchiveEntrySpec) -> FileResult:
        game_path = self.game_dir / archive.path
        stem = Path(archive.path).name
        if archive.format == NARC_FORMAT:
            outcome = self.narc_service.pack(self.cache_dir / stem, game_path)
            return FileResult(archive.path, outcome.success, None if outcome.success else outcome.message)

        codec = get_archive(archive.format)
        for nested in codec.nested_archives(self.cache_dir, stem):
            folder = nested_folder(nested)
            if not folder.is_dir():
                continue
            outcome = self.narc_service.pack(folder, nested)
            if not outcome.success:
                return FileResult(archive.path, False, f"{nested.name}: {outcome.message}")

        data = codec.pack_from_directory(self.cache_dir, stem)
        with open(game_path, "wb") as f:
            f.write(data)
        logger.info(f"Packed {game_path} ({len(data)} bytes)")
        return FileResult(archive.path, True)

    def _targets(self):
        """Yield (file entry, game file path, text label) for every text file."""
        for entry in self.profile.files:
            yield entry, self.game_dir / entry.path, entry.path

        for archive in self.profile.archives:
            if not archive.child_format:
                continue
            stem = Path(archive.path).name
            entry = FileEntry(archive.path, archive.child_format)
            for child in self._archive_children(archive, stem):
                label = f"{archive.path}/{child.relative_to(self.cache_dir).as_posix()}"
                yield entry, child, label

    def _archive_children(self, archive: ArchiveEntrySpec, stem: str) -> List[Path]:
        extension = get_format(archive.child_format, self.profile.formats).extension
        if archive.format == NARC_FORMAT:
            folder = self.cache_dir / stem
            if not folder.is_dir():
                logger.warning(f"Archive {archive.path} has not been unpacked; skipping its children")
                return []
            return files_with_extension(folder, extension)

        if not manifest_path(self.cache_dir, stem).exists():
            logger.warning(f"Archive {archive.path} has not been unpacked; skipping its children")
            return []
        codec = get_archive(archive.format)
        children = codec.text_children(self.cache_dir, stem)
        for nested in codec.nested_archives(self.cache_dir, stem):
            folder = nested_folder(nested)
            if folder.is_dir():
                children.extend(files_with_extension(folder, extension))
            else:
                logger.warning(f"Nested archive {nested.name} has not been unpacked; skipping its children")
        return children

    def _log_summary(self, operation: str, results: List[FileResult]) -> None:
        failed = [r for r in results if not r.success]
        skipped = [r for r in results if r.skipped]
        logger.info(
            f"{operation}: {len(results) - len(failed)} succeeded, {len(failed)} failed"
            + (f", {len(skipped)} unchanged" if skipped else "")
        )
