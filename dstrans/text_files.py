"""
Editable text file export and import.

Strings are written one per line. Sectioned tables put a separator line
before each section:

    ====================[0]====================

The separator cannot appear inside a string; finding it where a string is
expected means the translator added or removed a line.
"""

import logging
from pathlib import Path
from typing import List, Sequence

from .container import ContainerDocument
from .errors import FormatError

logger = logging.getLogger(__name__)

DEFAULT_ENCODING = "utf-16"
SEPARATOR_MARK = "=========="
LINE_ENDING = "\r\n"


def section_separator(index: int) -> str:
    return f"{SEPARATOR_MARK * 2}[{index}]{SEPARATOR_MARK * 2}"


def _strip_line_ending(line: str) -> str:
    if line.endswith("\r\n"):
        return line[:-2]
    if line.endswith("\n") or line.endswith("\r"):
        return line[:-1]
    return line


class _LineReader:
    """Sequential line access with a position for error messages."""

    def __init__(self, path: Path, encoding: str):
        self.path = Path(path)
        with open(self.path, "r", encoding=encoding, newline="") as f:
            self.lines = [_strip_line_ending(line) for line in f]
        self.position = 0

    def next_line(self) -> str:
        if self.position >= len(self.lines):
            raise FormatError(
                f"Text file ended after {len(self.lines)} lines; more strings were expected",
                file_name=str(self.path),
            )
        line = self.lines[self.position]
        self.position += 1
        return line

    def next_string(self) -> str:
        line = self.next_line()
        if SEPARATOR_MARK in line:
            raise self._line_break_error(line)
        return line

    def _line_break_error(self, line: str) -> FormatError:
        start = line.find("[") + 1
        end = line.find("]")
        caption = line[start:end] if 0 < start < end else ""
        if caption.isdigit():
            message = f"Invalid line break detected in section [{int(caption) - 1}]"
        else:
            message = f"Invalid line break detected above line: {line}"
        return FormatError(message, file_name=str(self.path), value=line, position=self.position)


def write_lines(path: Path, strings: Sequence[str], encoding: str = DEFAULT_ENCODING) -> None:
    """Write a flat string list, one string per line."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding=encoding, newline=LINE_ENDING) as f:
        for text in strings:
            f.write(text + "\n")


def read_lines(path: Path, count: int, encoding: str = DEFAULT_ENCODING) -> List[str]:
    """Read exactly ``count`` strings from a flat text file.

    Raises:
        FormatError: If the file has too few lines or contains a separator
    """
    reader = _LineReader(path, encoding)
    return [reader.next_string() for _ in range(count)]


def write_sections(path: Path, sections: Sequence[Sequence[str]], encoding: str = DEFAULT_ENCODING) -> None:
    """Write a sectioned string table with a separator before each section."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding=encoding, newline=LINE_ENDING) as f:
        for index, section in enumerate(sections):
            f.write(section_separator(index) + "\n")
            for text in section:
                f.write(text + "\n")


def read_sections(path: Path, shape: Sequence[int], encoding: str = DEFAULT_ENCODING) -> List[List[str]]:
    """Read a sectioned text file.

    Args:
        path: Text file written by write_sections
        shape: Number of strings expected in each section
        encoding: Text encoding of the file

    Returns:
        One list of strings per section

    Raises:
        FormatError: If a section has the wrong number of lines
    """
    reader = _LineReader(path, encoding)
    sections = []
    for count in shape:
        reader.next_line()
        sections.append([reader.next_string() for _ in range(count)])
    return sections


def export_document(document: ContainerDocument, path: Path, encoding: str = DEFAULT_ENCODING) -> int:
    """Write a loaded document's strings to a text file.

    Record tables are written one section per record section, with every
    record's string slots on consecutive lines.

    Returns:
        Number of strings written
    """
    fmt = document.format
    if fmt.is_record_table:
        write_sections(path, [_flatten_section(section) for section in document.strings], encoding)
    elif fmt.is_nested:
        write_sections(path, document.strings, encoding)
    else:
        write_lines(path, document.strings, encoding)
    count = document.string_count()
    logger.info(f"Exported {count} strings to {path}")
    return count


def import_document(document: ContainerDocument, path: Path, encoding: str = DEFAULT_ENCODING) -> int:
    """Replace a document's strings with the contents of a text file.

    The document is only modified once the whole file has been read.

    Returns:
        Number of strings imported
    """
    fmt = document.format
    if fmt.is_record_table:
        shape = [len(_flatten_section(section)) for section in document.strings]
        flat_sections = read_sections(path, shape, encoding)
        document.strings = [
            _regroup_section(section, flat)
            for section, flat in zip(document.strings, flat_sections)
        ]
    elif fmt.is_nested:
        document.strings = read_sections(path, [len(section) for section in document.strings], encoding)
    else:
        document.strings = read_lines(path, len(document.strings), encoding)
    count = document.string_count()
    logger.info(f"Imported {count} strings from {path}")
    return count


def _flatten_section(section: List[List[str]]) -> List[str]:
    return [text for record in section for text in record]


def _regroup_section(section: List[List[str]], flat: List[str]) -> List[List[str]]:
    grouped = []
    position = 0
    for record in section:
        grouped.append(flat[position:position + len(record)])
        position += len(record)
    return grouped
