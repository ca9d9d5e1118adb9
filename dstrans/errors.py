"""
Error types raised by the codec layer.

Both errors subclass the builtin exception a caller would expect, so code
that already handles ``ValueError``/``IndexError`` keeps working.
"""

from typing import Any, Optional


class FormatError(ValueError):
    """Raised when file or text content does not match the expected format."""

    def __init__(
        self,
        message: str,
        file_name: str = "",
        value: Any = None,
        position: Optional[int] = None,
        partial_text: Optional[str] = None,
    ):
        self.message = message
        self.file_name = file_name
        self.value = value
        self.position = position
        self.partial_text = partial_text
        super().__init__(self._render())

    def _render(self) -> str:
        parts = [self.message]
        if self.file_name:
            parts.append(f'in "{self.file_name}"')
        if self.position is not None:
            parts.append(f"at 0x{self.position:X}")
        text = " ".join(parts)
        if self.partial_text is not None:
            text += f" (text so far: {self.partial_text!r})"
        return text

    def with_file(self, file_name: str) -> "FormatError":
        """Return a copy of this error tagged with a file name."""
        return FormatError(
            self.message,
            file_name=file_name,
            value=self.value,
            position=self.position,
            partial_text=self.partial_text,
        )


class OutOfRangeError(IndexError):
    """Raised when a read or write falls outside a buffer."""

    def __init__(self, offset: int, width: int, size: int):
        self.offset = offset
        self.width = width
        self.size = size
        super().__init__(
            f"Access of {width} byte(s) at 0x{offset:X} exceeds buffer size 0x{size:X}"
        )
