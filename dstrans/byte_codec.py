"""
Low-level helpers for reading and writing binary game files.

Provides little-endian integer access, hex conversion and alignment math
shared by every container and archive format.
"""

import struct
from typing import List, Optional, Union

from .errors import OutOfRangeError

Buffer = Union[bytes, bytearray, memoryview]

_U8 = struct.Struct("<B")
_U16 = struct.Struct("<H")
_I16 = struct.Struct("<h")
_U32 = struct.Struct("<I")
_I32 = struct.Struct("<i")


class ByteCodec:
    """Utility functions for fixed-width binary access."""

    @staticmethod
    def _check(buffer: Buffer, offset: int, width: int) -> None:
        if offset < 0 or offset + width > len(buffer):
            raise OutOfRangeError(offset, width, len(buffer))

    @staticmethod
    def _read(fmt: struct.Struct, buffer: Buffer, offset: int) -> int:
        ByteCodec._check(buffer, offset, fmt.size)
        return fmt.unpack_from(buffer, offset)[0]

    @staticmethod
    def _write(fmt: struct.Struct, buffer: bytearray, offset: int, value: int) -> None:
        ByteCodec._check(buffer, offset, fmt.size)
        fmt.pack_into(buffer, offset, value)

    @staticmethod
    def read_u8(buffer: Buffer, offset: int) -> int:
        return ByteCodec._read(_U8, buffer, offset)

    @staticmethod
    def read_u16(buffer: Buffer, offset: int) -> int:
        """Read an unsigned 16-bit little-endian value.

        Args:
            buffer: Source data
            offset: Byte offset of the value

        Returns:
            The decoded integer

        Raises:
            OutOfRangeError: If the value extends past the buffer
        """
        return ByteCodec._read(_U16, buffer, offset)

    @staticmethod
    def read_i16(buffer: Buffer, offset: int) -> int:
        return ByteCodec._read(_I16, buffer, offset)

    @staticmethod
    def read_u32(buffer: Buffer, offset: int) -> int:
        """Read an unsigned 32-bit little-endian value.

        Signatures are compared as values returned by this function, so the
        ASCII tag "NIDX" stored on disk reads back as 0x5844494E.
        """
        return ByteCodec._read(_U32, buffer, offset)

    @staticmethod
    def read_i32(buffer: Buffer, offset: int) -> int:
        return ByteCodec._read(_I32, buffer, offset)

    @staticmethod
    def write_u8(buffer: bytearray, offset: int, value: int) -> None:
        ByteCodec._write(_U8, buffer, offset, value)

    @staticmethod
    def write_u16(buffer: bytearray, offset: int, value: int) -> None:
        """Write an unsigned 16-bit little-endian value in place.

        Args:
            buffer: Mutable destination data
            offset: Byte offset to write at
            value: Value to store

        Raises:
            OutOfRangeError: If the value would extend past the buffer
        """
        ByteCodec._write(_U16, buffer, offset, value)

    @staticmethod
    def write_i16(buffer: bytearray, offset: int, value: int) -> None:
        ByteCodec._write(_I16, buffer, offset, value)

    @staticmethod
    def write_u32(buffer: bytearray, offset: int, value: int) -> None:
        ByteCodec._write(_U32, buffer, offset, value)

    @staticmethod
    def write_i32(buffer: bytearray, offset: int, value: int) -> None:
        ByteCodec._write(_I32, buffer, offset, value)

    @staticmethod
    def pack_u16(value: int) -> bytes:
        return _U16.pack(value)

    @staticmethod
    def pack_u32(value: int) -> bytes:
        return _U32.pack(value)

    @staticmethod
    def pack_i32(value: int) -> bytes:
        return _I32.pack(value)

    @staticmethod
    def bytes_to_hex(buffer: Buffer, offset: int = 0, length: Optional[int] = None) -> str:
        """Convert a byte range to an uppercase hex string.

        Args:
            buffer: Source data
            offset: First byte to convert
            length: Number of bytes (None for the rest of the buffer)

        Returns:
            Uppercase hex digits, two per byte
        """
        end = len(buffer) if length is None else offset + length
        if offset < 0 or end > len(buffer):
            raise OutOfRangeError(offset, end - offset, len(buffer))
        return bytes(buffer[offset:end]).hex().upper()

    @staticmethod
    def hex_to_bytes(text: str) -> bytes:
        """Convert a hex string back to bytes.

        The input must be even-length, well-formed hex. Malformed input is a
        caller error and is not checked here.
        """
        return bytes.fromhex(text)

    @staticmethod
    def round_up(offset: int, alignment: int) -> int:
        """Round an offset up to the next multiple of alignment.

        Args:
            offset: Offset or size to align
            alignment: Boundary; any positive integer (4, 10 and 16 are used)

        Returns:
            The smallest multiple of alignment that is >= offset
        """
        return -(-offset // alignment) * alignment

    @staticmethod
    def pad_length(offset: int, boundary: int) -> int:
        """Number of bytes needed to advance offset to the next boundary."""
        return ByteCodec.round_up(offset, boundary) - offset

    @staticmethod
    def read_cstring_length(buffer: Buffer, offset: int, limit: Optional[int] = None) -> int:
        """Count bytes from offset up to (not including) the next NUL.

        Args:
            buffer: Source data
            offset: Start of the string
            limit: Maximum number of bytes to scan

        Returns:
            Length of the string in bytes
        """
        end = len(buffer) if limit is None else min(len(buffer), offset + limit)
        i = offset
        while i < end and buffer[i] != 0x00:
            i += 1
        return i - offset

    @staticmethod
    def read_pointer_table(
        buffer: Buffer, offset: int, count: int, stride: int = 4
    ) -> List[int]:
        """Read a table of u32 pointers.

        Args:
            buffer: Source data
            offset: Address of the first pointer
            count: Number of pointers
            stride: Distance between successive pointers

        Returns:
            List of pointer values in table order
        """
        return [ByteCodec.read_u32(buffer, offset + i * stride) for i in range(count)]
