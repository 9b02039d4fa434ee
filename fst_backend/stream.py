#!/usr/bin/env python3

# Copyright (c) 2026 Stephen P Smith
# MIT License

"""
Binary Stream Helpers

Endian-aware cursor over a seekable binary stream, used by the FST reader and
writer. It provides:
- Absolute seeks with bounds checking.
- Fixed-width unsigned integer reads and writes in a chosen byte order.
- Raw byte and NUL-terminated string reads and writes.
- Zero padding up to an alignment boundary.
- Address bookmarks for recording the byte ranges of serialized regions.
"""

import io
import logging
from dataclasses import dataclass
from typing import BinaryIO

from .directory import ArgumentError, StreamError

logger = logging.getLogger(__name__)

CSTRING_CHUNK_SIZE = 64


@dataclass(frozen=True)
class AddressRange:
    """Half-open [start, end) byte span within a stream"""
    start: int = 0
    end: int = 0

    def __post_init__(self):
        if self.start < 0 or self.end < self.start:
            raise ArgumentError(f"Invalid address range 0x{self.start:x}:0x{self.end:x}")

    @property
    def size(self) -> int:
        return self.end - self.start

    def contains(self, address: int) -> bool:
        return self.start <= address < self.end

    def __str__(self):
        return f"0x{self.start:x}:0x{self.end:x}"


class BinaryCursor:
    """Reader/writer over a seekable binary stream

    All addresses are absolute positions in the underlying stream. The
    cursor does not own the stream; closing it is left to the caller.
    """

    def __init__(self, stream: BinaryIO, byteorder: str = 'big'):
        if byteorder not in ('big', 'little'):
            raise ArgumentError(f"Unknown byte order: {byteorder}")
        self.stream = stream
        self.byteorder = byteorder

    def tell(self) -> int:
        return self.stream.tell()

    def bookmark(self) -> int:
        """Record the current absolute position"""
        return self.stream.tell()

    def size(self) -> int:
        """Total length of the underlying stream in bytes"""
        position = self.stream.tell()
        try:
            return self.stream.seek(0, io.SEEK_END)
        finally:
            self.stream.seek(position)

    def seek(self, address: int):
        """
        Move to an absolute address.

        Raises:
            StreamError: If the address lies outside the stream.
        """
        size = self.size()
        if address < 0 or address > size:
            logger.error(f"Seek to 0x{address:x} outside stream (size 0x{size:x})")
            raise StreamError(f"Seek to 0x{address:x} outside stream of 0x{size:x} bytes")
        self.stream.seek(address)

    def read_bytes(self, count: int) -> bytes:
        """
        Read exactly count bytes.

        Raises:
            StreamError: If the stream ends before count bytes are read.
        """
        if count < 0:
            raise ArgumentError(f"Negative read length: {count}")
        position = self.stream.tell()
        try:
            data = self.stream.read(count)
        except OSError as e:
            raise StreamError(f"Read of {count} bytes at 0x{position:x} failed: {e}") from e
        if len(data) != count:
            logger.error(f"Short read at 0x{position:x}: expected {count} bytes, got {len(data)}")
            raise StreamError(f"Unexpected end of stream at 0x{position:x}: "
                              f"expected {count} bytes, got {len(data)}")
        return data

    def read_uint(self, width: int) -> int:
        return int.from_bytes(self.read_bytes(width), self.byteorder)

    def read_uint8(self) -> int:
        return self.read_uint(1)

    def read_uint24(self) -> int:
        return self.read_uint(3)

    def read_uint32(self) -> int:
        return self.read_uint(4)

    def read_cstring(self, encoding: str = 'ascii') -> str:
        """
        Read a NUL-terminated string and leave the cursor after the terminator.

        Raises:
            StreamError: If no terminator is found before the end of the stream.
            UnicodeDecodeError: If the bytes are not valid in the encoding.
        """
        start = self.stream.tell()
        buffer = bytearray()
        while True:
            try:
                chunk = self.stream.read(CSTRING_CHUNK_SIZE)
            except OSError as e:
                raise StreamError(f"Read of string at 0x{start:x} failed: {e}") from e
            if not chunk:
                raise StreamError(f"Unterminated string at 0x{start:x}")
            end = chunk.find(b'\x00')
            if end != -1:
                buffer.extend(chunk[:end])
                self.stream.seek(start + len(buffer) + 1)
                return buffer.decode(encoding)
            buffer.extend(chunk)

    def write_bytes(self, data: bytes):
        try:
            self.stream.write(data)
        except OSError as e:
            raise StreamError(f"Write of {len(data)} bytes at 0x{self.stream.tell():x} failed: {e}") from e

    def write_uint(self, value: int, width: int):
        try:
            self.write_bytes(value.to_bytes(width, self.byteorder))
        except OverflowError as e:
            raise ArgumentError(f"Value 0x{value:x} does not fit in {width} bytes") from e

    def write_uint8(self, value: int):
        self.write_uint(value, 1)

    def write_uint24(self, value: int):
        self.write_uint(value, 3)

    def write_uint32(self, value: int):
        self.write_uint(value, 4)

    def write_cstring(self, text: str, encoding: str = 'ascii'):
        self.write_bytes(text.encode(encoding) + b'\x00')

    def align(self, alignment: int) -> int:
        """
        Pad the output with zero bytes up to the next multiple of alignment.

        Returns:
            The number of padding bytes written.
        """
        if alignment < 1:
            raise ArgumentError(f"Alignment must be > 0, got {alignment}")
        remainder = self.stream.tell() % alignment
        if remainder == 0:
            return 0
        padding = alignment - remainder
        self.write_bytes(b'\x00' * padding)
        return padding
