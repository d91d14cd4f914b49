"""Random-access byte readers over memory and compressed content."""
from __future__ import annotations

import lzma
import zlib
from abc import ABC, abstractmethod
from collections.abc import Iterator
from functools import cached_property

_CHUNK = 256


class ReaderError(Exception):
    """Raised when content cannot be read or decoded."""


class Reader(ABC):
    """A sized source of bytes that can be read at any offset."""

    name: str = "reader"

    @property
    @abstractmethod
    def size(self) -> int:
        """Number of bytes available."""

    @abstractmethod
    def _read(self, offset: int, size: int) -> bytes:
        """Read bytes; the range is already clipped to the reader's size."""

    def __str__(self) -> str:
        return self.name

    def read(self, offset: int, size: int) -> bytes:
        """Read up to ``size`` bytes at ``offset``; shorter at the end of data."""
        if offset < 0 or size < 0:
            raise ReaderError(f"{self}: invalid read of {size} bytes at {offset}")
        available = self.size - offset
        if available <= 0 or size == 0:
            return b""
        return self._read(offset, min(size, available))

    def read_exact(self, offset: int, size: int) -> bytes:
        """Read exactly ``size`` bytes at ``offset`` or raise ReaderError."""
        data = self.read(offset, size)
        if len(data) != size:
            raise ReaderError(
                f"{self}: short read at offset {offset}: "
                f"wanted {size} bytes, got {len(data)}"
            )
        return data

    def _bytes_from(self, offset: int) -> Iterator[int]:
        while chunk := self.read(offset, _CHUNK):
            yield from chunk
            offset += len(chunk)

    def read_cstring(self, offset: int) -> bytes:
        """Read the raw bytes of a NUL-terminated string, without the NUL."""
        parts: list[bytes] = []
        pos = offset
        while chunk := self.read(pos, _CHUNK):
            nul = chunk.find(b"\0")
            if nul != -1:
                parts.append(chunk[:nul])
                return b"".join(parts)
            parts.append(chunk)
            pos += len(chunk)
        if pos == offset:
            raise ReaderError(f"{self}: no string at offset {offset}")
        return b"".join(parts)

    def read_string(self, offset: int) -> str:
        """Read a NUL-terminated string at ``offset``."""
        return self.read_cstring(offset).decode("utf-8", "surrogateescape")

    def read_uleb128(self, offset: int) -> tuple[int, int]:
        """Decode an unsigned LEB128 value; returns (value, encoded length)."""
        value = shift = 0
        for count, byte in enumerate(self._bytes_from(offset), 1):
            value |= (byte & 0x7F) << shift
            shift += 7
            if not byte & 0x80:
                return value, count
        raise ReaderError(f"{self}: truncated ULEB128 at offset {offset}")

    def read_sleb128(self, offset: int) -> tuple[int, int]:
        """Decode a signed LEB128 value; returns (value, encoded length)."""
        value = shift = 0
        for count, byte in enumerate(self._bytes_from(offset), 1):
            value |= (byte & 0x7F) << shift
            shift += 7
            if not byte & 0x80:
                if byte & 0x40:
                    value -= 1 << shift
                return value, count
        raise ReaderError(f"{self}: truncated SLEB128 at offset {offset}")

    def view(self, name: str, offset: int, size: int | None = None) -> Reader:
        """Return a reader over part of this one, starting at ``offset``."""
        if size is None:
            size = max(self.size - offset, 0)
        return _ReaderView(self, name, offset, size)


class _ReaderView(Reader):
    def __init__(self, upstream: Reader, name: str, offset: int, size: int) -> None:
        self.upstream = upstream
        self.name = name
        self.start = offset
        self._size = size

    @property
    def size(self) -> int:
        return self._size

    def _read(self, offset: int, size: int) -> bytes:
        return self.upstream.read(self.start + offset, size)


class MemReader(Reader):
    """A reader over bytes held in memory."""

    def __init__(self, name: str, data: bytes) -> None:
        self.name = name
        self.data = bytes(data)

    @property
    def size(self) -> int:
        return len(self.data)

    def _read(self, offset: int, size: int) -> bytes:
        return self.data[offset:offset + size]


class NullReader(Reader):
    """A reader with no content."""

    name = "null"

    @property
    def size(self) -> int:
        return 0

    def _read(self, offset: int, size: int) -> bytes:
        return b""


class InflateReader(MemReader):
    """The zlib-inflated content of another reader, of a known size."""

    def __init__(self, inflated_size: int, upstream: Reader) -> None:
        compressed = upstream.read(0, upstream.size)
        decompressor = zlib.decompressobj(15)
        try:
            inflated = decompressor.decompress(compressed, inflated_size + 1)
        except zlib.error as exc:
            raise ReaderError("inflate failed") from exc
        if len(inflated) > inflated_size or not decompressor.eof:
            raise ReaderError("inflate failed")
        super().__init__(
            f"inflated content from {upstream}",
            inflated.ljust(inflated_size, b"\0"),
        )


class LzmaReader(Reader):
    """The LZMA/XZ-decoded content of another reader, decoded on first use."""

    def __init__(self, upstream: Reader) -> None:
        self.upstream = upstream
        self.name = f"lzma compressed content from {upstream}"

    @cached_property
    def _content(self) -> bytes:
        raw = self.upstream.read(0, self.upstream.size)
        try:
            return lzma.decompress(raw, format=lzma.FORMAT_AUTO)
        except lzma.LZMAError as exc:
            raise ReaderError(f"{self}: cannot decode LZMA data: {exc}") from exc

    @property
    def size(self) -> int:
        return len(self._content)

    def _read(self, offset: int, size: int) -> bytes:
        return self._content[offset:offset + size]