"""
Offset-aware binary cursor shared by the RSZ block and its containers.

A cursor reads and writes a shared bytearray. Positions are relative to the
cursor's base, so a child cursor made with with_base() sees an embedded
block as if it started at zero while writing into the parent's buffer.
"""

import struct
from contextlib import contextmanager
from typing import Any, List, Optional, Tuple, Union

from file_handlers.rsz.rsz_errors import IOBoundaryError


def align(offset: int, alignment: int = 16) -> int:
    r = offset % alignment
    return offset if r == 0 else offset + (alignment - r)


class BinaryCursor:

    def __init__(self, data: Union[bytes, bytearray, None] = None, base: int = 0, size: Optional[int] = None):
        if data is None:
            data = bytearray()
        self.data = bytearray(data) if isinstance(data, (bytes, memoryview)) else data
        self.base = base
        self.size = size
        self.position = 0
        self._string_table: List[Tuple[int, str, str]] = []
        self._strings_flushed = False

    @property
    def tell(self) -> int:
        """Current position relative to the base."""
        return self.position

    @property
    def limit(self) -> int:
        """Readable length relative to the base."""
        available = len(self.data) - self.base
        if self.size is not None:
            return min(self.size, available)
        return available

    def seek(self, pos: int):
        if pos < 0:
            raise IOBoundaryError(f"Cannot seek to negative position: {pos}")
        self.position = pos

    @contextmanager
    def seek_temp(self, pos: int):
        saved = self.position
        try:
            self.seek(pos)
            yield
        finally:
            self.position = saved

    def skip(self, count: int):
        self.position += count

    def align(self, alignment: int):
        self.position = align(self.position, alignment)

    def align_write(self, alignment: int):
        padding = (alignment - (self.position % alignment)) % alignment
        if padding:
            self.write_bytes(b"\x00" * padding)

    def with_base(self, offset: int, size: Optional[int] = None) -> "BinaryCursor":
        """Child cursor over the same buffer, anchored at ``offset`` (relative to this cursor)."""
        return BinaryCursor(self.data, self.base + offset, size)

    # raw access

    def read_bytes(self, count: int) -> bytes:
        if count < 0:
            raise IOBoundaryError(f"Negative read of {count} bytes at 0x{self.position:X}")
        available = self.limit - self.position
        if available < count:
            raise IOBoundaryError(
                f"Attempted to read {count} bytes but only {max(available, 0)} bytes available at 0x{self.position:X}")
        start = self.base + self.position
        self.position += count
        return bytes(self.data[start:start + count])

    def write_bytes(self, data: bytes):
        start = self.base + self.position
        self._ensure_capacity(start + len(data))
        self.data[start:start + len(data)] = data
        self.position += len(data)

    def _ensure_capacity(self, required: int):
        if required > len(self.data):
            self.data.extend(b"\x00" * (required - len(self.data)))

    def read(self, fmt: str) -> Any:
        result = struct.unpack(fmt, self.read_bytes(struct.calcsize(fmt)))
        return result[0] if len(result) == 1 else result

    def write(self, fmt: str, *values):
        self.write_bytes(struct.pack(fmt, *values))

    def read_at(self, pos: int, fmt: str) -> Any:
        with self.seek_temp(pos):
            return self.read(fmt)

    def write_at(self, pos: int, fmt: str, *values):
        with self.seek_temp(pos):
            self.write(fmt, *values)

    def read_uint8(self) -> int:
        return self.read("<B")

    def read_int32(self) -> int:
        return self.read("<i")

    def read_uint32(self) -> int:
        return self.read("<I")

    def read_uint64(self) -> int:
        return self.read("<Q")

    def write_uint32(self, value: int):
        self.write("<I", value)

    def write_uint64(self, value: int):
        self.write("<Q", value)

    # strings

    def read_wstring_at(self, offset: int) -> str:
        """Null-terminated UTF-16LE string at ``offset``; the position is left untouched."""
        end = offset
        limit = self.limit
        while True:
            if end + 2 > limit:
                raise IOBoundaryError(f"Unterminated wide string at 0x{offset:X}")
            lo = self.data[self.base + end]
            hi = self.data[self.base + end + 1]
            if lo == 0 and hi == 0:
                break
            end += 2
        raw = bytes(self.data[self.base + offset:self.base + end])
        return raw.decode("utf-16-le", errors="surrogatepass")

    def write_wstring(self, value: str):
        self.write_bytes(value.encode("utf-16-le", errors="surrogatepass") + b"\x00\x00")

    def defer_string(self, value: str, fmt: str = "<Q") -> int:
        """Write a zero offset placeholder for ``value``; flush_strings() fills it in."""
        placeholder = self.position
        self.write(fmt, 0)
        self._string_table.append((placeholder, fmt, value))
        self._strings_flushed = False
        return placeholder

    def flush_strings(self):
        """Emit every deferred string in placeholder order and patch the placeholders."""
        if not self._string_table and self._strings_flushed:
            raise RuntimeError("flush_strings() called again with no pending strings")
        for placeholder, fmt, value in sorted(self._string_table, key=lambda entry: entry[0]):
            self.write_at(placeholder, fmt, self.position)
            self.write_wstring(value)
        self._string_table.clear()
        self._strings_flushed = True

    @property
    def pending_strings(self) -> int:
        return len(self._string_table)

    def get_bytes(self) -> bytes:
        """Everything written through this cursor, from its base up to the current position."""
        return bytes(self.data[self.base:self.base + self.position])
