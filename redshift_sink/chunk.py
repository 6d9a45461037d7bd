"""In-memory chunk of buffered records.

The buffering framework owns batching and retries; this is the minimal
read side the delivery pipeline needs, plus ``append`` so callers (the
CLI, tests) can build chunks from the bytes ``RedshiftSink.format``
returns.

Structured chunks hold msgpack-framed entries, passthrough chunks hold
newline-terminated text.
"""

from __future__ import annotations

import io
from pathlib import Path
from typing import Any, BinaryIO, Iterator, Union

import msgpack

__all__ = ["Chunk"]

_COPY_BLOCK_SIZE = 64 * 1024


class Chunk:
    """An ordered, read-once batch of serialized records.

    Args:
        key: Per-chunk identifier. Usually the routing tag, or the path of
            the buffer file when the framework buffers to disk.
        data: Initial serialized content
    """

    def __init__(self, key: str, data: bytes = b""):
        self.key = key
        self._buffer = bytearray(data)

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "Chunk":
        """Load a chunk from a buffer file, keyed by its path."""
        path = Path(path)
        return cls(str(path), path.read_bytes())

    def append(self, data: bytes) -> None:
        self._buffer.extend(data)

    def __len__(self) -> int:
        return len(self._buffer)

    @property
    def empty(self) -> bool:
        return not self._buffer

    def read(self) -> bytes:
        return bytes(self._buffer)

    def open(self) -> BinaryIO:
        return io.BytesIO(self._buffer)

    def write_to(self, fileobj: BinaryIO) -> int:
        """Copy the raw chunk bytes to ``fileobj``; returns bytes copied."""
        written = 0
        with self.open() as src:
            while True:
                block = src.read(_COPY_BLOCK_SIZE)
                if not block:
                    break
                fileobj.write(block)
                written += len(block)
        return written

    def count_lines(self) -> int:
        """Number of newline-terminated lines in the raw chunk."""
        count = 0
        with self.open() as src:
            while True:
                block = src.read(_COPY_BLOCK_SIZE)
                if not block:
                    break
                count += block.count(b"\n")
        return count

    def msgpack_each(self) -> Iterator[Any]:
        """Iterate the msgpack-framed entries in chunk order."""
        with self.open() as src:
            unpacker = msgpack.Unpacker(src, raw=False)
            for entry in unpacker:
                yield entry

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(key={self.key!r}, bytes={len(self)})"
