"""Chunked copying between beam streams and local files."""

import asyncio
import sys
from typing import BinaryIO, Protocol

from config import CHUNK_SIZE


class Source(Protocol):
    async def read(self, n: int = -1) -> bytes: ...


class Sink(Protocol):
    async def write(self, data: bytes) -> None: ...


class LocalFile:
    """Async read/write over a blocking binary file object."""

    def __init__(self, fileobj: BinaryIO) -> None:
        self._file = fileobj

    async def read(self, n: int = -1) -> bytes:
        return await asyncio.to_thread(self._file.read, n)

    async def write(self, data: bytes) -> None:
        await asyncio.to_thread(self._file.write, data)

    async def flush(self) -> None:
        await asyncio.to_thread(self._file.flush)


async def open_stdin() -> Source:
    """
    Stdin as an async source.

    Pipes and terminals are read by the event loop itself so a pending read
    can be cancelled. Regular files cannot be watched by the loop; they are
    read in a worker thread instead.
    """
    loop = asyncio.get_running_loop()
    reader = asyncio.StreamReader(limit=CHUNK_SIZE)
    try:
        await loop.connect_read_pipe(
            lambda: asyncio.StreamReaderProtocol(reader), sys.stdin.buffer
        )
    except (OSError, ValueError):
        return LocalFile(sys.stdin.buffer)
    return reader


async def copy_stream(source: Source, sink: Sink, chunk_size: int = CHUNK_SIZE) -> int:
    """Copy until ``source`` is exhausted. Returns the number of bytes copied."""
    copied = 0
    while True:
        chunk = await source.read(chunk_size)
        if not chunk:
            return copied
        await sink.write(chunk)
        copied += len(chunk)
