"""
Byte streams handed out by the beam proxy.

Once the proxy has answered ``101 Switching Protocols`` the underlying TCP
connection is a plain bidirectional pipe to the remote app.
"""

import asyncio
import logging

logger = logging.getLogger(__name__)


class ByteStream:
    """An upgraded proxy connection. Owned by a single task at a time."""

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        peer: str = "",
    ) -> None:
        self._reader = reader
        self._writer = writer
        self.peer = peer
        self._closed = False

    async def read(self, n: int = -1) -> bytes:
        """Read up to ``n`` bytes. Returns ``b""`` at end of stream."""
        return await self._reader.read(n)

    async def write(self, data: bytes) -> None:
        self._writer.write(data)
        await self._writer.drain()

    async def close(self) -> None:
        """Half-close then close; the remote side sees end of file."""
        if self._closed:
            return
        self._closed = True
        try:
            if self._writer.can_write_eof():
                self._writer.write_eof()
        except OSError as e:
            logger.debug(f"write_eof failed for {self.peer}: {e}")
        self._writer.close()
        try:
            await self._writer.wait_closed()
        except OSError as e:
            logger.debug(f"Connection to {self.peer} closed uncleanly: {e}")

    async def __aenter__(self) -> "ByteStream":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()
