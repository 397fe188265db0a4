"""
Receiving files through beam.

Each incoming socket is handed to exactly one sink: print it to stdout, save
it to a directory or forward it to an HTTP callback. Files are handled one at
a time; a failure only ever costs the file it happened on.
"""

import asyncio
import logging
import sys
import time
from collections.abc import AsyncIterator, Callable
from contextlib import aclosing
from pathlib import Path
from typing import BinaryIO

import httpx

from beam.client import BeamError
from beam.models import SocketTask
from beam.stream import ByteStream
from config import CHUNK_SIZE, CallbackSink, PrintSink, ReceiveConfig, ReceiveSink, SaveSink
from relay.context import AppContext
from relay.metadata import FileMeta
from relay.naming import resolve_filename
from relay.pipes import LocalFile, copy_stream
from relay.tasks import connect_socket, stream_tasks

logger = logging.getLogger(__name__)


class CallbackError(RuntimeError):
    """The callback server did not take the forwarded file."""


async def print_file(
    task: SocketTask, stream: ByteStream, out: BinaryIO | None = None
) -> None:
    logger.info(f"Incoming file from {task.from_}")
    sink = LocalFile(out or sys.stdout.buffer)
    await copy_stream(stream, sink)
    await sink.flush()
    logger.info(f"Done printing file from {task.from_}")


async def save_file(
    task: SocketTask,
    stream: ByteStream,
    outdir: Path,
    naming: str,
    clock: Callable[[], float] = time.time,
) -> Path:
    """Write one incoming file into ``outdir``, named after ``naming``."""
    arrival = clock()
    meta = FileMeta.from_stream(task.metadata)
    path = Path(outdir) / resolve_filename(naming, task.from_, arrival, meta.suggested_name)

    f = await asyncio.to_thread(open, path, "wb")
    try:
        written = await copy_stream(stream, LocalFile(f))
    finally:
        await asyncio.to_thread(f.close)

    logger.info(f"Saved {written} bytes from {task.from_} to {path}")
    return path


async def _body(stream: ByteStream) -> AsyncIterator[bytes]:
    while True:
        chunk = await stream.read(CHUNK_SIZE)
        if not chunk:
            return
        yield chunk


async def forward_file(
    task: SocketTask, stream: ByteStream, url: str, http: httpx.AsyncClient
) -> None:
    """Stream one incoming file to the callback URL as a POST body."""
    meta = FileMeta.from_stream(task.metadata)
    try:
        response = await http.post(url, headers=meta.to_headers(), content=_body(stream))
    except httpx.HTTPError as e:
        raise CallbackError(f"Failed to send file to {url}: {e}") from e

    if not response.is_success:
        raise CallbackError(
            f"Got unsuccessful status code from callback server: {response.status_code}"
        )
    logger.info(f"Forwarded file from {task.from_} to {url}")


async def dispatch(
    task: SocketTask, stream: ByteStream, sink: ReceiveSink, http: httpx.AsyncClient
) -> None:
    """Hand ``stream`` to the configured sink. The stream is always closed."""
    async with stream:
        if isinstance(sink, PrintSink):
            await print_file(task, stream)
        elif isinstance(sink, SaveSink):
            await save_file(task, stream, sink.outdir, sink.naming)
        elif isinstance(sink, CallbackSink):
            await forward_file(task, stream, sink.url, http)
        else:
            raise TypeError(f"Unknown receive sink: {sink!r}")


async def receive_files(ctx: AppContext, config: ReceiveConfig) -> int:
    """
    Receive files until ``config.count`` of them have been attempted.

    Every announcement and every failed poll counts toward the limit. Returns
    the number of attempts made.
    """
    attempts = 0
    async with aclosing(stream_tasks(ctx.beam, config.poll_retry_delay)) as tasks:
        async for item in tasks:
            attempts += 1
            if isinstance(item, BeamError):
                logger.error(f"{item}")
            else:
                await _receive_one(ctx, item, config.sink)

            if config.count is not None and attempts >= config.count:
                break
    return attempts


async def _receive_one(ctx: AppContext, task: SocketTask, sink: ReceiveSink) -> None:
    try:
        task, stream = await connect_socket(task, ctx.beam)
        logger.info(f"Receiving file from: {task.from_}")
        await dispatch(task, stream, sink, ctx.http)
    except Exception as e:
        logger.error(f"Receiving file from {task.from_} failed: {e}")
