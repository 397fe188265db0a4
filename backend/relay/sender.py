"""Sending a single file through beam."""

import asyncio
import logging
from typing import BinaryIO

from beam.client import BeamClient
from beam.models import AppId
from config import SendConfig
from relay.pipes import LocalFile, Source, copy_stream, open_stdin

logger = logging.getLogger(__name__)


async def send_file(
    beam: BeamClient,
    beam_id: AppId,
    source: Source,
    config: SendConfig,
) -> int:
    """
    Open a socket to ``config.to`` and copy ``source`` into it.

    Closing the socket tells the receiver the file is complete. Errors are
    raised to the caller. Returns the number of bytes sent.
    """
    destination = beam_id.with_target(config.to)
    meta = config.file_meta()

    stream = await beam.open_outbound(destination, meta.to_stream())
    logger.info(f"Sending {meta.suggested_name or 'stdin'} to {destination}")
    async with stream:
        sent = await copy_stream(source, stream)

    logger.info(f"Sent {sent} bytes to {destination}")
    return sent


async def send_path(beam: BeamClient, beam_id: AppId, config: SendConfig) -> int:
    """Send the file named in ``config``, or stdin for ``-``."""
    if config.from_stdin:
        return await send_file(beam, beam_id, await open_stdin(), config)

    f: BinaryIO = await asyncio.to_thread(open, config.file, "rb")
    try:
        return await send_file(beam, beam_id, LocalFile(f), config)
    finally:
        await asyncio.to_thread(f.close)
