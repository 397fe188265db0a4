"""Turning beam socket announcements into live streams."""

import asyncio
import logging
from collections.abc import AsyncIterator

from beam.client import BeamClient, BeamError
from beam.models import SocketTask
from beam.stream import ByteStream

logger = logging.getLogger(__name__)


async def stream_tasks(
    beam: BeamClient, retry_delay: float = 0
) -> AsyncIterator[SocketTask | BeamError]:
    """
    Yield incoming socket tasks forever, one per long-poll.

    A failed poll yields the error instead of raising so the caller decides
    how many failures it tolerates. Polls that time out empty yield nothing.
    """
    while True:
        try:
            tasks = await beam.poll_pending(block_for=1)
        except BeamError as e:
            yield BeamError(f"Failed to get socket tasks from beam: {e}")
            if retry_delay:
                await asyncio.sleep(retry_delay)
            continue
        if tasks:
            yield tasks.pop()


async def connect_socket(
    task: SocketTask, beam: BeamClient
) -> tuple[SocketTask, ByteStream]:
    try:
        stream = await beam.upgrade(task.id)
    except BeamError as e:
        raise BeamError(f"Failed to connect to socket {task.id}: {e}") from e
    return task, stream
