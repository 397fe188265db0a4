"""
Transfer Manager: keeps track of tunnel copies running in the background.

Every request accepted by the tunnel leaves a copy task behind. The manager
can list them, refuse new ones past an optional cap, and give them a grace
period to finish on shutdown.
"""

import asyncio
import logging
import uuid
from collections.abc import Coroutine
from typing import Any

logger = logging.getLogger(__name__)


class TransferManager:
    """Registry of in-flight background transfers."""

    def __init__(self, max_transfers: int | None = None) -> None:
        self._tasks: dict[str, asyncio.Task] = {}
        self._labels: dict[str, str] = {}
        self._reserved = 0
        self.max_transfers = max_transfers

    @property
    def in_flight(self) -> dict[str, str]:
        """Running transfers as ``{transfer_id: label}``."""
        return dict(self._labels)

    def has_capacity(self) -> bool:
        if self.max_transfers is None:
            return True
        return len(self._tasks) + self._reserved < self.max_transfers

    def reserve(self) -> bool:
        """
        Claim a slot for a transfer that is still being set up.

        Returns False when the cap is reached. A claimed slot must end in
        either ``start(..., reserved=True)`` or ``release()``.
        """
        if not self.has_capacity():
            return False
        self._reserved += 1
        return True

    def release(self) -> None:
        self._reserved = max(0, self._reserved - 1)

    def start(
        self, label: str, coro: Coroutine[Any, Any, None], reserved: bool = False
    ) -> asyncio.Task:
        """Run ``coro`` in the background and track it until it finishes."""
        if reserved:
            self.release()
        transfer_id = str(uuid.uuid4())
        task = asyncio.create_task(coro, name=f"transfer-{transfer_id}")
        self._tasks[transfer_id] = task
        self._labels[transfer_id] = label
        task.add_done_callback(lambda _: self._forget(transfer_id))
        logger.debug(f"Transfer {transfer_id} started: {label}")
        return task

    def _forget(self, transfer_id: str) -> None:
        self._tasks.pop(transfer_id, None)
        self._labels.pop(transfer_id, None)

    async def drain(self, grace: float) -> int:
        """
        Wait up to ``grace`` seconds for running transfers, then cancel the rest.

        Returns how many transfers had to be cancelled.
        """
        tasks = list(self._tasks.values())
        if not tasks:
            return 0

        logger.info(f"Waiting up to {grace}s for {len(tasks)} transfer(s) to finish")
        _, pending = await asyncio.wait(tasks, timeout=grace)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.wait(pending)
            logger.warning(f"Cancelled {len(pending)} unfinished transfer(s)")
        return len(pending)
