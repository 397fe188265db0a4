from __future__ import annotations

import asyncio

import httpx
import pytest

from beam.client import BeamError
from beam.models import AppId, SocketTask
from relay.context import AppContext

OWN_ID = "a.proxy1.brokerX"


class FakeStream:
    """In-memory stand-in for an upgraded beam socket."""

    def __init__(self, data: bytes = b"") -> None:
        self._data = data
        self.written = bytearray()
        self.closed = False

    async def read(self, n: int = -1) -> bytes:
        if n < 0:
            n = len(self._data)
        chunk, self._data = self._data[:n], self._data[n:]
        return chunk

    async def write(self, data: bytes) -> None:
        assert not self.closed, "write after close"
        self.written += data

    async def close(self) -> None:
        self.closed = True

    async def __aenter__(self) -> FakeStream:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()


class FakeBeam:
    """Scripted beam proxy: each poll pops the next result off ``polls``."""

    def __init__(
        self, polls=(), payloads=None, fail_open: bool = False, open_delay: float = 0
    ) -> None:
        self.polls = list(polls)
        self.payloads = dict(payloads or {})
        self.fail_open = fail_open
        self.open_delay = open_delay
        self.closed = False
        self.poll_count = 0
        self.upgraded: list[str] = []
        self.streams: list[FakeStream] = []
        self.opened: list[tuple[AppId, object]] = []

    async def poll_pending(self, block_for: int = 1):
        assert block_for == 1
        if not self.polls:
            raise AssertionError("polled more often than scripted")
        self.poll_count += 1
        result = self.polls.pop(0)
        if isinstance(result, Exception):
            raise result
        return list(result)

    async def upgrade(self, task_id: str):
        self.upgraded.append(task_id)
        payload = self.payloads.get(task_id, b"")
        if isinstance(payload, Exception):
            raise payload
        stream = FakeStream(payload)
        self.streams.append(stream)
        return stream

    async def open_outbound(self, destination: AppId, metadata):
        self.opened.append((destination, metadata))
        if self.open_delay:
            await asyncio.sleep(self.open_delay)
        if self.fail_open:
            raise BeamError("proxy unavailable")
        stream = FakeStream()
        self.streams.append(stream)
        return stream

    async def aclose(self) -> None:
        self.closed = True


def make_task(task_id: str, origin: str = "app1.proxy2.broker", metadata=None) -> SocketTask:
    if metadata is None:
        metadata = {"suggested_name": None, "meta": None}
    return SocketTask.model_validate({"id": task_id, "from": origin, "metadata": metadata})


def make_context(beam: FakeBeam, handler=None) -> AppContext:
    transport = httpx.MockTransport(handler or (lambda request: httpx.Response(200)))
    return AppContext(
        beam=beam,
        beam_id=AppId.parse(OWN_ID),
        http=httpx.AsyncClient(transport=transport),
    )


@pytest.fixture
def own_id() -> AppId:
    return AppId.parse(OWN_ID)
