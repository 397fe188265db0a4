"""
Client for the beam proxy socket API.

Polling for socket tasks is a plain long-poll over httpx. Opening or
connecting a socket is an HTTP/1.1 upgrade (``Upgrade: tcp``), done on a raw
asyncio connection so the socket can be handed out as a ``ByteStream``.
"""

import asyncio
import json
import logging
import re
from typing import Any

import httpx

from beam.models import AppId, SocketTask
from beam.stream import ByteStream

logger = logging.getLogger(__name__)

SOCKETS_PATH = "/v1/sockets"
# Long-polls may legitimately hang until the proxy has work for us
POLL_TIMEOUT = httpx.Timeout(10.0, read=None)

# Everything below is written verbatim into the upgrade request
_PATH_RE = re.compile(r"[A-Za-z0-9._~/-]+")
_UNSAFE_HEADER_RE = re.compile(r"[\r\n\x00]")


class BeamError(ConnectionError):
    """The beam proxy could not be reached or refused a request."""


class BeamClient:
    """Talks to the local beam proxy on behalf of one app id."""

    def __init__(
        self,
        app_id: AppId,
        secret: str,
        beam_url: str,
        http: httpx.AsyncClient | None = None,
    ) -> None:
        self.app_id = app_id
        self._auth = f"ApiKey {app_id} {secret}"
        self._url = httpx.URL(beam_url)
        self._owns_http = http is None
        self._http = http or httpx.AsyncClient(timeout=POLL_TIMEOUT)

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    async def poll_pending(self, block_for: int = 1) -> list[SocketTask]:
        """Block until ``block_for`` socket tasks are pending or the proxy times out."""
        try:
            response = await self._http.get(
                self._url.join(SOCKETS_PATH),
                params={"wait_count": block_for},
                headers={"Authorization": self._auth},
            )
        except httpx.HTTPError as e:
            raise BeamError(f"Failed to reach beam proxy at {self._url}: {e}") from e

        # 206: the wait timed out with fewer tasks than requested
        if response.status_code not in (200, 206):
            raise BeamError(
                f"Beam proxy answered {response.status_code} when polling socket tasks"
            )
        try:
            return [SocketTask.model_validate(task) for task in response.json()]
        except ValueError as e:
            raise BeamError(f"Unexpected socket task payload from beam proxy: {e}") from e

    async def upgrade(self, task_id: str) -> ByteStream:
        """Connect to a socket another app announced to us."""
        return await self._open_upgraded("GET", f"{SOCKETS_PATH}/{task_id}")

    async def open_outbound(self, destination: AppId, metadata: Any) -> ByteStream:
        """Open a socket to ``destination``, announcing it with ``metadata``."""
        return await self._open_upgraded(
            "POST",
            f"{SOCKETS_PATH}/{destination}",
            {"metadata": json.dumps(metadata, separators=(",", ":"))},
        )

    async def _open_upgraded(
        self, method: str, path: str, extra_headers: dict[str, str] | None = None
    ) -> ByteStream:
        url = self._url
        secure = url.scheme == "https"
        port = url.port or (443 if secure else 80)
        headers = {
            "Host": url.netloc.decode("ascii"),
            "Authorization": self._auth,
            "Connection": "Upgrade",
            "Upgrade": "tcp",
            "Content-Length": "0",
            **(extra_headers or {}),
        }
        if not _PATH_RE.fullmatch(path):
            raise BeamError(f"Refusing to request unsafe path {path!r}")
        for name, value in headers.items():
            if _UNSAFE_HEADER_RE.search(value):
                raise BeamError(f"Refusing to send unsafe {name} header")

        head = f"{method} {path} HTTP/1.1\r\n"
        head += "".join(f"{name}: {value}\r\n" for name, value in headers.items())
        head += "\r\n"

        try:
            reader, writer = await asyncio.open_connection(
                url.host, port, ssl=True if secure else None
            )
        except OSError as e:
            raise BeamError(f"{method} {path} failed: {e}") from e

        upgraded = False
        try:
            writer.write(head.encode("latin-1"))
            await writer.drain()
            response_head = await reader.readuntil(b"\r\n\r\n")

            status_line = response_head.split(b"\r\n", 1)[0].decode("latin-1")
            parts = status_line.split(" ", 2)
            status = int(parts[1]) if len(parts) > 1 and parts[1].isdigit() else 0
            if status != 101:
                raise BeamError(f"{method} {path} was not upgraded: {status_line!r}")
            upgraded = True
        except BeamError:
            raise
        except (OSError, asyncio.IncompleteReadError, asyncio.LimitOverrunError) as e:
            raise BeamError(f"{method} {path} failed: {e}") from e
        finally:
            if not upgraded:
                writer.close()
                try:
                    await writer.wait_closed()
                except OSError as e:
                    logger.debug(f"Closing rejected connection failed: {e}")

        logger.debug(f"{method} {path} upgraded to a raw socket")
        return ByteStream(reader, writer, peer=path.rsplit("/", 1)[-1])
