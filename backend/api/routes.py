"""Tunnel route: lets plain HTTP clients send files through beam."""

import asyncio
import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import Response
from starlette.types import Receive, Scope, Send

from beam.models import AppId
from beam.stream import ByteStream
from relay.context import AppContext
from relay.manager import TransferManager
from relay.metadata import FileMeta
from security.auth import require_api_key

logger = logging.getLogger(__name__)

router = APIRouter()


class TunnelAccepted(Response):
    """
    An empty 200 that goes out before the request body has been read.

    The ASGI cycle stays open until the background copy is done, otherwise
    the server stops handing us the body once the response is complete.
    """

    def __init__(self, transfer: asyncio.Task) -> None:
        super().__init__(status_code=status.HTTP_200_OK)
        self._transfer = transfer

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        await send({
            "type": "http.response.start",
            "status": self.status_code,
            "headers": self.raw_headers,
        })
        await send({"type": "http.response.body", "body": b"", "more_body": True})
        await asyncio.wait({self._transfer})
        await send({"type": "http.response.body", "body": b""})


async def _copy_body(request: Request, stream: ByteStream, destination: AppId) -> None:
    """Pipe the request body into the beam socket. Errors are only logged."""
    try:
        sent = 0
        async with stream:
            async for chunk in request.stream():
                if chunk:
                    await stream.write(chunk)
                    sent += len(chunk)
        logger.info(f"Tunneled {sent} bytes to {destination}")
    except Exception as e:
        logger.error(f"Error sending file to {destination}: {e}")


@router.post("/send/{to}", dependencies=[Depends(require_api_key)])
async def tunnel_file(to: str, request: Request):
    """Open a beam socket to ``to`` and stream the request body into it."""
    ctx: AppContext = request.app.state.context
    transfers: TransferManager = request.app.state.transfers

    try:
        destination = ctx.beam_id.with_target(to)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    # The slot is held across the open so concurrent requests see it taken
    if not transfers.reserve():
        logger.warning(f"Refusing tunnel request to {destination}: too many transfers in flight")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Too many transfers in flight",
        )

    transfer = None
    try:
        meta = FileMeta.from_headers(request.headers)
        try:
            stream = await ctx.beam.open_outbound(destination, meta.to_stream())
        except Exception as e:
            logger.error(f"Failed to tunnel request: {e}")
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="Could not open beam socket",
            )

        transfer = transfers.start(
            f"tunnel to {destination}",
            _copy_body(request, stream, destination),
            reserved=True,
        )
    finally:
        if transfer is None:
            transfers.release()
    return TunnelAccepted(transfer)
