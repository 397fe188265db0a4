"""FastAPI application for the tunnel server."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from api.routes import router
from config import ServerConfig
from relay.context import AppContext
from relay.manager import TransferManager

logger = logging.getLogger(__name__)


def create_app(ctx: AppContext, config: ServerConfig) -> FastAPI:
    transfers = TransferManager(max_transfers=config.max_transfers)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Drain in-flight transfers on shutdown."""
        logger.info(f"Tunnel ready: sending as {ctx.beam_id} on {config.bind_addr}")
        try:
            yield
        finally:
            logger.info("Shutting down tunnel...")
            await transfers.drain(config.shutdown_grace)

    app = FastAPI(title="Beam File", version="1.0.0", lifespan=lifespan)
    app.state.context = ctx
    app.state.api_key = config.api_key
    app.state.transfers = transfers
    app.include_router(router)
    return app
