"""Long-lived handles shared by every command."""

from dataclasses import dataclass

import httpx

from beam.client import BeamClient
from beam.models import AppId
from config import BeamSettings


@dataclass
class AppContext:
    """Built once at startup and passed to whatever needs it."""
    beam: BeamClient
    beam_id: AppId
    http: httpx.AsyncClient

    @classmethod
    def from_settings(cls, settings: BeamSettings) -> "AppContext":
        return cls(
            beam=BeamClient(settings.beam_id, settings.beam_secret, settings.beam_url),
            beam_id=settings.beam_id,
            # Forwarded files can take arbitrarily long to upload
            http=httpx.AsyncClient(timeout=httpx.Timeout(30.0, write=None, read=None)),
        )

    async def aclose(self) -> None:
        try:
            await self.http.aclose()
        finally:
            await self.beam.aclose()
