"""Application-wide configuration: defaults plus the per-command settings."""

from pathlib import Path
from typing import Any, Literal, Union

from pydantic import BaseModel, Field, field_validator

from beam.models import AppId
from relay.metadata import FileMeta, validate_filename
from relay.naming import DEFAULT_NAMING

# --- Proxy ---
DEFAULT_BEAM_URL = "http://beam-proxy:8081"
POLL_RETRY_DELAY = 5  # seconds to wait after a failed poll

# --- Tunnel server ---
DEFAULT_BIND_ADDR = "0.0.0.0:8080"
SHUTDOWN_GRACE = 10  # seconds in-flight tunnel copies get on shutdown

# --- Transfer ---
CHUNK_SIZE = 131072  # 128 KB


class BeamSettings(BaseModel):
    """How to reach the local beam proxy and who we are on it."""
    beam_url: str = DEFAULT_BEAM_URL
    beam_secret: str
    beam_id: AppId


class SendConfig(BaseModel):
    command: Literal["send"] = "send"
    to: str
    file: str  # path or "-" for stdin
    name: str | None = None
    meta: Any = None

    @field_validator("name")
    @classmethod
    def _check_name(cls, name: str | None) -> str | None:
        return validate_filename(name) if name is not None else name

    @property
    def from_stdin(self) -> bool:
        return self.file == "-"

    def file_meta(self) -> FileMeta:
        return FileMeta.for_upload(self.file, self.name, self.meta)


# --- Receive sinks ---

class PrintSink(BaseModel):
    kind: Literal["print"] = "print"


class SaveSink(BaseModel):
    kind: Literal["save"] = "save"
    outdir: Path
    naming: str = DEFAULT_NAMING


class CallbackSink(BaseModel):
    kind: Literal["callback"] = "callback"
    url: str


ReceiveSink = Union[PrintSink, SaveSink, CallbackSink]


class ReceiveConfig(BaseModel):
    command: Literal["receive"] = "receive"
    sink: ReceiveSink = Field(discriminator="kind")
    count: int | None = Field(default=None, ge=1)  # None: keep receiving forever
    poll_retry_delay: float = POLL_RETRY_DELAY


class ServerConfig(BaseModel):
    command: Literal["server"] = "server"
    bind_addr: str = DEFAULT_BIND_ADDR
    api_key: str
    max_transfers: int | None = Field(default=None, ge=1)
    shutdown_grace: float = SHUTDOWN_GRACE

    @field_validator("bind_addr")
    @classmethod
    def _check_bind_addr(cls, value: str) -> str:
        _, sep, port = value.rpartition(":")
        if not sep or not port.isdigit():
            raise ValueError("bind-addr must be <host>:<port>")
        return value

    @property
    def host(self) -> str:
        host, _, _ = self.bind_addr.rpartition(":")
        return host.strip("[]") or "0.0.0.0"

    @property
    def port(self) -> int:
        _, _, port = self.bind_addr.rpartition(":")
        return int(port)


class Config(BaseModel):
    """Full runtime configuration, one variant per command."""
    beam: BeamSettings
    mode: Union[SendConfig, ReceiveConfig, ServerConfig] = Field(discriminator="command")
