"""Pydantic models for beam addressing and socket announcements."""

import re
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

# Segments appear verbatim in proxy request paths
_SEGMENT_RE = re.compile(r"[A-Za-z0-9-]+")


class AppId(BaseModel):
    """A beam application id: ``<app>.<proxy>.<broker>``."""
    model_config = ConfigDict(frozen=True)

    app: str
    proxy: str
    broker: str

    @model_validator(mode="before")
    @classmethod
    def _split_dotted(cls, value: Any) -> Any:
        if isinstance(value, str):
            parts = value.split(".")
            if len(parts) != 3:
                raise ValueError(f"beam id must be <app>.<proxy>.<broker>, got {value!r}")
            return dict(zip(("app", "proxy", "broker"), parts))
        return value

    @field_validator("app", "proxy", "broker")
    @classmethod
    def _check_segment(cls, segment: str) -> str:
        if not _SEGMENT_RE.fullmatch(segment):
            raise ValueError(f"invalid beam id segment {segment!r}")
        return segment

    @classmethod
    def parse(cls, value: str) -> "AppId":
        return cls.model_validate(value)

    def with_target(self, fragment: str) -> "AppId":
        """
        Address another app behind the same broker.

        ``fragment`` is either ``app.proxy`` or just ``proxy``; in the latter
        case our own app name is reused. The broker always comes from us.
        """
        parts = fragment.split(".")
        if len(parts) == 2:
            app, proxy = parts
        elif len(parts) == 1:
            app, proxy = self.app, parts[0]
        else:
            raise ValueError(f"destination must be <app>.<proxy> or <proxy>, got {fragment!r}")
        return AppId(app=app, proxy=proxy, broker=self.broker)

    def __str__(self) -> str:
        return f"{self.app}.{self.proxy}.{self.broker}"


class SocketTask(BaseModel):
    """An announcement that a remote app wants to open a socket to us."""
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    id: str
    from_: str = Field(alias="from")
    metadata: Any = None
