"""
File metadata carried alongside every transfer.

On a beam socket it travels as the socket's JSON metadata. Through the HTTP
tunnel and the callback sink it travels as two headers, ``filename`` and
``metadata``.
"""

import json
import logging
import os
import re
from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, ValidationError, field_validator

logger = logging.getLogger(__name__)

FILENAME_HEADER = "filename"
METADATA_HEADER = "metadata"

_FILENAME_RE = re.compile(r"[A-Za-z0-9_.\-]+")


class InvalidFilename(ValueError):
    """A suggested filename contains characters outside ``[A-Za-z0-9_.-]``."""


class MetadataError(ValueError):
    """Socket metadata could not be decoded into ``FileMeta``."""


def validate_filename(name: str) -> str:
    """Return ``name`` unchanged if it is safe to use inside a path."""
    if not _FILENAME_RE.fullmatch(name):
        raise InvalidFilename(f"Invalid filename: {name!r}")
    return name


class FileMeta(BaseModel):
    """Metadata sent before file data."""
    suggested_name: str | None = None
    meta: Any = None

    @field_validator("suggested_name")
    @classmethod
    def _check_name(cls, name: str | None) -> str | None:
        if name is not None:
            validate_filename(name)
        return name

    @classmethod
    def for_upload(cls, path: str, name: str | None = None, meta: Any = None) -> "FileMeta":
        """
        Build the metadata for a file we are about to send.

        An explicit ``name`` must be valid. Otherwise the local file name is
        suggested when it is valid; stdin (``-``) suggests nothing.
        """
        if name is not None:
            return cls(suggested_name=validate_filename(name), meta=meta)

        suggested = None
        if path != "-":
            basename = os.path.basename(path)
            try:
                suggested = validate_filename(basename)
            except InvalidFilename:
                logger.warning(f"Not suggesting {basename!r} as filename, it contains invalid characters")
        return cls(suggested_name=suggested, meta=meta)

    # --- Socket form ---

    def to_stream(self) -> dict:
        return self.model_dump(mode="json")

    @classmethod
    def from_stream(cls, value: Any) -> "FileMeta":
        try:
            return cls.model_validate(value)
        except ValidationError as e:
            raise MetadataError(f"Failed to deserialize metadata: {e}") from e

    # --- Header form ---

    def to_headers(self) -> dict[str, str]:
        headers = {}
        if self.meta is not None:
            headers[METADATA_HEADER] = json.dumps(self.meta, separators=(",", ":"))
        if self.suggested_name is not None:
            headers[FILENAME_HEADER] = self.suggested_name
        return headers

    @classmethod
    def from_headers(cls, headers: Mapping[str, str]) -> "FileMeta":
        """
        Rebuild metadata from tunnel request headers.

        A broken ``metadata`` header is dropped with a warning instead of
        failing the request. ``filename`` is passed on as-is; the receiving
        side validates it when it decodes the socket metadata.
        """
        meta = None
        raw_meta = headers.get(METADATA_HEADER)
        if raw_meta is not None:
            try:
                meta = json.loads(raw_meta)
            except ValueError as e:
                logger.warning(f"Failed to deserialize metadata: {e}. Skipping metadata")
        return cls.model_construct(
            suggested_name=headers.get(FILENAME_HEADER),
            meta=meta,
        )
