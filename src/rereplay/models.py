"""Canonical Pydantic models shared across all rereplay modules.

This is the single source of truth for data shapes in the project. The models
fall into three groups:

**Request identity** -- produced by :mod:`rereplay.fingerprint`:
    :class:`RequestFingerprint`.

**Persisted shapes** -- serialised as JSON inside the cache files:
    :class:`BodyType`, :class:`SerializedResponse`, :class:`FileEnvelope`
    and :class:`CacheEntry`. Their JSON field names are camelCase
    (``statusText``, ``bodyType``, ``createdAt`` ...) so cache files stay
    readable by other implementations of the same format; the Python
    attribute names are snake_case and either spelling is accepted on input.

**Configuration** -- :class:`ReplayConfig`, resolved by
    :func:`rereplay.config.resolve_config`.
"""

from __future__ import annotations

import enum
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

DEFAULT_NAME = "rereplay"
"""Logical cache name used when none is configured."""

DEFAULT_STALE_AFTER = timedelta(days=7)
"""Default time-to-live of a recorded response."""

SCOPE_PATTERN = r"^[^/\\]+$"
"""Allowed cache names and scopes: no path separators."""


# --- Request identity ---


class RequestFingerprint(BaseModel):
    """Deterministic identity of an outbound request.

    Attributes:
        key: First 20 characters of the base64 SHA-256 digest of
            :attr:`canonical_string`. Used as the cache key.
        canonical_string: The pre-hash text
            ``url|method|headers-json|body``. Kept as cache-entry metadata
            so recorded entries can be diffed by a human.
    """

    model_config = ConfigDict(frozen=True)

    key: str
    canonical_string: str


# --- Serialized responses ---


class BodyType(str, enum.Enum):
    """How a response body is encoded inside :class:`SerializedResponse`."""

    TEXT = "text"
    JSON = "json"
    STREAM = "stream"
    FILE = "file"


class SerializedResponse(BaseModel):
    """A response reduced to JSON-safe primitives.

    ``headers`` keeps the raw header list in wire order, duplicates
    included. ``body`` is interpreted according to ``body_type``:

    * ``text`` / ``json`` -- the decoded body text.
    * ``stream`` -- base64 chunks joined by
      :data:`~rereplay.codec.CHUNK_SEPARATOR`.
    * ``file`` -- a JSON-encoded :class:`FileEnvelope`.
    """

    model_config = ConfigDict(populate_by_name=True)

    status: int
    status_text: str = Field(default="", alias="statusText")
    headers: list[tuple[str, str]] = Field(default_factory=list)
    body_type: BodyType = Field(default=BodyType.TEXT, alias="bodyType")
    body: Optional[str] = None
    file_type: Optional[str] = Field(default=None, alias="fileType")

    def to_json(self) -> str:
        """Encode with camelCase keys, omitting ``fileType`` when unset."""
        exclude = {"file_type"} if self.file_type is None else None
        return self.model_dump_json(by_alias=True, exclude=exclude)


class FileEnvelope(BaseModel):
    """Self-describing base64 wrapper for binary bodies."""

    type: str = ""
    data: str = ""


# --- Cache entries ---


class CacheEntry(BaseModel):
    """Internal envelope the TTL store keeps around each value.

    Attributes:
        value: The stored value (a :class:`SerializedResponse` JSON string
            when written by the replayer).
        created_at: When the entry was recorded. Always timezone-aware;
            naive timestamps read from disk are taken to be UTC.
        metadata: Free-form details, typically ``{"canonicalString": ...}``.
    """

    model_config = ConfigDict(populate_by_name=True)

    value: str
    created_at: datetime = Field(alias="createdAt")
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("created_at")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


# --- Configuration ---


class ReplayConfig(BaseModel):
    """Effective configuration of a replay session.

    Example::

        ReplayConfig(name="billing", cache_dir=Path("tests/.rereplay"))
    """

    name: str = Field(
        default=DEFAULT_NAME,
        min_length=1,
        pattern=SCOPE_PATTERN,
        description="Logical cache name; selects the cache file",
    )
    cache_dir: Path = Field(
        default_factory=lambda: Path(".rereplay"),
        description="Directory holding the .<name>.rereplay.json files",
    )
    stale_after: timedelta = Field(
        default=DEFAULT_STALE_AFTER,
        description="Age after which a recorded response is treated as absent",
    )

    @field_validator("stale_after")
    @classmethod
    def _positive(cls, value: timedelta) -> timedelta:
        if value <= timedelta(0):
            raise ValueError("stale_after must be positive")
        return value
