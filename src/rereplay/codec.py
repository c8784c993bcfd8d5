"""Lossless conversion between :class:`httpx.Response` and a JSON string.

:func:`serialize_response` reduces a response to a
:class:`~rereplay.models.SerializedResponse` and :func:`deserialize_response`
rebuilds an equivalent :class:`httpx.Response` from it. The body is kept in
one of four shapes, picked from the ``Content-Type`` header:

* ``text/event-stream`` -> ``stream``: every raw chunk is kept, in order,
  base64 encoded and joined with :data:`CHUNK_SEPARATOR`. Replaying yields
  the same chunk sequence through a single-pass :class:`ReplayStream`.
* ``application/json`` -> ``json``: the decoded text.
* ``text/plain`` -> ``text``: the decoded text.
* anything else, and any body sent with a ``Content-Encoding`` -> ``file``:
  the raw bytes in a base64 :class:`~rereplay.models.FileEnvelope`.

Status code, reason phrase and the raw header list (original casing,
order and duplicates) are stored verbatim, ``Authorization`` included.
"""

from __future__ import annotations

import base64
import binascii
import codecs
import logging
from collections.abc import AsyncIterator, Iterator, Sequence
from email.message import Message

import httpx
from pydantic import ValidationError

from rereplay.exceptions import MalformedEntryError
from rereplay.models import BodyType, FileEnvelope, SerializedResponse

logger = logging.getLogger(__name__)

CHUNK_SEPARATOR = "||==chunk==||"
"""Joins base64 chunks of a stream body. ``|`` is not in the base64 alphabet."""

_HEADER_ENCODING = "latin-1"


class ReplayStream(httpx.SyncByteStream, httpx.AsyncByteStream):
    """Finite, single-pass byte stream over recorded chunks.

    Iterating a second time raises :class:`httpx.StreamConsumed`; call
    :func:`deserialize_response` again to replay the chunks once more.
    """

    def __init__(self, chunks: Sequence[bytes]) -> None:
        self._chunks = list(chunks)
        self._consumed = False

    def _take(self) -> list[bytes]:
        if self._consumed:
            raise httpx.StreamConsumed()
        self._consumed = True
        chunks, self._chunks = self._chunks, []
        return chunks

    def __iter__(self) -> Iterator[bytes]:
        yield from self._take()

    async def __aiter__(self) -> AsyncIterator[bytes]:
        for chunk in self._take():
            yield chunk


def _charset(content_type: str) -> str:
    """Return the declared charset of *content_type*, UTF-8 when absent or unknown."""
    message = Message()
    message["content-type"] = content_type
    charset = message.get_content_charset()
    if not charset:
        return "utf-8"
    try:
        codecs.lookup(charset)
    except LookupError:
        return "utf-8"
    return charset


def _is_encoded(headers: httpx.Headers) -> bool:
    encoding = headers.get("content-encoding", "").strip().lower()
    return encoding not in ("", "identity")


async def _read_chunks(response: httpx.Response) -> tuple[list[bytes], bool]:
    """Drain the raw (still content-encoded) body of *response*.

    Returns the chunks and whether they are the wire bytes. A response that
    was already read only has its decoded content left, returned as a
    single chunk.

    Raises:
        httpx.StreamError: If the body was consumed without being buffered.
    """
    if response.is_stream_consumed:
        content = response.content
        return ([content] if content else []), False

    chunks: list[bytes] = []
    try:
        async for chunk in response.aiter_raw():
            if chunk:
                chunks.append(chunk)
    finally:
        await response.aclose()
    return chunks, True


def _file_body(serialized: SerializedResponse, payload: bytes, content_type: str) -> None:
    envelope = FileEnvelope(type=content_type, data=base64.b64encode(payload).decode("ascii"))
    serialized.body_type = BodyType.FILE
    serialized.file_type = content_type
    serialized.body = envelope.model_dump_json()


def _fill_body(serialized: SerializedResponse, payload: bytes, headers: httpx.Headers) -> None:
    content_type = headers.get("content-type", "")
    lowered = content_type.lower()

    if _is_encoded(headers):
        _file_body(serialized, payload, content_type)
        return

    if "application/json" in lowered:
        body_type = BodyType.JSON
    elif "text/plain" in lowered:
        body_type = BodyType.TEXT
    else:
        _file_body(serialized, payload, content_type)
        return

    charset = _charset(content_type)
    try:
        text = payload.decode(charset)
    except UnicodeDecodeError:
        # Mislabelled binary; the envelope keeps it byte-exact.
        _file_body(serialized, payload, content_type)
        return
    if text.encode(charset) != payload:
        # BOM order or a non-canonical form would not survive re-encoding.
        _file_body(serialized, payload, content_type)
        return
    serialized.body_type = body_type
    serialized.body = text


def _buffered_text(response: httpx.Response) -> str | None:
    try:
        return response.text
    except httpx.ResponseNotRead:
        return None


async def serialize_response(response: httpx.Response) -> str:
    """Serialize *response* into a JSON string.

    Unread responses are drained and closed. Bodies are read raw, so a
    compressed body is stored compressed next to its ``Content-Encoding``
    header and decodes the same way on replay.

    Args:
        response: The response to record.

    Returns:
        The JSON encoding of a :class:`~rereplay.models.SerializedResponse`.
    """
    serialized = SerializedResponse(
        status=response.status_code,
        status_text=response.reason_phrase,
        headers=[
            (name.decode(_HEADER_ENCODING), value.decode(_HEADER_ENCODING))
            for name, value in response.headers.raw
        ],
    )

    try:
        chunks, raw = await _read_chunks(response)
    except httpx.StreamError as exc:
        logger.warning(
            "Could not read body of %s response as bytes (%s); storing buffered text",
            response.status_code,
            exc,
        )
        serialized.body_type = BodyType.TEXT
        serialized.body = _buffered_text(response)
        return serialized.to_json()

    if not raw and _is_encoded(response.headers):
        # The wire bytes are gone; store the decoded body as unencoded.
        serialized.headers = [
            (name, value)
            for name, value in serialized.headers
            if name.lower() not in ("content-encoding", "content-length")
        ]

    if "text/event-stream" in response.headers.get("content-type", "").lower():
        serialized.body_type = BodyType.STREAM
        serialized.body = CHUNK_SEPARATOR.join(
            base64.b64encode(chunk).decode("ascii") for chunk in chunks
        )
    else:
        _fill_body(serialized, b"".join(chunks), httpx.Headers(serialized.headers))

    return serialized.to_json()


def _decode_payload(serialized: SerializedResponse, content_type: str) -> bytes:
    if not serialized.body:
        return b""
    if serialized.body_type is BodyType.FILE:
        envelope = FileEnvelope.model_validate_json(serialized.body)
        return base64.b64decode(envelope.data, validate=True)
    return serialized.body.encode(_charset(content_type))


def deserialize_response(serialized: str) -> httpx.Response:
    """Rebuild an :class:`httpx.Response` from :func:`serialize_response` output.

    Non-stream bodies are read eagerly, so the result behaves like any
    fully read response (``.text``, ``.json()``, ``.content``). Stream
    bodies are left unread behind a :class:`ReplayStream`.

    Args:
        serialized: A JSON-encoded :class:`~rereplay.models.SerializedResponse`.

    Returns:
        A new :class:`httpx.Response`. Each call returns an independent object.

    Raises:
        MalformedEntryError: If *serialized* is not a valid serialized response.
    """
    try:
        data = SerializedResponse.model_validate_json(serialized)
    except ValidationError as exc:
        raise MalformedEntryError(f"Cached entry is not a valid serialized response: {exc}") from exc

    headers = [
        (name.encode(_HEADER_ENCODING), value.encode(_HEADER_ENCODING))
        for name, value in data.headers
    ]
    extensions = {}
    if data.status_text:
        extensions["reason_phrase"] = data.status_text.encode("ascii", errors="ignore")

    if data.body_type is BodyType.STREAM:
        chunks = []
        if data.body:
            try:
                chunks = [
                    base64.b64decode(chunk, validate=True)
                    for chunk in data.body.split(CHUNK_SEPARATOR)
                ]
            except binascii.Error as exc:
                raise MalformedEntryError(f"Cached stream chunk is not valid base64: {exc}") from exc
        return httpx.Response(
            data.status,
            headers=headers,
            stream=ReplayStream(chunks),
            extensions=extensions,
        )

    content_type = httpx.Headers(headers).get("content-type", "")
    try:
        payload = _decode_payload(data, content_type)
    except (ValidationError, binascii.Error) as exc:
        raise MalformedEntryError(f"Cached file body is not a valid envelope: {exc}") from exc

    response = httpx.Response(
        data.status,
        headers=headers,
        stream=httpx.ByteStream(payload),
        extensions=extensions,
    )
    try:
        response.read()
    except httpx.DecodingError as exc:
        raise MalformedEntryError(f"Cached body does not match its Content-Encoding: {exc}") from exc
    return response
