"""Request canonicalization and fingerprinting.

Reduces an outbound request to a :class:`~rereplay.models.RequestFingerprint`:
a human-diffable canonical string and a short content-addressed key derived
from it. Two requests that only differ in things that change from run to run
or from machine to machine get the same key: the randomly generated
multipart boundary, the ``Authorization`` token, the order headers were added
in, and the headers httpx fills in by itself (``host``, ``accept-encoding``,
its own ``user-agent`` and so on).

The canonical string has the shape::

    <url>|<METHOD>|<headers as JSON, keys sorted>|<body text>

and the key is the first :data:`KEY_LENGTH` characters of the base64 encoded
SHA-256 digest of that string.

Callers can fingerprint either an :class:`httpx.Request` or, fetch-style, a
URL together with a :class:`RequestInit` mapping::

    fp = await fingerprint_request(
        "https://example.test/joke",
        {"method": "GET", "headers": {"Accept": "text/plain"}},
    )
"""

from __future__ import annotations

import base64
import hashlib
import json
import logging
import re
from collections.abc import Iterable, Mapping
from typing import Any, Optional, TypedDict, Union

import httpx

from rereplay.exceptions import SerializationError
from rereplay.models import RequestFingerprint

logger = logging.getLogger(__name__)

KEY_LENGTH = 20
"""Number of base64 characters of the digest kept as the cache key."""

DEFAULT_IGNORED_HEADERS: tuple[str, ...] = ("authorization",)
"""Headers that never contribute to a fingerprint and never reach disk."""

TRANSPORT_HEADERS: tuple[str, ...] = (
    "host",
    "connection",
    "accept-encoding",
    "content-length",
    "transfer-encoding",
)
"""Headers the client derives from the URL, body or installed decoders."""

_CLIENT_DEFAULT_VALUES = {"accept": "*/*"}
_CLIENT_USER_AGENT_PREFIX = "python-httpx/"

MULTIPART_CONTENT_TYPE = "multipart/form-data"

_BOUNDARY_PATTERN = re.compile(r"--+[a-zA-Z0-9]+")
_DEFAULT_REPR_PATTERN = re.compile(r"<[^|]*? at 0x[0-9a-fA-F]+>")

RequestInput = Union[httpx.Request, httpx.URL, str]


class RequestInit(TypedDict, total=False):
    """Fetch-style request options that override fields of the request input.

    ``headers`` may be a mapping, a sequence of ``(name, value)`` pairs or a
    JSON object string. ``body`` may be ``str``, ``bytes`` or ``None``.
    """

    method: str
    headers: Any
    body: Any


def normalize_headers(headers: Any) -> dict[str, str]:
    """Convert *headers* into a plain ``{lower-case name: str}`` dict.

    Raises:
        SerializationError: If *headers* is a string that is not a JSON object.
    """
    if headers is None:
        return {}
    if isinstance(headers, str):
        try:
            headers = json.loads(headers)
        except json.JSONDecodeError as exc:
            raise SerializationError(f"Headers string is not valid JSON: {exc}") from exc
        if not isinstance(headers, dict):
            raise SerializationError("Headers string must encode a JSON object")
    if isinstance(headers, httpx.Headers):
        pairs: Iterable[tuple[Any, Any]] = headers.items()
    elif isinstance(headers, Mapping):
        pairs = headers.items()
    else:
        pairs = headers

    result: dict[str, str] = {}
    for name, value in pairs:
        result[_header_text(name).lower()] = _header_text(value)
    return result


def _header_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).decode("latin-1")
    return str(value)


def drop_client_defaults(headers: Mapping[str, str]) -> dict[str, str]:
    """Remove headers the HTTP client adds on its own.

    :data:`TRANSPORT_HEADERS` always go. ``accept: */*`` and a
    ``python-httpx/<version>`` user agent go when they carry the client's
    default value, so upgrading httpx or installing an extra decoder keeps
    existing keys valid.
    """
    result: dict[str, str] = {}
    for name, value in headers.items():
        if name in TRANSPORT_HEADERS or _CLIENT_DEFAULT_VALUES.get(name) == value:
            continue
        if name == "user-agent" and value.startswith(_CLIENT_USER_AGENT_PREFIX):
            continue
        result[name] = value
    return result


def body_to_text(body: Any) -> str:
    """Return the text form of a request body.

    Binary payloads are read as UTF-8; bytes that are not valid UTF-8 are
    backslash-escaped so two different payloads never map to the same text.
    """
    if body is None:
        return ""
    if isinstance(body, str):
        return body
    if isinstance(body, (bytes, bytearray, memoryview)):
        return bytes(body).decode("utf-8", errors="backslashreplace")
    return str(body)


def canonicalize(
    url: str,
    method: str,
    headers: Mapping[str, str],
    body: str,
    ignore_headers: Iterable[str] = DEFAULT_IGNORED_HEADERS,
) -> str:
    """Build the canonical string for already-extracted request fields.

    Raises:
        SerializationError: If a field fell back to a default object repr.
    """
    canonical_headers = {name.lower(): value for name, value in headers.items()}

    # Multipart boundaries are random per request; drop them from both the
    # content-type parameter and the delimiter lines of the body.
    content_type = canonical_headers.get("content-type", "")
    if body and MULTIPART_CONTENT_TYPE in content_type.lower():
        canonical_headers["content-type"] = MULTIPART_CONTENT_TYPE
        body = _BOUNDARY_PATTERN.sub("", body).strip()

    for name in ignore_headers:
        canonical_headers.pop(name.lower(), None)

    headers_json = json.dumps(
        canonical_headers,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    )
    canonical = f"{url}|{method}|{headers_json}|{body}"

    if _DEFAULT_REPR_PATTERN.search(canonical):
        logger.debug("Refusing to fingerprint unstable request: %s", canonical)
        raise SerializationError(
            "Invalid data to hash, an object was not correctly converted to text"
        )
    return canonical


def make_key(canonical_string: str) -> str:
    """Digest *canonical_string* into a :data:`KEY_LENGTH`-character cache key."""
    digest = hashlib.sha256(canonical_string.encode("utf-8")).digest()
    return base64.b64encode(digest).decode("ascii")[:KEY_LENGTH]


async def fingerprint_request(
    request: RequestInput,
    init: Optional[RequestInit] = None,
    *,
    ignore_headers: Iterable[str] = DEFAULT_IGNORED_HEADERS,
) -> RequestFingerprint:
    """Compute the fingerprint of a request.

    Fields in *init* take precedence over the same fields of *request*.
    When the body comes from an :class:`httpx.Request` it is read with
    :meth:`httpx.Request.aread`, which buffers streaming and multipart
    bodies so the request can still be sent afterwards.

    Args:
        request: An :class:`httpx.Request`, or a URL for fetch-style calls.
        init: Optional fetch-style overrides (``method``, ``headers``, ``body``).
        ignore_headers: Header names excluded from the fingerprint.

    Returns:
        The :class:`~rereplay.models.RequestFingerprint`.

    Raises:
        SerializationError: If a header or body value cannot be reduced to
            stable text.
    """
    init = init or {}

    if isinstance(request, httpx.Request):
        url = str(request.url)
        method = init.get("method") or request.method
        raw_headers = init["headers"] if init.get("headers") is not None else request.headers
        if init.get("body") is not None:
            body = body_to_text(init["body"])
        else:
            body = body_to_text(await request.aread())
    else:
        url = str(httpx.URL(str(request)))
        method = init.get("method") or "GET"
        raw_headers = init.get("headers")
        body = body_to_text(init.get("body"))

    canonical = canonicalize(
        url,
        method.upper(),
        drop_client_defaults(normalize_headers(raw_headers)),
        body,
        ignore_headers=ignore_headers,
    )
    return RequestFingerprint(key=make_key(canonical), canonical_string=canonical)
