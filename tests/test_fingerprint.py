"""Tests for request canonicalization and fingerprinting."""

from __future__ import annotations

import base64
import hashlib

import httpx
import pytest

from rereplay.exceptions import SerializationError
from rereplay.fingerprint import (
    KEY_LENGTH,
    body_to_text,
    canonicalize,
    drop_client_defaults,
    fingerprint_request,
    make_key,
    normalize_headers,
)

URL = "https://example.test/joke"


class Payload:
    """Body object without a custom repr."""


# ------------------------------------------------------------------ #
# Canonical string and key
# ------------------------------------------------------------------ #


class TestCanonicalString:
    @pytest.mark.asyncio
    async def test_bare_url_defaults_to_get(self) -> None:
        fp = await fingerprint_request(URL)
        assert fp.canonical_string == f"{URL}|GET|{{}}|"

    @pytest.mark.asyncio
    async def test_layout_with_headers_and_body(self) -> None:
        fp = await fingerprint_request(
            URL,
            {"method": "post", "headers": {"Content-Type": "text/plain"}, "body": "hi"},
        )
        assert fp.canonical_string == f'{URL}|POST|{{"content-type":"text/plain"}}|hi'

    def test_header_keys_are_sorted(self) -> None:
        canonical = canonicalize(URL, "GET", {"b": "2", "a": "1"}, "")
        assert canonical == f'{URL}|GET|{{"a":"1","b":"2"}}|'

    def test_non_ascii_is_kept_verbatim(self) -> None:
        canonical = canonicalize(URL, "GET", {"x-name": "Zoë"}, "café")
        assert '"x-name":"Zoë"' in canonical
        assert canonical.endswith("|café")


class TestKey:
    def test_key_is_truncated_base64_sha256(self) -> None:
        canonical = f"{URL}|GET|{{}}|"
        expected = base64.b64encode(hashlib.sha256(canonical.encode("utf-8")).digest())
        assert make_key(canonical) == expected.decode("ascii")[:KEY_LENGTH]
        assert len(make_key(canonical)) == 20

    @pytest.mark.asyncio
    async def test_deterministic(self) -> None:
        first = await fingerprint_request(URL, {"headers": {"Accept": "application/json"}})
        second = await fingerprint_request(URL, {"headers": {"Accept": "application/json"}})
        assert first == second

    @pytest.mark.asyncio
    async def test_different_bodies_differ(self) -> None:
        first = await fingerprint_request(URL, {"method": "POST", "body": "a"})
        second = await fingerprint_request(URL, {"method": "POST", "body": "b"})
        assert first.key != second.key


# ------------------------------------------------------------------ #
# Normalization
# ------------------------------------------------------------------ #


class TestHeaderNormalization:
    @pytest.mark.asyncio
    async def test_insertion_order_does_not_matter(self) -> None:
        first = await fingerprint_request(URL, {"headers": {"Accept": "a", "X-Trace": "1"}})
        second = await fingerprint_request(URL, {"headers": {"X-Trace": "1", "Accept": "a"}})
        assert first.key == second.key

    @pytest.mark.asyncio
    async def test_name_case_does_not_matter(self) -> None:
        first = await fingerprint_request(URL, {"headers": {"ACCEPT": "a"}})
        second = await fingerprint_request(URL, {"headers": {"accept": "a"}})
        assert first.key == second.key

    @pytest.mark.asyncio
    async def test_authorization_is_ignored(self) -> None:
        first = await fingerprint_request(URL, {"headers": {"Authorization": "Bearer one"}})
        second = await fingerprint_request(URL, {"headers": {"Authorization": "Bearer two"}})
        bare = await fingerprint_request(URL)
        assert first.key == second.key == bare.key
        assert "authorization" not in first.canonical_string.lower()

    @pytest.mark.asyncio
    async def test_custom_ignore_list(self) -> None:
        fp = await fingerprint_request(
            URL,
            {"headers": {"X-Api-Key": "secret", "Accept": "a"}},
            ignore_headers=("x-api-key",),
        )
        assert "secret" not in fp.canonical_string
        assert '"accept":"a"' in fp.canonical_string

    def test_accepts_json_string(self) -> None:
        assert normalize_headers('{"Accept": "a"}') == {"accept": "a"}

    def test_rejects_non_object_json_string(self) -> None:
        with pytest.raises(SerializationError):
            normalize_headers('["a", "b"]')

    def test_accepts_pairs_and_httpx_headers(self) -> None:
        assert normalize_headers([("X-A", "1")]) == {"x-a": "1"}
        assert normalize_headers(httpx.Headers({"X-A": "1"})) == {"x-a": "1"}


class TestBodyText:
    def test_none_is_empty(self) -> None:
        assert body_to_text(None) == ""

    def test_bytes_decode_as_utf8(self) -> None:
        assert body_to_text("héllo".encode("utf-8")) == "héllo"

    def test_invalid_utf8_stays_distinct(self) -> None:
        assert body_to_text(b"\xff") != body_to_text(b"\xfe")


# ------------------------------------------------------------------ #
# Multipart bodies
# ------------------------------------------------------------------ #


class TestMultipart:
    @pytest.mark.asyncio
    async def test_boundary_does_not_affect_key(self) -> None:
        files = {"upload": ("notes.txt", b"hello world", "text/plain")}
        first = httpx.Request("POST", URL, files=files)
        second = httpx.Request("POST", URL, files=files)
        assert first.headers["content-type"] != second.headers["content-type"]

        fp_first = await fingerprint_request(first)
        fp_second = await fingerprint_request(second)

        assert fp_first.key == fp_second.key
        assert '"content-type":"multipart/form-data"' in fp_first.canonical_string
        assert "boundary" not in fp_first.canonical_string

    @pytest.mark.asyncio
    async def test_different_parts_still_differ(self) -> None:
        first = httpx.Request("POST", URL, files={"upload": ("a.txt", b"one")})
        second = httpx.Request("POST", URL, files={"upload": ("a.txt", b"two")})
        assert (await fingerprint_request(first)).key != (await fingerprint_request(second)).key

    @pytest.mark.asyncio
    async def test_request_is_still_sendable_after_fingerprinting(self) -> None:
        request = httpx.Request("POST", URL, files={"upload": ("a.txt", b"one")})
        await fingerprint_request(request)
        assert b"one" in await request.aread()


# ------------------------------------------------------------------ #
# httpx.Request input
# ------------------------------------------------------------------ #


class TestHttpxRequest:
    @pytest.mark.asyncio
    async def test_uses_request_fields(self) -> None:
        request = httpx.Request("PUT", URL, content=b"payload", headers={"X-A": "1"})
        fp = await fingerprint_request(request)
        assert fp.canonical_string.startswith(f"{URL}|PUT|")
        assert '"x-a":"1"' in fp.canonical_string
        assert fp.canonical_string.endswith("|payload")

    @pytest.mark.asyncio
    async def test_init_overrides_request(self) -> None:
        request = httpx.Request("GET", URL)
        fp = await fingerprint_request(request, {"method": "delete", "headers": {}, "body": "x"})
        assert fp.canonical_string == f"{URL}|DELETE|{{}}|x"

    @pytest.mark.asyncio
    async def test_query_string_is_part_of_identity(self) -> None:
        first = await fingerprint_request(httpx.Request("GET", URL, params={"page": 1}))
        second = await fingerprint_request(httpx.Request("GET", URL, params={"page": 2}))
        assert first.key != second.key


# ------------------------------------------------------------------ #
# Unstable values
# ------------------------------------------------------------------ #


class TestUnstableValues:
    @pytest.mark.asyncio
    async def test_default_repr_in_header_raises(self) -> None:
        with pytest.raises(SerializationError):
            await fingerprint_request(URL, {"headers": {"x-payload": object()}})

    @pytest.mark.asyncio
    async def test_default_repr_in_body_raises(self) -> None:
        with pytest.raises(SerializationError):
            await fingerprint_request(URL, {"method": "POST", "body": Payload()})

    def test_exit_code(self) -> None:
        assert SerializationError("x").exit_code == 5


def _make_local_instance() -> object:
    class Token:
        pass

    return Token()


class TestUnstableReprs:
    @pytest.mark.asyncio
    async def test_local_class_in_header_raises(self) -> None:
        with pytest.raises(SerializationError):
            await fingerprint_request(URL, {"headers": {"x-token": _make_local_instance()}})

    @pytest.mark.asyncio
    async def test_generator_body_raises(self) -> None:
        body = (part for part in ("a", "b"))
        with pytest.raises(SerializationError):
            await fingerprint_request(URL, {"method": "POST", "body": body})

    @pytest.mark.asyncio
    async def test_function_body_raises(self) -> None:
        with pytest.raises(SerializationError):
            await fingerprint_request(URL, {"method": "POST", "body": _make_local_instance})

    def test_angle_brackets_in_text_are_fine(self) -> None:
        canonical = canonicalize(URL, "POST", {}, "<p>meet at 0x10 street</p>")
        assert canonical.endswith("|<p>meet at 0x10 street</p>")


# ------------------------------------------------------------------ #
# Client-added headers
# ------------------------------------------------------------------ #


class TestClientDefaults:
    @pytest.mark.asyncio
    async def test_client_request_matches_bare_url(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            await client.get(URL)

        fp = await fingerprint_request(seen[0])
        assert fp == await fingerprint_request(URL)
        assert fp.canonical_string == f"{URL}|GET|{{}}|"

    @pytest.mark.asyncio
    async def test_key_ignores_httpx_version_and_decoders(self) -> None:
        old = httpx.Request(
            "GET",
            URL,
            headers={"User-Agent": "python-httpx/0.27.0", "Accept-Encoding": "gzip, deflate"},
        )
        new = httpx.Request(
            "GET",
            URL,
            headers={
                "User-Agent": f"python-httpx/{httpx.__version__}",
                "Accept-Encoding": "gzip, deflate, br, zstd",
            },
        )
        assert (await fingerprint_request(old)).key == (await fingerprint_request(new)).key

    @pytest.mark.asyncio
    async def test_body_length_header_is_dropped(self) -> None:
        request = httpx.Request("POST", URL, content=b"payload")
        assert request.headers["content-length"] == "7"
        fp = await fingerprint_request(request)
        assert fp == await fingerprint_request(URL, {"method": "POST", "body": "payload"})

    @pytest.mark.asyncio
    async def test_custom_user_agent_and_accept_are_kept(self) -> None:
        request = httpx.Request(
            "GET", URL, headers={"User-Agent": "my-bot/1.0", "Accept": "application/json"}
        )
        fp = await fingerprint_request(request)
        assert '"user-agent":"my-bot/1.0"' in fp.canonical_string
        assert '"accept":"application/json"' in fp.canonical_string

    def test_drop_client_defaults(self) -> None:
        headers = {"host": "example.test", "accept": "*/*", "x-a": "1"}
        assert drop_client_defaults(headers) == {"x-a": "1"}
