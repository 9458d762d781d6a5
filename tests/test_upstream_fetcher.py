from __future__ import annotations

import base64

import httpx
import pytest

from fileproxy.common.schemas import AuthMode, Registration
from fileproxy.common.settings import FileProxySettings
from fileproxy.proxy.errors import DownloadError, UpstreamNotFound
from fileproxy.proxy.fetcher import FetchedFile, UpstreamFetcher, content_disposition, encode_header_values
from tests.utils.harness import RecordingUpstream

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32


def _registration(**overrides) -> Registration:
    fields = {
        "id": "abc",
        "target_url": "https://files.example.com/y.png",
        "content_type": "image/png",
    }
    fields.update(overrides)
    return Registration(**fields)


def _fetcher(settings: FileProxySettings, upstream: RecordingUpstream) -> UpstreamFetcher:
    client = httpx.AsyncClient(transport=upstream.transport())
    return UpstreamFetcher(client, settings)


@pytest.mark.asyncio
async def test_fetch_returns_body_and_headers(settings: FileProxySettings) -> None:
    upstream = RecordingUpstream(lambda request: httpx.Response(200, content=PNG_BYTES))
    fetched = await _fetcher(settings, upstream).fetch(_registration(download_name="y.png"))

    assert fetched.content == PNG_BYTES
    assert fetched.headers() == {
        "Content-Type": "image/png",
        "Content-Disposition": 'attachment; filename="y.png"',
    }
    assert str(upstream.requests[0].url) == "https://files.example.com/y.png"


@pytest.mark.asyncio
async def test_fetch_preserves_chunk_order(settings: FileProxySettings) -> None:
    chunks = [b"first-", b"second-", b"third"]
    upstream = RecordingUpstream(lambda request: httpx.Response(200, stream=httpx.ByteStream(b"".join(chunks))))

    fetched = await _fetcher(settings, upstream).fetch(_registration())

    assert fetched.content == b"first-second-third"


@pytest.mark.asyncio
async def test_basic_auth_header_uses_configured_credentials(settings: FileProxySettings) -> None:
    upstream = RecordingUpstream(lambda request: httpx.Response(200, content=b"ok"))

    await _fetcher(settings, upstream).fetch(_registration(auth_mode=AuthMode.BASIC))

    expected = "Basic " + base64.b64encode(b"proxy-user:proxy-pass").decode("ascii")
    assert upstream.requests[0].headers["Authorization"] == expected


@pytest.mark.asyncio
async def test_no_auth_header_without_basic_mode(settings: FileProxySettings) -> None:
    upstream = RecordingUpstream(lambda request: httpx.Response(200, content=b"ok"))

    await _fetcher(settings, upstream).fetch(_registration())

    assert "Authorization" not in upstream.requests[0].headers


@pytest.mark.asyncio
@pytest.mark.parametrize("upstream_status", [500, 404, 403, 204, 302])
async def test_non_200_upstream_is_not_found(settings: FileProxySettings, upstream_status: int) -> None:
    headers = {"Location": "https://elsewhere.example.com/"} if upstream_status == 302 else {}
    upstream = RecordingUpstream(lambda request: httpx.Response(upstream_status, headers=headers))

    with pytest.raises(UpstreamNotFound) as exc_info:
        await _fetcher(settings, upstream).fetch(_registration())

    assert exc_info.value.upstream_status == upstream_status
    assert len(upstream.requests) == 1


@pytest.mark.asyncio
async def test_unreachable_upstream_is_download_error(settings: FileProxySettings) -> None:
    def refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(DownloadError):
        await _fetcher(settings, RecordingUpstream(refuse)).fetch(_registration())


@pytest.mark.asyncio
async def test_timeout_is_download_error(settings: FileProxySettings) -> None:
    def stall(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(DownloadError):
        await _fetcher(settings, RecordingUpstream(stall)).fetch(_registration())


@pytest.mark.asyncio
async def test_mid_transfer_failure_is_download_error(settings: FileProxySettings) -> None:
    class BrokenStream(httpx.AsyncByteStream):
        async def __aiter__(self):
            yield b"partial"
            raise httpx.ReadError("connection reset")

    upstream = RecordingUpstream(lambda request: httpx.Response(200, stream=BrokenStream()))

    with pytest.raises(DownloadError):
        await _fetcher(settings, upstream).fetch(_registration())


@pytest.mark.asyncio
@pytest.mark.parametrize("target", ["not a url", "ftp://files.example.com/a", "https://", "http://files.example.com/a"])
async def test_malformed_or_insecure_targets_are_download_errors(settings: FileProxySettings, target: str) -> None:
    upstream = RecordingUpstream(lambda request: httpx.Response(200, content=b"never"))

    with pytest.raises(DownloadError):
        await _fetcher(settings, upstream).fetch(_registration(target_url=target))

    assert upstream.requests == []


@pytest.mark.asyncio
async def test_plain_http_allowed_when_configured(settings: FileProxySettings) -> None:
    insecure = settings.model_copy(update={"allow_insecure_upstream": True})
    upstream = RecordingUpstream(lambda request: httpx.Response(200, content=b"ok"))

    fetched = await _fetcher(insecure, upstream).fetch(_registration(target_url="http://files.example.com/a"))

    assert fetched.content == b"ok"


@pytest.mark.asyncio
async def test_oversized_body_is_download_error(settings: FileProxySettings) -> None:
    capped = settings.model_copy(update={"max_download_bytes": 4})
    upstream = RecordingUpstream(lambda request: httpx.Response(200, content=b"too large"))

    with pytest.raises(DownloadError):
        await _fetcher(capped, upstream).fetch(_registration())


def test_fetched_file_without_download_name_has_no_disposition() -> None:
    assert FetchedFile(content=b"", content_type="text/plain").headers() == {"Content-Type": "text/plain"}


def test_content_disposition_escapes_and_encodes() -> None:
    assert content_disposition('re"port\r\n.pdf') == 'attachment; filename="re\\"port.pdf"'
    assert content_disposition("отчёт.pdf") == (
        "attachment; filename=\"?????.pdf\"; filename*=UTF-8''%D0%BE%D1%82%D1%87%D1%91%D1%82.pdf"
    )


@pytest.mark.asyncio
@pytest.mark.parametrize("content_type", ["text/plain; name=отчёт", "text/plain\r\nX-Injected: 1"])
async def test_unsendable_content_type_is_download_error(settings: FileProxySettings, content_type: str) -> None:
    upstream = RecordingUpstream(lambda request: httpx.Response(200, content=b"ok"))

    with pytest.raises(DownloadError):
        await _fetcher(settings, upstream).fetch(_registration(content_type=content_type))

    assert upstream.requests == []


def test_non_ascii_download_name_stays_sendable() -> None:
    encode_header_values(FetchedFile(b"", "application/pdf", "отчёт.pdf").headers())
