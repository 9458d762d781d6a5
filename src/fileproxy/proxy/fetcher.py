"""Upstream retrieval for live registrations."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional
from urllib.parse import quote

import httpx
import structlog
from opentelemetry import trace

from ..common.schemas import AuthMode, Registration
from ..common.settings import FileProxySettings
from .errors import DownloadError, UpstreamNotFound

LOGGER = structlog.get_logger("fileproxy.fetcher")
TRACER = trace.get_tracer("fileproxy.fetcher")

_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")


def content_disposition(download_name: str) -> str:
    """Build an attachment disposition header for ``download_name``."""
    name = _CONTROL_CHARS.sub("", download_name)
    quoted = name.replace("\\", "\\\\").replace('"', '\\"')
    if quoted.isascii():
        return f'attachment; filename="{quoted}"'
    fallback = quoted.encode("ascii", "replace").decode("ascii")
    return f"attachment; filename=\"{fallback}\"; filename*=UTF-8''{quote(name, safe='')}"


def encode_header_values(headers: dict[str, str]) -> None:
    """Raise ``ValueError`` for any header value the ASGI server could not send."""
    for name, value in headers.items():
        if "\r" in value or "\n" in value:
            raise ValueError(f"{name} header contains a line break")
        value.encode("latin-1")


@dataclass(frozen=True)
class FetchedFile:
    content: bytes
    content_type: str
    download_name: Optional[str] = None

    def headers(self) -> dict[str, str]:
        headers = {"Content-Type": self.content_type}
        if self.download_name:
            headers["Content-Disposition"] = content_disposition(self.download_name)
        return headers


class UpstreamFetcher:
    """Downloads a registration's target in full before anything is handed back.

    Nothing is returned until the upstream transfer has finished, so a
    failure at any point can still be reported as a single error.
    """

    def __init__(self, http_client: httpx.AsyncClient, settings: FileProxySettings) -> None:
        self._http = http_client
        self._allow_insecure = settings.allow_insecure_upstream
        self._max_bytes = settings.max_download_bytes
        self._auth = httpx.BasicAuth(
            settings.basic_auth_username,
            settings.basic_auth_password.get_secret_value(),
        )

    def _auth_for(self, registration: Registration) -> Optional[httpx.BasicAuth]:
        if registration.auth_mode == AuthMode.BASIC:
            return self._auth
        return None

    def _validate_target(self, target_url: str) -> httpx.URL:
        url = httpx.URL(target_url)
        allowed = {"https", "http"} if self._allow_insecure else {"https"}
        if url.scheme not in allowed or not url.host:
            raise DownloadError(f"Unsupported upstream URL: {target_url}")
        return url

    async def fetch(self, registration: Registration) -> FetchedFile:
        with TRACER.start_as_current_span(
            "fileproxy.fetch",
            attributes={"fileproxy.registration_id": registration.id},
        ) as span:
            try:
                url = self._validate_target(registration.target_url)
                encode_header_values(
                    FetchedFile(b"", registration.content_type, registration.download_name).headers()
                )
                chunks: list[bytes] = []
                received = 0
                async with self._http.stream(
                    "GET",
                    url,
                    auth=self._auth_for(registration),
                    follow_redirects=False,
                ) as response:
                    if response.status_code != httpx.codes.OK:
                        span.set_attribute("fileproxy.upstream_status", response.status_code)
                        LOGGER.info(
                            "upstream_not_found",
                            registration_id=registration.id,
                            upstream_status=response.status_code,
                        )
                        raise UpstreamNotFound(upstream_status=response.status_code)
                    async for chunk in response.aiter_bytes():
                        received += len(chunk)
                        if self._max_bytes is not None and received > self._max_bytes:
                            raise DownloadError(f"Upstream body exceeds {self._max_bytes} bytes")
                        chunks.append(chunk)
            except UpstreamNotFound:
                raise
            except DownloadError as exc:
                LOGGER.warning("upstream_download_failed", registration_id=registration.id, error=exc.detail)
                raise
            except (httpx.HTTPError, httpx.InvalidURL, httpx.StreamError, ValueError) as exc:
                LOGGER.warning(
                    "upstream_download_failed",
                    registration_id=registration.id,
                    error=str(exc),
                    error_type=type(exc).__name__,
                )
                raise DownloadError(str(exc)) from exc

            content = b"".join(chunks)
            span.set_attribute("fileproxy.bytes", len(content))
            LOGGER.info("upstream_fetched", registration_id=registration.id, bytes=len(content))
            return FetchedFile(
                content=content,
                content_type=registration.content_type,
                download_name=registration.download_name,
            )
