"""HTTP surface of the file proxy: register, delete and fetch by identifier."""

from __future__ import annotations

import time
from contextlib import asynccontextmanager
from typing import Optional

import httpx
import structlog
from fastapi import Depends, FastAPI, HTTPException, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import HTMLResponse, JSONResponse, PlainTextResponse
from opentelemetry import trace
from redis.asyncio import Redis

from .. import __version__
from ..common.http_security import require_metrics_access
from ..common.metrics import GLOBAL_REGISTRY, Counter, Histogram
from ..common.observability import configure_logging, configure_tracing, instrument_app, registration_context
from ..common.ratelimit import InMemoryRateLimiter, RateLimiter
from ..common.schemas import MessageResponse, RegistrationCreatedResponse, RegistrationRequest
from ..common.settings import FileProxySettings
from .errors import FileProxyError, RegistrationExpired
from .fetcher import UpstreamFetcher
from .messages import render_error_page
from .registrations import Clock, RegistrationManager, epoch_millis
from .store import LocalRegistrationStore

REQUEST_COUNTER = GLOBAL_REGISTRY.register(Counter("fileproxy_http_requests_total", "Total HTTP requests"))
CREATED_COUNTER = GLOBAL_REGISTRY.register(Counter("fileproxy_registrations_created_total", "Registrations created"))
DELETED_COUNTER = GLOBAL_REGISTRY.register(Counter("fileproxy_registrations_deleted_total", "Registrations deleted"))
EXPIRED_COUNTER = GLOBAL_REGISTRY.register(
    Counter("fileproxy_registrations_expired_total", "Expired registrations discovered on read")
)
FAILURE_COUNTER = GLOBAL_REGISTRY.register(
    Counter("fileproxy_failures_total", "Requests answered with an error, by kind", labelnames=("kind",))
)
BYTES_SERVED_COUNTER = GLOBAL_REGISTRY.register(Counter("fileproxy_bytes_served_total", "Bytes proxied to callers"))
RATE_LIMITED_COUNTER = GLOBAL_REGISTRY.register(
    Counter("fileproxy_rate_limited_total", "Requests rejected by the rate limiter")
)
LATENCY_HISTOGRAM = GLOBAL_REGISTRY.register(
    Histogram(
        "fileproxy_request_latency_seconds",
        buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
        description="HTTP request latency",
    )
)
TRACER = trace.get_tracer("fileproxy.proxy")

RATE_LIMIT_EXEMPT_PATHS = frozenset({"/healthz", "/metrics"})


class FileProxyState:
    """Per-process collaborators shared by every request."""

    def __init__(self, settings: FileProxySettings, clock: Clock) -> None:
        self.settings = settings
        self.store = LocalRegistrationStore(settings.storage_path)
        self.registrations = RegistrationManager(self.store, clock=clock)
        self.fetcher: Optional[UpstreamFetcher] = None
        self.http_client: Optional[httpx.AsyncClient] = None
        self.rate_limiter: InMemoryRateLimiter | RateLimiter = InMemoryRateLimiter()
        self.logger = structlog.get_logger("fileproxy.proxy")

    async def open(self, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        self.http_client = httpx.AsyncClient(
            timeout=httpx.Timeout(self.settings.upstream_timeout_seconds),
            transport=transport,
        )
        self.fetcher = UpstreamFetcher(self.http_client, self.settings)
        if self.settings.redis_url:
            self.rate_limiter = RateLimiter(Redis.from_url(self.settings.redis_url))
        await self.store.ensure_ready()

    async def close(self) -> None:
        if self.http_client is not None:
            await self.http_client.aclose()
            self.http_client = None
        await self.rate_limiter.close()


def get_state(request: Request) -> FileProxyState:
    return request.app.state.proxy_state  # type: ignore[attr-defined]


def _client_key(request: Request) -> str:
    host = request.client.host if request.client else "unknown"
    return f"client:{host}"


def _record_failure(state: FileProxyState, exc: FileProxyError) -> None:
    FAILURE_COUNTER.inc(kind=type(exc).__name__)
    state.logger.info("request_failed", kind=type(exc).__name__, code=exc.code, detail=exc.detail)


def create_app(
    settings: Optional[FileProxySettings] = None,
    *,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    clock: Clock = epoch_millis,
) -> FastAPI:
    settings = settings or FileProxySettings()
    configure_logging(settings.log_level)
    tracer_provider = configure_tracing(settings)
    state = FileProxyState(settings, clock)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await state.open(transport)
        state.logger.info("file_proxy_started", storage_path=str(settings.storage_path))
        try:
            yield
        finally:
            await state.close()
            state.logger.info("file_proxy_stopped")

    app = FastAPI(
        title="File proxy",
        version=__version__,
        description="Registers remote files under an identifier and serves their bytes through it.",
        lifespan=lifespan,
    )
    instrument_app(app, tracer_provider)
    app.state.proxy_state = state

    @app.exception_handler(RequestValidationError)
    async def handle_invalid_body(request: Request, exc: RequestValidationError) -> JSONResponse:
        FAILURE_COUNTER.inc(kind="CreateFailed")
        state.logger.info("registration_body_invalid", path=request.url.path, errors=len(exc.errors()))
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"message": "CREATE_ERROR", "detail": jsonable_errors(exc)},
        )

    @app.middleware("http")
    async def enforce_rate_limit(request: Request, call_next):  # noqa: ANN001 - FastAPI middleware signature
        limit = settings.throttle_limit
        if limit <= 0 or request.url.path in RATE_LIMIT_EXEMPT_PATHS:
            return await call_next(request)

        window = settings.throttle_window_seconds
        key = _client_key(request)
        allowed, count = await state.rate_limiter.check_limit(key, limit=limit, window_seconds=window)
        reset = await state.rate_limiter.ttl(key, window)
        headers = {
            "RateLimit-Policy": f"{limit};w={window}",
            "RateLimit": f"limit={limit}, remaining={max(0, limit - count)}, reset={reset}",
        }
        if not allowed:
            RATE_LIMITED_COUNTER.inc()
            headers["Retry-After"] = str(reset)
            return JSONResponse(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                content={"message": "TOO_MANY_REQUESTS"},
                headers=headers,
            )
        response = await call_next(request)
        response.headers.update(headers)
        return response

    @app.middleware("http")
    async def record_latency(request: Request, call_next):  # noqa: ANN001 - FastAPI middleware signature
        start = time.perf_counter()
        REQUEST_COUNTER.inc()
        try:
            response = await call_next(request)
        except Exception:
            duration = time.perf_counter() - start
            LATENCY_HISTOGRAM.observe(duration)
            state.logger.exception(
                "http_request_error",
                method=request.method,
                path=request.url.path,
                duration_ms=round(duration * 1000, 2),
            )
            raise

        duration = time.perf_counter() - start
        LATENCY_HISTOGRAM.observe(duration)
        log_kwargs = {
            "method": request.method,
            "path": request.url.path,
            "status": response.status_code,
            "duration_ms": round(duration * 1000, 2),
        }
        if response.status_code >= 500:
            state.logger.error("http_request", **log_kwargs)
        elif duration >= 5.0:
            state.logger.warning("http_request", **log_kwargs)
        else:
            state.logger.info("http_request", **log_kwargs)
        return response

    @app.post(
        "/file",
        response_model=RegistrationCreatedResponse,
        responses={status.HTTP_400_BAD_REQUEST: {"model": MessageResponse}},
        summary="Register a remote file under an identifier",
    )
    async def create_file(
        payload: RegistrationRequest,
        state: FileProxyState = Depends(get_state),
    ) -> JSONResponse:
        with registration_context(payload.id), TRACER.start_as_current_span(
            "fileproxy.create", attributes={"fileproxy.registration_id": payload.id}
        ):
            try:
                registration = await state.registrations.create(payload)
            except FileProxyError as exc:
                _record_failure(state, exc)
                return JSONResponse(status_code=exc.status_code, content={"message": exc.code})
            CREATED_COUNTER.inc()
            return JSONResponse({"message": "File uploaded", "file": registration.to_wire()})

    @app.delete(
        "/file/{file_id}",
        response_model=MessageResponse,
        responses={status.HTTP_400_BAD_REQUEST: {"model": MessageResponse}},
        summary="Delete a registration",
    )
    async def delete_file(file_id: str, state: FileProxyState = Depends(get_state)) -> JSONResponse:
        with registration_context(file_id), TRACER.start_as_current_span(
            "fileproxy.delete", attributes={"fileproxy.registration_id": file_id}
        ):
            try:
                await state.registrations.delete(file_id)
            except FileProxyError as exc:
                _record_failure(state, exc)
                return JSONResponse(status_code=exc.status_code, content={"message": exc.code})
            DELETED_COUNTER.inc()
            return JSONResponse({"message": "DELETED"})

    @app.get(
        "/file/{file_id}",
        response_class=Response,
        responses={
            status.HTTP_200_OK: {"description": "The upstream file's bytes"},
            status.HTTP_400_BAD_REQUEST: {"description": "Localized HTML error page", "content": {"text/html": {}}},
            status.HTTP_404_NOT_FOUND: {"description": "Localized HTML error page", "content": {"text/html": {}}},
        },
        summary="Fetch a registered file through the proxy",
    )
    async def fetch_file(file_id: str, state: FileProxyState = Depends(get_state)) -> Response:
        with registration_context(file_id), TRACER.start_as_current_span(
            "fileproxy.get", attributes={"fileproxy.registration_id": file_id}
        ):
            try:
                registration = await state.registrations.resolve_for_read(file_id)
                fetched = await state.fetcher.fetch(registration)
            except FileProxyError as exc:
                if isinstance(exc, RegistrationExpired):
                    EXPIRED_COUNTER.inc()
                _record_failure(state, exc)
                return HTMLResponse(render_error_page(exc.code), status_code=exc.status_code)
            BYTES_SERVED_COUNTER.inc(len(fetched.content))
            return Response(content=fetched.content, headers=fetched.headers())

    @app.get("/metrics", response_class=PlainTextResponse, include_in_schema=False)
    async def metrics_endpoint(request: Request, state: FileProxyState = Depends(get_state)) -> PlainTextResponse:
        token = state.settings.metrics_token.get_secret_value() if state.settings.metrics_token else None
        require_metrics_access(request, token)
        return PlainTextResponse(GLOBAL_REGISTRY.render())

    @app.get("/healthz", status_code=status.HTTP_200_OK, tags=["health"])
    async def health_check(state: FileProxyState = Depends(get_state)) -> dict:
        """Readiness probe: the registration directory must be writable."""
        store_status = state.store.status()
        health = {"status": "healthy", "checks": {"store": store_status}}
        if not store_status.get("writable"):
            health["status"] = "unhealthy"
            raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=health)
        return health

    return app


def jsonable_errors(exc: RequestValidationError) -> list[dict[str, object]]:
    return [
        {"loc": list(error.get("loc", ())), "msg": error.get("msg", ""), "type": error.get("type", "")}
        for error in exc.errors()
    ]
