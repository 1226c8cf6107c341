from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, Dict

from fastapi import FastAPI
from fastapi.responses import JSONResponse
from redis.exceptions import RedisError

from authgate.api.error_handling import register_exception_handlers
from authgate.api.routes import router
from authgate.logging import get_logger, set_correlation_id
from authgate.storage.errors import StoreUnavailable

logger = get_logger(__name__)

__version__ = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open backends on startup and release them on shutdown."""
    from authgate.service.runtime import get_runtime

    runtime = get_runtime()
    await runtime.startup()

    yield

    try:
        await runtime.close()
        logger.info("runtime_cleanup_complete")
    except Exception as exc:
        logger.error("shutdown_failed", error=str(exc))


async def add_correlation_id(request, call_next):
    """Tag every log line of a request with its correlation id.

    The id comes from the ``X-Request-ID`` header when the client sends one
    and is echoed back on the response.
    """
    correlation_id = set_correlation_id(request.headers.get("X-Request-ID"))
    response = await call_next(request)
    response.headers["X-Request-ID"] = correlation_id
    return response


async def add_security_headers(request, call_next):
    response = await call_next(request)
    response.headers.setdefault("X-Frame-Options", "DENY")
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("Referrer-Policy", "no-referrer")
    response.headers.setdefault("Cache-Control", "no-store")
    response.headers.setdefault("Content-Security-Policy", "default-src 'none'; frame-ancestors 'none'")
    if request.url.scheme == "https":
        response.headers.setdefault(
            "Strict-Transport-Security", "max-age=63072000; includeSubDomains"
        )
    return response


async def health() -> JSONResponse:
    """Report backend reachability."""
    from authgate.service.runtime import get_runtime

    runtime = get_runtime()
    checks: Dict[str, Any] = {
        "store": "memory" if runtime.settings.use_memory_store else "postgres",
    }
    healthy = True
    ping_store = getattr(runtime.store, "ping", None)
    if ping_store is not None:
        try:
            await ping_store()
            checks["database"] = "ok"
        except StoreUnavailable as exc:
            healthy = False
            checks["database"] = "unavailable"
            logger.warning("health_database_failed", error=str(exc.__cause__ or exc))
    if runtime.cache is not None:
        try:
            await runtime.cache.client.ping()
            checks["redis"] = "ok"
        except (RedisError, OSError) as exc:
            healthy = False
            checks["redis"] = "unavailable"
            logger.warning("health_redis_failed", error=str(exc))
    payload = {"status": "ok" if healthy else "degraded", "version": __version__, "checks": checks}
    return JSONResponse(status_code=200 if healthy else 503, content=payload)


def create_app() -> FastAPI:
    application = FastAPI(title="Authgate", version=__version__, lifespan=lifespan)
    application.middleware("http")(add_security_headers)
    application.middleware("http")(add_correlation_id)
    register_exception_handlers(application)
    application.include_router(router)
    application.add_api_route("/healthz", health, methods=["GET"], tags=["health"])
    return application


app = create_app()
