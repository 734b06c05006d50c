from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI

from sessionauth.api.error_handling import register_exception_handlers
from sessionauth.api.routes import router
from sessionauth.logging import get_logger, set_correlation_id

logger = get_logger(__name__)

__version__ = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the expired-session sweep on startup; release the store on shutdown."""
    from sessionauth.service.runtime import get_runtime

    runtime = get_runtime()
    if runtime.settings.sweep_enabled:
        await runtime.sweeper.start()
    else:
        logger.info("session_sweeper_disabled")

    yield

    try:
        await runtime.close()
        logger.info("runtime_cleanup_complete")
    except Exception as exc:
        logger.error("shutdown_failed", error=str(exc))


app = FastAPI(title="Session Auth", version=__version__, lifespan=lifespan)


@app.middleware("http")
async def add_correlation_id(request, call_next):
    """Bind a correlation id for the request's log lines and echo it back.

    Taken from ``X-Request-ID`` when the client sends one, generated otherwise.
    """
    correlation_id = set_correlation_id(request.headers.get("X-Request-ID"))
    response = await call_next(request)
    response.headers["X-Request-ID"] = correlation_id
    return response


@app.middleware("http")
async def add_security_headers(request, call_next):
    response = await call_next(request)
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("X-Frame-Options", "DENY")
    # responses carry bearer tokens
    if request.url.path.startswith("/api/auth"):
        response.headers.setdefault("Cache-Control", "no-store")
    return response


register_exception_handlers(app)
app.include_router(router)


@app.get("/healthz")
def health():
    return {"status": "healthy", "version": __version__}
