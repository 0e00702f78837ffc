from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.api.routes import router
from app.config.settings import get_settings
from app.integrations.browser_session import BrowserSessionManager
from app.services.extraction import build_extraction_chain
from app.services.quote_cache import QuoteCache
from app.services.quote_gateway import QuoteAcquisitionService
from app.services.single_flight import SingleFlightGuard


def build_quote_service(settings=None) -> QuoteAcquisitionService:
    settings = settings or get_settings()
    return QuoteAcquisitionService(
        session_manager=BrowserSessionManager(settings),
        extraction_chain=build_extraction_chain(settings),
        quote_cache=QuoteCache(),
        guard=SingleFlightGuard(deadline_sec=settings.QUOTE_GUARD_DEADLINE_SEC),
        stale_after_sec=settings.QUOTE_STALE_AFTER_SEC,
    )


def make_loop_exception_handler(service: QuoteAcquisitionService):
    """Loop hook that frees the guard only if its holder died without cleanup."""

    def _handler(loop: asyncio.AbstractEventLoop, context: dict) -> None:
        error = context.get("exception") or context.get("message")
        print(f"[APP][unhandled_loop_error] error={error}", flush=True)
        service.guard.reset_if_orphaned("unhandled-loop-error")
        loop.default_exception_handler(context)

    return _handler


def _install_loop_exception_handler(app: FastAPI) -> None:
    loop = asyncio.get_running_loop()
    loop.set_exception_handler(make_loop_exception_handler(app.state.quote_service))


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = app.state.get_settings()
    _install_loop_exception_handler(app)
    print(
        f"[APP][startup] port={settings.PORT} env={settings.APP_ENV} trading_url={settings.trading_url}",
        flush=True,
    )
    try:
        yield
    finally:
        app.state.quote_service.guard.force_reset("shutdown")
        print("[APP][shutdown]", flush=True)


app = FastAPI(title="Grinex Quote Gateway", version="0.1.0", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def allow_framing(request: Request, call_next):
    response = await call_next(request)
    response.headers["X-Frame-Options"] = "ALLOWALL"
    response.headers["Content-Security-Policy"] = "frame-ancestors *"
    return response


@app.exception_handler(Exception)
async def unhandled_error(request: Request, exc: Exception):
    print(f"[APP][unhandled_error] path={request.url.path} error={exc}", flush=True)
    request.app.state.quote_service.guard.reset_if_orphaned("unhandled-error")
    return JSONResponse(status_code=500, content={"success": False, "error": str(exc) or "internal error"})


app.include_router(router, prefix="/api")

app.state.get_settings = get_settings
app.state.quote_service = build_quote_service()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=get_settings().PORT)
