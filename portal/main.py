import asyncio
import logging
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from portal.config.settings import settings
from portal.modules.streams import routes as streams_routes
from portal.modules.social import routes as social_routes

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%dT%H:%M:%SZ",
)
logger = logging.getLogger(__name__)

limiter = Limiter(key_func=get_remote_address, default_limits=[settings.rate_limit])
app = FastAPI(
    title=settings.app_name,
    debug=settings.debug,
    redirect_slashes=False,
)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

_background_tasks = []


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled exception on %s: %s", request.url.path, exc)
    if settings.is_production:
        return JSONResponse(status_code=500, content={"detail": "Internal server error"})
    return JSONResponse(status_code=500, content={"detail": str(exc)})


class SecurityHeadersMiddleware:
    def __init__(self, app):
        self.app = app

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        async def send_with_headers(message):
            if message["type"] == "http.response.start":
                message.setdefault("headers", [])
                message["headers"].extend([
                    (b"X-Content-Type-Options", b"nosniff"),
                    (b"X-Frame-Options", b"DENY"),
                    (b"Referrer-Policy", b"strict-origin-when-cross-origin"),
                ])
            await send(message)

        await self.app(scope, receive, send_with_headers)


app.add_middleware(SlowAPIMiddleware)
app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.get_cors_origins_list(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(streams_routes.router, prefix="/api/v1")
app.include_router(streams_routes.webhook_router, prefix="/api/v1")
app.include_router(social_routes.router, prefix="/api/v1")

# Provider callbacks are not rate limited
limiter.exempt(streams_routes.livepush_webhook)
limiter.exempt(streams_routes.mux_webhook)


@app.on_event("startup")
async def startup_event():
    logger.info(f"Application startup ({settings.environment})")
    if not settings.enable_background_workers:
        logger.info("Background workers disabled")
        return

    from portal.modules.streams.poller import stream_poll_loop
    from portal.modules.social.processor import scheduled_posts_loop
    from portal.modules.social.tokens import token_refresh_loop

    _background_tasks.append(asyncio.create_task(stream_poll_loop()))
    _background_tasks.append(asyncio.create_task(scheduled_posts_loop()))
    _background_tasks.append(asyncio.create_task(token_refresh_loop()))
    logger.info(
        f"Background workers started: stream poll every {settings.stream_poll_interval_seconds}s, "
        f"scheduled posts every {settings.scheduled_posts_interval_seconds}s, "
        f"token refresh every {settings.token_refresh_interval_seconds}s"
    )


@app.on_event("shutdown")
async def shutdown_event():
    for task in _background_tasks:
        task.cancel()
    _background_tasks.clear()
    logger.info("Application shutdown")


@app.get("/")
async def root():
    return {"message": "Welcome to artist-portal-backend", "status": "healthy"}


@app.get("/health")
@limiter.exempt
async def health():
    return {"status": "healthy"}


@app.get("/ready")
@limiter.exempt
async def ready():
    """Readiness check: reports whether the stream provider credentials are present."""
    return {"status": "ready", "mux_configured": settings.mux_configured}
