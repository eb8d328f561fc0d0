import logging
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded

from studious.config import settings
from studious.core.errors import StudiousError
from studious.database.supabase_client import get_async_supabase
from studious.modules.chat.engine import ChatEngine
from studious.modules.chat.realtime import SupabaseChangeFeed
from studious.modules.chat.repository import ChatRepository
from studious.modules.ai import routes as ai_routes
from studious.modules.chat import routes as chat_routes
from studious.modules.groups import routes as groups_routes
from studious.modules.profiles import routes as profiles_routes
from studious.modules.resources import routes as resources_routes

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
app.state.chat_engine = None
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.exception_handler(StudiousError)
async def studious_exception_handler(request: Request, exc: StudiousError):
    if exc.status_code >= 500:
        logger.error(f"{type(exc).__name__} on {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled exception: %s", exc)
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
                    (b"X-XSS-Protection", b"1; mode=block"),
                ])
            await send(message)

        await self.app(scope, receive, send_with_headers)


app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.get_cors_origins_list(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include module routes
app.include_router(groups_routes.router, prefix="/api/v1")
app.include_router(chat_routes.router, prefix="/api/v1")
app.include_router(resources_routes.router, prefix="/api/v1")
app.include_router(profiles_routes.router, prefix="/api/v1")
app.include_router(ai_routes.router, prefix="/api/v1")


@app.on_event("startup")
async def startup_event():
    logger.info("Application startup")
    if not settings.supabase_url or not settings.supabase_key:
        logger.warning("Supabase is not configured; chat engine disabled")
        return
    try:
        client = await get_async_supabase()
    except Exception as e:
        logger.error(f"Could not start chat engine: {e}")
        return
    app.state.chat_engine = ChatEngine(ChatRepository(client), SupabaseChangeFeed(client), settings)
    logger.info("Chat engine started")


@app.on_event("shutdown")
async def shutdown_event():
    engine = app.state.chat_engine
    app.state.chat_engine = None
    if engine is not None:
        await engine.close()
    logger.info("Application shutdown")


@app.get("/")
async def root():
    return {"message": "Welcome to studious-backend", "status": "healthy"}


@app.get("/health")
@limiter.exempt
async def health():
    return {"status": "healthy"}


@app.get("/ready")
@limiter.exempt
async def ready():
    """Readiness check: ready once the chat engine holds a realtime client."""
    if app.state.chat_engine is None:
        return JSONResponse(status_code=503, content={"status": "not ready"})
    return {"status": "ready"}
