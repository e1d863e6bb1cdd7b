# app/main.py
"""
FastAPI application entry point.
Includes security middleware, global error handlers, and all routers.
"""

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware
from app.routers import forecast, garages, health, scrape, trends
from app.database import create_tables
from app.config import settings
from app.utils.logger import get_logger
import time
import asyncio

logger = get_logger(__name__)

app = FastAPI(
    title="Garage Occupancy Forecast API",
    description="Scrapes garage occupancy, stores readings, serves forecasts and trends.",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
)

# ── CORS (dashboard is served from a different origin) ──────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],   # Restrict to dashboard origin in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ── API Key Middleware ───────────────────────────────────────────────────────
class APIKeyMiddleware(BaseHTTPMiddleware):
    """
    Optional lightweight API key auth for read endpoints.
    The scrape trigger has its own Bearer secret and health stays open for probes.
    Set API_KEY in .env. Leave empty to disable auth.
    """
    open_paths = {"/api/v1/scrape", "/api/v1/health", "/docs", "/redoc", "/openapi.json"}

    async def dispatch(self, request: Request, call_next):
        if request.url.path in self.open_paths or not settings.API_KEY:
            return await call_next(request)

        api_key = request.headers.get("X-API-Key") or request.query_params.get("api_key")
        if api_key != settings.API_KEY:
            return JSONResponse(
                status_code=status.HTTP_401_UNAUTHORIZED,
                content={"detail": "Invalid or missing API key"},
            )
        return await call_next(request)


if settings.API_KEY:
    app.add_middleware(APIKeyMiddleware)


# ── Request Timing Middleware ────────────────────────────────────────────────
@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.time()
    response = await call_next(request)
    duration = round((time.time() - start) * 1000, 2)
    logger.debug(f"{request.method} {request.url.path} → {response.status_code} ({duration}ms)")
    return response


# ── Validation Errors ────────────────────────────────────────────────────────
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Malformed query/body parameters are client errors: 400, not FastAPI's 422."""
    messages = []
    for err in exc.errors():
        field = ".".join(str(part) for part in err.get("loc", ()) if part not in ("query", "body"))
        messages.append(f"{field}: {err.get('msg')}" if field else err.get("msg"))
    logger.debug(f"Rejected {request.method} {request.url.path}: {messages}")
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": "; ".join(messages)},
    )


# ── Global Exception Handler ─────────────────────────────────────────────────
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception on {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error"},
    )


# ── Routers ──────────────────────────────────────────────────────────────────
app.include_router(garages.router,  prefix="/api/v1", tags=["🅿️  Garages"])
app.include_router(forecast.router, prefix="/api/v1", tags=["🔮 Forecast"])
app.include_router(trends.router,   prefix="/api/v1", tags=["📈 Trends"])
app.include_router(scrape.router,   prefix="/api/v1", tags=["📡 Scrape"])
app.include_router(health.router,   prefix="/api/v1", tags=["💚 Health"])


_background_tasks = set()


# ── Startup ───────────────────────────────────────────────────────────────────
@app.on_event("startup")
async def startup():
    logger.info("🚀 Garage Forecast backend starting up...")
    create_tables()
    logger.info("✅ Database tables ready")
    logger.info(f"📡 Status page: {settings.PARKING_STATUS_URL}")
    logger.info(f"🌐 Listening on http://{settings.HOST}:{settings.PORT}")
    logger.info("📖 API docs at /docs")

    if settings.SCRAPE_POLLING_ENABLED:
        from app.services.scrape_poller import start_scrape_polling
        task = asyncio.create_task(start_scrape_polling(settings.SCRAPE_INTERVAL_SECONDS), name="scrape-poller")
        _background_tasks.add(task)
        task.add_done_callback(_background_tasks.discard)
        logger.info("📡 Scrape polling started")


@app.on_event("shutdown")
async def shutdown():
    logger.info("🛑 Garage Forecast backend shutting down...")
    for task in list(_background_tasks):
        task.cancel()
