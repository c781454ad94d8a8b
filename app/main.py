"""
NicheAI backend entry point.

Wires the FastAPI app together: logging, the lifespan that owns the
orchestrator, CORS, request timing, the catch-all error body and routers.
"""
import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exception_handlers import request_validation_exception_handler
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.config import settings
from app.database import close_db, init_db
from app.dependencies.services import ServiceContainer, build_services
from app.routers import analyze, guides, health

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Polled by the frontend every few seconds
_QUIET_PATHS = frozenset({"/", "/api/health", "/api/health/"})


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------

async def _report_generator(services: ServiceContainer) -> None:
    generator = services.generator
    if not generator.is_configured:
        logger.warning("⚠ GOOGLE_API_KEY is not set; /api/analyze will answer 503")
    elif await generator.check_health():
        logger.info("✓ Gemini model '%s' reachable", generator.model)
    else:
        logger.warning("⚠ Gemini model '%s' not reachable; generation may fail", generator.model)

    policy = services.orchestrator.scheduler.retry_policy
    logger.info(
        "✓ Pacing: %.2f s between calls, up to %d retries on 429 (%s backoff from %.2f s), "
        "batches of %d with %.2f s pauses",
        services.orchestrator.scheduler.min_delay,
        policy.max_retries,
        "exponential" if policy.exponential else "linear",
        policy.base_delay,
        services.orchestrator.batch_size,
        services.orchestrator.batch_pause,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting NicheAI backend on http://%s:%d", settings.HOST, settings.PORT)

    # Guides need the database; refuse to start without it
    await init_db()
    logger.info("✓ Database ready")

    services = build_services()
    app.state.services = services
    await _report_generator(services)

    yield

    logger.info("Shutting down: cancelling queued generation calls")
    await services.close()
    await close_db()
    logger.info("✓ Shutdown complete")


app = FastAPI(
    title="NicheAI API",
    description=(
        "Generates business niches, the problems inside them and solution "
        "guides, with paced and retried calls to Gemini.\n\n"
        "- `POST /api/analyze`: getNiches, getProblems, getMoreProblems, "
        "getSolution, expandSolution\n"
        "- `/api/guides`: saved guides for the user in `X-User-Id`\n"
        "- `GET /api/health/model`: live generation probe\n"
    ),
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.get_allowed_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Middleware / error handling
# ---------------------------------------------------------------------------

@app.middleware("http")
async def time_requests(request: Request, call_next):
    """Log method, path, status and latency; expose latency as ``X-Process-Time``."""
    started = time.monotonic()
    response = await call_next(request)
    elapsed_ms = round((time.monotonic() - started) * 1000, 2)

    path = request.url.path
    if path.startswith("/api/analyze"):
        services = getattr(request.app.state, "services", None)
        depth = services.orchestrator.scheduler.queue_depth if services else 0
        logger.info(
            "%s %s → %d (%.2f ms, %d calls still queued)",
            request.method, path, response.status_code, elapsed_ms, depth,
        )
    elif path not in _QUIET_PATHS:
        logger.info("%s %s → %d (%.2f ms)", request.method, path, response.status_code, elapsed_ms)

    response.headers["X-Process-Time"] = f"{elapsed_ms}ms"
    return response


def _describe_validation_errors(exc: RequestValidationError) -> str:
    described = []
    for err in exc.errors():
        field = ".".join(str(part) for part in err.get("loc", ()) if part != "body")
        described.append("%s: %s" % (field or "body", err.get("msg", "invalid")))
    return "; ".join(described)


@app.exception_handler(RequestValidationError)
async def invalid_request(request: Request, exc: RequestValidationError):
    """``/api/analyze`` answers malformed bodies with ``{error, userMessage}``; other routes keep FastAPI's 422."""
    if not request.url.path.startswith("/api/analyze"):
        return await request_validation_exception_handler(request, exc)

    problems = _describe_validation_errors(exc)
    logger.warning("Rejected %s %s: %s", request.method, request.url.path, problems)
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "error": f"Invalid request: {problems}",
            "userMessage": "Some of the information sent was invalid. Please refresh and try again.",
        },
    )


@app.exception_handler(Exception)
async def unhandled_error(request: Request, exc: Exception):
    """Anything a router did not map becomes the frontend's ``{error, userMessage}`` body."""
    logger.error("Unhandled error on %s %s: %s", request.method, request.url.path, exc, exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": str(exc),
            "userMessage": "An unexpected error occurred. Please try again.",
        },
    )


# ---------------------------------------------------------------------------
# Routers
# ---------------------------------------------------------------------------

app.include_router(health.router, prefix="/api/health", tags=["Health"])
app.include_router(analyze.router, prefix="/api/analyze", tags=["Analyze"])
app.include_router(guides.router, prefix="/api/guides", tags=["Guides"])


@app.get("/", include_in_schema=False)
async def root():
    return {
        "name": "NicheAI API",
        "version": app.version,
        "docs": "/docs",
        "endpoints": {
            "analyze": "/api/analyze",
            "guides": "/api/guides",
            "health": "/api/health",
            "model_probe": "/api/health/model",
        },
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("app.main:app", host=settings.HOST, port=settings.PORT, reload=True)
