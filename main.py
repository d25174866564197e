import time

# Taken before the framework imports so uptime covers them
START_TIME = time.monotonic()

import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, FastAPI

from config import settings
from pipeline import BodyParser, PipelineMiddleware
from rate_limit import CounterStore, RateLimiter, RateLimitStage, build_counter_store
from schemas import ErrorResponse, HealthResponse, JokeResponse, StatusResponse
from security import CorsPolicy, SecurityHeaders
from upstream import fetch_joke
from version_guard import enforce_runtime_version


logging.basicConfig(level=settings.LOG_LEVEL.upper())
logger = logging.getLogger("edge.backend")

router = APIRouter()


# ======================================================
# Startup
# ======================================================

async def startup():
    # Also covers `uvicorn main:app`, which never goes through run()
    enforce_runtime_version()
    logger.info(f"Server running at http://localhost:{settings.PORT}")


# ======================================================
# Routes
# ======================================================

@router.get("/", response_model=StatusResponse)
def root():
    return StatusResponse(
        status="OK",
        message=f"Edge backend running on Python {settings.REQUIRED_RUNTIME_VERSION}",
        uptime=f"{round(time.monotonic() - START_TIME)}s",
        timestamp=utc_timestamp(),
    )


@router.get("/health", response_model=HealthResponse)
def health_check():
    return HealthResponse(status="healthy", version=settings.REQUIRED_RUNTIME_VERSION)


@router.get(
    "/api/joke",
    response_model=JokeResponse,
    responses={500: {"model": ErrorResponse}},
)
async def joke():
    data = await fetch_joke()
    return JokeResponse(joke=data)


# ======================================================
# App Setup
# ======================================================

def create_app(store: Optional[CounterStore] = None) -> FastAPI:
    """
    Build the app with its middleware chain (order matters).
    Counters come from REDIS_URL or memory unless a store is given.
    """
    app = FastAPI(title="Edge Backend")

    limiter = RateLimiter(store if store is not None else build_counter_store())
    app.state.limiter = limiter

    app.add_middleware(
        PipelineMiddleware,
        stages=[
            BodyParser(max_bytes=settings.MAX_BODY_BYTES),
            CorsPolicy(origin=settings.CORS_ORIGIN, methods=settings.cors_methods()),
            SecurityHeaders(content_security_policy=settings.CONTENT_SECURITY_POLICY),
            RateLimitStage(limiter),
        ],
    )

    app.add_event_handler("startup", startup)
    app.include_router(router)

    return app


app = create_app()


# ======================================================
# Utils
# ======================================================

def utc_timestamp() -> str:
    """
    e.g. 2026-10-18T09:30:00.123Z
    """
    return (
        datetime.now(timezone.utc)
        .isoformat(timespec="milliseconds")
        .replace("+00:00", "Z")
    )


# ======================================================
# Listener
# ======================================================

def run():
    enforce_runtime_version()

    import uvicorn

    uvicorn.run(
        app,
        host=settings.HOST,
        port=settings.PORT,
        log_level=settings.LOG_LEVEL.lower(),
        server_header=False,
    )


if __name__ == "__main__":
    run()
