from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from quiz_progress.api.beacon import router as beacon_router
from quiz_progress.api.health import router as health_router
from quiz_progress.api.live import router as live_router
from quiz_progress.api.progress import router as progress_router
from quiz_progress.api.quiz import router as quiz_router
from quiz_progress.core.config import SETTINGS
from quiz_progress.core.errors import register_error_handlers
from quiz_progress.core.logging import setup_logging
from quiz_progress.db.engine import lifespan_db
from quiz_progress.db.redis import lifespan_redis
from quiz_progress.middleware.metrics import MetricsMiddleware
from quiz_progress.middleware.request_context import RequestContextMiddleware

# Configure logging before anything else runs.
setup_logging(SETTINGS.log_level, json_format=SETTINGS.log_json)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    # Nested so teardown runs in reverse order.
    async with lifespan_db():
        async with lifespan_redis():
            yield


app = FastAPI(
    title="quiz-progress-service",
    lifespan=lifespan,
    docs_url="/docs" if SETTINGS.is_dev else None,
    redoc_url="/redoc" if SETTINGS.is_dev else None,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(SETTINGS.cors_origins),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Last-added runs first: RequestContext (outermost) -> Metrics -> CORS -> route.
app.add_middleware(MetricsMiddleware)
app.add_middleware(RequestContextMiddleware)

register_error_handlers(app)

app.include_router(health_router)
app.include_router(beacon_router)
app.include_router(progress_router)
app.include_router(quiz_router)
app.include_router(live_router)

logger.info(
    "quiz-progress-service started  env=%s log_level=%s port=%d docs=%s",
    SETTINGS.app_env,
    SETTINGS.log_level,
    SETTINGS.port,
    "on" if SETTINGS.is_dev else "off",
)
