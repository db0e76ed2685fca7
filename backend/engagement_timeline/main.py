"""
Classroom Engagement Timeline
FastAPI Application Entry Point

Classifies per-student behavioral observations against the instructor's
session mode, summarizes them per student, and resamples them into a
class-wide heatmap that is re-polled while a session is live.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from engagement_timeline.config import settings
from engagement_timeline.core.classifier import get_classifier
from engagement_timeline.database import engine
from engagement_timeline.api.sessions import router as sessions_router
from engagement_timeline.services.live_service import live_hub

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("engagement-timeline")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle: validate configuration, stop pollers on shutdown."""
    logger.info("Starting %s...", settings.APP_NAME)

    # Fail fast on a misconfigured strategy rather than on the first request
    classifier = get_classifier(settings.CLASSIFIER_STRATEGY, threshold=settings.WEIGHTED_SCORE_THRESHOLD)
    logger.info(
        "Classifier: %s | default mode: %s | resolution: %d ms | poll every %.1fs",
        classifier.name,
        settings.DEFAULT_SESSION_MODE,
        settings.HEATMAP_RESOLUTION_MS,
        settings.POLL_INTERVAL_SECONDS,
    )
    logger.info("Skipping create_all; ensure Alembic migrations are applied (alembic upgrade head)")
    logger.info(" API docs: http://localhost:8000/docs")

    yield

    # Shutdown
    logger.info("Shutting down...")
    await live_hub.shutdown()
    await engine.dispose()


# Create FastAPI app
app = FastAPI(
    title=settings.APP_NAME,
    description="Mode-aware student engagement classification, summaries and class heatmaps",
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Register API routes
app.include_router(sessions_router)


@app.get("/", tags=["Health"])
async def root():
    """Health check endpoint."""
    return {
        "status": "online",
        "app": settings.APP_NAME,
        "version": "1.0.0",
    }


@app.get("/api/v1/health", tags=["Health"])
async def health_check():
    """Detailed health check."""
    return {
        "status": "healthy",
        "app": settings.APP_NAME,
        "classifier": settings.CLASSIFIER_STRATEGY,
        "default_mode": settings.DEFAULT_SESSION_MODE,
        "version": "1.0.0",
    }
