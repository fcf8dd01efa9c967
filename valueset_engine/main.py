"""
FastAPI application entry point.

Loads the terminology context from settings at startup and serves the
ValueSet endpoints from api.py.

Usage:
    uvicorn valueset_engine.main:app --port 8080
    python -m valueset_engine.main
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from .api import create_app
from .config import get_settings
from .loader import load_context

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    logger.info("Starting ValueSet engine...")

    context = load_context(settings)
    app.state.terminology = context
    logger.info(f"ValueSet engine started with {len(context.repository)} ValueSets")
    yield

    logger.info("Shutting down ValueSet engine...")
    if context.vocabulary is not None:
        context.vocabulary.dispose()


app = create_app(lifespan=lifespan)


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    context = getattr(app.state, "terminology", None)
    return {
        "status": "healthy",
        "value_sets": len(context.repository) if context is not None else 0,
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "valueset_engine.main:app",
        host="0.0.0.0",
        port=8080,
        reload=get_settings().debug,
    )
