"""FastAPI application for the agent."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from config.settings import settings
from deo import __version__
from deo.api.routes import get_llm, router

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup and shutdown."""
    logger.info(f"Starting Deo API for workspace {settings.workspace_root}")

    if get_llm().check_availability():
        logger.info("Ollama is available")
    else:
        logger.warning(
            "Ollama is not available. Turns will abort until it is. "
            f"Ensure Ollama is running at {settings.ollama_base_url}"
        )

    yield

    logger.info("Shutting down Deo API")


app = FastAPI(
    title="Deo API",
    description="Local-model coding agent working inside a sandboxed workspace",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(router, prefix="/api/v1")


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "Deo API",
        "version": __version__,
        "workspace": str(settings.workspace_root) if settings.workspace_root else None,
        "docs": "/docs",
    }


@app.get("/health")
def health_check():
    """Health check endpoint."""
    ollama_available = get_llm().check_availability()

    return {
        "status": "healthy" if ollama_available else "degraded",
        "ollama_available": ollama_available,
    }
