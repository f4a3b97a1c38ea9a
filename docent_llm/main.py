"""
Main application entry point for the docent LLM service.

Initializes:
- FastAPI application
- Docent runtime (model, session, cached artwork prefix)
- Health and metrics endpoints
"""

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from . import runtime as runtime_module
from .api import health, metrics, websocket
from .config import settings
from .core.artwork import load_artwork_metadata
from .observability.logging import configure_logging
from .protocol.messages import ArtworkMetadata
from .runtime import DocentRuntime

logger = logging.getLogger(__name__)


def bootstrap(rt: DocentRuntime) -> None:
    """Load the configured model, open the session and cache the artwork prefix."""
    if not settings.model_path:
        logger.warning("DOCENT_MODEL_PATH not set; waiting for a model to be loaded")
        return

    result = rt.load_model(settings.model_path)
    if not result.ok:
        logger.error(f"Model load failed: {result.message}")
        return

    result = rt.init_session()
    if not result.ok:
        logger.error(f"Session init failed: {result.message}")
        return

    metadata = ArtworkMetadata()
    if settings.artwork_metadata_path:
        try:
            metadata = load_artwork_metadata(settings.artwork_metadata_path)
        except (OSError, ValueError) as e:
            logger.error(f"Artwork metadata not loaded, priming without it: {e}")

    result = rt.prime_fixed_prefix(metadata)
    if not result.ok:
        logger.error(f"Prefix priming failed: {result.message}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Startup:
    1. Configure logging
    2. Create the runtime over the llama.cpp backend
    3. Load model, init session, prime prefix (on the inference thread)

    Shutdown:
    1. Close the session and free the model
    """
    configure_logging()
    logger.info("Starting docent LLM service...")

    # Import here so the API can be served without the native library
    from .inference.llama_backend import LlamaCppBackend

    rt = DocentRuntime(LlamaCppBackend())
    runtime_module.runtime = rt

    # Model loading and prefix decode are blocking engine calls
    await rt.streamer.run_serialized(bootstrap, rt)

    logger.info(
        f"Docent LLM {'ready' if rt.is_ready else 'started (not ready)'} - "
        f"listening on {settings.host}:{settings.port}"
    )

    yield

    logger.info("Shutting down docent LLM service...")
    rt.shutdown()
    runtime_module.runtime = None
    logger.info("Shutdown complete")


# Create FastAPI app
app = FastAPI(
    title="Docent LLM Service",
    description="On-device artwork Q&A with a cached system prompt via llama.cpp",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(websocket.router)
app.include_router(health.router)
app.include_router(metrics.router)


@app.get("/")
async def root() -> dict:
    """Root endpoint with service info."""
    return {
        "service": "docent-llm",
        "version": "0.1.0",
        "model": settings.model_path,
        "status": "running",
        "docs": "/docs",
        "health": "/health/ready",
        "websocket": "/ws/docent",
        "metrics": "/metrics",
    }


def run() -> None:
    """Run the application with uvicorn."""
    uvicorn.run(
        "docent_llm.main:app",
        host=settings.host,
        port=settings.port,
        workers=1,  # One session per process
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    run()
