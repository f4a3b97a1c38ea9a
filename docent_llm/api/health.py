"""
Health check endpoints for the docent LLM service.

Provides:
- /health/live - Liveness probe (service is running)
- /health/ready - Readiness probe (prefix cached, ready to answer)
- /health/status - Detailed runtime status
"""

import logging
from typing import Any

from fastapi import APIRouter, HTTPException, status

from .. import runtime as runtime_module

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/health", tags=["health"])


@router.get("/live")
async def liveness() -> dict[str, str]:
    """Liveness probe."""
    return {"status": "alive"}


@router.get("/ready")
async def readiness() -> dict[str, Any]:
    """
    Readiness probe.

    Returns 200 once a model is loaded, the session is initialized and the
    fixed prefix is cached; 503 otherwise.
    """
    try:
        rt = runtime_module.get_runtime()
    except RuntimeError as e:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=str(e),
        )

    if not rt.is_ready:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"Session {rt.session.state.value}, prefix not cached",
        )

    return {
        "status": "ready",
        "session": rt.session.state.value,
        "prefix_tokens": rt.session.prefix_state.token_count,
    }


@router.get("/status")
async def detailed_status() -> dict[str, Any]:
    """Model, session, prefix cache and last generation stats."""
    try:
        rt = runtime_module.get_runtime()
    except RuntimeError:
        return {"status": "not_initialized"}

    return {
        "status": "ready" if rt.is_ready else "not_ready",
        **rt.status(),
    }
