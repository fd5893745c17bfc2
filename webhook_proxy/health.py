"""Health and readiness endpoints."""

from __future__ import annotations

import httpx
import structlog
from fastapi import APIRouter
from fastapi.responses import JSONResponse

from webhook_proxy.config.loader import get_settings

logger = structlog.get_logger()
router = APIRouter()


async def _check_upstream() -> bool:
    """HEAD the upstream; anything below 500 counts as reachable."""
    settings = get_settings()
    try:
        async with httpx.AsyncClient(timeout=5.0) as client:
            resp = await client.head(settings.upstream_url)
            return resp.status_code < 500
    except httpx.HTTPError as exc:
        logger.warning("upstream_health_check_failed", error=str(exc))
        return False


@router.get("/health")
async def health():
    upstream_ok = await _check_upstream()
    return {
        "status": "healthy" if upstream_ok else "degraded",
        "proxy": "up",
        "upstream": "up" if upstream_ok else "down",
    }


@router.get("/ready")
async def ready():
    """200 only once the upstream answers."""
    if await _check_upstream():
        return {"status": "ready"}
    return JSONResponse(
        status_code=503,
        content={"status": "not_ready", "upstream": "down"},
    )
