# Portfolio Guard - AI Access-Control & Context-Assembly Engine
# Copyright (c) 2026 George Scott Foley
# ORCID: 0009-0006-4957-0540
# Email: Georgescottfoley@proton.me
# Licensed under the MIT License - see LICENSE file for details

"""
Health Check Endpoints

Kubernetes-compatible liveness and readiness probes.

Endpoints:
- /health/live - Liveness probe (is the app running?)
- /health/ready - Readiness probe (can the usage store answer?)
"""

import logging
import time
from datetime import UTC, datetime
from typing import Any

from fastapi import APIRouter, Request, Response
from pydantic import BaseModel

logger = logging.getLogger(__name__)

router = APIRouter()

_startup_time = time.time()


# ============================================================
# RESPONSE MODELS
# ============================================================


class ComponentHealth(BaseModel):
    """Health status of a single component."""

    status: str  # healthy, unhealthy
    latency_ms: float | None = None
    error: str | None = None
    details: dict[str, Any] = {}


class LivenessResponse(BaseModel):
    status: str
    timestamp: str


class ReadinessResponse(BaseModel):
    status: str
    version: str
    environment: str
    uptime_seconds: float
    checks: dict[str, ComponentHealth]


# ============================================================
# PROBES
# ============================================================


@router.get("/health/live", response_model=LivenessResponse)
async def liveness_check():
    """
    Liveness probe.

    Returns 200 if the application process is running.
    Does NOT check dependencies - use /health/ready for that.
    """
    return LivenessResponse(status="alive", timestamp=datetime.now(UTC).isoformat())


@router.get("/health/ready", response_model=ReadinessResponse)
async def readiness_check(request: Request, response: Response):
    """
    Readiness probe.

    Admission fails closed without the usage store, so an unreachable
    store makes the service not ready (503).
    """
    services = getattr(request.app.state, "services", None)
    checks: dict[str, ComponentHealth] = {}

    if services is None:
        checks["store"] = ComponentHealth(status="unhealthy", error="not initialized")
    else:
        start = time.perf_counter()
        try:
            ok = await services.store.ping()
            checks["store"] = ComponentHealth(
                status="healthy" if ok else "unhealthy",
                latency_ms=round((time.perf_counter() - start) * 1000, 2),
                details={"backend": services.settings.store.backend},
            )
        except Exception as e:
            logger.error(f"Store readiness check failed: {e}")
            checks["store"] = ComponentHealth(status="unhealthy", error=str(e))
        checks["content_sources"] = ComponentHealth(
            status="healthy",
            details={"registered": services.registry.provider_ids},
        )

    ready = all(check.status == "healthy" for check in checks.values())
    if not ready:
        response.status_code = 503

    settings = request.app.state.settings
    return ReadinessResponse(
        status="ready" if ready else "not_ready",
        version=settings.app_version,
        environment=settings.environment,
        uptime_seconds=round(time.time() - _startup_time, 2),
        checks=checks,
    )


__all__ = ["router"]
