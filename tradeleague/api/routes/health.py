"""Health check route."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy import text

from tradeleague.api.dependencies import get_services
from tradeleague.cache.client import valkey_healthcheck
from tradeleague.core.logging import get_logger
from tradeleague.schemas.common import HealthResponse
from tradeleague.services.container import ServiceContainer


logger = get_logger("api.health")

router = APIRouter()


@router.get("/health", response_model=HealthResponse, summary="Service health")
async def health(services: ServiceContainer = Depends(get_services)) -> HealthResponse:
    checks = {"quote_provider": services.collector is not None}
    try:
        async with services.session_factory() as session:
            await session.execute(text("SELECT 1"))
        checks["database"] = True
    except Exception as e:
        logger.warning(f"Database healthcheck failed: {e}")
        checks["database"] = False

    if services.chart_cache is not None:
        checks["cache"] = await valkey_healthcheck()

    return HealthResponse(
        status="healthy" if all(checks.values()) else "degraded",
        version=services.config.app_version,
        checks=checks,
    )
