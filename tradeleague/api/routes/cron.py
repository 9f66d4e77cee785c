"""Scheduled trigger routes.

Invoked by an external clock with ``Authorization: Bearer <CRON_SECRET>``.
"""

from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends, Path, Query
from fastapi.responses import JSONResponse

from tradeleague.api.dependencies import get_services, require_cron
from tradeleague.jobs.registry import JobOutcome
from tradeleague.schemas.cron import CronJobResponse
from tradeleague.services.container import ServiceContainer


router = APIRouter(dependencies=[Depends(require_cron)])


def _respond(outcome: JobOutcome) -> JSONResponse:
    body = CronJobResponse(success=outcome.success, data=outcome.data, error=outcome.error)
    return JSONResponse(
        status_code=200 if outcome.success else 500,
        content=body.model_dump(mode="json", exclude_none=True),
    )


async def _drop_cached_charts(services: ServiceContainer, outcome: JobOutcome) -> None:
    if outcome.success and outcome.data.get("updated") and services.chart_cache is not None:
        await services.chart_cache.invalidate()


@router.post(
    "/backfill",
    response_model=CronJobResponse,
    summary="Backfill missing candles",
    description="Fill candles missing on one past trading day. Existing candles are never overwritten. Cached charts are dropped when anything was filled.",
)
async def backfill(
    trading_date: date = Query(..., alias="date", description="Trading day, YYYY-MM-DD"),
    services: ServiceContainer = Depends(get_services),
) -> JSONResponse:
    outcome = await services.orchestrator.run_backfill(trading_date)
    await _drop_cached_charts(services, outcome)
    return _respond(outcome)


@router.post(
    "/backfill-history",
    response_model=CronJobResponse,
    summary="Backfill a range of history",
    description=(
        "Fetch every past daily bar from start to end (default: yesterday) for all "
        "tracked securities. Existing candles are kept unless force is set."
    ),
)
async def backfill_history(
    start: date = Query(..., description="First trading day, YYYY-MM-DD"),
    end: date | None = Query(None, description="Last trading day, YYYY-MM-DD"),
    force: bool = Query(False, description="Overwrite existing candles"),
    services: ServiceContainer = Depends(get_services),
) -> JSONResponse:
    outcome = await services.orchestrator.run_backfill_history(start, end, force)
    await _drop_cached_charts(services, outcome)
    return _respond(outcome)


@router.post(
    "/{job_name}",
    response_model=CronJobResponse,
    summary="Run a scheduled job",
    description=(
        "Jobs: intraday-update, daily-candle, portfolio-snapshot, "
        "ranking-update, midnight."
    ),
)
async def run_job(
    job_name: str = Path(..., min_length=1, max_length=50),
    services: ServiceContainer = Depends(get_services),
) -> JSONResponse:
    return _respond(await services.orchestrator.run(job_name.strip().lower()))
