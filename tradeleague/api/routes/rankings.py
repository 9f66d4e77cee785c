"""Ranking read routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from tradeleague.api.dependencies import get_services, require_user
from tradeleague.core.exceptions import NotFoundError
from tradeleague.core.security import TokenData
from tradeleague.schemas.common import DataResponse
from tradeleague.schemas.market import RankingEntryResponse, RankingListResponse
from tradeleague.services.container import ServiceContainer
from tradeleague.services.ranking import RankingPeriod


router = APIRouter()


@router.get(
    "/{period}",
    response_model=DataResponse[RankingListResponse],
    summary="Ranking for a period",
)
async def list_rankings(
    period: RankingPeriod,
    limit: int | None = Query(None, ge=1, le=1000),
    services: ServiceContainer = Depends(get_services),
) -> dict:
    entries = await services.ranking.get_rankings(period, limit or services.config.ranking_limit)
    return {"success": True, "data": {"period": period.value, "entries": entries}}


@router.get(
    "/{period}/me",
    response_model=DataResponse[RankingEntryResponse],
    summary="The caller's ranking entry",
)
async def my_ranking(
    period: RankingPeriod,
    user: TokenData = Depends(require_user),
    services: ServiceContainer = Depends(get_services),
) -> dict:
    entry = await services.ranking.get_user_rank(period, user.sub)
    if entry is None:
        raise NotFoundError(message=f"Not ranked for {period.value}")
    return {"success": True, "data": entry}
