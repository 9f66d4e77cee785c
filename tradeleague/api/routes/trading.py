"""Account, portfolio and order routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends, status

from tradeleague.api.dependencies import get_services, require_user
from tradeleague.core.exceptions import NotFoundError
from tradeleague.core.security import TokenData
from tradeleague.schemas.common import DataResponse
from tradeleague.schemas.trading import (
    AccountResponse,
    OpenAccountRequest,
    OrderRequest,
    OrderResponse,
    PortfolioResponse,
)
from tradeleague.services.container import ServiceContainer
from tradeleague.services.trading_ledger import LedgerResult


router = APIRouter()


def _unwrap(result: LedgerResult) -> dict:
    # Rejections are rendered by the AppException handler
    result.raise_for_error()
    return {"success": True, "data": result.data}


@router.post(
    "/accounts",
    response_model=DataResponse[PortfolioResponse],
    status_code=status.HTTP_201_CREATED,
    summary="Open a trading account",
    description="Create the caller's portfolio funded with the initial capital.",
)
async def open_account(
    payload: OpenAccountRequest | None = None,
    user: TokenData = Depends(require_user),
    services: ServiceContainer = Depends(get_services),
) -> dict:
    username = (payload.username if payload and payload.username else None) or user.username
    return _unwrap(await services.ledger.open_account(user.sub, username))


@router.get(
    "/portfolio",
    response_model=DataResponse[AccountResponse],
    summary="Get the caller's portfolio",
)
async def get_portfolio(
    user: TokenData = Depends(require_user),
    services: ServiceContainer = Depends(get_services),
) -> dict:
    account = await services.ledger.get_account(user.sub)
    if account is None:
        raise NotFoundError(message="No portfolio for this user")
    return {"success": True, "data": account}


@router.post(
    "/trades/buy",
    response_model=DataResponse[OrderResponse],
    summary="Buy shares at the current price",
)
async def buy(
    order: OrderRequest,
    user: TokenData = Depends(require_user),
    services: ServiceContainer = Depends(get_services),
) -> dict:
    return _unwrap(
        await services.ledger.execute_buy(user.sub, order.stock_code, order.quantity, order.note)
    )


@router.post(
    "/trades/sell",
    response_model=DataResponse[OrderResponse],
    summary="Sell held shares at the current price",
)
async def sell(
    order: OrderRequest,
    user: TokenData = Depends(require_user),
    services: ServiceContainer = Depends(get_services),
) -> dict:
    return _unwrap(
        await services.ledger.execute_sell(user.sub, order.stock_code, order.quantity, order.note)
    )
