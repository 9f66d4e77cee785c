"""
Trading ledger.

Executes buy and sell orders against a user's portfolio. Each order is one
indivisible unit: validate, move cash, adjust the holding, append the
transaction row and revalue the portfolio, all in a single database
transaction. Orders for the same user are serialized twice over:

- an in-process ``asyncio.Lock`` per user id
- ``SELECT ... FOR UPDATE`` on the portfolio row, for other processes

Validation failures never escape the ledger. Every public method returns a
``LedgerResult`` carrying either the data or the ``AppException`` describing
the rejection; a rejected order leaves all state untouched.
"""

from __future__ import annotations

import asyncio
import weakref
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tradeleague.core.exceptions import (
    AppException,
    ConflictError,
    InsufficientFundsError,
    InsufficientQuantityError,
    InternalError,
    InvalidInputError,
    NotFoundError,
    StockNotOwnedError,
)
from tradeleague.core.logging import get_logger
from tradeleague.core.market_calendar import MarketClock
from tradeleague.database.orm import Holding, Portfolio, Transaction
from tradeleague.repositories import candles_orm as candles_repo
from tradeleague.repositories import portfolios_orm as portfolios_repo
from tradeleague.repositories import securities_orm as securities_repo
from tradeleague.services.leagues import classify_league


logger = get_logger("services.trading_ledger")

MONEY_STEP = Decimal("0.0001")
RETURN_STEP = Decimal("0.0001")


class OrderType(str, Enum):
    BUY = "BUY"
    SELL = "SELL"


class CapitalReason(str, Enum):
    INITIAL = "INITIAL"
    ADJUSTMENT = "ADJUSTMENT"
    REWARD = "REWARD"


@dataclass
class LedgerResult:
    """Outcome of a ledger operation."""

    success: bool
    data: dict[str, Any] | None = None
    error: AppException | None = None

    @classmethod
    def ok(cls, data: dict[str, Any]) -> LedgerResult:
        return cls(success=True, data=data)

    @classmethod
    def rejected(cls, error: AppException) -> LedgerResult:
        return cls(success=False, error=error)

    def raise_for_error(self) -> None:
        if self.error is not None:
            raise self.error


def percent_return(current: Decimal, baseline: Decimal) -> Decimal:
    """(current - baseline) / baseline as a percentage; 0 without a baseline."""
    if baseline == 0:
        return Decimal("0")
    return ((current - baseline) / baseline * 100).quantize(RETURN_STEP, ROUND_HALF_UP)


class UserLocks:
    """One asyncio.Lock per user id, kept only while someone holds or awaits it."""

    def __init__(self):
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    def get(self, user_id: str) -> asyncio.Lock:
        lock = self._locks.get(user_id)
        if lock is None:
            lock = self._locks[user_id] = asyncio.Lock()
        return lock

    def __len__(self) -> int:
        return len(self._locks)


class TradingLedger:
    """Order execution and capital bookkeeping for simulated portfolios."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: MarketClock,
        *,
        initial_capital: Decimal = Decimal("10000000"),
        league_threshold: Decimal = Decimal("100000000"),
        locks: UserLocks | None = None,
    ):
        self.session_factory = session_factory
        self.clock = clock
        self.initial_capital = initial_capital
        self.league_threshold = league_threshold
        self.locks = locks or UserLocks()

    # ─────────────────────────────────────────────────────────────────────
    # Pricing
    # ─────────────────────────────────────────────────────────────────────

    async def resolve_price(self, session: AsyncSession, code: str) -> Decimal:
        """Current price: today's live tick, else the last candle close.

        A live snapshot left over from an earlier day is the last resort.
        """
        live = await securities_repo.get_live_quote(session, code)
        if live is not None and live.trading_date == self.clock.today() and live.price > 0:
            return Decimal(live.price)

        close = await candles_repo.get_latest_close(session, code)
        if close is not None and close > 0:
            return close

        if live is not None and live.price > 0:
            return Decimal(live.price)

        raise NotFoundError(
            message=f"No price available for {code}",
            details={"stock_code": code},
        )

    async def _revalue(
        self,
        session: AsyncSession,
        portfolio: Portfolio,
        known_prices: dict[str, Decimal] | None = None,
    ) -> None:
        """Recompute total assets and total return from current prices."""
        known_prices = known_prices or {}
        total = Decimal(portfolio.cash)
        for holding in portfolio.holdings:
            price = known_prices.get(holding.stock_code)
            if price is None:
                try:
                    price = await self.resolve_price(session, holding.stock_code)
                except NotFoundError:
                    logger.warning(
                        f"No price for held {holding.stock_code}, valuing at average cost"
                    )
                    price = Decimal(holding.avg_cost)
            total += price * holding.quantity

        portfolio.total_assets = total.quantize(MONEY_STEP, ROUND_HALF_UP)
        portfolio.total_return = percent_return(
            portfolio.total_assets, Decimal(portfolio.initial_capital)
        )

    # ─────────────────────────────────────────────────────────────────────
    # Orders
    # ─────────────────────────────────────────────────────────────────────

    @staticmethod
    def _validate_order(code: str, quantity: int) -> None:
        if not code:
            raise InvalidInputError(message="Stock code is required")
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
            raise InvalidInputError(
                message="Quantity must be a positive whole number",
                details={"quantity": quantity},
            )

    async def _load_for_update(self, session: AsyncSession, user_id: str) -> Portfolio:
        portfolio = await portfolios_repo.get_portfolio(session, user_id, for_update=True)
        if portfolio is None:
            raise NotFoundError(message=f"No portfolio for user {user_id}")
        return portfolio

    async def _run(self, action: str, user_id: str, operation) -> LedgerResult:
        """Run one unit of work under the user's lock and map failures to results."""
        try:
            async with self.locks.get(user_id):
                async with self.session_factory() as session:
                    async with session.begin():
                        data = await operation(session)
            return LedgerResult.ok(data)
        except AppException as e:
            logger.info(f"{action} rejected for {user_id}: {e.error_code} {e.message}")
            return LedgerResult.rejected(e)
        except SQLAlchemyError:
            logger.exception(f"{action} failed for {user_id}")
            return LedgerResult.rejected(InternalError())

    async def execute_buy(
        self, user_id: str, code: str, quantity: int, note: str | None = None
    ) -> LedgerResult:
        """Buy ``quantity`` shares of ``code`` at the current price."""
        try:
            self._validate_order(code, quantity)
        except InvalidInputError as e:
            return LedgerResult.rejected(e)

        async def buy(session: AsyncSession) -> dict[str, Any]:
            portfolio = await self._load_for_update(session, user_id)
            price = await self.resolve_price(session, code)
            cost = price * quantity
            cash = Decimal(portfolio.cash)

            if cash < cost:
                raise InsufficientFundsError(
                    message=f"Order costs {cost} but only {cash} cash is available",
                    details={"required": str(cost), "available": str(cash)},
                )

            portfolio.cash = cash - cost
            holding = portfolios_repo.find_holding(portfolio, code)
            if holding is None:
                portfolio.holdings.append(
                    Holding(stock_code=code, quantity=quantity, avg_cost=price)
                )
            else:
                held = holding.quantity
                new_quantity = held + quantity
                holding.avg_cost = (
                    (held * Decimal(holding.avg_cost) + cost) / new_quantity
                ).quantize(MONEY_STEP, ROUND_HALF_UP)
                holding.quantity = new_quantity

            transaction = Transaction(
                portfolio_id=portfolio.id,
                user_id=user_id,
                type=OrderType.BUY.value,
                stock_code=code,
                quantity=quantity,
                price=price,
                total_amount=cost,
                note=note,
                created_at=datetime.now(timezone.utc),
            )
            session.add(transaction)
            await self._revalue(session, portfolio, {code: price})
            await session.flush()

            logger.info(f"BUY {user_id} {code} x{quantity} @ {price}")
            return {
                "transaction": portfolios_repo.transaction_to_dict(transaction),
                "portfolio": portfolios_repo.portfolio_to_dict(portfolio),
            }

        return await self._run("Buy", user_id, buy)

    async def execute_sell(
        self, user_id: str, code: str, quantity: int, note: str | None = None
    ) -> LedgerResult:
        """Sell ``quantity`` held shares of ``code`` at the current price."""
        try:
            self._validate_order(code, quantity)
        except InvalidInputError as e:
            return LedgerResult.rejected(e)

        async def sell(session: AsyncSession) -> dict[str, Any]:
            portfolio = await self._load_for_update(session, user_id)
            holding = portfolios_repo.find_holding(portfolio, code)
            if holding is None:
                raise StockNotOwnedError(
                    message=f"{code} is not held", details={"stock_code": code}
                )
            if quantity > holding.quantity:
                raise InsufficientQuantityError(
                    message=f"Holding {holding.quantity} shares, cannot sell {quantity}",
                    details={"held": holding.quantity, "requested": quantity},
                )

            price = await self.resolve_price(session, code)
            proceeds = price * quantity
            realized = (price - Decimal(holding.avg_cost)) * quantity

            portfolio.cash = Decimal(portfolio.cash) + proceeds
            portfolio.realized_pl = Decimal(portfolio.realized_pl) + realized
            if quantity == holding.quantity:
                portfolio.holdings.remove(holding)
            else:
                holding.quantity = holding.quantity - quantity

            transaction = Transaction(
                portfolio_id=portfolio.id,
                user_id=user_id,
                type=OrderType.SELL.value,
                stock_code=code,
                quantity=quantity,
                price=price,
                total_amount=proceeds,
                realized_pl=realized,
                note=note,
                created_at=datetime.now(timezone.utc),
            )
            session.add(transaction)
            await self._revalue(session, portfolio, {code: price})
            await session.flush()

            logger.info(f"SELL {user_id} {code} x{quantity} @ {price} (P/L {realized})")
            return {
                "transaction": portfolios_repo.transaction_to_dict(transaction),
                "portfolio": portfolios_repo.portfolio_to_dict(portfolio),
            }

        return await self._run("Sell", user_id, sell)

    # ─────────────────────────────────────────────────────────────────────
    # Accounts and capital
    # ─────────────────────────────────────────────────────────────────────

    async def open_account(
        self,
        user_id: str,
        username: str,
        initial_capital: Decimal | None = None,
    ) -> LedgerResult:
        """Create a funded portfolio with both period baselines at the start capital."""
        capital = Decimal(initial_capital if initial_capital is not None else self.initial_capital)
        if capital <= 0:
            return LedgerResult.rejected(
                InvalidInputError(message="Initial capital must be positive")
            )

        async def open_(session: AsyncSession) -> dict[str, Any]:
            if await portfolios_repo.get_portfolio(session, user_id) is not None:
                raise ConflictError(message=f"User {user_id} already has a portfolio")

            portfolio = Portfolio(
                user_id=user_id,
                username=username,
                initial_capital=capital,
                cash=capital,
                total_assets=capital,
                total_return=Decimal("0"),
                realized_pl=Decimal("0"),
                weekly_start_assets=capital,
                monthly_start_assets=capital,
                league=classify_league(capital, self.league_threshold).value,
                holdings=[],
            )
            session.add(portfolio)
            portfolios_repo.add_capital_history(
                session,
                user_id,
                amount=capital,
                new_total=capital,
                reason=CapitalReason.INITIAL.value,
                created_at=datetime.now(timezone.utc),
                description="Initial funding",
            )
            await session.flush()

            logger.info(f"Opened account for {user_id} with {capital}")
            return portfolios_repo.portfolio_to_dict(portfolio)

        return await self._run("Open account", user_id, open_)

    async def adjust_capital(
        self,
        user_id: str,
        amount: Decimal,
        reason: CapitalReason = CapitalReason.ADJUSTMENT,
        description: str | None = None,
    ) -> LedgerResult:
        """Add (or withdraw) capital: moves cash and initial capital together."""
        amount = Decimal(amount)
        if amount == 0:
            return LedgerResult.rejected(
                InvalidInputError(message="Capital adjustment must be non-zero")
            )

        async def adjust(session: AsyncSession) -> dict[str, Any]:
            portfolio = await self._load_for_update(session, user_id)
            cash = Decimal(portfolio.cash) + amount
            if cash < 0:
                raise InsufficientFundsError(
                    message="Adjustment would leave negative cash",
                    details={"cash": str(portfolio.cash), "amount": str(amount)},
                )
            capital = Decimal(portfolio.initial_capital) + amount
            if capital <= 0:
                raise InvalidInputError(message="Adjustment would leave no initial capital")

            portfolio.cash = cash
            portfolio.initial_capital = capital
            portfolios_repo.add_capital_history(
                session,
                user_id,
                amount=amount,
                new_total=capital,
                reason=CapitalReason(reason).value,
                created_at=datetime.now(timezone.utc),
                description=description,
            )
            await self._revalue(session, portfolio)
            await session.flush()

            logger.info(f"Capital {reason} for {user_id}: {amount:+} -> {capital}")
            return portfolios_repo.portfolio_to_dict(portfolio)

        return await self._run("Capital adjustment", user_id, adjust)

    async def revalue_all(self) -> int:
        """Revalue every portfolio at current prices; returns the count updated."""
        async with self.session_factory() as session:
            user_ids = [p.user_id for p in await portfolios_repo.list_portfolios(session)]

        updated = 0
        for user_id in user_ids:

            async def revalue(session: AsyncSession, user_id: str = user_id) -> dict[str, Any]:
                portfolio = await self._load_for_update(session, user_id)
                await self._revalue(session, portfolio)
                return {}

            result = await self._run("Revaluation", user_id, revalue)
            if result.success:
                updated += 1

        logger.info(f"Revalued {updated} of {len(user_ids)} portfolios")
        return updated

    async def get_account(self, user_id: str) -> dict[str, Any] | None:
        """Portfolio with holdings, recent transactions and snapshots, or None."""
        async with self.session_factory() as session:
            portfolio = await portfolios_repo.get_portfolio(session, user_id)
            if portfolio is None:
                return None
            account = portfolios_repo.portfolio_to_dict(portfolio)
            account["transactions"] = await portfolios_repo.list_transactions(session, user_id)
            account["snapshots"] = await portfolios_repo.list_snapshots(session, portfolio.id)
            return account
