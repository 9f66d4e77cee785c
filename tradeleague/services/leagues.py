"""League classification by total assets."""

from __future__ import annotations

from decimal import Decimal
from enum import Enum

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tradeleague.core.logging import get_logger
from tradeleague.repositories import portfolios_orm as portfolios_repo


logger = get_logger("services.leagues")


class League(str, Enum):
    ROOKIE = "ROOKIE"
    HALL_OF_FAME = "HALL_OF_FAME"


def classify_league(total_assets: Decimal, threshold: Decimal) -> League:
    return League.HALL_OF_FAME if total_assets >= threshold else League.ROOKIE


class LeagueService:
    """Reassigns every portfolio to the league its total assets qualify for."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], threshold: Decimal):
        self.session_factory = session_factory
        self.threshold = threshold

    async def classify_all(self) -> dict[str, int]:
        """Returns how many portfolios moved into each league."""
        moved = {League.ROOKIE.value: 0, League.HALL_OF_FAME.value: 0}
        try:
            async with self.session_factory() as session, session.begin():
                for portfolio in await portfolios_repo.list_portfolios(session):
                    league = classify_league(Decimal(portfolio.total_assets), self.threshold)
                    if portfolio.league != league.value:
                        portfolio.league = league.value
                        moved[league.value] += 1
        except SQLAlchemyError:
            logger.exception("League classification failed")
            raise

        logger.info(f"League classification: {moved}")
        return moved
