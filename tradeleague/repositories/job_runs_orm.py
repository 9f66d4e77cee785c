"""Job run claims - SQLAlchemy ORM async.

A claim row per ``(job_name, run_key)`` makes a scheduled job run at most once
per window (a calendar day, ISO week or month).
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy import and_, null, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from tradeleague.database.orm import JobRun


STATUS_RUNNING = "running"
STATUS_SUCCESS = "success"
STATUS_ERROR = "error"


async def get_run(session: AsyncSession, job_name: str, run_key: str) -> JobRun | None:
    result = await session.execute(
        select(JobRun).where(and_(JobRun.job_name == job_name, JobRun.run_key == run_key))
    )
    return result.scalar_one_or_none()


async def claim_run(
    session: AsyncSession,
    job_name: str,
    run_key: str,
    stale_after: timedelta | None = None,
) -> bool:
    """Claim a run window. False when it already succeeded or is still running.

    A window whose previous run failed is re-claimed, as is a "running" claim
    older than ``stale_after`` (its holder died). Commits on success.
    """
    now = datetime.now(timezone.utc)
    reclaimable = JobRun.status == STATUS_ERROR
    if stale_after is not None:
        reclaimable = or_(
            reclaimable,
            and_(JobRun.status == STATUS_RUNNING, JobRun.started_at < now - stale_after),
        )

    # Single conditional UPDATE so concurrent re-claims cannot both win
    result = await session.execute(
        update(JobRun)
        .where(JobRun.job_name == job_name, JobRun.run_key == run_key, reclaimable)
        .values(status=STATUS_RUNNING, started_at=now, finished_at=None, detail=null())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 1:
        await session.commit()
        return True

    if await get_run(session, job_name, run_key) is not None:
        await session.rollback()
        return False

    session.add(JobRun(job_name=job_name, run_key=run_key, status=STATUS_RUNNING, started_at=now))
    try:
        await session.commit()
    except IntegrityError:
        # Lost the race against a concurrent claim
        await session.rollback()
        return False
    return True


async def finish_run(
    session: AsyncSession,
    job_name: str,
    run_key: str,
    success: bool,
    detail: dict[str, Any] | None = None,
) -> None:
    run = await get_run(session, job_name, run_key)
    if run is None:
        return
    run.status = STATUS_SUCCESS if success else STATUS_ERROR
    run.detail = detail
    run.finished_at = datetime.now(timezone.utc)
    await session.commit()
