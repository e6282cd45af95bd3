"""
Run and thread lifecycle.

Every "current" run or thread is derived at query time from status='active';
nothing is cached. Creation is optimistic: insert, and when a unique index
rejects the row because a concurrent request won, read back the winner's row
and return it. Each write commits on its own; there are no locks and no
transaction spans a run/thread/message boundary.

Callers must not touch ORM instances passed in after a call that may have
rolled back (rollback expires them). Re-read by id instead.
"""

import logging
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from navigator.curriculum import CurriculumPosition, Step1, is_final, next_position
from navigator.db.models import Run, RunStatus, Thread, ThreadStatus
from navigator.errors import ActiveThreadExistsError, StorageConflictError

logger = logging.getLogger(__name__)


# =============================================================================
# RUNS
# =============================================================================


async def get_active_run(db: AsyncSession, user_id: str) -> Run | None:
    result = await db.execute(
        select(Run)
        .where(Run.user_id == user_id, Run.status == RunStatus.ACTIVE.value)
        .limit(1)
    )
    return result.scalar_one_or_none()


async def get_run(db: AsyncSession, run_id: UUID) -> Run | None:
    """Fresh read by id; overwrites any stale copy held by the session."""
    result = await db.execute(
        select(Run).where(Run.id == run_id).execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_run_by_no(db: AsyncSession, user_id: str, run_no: int) -> Run | None:
    result = await db.execute(
        select(Run).where(Run.user_id == user_id, Run.run_no == run_no)
    )
    return result.scalar_one_or_none()


async def count_runs(db: AsyncSession, user_id: str) -> int:
    result = await db.execute(
        select(func.count()).select_from(Run).where(Run.user_id == user_id)
    )
    return result.scalar() or 0


async def list_runs(db: AsyncSession, user_id: str) -> list[Run]:
    result = await db.execute(
        select(Run).where(Run.user_id == user_id).order_by(Run.run_no.desc())
    )
    return list(result.scalars().all())


async def get_latest_run(db: AsyncSession, user_id: str, *, completed_only: bool = False) -> Run | None:
    """
    Active run if there is one, otherwise the highest-numbered older run.

    Read-side convenience for polling endpoints; nothing writes through it.
    """
    active = await get_active_run(db, user_id)
    if active is not None:
        return active

    stmt = select(Run).where(Run.user_id == user_id)
    if completed_only:
        stmt = stmt.where(Run.status == RunStatus.COMPLETED.value)
    result = await db.execute(stmt.order_by(Run.run_no.desc()).limit(1))
    return result.scalar_one_or_none()


async def create_run(db: AsyncSession, user_id: str) -> Run:
    """
    Create the user's next run as active.

    Safe under concurrency: if another request created the active run first,
    the unique index rejects this insert and the existing active run is
    returned instead. Start/restart policy is the caller's job.
    """
    result = await db.execute(
        select(func.coalesce(func.max(Run.run_no), 0) + 1).where(Run.user_id == user_id)
    )
    next_run_no = int(result.scalar_one())

    run = Run(user_id=user_id, run_no=next_run_no, status=RunStatus.ACTIVE.value)
    db.add(run)
    try:
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        active = await get_active_run(db, user_id)
        if active is not None:
            logger.info("Run insert for user %s lost a race; returning run %s", user_id, active.id)
            return active
        raise StorageConflictError("run insert conflicted but no active run exists") from exc

    await db.refresh(run)
    logger.info("Created run %s (run_no=%d) for user %s", run.id, run.run_no, user_id)
    return run


async def complete_run(db: AsyncSession, run_id: UUID) -> None:
    await db.execute(
        update(Run)
        .where(Run.id == run_id)
        .values(status=RunStatus.COMPLETED.value, updated_at=func.now())
    )
    await db.commit()


# =============================================================================
# THREADS
# =============================================================================


async def get_active_thread(db: AsyncSession, run_id: UUID) -> Thread | None:
    result = await db.execute(
        select(Thread)
        .where(Thread.run_id == run_id, Thread.status == ThreadStatus.ACTIVE.value)
        .limit(1)
    )
    return result.scalar_one_or_none()


async def get_user_thread(db: AsyncSession, thread_id: UUID, user_id: str) -> Thread | None:
    """Thread by id, scoped to its owner."""
    result = await db.execute(
        select(Thread).where(Thread.id == thread_id, Thread.user_id == user_id)
    )
    return result.scalar_one_or_none()


async def find_thread_by_position(
    db: AsyncSession,
    run_id: UUID,
    position: CurriculumPosition,
) -> Thread | None:
    stmt = select(Thread).where(Thread.run_id == run_id, Thread.step == position.step)
    if isinstance(position, Step1):
        stmt = stmt.where(Thread.question_no == position.question_no)
    else:
        stmt = stmt.where(Thread.session_no == position.session_no)
    result = await db.execute(stmt.limit(1))
    return result.scalar_one_or_none()


async def list_threads(db: AsyncSession, run_id: UUID) -> list[Thread]:
    """Threads of a run in curriculum order (not creation order)."""
    result = await db.execute(
        select(Thread)
        .where(Thread.run_id == run_id)
        .order_by(
            Thread.step.asc(),
            func.coalesce(Thread.question_no, Thread.session_no).asc(),
        )
    )
    return list(result.scalars().all())


async def create_thread_if_missing(
    db: AsyncSession,
    run: Run,
    position: CurriculumPosition,
) -> Thread:
    """
    Get or create the thread at `position` as the run's active thread.

    Raises ActiveThreadExistsError if a different thread is still active.
    """
    run_id, user_id = run.id, run.user_id

    existing = await find_thread_by_position(db, run_id, position)
    if existing is not None:
        return existing

    active = await get_active_thread(db, run_id)
    if active is not None:
        raise ActiveThreadExistsError()

    thread = Thread(
        run_id=run_id,
        user_id=user_id,
        status=ThreadStatus.ACTIVE.value,
        **position.as_columns(),
    )
    db.add(thread)
    try:
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()

        # Same slot created by a concurrent request
        again = await find_thread_by_position(db, run_id, position)
        if again is not None:
            logger.info("Thread insert for run %s at %s lost a race; returning %s", run_id, position, again.id)
            return again

        # Another slot became active concurrently
        now_active = await get_active_thread(db, run_id)
        if now_active is not None:
            logger.info("Thread insert for run %s lost a race to active thread %s", run_id, now_active.id)
            return now_active

        raise StorageConflictError(f"thread insert for run {run_id} conflicted with no winner") from exc

    await db.refresh(thread)
    logger.info("Created thread %s for run %s at %s", thread.id, run_id, position)
    return thread


async def create_next_thread(db: AsyncSession, run: Run) -> Thread | None:
    """
    Create the thread at the run's next curriculum position.

    Step 1 questions 1..5 come first, then Step 2 sessions 1..30. When all
    thirty sessions exist the run is marked completed and None is returned.
    """
    run_id = run.id

    result = await db.execute(
        select(func.coalesce(func.max(Thread.question_no), 0))
        .where(Thread.run_id == run_id, Thread.step == 1)
    )
    max_question_no = int(result.scalar_one())

    result = await db.execute(
        select(func.coalesce(func.max(Thread.session_no), 0))
        .where(Thread.run_id == run_id, Thread.step == 2)
    )
    max_session_no = int(result.scalar_one())

    position = next_position(max_question_no, max_session_no)
    if position is None:
        await complete_run(db, run_id)
        logger.info("Run %s exhausted the curriculum; marked completed", run_id)
        return None

    return await create_thread_if_missing(db, run, position)


async def get_or_open_thread(db: AsyncSession, run: Run) -> Thread | None:
    """
    The run's active thread, opening the next one when none is active.

    A concurrent caller may open the next thread between our check and our
    insert; its thread is returned instead of raising. None when the
    curriculum is exhausted.
    """
    run_id = run.id

    active = await get_active_thread(db, run_id)
    if active is not None:
        return active

    try:
        return await create_next_thread(db, run)
    except ActiveThreadExistsError:
        winner = await get_active_thread(db, run_id)
        if winner is None:
            raise
        logger.info("Thread start for run %s lost a race; returning active thread %s", run_id, winner.id)
        return winner


async def close_active_thread(db: AsyncSession, run: Run) -> Thread | None:
    """
    Mark the run's active thread completed and return it.

    Closing the final Step 2 session also completes the run. Returns None when
    no thread is active. Does not open the next thread.
    """
    run_id = run.id

    thread = await get_active_thread(db, run_id)
    if thread is None:
        return None

    thread.status = ThreadStatus.COMPLETED.value
    if is_final(thread.position):
        await db.execute(
            update(Run)
            .where(Run.id == run_id)
            .values(status=RunStatus.COMPLETED.value, updated_at=func.now())
        )
    await db.commit()
    await db.refresh(thread)

    logger.info("Closed thread %s in run %s", thread.id, run_id)
    return thread
