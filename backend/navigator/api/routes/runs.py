"""Run routes: start, restart, listing, and the run-scoped Step 2 meta card."""

from fastapi import APIRouter

from navigator.api.deps import DbSession, PaidMemberId, get_active_run_or_400
from navigator.db.models import CardKind
from navigator.errors import bad_request
from navigator.schemas.messages import CardRead, EncryptedPayload
from navigator.schemas.runs import MetaCardResponse, RunDetail, RunRead, RunResponse, RunsListResponse
from navigator.services import cards, lifecycle

router = APIRouter(prefix="/api", tags=["runs"])


@router.post("/run/start", response_model=RunResponse)
async def start_run(user_id: PaidMemberId, db: DbSession) -> RunResponse:
    """
    Create the user's first run.

    Only valid for a user with no runs at all; afterwards use /api/run/restart.
    """
    if await lifecycle.get_active_run(db, user_id) is not None:
        raise bad_request("active run exists")
    if await lifecycle.count_runs(db, user_id) > 0:
        raise bad_request("run already exists; use /api/run/restart")

    run = await lifecycle.create_run(db, user_id)
    return RunResponse(run=RunRead.model_validate(run))


@router.post("/run/restart", response_model=RunResponse)
async def restart_run(user_id: PaidMemberId, db: DbSession) -> RunResponse:
    """Create the next run. Only valid when no run is active."""
    if await lifecycle.get_active_run(db, user_id) is not None:
        raise bad_request("active run exists")

    run = await lifecycle.create_run(db, user_id)
    return RunResponse(run=RunRead.model_validate(run))


@router.get("/runs/list", response_model=RunsListResponse)
async def list_runs(user_id: PaidMemberId, db: DbSession) -> RunsListResponse:
    """All of the user's runs, newest first."""
    runs = await lifecycle.list_runs(db, user_id)
    return RunsListResponse(runs=[RunDetail.model_validate(r) for r in runs])


@router.get("/run/step2_meta_card", response_model=MetaCardResponse)
async def get_step2_meta_card(user_id: PaidMemberId, db: DbSession) -> MetaCardResponse:
    """The active run's Step 2 meta card, or card=null if none was written yet."""
    run = await get_active_run_or_400(db, user_id)
    card = await cards.get_card(db, run.id, CardKind.STEP2_META_CARD)
    return MetaCardResponse(
        run=RunRead.model_validate(run),
        card=CardRead.model_validate(card) if card is not None else None,
    )


@router.post("/run/step2_meta_card", response_model=MetaCardResponse)
async def put_step2_meta_card(
    data: EncryptedPayload,
    user_id: PaidMemberId,
    db: DbSession,
) -> MetaCardResponse:
    """Create or overwrite the active run's Step 2 meta card."""
    run = await get_active_run_or_400(db, user_id)
    run_read = RunRead.model_validate(run)

    card = await cards.upsert_card(
        db,
        run_id=run_read.id,
        user_id=user_id,
        kind=CardKind.STEP2_META_CARD,
        content=data.as_content(),
    )
    return MetaCardResponse(run=run_read, card=CardRead.model_validate(card))
