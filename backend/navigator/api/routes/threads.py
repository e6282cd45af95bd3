"""
Thread routes: curriculum progression, encrypted messages, context cards.

Message and card content is ciphertext produced by the client; it is stored
and returned verbatim.
"""

from uuid import UUID

from fastapi import APIRouter, Query

from navigator.api.deps import (
    DbSession,
    PaidMemberId,
    get_active_run_or_400,
    get_active_thread_or_400,
    get_user_thread_or_404,
)
from navigator.db.models import CardKind, MessageRole, RunStatus
from navigator.errors import bad_request, not_found
from navigator.schemas.messages import (
    CardRead,
    ContextCardWrite,
    MessageCreate,
    MessageRead,
    MessagesListResponse,
    StoredMessageRef,
)
from navigator.schemas.runs import (
    ContextCardResponse,
    MessageAppendResponse,
    RunRead,
    ThreadRead,
    ThreadResponse,
    ThreadsListResponse,
    ThreadStateResponse,
)
from navigator.services import cards, lifecycle, messages

router = APIRouter(prefix="/api", tags=["threads"])

DEFAULT_MESSAGES_LIMIT = 500
MAX_MESSAGES_LIMIT = 2000


@router.post("/thread/start", response_model=ThreadResponse)
async def start_thread(user_id: PaidMemberId, db: DbSession) -> ThreadResponse:
    """
    Return the active thread, or open the next one in curriculum order.

    When the curriculum is exhausted the run is completed and 400 is returned
    with the run's final state in details.
    """
    run = await get_active_run_or_400(db, user_id)
    run_id = run.id

    thread = await lifecycle.get_or_open_thread(db, run)

    run = await lifecycle.get_run(db, run_id)
    run_read = RunRead.model_validate(run)

    if thread is None:
        raise bad_request("run completed", details={"run": run_read.model_dump(mode="json")})

    return ThreadResponse(run=run_read, thread=ThreadRead.model_validate(thread), thread_id=thread.id)


@router.post("/thread/close", response_model=ThreadResponse)
async def close_thread(user_id: PaidMemberId, db: DbSession) -> ThreadResponse:
    """
    Complete the active thread. The next one is opened by /api/thread/start.

    Closing Step 2 session 30 also completes the run.
    """
    run = await get_active_run_or_400(db, user_id)
    run_id = run.id

    thread = await lifecycle.close_active_thread(db, run)
    if thread is None:
        raise bad_request("no active thread")

    run = await lifecycle.get_run(db, run_id)
    return ThreadResponse(
        run=RunRead.model_validate(run),
        thread=ThreadRead.model_validate(thread),
        thread_id=thread.id,
    )


@router.get("/thread/state", response_model=ThreadStateResponse)
async def get_thread_state(user_id: PaidMemberId, db: DbSession) -> ThreadStateResponse:
    """
    Polling snapshot: latest run (active, else latest completed), its active
    thread, and that thread's last message.
    """
    run = await lifecycle.get_latest_run(db, user_id, completed_only=True)
    if run is None:
        return ThreadStateResponse()

    thread = None
    if run.status == RunStatus.ACTIVE.value:
        thread = await lifecycle.get_active_thread(db, run.id)

    last_message = await messages.get_last_message(db, thread.id) if thread is not None else None

    return ThreadStateResponse(
        run=RunRead.model_validate(run),
        thread=ThreadRead.model_validate(thread) if thread is not None else None,
        last_message=MessageRead.model_validate(last_message) if last_message is not None else None,
    )


@router.get("/threads/list", response_model=ThreadsListResponse)
async def list_threads(
    user_id: PaidMemberId,
    db: DbSession,
    run_no: int | None = Query(None, ge=1),
) -> ThreadsListResponse:
    """Threads of run `run_no` (default: latest run) in curriculum order."""
    if run_no is not None:
        run = await lifecycle.get_run_by_no(db, user_id, run_no)
    else:
        run = await lifecycle.get_latest_run(db, user_id)

    if run is None:
        return ThreadsListResponse(threads=[])

    threads = await lifecycle.list_threads(db, run.id)
    return ThreadsListResponse(
        run=RunRead.model_validate(run),
        threads=[ThreadRead.model_validate(t) for t in threads],
    )


@router.post("/thread/message", response_model=MessageAppendResponse)
async def append_message(
    data: MessageCreate,
    user_id: PaidMemberId,
    db: DbSession,
) -> MessageAppendResponse:
    """
    Append an encrypted message to the active thread.

    thread_id must name the currently active thread. Retrying with the same
    client_message_id returns the stored seq with duplicate=true.
    """
    run = await get_active_run_or_400(db, user_id)
    thread = await get_active_thread_or_400(db, run)
    if thread.id != data.thread_id:
        raise bad_request("thread_id must be current active thread")

    run_read = RunRead.model_validate(run)
    thread_read = ThreadRead.model_validate(thread)

    result = await messages.insert_message_with_seq(
        db,
        thread,
        MessageRole(data.role),
        data.client_message_id,
        data.as_content(),
    )
    return MessageAppendResponse(
        run=run_read,
        thread=thread_read,
        thread_id=thread_read.id,
        message=StoredMessageRef.model_validate(result.message),
        duplicate=result.duplicate,
    )


@router.get("/thread/messages", response_model=MessagesListResponse)
async def list_thread_messages(
    user_id: PaidMemberId,
    db: DbSession,
    thread_id: UUID,
    limit: int = DEFAULT_MESSAGES_LIMIT,
) -> MessagesListResponse:
    """Messages of one of the user's threads, seq ascending. limit is clamped to 1..2000."""
    thread = await get_user_thread_or_404(db, thread_id, user_id)
    limit = max(1, min(limit, MAX_MESSAGES_LIMIT))

    rows = await messages.list_messages(db, thread.id, limit)
    return MessagesListResponse(
        thread_id=thread.id,
        messages=[MessageRead.model_validate(m) for m in rows],
    )


@router.get("/thread/context_card", response_model=ContextCardResponse)
async def get_context_card(
    user_id: PaidMemberId,
    db: DbSession,
    thread_id: UUID,
) -> ContextCardResponse:
    thread = await get_user_thread_or_404(db, thread_id, user_id)
    card = await cards.get_card(db, thread.run_id, CardKind.CONTEXT_CARD, thread_id=thread.id)
    if card is None:
        raise not_found("context_card not found")

    run = await lifecycle.get_run(db, thread.run_id)
    return ContextCardResponse(
        run=RunRead.model_validate(run),
        thread=ThreadRead.model_validate(thread),
        card=CardRead.model_validate(card),
    )


@router.post("/thread/context_card", response_model=ContextCardResponse)
async def put_context_card(
    data: ContextCardWrite,
    user_id: PaidMemberId,
    db: DbSession,
) -> ContextCardResponse:
    """Create or overwrite the context card of one of the user's threads."""
    thread = await get_user_thread_or_404(db, data.thread_id, user_id)
    thread_read = ThreadRead.model_validate(thread)
    run_id = thread.run_id

    card = await cards.upsert_card(
        db,
        run_id=run_id,
        user_id=user_id,
        kind=CardKind.CONTEXT_CARD,
        content=data.as_content(),
        thread_id=thread_read.id,
    )

    run = await lifecycle.get_run(db, run_id)
    return ContextCardResponse(
        run=RunRead.model_validate(run),
        thread=thread_read,
        card=CardRead.model_validate(card),
    )
