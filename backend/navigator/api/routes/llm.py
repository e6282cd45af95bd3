"""
LLM routes.

Nothing sent to or received from the model is persisted here; the client
encrypts and stores replies itself via /api/thread/message.
"""

from fastapi import APIRouter

from navigator.api.deps import DbSession, PaidMemberId, get_active_run_or_400, get_active_thread_or_400
from navigator.config import get_settings
from navigator.curriculum import Step1
from navigator.schemas.llm import ChatRequest, ChatResponse, LLMReplyResponse, RespondRequest
from navigator.schemas.runs import RunRead, ThreadRead
from navigator.services.llm import build_next_action_reply, llm_service

router = APIRouter(prefix="/api", tags=["llm"])
settings = get_settings()


@router.post("/thread/chat", response_model=ChatResponse)
async def thread_chat(
    data: ChatRequest,
    user_id: PaidMemberId,
    db: DbSession,
) -> ChatResponse:
    """
    Guide reply for the active thread.

    action="next" returns a canned prompt without calling the model. The
    Step 2 meta card is only forwarded on Step 2 threads.
    """
    run = await get_active_run_or_400(db, user_id)
    thread = await get_active_thread_or_400(db, run)
    position = thread.position

    if data.action == "next":
        reply = build_next_action_reply(position)
    else:
        reply = await llm_service.chat_reply(
            position,
            data.message,
            data.context_card,
            None if isinstance(position, Step1) else data.step2_meta_card,
        )

    return ChatResponse(
        run=RunRead.model_validate(run),
        thread=ThreadRead.model_validate(thread),
        thread_id=thread.id,
        reply=reply,
    )


@router.post("/llm/ping", response_model=LLMReplyResponse)
async def llm_ping(user_id: PaidMemberId) -> LLMReplyResponse:
    """Smoke test for the LLM upstream."""
    reply = await llm_service.ping()
    return LLMReplyResponse(model=settings.openai_model, reply=reply)


@router.post("/llm/respond", response_model=LLMReplyResponse)
async def llm_respond(data: RespondRequest, user_id: PaidMemberId) -> LLMReplyResponse:
    """One-shot answer to `input`, outside any thread."""
    reply = await llm_service.respond(data.input)
    return LLMReplyResponse(model=settings.openai_model, reply=reply)
