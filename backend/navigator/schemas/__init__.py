"""Pydantic schemas for API request/response validation."""

from navigator.schemas.auth import ExchangeRequest, ExchangeResponse
from navigator.schemas.billing import (
    CheckoutSessionResponse,
    PaidResponse,
    SetPaidRequest,
    SetPaidResponse,
)
from navigator.schemas.llm import ChatRequest, ChatResponse, LLMReplyResponse, RespondRequest
from navigator.schemas.messages import (
    CardRead,
    ContextCardWrite,
    EncryptedPayload,
    MessageCreate,
    MessageRead,
    MessagesListResponse,
)
from navigator.schemas.runs import (
    ContextCardResponse,
    MessageAppendResponse,
    MetaCardResponse,
    RunRead,
    RunResponse,
    RunsListResponse,
    ThreadRead,
    ThreadResponse,
    ThreadsListResponse,
    ThreadStateResponse,
)

__all__ = [
    # Auth
    "ExchangeRequest",
    "ExchangeResponse",
    # Billing
    "PaidResponse",
    "CheckoutSessionResponse",
    "SetPaidRequest",
    "SetPaidResponse",
    # LLM
    "ChatRequest",
    "ChatResponse",
    "RespondRequest",
    "LLMReplyResponse",
    # Messages and cards
    "EncryptedPayload",
    "MessageCreate",
    "MessageRead",
    "MessagesListResponse",
    "ContextCardWrite",
    "CardRead",
    # Runs and threads
    "RunRead",
    "RunResponse",
    "RunsListResponse",
    "ThreadRead",
    "ThreadResponse",
    "ThreadStateResponse",
    "ThreadsListResponse",
    "MessageAppendResponse",
    "ContextCardResponse",
    "MetaCardResponse",
]
