"""LLM chat schemas. Plaintext here is transient: never stored, never logged."""

from typing import Literal
from uuid import UUID

from pydantic import Field, model_validator

from navigator.schemas.base import BaseSchema, OkResponse
from navigator.schemas.runs import RunRead, ThreadRead

MAX_MESSAGE_LENGTH = 2000
MAX_CARD_TEXT_LENGTH = 200


class ChatRequest(BaseSchema):
    """
    Either action="next" (canned prompt, no LLM call) or a message with the
    decrypted context card.
    """

    action: Literal["next"] | None = None
    message: str | None = Field(None, max_length=MAX_MESSAGE_LENGTH)
    context_card: str | None = Field(None, max_length=MAX_CARD_TEXT_LENGTH)
    step2_meta_card: str | None = Field(None, max_length=MAX_CARD_TEXT_LENGTH)

    @model_validator(mode="after")
    def require_message_unless_next(self) -> "ChatRequest":
        if self.action == "next":
            return self
        if not self.message:
            raise ValueError("message is required")
        if not self.context_card:
            raise ValueError("context_card is required")
        return self


class ChatResponse(OkResponse):
    run: RunRead
    thread: ThreadRead
    thread_id: UUID
    reply: str


class RespondRequest(BaseSchema):
    input: str = Field(..., min_length=1, max_length=MAX_MESSAGE_LENGTH)


class LLMReplyResponse(OkResponse):
    model: str
    reply: str
