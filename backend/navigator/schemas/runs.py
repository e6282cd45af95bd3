"""Run and thread schemas."""

from datetime import datetime
from uuid import UUID

from navigator.schemas.base import BaseSchema, IDMixin, OkResponse, TimestampMixin
from navigator.schemas.messages import CardRead, MessageRead, StoredMessageRef


class RunRead(IDMixin, BaseSchema):
    run_no: int
    status: str


class RunDetail(RunRead, TimestampMixin):
    """Run with timestamps, for listings."""


class ThreadRead(IDMixin, BaseSchema):
    step: int
    question_no: int | None = None
    session_no: int | None = None
    status: str
    created_at: datetime
    updated_at: datetime


class RunResponse(OkResponse):
    run: RunRead


class RunsListResponse(OkResponse):
    runs: list[RunDetail]


class ThreadResponse(OkResponse):
    run: RunRead
    thread: ThreadRead
    thread_id: UUID


class ThreadStateResponse(OkResponse):
    run: RunRead | None = None
    thread: ThreadRead | None = None
    last_message: MessageRead | None = None


class ThreadsListResponse(OkResponse):
    run: RunRead | None = None
    threads: list[ThreadRead]


class MessageAppendResponse(OkResponse):
    run: RunRead
    thread: ThreadRead
    thread_id: UUID
    message: StoredMessageRef
    duplicate: bool


class ContextCardResponse(OkResponse):
    run: RunRead
    thread: ThreadRead
    card: CardRead


class MetaCardResponse(OkResponse):
    run: RunRead
    card: CardRead | None = None
