"""Encrypted message and card schemas. Payload fields are opaque ciphertext."""

from datetime import datetime
from typing import Annotated, Literal
from uuid import UUID

from pydantic import AliasChoices, Field, field_validator

from navigator.schemas.base import BaseSchema, OkResponse
from navigator.services.messages import EncryptedContent

MAX_CLIENT_MESSAGE_ID_LENGTH = 128
MAX_KID_LENGTH = 128

PositiveStrictInt = Annotated[int, Field(strict=True, gt=0)]


class EncryptedPayload(BaseSchema):
    """Client-encrypted content, stored and returned verbatim."""

    ciphertext: str = Field(..., min_length=1)
    iv: str = Field(..., min_length=1)
    alg: str = Field(..., min_length=1, max_length=64)
    v: PositiveStrictInt
    kid: str | None = Field(None, max_length=MAX_KID_LENGTH)

    @field_validator("kid")
    @classmethod
    def blank_kid_is_none(cls, v: str | None) -> str | None:
        return v or None

    def as_content(self) -> EncryptedContent:
        return EncryptedContent(
            ciphertext=self.ciphertext,
            iv=self.iv,
            alg=self.alg,
            version=self.v,
            kid=self.kid,
        )


class MessageCreate(EncryptedPayload):
    thread_id: UUID
    role: Literal["user", "assistant"]
    client_message_id: str = Field(..., min_length=1, max_length=MAX_CLIENT_MESSAGE_ID_LENGTH)


class MessageRead(BaseSchema):
    id: UUID
    thread_id: UUID
    role: str
    client_message_id: str
    seq: int
    ciphertext: str
    iv: str
    alg: str
    v: int = Field(validation_alias=AliasChoices("v", "version"))
    kid: str | None = None
    created_at: datetime


class StoredMessageRef(BaseSchema):
    role: str
    client_message_id: str
    seq: int


class MessagesListResponse(OkResponse):
    thread_id: UUID
    messages: list[MessageRead]


class CardRead(BaseSchema):
    ciphertext: str
    iv: str
    alg: str
    v: int = Field(validation_alias=AliasChoices("v", "version"))
    kid: str | None = None
    updated_at: datetime


class ContextCardWrite(EncryptedPayload):
    thread_id: UUID
