"""Tests for idempotent message append and card upsert."""

import asyncio

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from navigator.db.models import Card, CardKind, Message, MessageRole
from navigator.errors import StorageConflictError
from navigator.services import cards, lifecycle, messages
from navigator.services.messages import EncryptedContent

USER = "mem_messages"


def _content(n: int = 1) -> EncryptedContent:
    return EncryptedContent(ciphertext=f"ct-{n}", iv=f"iv-{n}", alg="AES-GCM", version=1, kid="k1")


async def _new_thread(db):
    run = await lifecycle.create_run(db, USER)
    return await lifecycle.create_next_thread(db, run)


class TestMessageAppend:
    async def test_seq_starts_at_one_and_increments(self, db):
        thread = await _new_thread(db)

        first = await messages.insert_message_with_seq(db, thread, MessageRole.USER, "c1", _content(1))
        second = await messages.insert_message_with_seq(db, thread, MessageRole.ASSISTANT, "c2", _content(2))

        assert (first.message.seq, first.duplicate) == (1, False)
        assert (second.message.seq, second.duplicate) == (2, False)
        assert second.message.role == "assistant"

    async def test_same_client_message_id_is_a_replay(self, db):
        thread = await _new_thread(db)

        first = await messages.insert_message_with_seq(db, thread, MessageRole.USER, "same", _content(1))
        replay = await messages.insert_message_with_seq(db, thread, MessageRole.USER, "same", _content(9))

        assert replay.duplicate is True
        assert replay.message.id == first.message.id
        assert replay.message.seq == first.message.seq
        assert replay.message.ciphertext == "ct-1"

        count = await db.execute(select(func.count()).select_from(Message))
        assert count.scalar_one() == 1

        # A replay consumes no seq
        nxt = await messages.insert_message_with_seq(db, thread, MessageRole.USER, "next", _content(2))
        assert nxt.message.seq == 2

    async def test_concurrent_appends_get_gapless_seq(self, db, session_factory):
        thread = await _new_thread(db)
        n = 10

        async def append(i: int) -> int:
            async with session_factory() as session:
                result = await messages.insert_message_with_seq(
                    session, thread, MessageRole.USER, f"client-{i}", _content(i)
                )
                return result.message.seq

        seqs = await asyncio.gather(*(append(i) for i in range(n)))
        assert sorted(seqs) == list(range(1, n + 1))

    async def test_list_and_last_message(self, db):
        thread = await _new_thread(db)
        for i in range(3):
            await messages.insert_message_with_seq(db, thread, MessageRole.USER, f"c{i}", _content(i))

        rows = await messages.list_messages(db, thread.id)
        assert [m.seq for m in rows] == [1, 2, 3]
        assert [m.seq for m in await messages.list_messages(db, thread.id, limit=2)] == [1, 2]
        assert (await messages.get_last_message(db, thread.id)).seq == 3


class TestCardUpsert:
    async def test_second_write_overwrites(self, db):
        thread = await _new_thread(db)

        await cards.upsert_card(
            db, run_id=thread.run_id, user_id=USER, kind=CardKind.CONTEXT_CARD,
            content=_content(1), thread_id=thread.id,
        )
        card = await cards.upsert_card(
            db, run_id=thread.run_id, user_id=USER, kind=CardKind.CONTEXT_CARD,
            content=_content(2), thread_id=thread.id,
        )

        assert card.ciphertext == "ct-2"
        count = await db.execute(select(func.count()).select_from(Card))
        assert count.scalar_one() == 1

    async def test_run_and_thread_scopes_are_separate(self, db):
        thread = await _new_thread(db)

        await cards.upsert_card(
            db, run_id=thread.run_id, user_id=USER, kind=CardKind.STEP2_META_CARD, content=_content(1),
        )
        await cards.upsert_card(
            db, run_id=thread.run_id, user_id=USER, kind=CardKind.CONTEXT_CARD,
            content=_content(2), thread_id=thread.id,
        )

        meta = await cards.get_card(db, thread.run_id, CardKind.STEP2_META_CARD)
        context = await cards.get_card(db, thread.run_id, CardKind.CONTEXT_CARD, thread_id=thread.id)
        assert meta.thread_id is None
        assert meta.ciphertext == "ct-1"
        assert context.ciphertext == "ct-2"
        assert await cards.get_card(db, thread.run_id, CardKind.CONTEXT_CARD) is None


class TestAppendExhaustion:
    async def test_persistent_seq_conflict_raises_after_max_attempts(self, db, monkeypatch):
        thread = await _new_thread(db)
        attempts = []

        async def conflicting_commit():
            attempts.append(1)
            raise IntegrityError("INSERT INTO messages", {}, Exception("UNIQUE constraint failed: seq"))

        monkeypatch.setattr(db, "commit", conflicting_commit)

        with pytest.raises(StorageConflictError) as exc_info:
            await messages.insert_message_with_seq(db, thread, MessageRole.USER, "c1", _content(1))

        assert len(attempts) == messages.MAX_APPEND_ATTEMPTS
        assert isinstance(exc_info.value.__cause__, IntegrityError)
