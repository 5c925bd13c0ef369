from __future__ import annotations

import asyncio
from datetime import datetime

import pytest
from pymongo.errors import DuplicateKeyError

from pulse.config.settings import settings
from pulse.errors import ChatReconciliationError, InvalidTransitionError, NotFoundError
from pulse.models.chat import Chat
from pulse.models.triage import ChatStatus, MessageRole


async def _active_chats(db, patient_id: str) -> list[dict]:
    cursor = db[settings.mongodb_collection_chats].find(
        {"patient_id": patient_id, "status": ChatStatus.ACTIVE}
    )
    return [doc async for doc in cursor]


async def test_get_or_create_is_idempotent(chat_service, db):
    first = await chat_service.get_or_create_active_chat("patient-1")
    second = await chat_service.get_or_create_active_chat("patient-1")

    assert first == second
    assert [doc["chat_id"] for doc in await _active_chats(db, "patient-1")] == [first]


async def test_concurrent_callers_share_one_active_chat(chat_service, db):
    ids = await asyncio.gather(
        *(chat_service.get_or_create_active_chat("patient-1") for _ in range(8))
    )

    assert len(set(ids)) == 1
    active = await _active_chats(db, "patient-1")
    assert len(active) == 1
    assert active[0]["chat_id"] == ids[0]


async def test_patients_do_not_share_active_chats(chat_service):
    a = await chat_service.get_or_create_active_chat("patient-1")
    b = await chat_service.get_or_create_active_chat("patient-2")
    assert a != b


async def test_reconcile_keeps_earliest_then_smallest_id(chat_service, db):
    same_instant = datetime(2024, 5, 1, 12, 0, 0)
    later = datetime(2024, 5, 1, 12, 0, 1)
    collection = db[settings.mongodb_collection_chats]
    for chat_id, created_at in (
        ("chat-c", later),
        ("chat-b", same_instant),
        ("chat-a", same_instant),
    ):
        await collection.insert_one(
            Chat(chat_id=chat_id, patient_id="patient-1", created_at=created_at).model_dump()
        )

    survivor = await chat_service.reconcile_active_chats("patient-1")

    assert survivor == "chat-a"
    assert [d["chat_id"] for d in await _active_chats(db, "patient-1")] == ["chat-a"]
    # Repeating the reconciliation changes nothing.
    assert await chat_service.reconcile_active_chats("patient-1") == "chat-a"


async def test_concurrent_reconcilers_agree_on_survivor(chat_service, db):
    collection = db[settings.mongodb_collection_chats]
    created = datetime(2024, 5, 1, 9, 30)
    for chat_id in ("z-chat", "m-chat", "b-chat"):
        await collection.insert_one(
            Chat(chat_id=chat_id, patient_id="patient-1", created_at=created).model_dump()
        )

    results = await asyncio.gather(
        *(chat_service.reconcile_active_chats("patient-1") for _ in range(4))
    )

    assert set(results) == {"b-chat"}
    assert len(await _active_chats(db, "patient-1")) == 1


async def test_reconcile_without_active_chat_returns_none(chat_service):
    assert await chat_service.reconcile_active_chats("nobody") is None


async def test_repeat_calls_keep_the_chat_that_holds_messages(chat_service, db):
    for i in range(100):
        chat_id = await chat_service.get_or_create_active_chat(f"patient-{i}")
        await chat_service.add_message(chat_id, MessageRole.USER, "hello")

        assert await chat_service.get_or_create_active_chat(f"patient-{i}") == chat_id
        assert len(await chat_service.get_messages(chat_id)) == 1
        assert len(await _active_chats(db, f"patient-{i}")) == 1


async def test_chat_ids_sort_in_creation_order(chat_service):
    created = [await chat_service.create_chat("patient-1") for _ in range(20)]

    ids = [chat.chat_id for chat in created]
    assert ids == sorted(ids)
    # The earliest insert survives even when every row shares a millisecond.
    assert await chat_service.reconcile_active_chats("patient-1") == ids[0]


async def test_duplicate_key_on_insert_reuses_winning_chat(chat_service, db, monkeypatch):
    rival = Chat(patient_id="patient-1")

    async def lost_race(patient_id):
        # Another writer inserts between our read and our insert.
        await db[settings.mongodb_collection_chats].insert_one(rival.model_dump())
        raise DuplicateKeyError("E11000 duplicate key error")

    monkeypatch.setattr(chat_service, "create_chat", lost_race)

    assert await chat_service.get_or_create_active_chat("patient-1") == rival.chat_id


async def test_gives_up_when_no_active_chat_stays_visible(chat_service, monkeypatch):
    async def vanishing(patient_id):
        return None

    monkeypatch.setattr(chat_service, "create_chat", vanishing)
    monkeypatch.setattr(settings, "chat_reconcile_max_attempts", 2)

    with pytest.raises(ChatReconciliationError):
        await chat_service.get_or_create_active_chat("patient-1")


async def test_new_active_chat_after_resolve(chat_service):
    first = await chat_service.get_or_create_active_chat("patient-1")
    await chat_service.resolve_chat(first)

    second = await chat_service.get_or_create_active_chat("patient-1")

    assert second != first
    assert (await chat_service.get_chat(first)).status == ChatStatus.RESOLVED


async def test_new_active_chat_after_escalation(chat_service):
    first = await chat_service.get_or_create_active_chat("patient-1")
    await chat_service.escalate_chat(first, "physician-1")

    second = await chat_service.get_or_create_active_chat("patient-1")

    assert second != first
    chat = await chat_service.get_chat(first)
    assert chat.status == ChatStatus.ESCALATED
    assert chat.escalated_to == "physician-1"
    assert chat.escalated_at is not None


async def test_escalating_twice_keeps_first_target(chat_service):
    chat_id = await chat_service.get_or_create_active_chat("patient-1")
    await chat_service.escalate_chat(chat_id, "physician-1")
    await chat_service.escalate_chat(chat_id, "admin-1")

    assert (await chat_service.get_chat(chat_id)).escalated_to == "physician-1"


async def test_resolved_chat_is_terminal(chat_service):
    chat_id = await chat_service.get_or_create_active_chat("patient-1")
    await chat_service.resolve_chat(chat_id)

    with pytest.raises(InvalidTransitionError):
        await chat_service.resolve_chat(chat_id)
    with pytest.raises(InvalidTransitionError):
        await chat_service.escalate_chat(chat_id, "physician-1")


async def test_escalated_chat_can_be_resolved(chat_service):
    chat_id = await chat_service.get_or_create_active_chat("patient-1")
    await chat_service.escalate_chat(chat_id, "physician-1")
    await chat_service.resolve_chat(chat_id)

    chat = await chat_service.get_chat(chat_id)
    assert chat.status == ChatStatus.RESOLVED
    assert chat.resolved_at is not None


async def test_close_chat_is_idempotent(chat_service):
    chat_id = await chat_service.get_or_create_active_chat("patient-1")

    assert await chat_service.close_chat(chat_id) is True
    assert await chat_service.close_chat(chat_id) is False
    assert await chat_service.close_chat("missing") is False


async def test_transitions_on_missing_chat(chat_service):
    with pytest.raises(NotFoundError):
        await chat_service.resolve_chat("missing")
    with pytest.raises(NotFoundError):
        await chat_service.escalate_chat("missing", "physician-1")
    assert await chat_service.get_chat("missing") is None


async def test_messages_keep_insertion_order(chat_service):
    chat_id = await chat_service.get_or_create_active_chat("patient-1")

    await chat_service.add_message_pair(
        chat_id, "hello", MessageRole.ASSISTANT, "hi, how can I help?"
    )
    await chat_service.add_message_pair(
        chat_id, "my head hurts", MessageRole.ASSISTANT, "since when?"
    )

    messages = await chat_service.get_messages(chat_id)

    assert [(m.role, m.content) for m in messages] == [
        (MessageRole.USER, "hello"),
        (MessageRole.ASSISTANT, "hi, how can I help?"),
        (MessageRole.USER, "my head hurts"),
        (MessageRole.ASSISTANT, "since when?"),
    ]
    assert messages[0].timestamp == messages[1].timestamp


async def test_list_patient_chats_newest_first(chat_service, db):
    collection = db[settings.mongodb_collection_chats]
    await collection.insert_one(
        Chat(
            chat_id="old",
            patient_id="patient-1",
            status=ChatStatus.RESOLVED,
            created_at=datetime(2024, 1, 1),
        ).model_dump()
    )
    await collection.insert_one(
        Chat(chat_id="new", patient_id="patient-1", created_at=datetime(2024, 2, 1)).model_dump()
    )

    chats = await chat_service.list_patient_chats("patient-1")

    assert [c.chat_id for c in chats] == ["new", "old"]


async def test_list_escalated_for_physician(chat_service):
    mine = await chat_service.get_or_create_active_chat("patient-1")
    await chat_service.escalate_chat(mine, "physician-1")
    other = await chat_service.get_or_create_active_chat("patient-2")
    await chat_service.escalate_chat(other, "physician-2")

    chats = await chat_service.list_escalated_for_physician("physician-1")

    assert [c.chat_id for c in chats] == [mine]
