from __future__ import annotations

from datetime import timedelta

import pytest

from pulse.config.settings import settings
from pulse.errors import AccessDeniedError, InvalidTransitionError, NotFoundError
from pulse.models.directory import User
from pulse.models.triage import ChatStatus, EscalationStatus, Severity, UserRole

PHYSICIAN = {"user_id": "physician-1", "role": UserRole.PHYSICIAN}
OTHER_PHYSICIAN = {"user_id": "physician-9", "role": UserRole.PHYSICIAN}
ADMIN = {"user_id": "admin-1", "role": UserRole.ADMIN}


@pytest.fixture
async def escalated_chat(chat_service, escalation_service):
    chat_id = await chat_service.get_or_create_active_chat("patient-1")
    escalation = await escalation_service.create_escalation(
        chat_id=chat_id,
        patient_id="patient-1",
        physician_id="physician-1",
        reason="chest pain",
        severity=Severity.URGENT,
    )
    await chat_service.escalate_chat(chat_id, "physician-1")
    return chat_id, escalation


async def test_acknowledge_then_resolve(escalated_chat, escalation_service, chat_service):
    chat_id, escalation = escalated_chat

    await escalation_service.acknowledge_escalation(escalation.escalation_id, PHYSICIAN)
    acked = await escalation_service.require_escalation(escalation.escalation_id)
    assert acked.status == EscalationStatus.ACKNOWLEDGED
    assert acked.acknowledged_at is not None

    await escalation_service.resolve_escalation(
        escalation.escalation_id, notes="Called patient, sent to ER", actor=PHYSICIAN
    )
    resolved = await escalation_service.require_escalation(escalation.escalation_id)
    assert resolved.status == EscalationStatus.RESOLVED
    assert resolved.notes == "Called patient, sent to ER"
    assert resolved.resolved_at is not None
    # Immutable fields untouched.
    assert resolved.reason == "chest pain"
    assert resolved.severity is Severity.URGENT

    assert (await chat_service.get_chat(chat_id)).status == ChatStatus.RESOLVED


async def test_resolve_directly_from_pending(escalated_chat, escalation_service):
    _, escalation = escalated_chat
    await escalation_service.resolve_escalation(escalation.escalation_id, actor=ADMIN)
    assert (
        await escalation_service.require_escalation(escalation.escalation_id)
    ).status == EscalationStatus.RESOLVED


async def test_resolve_when_chat_already_resolved(
    escalated_chat, escalation_service, chat_service
):
    chat_id, escalation = escalated_chat
    await chat_service.resolve_chat(chat_id)

    await escalation_service.resolve_escalation(escalation.escalation_id)

    assert (await chat_service.get_chat(chat_id)).status == ChatStatus.RESOLVED


async def test_second_escalation_on_same_chat_resolves_cleanly(
    escalated_chat, escalation_service, chat_service
):
    chat_id, first = escalated_chat
    second = await escalation_service.create_escalation(
        chat_id=chat_id,
        patient_id="patient-1",
        physician_id="physician-1",
        reason="still short of breath",
        severity=Severity.HIGH,
    )

    await escalation_service.resolve_escalation(first.escalation_id, actor=PHYSICIAN)
    # The chat is already resolved by the first escalation.
    await escalation_service.resolve_escalation(second.escalation_id, actor=PHYSICIAN)

    assert (
        await escalation_service.require_escalation(second.escalation_id)
    ).status == EscalationStatus.RESOLVED
    assert (await chat_service.get_chat(chat_id)).status == ChatStatus.RESOLVED


async def test_invalid_transitions(escalated_chat, escalation_service):
    _, escalation = escalated_chat
    await escalation_service.acknowledge_escalation(escalation.escalation_id)

    with pytest.raises(InvalidTransitionError):
        await escalation_service.acknowledge_escalation(escalation.escalation_id)

    await escalation_service.resolve_escalation(escalation.escalation_id)

    with pytest.raises(InvalidTransitionError):
        await escalation_service.resolve_escalation(escalation.escalation_id)
    with pytest.raises(InvalidTransitionError):
        await escalation_service.acknowledge_escalation(escalation.escalation_id)


async def test_other_physician_is_denied(escalated_chat, escalation_service):
    _, escalation = escalated_chat

    with pytest.raises(AccessDeniedError):
        await escalation_service.acknowledge_escalation(
            escalation.escalation_id, OTHER_PHYSICIAN
        )
    with pytest.raises(AccessDeniedError):
        await escalation_service.resolve_escalation(
            escalation.escalation_id, actor=OTHER_PHYSICIAN
        )

    unchanged = await escalation_service.require_escalation(escalation.escalation_id)
    assert unchanged.status == EscalationStatus.PENDING


async def test_missing_escalation(db, escalation_service):
    with pytest.raises(NotFoundError):
        await escalation_service.acknowledge_escalation("missing")
    assert await escalation_service.get_escalation("missing") is None


async def test_unassigned_escalation_picks_earliest_admin(
    db, admin_user, escalation_service
):
    # Sorts before "admin-1" by id, but was created later.
    late_admin = User(
        user_id="aaa-admin",
        external_id="ext-aaa-admin",
        role=UserRole.ADMIN,
        created_at=admin_user.created_at + timedelta(seconds=5),
    )
    await db[settings.mongodb_collection_users].insert_one(late_admin.model_dump())

    escalation = await escalation_service.create_unassigned_escalation(
        chat_id="c-1", patient_id="patient-2", reason="overdose", severity=Severity.URGENT
    )

    assert escalation.physician_id == admin_user.user_id
    assert escalation.reason == "[UNASSIGNED PATIENT] overdose"


async def test_stats_and_listings(db, escalation_service):
    rows = [
        ("c-1", "physician-1", Severity.URGENT),
        ("c-2", "physician-1", Severity.LOW),
        ("c-3", "physician-1", Severity.URGENT),
        ("c-4", "physician-2", Severity.URGENT),
    ]
    created = []
    for chat_id, physician_id, severity in rows:
        created.append(
            await escalation_service.create_escalation(
                chat_id=chat_id,
                patient_id="patient-1",
                physician_id=physician_id,
                reason="reason",
                severity=severity,
            )
        )
    await escalation_service.acknowledge_escalation(created[2].escalation_id)
    await escalation_service.resolve_escalation(created[1].escalation_id)

    stats = await escalation_service.get_stats("physician-1")
    assert (stats.pending, stats.acknowledged, stats.resolved) == (1, 1, 1)
    assert stats.urgent_count == 1

    overall = await escalation_service.get_stats()
    assert overall.pending == 2
    assert overall.urgent_count == 2

    pending = await escalation_service.list_for_physician(
        "physician-1", EscalationStatus.PENDING
    )
    assert [e.chat_id for e in pending] == ["c-1"]
    assert len(await escalation_service.list_for_physician("physician-1")) == 3

    urgent = await escalation_service.list_pending_by_severity(Severity.URGENT)
    assert {e.chat_id for e in urgent} == {"c-1", "c-4"}
    urgent_mine = await escalation_service.list_pending_by_severity(
        Severity.URGENT, "physician-1"
    )
    assert [e.chat_id for e in urgent_mine] == ["c-1"]

    assert len(await escalation_service.list_for_patient("patient-1")) == 4
    assert [e.chat_id for e in await escalation_service.list_for_chat("c-3")] == ["c-3"]
