from __future__ import annotations

import asyncio
import time
from typing import Callable
from unittest.mock import AsyncMock, MagicMock

import jwt
import pytest
from langchain_core.language_models.fake_chat_models import FakeListChatModel
from langchain_core.messages import AIMessage
from mongomock_motor import AsyncMongoMockClient

from pulse.config.database import Database
from pulse.config.settings import settings
from pulse.models.directory import Patient, User
from pulse.models.triage import UserRole
from pulse.services.chat_service import ChatService
from pulse.services.directory_service import DirectoryService
from pulse.services.escalation_service import EscalationService
from pulse.services.triage_service import TriageService

TEST_JWT_SECRET = "pulse-test-secret-0123456789abcdef0123456789"


@pytest.fixture
async def db(monkeypatch):
    monkeypatch.setattr(settings, "chat_unique_active_index", False)
    monkeypatch.setattr(settings, "environment", "test")
    client = AsyncMongoMockClient()
    Database.client = client
    Database.database = client["pulse_test"]
    yield Database.database
    Database.client = None
    Database.database = None


@pytest.fixture
def chat_service(db) -> ChatService:
    return ChatService()


@pytest.fixture
def directory(db) -> DirectoryService:
    return DirectoryService()


@pytest.fixture
def escalation_service(chat_service, directory) -> EscalationService:
    return EscalationService(chat_service=chat_service, directory_service=directory)


async def _insert_user(user_id: str, role: UserRole) -> User:
    user = User(user_id=user_id, external_id=user_id, role=role)
    await Database.get_collection(settings.mongodb_collection_users).insert_one(
        user.model_dump()
    )
    return user


@pytest.fixture
async def admin_user(db) -> User:
    return await _insert_user("admin-1", UserRole.ADMIN)


@pytest.fixture
async def physician_user(db) -> User:
    return await _insert_user("physician-1", UserRole.PHYSICIAN)


@pytest.fixture
async def patient(db, physician_user, directory) -> Patient:
    await _insert_user("patient-user-1", UserRole.PATIENT)
    return await directory.create_patient(
        Patient(
            patient_id="patient-1",
            user_id="patient-user-1",
            first_name="Ada",
            last_name="Lovelace",
            date_of_birth="1815-12-10",
            assigned_physician_id=physician_user.user_id,
        )
    )


@pytest.fixture
async def unassigned_patient(db, directory) -> Patient:
    await _insert_user("patient-user-2", UserRole.PATIENT)
    return await directory.create_patient(
        Patient(
            patient_id="patient-2",
            user_id="patient-user-2",
            first_name="Grace",
            last_name="Hopper",
        )
    )


@pytest.fixture
def fake_llm() -> Callable[..., FakeListChatModel]:
    def _make(*responses: str) -> FakeListChatModel:
        return FakeListChatModel(responses=list(responses))

    return _make


@pytest.fixture
def failing_llm() -> MagicMock:
    llm = MagicMock()
    llm.ainvoke = AsyncMock(side_effect=RuntimeError("upstream 502"))
    return llm


class SlowChatModel:
    """Chat model stand-in that answers long after any sane timeout."""

    def __init__(self, delay: float = 5.0):
        self.delay = delay

    async def ainvoke(self, messages):
        await asyncio.sleep(self.delay)
        return AIMessage(content="too late")


@pytest.fixture
def slow_llm() -> SlowChatModel:
    return SlowChatModel()


@pytest.fixture
def triage_factory(chat_service, directory, escalation_service):
    def _make(llm) -> TriageService:
        return TriageService(
            llm=llm,
            chat_service=chat_service,
            escalation_service=escalation_service,
            directory_service=directory,
        )

    return _make


@pytest.fixture
def jwt_key_file(tmp_path, monkeypatch):
    key_path = tmp_path / "jwt.key"
    key_path.write_text(TEST_JWT_SECRET)
    monkeypatch.setattr(settings, "jwt_public_key_path", str(key_path))
    monkeypatch.setattr(settings, "jwt_algorithm", "HS256")
    monkeypatch.setattr(settings, "jwt_issuer", None)
    return key_path


@pytest.fixture
def auth_headers(jwt_key_file) -> Callable[[str, str], dict[str, str]]:
    def _make(user_id: str, role: str) -> dict[str, str]:
        token = jwt.encode(
            {"userId": user_id, "role": role, "exp": int(time.time()) + 600},
            TEST_JWT_SECRET,
            algorithm="HS256",
        )
        return {"Authorization": f"Bearer {token}"}

    return _make
