from __future__ import annotations

from pulse.config.settings import Settings
from pulse.models.chat import Chat
from pulse.models.escalation import Escalation


def test_environment_overrides_are_case_insensitive(monkeypatch):
    monkeypatch.setenv("ESCALATION_MARKER", "URGENT:")
    monkeypatch.setenv("chat_reconcile_max_attempts", "5")

    configured = Settings(_env_file=None)

    assert configured.escalation_marker == "URGENT:"
    assert configured.chat_reconcile_max_attempts == 5


def test_defaults_without_environment():
    configured = Settings(_env_file=None)

    assert configured.escalation_marker == "ESCALATE:"
    assert configured.chat_unique_active_index is True
    assert configured.assistant_history_limit == 50


def test_document_schemas_carry_examples():
    assert Chat.model_json_schema()["example"]["status"] == "active"
    assert Escalation.model_json_schema()["example"]["severity"] == "urgent"
