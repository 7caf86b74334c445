from __future__ import annotations

from pathlib import Path

import allure
import pytest

from issue_forge.config import DEFAULT_COMMAND_TEMPLATES, Settings

pytestmark = [
    allure.epic("Configuration"),
    allure.feature("Environment Settings"),
]


def test_defaults_without_environment(monkeypatch) -> None:
    for name in (
        "ISSUE_FORGE_AGENT",
        "ISSUE_FORGE_MODEL",
        "ISSUE_FORGE_COMMAND_TEMPLATE",
        "ISSUE_FORGE_STATE_ROOT",
        "ISSUE_FORGE_MAX_RETRIES",
        "ISSUE_FORGE_RESILIENCE_ENABLED",
    ):
        monkeypatch.delenv(name, raising=False)

    settings = Settings.from_env()
    settings.validate()

    assert settings.resilience.enabled is True
    assert settings.resilience.max_retries == 3
    assert settings.resilience.failure_threshold == 3
    assert settings.generation.state_root == Path(".issue_forge")
    assert settings.generation.max_tasks_per_batch == 10
    assert settings.agent.agent == "claude"
    assert settings.agent.command_template == DEFAULT_COMMAND_TEMPLATES["claude"]


def test_environment_overrides(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.setenv("ISSUE_FORGE_AGENT", "Codex")
    monkeypatch.setenv("ISSUE_FORGE_RESILIENCE_ENABLED", "off")
    monkeypatch.setenv("ISSUE_FORGE_MAX_TASKS_PER_BATCH", "4")
    monkeypatch.setenv("ISSUE_FORGE_REASONING_EFFORT", "high")
    monkeypatch.delenv("ISSUE_FORGE_COMMAND_TEMPLATE", raising=False)
    monkeypatch.delenv("ISSUE_FORGE_MODEL", raising=False)

    settings = Settings.from_env(state_root=tmp_path)

    assert settings.agent.agent == "codex"
    assert settings.agent.command_template == DEFAULT_COMMAND_TEMPLATES["codex"]
    assert settings.resilience.enabled is False
    assert settings.generation.max_tasks_per_batch == 4
    assert settings.generation.reasoning_effort == "high"
    assert settings.generation.state_root == tmp_path


def test_invalid_boolean_is_rejected(monkeypatch) -> None:
    monkeypatch.setenv("ISSUE_FORGE_RESILIENCE_ENABLED", "maybe")

    with pytest.raises(ValueError, match="ISSUE_FORGE_RESILIENCE_ENABLED"):
        Settings.from_env()


@pytest.mark.parametrize(
    ("name", "value"),
    [
        ("ISSUE_FORGE_MAX_TASKS_PER_BATCH", "0"),
        ("ISSUE_FORGE_MAX_RETRIES", "-1"),
        ("ISSUE_FORGE_CIRCUIT_FAILURE_THRESHOLD", "0"),
        ("ISSUE_FORGE_FALLBACK_TIMEOUT_SECONDS", "0"),
        ("ISSUE_FORGE_COMMAND_TEMPLATE", "agent --model {model}"),
    ],
)
def test_validate_names_offending_variable(monkeypatch, name: str, value: str) -> None:
    monkeypatch.setenv(name, value)

    with pytest.raises(ValueError, match=name):
        Settings.from_env().validate()


def test_unknown_agent_requires_explicit_template(monkeypatch) -> None:
    monkeypatch.setenv("ISSUE_FORGE_AGENT", "custom")
    monkeypatch.delenv("ISSUE_FORGE_COMMAND_TEMPLATE", raising=False)

    with pytest.raises(ValueError, match="No command template for agent 'custom'"):
        Settings.from_env().validate()
