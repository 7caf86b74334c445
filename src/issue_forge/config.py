"""Runtime configuration for issue draft generation."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

DEFAULT_COMMAND_TEMPLATES = {
    "claude": (
        "claude -p --model {model} --permission-mode acceptEdits "
        '--allowed-tools "Read,Write,Edit" '
        "-- {prompt}"
    ),
    "codex": (
        "codex exec --sandbox workspace-write "
        "-c model_reasoning_effort={reasoning_effort} "
        "--model {model} {prompt}"
    ),
    "gemini": "gemini --model {model} --approval-mode auto_edit --prompt {prompt}",
}
DEFAULT_MODELS = {
    "claude": "sonnet",
    "codex": "gpt-5-codex",
    "gemini": "gemini-2.5-pro",
}


@dataclass(slots=True)
class ResilienceSettings:
    """Retry and circuit-breaker settings for agent calls."""

    enabled: bool = True
    max_retries: int = 3
    initial_backoff_seconds: float = 1.0
    max_backoff_seconds: float = 30.0
    backoff_multiplier: float = 2.0
    failure_threshold: int = 3
    reset_timeout_seconds: float = 30.0


@dataclass(slots=True)
class GenerationSettings:
    """Batching, timeout and output settings."""

    state_root: Path = Path(".issue_forge")
    max_tasks_per_batch: int = 10
    max_generation_retries: int = 2
    fallback_timeout_seconds: float = 600.0
    output_format: str = "markdown"
    reasoning_effort: str | None = None


@dataclass(slots=True)
class AgentSettings:
    """Which agent CLI to run and how."""

    agent: str = "claude"
    model: str = DEFAULT_MODELS["claude"]
    command_template: str = DEFAULT_COMMAND_TEMPLATES["claude"]


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    resilience: ResilienceSettings = field(default_factory=ResilienceSettings)
    generation: GenerationSettings = field(default_factory=GenerationSettings)
    agent: AgentSettings = field(default_factory=AgentSettings)

    @classmethod
    def from_env(cls, state_root: Path | None = None) -> Settings:
        """Load settings from environment with sane defaults for local development."""

        agent = os.getenv("ISSUE_FORGE_AGENT", "claude").strip().lower()
        return cls(
            resilience=ResilienceSettings(
                enabled=_env_bool("ISSUE_FORGE_RESILIENCE_ENABLED", default=True),
                max_retries=int(os.getenv("ISSUE_FORGE_MAX_RETRIES", "3")),
                initial_backoff_seconds=float(
                    os.getenv("ISSUE_FORGE_INITIAL_BACKOFF_SECONDS", "1.0"),
                ),
                max_backoff_seconds=float(os.getenv("ISSUE_FORGE_MAX_BACKOFF_SECONDS", "30.0")),
                backoff_multiplier=float(os.getenv("ISSUE_FORGE_BACKOFF_MULTIPLIER", "2.0")),
                failure_threshold=int(os.getenv("ISSUE_FORGE_CIRCUIT_FAILURE_THRESHOLD", "3")),
                reset_timeout_seconds=float(
                    os.getenv("ISSUE_FORGE_CIRCUIT_RESET_TIMEOUT_SECONDS", "30.0"),
                ),
            ),
            generation=GenerationSettings(
                state_root=state_root or Path(os.getenv("ISSUE_FORGE_STATE_ROOT", ".issue_forge")),
                max_tasks_per_batch=int(os.getenv("ISSUE_FORGE_MAX_TASKS_PER_BATCH", "10")),
                max_generation_retries=int(
                    os.getenv("ISSUE_FORGE_MAX_GENERATION_RETRIES", "2"),
                ),
                fallback_timeout_seconds=float(
                    os.getenv("ISSUE_FORGE_FALLBACK_TIMEOUT_SECONDS", "600"),
                ),
                output_format=os.getenv("ISSUE_FORGE_OUTPUT_FORMAT", "markdown"),
                reasoning_effort=os.getenv("ISSUE_FORGE_REASONING_EFFORT") or None,
            ),
            agent=AgentSettings(
                agent=agent,
                model=os.getenv("ISSUE_FORGE_MODEL", DEFAULT_MODELS.get(agent, "")),
                command_template=os.getenv(
                    "ISSUE_FORGE_COMMAND_TEMPLATE",
                    DEFAULT_COMMAND_TEMPLATES.get(agent, ""),
                ),
            ),
        )

    def validate(self) -> None:
        """Raise configuration error naming the offending variable."""

        resilience = self.resilience
        if resilience.max_retries < 0:
            raise ValueError("ISSUE_FORGE_MAX_RETRIES must be >= 0.")
        if resilience.initial_backoff_seconds < 0:
            raise ValueError("ISSUE_FORGE_INITIAL_BACKOFF_SECONDS must be >= 0.")
        if resilience.max_backoff_seconds < resilience.initial_backoff_seconds:
            raise ValueError(
                "ISSUE_FORGE_MAX_BACKOFF_SECONDS must be >= ISSUE_FORGE_INITIAL_BACKOFF_SECONDS.",
            )
        if resilience.backoff_multiplier < 1:
            raise ValueError("ISSUE_FORGE_BACKOFF_MULTIPLIER must be >= 1.")
        if resilience.failure_threshold < 1:
            raise ValueError("ISSUE_FORGE_CIRCUIT_FAILURE_THRESHOLD must be >= 1.")
        if resilience.reset_timeout_seconds <= 0:
            raise ValueError("ISSUE_FORGE_CIRCUIT_RESET_TIMEOUT_SECONDS must be > 0.")

        generation = self.generation
        if generation.max_tasks_per_batch < 1:
            raise ValueError("ISSUE_FORGE_MAX_TASKS_PER_BATCH must be >= 1.")
        if generation.max_generation_retries < 0:
            raise ValueError("ISSUE_FORGE_MAX_GENERATION_RETRIES must be >= 0.")
        if generation.fallback_timeout_seconds <= 0:
            raise ValueError("ISSUE_FORGE_FALLBACK_TIMEOUT_SECONDS must be > 0.")

        template = self.agent.command_template.strip()
        if not template:
            raise ValueError(
                f"No command template for agent {self.agent.agent!r}. "
                "Set ISSUE_FORGE_COMMAND_TEMPLATE.",
            )
        if "{prompt}" not in template and "{prompt_file}" not in template:
            raise ValueError(
                "ISSUE_FORGE_COMMAND_TEMPLATE must include {prompt} or {prompt_file}.",
            )


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {value!r}")
