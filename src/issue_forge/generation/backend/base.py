"""Backend interface for the external generation agent."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol


@dataclass(slots=True)
class AgentRunRequest:
    """Inputs required to execute one agent invocation."""

    prompt: str
    model: str
    output_format: str
    timeout_seconds: float
    workdir: Path
    reasoning_effort: str | None = None
    cancel_requested: Callable[[], bool] | None = None


@dataclass(slots=True)
class AgentRunResult:
    """Raw output of a successful invocation. Files are written as a side effect."""

    output_text: str
    exit_code: int = 0


class AgentBackend(Protocol):
    """Protocol implemented by agent runners."""

    def run(self, request: AgentRunRequest) -> AgentRunResult:
        """Run the agent once; raise on failure."""
