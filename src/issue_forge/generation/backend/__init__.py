"""Agent backend implementations."""

from issue_forge.generation.backend.base import AgentBackend, AgentRunRequest, AgentRunResult
from issue_forge.generation.backend.cli_backend import AgentRunError, CliAgentBackend

__all__ = [
    "AgentBackend",
    "AgentRunError",
    "AgentRunRequest",
    "AgentRunResult",
    "CliAgentBackend",
]
