"""Subprocess-based backend runner for CLI agents."""

from __future__ import annotations

import os
import shlex
import subprocess
import time
from collections.abc import Callable
from pathlib import Path
from typing import IO

from issue_forge.generation.backend.base import AgentRunRequest, AgentRunResult
from issue_forge.generation.context import GenerationCancelledError
from issue_forge.generation.failure_classifier import NonRetryableError

AGENT_DIR_NAME = ".agent"
_STDERR_TAIL_CHARS = 2000
_POLL_INTERVAL_SECONDS = 0.1


class AgentRunError(RuntimeError):
    """Agent execution error with retryability hint."""

    def __init__(self, message: str, *, transient: bool) -> None:
        super().__init__(message)
        self.transient = transient


class CliAgentBackend:
    """Execute an agent CLI rendered from a command template."""

    def __init__(self, *, command_template: str, agent: str = "agent") -> None:
        self.command_template = command_template
        self.agent = agent

    def run(self, request: AgentRunRequest) -> AgentRunResult:
        request.workdir = request.workdir.resolve()
        request.workdir.mkdir(parents=True, exist_ok=True)
        agent_dir = request.workdir / AGENT_DIR_NAME
        agent_dir.mkdir(parents=True, exist_ok=True)
        prompt_file = agent_dir / "prompt.txt"
        stdout_path = agent_dir / "stdout.log"
        stderr_path = agent_dir / "stderr.log"
        prompt_file.write_text(request.prompt, "utf-8")

        try:
            run_args = build_run_args(
                command_template=self.command_template,
                request=request,
                prompt_file=prompt_file,
            )
        except AgentRunError as error:
            raise NonRetryableError(error) from error

        env = os.environ.copy()
        env["ISSUE_FORGE_AGENT"] = self.agent
        env["ISSUE_FORGE_MODEL"] = request.model
        env["ISSUE_FORGE_OUTPUT_DIR"] = str(request.workdir)

        try:
            with (
                stdout_path.open("w", encoding="utf-8") as stdout_handle,
                stderr_path.open("w", encoding="utf-8") as stderr_handle,
            ):
                exit_code = _run_subprocess(
                    run_args=run_args,
                    env=env,
                    cwd=request.workdir,
                    timeout_seconds=request.timeout_seconds,
                    stdout_handle=stdout_handle,
                    stderr_handle=stderr_handle,
                    cancel_requested=request.cancel_requested,
                )
        except FileNotFoundError as error:
            raise NonRetryableError(
                AgentRunError(f"Agent command not found: {run_args[0]}", transient=False),
            ) from error
        except OSError as error:
            raise AgentRunError(f"Agent failed to start: {error}", transient=True) from error

        output_text = stdout_path.read_text("utf-8", errors="replace")
        if exit_code != 0:
            stderr_tail = stderr_path.read_text("utf-8", errors="replace")[-_STDERR_TAIL_CHARS:]
            raise AgentRunError(
                f"{self.agent} exited with code {exit_code}: {stderr_tail.strip()}",
                transient=False,
            )
        return AgentRunResult(output_text=output_text, exit_code=exit_code)


def build_run_args(
    *,
    command_template: str,
    request: AgentRunRequest,
    prompt_file: Path,
) -> list[str]:
    """Render the command template into an argv list."""

    stripped = command_template.strip()
    if not stripped:
        raise AgentRunError("Agent command template is empty.", transient=False)
    if "{prompt}" not in stripped and "{prompt_file}" not in stripped:
        raise AgentRunError(
            "Agent command template must include {prompt} or {prompt_file}.",
            transient=False,
        )

    try:
        rendered = stripped.format(
            model=shlex.quote(request.model),
            prompt=shlex.quote(request.prompt),
            prompt_file=shlex.quote(str(prompt_file)),
            workdir=shlex.quote(str(request.workdir)),
            output_format=shlex.quote(request.output_format),
            reasoning_effort=shlex.quote(request.reasoning_effort or ""),
        )
    except KeyError as error:
        raise AgentRunError(
            f"Unsupported command template placeholder: {error}",
            transient=False,
        ) from error

    argv = shlex.split(rendered)
    if not argv:
        raise AgentRunError("Agent command template rendered empty command.", transient=False)
    return argv


def _run_subprocess(  # noqa: PLR0913
    *,
    run_args: list[str],
    env: dict[str, str],
    cwd: Path,
    timeout_seconds: float,
    stdout_handle: IO[str],
    stderr_handle: IO[str],
    cancel_requested: Callable[[], bool] | None,
) -> int:
    process = subprocess.Popen(  # noqa: S603
        run_args,
        env=env,
        cwd=cwd,
        stdout=stdout_handle,
        stderr=stderr_handle,
        text=True,
    )
    start_monotonic = time.monotonic()

    while True:
        returncode = process.poll()
        if returncode is not None:
            return returncode

        if time.monotonic() - start_monotonic >= timeout_seconds:
            _terminate_process(process)
            raise AgentRunError(
                f"agent timed out after {timeout_seconds:g}s",
                transient=True,
            )

        if cancel_requested is not None and cancel_requested():
            _terminate_process(process)
            raise GenerationCancelledError("generation cancelled while agent was running")

        time.sleep(_POLL_INTERVAL_SECONDS)


def _terminate_process(process: subprocess.Popen[str]) -> None:
    try:
        process.terminate()
    except OSError:
        return
    try:
        process.wait(timeout=2)
    except subprocess.TimeoutExpired:
        try:
            process.kill()
        except OSError:
            return
        process.wait(timeout=2)
