"""Retry and circuit-breaker wrapper around the external generation agent.

The retry loop is split in two. ``next_step`` is a pure function deciding what
happens after a failed attempt (retry after a delay, or give up). The
``ResilientExecutor`` owns the I/O: breaker checks, agent invocation, metrics
and the cancellable sleep between attempts.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, replace
from enum import Enum

from issue_forge.generation.backend.base import AgentBackend, AgentRunRequest, AgentRunResult
from issue_forge.generation.circuit_breaker import CircuitBreaker
from issue_forge.generation.context import CallContext, GenerationCancelledError, wait_or_cancel
from issue_forge.generation.failure_classifier import (
    ErrorClass,
    ErrorClassification,
    NonRetryableError,
    classify_error,
)
from issue_forge.generation.metrics import ExecutionMetrics

logger = logging.getLogger(__name__)

Sleeper = Callable[[float, CallContext | None], None]


class CircuitOpenError(RuntimeError):
    """The breaker is open; the agent was not invoked."""

    def __init__(self) -> None:
        super().__init__("circuit breaker is open: generation agent unavailable")


class RetryExhaustedError(RuntimeError):
    """Every allowed attempt failed with a transient error."""

    def __init__(self, attempts: int, last_error: BaseException) -> None:
        super().__init__(f"retry exhausted after {attempts} attempts: {last_error}")
        self.attempts = attempts
        self.last_error = last_error


@dataclass(frozen=True, slots=True)
class ResilienceConfig:
    """Retry and breaker policy for agent calls."""

    enabled: bool = True
    max_retries: int = 3
    initial_backoff_seconds: float = 1.0
    max_backoff_seconds: float = 30.0
    backoff_multiplier: float = 2.0
    failure_threshold: int = 3
    reset_timeout_seconds: float = 30.0

    @property
    def max_attempts(self) -> int:
        return max(0, self.max_retries) + 1


class RetryAction(str, Enum):
    RETRY = "retry"
    GIVE_UP = "give_up"


@dataclass(frozen=True, slots=True)
class RetryState:
    """Position in the retry schedule."""

    attempt: int = 1
    next_delay_seconds: float = 0.0
    last_error: BaseException | None = None


@dataclass(frozen=True, slots=True)
class RetryDecision:
    action: RetryAction
    delay_seconds: float
    state: RetryState


def initial_state(config: ResilienceConfig) -> RetryState:
    return RetryState(attempt=1, next_delay_seconds=max(0.0, config.initial_backoff_seconds))


def next_step(
    config: ResilienceConfig,
    state: RetryState,
    error: BaseException,
    classification: ErrorClassification,
) -> RetryDecision:
    """Decide what follows a failed attempt. Pure: no clock, no sleep, no I/O."""

    failed = replace(state, last_error=error)
    if classification.error_class != ErrorClass.TRANSIENT:
        return RetryDecision(action=RetryAction.GIVE_UP, delay_seconds=0.0, state=failed)
    if state.attempt >= config.max_attempts:
        return RetryDecision(action=RetryAction.GIVE_UP, delay_seconds=0.0, state=failed)

    delay = min(state.next_delay_seconds, max(0.0, config.max_backoff_seconds))
    grown = min(
        delay * max(1.0, config.backoff_multiplier),
        max(0.0, config.max_backoff_seconds),
    )
    return RetryDecision(
        action=RetryAction.RETRY,
        delay_seconds=delay,
        state=RetryState(attempt=state.attempt + 1, next_delay_seconds=grown, last_error=error),
    )


def backoff_schedule(config: ResilienceConfig) -> list[float]:
    """Delays slept between attempts when every attempt fails transiently."""

    delays: list[float] = []
    state = initial_state(config)
    sample_error = RuntimeError("timeout")
    classification = classify_error(sample_error)
    while True:
        decision = next_step(config, state, sample_error, classification)
        if decision.action == RetryAction.GIVE_UP:
            return delays
        delays.append(decision.delay_seconds)
        state = decision.state


class ResilientExecutor:
    """Runs one agent call with retry, backoff, and a circuit breaker."""

    def __init__(  # noqa: PLR0913
        self,
        backend: AgentBackend,
        *,
        config: ResilienceConfig | None = None,
        breaker: CircuitBreaker | None = None,
        metrics: ExecutionMetrics | None = None,
        sleeper: Sleeper = wait_or_cancel,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.backend = backend
        self.config = config or ResilienceConfig()
        self.breaker = breaker or CircuitBreaker(
            failure_threshold=self.config.failure_threshold,
            reset_timeout_seconds=self.config.reset_timeout_seconds,
        )
        self.metrics = metrics or ExecutionMetrics()
        self._sleep = sleeper
        self._clock = clock

    def execute(
        self,
        request: AgentRunRequest,
        context: CallContext | None = None,
    ) -> AgentRunResult:
        if context is not None and request.cancel_requested is None:
            request.cancel_requested = lambda: context.cancelled or context.expired()

        if not self.config.enabled:
            return self.backend.run(request)

        state = initial_state(self.config)
        while True:
            if context is not None:
                context.check()
            if not self.breaker.allow_request():
                self.metrics.record_circuit_rejection()
                raise CircuitOpenError

            try:
                result = self._invoke(request)
            except GenerationCancelledError:
                raise
            except Exception as error:  # noqa: BLE001
                classification = classify_error(error)
                decision = next_step(self.config, state, error, classification)
                if decision.action == RetryAction.GIVE_UP:
                    self.breaker.record_failure()
                    if isinstance(error, NonRetryableError):
                        raise error.unwrap() from None
                    if classification.error_class == ErrorClass.TRANSIENT:
                        raise RetryExhaustedError(state.attempt, error) from error
                    raise

                self.metrics.record_retry()
                logger.info(
                    "Retrying agent call: attempt=%d/%d delay=%.2fs rule=%s error=%s",
                    decision.state.attempt,
                    self.config.max_attempts,
                    decision.delay_seconds,
                    classification.matched_rule,
                    error,
                )
                self._sleep(decision.delay_seconds, context)
                state = decision.state
                continue

            self.breaker.record_success()
            return result

    def is_circuit_open(self) -> bool:
        return self.breaker.is_open()

    def reset_circuit_breaker(self) -> None:
        self.breaker.reset()

    def _invoke(self, request: AgentRunRequest) -> AgentRunResult:
        started = self._clock()
        try:
            result = self.backend.run(request)
        except BaseException:
            self.metrics.record_call(latency_seconds=self._clock() - started, succeeded=False)
            raise
        self.metrics.record_call(latency_seconds=self._clock() - started, succeeded=True)
        return result
