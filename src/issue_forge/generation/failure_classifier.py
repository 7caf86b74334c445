"""Deterministic error classification for the resilient executor retry policy."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

ERROR_CLASSIFIER_VERSION = 1

_RATE_LIMIT_PATTERNS: tuple[str, ...] = (
    "rate limit",
    "too many requests",
    "429",
    "quota exceeded",
)
_TIMEOUT_PATTERNS: tuple[str, ...] = (
    "timeout",
    "timed out",
    "deadline exceeded",
    "context deadline",
)
_NETWORK_PATTERNS: tuple[str, ...] = (
    "connection refused",
    "connection reset",
    "network unreachable",
    "no route to host",
    "temporary failure",
    "i/o timeout",
)
_SERVER_ERROR_PATTERNS: tuple[str, ...] = (
    "500",
    "502",
    "503",
    "504",
    "internal server error",
    "bad gateway",
    "service unavailable",
    "gateway timeout",
)
_AGENT_TRANSIENT_PATTERNS: tuple[str, ...] = (
    "overloaded",
    "capacity",
    "try again",
)

_TRANSIENT_RULES: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("rate_limit", _RATE_LIMIT_PATTERNS),
    ("timeout", _TIMEOUT_PATTERNS),
    ("network", _NETWORK_PATTERNS),
    ("server_error", _SERVER_ERROR_PATTERNS),
    ("agent_transient", _AGENT_TRANSIENT_PATTERNS),
)


class ErrorClass(str, Enum):
    """Retry classes for a failed generation call."""

    TRANSIENT = "transient"
    PERMANENT = "permanent"
    FORCED_PERMANENT = "forced_permanent"


class NonRetryableError(Exception):
    """Wrap an error so the executor never retries it, whatever its message says."""

    def __init__(self, error: BaseException) -> None:
        super().__init__(str(error))
        self.error = error
        self.__cause__ = error

    def unwrap(self) -> BaseException:
        return self.error


@dataclass(frozen=True, slots=True)
class ErrorClassification:
    """Normalized classification result."""

    error_class: ErrorClass
    matched_rule: str
    matched_pattern: str | None

    @property
    def retryable(self) -> bool:
        return self.error_class == ErrorClass.TRANSIENT

    def to_details(self) -> dict[str, object]:
        return {
            "classifier_version": ERROR_CLASSIFIER_VERSION,
            "error_class": self.error_class.value,
            "matched_rule": self.matched_rule,
            "matched_pattern": self.matched_pattern,
        }


def classify_error(error: BaseException | None) -> ErrorClassification:
    """Classify an error by its rendered message. Has no side effects."""

    if error is None:
        return ErrorClassification(
            error_class=ErrorClass.PERMANENT,
            matched_rule="no_error",
            matched_pattern=None,
        )
    if isinstance(error, NonRetryableError):
        return ErrorClassification(
            error_class=ErrorClass.FORCED_PERMANENT,
            matched_rule="forced_non_retryable",
            matched_pattern=None,
        )

    haystack = _render(error)
    for rule, patterns in _TRANSIENT_RULES:
        pattern = _first_match(haystack, patterns)
        if pattern is not None:
            return ErrorClassification(
                error_class=ErrorClass.TRANSIENT,
                matched_rule=rule,
                matched_pattern=pattern,
            )

    return ErrorClassification(
        error_class=ErrorClass.PERMANENT,
        matched_rule="fallback_non_retryable",
        matched_pattern=None,
    )


def is_transient_error(error: BaseException | None) -> bool:
    return classify_error(error).retryable


def _render(error: BaseException) -> str:
    # Builtin timeouts often render as an empty string.
    message = str(error)
    if isinstance(error, TimeoutError) and not message:
        message = "timeout"
    return message.lower()


def _first_match(haystack: str, patterns: tuple[str, ...]) -> str | None:
    for pattern in patterns:
        if pattern in haystack:
            return pattern
    return None
