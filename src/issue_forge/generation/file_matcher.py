"""Tolerant matching of agent-written file names against expected names."""

from __future__ import annotations

import re
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from pathlib import PurePath

_LEADING_NUMBER = re.compile(r"^(\d+)")
_LEADING_NUMBER_AND_DASHES = re.compile(r"^[\d-]+")
_SLUG_INVALID = re.compile(r"[^a-z0-9\-]")
_SLUG_DASHES = re.compile(r"-+")

NameMatcher = Callable[[str, str], bool]


def base_name(filename: str) -> str:
    """File name without directory or extension, lowercased."""

    return PurePath(filename).stem.lower()


def extract_leading_number(name: str) -> str:
    match = _LEADING_NUMBER.match(name)
    return match.group(1) if match else ""


def match_exact(actual: str, expected: str) -> bool:
    return actual == expected


def match_containment(actual: str, expected: str) -> bool:
    if not actual or not expected:
        return False
    return actual in expected or expected in actual


def match_numeric_prefix(actual: str, expected: str) -> bool:
    """Same leading number (ignoring zero padding) and same remainder."""

    actual_number = extract_leading_number(actual)
    expected_number = extract_leading_number(expected)
    if not actual_number or not expected_number:
        return False
    if int(actual_number) != int(expected_number):
        return False
    return _LEADING_NUMBER_AND_DASHES.sub("", actual) == _LEADING_NUMBER_AND_DASHES.sub(
        "",
        expected,
    )


FUZZY_MATCHERS: tuple[tuple[str, NameMatcher], ...] = (
    ("exact", match_exact),
    ("containment", match_containment),
    ("numeric_prefix", match_numeric_prefix),
)


def fuzzy_match_rule(actual: str, expected: str) -> str | None:
    """Name of the first matcher accepting the pair, or None."""

    actual_base = base_name(actual)
    expected_base = base_name(expected)
    for rule, matcher in FUZZY_MATCHERS:
        if matcher(actual_base, expected_base):
            return rule
    return None


def fuzzy_match(actual: str, expected: str) -> bool:
    return fuzzy_match_rule(actual, expected) is not None


def normalize_slug(name: str) -> str:
    slug = name.lower().replace(" ", "-").replace("_", "-")
    slug = _SLUG_INVALID.sub("", slug)
    slug = _SLUG_DASHES.sub("-", slug)
    return slug.strip("-")


@dataclass(frozen=True, slots=True)
class MatchTarget:
    """One task a generated file may belong to."""

    task_id: str
    slug: str


@dataclass(frozen=True, slots=True)
class MatchResult:
    matched: bool
    is_main: bool = False
    task_id: str | None = None
    confidence: int = 0


_MAIN_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"^0*-?consolidated"),
    re.compile(r"^main-?issue"),
    re.compile(r"^summary"),
    re.compile(r"^overview"),
    re.compile(r"^00-"),
)
_TASK_NUMBER_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"^(\d+)-"),
    re.compile(r"task-(\d+)"),
    re.compile(r"issue-(\d+)"),
    re.compile(r"-(\d+)\.md$"),
    re.compile(r"(\d+)\.md$"),
)


class FileMatcher:
    """Assigns generated file names to the main issue or to a task.

    Task patterns are tried in decreasing confidence; a bare task number is the
    last resort.
    """

    def __init__(self, targets: Sequence[MatchTarget]) -> None:
        self.targets = list(targets)
        self._task_patterns: dict[str, list[re.Pattern[str]]] = {
            target.task_id: _task_patterns(target) for target in self.targets
        }

    def match_file(self, filename: str) -> MatchResult:
        name = filename.lower()
        if any(pattern.search(name) for pattern in _MAIN_PATTERNS):
            return MatchResult(matched=True, is_main=True, confidence=100)

        best = MatchResult(matched=False)
        for target in self.targets:
            for index, pattern in enumerate(self._task_patterns[target.task_id]):
                if not pattern.search(name):
                    continue
                confidence = 100 - index * 10
                if confidence > best.confidence:
                    best = MatchResult(
                        matched=True,
                        task_id=target.task_id,
                        confidence=confidence,
                    )
        if best.matched:
            return best

        number = _extract_task_number(name)
        if number > 0:
            task_id = f"task-{number}"
            if any(target.task_id == task_id for target in self.targets):
                return MatchResult(matched=True, task_id=task_id, confidence=50)
        return MatchResult(matched=False)

    def match_all(self, filenames: Sequence[str]) -> tuple[str | None, dict[str, str], list[str]]:
        """Return (main file, {task_id: file}, unmatched) keeping the most confident match."""

        main: str | None = None
        main_confidence = 0
        tasks: dict[str, str] = {}
        task_confidence: dict[str, int] = {}
        unmatched: list[str] = []

        for filename in filenames:
            result = self.match_file(filename)
            if not result.matched:
                unmatched.append(filename)
            elif result.is_main:
                if main is None or result.confidence > main_confidence:
                    main = filename
                    main_confidence = result.confidence
            elif result.task_id is not None and result.confidence > task_confidence.get(
                result.task_id,
                0,
            ):
                tasks[result.task_id] = filename
                task_confidence[result.task_id] = result.confidence
        return main, tasks, unmatched

    def missing_tasks(self, matched: dict[str, str]) -> list[str]:
        return [target.task_id for target in self.targets if target.task_id not in matched]


def _task_patterns(target: MatchTarget) -> list[re.Pattern[str]]:
    slug = re.escape(target.slug.lower())
    task_id = re.escape(target.task_id.lower())
    return [
        re.compile(rf"^\d+-.*{slug}"),
        re.compile(rf"^issue-\d+-.*{slug}"),
        re.compile(rf"^task-\d+-.*{slug}"),
        re.compile(rf"^{task_id}-"),
        re.compile(rf"-{slug}\.md$"),
        re.compile(rf"^{slug}\.md$"),
    ]


def _extract_task_number(filename: str) -> int:
    for pattern in _TASK_NUMBER_PATTERNS:
        match = pattern.search(filename)
        if match is None:
            continue
        number = int(match.group(1))
        if number > 0:
            return number
    return 0
