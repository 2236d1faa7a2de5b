"""Conversation health report over the human-readable log.

Flags loops and stagnation: repeated turns, stock phrases, talk about planning
instead of planning, shrinking vocabulary, and a conversation that never uses
its tools.
"""

import re
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from loopy.output import TOOL_NOTICE_PREFIX, TURN_SEP

_LABEL_LINE_RE = re.compile(r"^\*\*([^*\n]+)\*\*:[ \t]*\n?", re.MULTILINE)

STOCK_PHRASES = (
    "let's finalize",
    "looking forward to seeing",
    "sounds good",
    "allocate resources",
    "reminder email",
    "next week",
    "user testing and feedback",
)
META_PLANNING_PHRASES = (
    "finalize the plan",
    "discuss the plan",
    "confirm that we have a plan",
    "let's finalize that plan",
)
CRITICAL_TYPES = frozenset({"PHRASE_LOOP", "META_PLANNING", "LOW_PROGRESSION"})


@dataclass
class LoggedTurn:
    index: int
    speaker: str
    text: str


@dataclass
class HealthIssue:
    type: str
    message: str

    @property
    def critical(self) -> bool:
        return self.type in CRITICAL_TYPES


def parse_log(content: str) -> tuple[list[LoggedTurn], list[str]]:
    """Split the log into (turns, notices).

    Notices carry no turn separator, so they sit in front of the next turn's
    label, or alone at the end of the log.
    """
    turns: list[LoggedTurn] = []
    notices: list[str] = []
    for chunk in content.split(TURN_SEP):
        if not chunk.strip():
            continue
        label = _LABEL_LINE_RE.search(chunk)
        head = chunk[:label.start()] if label else chunk
        notices.extend(line.strip() for line in head.splitlines() if line.strip())
        if not label:
            continue
        text = chunk[label.end():].strip()
        turns.append(LoggedTurn(index=len(turns), speaker=label.group(1), text=text))
    return turns, notices


def detect_repetition(turns: Sequence[LoggedTurn], window: int = 10, threshold: float = 0.7) -> list[HealthIssue]:
    issues = []
    for i in range(window, len(turns)):
        texts = [t.text.lower() for t in turns[i - window:i]]
        ratio = len(set(texts)) / len(texts)
        if ratio < threshold:
            issues.append(HealthIssue(
                "REPETITION",
                f"Low diversity in turns {i - window}-{i}: {ratio:.0%} unique",
            ))
    return issues


def detect_phrase_loops(turns: Sequence[LoggedTurn], min_occurrences: int = 5) -> list[HealthIssue]:
    issues = []
    for phrase in STOCK_PHRASES:
        hits = [t.index for t in turns if phrase in t.text.lower()]
        if len(hits) >= min_occurrences:
            issues.append(HealthIssue(
                "PHRASE_LOOP",
                f'Phrase "{phrase}" appears {len(hits)} times (starts at turn {hits[0]})',
            ))
    return issues


def check_tool_usage(turns: Sequence[LoggedTurn], notices: Sequence[str] = ()) -> list[HealthIssue]:
    # Dispatched calls are logged as notices; raw "[TOOL_CALLS]" leaks into turn text
    if any(n.startswith(TOOL_NOTICE_PREFIX) for n in notices) or any("[TOOL_CALLS]" in t.text for t in turns):
        return []
    return [HealthIssue("NO_TOOLS", "No tool calls found in entire conversation")]


def detect_meta_planning(turns: Sequence[LoggedTurn], threshold: int = 10) -> list[HealthIssue]:
    hits = [t.index for t in turns if any(p in t.text.lower() for p in META_PLANNING_PHRASES)]
    if len(hits) <= threshold:
        return []
    return [HealthIssue(
        "META_PLANNING",
        f'Excessive meta-planning detected: {len(hits)} turns about "planning" (threshold: {threshold})',
    )]


def check_progression(turns: Sequence[LoggedTurn], window: int = 20, threshold: float = 0.3) -> list[HealthIssue]:
    issues = []
    for i in range(window, len(turns) + 1, window):
        words = [w for t in turns[i - window:i] for w in t.text.lower().split() if len(w) > 4]
        if not words:
            continue
        ratio = len(set(words)) / len(words)
        if ratio < threshold:
            issues.append(HealthIssue(
                "LOW_PROGRESSION",
                f"Low vocabulary diversity in turns {i - window}-{i}: {ratio:.0%} unique words",
            ))
    return issues


def analyze(turns: Sequence[LoggedTurn], notices: Sequence[str] = ()) -> list[HealthIssue]:
    return [
        *detect_repetition(turns),
        *detect_phrase_loops(turns),
        *check_tool_usage(turns, notices),
        *detect_meta_planning(turns),
        *check_progression(turns),
    ]


def analyze_log(path: Path) -> tuple[int, list[HealthIssue]]:
    """Return (turn_count, issues) for the log at path."""
    turns, notices = parse_log(path.read_text(encoding="utf-8"))
    return len(turns), analyze(turns, notices)
