"""Detect generated text that fabricates a multi-speaker transcript."""

import re
from collections.abc import Iterable

TURN_SEPARATOR = "---"

# Fuzzy matching tolerance against persona names
MAX_NAME_DISTANCE = 2
_MIN_FUZZY_LENGTH = 3

# Everyday labels a single speaker legitimately writes ("Plan: ...")
COMMON_LABELS = frozenset({
    "note", "notes", "plan", "summary", "action", "actions", "todo", "next",
    "step", "steps", "example", "update", "question", "answer", "goal", "goals",
    "idea", "ideas", "option", "options", "decision", "reason", "result",
    "status", "context", "proposal", "pros", "cons", "risk", "risks", "ok",
    "yes", "no", "edit", "tip", "warning", "owner", "deadline", "task", "vote",
})

_BRACKET_LABEL_RE = re.compile(r"^\s*\[[^\]\n]+\]:\s*$")
_BOLD_LABEL_RE = re.compile(r"^\s*\*\*[^*\n]+?(?::\*\*|\*\*\s*:)")
_PLAIN_LABEL_RE = re.compile(r"^\s*(?:[-*•]\s+)?([A-Za-z][A-Za-z .'_-]{0,40}?):(?:\s|$)")


def _letters(text: str) -> str:
    return re.sub(r"[^a-z]", "", text.lower())


def levenshtein(a: str, b: str) -> int:
    """Classic edit distance (insert, delete, substitute all cost 1)."""
    if len(a) < len(b):
        a, b = b, a
    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i]
        for j, cb in enumerate(b, start=1):
            current.append(min(
                previous[j] + 1,
                current[j - 1] + 1,
                previous[j - 1] + (ca != cb),
            ))
        previous = current
    return previous[-1]


def label_matches_speaker(label: str, known_ids: Iterable[str]) -> bool:
    """True when a line label names (or nearly names) a known speaker."""
    cleaned = _letters(label)
    if not cleaned:
        return False
    names = {_letters(n) for n in known_ids} - {""}
    if cleaned in names:
        return True
    if cleaned in COMMON_LABELS or len(cleaned) < _MIN_FUZZY_LENGTH:
        return False
    return any(
        abs(len(cleaned) - len(name)) <= MAX_NAME_DISTANCE
        and levenshtein(cleaned, name) <= MAX_NAME_DISTANCE
        for name in names
    )


def is_contaminated(text: str, known_ids: Iterable[str]) -> bool:
    """Return True if text looks like a scripted conversation, not one voice."""
    known = list(known_ids)
    for line in text.splitlines():
        if line.strip() == TURN_SEPARATOR:
            return True
        if _BRACKET_LABEL_RE.match(line):
            return True
        if _BOLD_LABEL_RE.match(line):
            return True
        match = _PLAIN_LABEL_RE.match(line)
        if match and label_matches_speaker(match.group(1), known):
            return True
    return False
