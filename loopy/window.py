"""Conversation window: append accepted turns and keep a bounded number of persona turns."""

from collections.abc import Iterable, Sequence

from loopy.models import Turn


def append(turns: Sequence[Turn], turn: Turn) -> list[Turn]:
    return [*turns, turn]


def trim(turns: Sequence[Turn], persona_ids: Iterable[str], max_persona_turns: int) -> list[Turn]:
    """Keep the newest turns holding at most max_persona_turns persona entries.

    Seed, narrator and workflow turns inside the kept span survive; everything
    before the cut is dropped.
    """
    ids = set(persona_ids)
    limit = max(max_persona_turns, 0)
    count = 0
    for index in range(len(turns) - 1, -1, -1):
        if turns[index].speaker not in ids:
            continue
        count += 1
        if count > limit:
            return list(turns[index + 1:])
    return list(turns)


def retention_limit(retained_cycles: int, persona_count: int) -> int:
    return retained_cycles * persona_count
