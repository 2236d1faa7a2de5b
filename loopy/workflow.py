"""Workflow stage machine: brainstorm -> cluster -> shortlist -> decide -> next_action.

The evaluator reads unstructured persona turns and decides when the group has
produced enough material to move on. It never picks a decision on its own: a
stalled ``decide`` stage only narrows the shortlist.
"""

import logging
import re
from collections.abc import Iterable, Sequence
from dataclasses import replace

from loopy.models import STAGES, Turn, WorkflowState

logger = logging.getLogger(__name__)

MAX_CANDIDATES = 12
MAX_SHORTLIST = 3
BRAINSTORM_TARGET = 5
CLUSTER_TARGET = 4
CLUSTER_MAX_CYCLES = 2
EXTRACTION_WINDOW = 50
AGREEMENT_WINDOW = 40
MIN_SENTENCE_LEN = 25
MAX_SENTENCE_LEN = 180

STAGE_OBJECTIVES = {
    "brainstorm": "Generate many distinct, concrete options. List them as bullets.",
    "cluster": "Group similar options and drop duplicates or weak ones.",
    "shortlist": "Compare the shortlisted options on effort, risk and payoff.",
    "decide": "Pick one shortlisted option. State clearly which one you vote for.",
    "next_action": "Agree on the single concrete next action, who does it and when.",
}

_LIST_LINE_RE = re.compile(r"^\s*(?:[-*•+]|\d{1,2}[.)])\s+(.+?)\s*$")
_SENTENCE_SPLIT_RE = re.compile(r"(?<=[.!?])\s+|\n+")

META_PREFIXES = (
    "i agree", "i think", "i like", "i love", "i vote", "i support",
    "agreed", "great idea", "good idea", "good point", "great point",
    "sounds good", "thanks", "thank you", "building on", "to build on",
    "let's", "lets", "as mentioned", "as someone said", "yes", "absolutely",
)

AGREEMENT_PATTERNS = (
    r"\bi agree\b",
    r"\bi vote for\b",
    r"\bmy vote (?:is|goes to)\b",
    r"\bwe should (?:choose|pick|go with)\b",
    r"\bi pick\b",
    r"\bi choose\b",
    r"\bi support\b",
    r"\blet'?s go with\b",
)
_AGREEMENT_RE = re.compile("|".join(AGREEMENT_PATTERNS), re.IGNORECASE)


def normalize_option(text: str) -> str:
    """Lower-case, strip punctuation and collapse whitespace."""
    text = re.sub(r"[^\w\s]", " ", text.lower())
    return re.sub(r"\s+", " ", text).strip()


def dedupe_options(options: Iterable[str], limit: int) -> list[str]:
    """Keep the first spelling of each normalized option, up to limit."""
    seen: set[str] = set()
    result: list[str] = []
    for option in options:
        key = normalize_option(option)
        if not key or key in seen:
            continue
        seen.add(key)
        result.append(option)
        if len(result) >= limit:
            break
    return result


def persona_turns(turns: Sequence[Turn], persona_ids: Iterable[str]) -> list[Turn]:
    ids = set(persona_ids)
    return [t for t in turns if t.speaker in ids]


def _clean_option(text: str) -> str:
    text = text.replace("**", "").replace("__", "").strip()
    return text.rstrip(" .;:,").strip()


def _is_meta(sentence: str) -> bool:
    return sentence.lower().startswith(META_PREFIXES)


def extract_options(text: str) -> list[str]:
    """Pull candidate options out of one turn.

    List items win; plain declarative sentences are only used when the turn has
    no list markup at all.
    """
    items = [_clean_option(m.group(1)) for m in map(_LIST_LINE_RE.match, text.splitlines()) if m]
    items = [i for i in items if len(normalize_option(i)) >= 3]
    if items:
        return [i[:MAX_SENTENCE_LEN] for i in items]

    sentences = []
    for raw in _SENTENCE_SPLIT_RE.split(text):
        sentence = raw.strip()
        if not sentence.endswith("."):
            continue
        if not MIN_SENTENCE_LEN <= len(sentence) <= MAX_SENTENCE_LEN:
            continue
        if _is_meta(sentence):
            continue
        sentences.append(_clean_option(sentence))
    return sentences


def collect_candidates(
    existing: Sequence[str],
    turns: Sequence[Turn],
    persona_ids: Iterable[str],
) -> list[str]:
    recent = persona_turns(turns, persona_ids)[-EXTRACTION_WINDOW:]
    fresh = [option for turn in recent for option in extract_options(turn.content)]
    return dedupe_options([*existing, *fresh], MAX_CANDIDATES)


def has_agreement(text: str) -> bool:
    return bool(_AGREEMENT_RE.search(text))


def count_supporters(
    options: Sequence[str],
    turns: Sequence[Turn],
    persona_ids: Iterable[str],
) -> dict[str, int]:
    """Count distinct speakers that mention an option alongside an agreement phrase."""
    recent = persona_turns(turns, persona_ids)[-AGREEMENT_WINDOW:]
    supporters: dict[str, set[str]] = {option: set() for option in options}
    for turn in recent:
        if not has_agreement(turn.content):
            continue
        body = f" {normalize_option(turn.content)} "
        for option in options:
            key = normalize_option(option)
            if key and f" {key} " in body:
                supporters[option].add(turn.speaker)
    return {option: len(speakers) for option, speakers in supporters.items()}


def _rank(options: Sequence[str], counts: dict[str, int]) -> list[str]:
    # sorted() is stable, so ties keep their original order
    return sorted(options, key=lambda o: -counts.get(o, 0))


def _transition(state: WorkflowState, stage: str, reason: str, **changes) -> WorkflowState:
    logger.info("Workflow %s -> %s: %s", state.stage, stage, reason)
    return replace(
        state,
        stage=stage,
        cycles_in_stage=0,
        last_transition_reason=reason,
        **changes,
    )


def evaluate(
    state: WorkflowState,
    turns: Sequence[Turn],
    persona_ids: Iterable[str],
    min_supporters: int = 2,
) -> WorkflowState:
    """Compute the next workflow state. At most one stage transition per call."""
    persona_ids = list(persona_ids)
    stage = state.stage

    if stage == "brainstorm":
        pool = collect_candidates(state.candidate_options, turns, persona_ids)
        if len(pool) >= BRAINSTORM_TARGET:
            return _transition(
                state, "cluster",
                f"Collected {len(pool)} distinct options.",
                candidate_options=pool,
            )
        return replace(state, candidate_options=pool)

    if stage == "cluster":
        pool = collect_candidates(state.candidate_options, turns, persona_ids)
        if len(pool) >= CLUSTER_TARGET or state.cycles_in_stage >= CLUSTER_MAX_CYCLES:
            shortlist = pool[:MAX_SHORTLIST]
            if len(shortlist) >= 2:
                return _transition(
                    state, "shortlist",
                    f"Shortlisted the first {len(shortlist)} of {len(pool)} options.",
                    candidate_options=pool,
                    shortlist_options=shortlist,
                )
        return replace(state, candidate_options=pool)

    if stage == "shortlist":
        if len(state.shortlist_options) >= 2 and state.cycles_in_stage >= 1:
            return _transition(state, "decide", "Shortlist discussed; time to vote.")
        return state

    if stage == "decide":
        counts = count_supporters(state.shortlist_options, turns, persona_ids)
        ranked = _rank(state.shortlist_options, counts)
        if ranked and counts[ranked[0]] >= min_supporters:
            winner = ranked[0]
            return _transition(
                state, "next_action",
                f"'{winner}' backed by {counts[winner]} personas.",
                locked_decision=winner,
            )
        if state.cycles_in_stage >= 1:
            return _force_narrowing(state, ranked, turns, persona_ids)
        return state

    # next_action is terminal
    return state


def _force_narrowing(
    state: WorkflowState,
    ranked_shortlist: list[str],
    turns: Sequence[Turn],
    persona_ids: list[str],
) -> WorkflowState:
    if len(ranked_shortlist) >= 2:
        narrowed = ranked_shortlist[:2]
    else:
        counts = count_supporters(state.candidate_options, turns, persona_ids)
        narrowed = _rank(state.candidate_options, counts)[:2]
    reason = "No option reached enough support; narrowed to " + (
        " vs ".join(f"'{o}'" for o in narrowed) if narrowed else "nothing"
    ) + "."
    logger.info("Workflow decide stalled: %s", reason)
    return replace(
        state,
        shortlist_options=narrowed,
        cycles_in_stage=0,
        last_transition_reason=reason,
    )


def record_completed_cycle(
    state: WorkflowState,
    turns: Sequence[Turn],
    persona_ids: Iterable[str],
    cycle_window: int = 1,
    min_supporters: int = 2,
) -> tuple[WorkflowState, bool]:
    """Cycle bookkeeping. Returns (new_state, announce).

    announce is True when the stage changed or a stalled decision narrowed the
    shortlist.
    """
    state = replace(
        state,
        cycles_in_stage=state.cycles_in_stage + 1,
        cycles_since_evaluation=state.cycles_since_evaluation + 1,
    )
    if state.cycles_since_evaluation < max(cycle_window, 1):
        return state, False

    state = replace(state, cycles_since_evaluation=0)
    new_state = evaluate(state, turns, persona_ids, min_supporters=min_supporters)
    announce = new_state.stage != state.stage or (
        state.stage == "decide" and new_state.shortlist_options != state.shortlist_options
    )
    return new_state, announce


def format_announcement(state: WorkflowState) -> str:
    """Render the visible announcement for a state. Pure and deterministic."""
    position = STAGES.index(state.stage) + 1 if state.stage in STAGES else 0
    lines = [
        f"Stage: {state.stage.upper()} ({position}/{len(STAGES)})",
        f"Objective: {STAGE_OBJECTIVES.get(state.stage, '')}",
    ]
    if state.shortlist_options:
        lines.append("Shortlist:")
        lines.extend(f"{i}. {option}" for i, option in enumerate(state.shortlist_options, start=1))
    else:
        lines.append("Shortlist: (none yet)")
    if state.locked_decision:
        lines.append(f"Locked decision: {state.locked_decision}")
    if state.last_transition_reason:
        lines.append(f"Reason: {state.last_transition_reason}")
    return "\n".join(lines)


def stage_directive(state: WorkflowState) -> str:
    """Instruction block injected into every persona's system prompt."""
    lines = [
        f"Current stage: {state.stage}.",
        f"Objective: {STAGE_OBJECTIVES.get(state.stage, '')}",
    ]
    if state.stage in ("brainstorm", "cluster") and state.candidate_options:
        lines.append("Options so far: " + "; ".join(state.candidate_options))
    if state.shortlist_options:
        lines.append("Shortlist: " + "; ".join(state.shortlist_options))
    if state.stage == "decide":
        lines.append('Say "I vote for <option>" using the exact shortlist wording.')
    if state.locked_decision:
        lines.append(f"Locked decision: {state.locked_decision}. Do not reopen it.")
    return "\n".join(lines)


def _coerce_count(value) -> int:
    try:
        return max(int(value), 0)
    except (TypeError, ValueError):
        return 0


def _coerce_stage(value) -> str:
    if isinstance(value, str) and value in STAGES:
        return value
    if isinstance(value, int) and not isinstance(value, bool):
        return STAGES[min(max(value, 0), len(STAGES) - 1)]
    if isinstance(value, str):
        cleaned = value.strip().lower().replace("-", "_").replace(" ", "_")
        if cleaned in STAGES:
            return cleaned
    return STAGES[0]


def _coerce_options(value, limit: int) -> list[str]:
    if not isinstance(value, list):
        return []
    return dedupe_options((str(v) for v in value if isinstance(v, (str, int, float))), limit)


def state_from_dict(raw) -> WorkflowState:
    """Build a WorkflowState from loaded JSON, coercing bad fields to defaults."""
    if not isinstance(raw, dict):
        return WorkflowState()
    locked = raw.get("locked_decision")
    reason = raw.get("last_transition_reason")
    return WorkflowState(
        stage=_coerce_stage(raw.get("stage")),
        cycles_in_stage=_coerce_count(raw.get("cycles_in_stage")),
        cycles_since_evaluation=_coerce_count(raw.get("cycles_since_evaluation")),
        candidate_options=_coerce_options(raw.get("candidate_options"), MAX_CANDIDATES),
        shortlist_options=_coerce_options(raw.get("shortlist_options"), MAX_SHORTLIST),
        locked_decision=str(locked) if locked else None,
        last_transition_reason=str(reason) if reason else "",
    )


def state_to_dict(state: WorkflowState) -> dict:
    return {
        "stage": state.stage,
        "cycles_in_stage": state.cycles_in_stage,
        "cycles_since_evaluation": state.cycles_since_evaluation,
        "candidate_options": list(state.candidate_options),
        "shortlist_options": list(state.shortlist_options),
        "locked_decision": state.locked_decision,
        "last_transition_reason": state.last_transition_reason,
    }
