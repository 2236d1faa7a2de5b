"""Tests for loopy/workflow.py."""

from dataclasses import replace

import pytest

from loopy.models import STAGES, Turn, WorkflowState
from loopy.workflow import (
    MAX_CANDIDATES,
    count_supporters,
    evaluate,
    extract_options,
    format_announcement,
    normalize_option,
    record_completed_cycle,
    stage_directive,
    state_from_dict,
    state_to_dict,
)

IDS = ["Alice", "Bob", "Carol"]


def _bullets(*items: str) -> str:
    return "\n".join(f"- {i}" for i in items)


# --- option extraction ---

def test_normalize_option():
    assert normalize_option("  Ship the *Export* button!! ") == "ship the export button"


def test_extract_bullets_and_numbers():
    text = "Ideas:\n- Ship export\n* **Fix login**\n1. Add dark mode.\n2) Write docs"
    assert extract_options(text) == ["Ship export", "Fix login", "Add dark mode", "Write docs"]


def test_extract_falls_back_to_sentences():
    text = (
        "I agree with everything said so far. "
        "We could publish a public status page for outages. "
        "Short one. "
        "What about pricing?"
    )
    assert extract_options(text) == ["We could publish a public status page for outages"]


def test_extract_ignores_sentences_when_list_present():
    text = "We could publish a public status page for outages.\n- Fix login"
    assert extract_options(text) == ["Fix login"]


# --- brainstorm ---

def test_brainstorm_transitions_at_five_options():
    turns = [
        Turn("Alice", _bullets("Ship export", "Fix login", "Add dark mode")),
        Turn("Bob", _bullets("fix LOGIN!", "Write docs", "Status page")),
    ]
    new = evaluate(WorkflowState(), turns, IDS)
    assert new.stage == "cluster"
    assert new.last_transition_reason
    assert new.cycles_in_stage == 0
    assert len(new.candidate_options) == 5
    assert new.candidate_options[1] == "Fix login"  # first spelling kept


def test_brainstorm_stays_below_five():
    turns = [Turn("Alice", _bullets("Ship export", "Fix login"))]
    new = evaluate(WorkflowState(), turns, IDS)
    assert new.stage == "brainstorm"
    assert new.candidate_options == ["Ship export", "Fix login"]


def test_brainstorm_ignores_non_persona_turns():
    turns = [
        Turn("seed", _bullets("a1 option", "b2 option", "c3 option", "d4 option", "e5 option")),
        Turn("Workflow", _bullets("f6 option")),
    ]
    assert evaluate(WorkflowState(), turns, IDS).candidate_options == []


def test_candidate_pool_capped():
    turns = [Turn("Alice", _bullets(*[f"Option number {i}" for i in range(20)]))]
    new = evaluate(WorkflowState(), turns, IDS)
    assert len(new.candidate_options) == MAX_CANDIDATES
    assert new.candidate_options[0] == "Option number 0"


# --- cluster ---

def test_cluster_to_shortlist_with_four_options():
    state = WorkflowState(stage="cluster", candidate_options=["A one", "B two", "C three", "D four"])
    new = evaluate(state, [], IDS)
    assert new.stage == "shortlist"
    assert new.shortlist_options == ["A one", "B two", "C three"]


def test_cluster_waits_with_few_options():
    state = WorkflowState(stage="cluster", candidate_options=["A one", "B two"], cycles_in_stage=1)
    assert evaluate(state, [], IDS).stage == "cluster"


def test_cluster_forced_after_two_cycles():
    state = WorkflowState(stage="cluster", candidate_options=["A one", "B two"], cycles_in_stage=2)
    new = evaluate(state, [], IDS)
    assert new.stage == "shortlist"
    assert new.shortlist_options == ["A one", "B two"]


def test_cluster_needs_two_survivors():
    state = WorkflowState(stage="cluster", candidate_options=["A one"], cycles_in_stage=5)
    assert evaluate(state, [], IDS).stage == "cluster"


# --- shortlist ---

def test_shortlist_needs_a_cycle():
    state = WorkflowState(stage="shortlist", shortlist_options=["A one", "B two"])
    assert evaluate(state, [], IDS).stage == "shortlist"
    assert evaluate(replace(state, cycles_in_stage=1), [], IDS).stage == "decide"


# --- decide ---

def test_decide_locks_option_with_two_supporters():
    state = WorkflowState(stage="decide", shortlist_options=["Option A", "Option B"])
    turns = [
        Turn("Alice", "I agree, Option A is the safest bet."),
        Turn("Bob", "I agree with going for option a."),
        Turn("Alice", "I agree. Option A again."),
    ]
    new = evaluate(state, turns, IDS)
    assert new.locked_decision == "Option A"
    assert new.stage == "next_action"
    assert new.last_transition_reason


def test_decide_same_speaker_counts_once():
    state = WorkflowState(stage="decide", shortlist_options=["Option A", "Option B"])
    turns = [Turn("Alice", "I vote for Option A."), Turn("Alice", "I agree: Option A.")]
    new = evaluate(state, turns, IDS)
    assert new.stage == "decide"
    assert new.locked_decision is None


def test_decide_mention_without_agreement_does_not_count():
    state = WorkflowState(stage="decide", shortlist_options=["Option A", "Option B"])
    turns = [Turn("Alice", "Option A is risky."), Turn("Bob", "Option A costs more.")]
    counts = count_supporters(state.shortlist_options, turns, IDS)
    assert counts == {"Option A": 0, "Option B": 0}


def test_decide_stall_narrows_shortlist():
    state = WorkflowState(
        stage="decide",
        shortlist_options=["Option A", "Option B", "Option C"],
        cycles_in_stage=1,
    )
    turns = [Turn("Carol", "I vote for Option C.")]
    new = evaluate(state, turns, IDS)
    assert new.stage == "decide"
    assert new.locked_decision is None
    assert new.shortlist_options == ["Option C", "Option A"]
    assert new.cycles_in_stage == 0
    assert "narrowed" in new.last_transition_reason


def test_decide_stall_uses_candidates_when_shortlist_too_small():
    state = WorkflowState(
        stage="decide",
        candidate_options=["Alpha plan", "Beta plan", "Gamma plan"],
        shortlist_options=["Alpha plan"],
        cycles_in_stage=1,
    )
    new = evaluate(state, [], IDS)
    assert new.shortlist_options == ["Alpha plan", "Beta plan"]


def test_decide_waits_before_forcing():
    state = WorkflowState(stage="decide", shortlist_options=["Option A", "Option B", "Option C"])
    assert evaluate(state, [], IDS) == state


def test_next_action_is_terminal():
    state = WorkflowState(stage="next_action", locked_decision="Option A", cycles_in_stage=9)
    assert evaluate(state, [Turn("Alice", "- New idea here")], IDS) == state


# --- cycle bookkeeping ---

def test_record_cycle_counts_every_cycle():
    state, announce = record_completed_cycle(WorkflowState(), [], IDS, cycle_window=3)
    assert state.cycles_in_stage == 1
    assert state.cycles_since_evaluation == 1
    assert announce is False


def test_record_cycle_evaluates_after_window():
    turns = [Turn("Alice", _bullets("A one", "B two", "C three", "D four", "E five"))]
    state = WorkflowState(cycles_since_evaluation=1)
    new, announce = record_completed_cycle(state, turns, IDS, cycle_window=2)
    assert new.stage == "cluster"
    assert new.cycles_since_evaluation == 0
    assert announce is True


def test_record_cycle_no_announce_without_change():
    new, announce = record_completed_cycle(WorkflowState(), [], IDS, cycle_window=1)
    assert new.stage == "brainstorm"
    assert announce is False


def test_record_cycle_announces_narrowing():
    state = WorkflowState(stage="decide", shortlist_options=["Option A", "Option B", "Option C"])
    new, announce = record_completed_cycle(state, [], IDS)
    assert len(new.shortlist_options) == 2
    assert announce is True


# --- announcement and directive ---

def test_announcement_is_idempotent():
    state = WorkflowState(
        stage="decide",
        shortlist_options=["Option A", "Option B"],
        last_transition_reason="Shortlist discussed; time to vote.",
    )
    assert format_announcement(state) == format_announcement(state)
    assert format_announcement(state) == format_announcement(state_from_dict(state_to_dict(state)))


def test_announcement_contents():
    state = WorkflowState(
        stage="next_action",
        shortlist_options=["Option A", "Option B"],
        locked_decision="Option A",
        last_transition_reason="'Option A' backed by 2 personas.",
    )
    text = format_announcement(state)
    assert text.startswith("Stage: NEXT_ACTION (5/5)")
    assert "1. Option A" in text
    assert "Locked decision: Option A" in text
    assert "Reason: 'Option A' backed by 2 personas." in text


def test_directive_mentions_voting_in_decide():
    state = WorkflowState(stage="decide", shortlist_options=["Option A", "Option B"])
    directive = stage_directive(state)
    assert "decide" in directive
    assert "I vote for" in directive
    assert "Option A; Option B" in directive


# --- persistence coercion ---

@pytest.mark.parametrize("raw_stage, expected", [
    ("shortlist", "shortlist"),
    ("Next-Action", "next_action"),
    ("banana", "brainstorm"),
    (None, "brainstorm"),
    (17, "next_action"),
    (-3, "brainstorm"),
    (2, "shortlist"),
])
def test_state_from_dict_coerces_stage(raw_stage, expected):
    state = state_from_dict({"stage": raw_stage})
    assert state.stage == expected
    assert state.stage in STAGES


def test_state_from_dict_coerces_fields():
    state = state_from_dict({
        "stage": "cluster",
        "cycles_in_stage": -4,
        "cycles_since_evaluation": "x",
        "candidate_options": ["A one", "a ONE!", "B two", 3] + [f"opt {i}" for i in range(20)],
        "shortlist_options": ["A", "B", "C", "D"],
        "locked_decision": "",
    })
    assert state.cycles_in_stage == 0
    assert state.cycles_since_evaluation == 0
    assert state.candidate_options[:3] == ["A one", "B two", "3"]
    assert len(state.candidate_options) == MAX_CANDIDATES
    assert state.shortlist_options == ["A", "B", "C"]
    assert state.locked_decision is None


def test_state_from_dict_non_dict():
    assert state_from_dict(["not", "a", "dict"]) == WorkflowState()


def test_state_round_trip():
    state = WorkflowState(
        stage="decide",
        cycles_in_stage=2,
        candidate_options=["A one", "B two"],
        shortlist_options=["A one", "B two"],
        last_transition_reason="why",
    )
    assert state_from_dict(state_to_dict(state)) == state
