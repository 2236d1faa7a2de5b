"""Tests for loopy/health.py — conversation health analysis."""

from pathlib import Path

from loopy.health import (
    LoggedTurn,
    analyze,
    analyze_log,
    check_progression,
    check_tool_usage,
    detect_meta_planning,
    detect_phrase_loops,
    detect_repetition,
    parse_log,
)
from loopy.models import Turn
from loopy.output import TranscriptLog


def _turns(*texts: str) -> list[LoggedTurn]:
    return [LoggedTurn(index=i, speaker="Alice", text=t) for i, t in enumerate(texts)]


def test_parse_log_reads_speakers(tmp_path: Path):
    path = tmp_path / "conversation.log"
    log = TranscriptLog(path)
    log.append_turn(Turn("Alice", "Ship export."))
    log.append_turn(Turn("Bob", "Fix login.\nThen docs."))
    turns, notices = parse_log(path.read_text(encoding="utf-8"))
    assert [(t.index, t.speaker, t.text) for t in turns] == [
        (0, "Alice", "Ship export."),
        (1, "Bob", "Fix login.\nThen docs."),
    ]
    assert notices == []


def test_parse_log_separates_notices(tmp_path: Path):
    path = tmp_path / "conversation.log"
    log = TranscriptLog(path)
    log.append_turn(Turn("Alice", "Ship export."))
    log.append_notice("discarded Bob attempt 1: empty-response")
    log.append_tool_notice("Bob -> append_note: note added")
    log.append_turn(Turn("Bob", "Fix login."))
    log.append_notice("skipped Carol: all 3 attempts rejected")

    turns, notices = parse_log(path.read_text(encoding="utf-8"))

    assert [(t.speaker, t.text) for t in turns] == [("Alice", "Ship export."), ("Bob", "Fix login.")]
    assert notices == [
        "[discarded Bob attempt 1: empty-response]",
        "[tool call: Bob -> append_note: note added]",
        "[skipped Carol: all 3 attempts rejected]",
    ]
    assert check_tool_usage(turns, notices) == []


def test_repetition_flags_low_diversity():
    turns = _turns(*(["Same thing again."] * 8 + ["Different one.", "Another one.", "Last one."]))
    issues = detect_repetition(turns)
    assert issues and issues[0].type == "REPETITION"
    assert issues[0].critical is False


def test_repetition_ignores_varied_turns():
    assert detect_repetition(_turns(*[f"Turn {i}" for i in range(30)])) == []


def test_phrase_loop_needs_five_hits():
    assert detect_phrase_loops(_turns(*["Sounds good to me."] * 4)) == []
    issues = detect_phrase_loops(_turns("Intro", *["Sounds good to me."] * 5))
    assert len(issues) == 1
    assert issues[0].type == "PHRASE_LOOP"
    assert "starts at turn 1" in issues[0].message
    assert issues[0].critical is True


def test_tool_usage_detected_from_notices():
    assert check_tool_usage(_turns("plain"), ["[tool call: Scribe -> update_plan: plan replaced (4 chars)]"]) == []
    assert check_tool_usage(_turns("[TOOL_CALLS] update_plan")) == []
    assert check_tool_usage(_turns("plain")).pop().type == "NO_TOOLS"


def test_meta_planning_threshold():
    assert detect_meta_planning(_turns(*["We should finalize the plan."] * 10)) == []
    issues = detect_meta_planning(_turns(*["We should finalize the plan."] * 11))
    assert [i.type for i in issues] == ["META_PLANNING"]


def test_progression_flags_shrinking_vocabulary():
    stale = _turns(*["Shipping export feature tomorrow morning."] * 20)
    assert [i.type for i in check_progression(stale)] == ["LOW_PROGRESSION"]
    fresh = _turns(*[f"Option{i} alpha{i} bravo{i} charlie{i}" for i in range(20)])
    assert check_progression(fresh) == []


def test_analyze_healthy_conversation_only_lacks_tools():
    turns = _turns(*[f"Idea number{i} about topic{i}" for i in range(25)])
    assert [i.type for i in analyze(turns)] == ["NO_TOOLS"]


def test_analyze_log(tmp_path: Path):
    path = tmp_path / "conversation.log"
    log = TranscriptLog(path)
    for i in range(3):
        log.append_turn(Turn("Alice", f"Turn {i}"))
    count, issues = analyze_log(path)
    assert count == 3
    assert [i.type for i in issues] == ["NO_TOOLS"]
