"""Persisted conversation state: turn history and workflow state as JSON files."""

import json
import logging
import os
import tempfile
from pathlib import Path

from loopy.models import Turn, WorkflowState
from loopy.workflow import state_from_dict, state_to_dict

logger = logging.getLogger(__name__)


def write_text_atomic(path: Path, text: str) -> None:
    """Write to a temp file in the same directory, fsync, then replace."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
    except BaseException:
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)
        raise


def read_text(path: Path) -> str:
    """Read text from file, return empty string if it doesn't exist."""
    return path.read_text(encoding="utf-8") if path.exists() else ""


def load_turns(path: Path) -> list[Turn]:
    """Load the turn history. Missing or malformed files give an empty history."""
    raw_text = read_text(path)
    if not raw_text.strip():
        return []
    try:
        raw = json.loads(raw_text)
        if not isinstance(raw, list):
            raise ValueError("expected a list of turns")
        turns = []
        for entry in raw:
            if not isinstance(entry, dict):
                raise ValueError(f"turn is not an object: {entry!r}")
            speaker, content = entry["speaker"], entry["content"]
            if not isinstance(speaker, str) or not isinstance(content, str):
                raise ValueError("speaker and content must be strings")
            turns.append(Turn(speaker=speaker, content=content))
    except (ValueError, KeyError) as exc:
        logger.warning("Conversation file %s is malformed (%s); starting fresh", path, exc)
        return []
    return turns


def save_turns(path: Path, turns: list[Turn]) -> None:
    payload = [{"speaker": t.speaker, "content": t.content} for t in turns]
    write_text_atomic(path, json.dumps(payload, ensure_ascii=False, indent=2) + "\n")


def load_workflow_state(path: Path) -> WorkflowState:
    raw_text = read_text(path)
    if not raw_text.strip():
        return WorkflowState()
    try:
        raw = json.loads(raw_text)
    except ValueError as exc:
        logger.warning("Workflow state %s is malformed (%s); resetting", path, exc)
        return WorkflowState()
    return state_from_dict(raw)


def save_workflow_state(path: Path, state: WorkflowState) -> None:
    write_text_atomic(path, json.dumps(state_to_dict(state), ensure_ascii=False, indent=2) + "\n")
