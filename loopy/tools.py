"""Tool registry. Personas opt in per tool; a registered tool may be disabled."""

import json
import logging
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from loopy.models import Persona, ToolCall
from loopy.storage import read_text, write_text_atomic

logger = logging.getLogger(__name__)

PLAN_FILE = "plan.txt"


@dataclass
class ToolDefinition:
    name: str
    description: str
    parameters: dict
    handler: Callable[[dict, Path], str]


def _update_plan(args: dict, context_dir: Path) -> str:
    text = str(args.get("plan", "")).strip()
    if not text:
        return "update_plan: empty plan ignored"
    write_text_atomic(context_dir / PLAN_FILE, text + "\n")
    return f"update_plan: plan replaced ({len(text)} chars)"


def _append_note(args: dict, context_dir: Path) -> str:
    note = str(args.get("note", "")).strip()
    if not note:
        return "append_note: empty note ignored"
    path = context_dir / PLAN_FILE
    existing = read_text(path)
    write_text_atomic(path, f"{existing}- {note}\n")
    return "append_note: note added"


TOOLS: dict[str, ToolDefinition] = {
    "update_plan": ToolDefinition(
        name="update_plan",
        description="Replace the team's shared plan with the given text.",
        parameters={
            "type": "object",
            "properties": {"plan": {"type": "string", "description": "Full plan text"}},
            "required": ["plan"],
        },
        handler=_update_plan,
    ),
    "append_note": ToolDefinition(
        name="append_note",
        description="Append a one-line note to the team's shared plan.",
        parameters={
            "type": "object",
            "properties": {"note": {"type": "string", "description": "Note to add"}},
            "required": ["note"],
        },
        handler=_append_note,
    ),
}


def tool_definitions(persona: Persona) -> list[ToolDefinition]:
    """Definitions offered to the backend for this persona (registered tools only)."""
    defs = []
    for tool in persona.tools:
        if tool.name in TOOLS:
            defs.append(TOOLS[tool.name])
        else:
            logger.warning("Persona %s lists unknown tool %s", persona.name, tool.name)
    return defs


def dispatch_tool_calls(calls: list[ToolCall], persona: Persona, context_dir: Path) -> list[str]:
    """Run enabled tool calls; disabled or unknown ones become no-op notices."""
    enabled = {t.name for t in persona.tools if t.enabled}
    notices: list[str] = []
    for call in calls:
        if call.name not in TOOLS or call.name not in enabled:
            notices.append(f"{persona.name} called {call.name} (disabled, not executed)")
            continue
        try:
            args = json.loads(call.arguments) if call.arguments.strip() else {}
        except ValueError:
            notices.append(f"{persona.name} called {call.name} with invalid arguments")
            continue
        if not isinstance(args, dict):
            notices.append(f"{persona.name} called {call.name} with invalid arguments")
            continue
        result = TOOLS[call.name].handler(args, context_dir)
        logger.info("Tool %s by %s: %s", call.name, persona.name, result)
        notices.append(f"{persona.name} -> {result}")
    return notices
