"""Rich console rendering and the append-only human-readable conversation log."""

import logging
from collections.abc import Sequence
from datetime import datetime
from pathlib import Path

from rich.console import Console
from rich.panel import Panel
from rich.rule import Rule
from rich.text import Text

from loopy.models import WORKFLOW_SPEAKER, Turn

logger = logging.getLogger(__name__)

console = Console(legacy_windows=False)

TURN_SEP = "\n\n---\n\n"
TOOL_NOTICE_PREFIX = "[tool call:"


def format_turn_block(turn: Turn) -> str:
    return f"**{turn.speaker}**:\n{turn.content}{TURN_SEP}"


def format_notice(message: str) -> str:
    return f"[{message}]\n\n"


class TranscriptLog:
    """Append-only markdown log plus a timestamped mirror for keyword mentions."""

    def __init__(self, path: Path, keyword_path: Path | None = None, keywords: Sequence[str] = ()) -> None:
        self._path = path
        self._keyword_path = keyword_path
        self._keywords = [k.lower() for k in keywords if k]

    def _append(self, path: Path, text: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("a", encoding="utf-8") as f:
            f.write(text)

    def _mirror(self, record: str) -> None:
        if not self._keyword_path or not self._keywords:
            return
        lowered = record.lower()
        if any(k in lowered for k in self._keywords):
            stamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
            self._append(self._keyword_path, f"[{stamp}] {record.strip()}\n")

    def append_turn(self, turn: Turn) -> None:
        block = format_turn_block(turn)
        self._append(self._path, block)
        self._mirror(f"{turn.speaker}: {turn.content}")

    def append_notice(self, message: str) -> None:
        self._append(self._path, format_notice(message))
        self._mirror(message)

    def append_tool_notice(self, message: str) -> None:
        self.append_notice(f"{TOOL_NOTICE_PREFIX[1:]} {message}")


def print_turn_header(speaker: str) -> None:
    console.print(Rule(f"[bold cyan]{speaker}[/bold cyan]"))


def print_token(token: str) -> None:
    console.print(token, end="", markup=False, highlight=False)


def print_turn(turn: Turn) -> None:
    """Print a turn that was not streamed (seed, narrator, workflow)."""
    style = "green" if turn.speaker == WORKFLOW_SPEAKER else "dim"
    console.print(Panel(Text(turn.content), title=f"[bold]{turn.speaker}[/bold]", border_style=style))


def print_notice(message: str) -> None:
    console.print(Text(f"[{message}]", style="yellow"))


def print_stream_end() -> None:
    console.print()
