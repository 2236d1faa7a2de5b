"""One persona turn: build the request, stream the reply, validate, retry or give up."""

import logging
import re
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field

from loopy.contamination import is_contaminated
from loopy.models import (
    EMPTY_RESPONSE,
    SEED_SPEAKER,
    TRANSCRIPT_CONTAMINATION,
    Persona,
    ToolCall,
    Turn,
    ValidationOutcome,
)
from loopy.providers.base import AIProvider, ChatRequest, TokenCallback
from loopy.tools import tool_definitions

logger = logging.getLogger(__name__)

NO_ACTION_SENTINEL = "NO_ACTION"
MAX_MODERATOR_CHARS = 260
MAX_MODERATOR_SENTENCES = 2

PROCESS_WORDS = (
    "decide", "decision", "agree", "agreement", "vote", "shortlist", "narrow",
    "choose", "pick", "consensus", "stage", "next step", "next action", "focus",
    "summarize", "converge", "option",
)
PITCH_WORDS = (
    "idea", "launch", "build", "product", "feature", "app", "startup",
    "market", "revenue", "customer", "brand", "pitch",
)

_SINGLE_VOICE_RULE = (
    "You are {name}. Write only {name}'s next message, in the first person. "
    "Do not write lines for other speakers, do not prefix your reply with a name "
    "label and do not script a conversation."
)
_CONTINUE_CUE = "(Continue the discussion as {name}.)"
_OPENING_CUE = "(The discussion is starting.)"
_NO_ACTION_RE = re.compile(rf"[`*_\s]*{NO_ACTION_SENTINEL}[`*_\s.!]*")


@dataclass
class TurnResult:
    persona: str
    turn: Turn | None
    attempts: list[ValidationOutcome] = field(default_factory=list)
    tool_calls: list[ToolCall] = field(default_factory=list)
    noop: bool = False          # moderator output coerced to / given as the sentinel

    @property
    def skipped(self) -> bool:
        return self.turn is None and not self.noop


def build_system_prompt(persona: Persona, directive: str, context_blocks: Sequence[str] = ()) -> str:
    sections = [persona.body.strip()] if persona.body.strip() else []
    if directive:
        sections.append(f"## Workflow\n{directive}")
    for block in context_blocks:
        if block.strip():
            sections.append(f"## Shared context\n{block.strip()}")
    if persona.moderator:
        sections.append(
            f"If no process intervention is needed, reply with exactly {NO_ACTION_SENTINEL}."
        )
    sections.append(_SINGLE_VOICE_RULE.format(name=persona.name))
    return "\n\n".join(sections)


def build_messages(persona_name: str, turns: Sequence[Turn]) -> list[dict[str, str]]:
    """Map history to alternating user/assistant messages.

    The active persona's own turns become assistant messages; everyone else is a
    user message prefixed with the speaker's name. Consecutive same-role entries
    are merged so the result always alternates and starts and ends with user.
    """
    messages: list[dict[str, str]] = []
    for turn in turns:
        if turn.speaker == persona_name:
            role, content = "assistant", turn.content
        elif turn.speaker == SEED_SPEAKER:
            role, content = "user", turn.content
        else:
            role, content = "user", f"{turn.speaker}: {turn.content}"
        if messages and messages[-1]["role"] == role:
            messages[-1]["content"] += "\n\n" + content
        else:
            messages.append({"role": role, "content": content})

    if not messages or messages[0]["role"] != "user":
        messages.insert(0, {"role": "user", "content": _OPENING_CUE})
    if messages[-1]["role"] != "user":
        messages.append({"role": "user", "content": _CONTINUE_CUE.format(name=persona_name)})
    return messages


def validate_response(text: str, tool_calls: list[ToolCall], known_ids: Sequence[str]) -> ValidationOutcome:
    stripped = text.strip()
    if not stripped:
        return ValidationOutcome(False, EMPTY_RESPONSE, text, tool_calls)
    if is_contaminated(stripped, known_ids):
        return ValidationOutcome(False, TRANSCRIPT_CONTAMINATION, text, tool_calls)
    return ValidationOutcome(True, None, stripped, tool_calls)


def _count_sentences(text: str) -> int:
    return len([s for s in re.split(r"(?<=[.!?])\s+", text.strip()) if s])


def _has_word(text: str, words: Sequence[str]) -> bool:
    # Whole words only; a plural "s"/"es" still counts
    return any(re.search(rf"\b{re.escape(w)}(?:e?s)?\b", text) for w in words)


def is_no_action(text: str) -> bool:
    """True for the sentinel, tolerating markdown wrapping and trailing punctuation."""
    return _NO_ACTION_RE.fullmatch(text.strip()) is not None


def normalize_moderator_output(text: str) -> tuple[str, bool]:
    """Strict-mode filter for moderator personas. Returns (text, coerced)."""
    stripped = text.strip()
    if is_no_action(stripped):
        return NO_ACTION_SENTINEL, False
    lowered = stripped.lower()
    if (
        len(stripped) <= MAX_MODERATOR_CHARS
        and _count_sentences(stripped) <= MAX_MODERATOR_SENTENCES
        and _has_word(lowered, PROCESS_WORDS)
        and not _has_word(lowered, PITCH_WORDS)
    ):
        return stripped, False
    return NO_ACTION_SENTINEL, True


async def generate_turn(
    provider: AIProvider,
    persona: Persona,
    turns: Sequence[Turn],
    known_ids: Sequence[str],
    directive: str = "",
    context_blocks: Sequence[str] = (),
    max_attempts: int = 3,
    strict_moderator: bool = True,
    on_token: TokenCallback | None = None,
    on_rejected: Callable[[ValidationOutcome, int], None] | None = None,
) -> TurnResult:
    """Generate one turn for persona, retrying rejected output up to max_attempts.

    Raises:
        ProviderError: If the backend is unavailable. Not retried here.
    """
    request = ChatRequest(
        system=build_system_prompt(persona, directive, context_blocks),
        messages=build_messages(persona.name, turns),
        tools=tool_definitions(persona),
        tool_choice=persona.tool_choice,
    )
    result = TurnResult(persona=persona.name, turn=None)

    for attempt in range(1, max_attempts + 1):
        generation = await provider.generate(request, on_token=on_token)
        outcome = validate_response(generation.text, generation.tool_calls, known_ids)
        result.attempts.append(outcome)
        if not outcome.accepted:
            logger.warning(
                "Rejected %s attempt %d/%d: %s", persona.name, attempt, max_attempts, outcome.reason
            )
            if on_rejected:
                on_rejected(outcome, attempt)
            continue

        result.tool_calls = outcome.tool_calls
        text = outcome.text
        if persona.moderator and strict_moderator:
            text, coerced = normalize_moderator_output(text)
            if coerced:
                logger.info("Moderator %s output coerced to %s", persona.name, NO_ACTION_SENTINEL)
        if is_no_action(text):
            result.noop = True
            return result
        result.turn = Turn(speaker=persona.name, content=text)
        return result

    logger.warning("Skipping %s: %d attempts rejected", persona.name, max_attempts)
    return result
