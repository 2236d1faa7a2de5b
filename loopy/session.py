"""Main loop: one persona turn per iteration, workflow bookkeeping at cycle boundaries."""

import asyncio
import logging
import random
import time
from collections.abc import Callable
from dataclasses import dataclass, field

from config.config_loader import AppConfig
from loopy.generation import TurnResult, generate_turn
from loopy.models import (
    NARRATOR_SPEAKER,
    SEED_SPEAKER,
    WORKFLOW_SPEAKER,
    Persona,
    Turn,
    ValidationOutcome,
    WorkflowState,
)
from loopy.output import (
    TranscriptLog,
    print_notice,
    print_stream_end,
    print_token,
    print_turn,
    print_turn_header,
)
from loopy.personas import load_personas
from loopy.providers.base import AIProvider, ProviderError
from loopy.scheduler import PersonaScheduler
from loopy.storage import load_turns, load_workflow_state, read_text, save_turns, save_workflow_state
from loopy.tools import dispatch_tool_calls
from loopy.window import append, retention_limit, trim
from loopy.workflow import format_announcement, persona_turns, record_completed_cycle, stage_directive

logger = logging.getLogger(__name__)

_CONTEXT_SUFFIXES = (".txt", ".md")


class BackendUnavailableError(Exception):
    """Raised when the backend keeps failing and the loop should stop."""


@dataclass
class Session:
    """Mutable loop state, owned by ConversationLoop."""

    personas: dict[str, Persona]
    scheduler: PersonaScheduler
    turns: list[Turn] = field(default_factory=list)
    workflow: WorkflowState = field(default_factory=WorkflowState)
    backend_failures: int = 0

    @property
    def persona_ids(self) -> list[str]:
        return list(self.personas)

    @property
    def speaker_ids(self) -> list[str]:
        """Every name that appears as a label in the history shown to the backend."""
        return [*self.personas, NARRATOR_SPEAKER, WORKFLOW_SPEAKER]


def open_session(config: AppConfig, rng: random.Random | None = None) -> Session:
    """Load personas and persisted state.

    Raises:
        ConfigurationError: If no personas can be loaded.
    """
    personas = load_personas(config.personas.dir, config.personas.special, config.personas.moderators)
    scheduler = PersonaScheduler(list(personas), config.personas.special, rng=rng)
    turns = load_turns(config.paths.conversation)
    workflow = load_workflow_state(config.paths.workflow_state)
    logger.info(
        "Session opened: %d personas, %d turns, stage %s",
        len(personas), len(turns), workflow.stage,
    )
    return Session(personas=personas, scheduler=scheduler, turns=turns, workflow=workflow)


class ConversationLoop:
    def __init__(
        self,
        config: AppConfig,
        provider: AIProvider,
        session: Session,
        log: TranscriptLog,
        clock: Callable[[], float] = time.monotonic,
        echo: bool = True,
    ) -> None:
        self._config = config
        self._provider = provider
        self.session = session
        self._log = log
        self._clock = clock
        self._echo = echo
        self._last_advisor_at = clock()

    @property
    def _max_persona_turns(self) -> int:
        return retention_limit(self._config.loop.retained_cycles, len(self.session.personas))

    def _commit(self, turn: Turn, streamed: bool = False) -> None:
        """Append, trim and persist one turn before anything else happens."""
        turns = append(self.session.turns, turn)
        self.session.turns = trim(turns, self.session.persona_ids, self._max_persona_turns)
        save_turns(self._config.paths.conversation, self.session.turns)
        self._log.append_turn(turn)
        if self._echo and not streamed:
            print_turn(turn)

    def _notice(self, message: str) -> None:
        self._log.append_notice(message)
        if self._echo:
            print_notice(message)

    def _save_workflow(self) -> None:
        save_workflow_state(self._config.paths.workflow_state, self.session.workflow)

    def inject_seed(self) -> None:
        if self.session.turns:
            return
        seed = read_text(self._config.paths.seed).strip()
        if seed:
            self._commit(Turn(speaker=SEED_SPEAKER, content=seed))

    def inject_advisor_notice(self) -> None:
        now = self._clock()
        if now - self._last_advisor_at < self._config.loop.advisor_interval_sec:
            return
        self._last_advisor_at = now
        notice = read_text(self._config.paths.advisor_notice).strip()
        if notice:
            logger.info("Injecting advisor notice (%d chars)", len(notice))
            self._commit(Turn(speaker=NARRATOR_SPEAKER, content=notice))

    def reset_workflow_if_fresh(self) -> None:
        """A conversation without persona turns is a fresh run."""
        if persona_turns(self.session.turns, self.session.persona_ids):
            return
        if self.session.workflow != WorkflowState():
            logger.info("No persona turns in conversation; resetting workflow state")
            self.session.workflow = WorkflowState()
            self._save_workflow()

    def context_blocks(self) -> list[str]:
        context_dir = self._config.paths.context_dir
        if not context_dir.is_dir():
            return []
        blocks = []
        for path in sorted(context_dir.iterdir()):
            if path.suffix not in _CONTEXT_SUFFIXES or not path.is_file():
                continue
            text = read_text(path).strip()
            if text:
                blocks.append(f"{path.name}:\n{text}")
        return blocks

    async def _generate(self, persona: Persona) -> TurnResult:
        def on_rejected(outcome: ValidationOutcome, attempt: int) -> None:
            self._notice(f"discarded {persona.name} attempt {attempt}: {outcome.reason}")

        if self._echo:
            print_turn_header(persona.name)
        try:
            return await generate_turn(
                self._provider,
                persona,
                self.session.turns,
                self.session.speaker_ids,
                directive=stage_directive(self.session.workflow),
                context_blocks=self.context_blocks(),
                max_attempts=self._config.loop.max_attempts,
                strict_moderator=self._config.personas.strict_moderator,
                on_token=print_token if self._echo else None,
                on_rejected=on_rejected,
            )
        finally:
            if self._echo:
                print_stream_end()

    def _record(self, result: TurnResult) -> None:
        persona = self.session.personas[result.persona]
        if result.turn is not None:
            self._commit(result.turn, streamed=True)
            for notice in dispatch_tool_calls(result.tool_calls, persona, self._config.paths.context_dir):
                self._log.append_tool_notice(notice)
        elif result.noop:
            self._notice(f"{persona.name}: no action needed")
        else:
            self._notice(f"skipped {persona.name}: all {len(result.attempts)} attempts rejected")

    def complete_cycle(self) -> None:
        state, announce = record_completed_cycle(
            self.session.workflow,
            self.session.turns,
            self.session.persona_ids,
            cycle_window=self._config.workflow.cycle_window,
            min_supporters=self._config.workflow.min_supporters,
        )
        self.session.workflow = state
        self._save_workflow()
        if announce:
            self._commit(Turn(speaker=WORKFLOW_SPEAKER, content=format_announcement(state)))

    async def run_iteration(self) -> TurnResult | None:
        """Run one scheduler step. Returns None when the backend call failed.

        Raises:
            BackendUnavailableError: After max_backend_failures consecutive failures.
        """
        self.inject_seed()
        self.inject_advisor_notice()
        self.reset_workflow_if_fresh()

        persona_id, cycle_done = self.session.scheduler.advance()
        persona = self.session.personas[persona_id]

        result: TurnResult | None = None
        fatal: BackendUnavailableError | None = None
        try:
            result = await self._generate(persona)
        except ProviderError as exc:
            self.session.backend_failures += 1
            self._notice(f"backend error for {persona_id}: {exc}; turn skipped")
            if self.session.backend_failures >= self._config.loop.max_backend_failures:
                fatal = BackendUnavailableError(
                    f"{self.session.backend_failures} consecutive backend failures: {exc}"
                )
        else:
            self.session.backend_failures = 0
            self._record(result)

        if cycle_done:
            self.complete_cycle()
        if fatal is not None:
            raise fatal
        return result

    async def run(self, max_iterations: int | None = None) -> int:
        """Loop until max_iterations (forever when None). Returns iterations run."""
        count = 0
        while max_iterations is None or count < max_iterations:
            await self.run_iteration()
            count += 1
            if max_iterations is not None and count >= max_iterations:
                break
            await asyncio.sleep(self._config.loop.sleep_sec)
        return count
