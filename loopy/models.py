"""Pure dataclasses for the persona conversation loop. No logic, no deps."""

from dataclasses import dataclass, field

SEED_SPEAKER = "seed"
NARRATOR_SPEAKER = "Narrator"
WORKFLOW_SPEAKER = "Workflow"

STAGES = ("brainstorm", "cluster", "shortlist", "decide", "next_action")

EMPTY_RESPONSE = "empty-response"
TRANSCRIPT_CONTAMINATION = "transcript-contamination"


@dataclass(frozen=True)
class Turn:
    speaker: str           # persona id, "seed", "Narrator" or "Workflow"
    content: str


@dataclass
class PersonaTool:
    name: str
    enabled: bool = False


@dataclass
class Persona:
    name: str              # capitalized file stem, e.g. "Alice"
    body: str              # behavioural instructions (markdown body)
    tools: list[PersonaTool] = field(default_factory=list)
    tool_choice: str = "auto"
    special: bool = False
    moderator: bool = False


@dataclass
class ToolCall:
    name: str
    arguments: str         # raw JSON string as streamed by the backend


@dataclass
class GenerationResult:
    text: str
    model: str
    latency_sec: float
    tool_calls: list[ToolCall] = field(default_factory=list)


@dataclass
class ValidationOutcome:
    accepted: bool
    reason: str | None     # EMPTY_RESPONSE, TRANSCRIPT_CONTAMINATION or None
    text: str
    tool_calls: list[ToolCall] = field(default_factory=list)


@dataclass
class WorkflowState:
    stage: str = "brainstorm"
    cycles_in_stage: int = 0
    cycles_since_evaluation: int = 0
    candidate_options: list[str] = field(default_factory=list)
    shortlist_options: list[str] = field(default_factory=list)
    locked_decision: str | None = None
    last_transition_reason: str = ""
