"""Abstract base for all chat backends."""

from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field

from loopy.models import GenerationResult
from loopy.tools import ToolDefinition

TokenCallback = Callable[[str], None]


class ProviderError(Exception):
    """Raised when a backend call fails (unreachable, timeout, API error)."""

    def __init__(self, provider_name: str, message: str) -> None:
        self.provider_name = provider_name
        super().__init__(f"[{provider_name}] {message}")


@dataclass
class ChatRequest:
    system: str
    messages: list[dict[str, str]]       # alternating {"role": "user"|"assistant", "content": ...}
    tools: list[ToolDefinition] = field(default_factory=list)
    tool_choice: str = "auto"


class AIProvider(ABC):
    """Abstract base for all chat backends."""

    @abstractmethod
    def name(self) -> str:
        """Return the short provider name (e.g. 'ollama', 'claude')."""
        ...

    @abstractmethod
    def model_string(self) -> str:
        """Return the actual model identifier string."""
        ...

    @abstractmethod
    async def generate(self, request: ChatRequest, on_token: TokenCallback | None = None) -> GenerationResult:
        """Stream a reply for the request and return it accumulated.

        Args:
            request: System block, mapped history and offered tools.
            on_token: Optional callback invoked with each streamed text chunk.

        Returns:
            GenerationResult with the full text and any tool calls. The text may
            be empty; judging it is the caller's job.

        Raises:
            ProviderError: On API failure or timeout.
        """
        ...
