"""Shared pytest fixtures."""

import random
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from config.config_loader import (
    AppConfig,
    LoopConfig,
    ModelConfig,
    PathsConfig,
    PersonasConfig,
    WorkflowConfig,
)
from loopy.models import GenerationResult, Persona, Turn
from loopy.providers.base import AIProvider, ChatRequest, TokenCallback


def make_result(text: str, tool_calls=None) -> GenerationResult:
    return GenerationResult(text=text, model="mock-model", latency_sec=0.1, tool_calls=tool_calls or [])


@pytest.fixture
def sample_model_config() -> ModelConfig:
    return ModelConfig(
        name="test_model",
        sdk="openai",
        model="test-model-1",
        api_key_env="TEST_API_KEY",
        timeout_sec=30,
        max_tokens=1024,
        base_url=None,
    )


@pytest.fixture
def personas_dir(tmp_path: Path) -> Path:
    directory = tmp_path / "personas"
    directory.mkdir()
    (directory / "alice.md").write_text("You are Alice, an engineer.", encoding="utf-8")
    (directory / "bob.md").write_text("You are Bob, an operator.", encoding="utf-8")
    (directory / "carol.md").write_text("You are Carol, a researcher.", encoding="utf-8")
    (directory / "moderator.md").write_text("You are the Moderator.", encoding="utf-8")
    return directory


@pytest.fixture
def sample_app_config(tmp_path: Path, personas_dir: Path) -> AppConfig:
    model_cfg = ModelConfig(
        name="ollama",
        sdk="openai",
        model="llama3.2:latest",
        api_key_env=None,
        timeout_sec=60,
        max_tokens=512,
        base_url="http://127.0.0.1:11434/v1",
    )
    return AppConfig(
        backend="ollama",
        loop=LoopConfig(sleep_sec=0, max_attempts=3, retained_cycles=2, max_backend_failures=2),
        workflow=WorkflowConfig(cycle_window=1, min_supporters=2),
        personas=PersonasConfig(dir=personas_dir, special=["Moderator"], moderators=["Moderator"]),
        paths=PathsConfig(
            conversation=tmp_path / "conversation.json",
            workflow_state=tmp_path / "workflow_state.json",
            log=tmp_path / "conversation.log",
            keyword_log=tmp_path / "advisor.log",
            seed=tmp_path / "seed.txt",
            advisor_notice=tmp_path / "advisor.txt",
            context_dir=tmp_path / "context",
        ),
        models={"ollama": model_cfg},
        log_keywords=["advisor"],
        available_providers={"ollama"},
    )


@pytest.fixture
def persona_ids() -> list[str]:
    return ["Alice", "Bob", "Carol", "Moderator"]


@pytest.fixture
def alice() -> Persona:
    return Persona(name="Alice", body="You are Alice, an engineer.")


@pytest.fixture
def moderator() -> Persona:
    return Persona(name="Moderator", body="You are the Moderator.", special=True, moderator=True)


@pytest.fixture
def sample_turns() -> list[Turn]:
    return [
        Turn("seed", "What should we ship next week?"),
        Turn("Alice", "- Ship the export button\n- Fix the login bug"),
        Turn("Bob", "I worry about the on-call load."),
        Turn("Workflow", "Stage: BRAINSTORM (1/5)"),
    ]


@pytest.fixture
def rng() -> random.Random:
    return random.Random(1234)


class MockProvider(AIProvider):
    """Test double AIProvider."""

    def __init__(self, provider_name: str = "mock", response_content: str = "Mock response") -> None:
        self._name = provider_name
        self._response_content = response_content
        # Shadow the class method with an AsyncMock at the instance level.
        # ABC check passes because generate is defined in the class body below.
        self.generate = AsyncMock(return_value=make_result(response_content))  # type: ignore[assignment]

    def name(self) -> str:
        return self._name

    def model_string(self) -> str:
        return "mock-model"

    async def generate(  # type: ignore[override]
        self, request: ChatRequest, on_token: TokenCallback | None = None
    ) -> GenerationResult:
        """Default implementation; replaced by AsyncMock in __init__."""
        return make_result(self._response_content)


@pytest.fixture
def mock_provider() -> MockProvider:
    return MockProvider()
