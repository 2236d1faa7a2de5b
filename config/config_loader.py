"""Load settings.yaml into typed dataclasses. Checks API keys at startup."""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

logger = logging.getLogger(__name__)

_SETTINGS_PATH = Path(__file__).parent / "settings.yaml"


class ConfigurationError(Exception):
    """Raised for fatal configuration problems (e.g. no personas found)."""


@dataclass
class ModelConfig:
    name: str
    sdk: str
    model: str
    api_key_env: str | None
    timeout_sec: int
    max_tokens: int
    base_url: str | None = None


@dataclass
class LoopConfig:
    sleep_sec: float
    max_attempts: int = 3
    retained_cycles: int = 3
    max_backend_failures: int = 5
    advisor_interval_sec: float = 600.0


@dataclass
class WorkflowConfig:
    cycle_window: int = 1
    min_supporters: int = 2


@dataclass
class PersonasConfig:
    dir: Path
    special: list[str] = field(default_factory=list)
    moderators: list[str] = field(default_factory=list)
    strict_moderator: bool = True


@dataclass
class PathsConfig:
    conversation: Path
    workflow_state: Path
    log: Path
    keyword_log: Path
    seed: Path
    advisor_notice: Path
    context_dir: Path


@dataclass
class AppConfig:
    backend: str
    loop: LoopConfig
    workflow: WorkflowConfig
    personas: PersonasConfig
    paths: PathsConfig
    models: dict[str, ModelConfig]
    log_keywords: list[str] = field(default_factory=list)
    available_providers: set[str] = field(default_factory=set)


def _positive_int(value, default: int) -> int:
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        return default
    return parsed if parsed > 0 else default


def load_config(settings_path: Path = _SETTINGS_PATH) -> AppConfig:
    """Load and validate configuration from settings.yaml.

    Raises FileNotFoundError if settings file missing.
    Logs missing API keys but does not raise — callers check
    available_providers.
    """
    if not settings_path.exists():
        raise FileNotFoundError(f"Settings file not found: {settings_path}")

    with settings_path.open("r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}

    loop_raw = raw.get("loop", {})
    loop = LoopConfig(
        sleep_sec=float(loop_raw.get("sleep_sec", 15)),
        max_attempts=_positive_int(loop_raw.get("max_attempts"), 3),
        retained_cycles=_positive_int(loop_raw.get("retained_cycles"), 3),
        max_backend_failures=_positive_int(loop_raw.get("max_backend_failures"), 5),
        advisor_interval_sec=float(loop_raw.get("advisor_interval_sec", 600)),
    )

    workflow_raw = raw.get("workflow", {})
    workflow = WorkflowConfig(
        cycle_window=_positive_int(workflow_raw.get("cycle_window"), 1),
        min_supporters=_positive_int(workflow_raw.get("min_supporters"), 2),
    )

    personas_raw = raw.get("personas", {})
    personas = PersonasConfig(
        dir=Path(personas_raw.get("dir", "personas")),
        special=[str(n) for n in personas_raw.get("special") or []],
        moderators=[str(n) for n in personas_raw.get("moderators") or []],
        strict_moderator=bool(personas_raw.get("strict_moderator", True)),
    )

    paths_raw = raw.get("paths", {})
    paths = PathsConfig(
        conversation=Path(paths_raw.get("conversation", "conversation.json")),
        workflow_state=Path(paths_raw.get("workflow_state", "workflow_state.json")),
        log=Path(paths_raw.get("log", "conversation.log")),
        keyword_log=Path(paths_raw.get("keyword_log", "advisor.log")),
        seed=Path(paths_raw.get("seed", "seed.txt")),
        advisor_notice=Path(paths_raw.get("advisor_notice", "advisor.txt")),
        context_dir=Path(paths_raw.get("context_dir", "context")),
    )

    models: dict[str, ModelConfig] = {}
    available_providers: set[str] = set()

    for provider_name, model_raw in (raw.get("models") or {}).items():
        model_cfg = ModelConfig(
            name=provider_name,
            sdk=model_raw["sdk"],
            model=model_raw["model"],
            api_key_env=model_raw.get("api_key_env"),
            timeout_sec=int(model_raw["timeout_sec"]),
            max_tokens=int(model_raw["max_tokens"]),
            base_url=model_raw.get("base_url"),
        )
        models[provider_name] = model_cfg

        # Local backends (e.g. Ollama) run without a key
        if not model_cfg.api_key_env:
            available_providers.add(provider_name)
            logger.info("Provider available (no key required): %s", provider_name)
            continue

        api_key = os.environ.get(model_cfg.api_key_env, "").strip()
        if api_key:
            available_providers.add(provider_name)
            logger.info("Provider available: %s", provider_name)
        else:
            logger.info(
                "Provider skipped (no API key): %s — set %s in .env",
                provider_name,
                model_cfg.api_key_env,
            )

    return AppConfig(
        backend=str(raw.get("backend", "ollama")),
        loop=loop,
        workflow=workflow,
        personas=personas,
        paths=paths,
        models=models,
        log_keywords=[str(k) for k in raw.get("log_keywords") or []],
        available_providers=available_providers,
    )
