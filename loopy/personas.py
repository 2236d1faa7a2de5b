"""Persona files: markdown body with optional YAML frontmatter (tools, tool_choice)."""

import logging
from collections.abc import Sequence
from pathlib import Path

import frontmatter

from config.config_loader import ConfigurationError
from loopy.models import Persona, PersonaTool

logger = logging.getLogger(__name__)

_PERSONA_SUFFIXES = (".md", ".txt")


def persona_id(path: Path) -> str:
    """Derive the persona identity from its file name: 'alice.md' -> 'Alice'."""
    stem = path.stem.strip()
    return stem[:1].upper() + stem[1:]


def _parse_tools(raw) -> list[PersonaTool]:
    """Frontmatter tools: a list of names (registered, disabled) or {name, enabled} maps."""
    if not raw:
        return []
    if isinstance(raw, str):
        raw = [raw]
    tools: list[PersonaTool] = []
    for entry in raw:
        if isinstance(entry, str):
            tools.append(PersonaTool(name=entry.strip()))
        elif isinstance(entry, dict) and entry.get("name"):
            tools.append(PersonaTool(name=str(entry["name"]).strip(), enabled=bool(entry.get("enabled", False))))
        else:
            logger.warning("Ignoring malformed tool entry: %r", entry)
    return tools


def parse_persona(
    file_path: Path,
    special: Sequence[str] = (),
    moderators: Sequence[str] = (),
) -> Persona:
    post = frontmatter.load(str(file_path))
    name = persona_id(file_path)
    return Persona(
        name=name,
        body=post.content.strip(),
        tools=_parse_tools(post.metadata.get("tools")),
        tool_choice=str(post.metadata.get("tool_choice", "auto")),
        special=name in special,
        moderator=name in moderators,
    )


def load_personas(
    personas_dir: Path,
    special: Sequence[str] = (),
    moderators: Sequence[str] = (),
) -> dict[str, Persona]:
    """Load every persona file in personas_dir, keyed by persona id.

    Raises:
        ConfigurationError: If the directory is missing or holds no personas.
    """
    if not personas_dir.is_dir():
        raise ConfigurationError(f"Personas directory not found: {personas_dir}")

    files = sorted(p for p in personas_dir.iterdir() if p.suffix in _PERSONA_SUFFIXES and p.is_file())
    personas: dict[str, Persona] = {}
    for file_path in files:
        persona = parse_persona(file_path, special, moderators)
        if persona.name in personas:
            logger.warning("Duplicate persona %s in %s, skipping", persona.name, file_path.name)
            continue
        personas[persona.name] = persona
        logger.debug("Loaded persona %s (%d tools)", persona.name, len(persona.tools))

    if not personas:
        raise ConfigurationError(f"No personas found in {personas_dir}")
    return personas
