"""Persona rotation: shuffled regular personas, special personas pinned to the tail."""

import logging
import random
from collections.abc import Sequence

from config.config_loader import ConfigurationError

logger = logging.getLogger(__name__)


class PersonaScheduler:
    """Serves one persona per call and reports when a rotation cycle completes.

    Each cycle visits every regular persona once in random order, followed by
    the special personas in their configured order.
    """

    def __init__(
        self,
        persona_ids: Sequence[str],
        special_ids: Sequence[str] = (),
        rng: random.Random | None = None,
    ) -> None:
        if not persona_ids:
            raise ConfigurationError("No personas configured")

        known = set(persona_ids)
        unknown = [s for s in special_ids if s not in known]
        if unknown:
            logger.warning("Special personas not found, ignoring: %s", ", ".join(unknown))

        self._special = [s for s in dict.fromkeys(special_ids) if s in known]
        special_set = set(self._special)
        self._regular = [p for p in dict.fromkeys(persona_ids) if p not in special_set]
        self._rng = rng or random.Random()
        self._rotation: list[str] = []
        self._cursor = 0
        self._reshuffle()

    def _reshuffle(self) -> None:
        regular = list(self._regular)
        self._rng.shuffle(regular)
        self._rotation = regular + self._special
        self._cursor = 0
        logger.debug("New rotation: %s", self._rotation)

    @property
    def rotation(self) -> list[str]:
        return list(self._rotation)

    @property
    def cursor(self) -> int:
        return self._cursor

    def advance(self) -> tuple[str, bool]:
        """Return (persona_id, cycle_just_completed)."""
        persona_id = self._rotation[self._cursor]
        self._cursor += 1
        completed = self._cursor >= len(self._rotation)
        if completed:
            self._reshuffle()
        return persona_id, completed
