"""Backend health checks — ping each provider before the loop starts."""

import asyncio
import logging

from loopy.providers.base import AIProvider, ChatRequest

logger = logging.getLogger(__name__)

_PING_REQUEST = ChatRequest(
    system="You are a connectivity check.",
    messages=[{"role": "user", "content": "Reply with the word OK only."}],
)
_TIMEOUT_SEC = 30.0


async def _check_one(name: str, provider: AIProvider) -> tuple[str, bool, str]:
    """Ping a single provider. Returns (name, ok, error_message)."""
    try:
        result = await asyncio.wait_for(provider.generate(_PING_REQUEST), timeout=_TIMEOUT_SEC)
    except Exception as exc:
        return name, False, str(exc)
    if not result.text.strip():
        return name, False, "empty reply"
    return name, True, ""


async def run_health_checks(
    providers: dict[str, AIProvider],
) -> dict[str, tuple[bool, str]]:
    """Ping all providers in parallel.

    Returns:
        Dict mapping provider name -> (ok, error_message).
        error_message is "" when ok is True.
    """
    results = await asyncio.gather(*(_check_one(n, p) for n, p in providers.items()))
    return {name: (ok, err) for name, ok, err in results}
