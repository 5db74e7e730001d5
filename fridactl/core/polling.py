"""Bounded fixed-interval polling."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

from fridactl.core.errors import ReadinessTimeoutError

LOGGER = logging.getLogger(__name__)


async def wait_until(
    probe: Callable[[], Awaitable[bool]],
    *,
    interval_s: float,
    max_attempts: int,
    description: str = "condition",
) -> None:
    """Call ``probe`` until it returns True, sleeping ``interval_s`` between attempts.

    A probe that raises counts as "not ready yet". Raises
    ``ReadinessTimeoutError`` once ``max_attempts`` attempts have all failed.
    """
    if max_attempts < 1:
        raise ValueError(f"max_attempts must be >= 1, got {max_attempts}")

    last_error: Exception | None = None
    for attempt in range(1, max_attempts + 1):
        try:
            if await probe():
                return
        except Exception as exc:
            last_error = exc
            LOGGER.info("Waiting for %s (attempt %d/%d): %s", description, attempt, max_attempts, exc)

        if attempt < max_attempts:
            await asyncio.sleep(interval_s)

    raise ReadinessTimeoutError(
        f"Timed out waiting for {description} after {max_attempts} attempts",
        attempts=max_attempts,
        last_error=last_error,
    )
