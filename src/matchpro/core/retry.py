from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from matchpro.core.cancellation import CancellationToken
from matchpro.errors import InputValidationError, MatchCancelled

logger = logging.getLogger(__name__)

T = TypeVar("T")

_NEVER_RETRIED = (InputValidationError, MatchCancelled)


async def with_retry(
    fn: Callable[[], Awaitable[T]],
    *,
    max_retries: int,
    delay_sec: float,
    cancel_token: CancellationToken | None = None,
    label: str = "call",
) -> T:
    """Run ``fn`` up to ``max_retries + 1`` times with a fixed delay between attempts."""
    attempt = 0
    while True:
        if cancel_token is not None:
            cancel_token.raise_if_cancelled()
        try:
            return await fn()
        except _NEVER_RETRIED:
            raise
        except Exception as exc:
            if attempt >= max_retries:
                raise
            attempt += 1
            logger.warning("%s failed, retrying (%s/%s): %s", label, attempt, max_retries, exc)
        if cancel_token is not None:
            await cancel_token.sleep(delay_sec)
        else:
            await asyncio.sleep(delay_sec)
