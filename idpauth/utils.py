"""
Utility Functions
Bounded polling, deadlines and log-safe masking helpers.
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class Deadline:
    """A monotonic point in time after which a wait must give up."""

    def __init__(self, timeout_s: float, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self.timeout_s = timeout_s
        self.expires_at = clock() + timeout_s

    @property
    def remaining(self) -> float:
        return max(0.0, self.expires_at - self._clock())

    @property
    def expired(self) -> bool:
        return self._clock() >= self.expires_at


async def poll_until(
    predicate: Callable[[], Awaitable[bool]],
    timeout_s: float,
    interval_s: float = 0.25,
    cancelled: Optional[Callable[[], bool]] = None,
) -> bool:
    """Poll an async predicate until it returns True or the deadline passes.

    A bounded loop, never recursion. ``cancelled`` is checked on every
    iteration; when it returns True the poll stops early with False.

    Returns:
        True if the predicate became true in time, False otherwise.
    """
    deadline = Deadline(timeout_s)
    while True:
        if cancelled is not None and cancelled():
            logger.debug("[POLL] Cancelled before condition was met")
            return False
        if await predicate():
            return True
        if deadline.expired:
            return False
        await asyncio.sleep(min(interval_s, max(deadline.remaining, 0.0)))


def mask_username(username: str) -> str:
    """Keep the first two characters and the domain, mask the rest."""
    if not username:
        return ""
    local, sep, domain = username.partition("@")
    visible = local[:2]
    return f"{visible}{'*' * max(len(local) - 2, 1)}{sep}{domain}"


def truncate(text: Optional[str], limit: int = 200) -> Optional[str]:
    """Collapse whitespace and clip IdP-rendered text for diagnostics."""
    if text is None:
        return None
    collapsed = " ".join(text.split())
    if not collapsed:
        return None
    if len(collapsed) > limit:
        return collapsed[: limit - 3] + "..."
    return collapsed
