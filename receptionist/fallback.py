"""Bounded-timeout calls to external collaborators.

Every network call made while a caller is waiting goes through ``bounded``.
It never raises for collaborator failures: a timeout or exception becomes
an ``Outcome`` carrying the fallback value and the error, and the caller of
``bounded`` decides what to say instead.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Generic, Optional, TypeVar

log = logging.getLogger("receptionist.fallback")

T = TypeVar("T")


@dataclass
class Outcome(Generic[T]):
    value: T
    ok: bool = True
    error: Optional[str] = None
    timed_out: bool = False


async def bounded(
    awaitable: Awaitable[T],
    *,
    timeout: float,
    fallback: T,
    what: str = "collaborator",
) -> Outcome[T]:
    """Await ``awaitable`` for at most ``timeout`` seconds."""
    try:
        value = await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError:
        log.warning("%s timed out after %.1fs", what, timeout)
        return Outcome(fallback, ok=False, error="timeout", timed_out=True)
    except asyncio.CancelledError:
        raise
    except Exception as e:
        log.warning("%s failed: %s", what, e)
        return Outcome(fallback, ok=False, error=str(e) or type(e).__name__)
    return Outcome(value)
