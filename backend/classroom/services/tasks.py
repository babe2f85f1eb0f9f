"""Fire-and-forget background work.

Phase transitions hand the analysis pipeline and retest preparation to
FastAPI ``BackgroundTasks``. The request that schedules them has already
committed, so a failure here is logged and never reaches that caller.
"""

import logging
from typing import Any, Awaitable, Callable

logger = logging.getLogger(__name__)


async def run_background(label: str, func: Callable[..., Awaitable[Any]], *args: Any, **kwargs: Any) -> None:
    """Await ``func`` and log instead of raising."""
    try:
        await func(*args, **kwargs)
    except Exception:
        logger.exception(f"Background task {label} failed")
