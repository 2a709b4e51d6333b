"""
Detached background work with its own deadline.

The request gate uses this for visit and threat logging: the response never
waits on the store, and a slow or failing write is logged and dropped.
"""

import asyncio
import logging
from typing import Awaitable, Optional, Set

logger = logging.getLogger(__name__)

# Strong references so the loop does not garbage-collect running tasks
_pending: Set[asyncio.Task] = set()


async def _run_with_deadline(work: Awaitable, timeout: float, label: str):
    try:
        await asyncio.wait_for(work, timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning(f"⏰ Background {label} timed out after {timeout:.1f}s")
    except asyncio.CancelledError:
        logger.debug(f"Background {label} cancelled")
    except Exception as e:
        logger.error(f"❌ Background {label} failed: {e}", exc_info=True)


def fire_and_forget(work: Awaitable, timeout: float, label: str = "task") -> asyncio.Task:
    """
    Schedule ``work`` on the running loop and return immediately.
    The task never raises into the caller.
    """
    task = asyncio.create_task(_run_with_deadline(work, timeout, label))
    _pending.add(task)
    task.add_done_callback(_pending.discard)
    return task


async def drain(timeout: Optional[float] = 5.0):
    """Wait for in-flight background work, e.g. on shutdown"""
    if not _pending:
        return
    done, not_done = await asyncio.wait(set(_pending), timeout=timeout)
    for task in not_done:
        task.cancel()
    if not_done:
        logger.warning(f"⚠️ Cancelled {len(not_done)} background tasks still running at shutdown")
