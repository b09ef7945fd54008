from __future__ import annotations

import asyncio
import logging
import random
from typing import TYPE_CHECKING, Any, Dict, Optional

from ..contracts import RunResult, WorkflowDefinition

if TYPE_CHECKING:
    from ..scheduler import GraphScheduler

logger = logging.getLogger(__name__)


def compute_backoff(attempt: int, base: float = 1.5, jitter: float = 0.5) -> float:
    """Compute exponential backoff with jitter."""
    delay = base ** attempt
    return delay + random.uniform(0, jitter)


async def schedule_retry(attempt: int, base: float = 1.5, jitter: float = 0.5) -> None:
    """Sleep for computed backoff delay before retrying."""
    delay = compute_backoff(attempt, base, jitter)
    await asyncio.sleep(delay)


async def _resume_point_is_clean(scheduler: "GraphScheduler", result: RunResult) -> bool:
    if result.execution_id is None or result.checkpoints_count == 0:
        return False
    state = await scheduler.get_state(result.execution_id)
    point = state.get_resume_point()
    return point is not None and not point.failed


async def run_with_retry(
    scheduler: "GraphScheduler",
    definition: WorkflowDefinition,
    user_id: str,
    initial_context: Optional[Dict[str, Any]] = None,
    max_attempts: int = 3,
    base: float = 1.5,
    jitter: float = 0.5,
) -> RunResult:
    """Run a workflow again while failures are flagged retryable.

    The first attempt is a fresh ``run``. An execution interrupted between
    nodes (a timeout leaves no checkpoint for the node in flight) is resumed
    so completed nodes are not executed again. A node that failed is never
    dispatched twice within one execution, so retrying it starts a new one.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    result = await scheduler.run(definition, user_id, initial_context)
    attempt = 1
    while not result.success and result.retryable and attempt < max_attempts:
        logger.warning(
            f"Attempt {attempt}/{max_attempts} of workflow {definition.id} failed: "
            f"{result.error}; retrying"
        )
        await schedule_retry(attempt, base, jitter)
        attempt += 1
        if await _resume_point_is_clean(scheduler, result):
            result = await scheduler.resume(result.execution_id, definition=definition)
        else:
            result = await scheduler.run(definition, user_id, initial_context)
    return result
