"""
Optimistic updates with a compensating action.

Apply a change locally right away, run the remote call, and undo the local
change if the remote call fails.

    action = OptimisticAction(
        apply=lambda: favorites.add(item_id),
        compensate=lambda: favorites.discard(item_id),
    )
    await run_optimistic(action, lambda: api.add_favorite(item_id))
"""
import inspect
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Union

from logging_config import get_logger

logger = get_logger(__name__)

LocalStep = Callable[[], Union[None, Awaitable[None]]]


@dataclass(frozen=True)
class OptimisticAction:
    apply: LocalStep
    compensate: LocalStep
    description: str = ""


async def _call(step: LocalStep) -> None:
    result = step()
    if inspect.isawaitable(result):
        await result


async def run_optimistic(action: OptimisticAction, remote: Callable[[], Awaitable[Any]]) -> Any:
    """
    Apply locally, then await the remote call.

    Returns the remote result. If the remote call raises, the compensating
    step runs and the original exception is re-raised.
    """
    await _call(action.apply)
    try:
        return await remote()
    except Exception as e:
        logger.warning(f"Remote call failed{' for ' + action.description if action.description else ''}, "
                       f"rolling back: {e}")
        try:
            await _call(action.compensate)
        except Exception as undo_error:
            logger.error(f"Rollback failed: {undo_error}", exc_info=True)
        raise
