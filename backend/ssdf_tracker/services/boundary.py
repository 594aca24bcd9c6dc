"""
Entry-point boundary for every mutation.

    result = await run_mutation(s, update_task_result, assessment_id, task_id, payload, actor=ctx)

The wrapped call runs inside the request session. On success the transaction is
committed. On a TrackerError every pending write is rolled back, so no task or
CIS result is left half-updated; if the error carries a failed audit event it
is then written (success=False) and committed on its own before re-raising.
"""
from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, TypeVar

from sqlalchemy.ext.asyncio import AsyncSession

from ssdf_tracker.errors import TrackerError
from ssdf_tracker.middleware.audit import log_audit_event

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def record_failed_event(s: AsyncSession, event: dict[str, Any]) -> None:
    await log_audit_event(s, **event, success=False)
    await s.commit()


async def run_mutation(
    s: AsyncSession,
    fn: Callable[..., Awaitable[T]],
    *args: Any,
    **kwargs: Any,
) -> T:
    try:
        result = await fn(s, *args, **kwargs)
        await s.commit()
        return result
    except TrackerError as exc:
        await s.rollback()
        failed_event = getattr(exc, "failed_event", None)
        if failed_event:
            await record_failed_event(s, failed_event)
        logger.info("%s rejected: %s %s", fn.__name__, exc.code, exc.message)
        raise
    except Exception:
        await s.rollback()
        raise
