"""Atomic batched writes with retry on transient lock/busy errors.

Each job collects the writes for one page as a list of write intents and
hands them to :class:`BatchWriter`, which applies them in a single
transaction. The whole batch is retried when the store reports contention.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Sequence, Tuple, TypeVar, Union

from sqlalchemy import and_, insert, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from backend.app.core.errors import classify_error
from backend.app.core.settings import settings
from backend.app.db.session import session_scope

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class InsertRow:
    model: Any
    values: Mapping[str, Any]


@dataclass(frozen=True)
class UpdateRows:
    model: Any
    where: Mapping[str, Any]
    values: Mapping[str, Any]


@dataclass(frozen=True)
class UpsertRow:
    model: Any
    values: Mapping[str, Any]
    conflict_columns: Tuple[str, ...]
    update_values: Mapping[str, Any] = field(default_factory=dict)


WriteIntent = Union[InsertRow, UpdateRows, UpsertRow]


def _dialect_insert(session: Session, model: Any):
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert(model)
    if dialect == "sqlite":
        return sqlite.insert(model)
    raise NotImplementedError(f"Upsert not supported for dialect {dialect}")


def apply_intent(session: Session, intent: WriteIntent) -> None:
    if isinstance(intent, InsertRow):
        session.execute(insert(intent.model).values(**intent.values))
    elif isinstance(intent, UpdateRows):
        table = intent.model.__table__
        conditions = [table.c[column] == value for column, value in intent.where.items()]
        session.execute(update(intent.model).where(and_(*conditions)).values(**intent.values))
    elif isinstance(intent, UpsertRow):
        stmt = _dialect_insert(session, intent.model).values(**intent.values)
        if intent.update_values:
            stmt = stmt.on_conflict_do_update(index_elements=list(intent.conflict_columns), set_=dict(intent.update_values))
        else:
            stmt = stmt.on_conflict_do_nothing(index_elements=list(intent.conflict_columns))
        session.execute(stmt)
    else:
        raise TypeError(f"Unknown write intent {intent!r}")


async def run_with_retry(
    op: str,
    fn: Callable[[], T],
    ctx: Optional[Dict[str, Any]] = None,
    *,
    attempts: Optional[int] = None,
    base_delay: Optional[float] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Run a synchronous store operation, retrying lock/busy failures.

    Delay grows linearly: ``base_delay * attempt``. Non-retryable errors are
    re-raised on the first failure.
    """
    attempts = max(1, attempts or settings.retry_attempts)
    base_delay = settings.retry_base_delay_seconds if base_delay is None else base_delay
    ctx_text = json.dumps(ctx, default=str, sort_keys=True) if ctx else None

    # The final attempt always returns or raises.
    for attempt in range(1, attempts + 1):
        try:
            return fn()
        except Exception as exc:
            classified = classify_error(exc)
            will_retry = classified.retryable and attempt < attempts
            logger.error(
                "store op failed op=%s attempt=%d/%d willRetry=%s kind=%s error=%s cause=%s ctx=%s",
                op,
                attempt,
                attempts,
                will_retry,
                classified.kind.value,
                classified.message,
                classified.cause,
                ctx_text,
            )
            if not will_retry:
                if classified.retryable:
                    logger.error("store op exhausted op=%s attempts=%d ctx=%s", op, attempts, ctx_text)
                raise
        await sleep(base_delay * attempt)


class BatchWriter:
    """Applies lists of write intents atomically under the retry policy."""

    def __init__(self, *, attempts: Optional[int] = None, base_delay: Optional[float] = None):
        self.attempts = attempts
        self.base_delay = base_delay

    async def apply(self, op: str, intents: Sequence[WriteIntent], **ctx: Any) -> int:
        intents = list(intents)
        if not intents:
            return 0

        def _execute() -> int:
            with session_scope() as session:
                for intent in intents:
                    apply_intent(session, intent)
            return len(intents)

        return await self.run(op, _execute, count=len(intents), **ctx)

    async def run(self, op: str, fn: Callable[[], T], **ctx: Any) -> T:
        return await run_with_retry(op, fn, ctx or None, attempts=self.attempts, base_delay=self.base_delay)
