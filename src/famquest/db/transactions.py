"""Transactional read-modify-write and atomic counter helpers."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from typing import Any, TypeVar

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from famquest.config import get_settings
from famquest.errors import ConcurrencyConflict

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def run_transaction(
    db: AsyncSession,
    fn: Callable[[AsyncSession], Awaitable[T]],
    *,
    attempts: int | None = None,
    label: str = "transaction",
) -> T:
    """Run ``fn`` and commit, retrying the whole unit on a write conflict.

    ``fn`` must (re)load every row it mutates inside the call, with
    ``populate_existing`` so a retry sees the winner's committed state. A
    version mismatch (``StaleDataError``) or a lost insert race on a unique key
    (``IntegrityError``) rolls back and re-runs ``fn``. Raises
    ``ConcurrencyConflict`` once ``attempts`` are exhausted. Any other error
    rolls back and propagates unchanged.
    """
    if attempts is None:
        attempts = get_settings().transaction_max_attempts

    for attempt in range(1, attempts + 1):
        try:
            result = await fn(db)
            await db.commit()
            return result
        except (StaleDataError, IntegrityError) as exc:
            await db.rollback()
            logger.info(
                "%s conflict on attempt %d/%d: %s",
                label, attempt, attempts, type(exc).__name__,
            )
        except Exception:
            await db.rollback()
            raise

    msg = f"{label} could not be committed after {attempts} attempts"
    raise ConcurrencyConflict(msg)


def _dialect_insert(db: AsyncSession) -> Callable[..., Any]:
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return pg_insert
    if dialect == "sqlite":
        return sqlite_insert
    msg = f"Atomic upsert not supported for dialect '{dialect}'"
    raise NotImplementedError(msg)


async def increment_counters(
    db: AsyncSession,
    model: type,
    key: dict[str, Any],
    increments: dict[str, int],
    *,
    touch_column: str | None = "updated_at",
) -> None:
    """Atomically add ``increments`` to the row identified by ``key``.

    Creates the row when missing. Implemented as a single
    ``INSERT ... ON CONFLICT (key) DO UPDATE SET col = col + excluded.col``
    so concurrent increments commute. Does not commit.
    """
    table = model.__table__  # type: ignore[attr-defined]
    values: dict[str, Any] = {**key, **increments}
    if touch_column:
        values[touch_column] = datetime.now(timezone.utc)

    stmt = _dialect_insert(db)(table).values(**values)
    set_: dict[str, Any] = {col: table.c[col] + stmt.excluded[col] for col in increments}
    if touch_column:
        set_[touch_column] = stmt.excluded[touch_column]
    stmt = stmt.on_conflict_do_update(index_elements=list(key), set_=set_)
    await db.execute(stmt)
