"""XP balance changes with an idempotent ledger.

Both functions run inside the caller's transaction (see
``famquest.db.transactions.run_transaction``); neither commits.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from famquest.behavior.family_service import get_child_profile
from famquest.db.models import XPLedger

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class XPChange:
    requested: int
    applied: int
    balance_after: int
    duplicate: bool = False


async def _already_recorded(db: AsyncSession, idempotency_key: str) -> XPLedger | None:
    result = await db.execute(
        select(XPLedger).where(XPLedger.idempotency_key == idempotency_key)
    )
    return result.scalar_one_or_none()


async def grant_xp(
    db: AsyncSession,
    child_id: int,
    amount: int,
    source: str,
    source_id: str,
    idempotency_key: str,
    description: str | None = None,
    *,
    count_quest: bool = False,
) -> XPChange:
    """Credit earned XP and remember it as the child's most recent earning."""
    profile = await get_child_profile(db, child_id, refresh=True)
    if await _already_recorded(db, idempotency_key):
        return XPChange(amount, 0, profile.total_xp, duplicate=True)

    now = datetime.now(timezone.utc)
    db.add(XPLedger(
        user_id=child_id,
        amount=amount,
        source=source,
        source_id=source_id,
        description=description,
        idempotency_key=idempotency_key,
        created_at=now,
    ))
    profile.total_xp += amount
    profile.recent_xp_earned = amount
    if count_quest:
        profile.quests_completed += 1
    profile.updated_at = now
    await db.flush()
    return XPChange(amount, amount, profile.total_xp)


async def deduct_xp(
    db: AsyncSession,
    child_id: int,
    amount: int,
    source: str,
    source_id: str,
    idempotency_key: str,
    description: str | None = None,
) -> XPChange:
    """Deduct up to ``amount`` XP, clamping the balance at zero.

    The ledger records the amount actually removed, which is smaller than the
    request when the balance is insufficient.
    """
    profile = await get_child_profile(db, child_id, refresh=True)
    existing = await _already_recorded(db, idempotency_key)
    if existing is not None:
        return XPChange(amount, -existing.amount, profile.total_xp, duplicate=True)

    applied = min(max(amount, 0), max(profile.total_xp, 0))
    now = datetime.now(timezone.utc)
    profile.total_xp -= applied
    profile.updated_at = now
    db.add(XPLedger(
        user_id=child_id,
        amount=-applied,
        source=source,
        source_id=source_id,
        description=description,
        idempotency_key=idempotency_key,
        created_at=now,
    ))
    await db.flush()

    if applied < amount:
        logger.info(
            "XP deduction clamped for child %s: requested %d, applied %d",
            child_id, amount, applied,
        )
    return XPChange(amount, applied, profile.total_xp)
