"""Family, member and child profile lookups shared by the engine."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from famquest.config import get_settings
from famquest.db.models import ChildProfile, Family, User
from famquest.errors import NotFound, PermissionDenied

logger = logging.getLogger(__name__)


def resolve_timezone(name: str | None) -> ZoneInfo:
    """ZoneInfo for a family's timezone name, falling back to the configured default."""
    fallback = get_settings().default_family_timezone
    try:
        return ZoneInfo(name or fallback)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown timezone %r, using %s", name, fallback)
        return ZoneInfo(fallback)


def local_day(moment: datetime, tz: ZoneInfo) -> date:
    """Calendar date of ``moment`` in ``tz``."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(tz).date()


def day_bounds(day: date, tz: ZoneInfo, days: int = 1) -> tuple[datetime, datetime]:
    """UTC [start, end) covering ``days`` local calendar days starting at ``day``."""
    start = datetime(day.year, day.month, day.day, tzinfo=tz)
    end_day = day + timedelta(days=days)
    end = datetime(end_day.year, end_day.month, end_day.day, tzinfo=tz)
    return start.astimezone(timezone.utc), end.astimezone(timezone.utc)


async def get_family_timezone(db: AsyncSession, family_id: int) -> ZoneInfo:
    result = await db.execute(select(Family.timezone).where(Family.id == family_id))
    return resolve_timezone(result.scalar_one_or_none())


async def list_family_ids(db: AsyncSession) -> list[int]:
    result = await db.execute(select(Family.id).order_by(Family.id))
    return list(result.scalars())


async def list_children(db: AsyncSession, family_id: int) -> list[User]:
    result = await db.execute(
        select(User)
        .where(User.family_id == family_id, User.role == "child")
        .order_by(User.id)
    )
    return list(result.scalars())


async def get_child(db: AsyncSession, child_id: int, family_id: int | None = None) -> User:
    """Load a child member, optionally asserting family ownership."""
    child = await db.get(User, child_id)
    if child is None or child.role != "child":
        msg = f"Child {child_id} not found"
        raise NotFound(msg)
    if family_id is not None and child.family_id != family_id:
        msg = "Child belongs to a different family"
        raise PermissionDenied(msg)
    return child


async def get_child_profile(
    db: AsyncSession, child_id: int, *, refresh: bool = False
) -> ChildProfile:
    stmt = select(ChildProfile).where(ChildProfile.user_id == child_id)
    if refresh:
        stmt = stmt.execution_options(populate_existing=True)
    result = await db.execute(stmt)
    profile = result.scalar_one_or_none()
    if profile is None:
        msg = f"Child profile {child_id} not found"
        raise NotFound(msg)
    return profile


@dataclass(frozen=True)
class Actor:
    """Detached identity of the member performing a callable operation."""

    user_id: int
    family_id: int
    role: str

    @classmethod
    def of(cls, user: User) -> Actor:
        return cls(user_id=user.id, family_id=user.family_id, role=user.role)

    @property
    def is_parent(self) -> bool:
        return self.role == "parent"


def require_family(actor: Actor, family_id: int) -> None:
    if actor.family_id != family_id:
        msg = "You do not belong to this family"
        raise PermissionDenied(msg)


def require_parent(actor: Actor) -> None:
    if not actor.is_parent:
        msg = "Only a parent can perform this action"
        raise PermissionDenied(msg)
