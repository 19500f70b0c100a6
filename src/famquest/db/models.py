"""ORM models for the family quest behavior engine.

Mutable documents that are updated through read-modify-write carry a
``version`` column wired to SQLAlchemy's optimistic version counter; a
concurrent writer surfaces as ``StaleDataError`` at flush time and is retried
by ``famquest.db.transactions.run_transaction``.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any

from sqlalchemy import (
    BigInteger,
    Boolean,
    Date,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
    true,
)
from sqlalchemy.orm import Mapped, mapped_column

from famquest.db.base import Base, BigIntPK, JSONType, UTCDateTime


# ---------------------------------------------------------------------------
# Families & members
# ---------------------------------------------------------------------------


class Family(Base):
    """Maps to the 'families' table."""

    __tablename__ = "families"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    timezone: Mapped[str] = mapped_column(String(64), nullable=False, default="UTC", server_default="UTC")
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, server_default=func.now())


class User(Base):
    """Maps to the 'users' table. Parents and children share one table."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    family_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("families.id", ondelete="CASCADE"), nullable=False, index=True)
    display_name: Mapped[str] = mapped_column(String(64), nullable=False)
    role: Mapped[str] = mapped_column(String(16), nullable=False)  # parent | child
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, server_default=func.now())


class ChildProfile(Base):
    """Maps to the 'child_profiles' table. Denormalized XP balance per child."""

    __tablename__ = "child_profiles"

    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    family_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("families.id", ondelete="CASCADE"), nullable=False, index=True)
    total_xp: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    recent_xp_earned: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    quests_completed: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default="1")
    updated_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    __mapper_args__ = {"version_id_col": version}  # noqa: RUF012


class XPLedger(Base):
    """Maps to the 'xp_ledger' table. Every XP delta, keyed for idempotency."""

    __tablename__ = "xp_ledger"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    source: Mapped[str] = mapped_column(String(32), nullable=False)
    source_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    idempotency_key: Mapped[str] = mapped_column(String(256), unique=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, server_default=func.now())


# ---------------------------------------------------------------------------
# Penalty rules & applied penalties
# ---------------------------------------------------------------------------


class PenaltyRule(Base):
    """Maps to the 'penalty_rules' table. Soft-disabled, never deleted."""

    __tablename__ = "penalty_rules"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    family_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("families.id", ondelete="CASCADE"), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    trigger: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    penalty_type: Mapped[str] = mapped_column(String(32), nullable=False)
    severity: Mapped[str] = mapped_column(String(16), nullable=False)
    conditions: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    consequences: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    escalation: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=true())
    auto_apply: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=true())
    appealable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=true())
    created_by: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, server_default=func.now())
    updated_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)


class AppliedPenalty(Base):
    """Maps to the 'applied_penalties' table."""

    __tablename__ = "applied_penalties"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    family_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("families.id", ondelete="CASCADE"), nullable=False, index=True)
    child_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    rule_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey("penalty_rules.id"), nullable=True)
    # Snapshot of the rule at application time
    rule_name: Mapped[str] = mapped_column(String(128), nullable=False)
    trigger: Mapped[str] = mapped_column(String(32), nullable=False)
    penalty_type: Mapped[str] = mapped_column(String(32), nullable=False)
    severity: Mapped[str] = mapped_column(String(16), nullable=False)
    appealable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    consequences: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    offense_number: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default="1")
    source_event: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)

    status: Mapped[str] = mapped_column(String(16), nullable=False, default="active", index=True)
    applied_by: Mapped[str] = mapped_column(String(64), nullable=False, default="system")
    applied_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    expires_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True, index=True)
    completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    cancel_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    expired_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    # Enforcement outcome
    xp_deducted: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    xp_balance_after: Mapped[int | None] = mapped_column(Integer, nullable=True)
    remedial_quest_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    # Appeal
    appealed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    appeal_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    appeal_status: Mapped[str | None] = mapped_column(String(16), nullable=True)  # pending | approved | denied
    appeal_resolved_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    appeal_resolved_by: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    appeal_notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default="1")

    __mapper_args__ = {"version_id_col": version}  # noqa: RUF012


class OffenseCounter(Base):
    """Maps to the 'offense_counters' table. Escalation state per child+rule."""

    __tablename__ = "offense_counters"
    __table_args__ = (UniqueConstraint("child_id", "rule_id", name="uq_offense_counters_child_rule"),)

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    child_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    rule_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("penalty_rules.id", ondelete="CASCADE"), nullable=False)
    count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_offense_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default="1")

    __mapper_args__ = {"version_id_col": version}  # noqa: RUF012


class RewardLock(Base):
    """Maps to the 'reward_locks' table."""

    __tablename__ = "reward_locks"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    family_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("families.id", ondelete="CASCADE"), nullable=False)
    child_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    penalty_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("applied_penalties.id", ondelete="CASCADE"), nullable=False)
    reward_id: Mapped[str | None] = mapped_column(String(64), nullable=True)  # None locks every reward
    expires_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, server_default=func.now())


# ---------------------------------------------------------------------------
# Streaks & goals
# ---------------------------------------------------------------------------


class Streak(Base):
    """Maps to the 'streaks' table. One row per child+type."""

    __tablename__ = "streaks"
    __table_args__ = (UniqueConstraint("child_id", "streak_type", name="uq_streaks_child_type"),)

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    family_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("families.id", ondelete="CASCADE"), nullable=False, index=True)
    child_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    streak_type: Mapped[str] = mapped_column(String(16), nullable=False, default="daily")
    current_length: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    longest_length: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    total_active_days: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    start_date: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    last_activity_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, index=True)
    broken: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    broken_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default="1")

    __mapper_args__ = {"version_id_col": version}  # noqa: RUF012


class FamilyGoal(Base):
    """Maps to the 'family_goals' table."""

    __tablename__ = "family_goals"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    family_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("families.id", ondelete="CASCADE"), nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(128), nullable=False)
    goal_type: Mapped[str] = mapped_column(String(32), nullable=False)  # total_quests | total_xp | category_quests
    target_value: Mapped[int] = mapped_column(Integer, nullable=False)
    target_category: Mapped[str | None] = mapped_column(String(64), nullable=True)
    current_progress: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="active", index=True)
    completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    created_by: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, server_default=func.now())
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default="1")

    __mapper_args__ = {"version_id_col": version}  # noqa: RUF012


# ---------------------------------------------------------------------------
# Activity source documents
# ---------------------------------------------------------------------------


class QuestTemplate(Base):
    """Maps to the 'quest_templates' table."""

    __tablename__ = "quest_templates"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    family_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("families.id", ondelete="CASCADE"), nullable=False)
    title: Mapped[str] = mapped_column(String(128), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    category: Mapped[str] = mapped_column(String(64), nullable=False, default="general")
    difficulty: Mapped[str] = mapped_column(String(16), nullable=False, default="easy")
    xp_reward: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class Quest(Base):
    """Maps to the 'quests' table."""

    __tablename__ = "quests"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    family_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("families.id", ondelete="CASCADE"), nullable=False, index=True)
    assigned_to: Mapped[int | None] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    title: Mapped[str] = mapped_column(String(128), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    category: Mapped[str] = mapped_column(String(64), nullable=False, default="general")
    difficulty: Mapped[str] = mapped_column(String(16), nullable=False, default="easy")
    xp_reward: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")
    due_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True, index=True)
    template_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey("quest_templates.id"), nullable=True)
    penalty_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, server_default=func.now())


class QuestCompletion(Base):
    """Maps to the 'quest_completions' table. Immutable event log."""

    __tablename__ = "quest_completions"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    family_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("families.id", ondelete="CASCADE"), nullable=False, index=True)
    child_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    quest_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey("quests.id", ondelete="SET NULL"), nullable=True)
    category: Mapped[str] = mapped_column(String(64), nullable=False, default="general")
    difficulty: Mapped[str | None] = mapped_column(String(16), nullable=True)
    xp_earned: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    time_to_complete_minutes: Mapped[float | None] = mapped_column(Float, nullable=True)
    hours_late: Mapped[float | None] = mapped_column(Float, nullable=True)
    parent_rating: Mapped[int | None] = mapped_column(Integer, nullable=True)
    completed_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, index=True)


class RewardRedemption(Base):
    """Maps to the 'reward_redemptions' table. Immutable event log."""

    __tablename__ = "reward_redemptions"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    family_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("families.id", ondelete="CASCADE"), nullable=False, index=True)
    child_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    reward_id: Mapped[str] = mapped_column(String(64), nullable=False)
    reward_title: Mapped[str | None] = mapped_column(String(128), nullable=True)
    xp_cost: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    redeemed_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, index=True)


class BehaviorFlag(Base):
    """Maps to the 'behavior_flags' table. Parent-reported behavior awaiting the sweep."""

    __tablename__ = "behavior_flags"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    family_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("families.id", ondelete="CASCADE"), nullable=False, index=True)
    child_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    trigger: Mapped[str] = mapped_column(String(32), nullable=False)
    behavior_type: Mapped[str | None] = mapped_column(String(64), nullable=True)
    note: Mapped[str | None] = mapped_column(Text, nullable=True)
    flagged_by: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    processed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, index=True)
    processed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)


# ---------------------------------------------------------------------------
# Analytics & audit
# ---------------------------------------------------------------------------


class AnalyticsReport(Base):
    """Maps to the 'analytics_reports' table. Written once, never updated."""

    __tablename__ = "analytics_reports"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    family_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("families.id", ondelete="CASCADE"), nullable=False, index=True)
    report_type: Mapped[str] = mapped_column(String(16), nullable=False)  # daily | weekly
    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    period_end: Mapped[date] = mapped_column(Date, nullable=False)
    metrics: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    insights: Mapped[list[dict[str, Any]]] = mapped_column(JSONType, nullable=False, default=list)
    child_profiles: Mapped[list[dict[str, Any]]] = mapped_column(JSONType, nullable=False, default=list)
    generated_by: Mapped[str] = mapped_column(String(64), nullable=False, default="system")
    generated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)


class DailyAnalytics(Base):
    """Maps to the 'daily_analytics' table. Real-time counters, increment only."""

    __tablename__ = "daily_analytics"
    __table_args__ = (UniqueConstraint("family_id", "day", name="uq_daily_analytics_family_day"),)

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    family_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("families.id", ondelete="CASCADE"), nullable=False)
    day: Mapped[date] = mapped_column(Date, nullable=False)
    quests_completed: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    xp_earned: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    rewards_redeemed: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    xp_spent: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    updated_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)


class SystemLog(Base):
    """Maps to the 'system_logs' table. One row per scheduled run."""

    __tablename__ = "system_logs"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    log_type: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="success")
    summary: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
