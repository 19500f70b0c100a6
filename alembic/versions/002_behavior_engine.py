"""Behavior engine tables.

Creates penalty_rules, applied_penalties, offense_counters, reward_locks,
streaks and family_goals. Rows that are read-modify-written carry a version
column for optimistic concurrency.

Revision ID: 002_behavior_engine
Revises: 001_families_and_activity
Create Date: 2026-10-06
"""

from collections.abc import Sequence

from alembic import op

revision: str = "002_behavior_engine"
down_revision: str | None = "001_families_and_activity"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # --- Penalty Rules ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS penalty_rules (
            id BIGSERIAL PRIMARY KEY,
            family_id BIGINT NOT NULL REFERENCES families(id) ON DELETE CASCADE,
            name VARCHAR(128) NOT NULL,
            description TEXT,
            trigger VARCHAR(32) NOT NULL,
            penalty_type VARCHAR(32) NOT NULL,
            severity VARCHAR(16) NOT NULL,
            conditions JSONB NOT NULL DEFAULT '{}',
            consequences JSONB NOT NULL DEFAULT '{}',
            escalation JSONB,
            is_active BOOLEAN NOT NULL DEFAULT true,
            auto_apply BOOLEAN NOT NULL DEFAULT true,
            appealable BOOLEAN NOT NULL DEFAULT true,
            created_by BIGINT,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_penalty_rules_family_active
        ON penalty_rules(family_id, trigger) WHERE is_active = true
    """)

    # --- Applied Penalties ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS applied_penalties (
            id BIGSERIAL PRIMARY KEY,
            family_id BIGINT NOT NULL REFERENCES families(id) ON DELETE CASCADE,
            child_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            rule_id BIGINT REFERENCES penalty_rules(id),
            rule_name VARCHAR(128) NOT NULL,
            trigger VARCHAR(32) NOT NULL,
            penalty_type VARCHAR(32) NOT NULL,
            severity VARCHAR(16) NOT NULL,
            appealable BOOLEAN NOT NULL DEFAULT true,
            consequences JSONB NOT NULL DEFAULT '{}',
            offense_number INTEGER NOT NULL DEFAULT 1,
            source_event JSONB,
            status VARCHAR(16) NOT NULL DEFAULT 'active'
                CHECK (status IN ('active', 'completed', 'cancelled', 'expired')),
            applied_by VARCHAR(64) NOT NULL DEFAULT 'system',
            applied_at TIMESTAMPTZ NOT NULL,
            expires_at TIMESTAMPTZ,
            completed_at TIMESTAMPTZ,
            cancelled_at TIMESTAMPTZ,
            cancel_reason TEXT,
            expired_at TIMESTAMPTZ,
            xp_deducted INTEGER NOT NULL DEFAULT 0,
            xp_balance_after INTEGER,
            remedial_quest_id BIGINT,
            appealed_at TIMESTAMPTZ,
            appeal_reason TEXT,
            appeal_status VARCHAR(16),
            appeal_resolved_at TIMESTAMPTZ,
            appeal_resolved_by BIGINT,
            appeal_notes TEXT,
            version INTEGER NOT NULL DEFAULT 1
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS idx_applied_penalties_family ON applied_penalties(family_id, applied_at)")
    op.execute("CREATE INDEX IF NOT EXISTS idx_applied_penalties_child ON applied_penalties(child_id, status)")
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_applied_penalties_due
        ON applied_penalties(expires_at) WHERE status = 'active'
    """)

    # --- Offense Counters ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS offense_counters (
            id BIGSERIAL PRIMARY KEY,
            child_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            rule_id BIGINT NOT NULL REFERENCES penalty_rules(id) ON DELETE CASCADE,
            count INTEGER NOT NULL DEFAULT 0,
            last_offense_at TIMESTAMPTZ,
            version INTEGER NOT NULL DEFAULT 1,
            CONSTRAINT uq_offense_counters_child_rule UNIQUE (child_id, rule_id)
        )
    """)

    # --- Reward Locks ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS reward_locks (
            id BIGSERIAL PRIMARY KEY,
            family_id BIGINT NOT NULL REFERENCES families(id) ON DELETE CASCADE,
            child_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            penalty_id BIGINT NOT NULL REFERENCES applied_penalties(id) ON DELETE CASCADE,
            reward_id VARCHAR(64),
            expires_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS idx_reward_locks_child ON reward_locks(child_id)")

    # --- Streaks ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS streaks (
            id BIGSERIAL PRIMARY KEY,
            family_id BIGINT NOT NULL REFERENCES families(id) ON DELETE CASCADE,
            child_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            streak_type VARCHAR(16) NOT NULL DEFAULT 'daily',
            current_length INTEGER NOT NULL DEFAULT 1,
            longest_length INTEGER NOT NULL DEFAULT 1,
            total_active_days INTEGER NOT NULL DEFAULT 1,
            start_date TIMESTAMPTZ NOT NULL,
            last_activity_at TIMESTAMPTZ NOT NULL,
            broken BOOLEAN NOT NULL DEFAULT false,
            broken_at TIMESTAMPTZ,
            version INTEGER NOT NULL DEFAULT 1,
            CONSTRAINT uq_streaks_child_type UNIQUE (child_id, streak_type)
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS idx_streaks_family ON streaks(family_id)")
    op.execute("CREATE INDEX IF NOT EXISTS idx_streaks_last_activity ON streaks(last_activity_at)")

    # --- Family Goals ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS family_goals (
            id BIGSERIAL PRIMARY KEY,
            family_id BIGINT NOT NULL REFERENCES families(id) ON DELETE CASCADE,
            title VARCHAR(128) NOT NULL,
            goal_type VARCHAR(32) NOT NULL,
            target_value INTEGER NOT NULL CHECK (target_value > 0),
            target_category VARCHAR(64),
            current_progress INTEGER NOT NULL DEFAULT 0,
            status VARCHAR(16) NOT NULL DEFAULT 'active',
            completed_at TIMESTAMPTZ,
            created_by BIGINT,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            version INTEGER NOT NULL DEFAULT 1
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS idx_family_goals_family ON family_goals(family_id, status)")


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS family_goals CASCADE")
    op.execute("DROP TABLE IF EXISTS streaks CASCADE")
    op.execute("DROP TABLE IF EXISTS reward_locks CASCADE")
    op.execute("DROP TABLE IF EXISTS offense_counters CASCADE")
    op.execute("DROP TABLE IF EXISTS applied_penalties CASCADE")
    op.execute("DROP TABLE IF EXISTS penalty_rules CASCADE")
