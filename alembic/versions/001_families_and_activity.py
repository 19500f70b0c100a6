"""Families, members and activity source documents.

Creates families, users, child_profiles, xp_ledger, quest_templates, quests,
quest_completions, reward_redemptions and behavior_flags.

Revision ID: 001_families_and_activity
Revises:
Create Date: 2026-10-06
"""

from collections.abc import Sequence

from alembic import op

revision: str = "001_families_and_activity"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # --- Families & members ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS families (
            id BIGSERIAL PRIMARY KEY,
            name VARCHAR(128) NOT NULL,
            timezone VARCHAR(64) NOT NULL DEFAULT 'UTC',
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS users (
            id BIGSERIAL PRIMARY KEY,
            family_id BIGINT NOT NULL REFERENCES families(id) ON DELETE CASCADE,
            display_name VARCHAR(64) NOT NULL,
            role VARCHAR(16) NOT NULL CHECK (role IN ('parent', 'child')),
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS idx_users_family ON users(family_id)")

    op.execute("""
        CREATE TABLE IF NOT EXISTS child_profiles (
            user_id BIGINT PRIMARY KEY REFERENCES users(id) ON DELETE CASCADE,
            family_id BIGINT NOT NULL REFERENCES families(id) ON DELETE CASCADE,
            total_xp INTEGER NOT NULL DEFAULT 0 CHECK (total_xp >= 0),
            recent_xp_earned INTEGER NOT NULL DEFAULT 0,
            quests_completed INTEGER NOT NULL DEFAULT 0,
            version INTEGER NOT NULL DEFAULT 1,
            updated_at TIMESTAMPTZ
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS idx_child_profiles_family ON child_profiles(family_id)")

    op.execute("""
        CREATE TABLE IF NOT EXISTS xp_ledger (
            id BIGSERIAL PRIMARY KEY,
            user_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            amount INTEGER NOT NULL,
            source VARCHAR(32) NOT NULL,
            source_id VARCHAR(128),
            description TEXT,
            idempotency_key VARCHAR(256) UNIQUE NOT NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS idx_xp_ledger_user ON xp_ledger(user_id, created_at DESC)")

    # --- Quests ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS quest_templates (
            id BIGSERIAL PRIMARY KEY,
            family_id BIGINT NOT NULL REFERENCES families(id) ON DELETE CASCADE,
            title VARCHAR(128) NOT NULL,
            description TEXT,
            category VARCHAR(64) NOT NULL DEFAULT 'general',
            difficulty VARCHAR(16) NOT NULL DEFAULT 'easy',
            xp_reward INTEGER NOT NULL DEFAULT 0
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS quests (
            id BIGSERIAL PRIMARY KEY,
            family_id BIGINT NOT NULL REFERENCES families(id) ON DELETE CASCADE,
            assigned_to BIGINT REFERENCES users(id) ON DELETE SET NULL,
            title VARCHAR(128) NOT NULL,
            description TEXT,
            category VARCHAR(64) NOT NULL DEFAULT 'general',
            difficulty VARCHAR(16) NOT NULL DEFAULT 'easy',
            xp_reward INTEGER NOT NULL DEFAULT 0,
            status VARCHAR(16) NOT NULL DEFAULT 'pending',
            due_at TIMESTAMPTZ,
            template_id BIGINT REFERENCES quest_templates(id),
            penalty_id BIGINT,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS idx_quests_family ON quests(family_id)")
    op.execute("CREATE INDEX IF NOT EXISTS idx_quests_assigned ON quests(assigned_to)")
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_quests_pending_due
        ON quests(due_at) WHERE status = 'pending'
    """)

    op.execute("""
        CREATE TABLE IF NOT EXISTS quest_completions (
            id BIGSERIAL PRIMARY KEY,
            family_id BIGINT NOT NULL REFERENCES families(id) ON DELETE CASCADE,
            child_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            quest_id BIGINT REFERENCES quests(id) ON DELETE SET NULL,
            category VARCHAR(64) NOT NULL DEFAULT 'general',
            difficulty VARCHAR(16),
            xp_earned INTEGER NOT NULL DEFAULT 0,
            time_to_complete_minutes DOUBLE PRECISION,
            hours_late DOUBLE PRECISION,
            parent_rating INTEGER,
            completed_at TIMESTAMPTZ NOT NULL
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS idx_completions_family_time ON quest_completions(family_id, completed_at)")
    op.execute("CREATE INDEX IF NOT EXISTS idx_completions_child ON quest_completions(child_id)")
    op.execute("CREATE INDEX IF NOT EXISTS idx_completions_quest ON quest_completions(quest_id)")

    # --- Rewards & flags ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS reward_redemptions (
            id BIGSERIAL PRIMARY KEY,
            family_id BIGINT NOT NULL REFERENCES families(id) ON DELETE CASCADE,
            child_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            reward_id VARCHAR(64) NOT NULL,
            reward_title VARCHAR(128),
            xp_cost INTEGER NOT NULL DEFAULT 0,
            redeemed_at TIMESTAMPTZ NOT NULL
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS idx_redemptions_family_time ON reward_redemptions(family_id, redeemed_at)")

    op.execute("""
        CREATE TABLE IF NOT EXISTS behavior_flags (
            id BIGSERIAL PRIMARY KEY,
            family_id BIGINT NOT NULL REFERENCES families(id) ON DELETE CASCADE,
            child_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            trigger VARCHAR(32) NOT NULL,
            behavior_type VARCHAR(64),
            note TEXT,
            flagged_by BIGINT,
            processed BOOLEAN NOT NULL DEFAULT false,
            processed_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_behavior_flags_unprocessed
        ON behavior_flags(family_id) WHERE processed = false
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS behavior_flags CASCADE")
    op.execute("DROP TABLE IF EXISTS reward_redemptions CASCADE")
    op.execute("DROP TABLE IF EXISTS quest_completions CASCADE")
    op.execute("DROP TABLE IF EXISTS quests CASCADE")
    op.execute("DROP TABLE IF EXISTS quest_templates CASCADE")
    op.execute("DROP TABLE IF EXISTS xp_ledger CASCADE")
    op.execute("DROP TABLE IF EXISTS child_profiles CASCADE")
    op.execute("DROP TABLE IF EXISTS users CASCADE")
    op.execute("DROP TABLE IF EXISTS families CASCADE")
