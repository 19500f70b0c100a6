"""Analytics and audit tables.

Creates analytics_reports, daily_analytics (real-time counters, one row per
family and local day) and system_logs.

Revision ID: 003_analytics
Revises: 002_behavior_engine
Create Date: 2026-10-08
"""

from collections.abc import Sequence

from alembic import op

revision: str = "003_analytics"
down_revision: str | None = "002_behavior_engine"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE IF NOT EXISTS analytics_reports (
            id BIGSERIAL PRIMARY KEY,
            family_id BIGINT NOT NULL REFERENCES families(id) ON DELETE CASCADE,
            report_type VARCHAR(16) NOT NULL CHECK (report_type IN ('daily', 'weekly')),
            period_start DATE NOT NULL,
            period_end DATE NOT NULL,
            metrics JSONB NOT NULL DEFAULT '{}',
            insights JSONB NOT NULL DEFAULT '[]',
            child_profiles JSONB NOT NULL DEFAULT '[]',
            generated_by VARCHAR(64) NOT NULL DEFAULT 'system',
            generated_at TIMESTAMPTZ NOT NULL
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_analytics_reports_family
        ON analytics_reports(family_id, report_type, period_start DESC)
    """)

    op.execute("""
        CREATE TABLE IF NOT EXISTS daily_analytics (
            id BIGSERIAL PRIMARY KEY,
            family_id BIGINT NOT NULL REFERENCES families(id) ON DELETE CASCADE,
            day DATE NOT NULL,
            quests_completed INTEGER NOT NULL DEFAULT 0,
            xp_earned INTEGER NOT NULL DEFAULT 0,
            rewards_redeemed INTEGER NOT NULL DEFAULT 0,
            xp_spent INTEGER NOT NULL DEFAULT 0,
            updated_at TIMESTAMPTZ,
            CONSTRAINT uq_daily_analytics_family_day UNIQUE (family_id, day)
        )
    """)

    op.execute("""
        CREATE TABLE IF NOT EXISTS system_logs (
            id BIGSERIAL PRIMARY KEY,
            log_type VARCHAR(64) NOT NULL,
            status VARCHAR(16) NOT NULL DEFAULT 'success',
            summary JSONB NOT NULL DEFAULT '{}',
            created_at TIMESTAMPTZ NOT NULL
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS idx_system_logs_type ON system_logs(log_type, created_at DESC)")


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS system_logs CASCADE")
    op.execute("DROP TABLE IF EXISTS daily_analytics CASCADE")
    op.execute("DROP TABLE IF EXISTS analytics_reports CASCADE")
