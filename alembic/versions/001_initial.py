"""Initial schema: users, friendships, deadlines, collaborators, notifications.

Revision ID: 001_initial
Revises: None
Create Date: 2026-10-18
"""

from collections.abc import Sequence

from alembic import op

revision: str = "001_initial"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # --- Users ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS users (
            id BIGSERIAL PRIMARY KEY,
            email VARCHAR(320) UNIQUE NOT NULL,
            username VARCHAR(64) UNIQUE NOT NULL,
            full_name VARCHAR(128),
            password_hash VARCHAR(256),
            notification_preferences JSONB,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)

    # --- Friendships ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS friendships (
            id BIGSERIAL PRIMARY KEY,
            user_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            friend_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            status VARCHAR(16) NOT NULL DEFAULT 'pending',
            requested_by BIGINT,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_friendships_pair UNIQUE (user_id, friend_id),
            CONSTRAINT ck_friendships_status CHECK (status IN ('pending', 'accepted', 'declined', 'blocked'))
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS idx_friendships_friend ON friendships(friend_id)")

    # --- Deadlines ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS deadlines (
            id BIGSERIAL PRIMARY KEY,
            owner_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            title VARCHAR(255) NOT NULL,
            description TEXT,
            due_date TIMESTAMPTZ NOT NULL,
            priority VARCHAR(16) NOT NULL DEFAULT 'medium',
            status VARCHAR(16) NOT NULL DEFAULT 'pending',
            category VARCHAR(50),
            subject VARCHAR(100),
            estimated_hours INTEGER,
            actual_hours INTEGER,
            completion_percentage INTEGER NOT NULL DEFAULT 0,
            notes TEXT,
            origin_deadline_id BIGINT REFERENCES deadlines(id) ON DELETE SET NULL,
            notifications_sent JSONB NOT NULL DEFAULT '{}'::jsonb,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            completed_at TIMESTAMPTZ,
            CONSTRAINT ck_deadlines_status CHECK (status IN ('pending', 'in_progress', 'completed', 'overdue')),
            CONSTRAINT ck_deadlines_priority CHECK (priority IN ('low', 'medium', 'high', 'urgent')),
            CONSTRAINT ck_deadlines_completion CHECK (completion_percentage >= 0 AND completion_percentage <= 100)
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS idx_deadlines_owner ON deadlines(owner_id)")
    op.execute("CREATE INDEX IF NOT EXISTS idx_deadlines_due_status ON deadlines(due_date, status)")
    op.execute("CREATE INDEX IF NOT EXISTS idx_deadlines_origin ON deadlines(origin_deadline_id)")

    # --- Deadline collaborators ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS deadline_collaborators (
            id BIGSERIAL PRIMARY KEY,
            deadline_id BIGINT NOT NULL REFERENCES deadlines(id) ON DELETE CASCADE,
            user_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            role VARCHAR(20) NOT NULL DEFAULT 'collaborator',
            can_edit BOOLEAN NOT NULL DEFAULT true,
            can_delete BOOLEAN NOT NULL DEFAULT false,
            joined_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_deadline_collaborators_pair UNIQUE (deadline_id, user_id),
            CONSTRAINT ck_deadline_collaborators_role CHECK (role IN ('owner', 'collaborator'))
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS idx_deadline_collaborators_user ON deadline_collaborators(user_id)")

    # --- In-app notifications ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS notifications (
            id BIGSERIAL PRIMARY KEY,
            user_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            deadline_id BIGINT REFERENCES deadlines(id) ON DELETE CASCADE,
            type VARCHAR(50) NOT NULL,
            title VARCHAR(255) NOT NULL,
            message TEXT NOT NULL,
            data JSONB NOT NULL DEFAULT '{}'::jsonb,
            priority VARCHAR(16) NOT NULL DEFAULT 'normal',
            action_url VARCHAR(255),
            is_read BOOLEAN NOT NULL DEFAULT false,
            expires_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS idx_notifications_user ON notifications(user_id)")
    op.execute("CREATE INDEX IF NOT EXISTS idx_notifications_deadline ON notifications(deadline_id)")
    op.execute("CREATE INDEX IF NOT EXISTS idx_notifications_created ON notifications(created_at)")
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_notifications_user_unread
        ON notifications(user_id) WHERE is_read = false
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS notifications")
    op.execute("DROP TABLE IF EXISTS deadline_collaborators")
    op.execute("DROP TABLE IF EXISTS deadlines")
    op.execute("DROP TABLE IF EXISTS friendships")
    op.execute("DROP TABLE IF EXISTS users")
