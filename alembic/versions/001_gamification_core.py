"""Gamification core tables.

Creates the roster tables the engine reads (when the roster service has not
already), the activity projections, the XP ledger, badges, challenges,
leaderboards, outbound events and scheduler job claims.

Revision ID: 001_gamification_core
Revises:
Create Date: 2026-10-19
"""

from collections.abc import Sequence

from alembic import op

revision: str = "001_gamification_core"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # --- Roster (owned by the roster service) ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS students (
            id SERIAL PRIMARY KEY,
            display_name VARCHAR(128),
            grade_level VARCHAR(16),
            school_id INTEGER,
            role VARCHAR(16) NOT NULL DEFAULT 'student',
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS ix_students_school_id ON students(school_id)")
    op.execute("""
        CREATE TABLE IF NOT EXISTS classes (
            id SERIAL PRIMARY KEY,
            name VARCHAR(128) NOT NULL,
            grade_level VARCHAR(16),
            school_id INTEGER NOT NULL,
            is_active BOOLEAN NOT NULL DEFAULT true
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS class_enrollments (
            id SERIAL PRIMARY KEY,
            student_id INTEGER NOT NULL REFERENCES students(id) ON DELETE CASCADE,
            class_id INTEGER NOT NULL REFERENCES classes(id) ON DELETE CASCADE,
            is_active BOOLEAN NOT NULL DEFAULT true,
            CONSTRAINT uq_class_enrollments_student_class UNIQUE (student_id, class_id)
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS ix_class_enrollments_class_id ON class_enrollments(class_id)")

    # --- Activity projections ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS problem_attempts (
            id SERIAL PRIMARY KEY,
            attempt_id INTEGER UNIQUE NOT NULL,
            student_id INTEGER NOT NULL REFERENCES students(id) ON DELETE CASCADE,
            difficulty VARCHAR(16) NOT NULL,
            hints_used INTEGER NOT NULL DEFAULT 0,
            is_correct BOOLEAN NOT NULL DEFAULT false,
            subject VARCHAR(64),
            topic VARCHAR(128),
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_problem_attempts_student_time
        ON problem_attempts(student_id, created_at)
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS daily_activity (
            id SERIAL PRIMARY KEY,
            student_id INTEGER NOT NULL REFERENCES students(id) ON DELETE CASCADE,
            activity_date DATE NOT NULL,
            minutes INTEGER NOT NULL DEFAULT 0,
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_daily_activity_student_date UNIQUE (student_id, activity_date)
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS student_streaks (
            student_id INTEGER PRIMARY KEY REFERENCES students(id) ON DELETE CASCADE,
            current_streak INTEGER NOT NULL DEFAULT 0,
            longest_streak INTEGER NOT NULL DEFAULT 0,
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)

    # --- XP ledger ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS student_xp (
            id SERIAL PRIMARY KEY,
            student_id INTEGER UNIQUE NOT NULL REFERENCES students(id) ON DELETE CASCADE,
            total_xp INTEGER NOT NULL DEFAULT 0,
            spent_xp INTEGER NOT NULL DEFAULT 0,
            available_xp INTEGER NOT NULL DEFAULT 0,
            level INTEGER NOT NULL DEFAULT 1,
            weekly_xp INTEGER NOT NULL DEFAULT 0,
            monthly_xp INTEGER NOT NULL DEFAULT 0,
            last_xp_earned TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_student_xp_available_nonneg CHECK (available_xp >= 0)
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS xp_transactions (
            id SERIAL PRIMARY KEY,
            student_id INTEGER NOT NULL REFERENCES students(id) ON DELETE CASCADE,
            type VARCHAR(16) NOT NULL,
            amount INTEGER NOT NULL,
            source VARCHAR(32) NOT NULL,
            description TEXT NOT NULL DEFAULT '',
            metadata JSONB,
            balance_before INTEGER NOT NULL,
            balance_after INTEGER NOT NULL,
            session_id INTEGER,
            idempotency_key VARCHAR(256) UNIQUE,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_xp_transactions_student_time
        ON xp_transactions(student_id, created_at DESC)
    """)
    op.execute("CREATE INDEX IF NOT EXISTS ix_xp_transactions_source ON xp_transactions(source)")

    # --- Badges ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS badge_definitions (
            id SERIAL PRIMARY KEY,
            slug VARCHAR(64) UNIQUE NOT NULL,
            name VARCHAR(128) NOT NULL,
            description TEXT NOT NULL,
            icon VARCHAR(64) NOT NULL DEFAULT '',
            category VARCHAR(32) NOT NULL,
            tier VARCHAR(16) NOT NULL,
            xp_reward INTEGER NOT NULL DEFAULT 0,
            criteria JSONB NOT NULL DEFAULT '{}',
            target_role VARCHAR(16) NOT NULL DEFAULT 'student',
            grade_level VARCHAR(16),
            subject VARCHAR(64),
            is_secret BOOLEAN NOT NULL DEFAULT false,
            is_active BOOLEAN NOT NULL DEFAULT true,
            display_order INTEGER NOT NULL DEFAULT 0,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS ix_badge_definitions_category ON badge_definitions(category)")
    op.execute("""
        CREATE TABLE IF NOT EXISTS student_badges (
            id SERIAL PRIMARY KEY,
            student_id INTEGER NOT NULL REFERENCES students(id) ON DELETE CASCADE,
            badge_id INTEGER NOT NULL REFERENCES badge_definitions(id),
            progress DOUBLE PRECISION NOT NULL DEFAULT 0,
            is_earned BOOLEAN NOT NULL DEFAULT false,
            earned_at TIMESTAMPTZ,
            metadata JSONB,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_student_badges_student_badge UNIQUE (student_id, badge_id)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_student_badges_earned
        ON student_badges(earned_at)
        WHERE is_earned
    """)

    # --- Challenges ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS challenges (
            id SERIAL PRIMARY KEY,
            title VARCHAR(200) NOT NULL,
            description TEXT NOT NULL DEFAULT '',
            type VARCHAR(16) NOT NULL,
            metric VARCHAR(32) NOT NULL,
            target_value INTEGER NOT NULL CHECK (target_value > 0),
            xp_reward INTEGER NOT NULL DEFAULT 0 CHECK (xp_reward >= 0),
            badge_reward INTEGER REFERENCES badge_definitions(id),
            grade_level VARCHAR(16),
            subject VARCHAR(64),
            school_id INTEGER,
            class_id INTEGER,
            created_by INTEGER,
            is_active BOOLEAN NOT NULL DEFAULT true,
            max_participants INTEGER,
            current_participants INTEGER NOT NULL DEFAULT 0,
            start_date TIMESTAMPTZ NOT NULL,
            end_date TIMESTAMPTZ NOT NULL,
            generation_key VARCHAR(128) UNIQUE,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_challenges_window CHECK (end_date > start_date)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_challenges_active_window
        ON challenges(start_date, end_date)
        WHERE is_active
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS challenge_participation (
            id SERIAL PRIMARY KEY,
            challenge_id INTEGER NOT NULL REFERENCES challenges(id) ON DELETE CASCADE,
            student_id INTEGER NOT NULL REFERENCES students(id) ON DELETE CASCADE,
            current_value INTEGER NOT NULL DEFAULT 0,
            starting_baseline INTEGER,
            progress_history JSONB NOT NULL DEFAULT '[]',
            is_completed BOOLEAN NOT NULL DEFAULT false,
            completed_at TIMESTAMPTZ,
            xp_awarded BOOLEAN NOT NULL DEFAULT false,
            badge_awarded BOOLEAN NOT NULL DEFAULT false,
            joined_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_challenge_participation_challenge_student UNIQUE (challenge_id, student_id)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_challenge_participation_student
        ON challenge_participation(student_id)
    """)

    # --- Leaderboards ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS leaderboards (
            id SERIAL PRIMARY KEY,
            type VARCHAR(32) NOT NULL,
            scope VARCHAR(16) NOT NULL,
            scope_id VARCHAR(64) NOT NULL,
            period_type VARCHAR(16) NOT NULL,
            period_start TIMESTAMPTZ NOT NULL,
            period_end TIMESTAMPTZ NOT NULL,
            is_active BOOLEAN NOT NULL DEFAULT true,
            is_current BOOLEAN NOT NULL DEFAULT false,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE UNIQUE INDEX IF NOT EXISTS uq_leaderboards_current_scope
        ON leaderboards(type, scope, scope_id)
        WHERE is_current
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_leaderboards_key_period
        ON leaderboards(type, scope, scope_id, period_start DESC)
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS leaderboard_entries (
            id SERIAL PRIMARY KEY,
            leaderboard_id INTEGER NOT NULL REFERENCES leaderboards(id) ON DELETE CASCADE,
            student_id INTEGER NOT NULL REFERENCES students(id) ON DELETE CASCADE,
            rank INTEGER NOT NULL,
            score DOUBLE PRECISION NOT NULL,
            previous_rank INTEGER,
            trend_direction VARCHAR(8) NOT NULL,
            metadata JSONB,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_leaderboard_entries_board_student UNIQUE (leaderboard_id, student_id)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_leaderboard_entries_board_rank
        ON leaderboard_entries(leaderboard_id, rank)
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_leaderboard_entries_student
        ON leaderboard_entries(student_id)
    """)

    # --- Outbound events ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS gamification_events (
            id SERIAL PRIMARY KEY,
            student_id INTEGER NOT NULL REFERENCES students(id) ON DELETE CASCADE,
            kind VARCHAR(32) NOT NULL,
            title VARCHAR(200) NOT NULL,
            description TEXT NOT NULL DEFAULT '',
            xp_earned INTEGER,
            badge_id INTEGER,
            challenge_id INTEGER,
            leaderboard_id INTEGER,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_gamification_events_student
        ON gamification_events(student_id, id)
    """)

    # --- Scheduler ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS job_runs (
            id SERIAL PRIMARY KEY,
            job_name VARCHAR(64) NOT NULL,
            period_key VARCHAR(32) NOT NULL,
            status VARCHAR(16) NOT NULL,
            attempts INTEGER NOT NULL DEFAULT 1,
            instance_id VARCHAR(128),
            started_at TIMESTAMPTZ NOT NULL,
            finished_at TIMESTAMPTZ,
            last_error TEXT,
            CONSTRAINT uq_job_runs_job_period UNIQUE (job_name, period_key)
        )
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS job_runs CASCADE")
    op.execute("DROP TABLE IF EXISTS gamification_events CASCADE")
    op.execute("DROP TABLE IF EXISTS leaderboard_entries CASCADE")
    op.execute("DROP TABLE IF EXISTS leaderboards CASCADE")
    op.execute("DROP TABLE IF EXISTS challenge_participation CASCADE")
    op.execute("DROP TABLE IF EXISTS challenges CASCADE")
    op.execute("DROP TABLE IF EXISTS student_badges CASCADE")
    op.execute("DROP TABLE IF EXISTS badge_definitions CASCADE")
    op.execute("DROP TABLE IF EXISTS xp_transactions CASCADE")
    op.execute("DROP TABLE IF EXISTS student_xp CASCADE")
    op.execute("DROP TABLE IF EXISTS student_streaks CASCADE")
    op.execute("DROP TABLE IF EXISTS daily_activity CASCADE")
    op.execute("DROP TABLE IF EXISTS problem_attempts CASCADE")
