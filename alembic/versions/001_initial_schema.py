"""Initial schema: users, friends, guilds, classrooms, assignments, notifications.

Adds the two indexes the ORM metadata cannot express portably:
one active guild membership per (guild, user), and one friendship row per
unordered pair of users.

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-18
"""

from collections.abc import Sequence

from alembic import op

revision: str = "001_initial_schema"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # --- Users ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS users (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            email VARCHAR(320) UNIQUE NOT NULL,
            display_name VARCHAR(64),
            full_name VARCHAR(128),
            avatar_url TEXT,
            role VARCHAR(16) NOT NULL DEFAULT 'student',
            tenant_id UUID,
            is_active BOOLEAN NOT NULL DEFAULT true,
            last_login TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS user_stats (
            user_id UUID PRIMARY KEY REFERENCES users(id) ON DELETE CASCADE,
            total_xp INTEGER NOT NULL DEFAULT 0,
            ml_coins INTEGER NOT NULL DEFAULT 0,
            level INTEGER NOT NULL DEFAULT 1,
            current_rank VARCHAR(32),
            updated_at TIMESTAMPTZ
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS user_activity (
            id SERIAL PRIMARY KEY,
            user_id UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            activity_type VARCHAR(64) NOT NULL,
            title VARCHAR(256) NOT NULL,
            description TEXT,
            metadata JSONB NOT NULL DEFAULT '{}',
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_user_activity_user_created
        ON user_activity(user_id, created_at)
    """)

    # --- Friendships ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS friendships (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            requester_id UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            addressee_id UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            status VARCHAR(16) NOT NULL DEFAULT 'pending',
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            accepted_at TIMESTAMPTZ,
            CONSTRAINT friendships_requester_addressee_key UNIQUE (requester_id, addressee_id),
            CONSTRAINT friendships_not_self CHECK (requester_id <> addressee_id),
            CONSTRAINT friendships_status_check
                CHECK (status IN ('pending', 'accepted', 'declined', 'blocked'))
        )
    """)
    op.execute("""
        CREATE UNIQUE INDEX IF NOT EXISTS uq_friendships_pair
        ON friendships(LEAST(requester_id, addressee_id), GREATEST(requester_id, addressee_id))
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_friendships_addressee
        ON friendships(addressee_id)
    """)

    # --- Guilds ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS guilds (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            tenant_id UUID,
            name VARCHAR(50) NOT NULL,
            description VARCHAR(500),
            motto VARCHAR(100),
            color_primary VARCHAR(7) NOT NULL DEFAULT '#3B82F6',
            color_secondary VARCHAR(7) NOT NULL DEFAULT '#10B981',
            avatar_url TEXT,
            banner_url TEXT,
            creator_id UUID NOT NULL REFERENCES users(id),
            leader_id UUID REFERENCES users(id),
            join_code VARCHAR(8) UNIQUE NOT NULL,
            max_members INTEGER NOT NULL DEFAULT 20,
            current_members_count INTEGER NOT NULL DEFAULT 0,
            is_public BOOLEAN NOT NULL DEFAULT false,
            allow_join_requests BOOLEAN NOT NULL DEFAULT true,
            require_approval BOOLEAN NOT NULL DEFAULT true,
            total_xp INTEGER NOT NULL DEFAULT 0,
            total_coins INTEGER NOT NULL DEFAULT 0,
            modules_completed INTEGER NOT NULL DEFAULT 0,
            achievements_earned INTEGER NOT NULL DEFAULT 0,
            is_active BOOLEAN NOT NULL DEFAULT true,
            last_activity_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT guilds_max_members_check CHECK (max_members BETWEEN 2 AND 100)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_guilds_public_xp
        ON guilds(is_public, total_xp)
    """)

    op.execute("""
        CREATE TABLE IF NOT EXISTS guild_members (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            guild_id UUID NOT NULL REFERENCES guilds(id) ON DELETE CASCADE,
            user_id UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            role VARCHAR(16) NOT NULL DEFAULT 'member',
            status VARCHAR(16) NOT NULL DEFAULT 'active',
            joined_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            left_at TIMESTAMPTZ,
            kicked_at TIMESTAMPTZ,
            kick_reason TEXT,
            contribution_xp INTEGER NOT NULL DEFAULT 0,
            contribution_coins INTEGER NOT NULL DEFAULT 0,
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT guild_members_role_check CHECK (role IN ('owner', 'admin', 'member')),
            CONSTRAINT guild_members_status_check
                CHECK (status IN ('active', 'inactive', 'kicked', 'left'))
        )
    """)
    op.execute("""
        CREATE UNIQUE INDEX IF NOT EXISTS uq_guild_members_active
        ON guild_members(guild_id, user_id) WHERE status = 'active'
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_guild_members_user
        ON guild_members(user_id)
    """)

    op.execute("""
        CREATE TABLE IF NOT EXISTS guild_challenges (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            guild_id UUID NOT NULL REFERENCES guilds(id) ON DELETE CASCADE,
            title VARCHAR(100) NOT NULL,
            description VARCHAR(500),
            challenge_type VARCHAR(32) NOT NULL,
            target_value INTEGER NOT NULL,
            current_value INTEGER NOT NULL DEFAULT 0,
            reward_xp INTEGER NOT NULL DEFAULT 0,
            reward_coins INTEGER NOT NULL DEFAULT 0,
            start_date TIMESTAMPTZ NOT NULL,
            end_date TIMESTAMPTZ NOT NULL,
            is_active BOOLEAN NOT NULL DEFAULT true,
            is_completed BOOLEAN NOT NULL DEFAULT false,
            completed_at TIMESTAMPTZ,
            created_by UUID NOT NULL REFERENCES users(id),
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT guild_challenges_type_check
                CHECK (challenge_type IN ('xp_goal', 'modules_completion', 'achievement_hunt', 'custom')),
            CONSTRAINT guild_challenges_dates_check CHECK (end_date > start_date)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_guild_challenges_guild
        ON guild_challenges(guild_id)
    """)

    # --- Exercises & classrooms ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS exercises (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            title VARCHAR(255) NOT NULL,
            difficulty VARCHAR(32),
            points INTEGER NOT NULL DEFAULT 10
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS classrooms (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            teacher_id UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            name VARCHAR(255) NOT NULL,
            description TEXT,
            school_id UUID,
            grade_level VARCHAR(50),
            subject VARCHAR(100),
            is_active BOOLEAN NOT NULL DEFAULT true,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_classrooms_teacher_id
        ON classrooms(teacher_id)
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS classroom_students (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            classroom_id UUID NOT NULL REFERENCES classrooms(id) ON DELETE CASCADE,
            student_id UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            joined_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT classroom_students_key UNIQUE (classroom_id, student_id)
        )
    """)

    # --- Assignments ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS assignments (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            teacher_id UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            title VARCHAR(255) NOT NULL,
            description TEXT,
            assignment_type VARCHAR(16) NOT NULL,
            due_date TIMESTAMPTZ,
            total_points INTEGER NOT NULL DEFAULT 100,
            is_published BOOLEAN NOT NULL DEFAULT false,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT assignments_type_check
                CHECK (assignment_type IN ('practice', 'quiz', 'exam', 'homework'))
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_assignments_teacher_id
        ON assignments(teacher_id)
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS assignment_exercises (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            assignment_id UUID NOT NULL REFERENCES assignments(id),
            exercise_id UUID NOT NULL REFERENCES exercises(id),
            order_index INTEGER,
            CONSTRAINT assignment_exercises_key UNIQUE (assignment_id, exercise_id)
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS assignment_classrooms (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            assignment_id UUID NOT NULL REFERENCES assignments(id),
            classroom_id UUID NOT NULL REFERENCES classrooms(id),
            assigned_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT assignment_classrooms_key UNIQUE (assignment_id, classroom_id)
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS assignment_students (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            assignment_id UUID NOT NULL REFERENCES assignments(id),
            student_id UUID NOT NULL REFERENCES users(id),
            assigned_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT assignment_students_key UNIQUE (assignment_id, student_id)
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS assignment_submissions (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            assignment_id UUID NOT NULL REFERENCES assignments(id),
            student_id UUID NOT NULL REFERENCES users(id),
            status VARCHAR(16) NOT NULL DEFAULT 'not_started',
            score NUMERIC(6, 2),
            feedback TEXT,
            submitted_at TIMESTAMPTZ,
            graded_at TIMESTAMPTZ,
            graded_by UUID REFERENCES users(id),
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT assignment_submissions_key UNIQUE (assignment_id, student_id),
            CONSTRAINT assignment_submissions_status_check
                CHECK (status IN ('not_started', 'in_progress', 'submitted', 'graded'))
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_assignment_submissions_status
        ON assignment_submissions(status)
    """)

    # --- Notifications ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS notifications (
            id SERIAL PRIMARY KEY,
            user_id UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            type VARCHAR(32) NOT NULL,
            title VARCHAR(256) NOT NULL,
            message TEXT NOT NULL,
            data JSONB NOT NULL DEFAULT '{}',
            read BOOLEAN NOT NULL DEFAULT false,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_notifications_user_created
        ON notifications(user_id, created_at DESC)
    """)


def downgrade() -> None:
    for table in (
        "notifications",
        "assignment_submissions",
        "assignment_students",
        "assignment_classrooms",
        "assignment_exercises",
        "assignments",
        "classroom_students",
        "classrooms",
        "exercises",
        "guild_challenges",
        "guild_members",
        "guilds",
        "friendships",
        "user_activity",
        "user_stats",
        "users",
    ):
        op.execute(f"DROP TABLE IF EXISTS {table} CASCADE")
