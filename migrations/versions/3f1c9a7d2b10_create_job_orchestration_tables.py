"""create job orchestration tables

Revision ID: 3f1c9a7d2b10
Revises:
Create Date: 2026-10-18 09:12:40.118204

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "3f1c9a7d2b10"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

PENDING_KEY_PREDICATE = (
    "idempotency_key IS NOT NULL AND status IN ('waiting', 'delayed', 'active')"
)


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        "users",
        sa.Column("id", sa.Uuid, primary_key=True),
        sa.Column("email", sa.Text, nullable=False, unique=True),
        sa.Column("name", sa.Text, nullable=True),
        sa.Column("plan", sa.String(20), nullable=False, server_default="FREE"),
        sa.Column(
            "daily_ai_generations", sa.Integer, nullable=False, server_default="0"
        ),
        sa.Column("last_generation_reset", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column(
            "free_trial_used", sa.Boolean, nullable=False, server_default=sa.false()
        ),
        sa.Column("free_trial_ends_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column(
            "subscription_ref",
            sa.Text,
            nullable=True,
            comment="Billing gateway subscription identifier",
        ),
        sa.Column(
            "email_notifications_enabled",
            sa.Boolean,
            nullable=False,
            server_default=sa.true(),
        ),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )
    op.create_index("ix_users_plan", "users", ["plan"])
    op.create_index("ix_users_free_trial_ends_at", "users", ["free_trial_ends_at"])

    op.create_table(
        "ideas",
        sa.Column("id", sa.Uuid, primary_key=True),
        sa.Column("user_id", sa.Uuid, sa.ForeignKey("users.id"), nullable=False),
        sa.Column("title", sa.Text, nullable=False),
        sa.Column("caption", sa.Text, nullable=True),
        sa.Column("hashtags", sa.JSON, nullable=False, server_default="[]"),
        sa.Column("platform", sa.String(30), nullable=False),
        sa.Column("niche", sa.Text, nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="DRAFT"),
        sa.Column("scheduled_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("posted_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )
    op.create_index("ix_ideas_status_scheduled_at", "ideas", ["status", "scheduled_at"])
    op.create_index("ix_ideas_created_at", "ideas", ["created_at"])

    op.create_table(
        "social_connections",
        sa.Column("id", sa.Uuid, primary_key=True),
        sa.Column("user_id", sa.Uuid, sa.ForeignKey("users.id"), nullable=False),
        sa.Column("platform", sa.String(30), nullable=False),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("is_default", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )
    op.create_index(
        "ix_social_connections_user_platform",
        "social_connections",
        ["user_id", "platform"],
    )

    op.create_table(
        "daily_analytics",
        sa.Column("date", sa.Date, primary_key=True),
        sa.Column("total_ideas", sa.Integer, nullable=False, server_default="0"),
        sa.Column("total_users", sa.Integer, nullable=False, server_default="0"),
        sa.Column("active_users", sa.Integer, nullable=False, server_default="0"),
        sa.Column("ideas_by_platform", sa.JSON, nullable=False, server_default="{}"),
        sa.Column("ideas_by_niche", sa.JSON, nullable=False, server_default="{}"),
        sa.Column(
            "computed_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )

    op.create_table(
        "jobs",
        sa.Column("id", sa.Uuid, primary_key=True),
        sa.Column(
            "queue_name", sa.Text, nullable=False, comment="Logical channel, one per job type"
        ),
        sa.Column(
            "job_type", sa.Text, nullable=False, comment="Payload variant discriminator"
        ),
        sa.Column(
            "idempotency_key",
            sa.Text,
            nullable=True,
            comment="Logical unit of work this job represents",
        ),
        sa.Column(
            "payload",
            sa.JSON,
            nullable=False,
            server_default="{}",
            comment="Job-specific parameters",
        ),
        sa.Column(
            "status",
            sa.Text,
            nullable=False,
            server_default="waiting",
            comment="waiting|delayed|active|completed|failed|cancelled",
        ),
        sa.Column(
            "run_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
            comment="Earliest time to run job",
        ),
        sa.Column(
            "repeat", sa.Text, nullable=True, comment="Cron pattern for recurring jobs"
        ),
        sa.Column(
            "attempts",
            sa.SmallInteger,
            nullable=False,
            server_default="0",
            comment="Number of attempts made",
        ),
        sa.Column("max_attempts", sa.SmallInteger, nullable=False, server_default="1"),
        sa.Column("backoff_type", sa.Text, nullable=False, server_default="exponential"),
        sa.Column("backoff_delay_ms", sa.Integer, nullable=False, server_default="1000"),
        # Worker coordination fields
        sa.Column(
            "locked_at",
            sa.TIMESTAMP(timezone=True),
            nullable=True,
            comment="When job was locked by worker",
        ),
        sa.Column(
            "locked_by", sa.Text, nullable=True, comment="Worker ID that holds the lease"
        ),
        sa.Column(
            "heartbeat_at",
            sa.TIMESTAMP(timezone=True),
            nullable=True,
            comment="Last worker heartbeat",
        ),
        # Results and progress
        sa.Column(
            "progress", sa.SmallInteger, nullable=False, server_default="0", comment="0-100"
        ),
        sa.Column("result", sa.JSON, nullable=True, comment="Job result data"),
        sa.Column(
            "error_code", sa.Text, nullable=True, comment="Structured error identifier"
        ),
        sa.Column("last_error", sa.Text, nullable=True, comment="Last error message"),
        sa.Column("finished_at", sa.TIMESTAMP(timezone=True), nullable=True),
        # Tracing
        sa.Column(
            "requested_by_user_id",
            sa.Uuid,
            nullable=True,
            comment="User whose action produced the job",
        ),
        sa.Column(
            "request_id",
            sa.Text,
            nullable=True,
            comment="Original request ID for tracing",
        ),
        # Timestamps
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        # Constraints
        sa.CheckConstraint(
            "status IN ('waiting', 'delayed', 'active', 'completed', 'failed', 'cancelled')",
            name="jobs_status_check",
        ),
        sa.CheckConstraint("progress BETWEEN 0 AND 100", name="jobs_progress_check"),
    )

    # Claim path: due jobs per queue in run_at order
    op.create_index(
        "ix_jobs_queue_status_run_at", "jobs", ["queue_name", "status", "run_at"]
    )
    op.create_index("ix_jobs_status_run_at", "jobs", ["status", "run_at"])
    op.create_index("ix_jobs_heartbeat_at", "jobs", ["heartbeat_at"])

    # At most one pending job per idempotency key; finished jobs release the key
    op.create_index(
        "ix_jobs_idempotency_key_pending",
        "jobs",
        ["idempotency_key"],
        unique=True,
        postgresql_where=sa.text(PENDING_KEY_PREDICATE),
        sqlite_where=sa.text(PENDING_KEY_PREDICATE),
    )


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table("jobs")
    op.drop_table("daily_analytics")
    op.drop_table("social_connections")
    op.drop_table("ideas")
    op.drop_table("users")
