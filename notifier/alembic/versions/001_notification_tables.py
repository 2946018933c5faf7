"""Notification tables: schedules, retries, preferences, deliveries and audit log.

User and course tables belong to the course platform and are only read here.

Revision ID: 001
Revises:
Create Date: 2026-03-02
"""

from typing import Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels = None
depends_on = None


def _timestamp(name: str, nullable: bool = False) -> sa.Column:
    if nullable:
        return sa.Column(name, sa.DateTime(timezone=True), nullable=True)
    return sa.Column(
        name,
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=sa.text("now()"),
    )


def upgrade() -> None:
    # --- notification_schedules ---
    op.create_table(
        "notification_schedules",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.String(), nullable=True),
        sa.Column("template_type", sa.String(), nullable=False),
        sa.Column("conditions", sa.JSON(), nullable=False, server_default="{}"),
        sa.Column("frequency", sa.String(), nullable=False),
        sa.Column("recurring_schedule", sa.JSON(), nullable=True),
        sa.Column("custom_schedule", sa.JSON(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        _timestamp("last_run", nullable=True),
        _timestamp("next_run", nullable=True),
        sa.Column("execution_stats", sa.JSON(), nullable=False, server_default="{}"),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_notification_schedules_template_type", "notification_schedules", ["template_type"]
    )
    op.create_index("ix_notification_schedules_is_active", "notification_schedules", ["is_active"])

    # --- notification_retries ---
    op.create_table(
        "notification_retries",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("notification_type", sa.String(), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False, server_default="{}"),
        sa.Column("retry_config", sa.JSON(), nullable=False),
        sa.Column("scheduled_for", sa.DateTime(timezone=True), nullable=False),
        sa.Column("reason", sa.String(), nullable=True),
        _timestamp("created_at"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_notification_retries_scheduled_for", "notification_retries", ["scheduled_for"]
    )

    # --- notification_preferences ---
    op.create_table(
        "notification_preferences",
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("email", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("in_app", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("push", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("sms", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("types", sa.JSON(), nullable=False, server_default="{}"),
        sa.Column("do_not_disturb", sa.JSON(), nullable=True),
        _timestamp("updated_at"),
        sa.PrimaryKeyConstraint("user_id"),
    )

    # --- notifications (in-app) ---
    op.create_table(
        "notifications",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("type", sa.String(), nullable=False),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("link", sa.String(), nullable=True),
        sa.Column("priority", sa.String(), nullable=False, server_default="medium"),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.false()),
        _timestamp("created_at"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_notifications_user_unread", "notifications", ["user_id", "is_read"])

    # --- notification_logs ---
    op.create_table(
        "notification_logs",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("type", sa.String(), nullable=False),
        sa.Column("channels", sa.JSON(), nullable=False),
        sa.Column("title", sa.String(), nullable=True),
        sa.Column("link", sa.String(), nullable=True),
        _timestamp("created_at"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_notification_logs_user_id", "notification_logs", ["user_id"])
    op.create_index("ix_notification_logs_type", "notification_logs", ["type"])
    op.create_index("ix_notification_logs_created_at", "notification_logs", ["created_at"])

    # --- email_templates ---
    op.create_table(
        "email_templates",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("type", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("subject", sa.String(), nullable=False),
        sa.Column("html_content", sa.Text(), nullable=False),
        sa.Column("text_content", sa.Text(), nullable=False),
        sa.Column("preview_text", sa.String(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_email_templates_type", "email_templates", ["type"])

    # --- notification_idempotency_keys ---
    op.create_table(
        "notification_idempotency_keys",
        sa.Column("key", sa.String(), nullable=False),
        _timestamp("created_at"),
        sa.PrimaryKeyConstraint("key"),
    )

    # --- error_logs ---
    op.create_table(
        "error_logs",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("service", sa.String(), nullable=False),
        sa.Column("error_type", sa.String(), nullable=False),
        sa.Column("operation", sa.String(), nullable=True),
        sa.Column("context", sa.JSON(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=False),
        sa.Column("stack_trace", sa.Text(), nullable=True),
        sa.Column("schedule_id", sa.Uuid(), nullable=True),
        sa.Column("user_id", sa.String(), nullable=True),
        sa.Column("status", sa.String(), nullable=False, server_default="open"),
        _timestamp("created_at"),
        _timestamp("resolved_at", nullable=True),
        sa.ForeignKeyConstraint(
            ["schedule_id"], ["notification_schedules.id"], ondelete="SET NULL"
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_error_logs_status", "error_logs", ["status"])
    op.create_index("ix_error_logs_service", "error_logs", ["service"])
    op.create_index("ix_error_logs_created_at", "error_logs", ["created_at"])


def downgrade() -> None:
    op.drop_index("ix_error_logs_created_at", table_name="error_logs")
    op.drop_index("ix_error_logs_service", table_name="error_logs")
    op.drop_index("ix_error_logs_status", table_name="error_logs")
    op.drop_table("error_logs")
    op.drop_table("notification_idempotency_keys")
    op.drop_index("ix_email_templates_type", table_name="email_templates")
    op.drop_table("email_templates")
    op.drop_index("ix_notification_logs_created_at", table_name="notification_logs")
    op.drop_index("ix_notification_logs_type", table_name="notification_logs")
    op.drop_index("ix_notification_logs_user_id", table_name="notification_logs")
    op.drop_table("notification_logs")
    op.drop_index("ix_notifications_user_unread", table_name="notifications")
    op.drop_table("notifications")
    op.drop_table("notification_preferences")
    op.drop_index("ix_notification_retries_scheduled_for", table_name="notification_retries")
    op.drop_table("notification_retries")
    op.drop_index("ix_notification_schedules_is_active", table_name="notification_schedules")
    op.drop_index(
        "ix_notification_schedules_template_type", table_name="notification_schedules"
    )
    op.drop_table("notification_schedules")
