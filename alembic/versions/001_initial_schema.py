"""Initial schema - events, webhooks, webhook request log

Revision ID: 001
Revises:
Create Date: 2026-10-19
"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Events
    op.create_table(
        "events",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("site_id", sa.Integer(), nullable=False),
        sa.Column("event_id", sa.BigInteger(), nullable=False),
        sa.Column("event_type", sa.String(50), nullable=False),
        sa.Column("event_data", postgresql.JSONB(), nullable=False),
        sa.Column("private_to_user_id", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id", name="pk_events"),
        sa.UniqueConstraint("site_id", "event_id", name="uq_events_site_id_event_id"),
    )
    op.create_index("ix_events_site_event", "events", ["site_id", "event_id"])

    # Webhooks
    op.create_table(
        "webhooks",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("site_id", sa.Integer(), nullable=False),
        sa.Column("webhook_id", sa.Integer(), nullable=False),
        sa.Column("owner_id", sa.Integer(), nullable=False),
        sa.Column("run_as_id", sa.Integer(), nullable=False),
        sa.Column("send_to_url", sa.String(2048), nullable=False, server_default=""),
        sa.Column("send_custom_headers", postgresql.JSONB(), nullable=True),
        sa.Column("secret", sa.String(128), nullable=True),
        sa.Column("enabled", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("sent_up_to_event_id", sa.BigInteger(), nullable=True),
        sa.Column("sent_up_to_when", sa.DateTime(timezone=True), nullable=True),
        sa.Column("failed_since", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_failed_how", sa.String(50), nullable=True),
        sa.Column("last_err_msg_or_resp", sa.Text(), nullable=True),
        sa.Column("retried_num_times", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("retry_extra_times", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("next_retry_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("broken_reason", sa.String(50), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id", name="pk_webhooks"),
        sa.UniqueConstraint("site_id", "webhook_id", name="uq_webhooks_site_id_webhook_id"),
        sa.CheckConstraint(
            "broken_reason IS NULL OR last_failed_how IS NOT NULL",
            name="ck_webhooks_failed_brokenreason",
        ),
        sa.CheckConstraint(
            "(failed_since IS NULL) = (last_failed_how IS NULL)",
            name="ck_webhooks_failed_since_how",
        ),
    )

    # Webhook request log
    op.create_table(
        "webhook_reqs_out",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("site_id", sa.Integer(), nullable=False),
        sa.Column("req_nr", sa.BigInteger(), nullable=False),
        sa.Column("webhook_id", sa.Integer(), nullable=False),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("sent_to_url", sa.String(2048), nullable=False),
        sa.Column("sent_by_app_version", sa.String(50), nullable=False),
        sa.Column("sent_api_version", sa.String(20), nullable=False),
        sa.Column("sent_event_types", postgresql.JSONB(), nullable=False),
        sa.Column("sent_event_ids", postgresql.JSONB(), nullable=False),
        sa.Column("sent_json", postgresql.JSONB(), nullable=False),
        sa.Column("sent_headers", postgresql.JSONB(), nullable=True),
        sa.Column("retry_nr", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("failed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("failed_how", sa.String(50), nullable=True),
        sa.Column("err_msg", sa.Text(), nullable=True),
        sa.Column("resp_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("resp_status", sa.Integer(), nullable=True),
        sa.Column("resp_status_text", sa.String(255), nullable=True),
        sa.Column("resp_headers", postgresql.JSONB(), nullable=True),
        sa.Column("resp_body", sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_webhook_reqs_out"),
        sa.UniqueConstraint("site_id", "req_nr", name="uq_webhook_reqs_out_site_id_req_nr"),
    )
    op.create_index(
        "ix_webhook_reqs_out_site_webhook_sent",
        "webhook_reqs_out",
        ["site_id", "webhook_id", "sent_at"],
    )


def downgrade() -> None:
    op.drop_table("webhook_reqs_out")
    op.drop_table("webhooks")
    op.drop_table("events")
