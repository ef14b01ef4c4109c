"""initial bookings schema: users, leads, booking history, messages,
callback reminders and the side-effect outbox

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None

LEAD_STATUS_CHECK = (
    "status IN ('Assigned', 'Attended', 'Booked', 'Cancelled', 'New', "
    "'No Show', 'Rejected')"
)
BOOKING_STATUS_CHECK = (
    "booking_status IN ('Arrived', 'Cancel', 'Complete', 'Left', 'No Sale', "
    "'Reschedule', 'Review') OR booking_status IS NULL"
)
CALL_STATUS_CHECK = (
    "call_status IN ('Call back', 'Left Message', 'No Answer x2', "
    "'No Answer x3', 'No answer', 'No photo', 'Not Qualified', "
    "'Not interested', 'Sales/converted - purchased', 'Wrong number') "
    "OR call_status IS NULL"
)


def upgrade() -> None:
    op.execute('CREATE EXTENSION IF NOT EXISTS "pgcrypto"')

    op.create_table(
        "users",
        sa.Column(
            "id",
            postgresql.UUID(as_uuid=True),
            primary_key=True,
            server_default=sa.text("gen_random_uuid()"),
        ),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False, unique=True),
        sa.Column("role", sa.String(length=20), nullable=False, server_default="booker"),
        sa.Column("bookings_made", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("show_ups", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint(
            "role IN ('admin', 'booker', 'viewer', 'photographer')", name="ck_user_role"
        ),
        sa.CheckConstraint("bookings_made >= 0", name="ck_bookings_made_nonneg"),
        sa.CheckConstraint("show_ups >= 0", name="ck_show_ups_nonneg"),
    )

    op.create_table(
        "leads",
        sa.Column(
            "id",
            postgresql.UUID(as_uuid=True),
            primary_key=True,
            server_default=sa.text("gen_random_uuid()"),
        ),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("phone", sa.String(length=40)),
        sa.Column("email", sa.String(length=255)),
        sa.Column("postcode", sa.String(length=20)),
        sa.Column("notes", sa.Text()),
        sa.Column(
            "tags", postgresql.JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")
        ),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="New"),
        sa.Column("booking_status", sa.String(length=20)),
        sa.Column("call_status", sa.String(length=40)),
        sa.Column(
            "booker_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("date_booked", sa.DateTime(timezone=True)),
        sa.Column("time_booked", sa.String(length=10)),
        sa.Column("booking_slot", sa.Integer()),
        sa.Column("is_confirmed", sa.Boolean()),
        sa.Column("has_sale", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("ever_booked", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("reject_reason", sa.Text()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("assigned_at", sa.DateTime(timezone=True)),
        sa.Column("booked_at", sa.DateTime(timezone=True)),
        sa.Column("rejected_at", sa.DateTime(timezone=True)),
        sa.Column("cancelled_at", sa.DateTime(timezone=True)),
        sa.Column("completed_at", sa.DateTime(timezone=True)),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("version", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.CheckConstraint(LEAD_STATUS_CHECK, name="ck_lead_status"),
        sa.CheckConstraint(BOOKING_STATUS_CHECK, name="ck_lead_booking_status"),
        sa.CheckConstraint(CALL_STATUS_CHECK, name="ck_lead_call_status"),
    )
    op.create_index("idx_leads_phone", "leads", ["phone"])
    op.create_index("idx_leads_email", "leads", ["email"])
    op.create_index("idx_leads_booker_status", "leads", ["booker_id", "status"])
    op.create_index("idx_leads_created_at", "leads", ["created_at"])
    op.create_index("idx_leads_assigned_at", "leads", ["assigned_at"])

    op.create_table(
        "lead_audit_entries",
        sa.Column(
            "id",
            postgresql.UUID(as_uuid=True),
            primary_key=True,
            server_default=sa.text("gen_random_uuid()"),
        ),
        sa.Column("sequence", sa.BigInteger(), sa.Identity(always=True), nullable=False),
        sa.Column(
            "lead_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("leads.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("action", sa.String(length=40), nullable=False),
        sa.Column(
            "timestamp", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.Column(
            "performed_by",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("performed_by_name", sa.String(length=200)),
        sa.Column("details", postgresql.JSONB(), nullable=False, server_default="{}"),
        sa.Column("lead_snapshot", postgresql.JSONB(), nullable=False, server_default="{}"),
    )
    op.create_index(
        "idx_audit_lead_timestamp", "lead_audit_entries", ["lead_id", "timestamp"]
    )
    op.create_index(
        "idx_audit_action_timestamp", "lead_audit_entries", ["action", "timestamp"]
    )

    op.create_table(
        "messages",
        sa.Column(
            "id",
            postgresql.UUID(as_uuid=True),
            primary_key=True,
            server_default=sa.text("gen_random_uuid()"),
        ),
        sa.Column(
            "lead_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("leads.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("type", sa.String(length=10), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("subject", sa.String(length=500)),
        sa.Column("body", sa.Text()),
        sa.Column(
            "sent_by",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("provider_id", sa.String(length=255)),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint("type IN ('sms', 'email')", name="ck_message_type"),
        sa.CheckConstraint(
            "status IN ('pending', 'sent', 'received', 'failed')", name="ck_message_status"
        ),
    )
    op.create_index("idx_messages_lead_created", "messages", ["lead_id", "created_at"])

    op.create_table(
        "callback_reminders",
        sa.Column(
            "id",
            postgresql.UUID(as_uuid=True),
            primary_key=True,
            server_default=sa.text("gen_random_uuid()"),
        ),
        sa.Column(
            "lead_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("leads.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "user_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("callback_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("callback_note", sa.Text()),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("notified_at", sa.DateTime(timezone=True)),
        sa.Column("completed_at", sa.DateTime(timezone=True)),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint(
            "status IN ('pending', 'notified', 'completed', 'cancelled')",
            name="ck_callback_status",
        ),
    )
    op.create_index(
        "idx_callback_user_status_time",
        "callback_reminders",
        ["user_id", "status", "callback_time"],
        postgresql_where=sa.text("status = 'pending'"),
    )

    op.create_table(
        "side_effect_outbox",
        sa.Column(
            "id",
            postgresql.UUID(as_uuid=True),
            primary_key=True,
            server_default=sa.text("gen_random_uuid()"),
        ),
        sa.Column(
            "lead_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("leads.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("kind", sa.String(length=40), nullable=False),
        sa.Column("channel", sa.String(length=20)),
        sa.Column("payload", postgresql.JSONB(), nullable=False, server_default="{}"),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("last_error", sa.Text()),
        sa.Column(
            "next_attempt_at", sa.DateTime(timezone=True), server_default=sa.func.now()
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint("status IN ('pending', 'done', 'failed')", name="ck_outbox_status"),
    )
    op.create_index(
        "idx_outbox_pending",
        "side_effect_outbox",
        ["next_attempt_at"],
        postgresql_where=sa.text("status = 'pending'"),
    )


def downgrade() -> None:
    op.drop_index("idx_outbox_pending", table_name="side_effect_outbox")
    op.drop_table("side_effect_outbox")
    op.drop_index("idx_callback_user_status_time", table_name="callback_reminders")
    op.drop_table("callback_reminders")
    op.drop_index("idx_messages_lead_created", table_name="messages")
    op.drop_table("messages")
    op.drop_index("idx_audit_action_timestamp", table_name="lead_audit_entries")
    op.drop_index("idx_audit_lead_timestamp", table_name="lead_audit_entries")
    op.drop_table("lead_audit_entries")
    for index in (
        "idx_leads_assigned_at",
        "idx_leads_created_at",
        "idx_leads_booker_status",
        "idx_leads_email",
        "idx_leads_phone",
    ):
        op.drop_index(index, table_name="leads")
    op.drop_table("leads")
    op.drop_table("users")
