"""Create the tables the WhatsApp bot reads and writes."""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "001_create_whatsapp_bot_tables"
down_revision = None
branch_labels = None
depends_on = None


_UUID = postgresql.UUID(as_uuid=True)
_JSONB = postgresql.JSONB()


def _id_column() -> sa.Column:
    return sa.Column(
        "id",
        _UUID,
        primary_key=True,
        nullable=False,
        server_default=sa.text("gen_random_uuid()"),
    )


def _created_at() -> sa.Column:
    return sa.Column(
        "created_at",
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=sa.text("now()"),
    )


def upgrade() -> None:
    """Create workshop, conversation and configuration tables."""

    op.create_table(
        "organizations",
        _id_column(),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("address", sa.Text(), nullable=True),
        sa.Column("phone", sa.String(length=32), nullable=True),
        sa.Column("email", sa.String(length=320), nullable=True),
    )

    op.create_table(
        "customers",
        _id_column(),
        sa.Column(
            "tenant_id",
            _UUID,
            sa.ForeignKey("organizations.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("phone", sa.String(length=32), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column(
            "source",
            sa.String(length=32),
            nullable=False,
            server_default=sa.text("'whatsapp_bot'"),
        ),
        _created_at(),
    )
    op.create_index(
        "ux_customers_tenant_phone",
        "customers",
        ["tenant_id", "phone"],
        unique=True,
    )

    op.create_table(
        "vehicles",
        _id_column(),
        sa.Column("tenant_id", _UUID, nullable=False),
        sa.Column(
            "customer_id",
            _UUID,
            sa.ForeignKey("customers.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("description", sa.String(length=255), nullable=False),
        _created_at(),
    )
    op.create_index("ix_vehicles_customer", "vehicles", ["tenant_id", "customer_id"])

    op.create_table(
        "appointments",
        _id_column(),
        sa.Column("tenant_id", _UUID, nullable=False),
        sa.Column("customer_id", _UUID, sa.ForeignKey("customers.id"), nullable=False),
        sa.Column("vehicle_id", _UUID, sa.ForeignKey("vehicles.id"), nullable=True),
        sa.Column("service_type", sa.String(length=255), nullable=False),
        sa.Column("start_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "duration_minutes",
            sa.Integer(),
            nullable=False,
            server_default=sa.text("60"),
        ),
        sa.Column(
            "status",
            sa.String(length=32),
            nullable=False,
            server_default=sa.text("'scheduled'"),
        ),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column(
            "metadata", _JSONB, nullable=False, server_default=sa.text("'{}'::jsonb")
        ),
        _created_at(),
    )
    op.create_index(
        "ix_appointments_tenant_start", "appointments", ["tenant_id", "start_at"]
    )

    op.create_table(
        "work_orders",
        _id_column(),
        sa.Column("tenant_id", _UUID, nullable=False),
        sa.Column("customer_id", _UUID, sa.ForeignKey("customers.id"), nullable=False),
        sa.Column("vehicle_id", _UUID, sa.ForeignKey("vehicles.id"), nullable=True),
        sa.Column("service_name", sa.String(length=255), nullable=False),
        sa.Column("estimated_cost", sa.Numeric(12, 2), nullable=True),
        sa.Column(
            "status",
            sa.String(length=32),
            nullable=False,
            server_default=sa.text("'pending'"),
        ),
        sa.Column("notes", sa.Text(), nullable=True),
        _created_at(),
    )
    op.create_index("ix_work_orders_tenant", "work_orders", ["tenant_id"])

    op.create_table(
        "whatsapp_conversations",
        _id_column(),
        sa.Column("tenant_id", _UUID, nullable=False),
        sa.Column("customer_phone", sa.String(length=32), nullable=False),
        sa.Column("customer_id", _UUID, sa.ForeignKey("customers.id"), nullable=True),
        sa.Column("customer_name", sa.String(length=255), nullable=True),
        sa.Column(
            "status",
            sa.String(length=16),
            nullable=False,
            server_default=sa.text("'active'"),
        ),
        sa.Column(
            "bot_active", sa.Boolean(), nullable=False, server_default=sa.text("true")
        ),
        sa.Column("last_message_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
    )
    op.create_index(
        "ux_whatsapp_conversations_active_phone",
        "whatsapp_conversations",
        ["tenant_id", "customer_phone"],
        unique=True,
        postgresql_where=sa.text("status = 'active'"),
    )

    op.create_table(
        "whatsapp_messages",
        _id_column(),
        sa.Column(
            "conversation_id",
            _UUID,
            sa.ForeignKey("whatsapp_conversations.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("tenant_id", _UUID, nullable=False),
        sa.Column("direction", sa.String(length=16), nullable=False),
        sa.Column("body", sa.Text(), nullable=False, server_default=sa.text("''")),
        sa.Column(
            "kind", sa.String(length=16), nullable=False, server_default=sa.text("'text'")
        ),
        sa.Column("media_url", sa.Text(), nullable=True),
        sa.Column("provider_message_id", sa.String(length=255), nullable=True),
        sa.Column("delivery_status", sa.String(length=16), nullable=False),
        sa.Column(
            "metadata", _JSONB, nullable=False, server_default=sa.text("'{}'::jsonb")
        ),
        _created_at(),
    )
    op.create_index(
        "ix_whatsapp_messages_conversation",
        "whatsapp_messages",
        ["conversation_id", "created_at"],
    )
    op.create_index(
        "ux_whatsapp_messages_inbound_provider_id",
        "whatsapp_messages",
        ["tenant_id", "provider_message_id"],
        unique=True,
        postgresql_where=sa.text(
            "direction = 'inbound' AND provider_message_id IS NOT NULL"
        ),
    )

    op.create_table(
        "ai_agent_config",
        sa.Column("tenant_id", _UUID, primary_key=True, nullable=False),
        sa.Column("enabled", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column(
            "provider", sa.String(length=32), nullable=False, server_default=sa.text("'openai'")
        ),
        sa.Column("model", sa.String(length=128), nullable=False),
        sa.Column("temperature", sa.Float(), nullable=False, server_default=sa.text("0.7")),
        sa.Column("max_tokens", sa.Integer(), nullable=False, server_default=sa.text("1024")),
        sa.Column("language", sa.String(length=8), nullable=False, server_default=sa.text("'es'")),
        sa.Column("personality", sa.Text(), nullable=True),
        sa.Column("custom_instructions", sa.Text(), nullable=True),
        sa.Column(
            "business_hours_only", sa.Boolean(), nullable=False, server_default=sa.text("false")
        ),
        sa.Column(
            "auto_schedule_appointments",
            sa.Boolean(),
            nullable=False,
            server_default=sa.text("false"),
        ),
        sa.Column(
            "auto_create_orders", sa.Boolean(), nullable=False, server_default=sa.text("false")
        ),
        sa.Column(
            "require_human_approval",
            sa.Boolean(),
            nullable=False,
            server_default=sa.text("false"),
        ),
        sa.Column(
            "timezone", sa.String(length=64), nullable=False, server_default=sa.text("'UTC'")
        ),
        sa.Column(
            "business_hours", _JSONB, nullable=False, server_default=sa.text("'{}'::jsonb")
        ),
        sa.Column("services", _JSONB, nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("policies", _JSONB, nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("faqs", _JSONB, nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
    )

    op.create_table(
        "whatsapp_channel_config",
        sa.Column("tenant_id", _UUID, primary_key=True, nullable=False),
        sa.Column(
            "provider", sa.String(length=16), nullable=False, server_default=sa.text("'meta'")
        ),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("phone_number_id", sa.String(length=64), nullable=True),
        sa.Column("access_token", sa.Text(), nullable=True),
        sa.Column("session_name", sa.String(length=128), nullable=True),
        sa.Column("webhook_secret", sa.Text(), nullable=True),
        sa.Column("verify_token", sa.String(length=255), nullable=True),
    )


def downgrade() -> None:
    """Drop bot tables in reverse dependency order."""

    op.drop_table("whatsapp_channel_config")
    op.drop_table("ai_agent_config")
    op.drop_index(
        "ux_whatsapp_messages_inbound_provider_id", table_name="whatsapp_messages"
    )
    op.drop_index("ix_whatsapp_messages_conversation", table_name="whatsapp_messages")
    op.drop_table("whatsapp_messages")
    op.drop_index(
        "ux_whatsapp_conversations_active_phone", table_name="whatsapp_conversations"
    )
    op.drop_table("whatsapp_conversations")
    op.drop_index("ix_work_orders_tenant", table_name="work_orders")
    op.drop_table("work_orders")
    op.drop_index("ix_appointments_tenant_start", table_name="appointments")
    op.drop_table("appointments")
    op.drop_index("ix_vehicles_customer", table_name="vehicles")
    op.drop_table("vehicles")
    op.drop_index("ux_customers_tenant_phone", table_name="customers")
    op.drop_table("customers")
    op.drop_table("organizations")
