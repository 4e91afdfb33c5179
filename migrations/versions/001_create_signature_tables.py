"""Create signature request tables.

Revision ID: 001
Create Date: 2026-10-18 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create signature request, recipient, field, signature, audit and sealed document tables."""

    # =========================================================================
    # Create signature_requests table
    # =========================================================================
    op.create_table(
        "signature_requests",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("client_id", sa.String(36), nullable=False),
        sa.Column("friendly_name", sa.String(255), nullable=False, server_default="Untitled Document"),
        sa.Column("document_path", sa.String(500), nullable=False),
        sa.Column("document_name", sa.String(255), nullable=True),
        sa.Column("created_by", sa.String(36), nullable=False),
        sa.Column("status", sa.String(30), nullable=False, server_default="draft"),
        sa.Column("sequential_signing", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("email_subject", sa.String(255), nullable=True),
        sa.Column("email_message", sa.Text(), nullable=True),
        sa.Column("redirect_url", sa.String(500), nullable=True),
        sa.Column("reminder_enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("reminder_interval_days", sa.Integer(), nullable=False, server_default="3"),
        sa.Column("reminders_sent_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_reminder_sent_at", sa.DateTime(), nullable=True),
        sa.Column("next_reminder_date", sa.DateTime(), nullable=True),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(), nullable=True),
        sa.Column("cancelled_by", sa.String(36), nullable=True),
        sa.Column("cancellation_reason", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint(
            "status IN ('draft', 'pending', 'partially_signed', 'completed', 'cancelled')",
            name="ck_signature_requests_status",
        ),
    )
    op.create_index("ix_signature_requests_client_id", "signature_requests", ["client_id"])
    op.create_index("ix_signature_requests_status", "signature_requests", ["status"])
    op.create_index(
        "ix_signature_requests_next_reminder_date",
        "signature_requests",
        ["next_reminder_date"],
    )
    op.create_index(
        "ix_signature_requests_client_status",
        "signature_requests",
        ["client_id", "status"],
    )

    # =========================================================================
    # Create signature_request_recipients table
    # =========================================================================
    op.create_table(
        "signature_request_recipients",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "signature_request_id",
            sa.String(36),
            sa.ForeignKey("signature_requests.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("person_id", sa.String(36), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("token_hash", sa.String(64), nullable=True),
        sa.Column("token_ciphertext", sa.Text(), nullable=True),
        sa.Column("token_expires_at", sa.DateTime(), nullable=True),
        sa.Column("token_revoked_at", sa.DateTime(), nullable=True),
        sa.Column("sent_at", sa.DateTime(), nullable=True),
        sa.Column("send_status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("send_error", sa.Text(), nullable=True),
        sa.Column("viewed_at", sa.DateTime(), nullable=True),
        sa.Column("consent_accepted_at", sa.DateTime(), nullable=True),
        sa.Column("signed_at", sa.DateTime(), nullable=True),
        sa.Column("reminder_sent_at", sa.DateTime(), nullable=True),
        sa.Column("order_index", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("active_session_token", sa.String(128), nullable=True),
        sa.Column("session_last_active", sa.DateTime(), nullable=True),
        sa.Column("session_device_info", sa.String(255), nullable=True),
        sa.Column("session_browser_info", sa.String(255), nullable=True),
        sa.Column("session_os_info", sa.String(255), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint(
            "signature_request_id",
            "person_id",
            name="uq_signature_recipient_person",
        ),
    )
    op.create_index(
        "ix_signature_request_recipients_signature_request_id",
        "signature_request_recipients",
        ["signature_request_id"],
    )
    op.create_index(
        "ix_signature_request_recipients_token_hash",
        "signature_request_recipients",
        ["token_hash"],
        unique=True,
    )

    # =========================================================================
    # Create signature_fields table
    # =========================================================================
    op.create_table(
        "signature_fields",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "signature_request_id",
            sa.String(36),
            sa.ForeignKey("signature_requests.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "recipient_id",
            sa.String(36),
            sa.ForeignKey("signature_request_recipients.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("field_type", sa.String(20), nullable=False, server_default="signature"),
        sa.Column("page_number", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("x_position", sa.Float(), nullable=False),
        sa.Column("y_position", sa.Float(), nullable=False),
        sa.Column("width", sa.Float(), nullable=False),
        sa.Column("height", sa.Float(), nullable=False),
        sa.Column("label", sa.String(255), nullable=True),
        sa.Column("order_index", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index(
        "ix_signature_fields_signature_request_id",
        "signature_fields",
        ["signature_request_id"],
    )
    op.create_index("ix_signature_fields_recipient_id", "signature_fields", ["recipient_id"])

    # =========================================================================
    # Create signatures table
    # =========================================================================
    op.create_table(
        "signatures",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "signature_field_id",
            sa.String(36),
            sa.ForeignKey("signature_fields.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "signature_request_recipient_id",
            sa.String(36),
            sa.ForeignKey("signature_request_recipients.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("signature_type", sa.String(20), nullable=False),
        sa.Column("signature_data", sa.Text(), nullable=False),
        sa.Column("signed_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint(
            "signature_field_id",
            "signature_request_recipient_id",
            name="uq_signature_field_recipient",
        ),
    )
    op.create_index("ix_signatures_signature_field_id", "signatures", ["signature_field_id"])
    op.create_index(
        "ix_signatures_signature_request_recipient_id",
        "signatures",
        ["signature_request_recipient_id"],
    )

    # =========================================================================
    # Create signature_audit_logs table
    # =========================================================================
    op.create_table(
        "signature_audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "signature_request_recipient_id",
            sa.String(36),
            sa.ForeignKey("signature_request_recipients.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("sequence", sa.Integer(), nullable=False),
        sa.Column("event_type", sa.String(30), nullable=False),
        sa.Column("event_details", postgresql.JSONB(), nullable=True),
        sa.Column("signer_name", sa.String(255), nullable=True),
        sa.Column("signer_email", sa.String(255), nullable=True),
        sa.Column("ip_address", sa.String(45), nullable=True),
        sa.Column("user_agent", sa.Text(), nullable=True),
        sa.Column("device_info", sa.String(255), nullable=True),
        sa.Column("browser_info", sa.String(255), nullable=True),
        sa.Column("os_info", sa.String(255), nullable=True),
        sa.Column("city", sa.String(100), nullable=True),
        sa.Column("country", sa.String(100), nullable=True),
        sa.Column("consent_accepted", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("consent_accepted_at", sa.DateTime(), nullable=True),
        sa.Column("signed_at", sa.DateTime(), nullable=True),
        sa.Column("document_hash", sa.String(64), nullable=True),
        sa.Column("document_version", sa.String(50), nullable=True),
        sa.Column("auth_method", sa.String(20), nullable=False, server_default="email_link"),
        sa.Column("metadata", postgresql.JSONB(), nullable=True),
        sa.Column("previous_hash", sa.String(64), nullable=True),
        sa.Column("entry_hash", sa.String(64), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint(
            "signature_request_recipient_id",
            "sequence",
            name="uq_signature_audit_recipient_sequence",
        ),
    )
    op.create_index(
        "ix_signature_audit_logs_signature_request_recipient_id",
        "signature_audit_logs",
        ["signature_request_recipient_id"],
    )
    op.create_index("ix_signature_audit_logs_event_type", "signature_audit_logs", ["event_type"])
    op.create_index("ix_signature_audit_logs_created_at", "signature_audit_logs", ["created_at"])
    op.create_index("ix_signature_audit_created_id", "signature_audit_logs", ["created_at", "id"])

    # Audit rows are append-only; only the recipient cascade may remove them
    op.execute(
        """
        CREATE OR REPLACE FUNCTION reject_signature_audit_update()
        RETURNS trigger AS $$
        BEGIN
            RAISE EXCEPTION 'signature_audit_logs rows are append-only';
        END;
        $$ LANGUAGE plpgsql;
        """
    )
    op.execute(
        """
        CREATE TRIGGER signature_audit_logs_no_update
        BEFORE UPDATE ON signature_audit_logs
        FOR EACH ROW EXECUTE FUNCTION reject_signature_audit_update();
        """
    )

    # =========================================================================
    # Create signed_documents table
    # =========================================================================
    op.create_table(
        "signed_documents",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "signature_request_id",
            sa.String(36),
            sa.ForeignKey("signature_requests.id", ondelete="CASCADE"),
            nullable=False,
            unique=True,
        ),
        sa.Column("client_id", sa.String(36), nullable=False),
        sa.Column("signed_pdf_path", sa.String(500), nullable=False),
        sa.Column("original_pdf_hash", sa.String(64), nullable=False),
        sa.Column("signed_pdf_hash", sa.String(64), nullable=False),
        sa.Column("audit_trail_pdf_path", sa.String(500), nullable=True),
        sa.Column("file_name", sa.String(255), nullable=False),
        sa.Column("file_size", sa.Integer(), nullable=False),
        sa.Column("completed_at", sa.DateTime(), nullable=False),
        sa.Column("email_sent_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint(
            "original_pdf_hash <> signed_pdf_hash",
            name="ck_signed_documents_hash_changed",
        ),
    )
    op.create_index("ix_signed_documents_client_id", "signed_documents", ["client_id"])


def downgrade() -> None:
    """Drop signature tables."""
    op.drop_table("signed_documents")
    op.execute("DROP TRIGGER IF EXISTS signature_audit_logs_no_update ON signature_audit_logs")
    op.execute("DROP FUNCTION IF EXISTS reject_signature_audit_update()")
    op.drop_table("signature_audit_logs")
    op.drop_table("signatures")
    op.drop_table("signature_fields")
    op.drop_table("signature_request_recipients")
    op.drop_table("signature_requests")
