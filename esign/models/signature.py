"""SQLAlchemy models for document signature requests."""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    event,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, object_session, relationship

from esign.models.base import Base, generate_uuid, utcnow
from esign.utils.errors import AuditLogImmutableError

JSONType = JSON().with_variant(JSONB(), "postgresql")


class SignatureRequestStatus(str, Enum):
    """Lifecycle status of a signature request."""
    DRAFT = "draft"
    PENDING = "pending"
    PARTIALLY_SIGNED = "partially_signed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset(
    {SignatureRequestStatus.COMPLETED.value, SignatureRequestStatus.CANCELLED.value}
)

OPEN_STATUSES = frozenset(
    {SignatureRequestStatus.PENDING.value, SignatureRequestStatus.PARTIALLY_SIGNED.value}
)


class SignatureFieldType(str, Enum):
    """Kinds of field a recipient fills in."""
    SIGNATURE = "signature"
    TYPED_NAME = "typed_name"


class SendStatus(str, Enum):
    """Delivery status of the initial request notification."""
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


class SignatureType(str, Enum):
    """How a signature was captured."""
    DRAWN = "drawn"
    TYPED = "typed"


class AuditEventType(str, Enum):
    """Events recorded in the signature audit trail."""
    TOKEN_ISSUED = "token_issued"
    VIEW = "view"
    CONSENT = "consent"
    SIGN = "sign"
    CANCEL = "cancel"
    ACCESS_DENIED = "access_denied"
    REMINDER_SENT = "reminder_sent"
    DOCUMENT_SEALED = "document_sealed"


class AuthMethod(str, Enum):
    """How the actor behind an audit event was authenticated."""
    EMAIL_LINK = "email_link"
    SYSTEM = "system"
    STAFF = "staff"


class SignatureRequest(Base):
    """
    A document sent out for signing.

    Owns its fields and recipients. Moves draft -> pending ->
    partially_signed -> completed, or to cancelled from any open state.
    """

    __tablename__ = "signature_requests"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)

    client_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    friendly_name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        default="Untitled Document",
    )

    # Source document in the document store
    document_path: Mapped[str] = mapped_column(String(500), nullable=False)
    document_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    created_by: Mapped[str] = mapped_column(String(36), nullable=False)

    status: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        default=SignatureRequestStatus.DRAFT.value,
        index=True,
    )

    sequential_signing: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Notification content
    email_subject: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    email_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    redirect_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    # Reminders
    reminder_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    reminder_interval_days: Mapped[int] = mapped_column(Integer, nullable=False, default=3)
    reminders_sent_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_reminder_sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    next_reminder_date: Mapped[Optional[datetime]] = mapped_column(
        DateTime,
        nullable=True,
        index=True,
    )

    # Terminal state details
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    cancelled_by: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    cancellation_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )

    # Relationships
    recipients: Mapped[List["SignatureRequestRecipient"]] = relationship(
        "SignatureRequestRecipient",
        back_populates="signature_request",
        cascade="all, delete-orphan",
        order_by="SignatureRequestRecipient.order_index",
    )
    fields: Mapped[List["SignatureField"]] = relationship(
        "SignatureField",
        back_populates="signature_request",
        cascade="all, delete-orphan",
    )
    signed_document: Mapped[Optional["SignedDocument"]] = relationship(
        "SignedDocument",
        back_populates="signature_request",
        uselist=False,
    )

    __table_args__ = (
        Index("ix_signature_requests_client_status", "client_id", "status"),
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_STATUSES

    def __repr__(self) -> str:
        return f"<SignatureRequest(id={self.id}, status={self.status})>"


class SignatureRequestRecipient(Base):
    """
    A person asked to sign a request.

    Holds the hashed access token, session tracking state and the
    per-recipient progress timestamps.
    """

    __tablename__ = "signature_request_recipients"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)

    signature_request_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("signature_requests.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    person_id: Mapped[str] = mapped_column(String(36), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False)

    # Access token, stored as a SHA-256 digest plus an encrypted copy for reminders
    token_hash: Mapped[Optional[str]] = mapped_column(
        String(64),
        nullable=True,
        unique=True,
        index=True,
    )
    token_ciphertext: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    token_expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    token_revoked_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    # Initial notification delivery
    sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    send_status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=SendStatus.PENDING.value,
    )
    send_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Progress
    viewed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    consent_accepted_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    signed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    reminder_sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    order_index: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Single active portal session
    active_session_token: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    session_last_active: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    session_device_info: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    session_browser_info: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    session_os_info: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    # Relationships
    signature_request: Mapped["SignatureRequest"] = relationship(
        "SignatureRequest",
        back_populates="recipients",
    )
    fields: Mapped[List["SignatureField"]] = relationship(
        "SignatureField",
        back_populates="recipient",
    )
    signatures: Mapped[List["Signature"]] = relationship(
        "Signature",
        back_populates="recipient",
        cascade="all, delete-orphan",
    )
    # The database removes audit rows with their recipient; the ORM never touches them.
    audit_logs: Mapped[List["SignatureAuditLog"]] = relationship(
        "SignatureAuditLog",
        back_populates="recipient",
        passive_deletes="all",
        order_by="SignatureAuditLog.sequence",
    )

    __table_args__ = (
        UniqueConstraint(
            "signature_request_id",
            "person_id",
            name="uq_signature_recipient_person",
        ),
    )

    def __repr__(self) -> str:
        return f"<SignatureRequestRecipient(id={self.id}, email={self.email})>"


class SignatureField(Base):
    """A signature or typed-name box placed on a page for one recipient."""

    __tablename__ = "signature_fields"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)

    signature_request_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("signature_requests.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    recipient_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("signature_request_recipients.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    field_type: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=SignatureFieldType.SIGNATURE.value,
    )

    # Placement, normalized to the page with a top-left origin
    page_number: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    x_position: Mapped[float] = mapped_column(Float, nullable=False)
    y_position: Mapped[float] = mapped_column(Float, nullable=False)
    width: Mapped[float] = mapped_column(Float, nullable=False)
    height: Mapped[float] = mapped_column(Float, nullable=False)

    label: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    order_index: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    # Relationships
    signature_request: Mapped["SignatureRequest"] = relationship(
        "SignatureRequest",
        back_populates="fields",
    )
    recipient: Mapped["SignatureRequestRecipient"] = relationship(
        "SignatureRequestRecipient",
        back_populates="fields",
    )
    signatures: Mapped[List["Signature"]] = relationship(
        "Signature",
        back_populates="field",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<SignatureField(id={self.id}, type={self.field_type}, page={self.page_number})>"


class Signature(Base):
    """The captured mark for one field. Written once, never updated."""

    __tablename__ = "signatures"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)

    signature_field_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("signature_fields.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    signature_request_recipient_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("signature_request_recipients.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    signature_type: Mapped[str] = mapped_column(String(20), nullable=False)
    signature_data: Mapped[str] = mapped_column(Text, nullable=False)

    signed_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    # Relationships
    field: Mapped["SignatureField"] = relationship(
        "SignatureField",
        back_populates="signatures",
    )
    recipient: Mapped["SignatureRequestRecipient"] = relationship(
        "SignatureRequestRecipient",
        back_populates="signatures",
    )

    __table_args__ = (
        UniqueConstraint(
            "signature_field_id",
            "signature_request_recipient_id",
            name="uq_signature_field_recipient",
        ),
    )

    def __repr__(self) -> str:
        return f"<Signature(id={self.id}, field={self.signature_field_id})>"


class SignatureAuditLog(Base):
    """
    Append-only record of a signing event.

    Each recipient's entries form an HMAC chain: ``entry_hash`` covers the
    entry's content plus the ``previous_hash`` of the entry before it.
    """

    __tablename__ = "signature_audit_logs"

    # Integer key so insertion order breaks timestamp ties
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    signature_request_recipient_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("signature_request_recipients.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)

    event_type: Mapped[str] = mapped_column(String(30), nullable=False, index=True)
    event_details: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSONType, nullable=True)

    # Actor
    signer_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    signer_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Access context
    ip_address: Mapped[Optional[str]] = mapped_column(String(45), nullable=True)
    user_agent: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    device_info: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    browser_info: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    os_info: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    city: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    country: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    consent_accepted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    consent_accepted_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    signed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    # Document state at event time
    document_hash: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    document_version: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    auth_method: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=AuthMethod.EMAIL_LINK.value,
    )

    event_metadata: Mapped[Optional[Dict[str, Any]]] = mapped_column(
        "metadata",
        JSONType,
        nullable=True,
    )

    # Chain
    previous_hash: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    entry_hash: Mapped[str] = mapped_column(String(64), nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        default=utcnow,
        index=True,
    )

    recipient: Mapped["SignatureRequestRecipient"] = relationship(
        "SignatureRequestRecipient",
        back_populates="audit_logs",
    )

    __table_args__ = (
        UniqueConstraint(
            "signature_request_recipient_id",
            "sequence",
            name="uq_signature_audit_recipient_sequence",
        ),
        Index("ix_signature_audit_created_id", "created_at", "id"),
    )

    def __repr__(self) -> str:
        return f"<SignatureAuditLog(id={self.id}, event={self.event_type})>"


class SignedDocument(Base):
    """The sealed PDF and its audit certificate for a completed request."""

    __tablename__ = "signed_documents"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)

    signature_request_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("signature_requests.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    client_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)

    signed_pdf_path: Mapped[str] = mapped_column(String(500), nullable=False)
    original_pdf_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    signed_pdf_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    audit_trail_pdf_path: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    file_size: Mapped[int] = mapped_column(Integer, nullable=False)

    completed_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    email_sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    signature_request: Mapped["SignatureRequest"] = relationship(
        "SignatureRequest",
        back_populates="signed_document",
    )

    def __repr__(self) -> str:
        return f"<SignedDocument(id={self.id}, request={self.signature_request_id})>"


# =============================================================================
# Immutability Guards
# =============================================================================

def _has_column_changes(target: Any) -> bool:
    session = object_session(target)
    if session is None:
        return True
    return session.is_modified(target, include_collections=False)


@event.listens_for(SignatureAuditLog, "before_update")
def _reject_audit_update(mapper, connection, target) -> None:
    if _has_column_changes(target):
        raise AuditLogImmutableError(details={"audit_log_id": target.id})


@event.listens_for(SignatureAuditLog, "before_delete")
def _reject_audit_delete(mapper, connection, target) -> None:
    raise AuditLogImmutableError(details={"audit_log_id": target.id})


@event.listens_for(Signature, "before_update")
def _reject_signature_update(mapper, connection, target) -> None:
    if _has_column_changes(target):
        raise AuditLogImmutableError(
            message="Signatures cannot be modified",
            details={"signature_id": target.id},
        )
