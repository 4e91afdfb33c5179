"""Pydantic schemas for the signature request API."""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator

from esign.models.signature import (
    SendStatus,
    SignatureFieldType,
    SignatureRequestStatus,
    SignatureType,
)


# =============================================================================
# Staff Requests
# =============================================================================

class SignatureRequestCreate(BaseModel):
    """Request to create a draft signature request."""
    client_id: str = Field(..., min_length=1, max_length=36)
    document_path: str = Field(..., min_length=1, max_length=500, description="Path in the document store")
    document_name: Optional[str] = Field(None, max_length=255)
    friendly_name: str = Field("Untitled Document", min_length=1, max_length=255)
    sequential_signing: bool = False
    email_subject: Optional[str] = Field(None, max_length=255)
    email_message: Optional[str] = Field(None, max_length=5000)
    redirect_url: Optional[str] = Field(None, max_length=500)
    reminder_enabled: bool = True
    reminder_interval_days: int = Field(3, ge=1, le=30)

    @field_validator("friendly_name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Name cannot be blank")
        return v

    class Config:
        json_schema_extra = {
            "example": {
                "client_id": "9b2f0c55-6a51-4a43-9d0e-3f5a1f0b7c21",
                "document_path": "3f/3fa1c0...e9.pdf",
                "document_name": "engagement-letter.pdf",
                "friendly_name": "Engagement Letter 2026",
                "sequential_signing": True,
                "reminder_interval_days": 3,
            }
        }


class RecipientCreate(BaseModel):
    """Add a person who must sign."""
    person_id: str = Field(..., min_length=1, max_length=36)
    name: str = Field(..., min_length=1, max_length=255)
    email: EmailStr
    order_index: int = Field(0, ge=0)


class FieldCreate(BaseModel):
    """
    Place a field for a recipient.

    Coordinates are fractions of the page measured from the top-left
    corner. Range checks happen in the placement validator so that every
    violation is reported at once.
    """
    recipient_id: str
    field_type: SignatureFieldType = SignatureFieldType.SIGNATURE
    page_number: int = 1
    x_position: float
    y_position: float
    width: float
    height: float
    label: Optional[str] = Field(None, max_length=255)
    order_index: int = 0


class CancelRequest(BaseModel):
    """Cancel an open signature request."""
    reason: Optional[str] = Field(None, max_length=2000)


# =============================================================================
# Recipient (Portal) Requests
# =============================================================================

class ConsentSubmit(BaseModel):
    """Recipient accepts the electronic signature disclosure."""
    session_token: str
    consent_text: Optional[str] = Field(None, max_length=5000)


class SignatureItem(BaseModel):
    """One captured signature for one field."""
    field_id: str
    signature_type: SignatureType
    signature_data: str = Field(..., min_length=1)


class SignaturesSubmit(BaseModel):
    """Signatures submitted from the signing portal."""
    session_token: str
    signatures: List[SignatureItem] = Field(..., min_length=1)

    @field_validator("signatures")
    @classmethod
    def unique_fields(cls, v: List[SignatureItem]) -> List[SignatureItem]:
        ids = [item.field_id for item in v]
        if len(ids) != len(set(ids)):
            raise ValueError("Each field may only be signed once")
        return v


# =============================================================================
# Responses
# =============================================================================

class FieldResponse(BaseModel):
    id: str
    recipient_id: str
    field_type: SignatureFieldType
    page_number: int
    x_position: float
    y_position: float
    width: float
    height: float
    label: Optional[str] = None
    order_index: int

    class Config:
        from_attributes = True


class RecipientResponse(BaseModel):
    """Recipient progress as seen by staff. Tokens are never returned."""
    id: str
    person_id: str
    name: str
    email: str
    order_index: int
    send_status: SendStatus
    send_error: Optional[str] = None
    sent_at: Optional[datetime] = None
    viewed_at: Optional[datetime] = None
    consent_accepted_at: Optional[datetime] = None
    signed_at: Optional[datetime] = None
    reminder_sent_at: Optional[datetime] = None
    token_expires_at: Optional[datetime] = None
    token_revoked_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class SignatureRequestResponse(BaseModel):
    id: str
    client_id: str
    friendly_name: str
    document_path: str
    document_name: Optional[str] = None
    created_by: str
    status: SignatureRequestStatus
    sequential_signing: bool
    email_subject: Optional[str] = None
    email_message: Optional[str] = None
    redirect_url: Optional[str] = None
    reminder_enabled: bool
    reminder_interval_days: int
    reminders_sent_count: int
    last_reminder_sent_at: Optional[datetime] = None
    next_reminder_date: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancelled_by: Optional[str] = None
    cancellation_reason: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    recipients: List[RecipientResponse] = Field(default_factory=list)
    fields: List[FieldResponse] = Field(default_factory=list)

    class Config:
        from_attributes = True


class SignatureRequestSummary(BaseModel):
    id: str
    client_id: str
    friendly_name: str
    status: SignatureRequestStatus
    created_at: datetime
    completed_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class SignatureRequestListResponse(BaseModel):
    items: List[SignatureRequestSummary]
    total: int
    page: int
    page_size: int
    total_pages: int


class AuditEventResponse(BaseModel):
    id: int
    signature_request_recipient_id: str
    sequence: int
    event_type: str
    event_details: Optional[Dict[str, Any]] = None
    signer_name: Optional[str] = None
    signer_email: Optional[str] = None
    ip_address: Optional[str] = None
    device_info: Optional[str] = None
    browser_info: Optional[str] = None
    os_info: Optional[str] = None
    city: Optional[str] = None
    country: Optional[str] = None
    consent_accepted: bool
    signed_at: Optional[datetime] = None
    document_hash: Optional[str] = None
    document_version: Optional[str] = None
    auth_method: str
    previous_hash: Optional[str] = None
    entry_hash: str
    created_at: datetime

    class Config:
        from_attributes = True


class ChainVerificationResponse(BaseModel):
    signature_request_id: str
    is_valid: bool
    recipients: Dict[str, Dict[str, Any]]


class SignedDocumentResponse(BaseModel):
    id: str
    signature_request_id: str
    client_id: str
    file_name: str
    file_size: int
    original_pdf_hash: str
    signed_pdf_hash: str
    completed_at: datetime
    email_sent_at: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True


class ActivationResponse(BaseModel):
    """Result of sending a request out for signature."""
    signature_request: SignatureRequestResponse
    notifications_sent: int
    notifications_failed: int


class SigningFieldView(BaseModel):
    id: str
    field_type: SignatureFieldType
    page_number: int
    x_position: float
    y_position: float
    width: float
    height: float
    label: Optional[str] = None
    signed: bool


class SigningSessionResponse(BaseModel):
    """What the portal needs to render the signing page."""
    session_token: str
    signature_request_id: str
    document_name: str
    recipient_name: str
    recipient_email: str
    consent_required: bool
    consent_text: str
    can_sign_now: bool
    fields: List[SigningFieldView]
    redirect_url: Optional[str] = None


class SignatureSubmitResponse(BaseModel):
    recorded: int
    skipped: int
    status: SignatureRequestStatus
    completed: bool
    message: str
