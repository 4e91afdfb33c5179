"""Pydantic schemas for API request/response validation."""

from esign.schemas.signature import (
    ActivationResponse,
    AuditEventResponse,
    CancelRequest,
    ChainVerificationResponse,
    ConsentSubmit,
    FieldCreate,
    FieldResponse,
    RecipientCreate,
    RecipientResponse,
    SignatureItem,
    SignatureRequestCreate,
    SignatureRequestListResponse,
    SignatureRequestResponse,
    SignatureRequestSummary,
    SignaturesSubmit,
    SignatureSubmitResponse,
    SignedDocumentResponse,
    SigningFieldView,
    SigningSessionResponse,
)

__all__ = [
    "ActivationResponse",
    "AuditEventResponse",
    "CancelRequest",
    "ChainVerificationResponse",
    "ConsentSubmit",
    "FieldCreate",
    "FieldResponse",
    "RecipientCreate",
    "RecipientResponse",
    "SignatureItem",
    "SignatureRequestCreate",
    "SignatureRequestListResponse",
    "SignatureRequestResponse",
    "SignatureRequestSummary",
    "SignaturesSubmit",
    "SignatureSubmitResponse",
    "SignedDocumentResponse",
    "SigningFieldView",
    "SigningSessionResponse",
]
