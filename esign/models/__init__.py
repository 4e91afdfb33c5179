"""Models package for the e-signature workflow engine."""

from esign.models.base import Base
from esign.models.signature import (
    OPEN_STATUSES,
    TERMINAL_STATUSES,
    AuditEventType,
    AuthMethod,
    SendStatus,
    Signature,
    SignatureAuditLog,
    SignatureField,
    SignatureFieldType,
    SignatureRequest,
    SignatureRequestRecipient,
    SignatureRequestStatus,
    SignatureType,
    SignedDocument,
)

__all__ = [
    "Base",
    "OPEN_STATUSES",
    "TERMINAL_STATUSES",
    "AuditEventType",
    "AuthMethod",
    "SendStatus",
    "Signature",
    "SignatureAuditLog",
    "SignatureField",
    "SignatureFieldType",
    "SignatureRequest",
    "SignatureRequestRecipient",
    "SignatureRequestStatus",
    "SignatureType",
    "SignedDocument",
]
