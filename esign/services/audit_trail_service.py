"""Service for the append-only signature audit trail."""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from esign.config.settings import get_settings
from esign.infrastructure.storage.document_store import DocumentStore
from esign.models.base import utcnow
from esign.models.signature import (
    AuditEventType,
    AuthMethod,
    SignatureAuditLog,
    SignatureRequest,
    SignatureRequestRecipient,
)
from esign.services.context import AccessContext
from esign.utils.errors import DocumentNotFoundError, create_not_found_error
from esign.utils.hashing import IntegrityVerifier, sha256_hex

logger = logging.getLogger(__name__)


# Document version labels stored on each entry
VERSION_ORIGINAL = "original"
VERSION_SIGNED = "signed"

# Tries at the next sequence number when another writer took it first
APPEND_ATTEMPTS = 3

EVENT_LABELS = {
    AuditEventType.TOKEN_ISSUED.value: "Signing link issued",
    AuditEventType.VIEW.value: "Document viewed",
    AuditEventType.CONSENT.value: "Electronic signature consent accepted",
    AuditEventType.SIGN.value: "Field signed",
    AuditEventType.CANCEL.value: "Request cancelled",
    AuditEventType.ACCESS_DENIED.value: "Access denied",
    AuditEventType.REMINDER_SENT.value: "Reminder sent",
    AuditEventType.DOCUMENT_SEALED.value: "Signed document sealed",
}


def format_timestamp(value: Optional[datetime]) -> str:
    if value is None:
        return "-"
    return value.strftime("%Y-%m-%d %H:%M:%S UTC")


class AuditTrailService:
    """
    Records and reads signing events.

    Entries are only ever inserted. Each recipient's entries carry a
    sequence number and an HMAC chain so gaps and edits are detectable.
    """

    def __init__(
        self,
        session: Session,
        document_store: DocumentStore,
        secret_key: Optional[str] = None,
    ):
        self.session = session
        self.document_store = document_store
        self.verifier = IntegrityVerifier(secret_key or get_settings().audit_secret_key)
        self._hash_cache: Dict[str, str] = {}

    # =========================================================================
    # Recording
    # =========================================================================

    def document_hash(self, path: Optional[str]) -> Optional[str]:
        """SHA-256 of a stored document, cached per path."""
        if not path:
            return None
        if path not in self._hash_cache:
            try:
                self._hash_cache[path] = sha256_hex(self.document_store.get(path))
            except DocumentNotFoundError:
                logger.warning(f"Document {path} missing while recording audit entry")
                return None
        return self._hash_cache[path]

    def append(
        self,
        recipient: SignatureRequestRecipient,
        event_type: AuditEventType,
        context: Optional[AccessContext] = None,
        details: Optional[Dict[str, Any]] = None,
        auth_method: AuthMethod = AuthMethod.EMAIL_LINK,
        consent_accepted: bool = False,
        consent_accepted_at: Optional[datetime] = None,
        signed_at: Optional[datetime] = None,
        document_path: Optional[str] = None,
        document_hash: Optional[str] = None,
        document_version: str = VERSION_ORIGINAL,
        metadata: Optional[Dict[str, Any]] = None,
        now: Optional[datetime] = None,
    ) -> SignatureAuditLog:
        """
        Insert one audit entry for ``recipient`` and link it into the chain.

        The entry is flushed but not committed; callers own the transaction.
        """
        context = context or AccessContext()
        device = context.device

        if document_hash is None:
            path = document_path or recipient.signature_request.document_path
            document_hash = self.document_hash(path)

        content = dict(
            event_type=AuditEventType(event_type).value,
            event_details=details or {},
            signer_name=recipient.name,
            signer_email=recipient.email,
            ip_address=context.ip_address,
            user_agent=context.user_agent,
            device_info=device.device,
            browser_info=device.browser,
            os_info=device.os,
            city=context.city,
            country=context.country,
            consent_accepted=consent_accepted,
            consent_accepted_at=consent_accepted_at,
            signed_at=signed_at,
            document_hash=document_hash,
            document_version=document_version,
            auth_method=AuthMethod(auth_method).value,
            event_metadata=metadata,
        )

        self._lock_recipient(recipient.id)
        attempt = 0
        while True:
            attempt += 1
            last = self._last_entry(recipient.id)
            created_at = now or utcnow()
            if last is not None and created_at < last.created_at:
                created_at = last.created_at

            entry = SignatureAuditLog(
                signature_request_recipient_id=recipient.id,
                sequence=(last.sequence + 1) if last else 1,
                previous_hash=last.entry_hash if last else None,
                created_at=created_at,
                **content,
            )
            entry.entry_hash = self.verifier.compute_checksum(
                self._entry_payload(entry), entry.previous_hash
            )

            try:
                with self.session.begin_nested():
                    self.session.add(entry)
            except IntegrityError:
                if attempt == APPEND_ATTEMPTS:
                    raise
                logger.warning(
                    f"Audit sequence {entry.sequence} already taken for recipient "
                    f"{recipient.id}, retrying"
                )
                continue

            logger.debug(
                f"Audit {entry.event_type} #{entry.sequence} for recipient {recipient.id}"
            )
            return entry

    def _lock_recipient(self, recipient_id: str) -> None:
        """
        Hold the recipient row until the transaction ends.

        Backends without row locks (SQLite) skip this and rely on the
        sequence retry in ``append``.
        """
        self.session.execute(
            select(SignatureRequestRecipient.id)
            .where(SignatureRequestRecipient.id == recipient_id)
            .with_for_update()
        )

    def _last_entry(self, recipient_id: str) -> Optional[SignatureAuditLog]:
        return self.session.execute(
            select(SignatureAuditLog)
            .where(SignatureAuditLog.signature_request_recipient_id == recipient_id)
            .order_by(SignatureAuditLog.sequence.desc())
            .limit(1)
        ).scalar_one_or_none()

    @staticmethod
    def _entry_payload(entry: SignatureAuditLog) -> Dict[str, Any]:
        """Content covered by the entry checksum."""
        return {
            "recipient_id": entry.signature_request_recipient_id,
            "sequence": entry.sequence,
            "event_type": entry.event_type,
            "event_details": entry.event_details,
            "signer_name": entry.signer_name,
            "signer_email": entry.signer_email,
            "ip_address": entry.ip_address,
            "user_agent": entry.user_agent,
            "consent_accepted": entry.consent_accepted,
            "consent_accepted_at": entry.consent_accepted_at,
            "signed_at": entry.signed_at,
            "document_hash": entry.document_hash,
            "document_version": entry.document_version,
            "auth_method": entry.auth_method,
            "city": entry.city,
            "country": entry.country,
            "created_at": entry.created_at,
        }

    # =========================================================================
    # Retrieval
    # =========================================================================

    def _get_request(self, request_id: str) -> SignatureRequest:
        request = self.session.get(SignatureRequest, request_id)
        if request is None:
            raise create_not_found_error("Signature request", request_id)
        return request

    def list_events(self, request_id: str) -> List[SignatureAuditLog]:
        """All entries for a request, oldest first, ties broken by insertion."""
        self._get_request(request_id)
        return list(
            self.session.execute(
                select(SignatureAuditLog)
                .join(
                    SignatureRequestRecipient,
                    SignatureAuditLog.signature_request_recipient_id
                    == SignatureRequestRecipient.id,
                )
                .where(SignatureRequestRecipient.signature_request_id == request_id)
                .order_by(SignatureAuditLog.created_at, SignatureAuditLog.id)
            ).scalars()
        )

    # =========================================================================
    # Integrity
    # =========================================================================

    def verify_chain(self, recipient_id: str) -> Tuple[bool, List[str]]:
        """
        Verify integrity of one recipient's chain.

        Returns (is_valid, list_of_errors).
        """
        entries = self.session.execute(
            select(SignatureAuditLog)
            .where(SignatureAuditLog.signature_request_recipient_id == recipient_id)
            .order_by(SignatureAuditLog.sequence)
        ).scalars().all()

        errors: List[str] = []
        previous_hash: Optional[str] = None

        for expected_sequence, entry in enumerate(entries, start=1):
            if entry.sequence != expected_sequence:
                errors.append(
                    f"Entry {entry.id} has sequence {entry.sequence}, expected {expected_sequence}"
                )

            if entry.previous_hash != previous_hash:
                errors.append(
                    f"Entry {entry.id} has broken chain link "
                    f"(expected {previous_hash}, got {entry.previous_hash})"
                )

            if not self.verifier.verify_checksum(
                self._entry_payload(entry), entry.entry_hash, entry.previous_hash
            ):
                errors.append(f"Entry {entry.id} checksum mismatch")

            previous_hash = entry.entry_hash

        return len(errors) == 0, errors

    def verify_request(self, request_id: str) -> Dict[str, Any]:
        """Verify every recipient chain on a request."""
        request = self._get_request(request_id)
        results = {}
        for recipient in request.recipients:
            is_valid, errors = self.verify_chain(recipient.id)
            results[recipient.id] = {"is_valid": is_valid, "errors": errors}
        return {
            "signature_request_id": request.id,
            "is_valid": all(r["is_valid"] for r in results.values()),
            "recipients": results,
        }

    # =========================================================================
    # Report
    # =========================================================================

    def render_report(self, request_id: str) -> str:
        """
        Plain-text audit report for a request.

        Output depends only on stored rows, so rendering the same state
        twice gives identical text.
        """
        request = self._get_request(request_id)
        events = self.list_events(request_id)

        lines: List[str] = [
            "SIGNATURE AUDIT TRAIL",
            "=" * 72,
            f"Document:        {request.friendly_name}",
            f"Source file:     {request.document_name or '-'}",
            f"Request ID:      {request.id}",
            f"Created:         {format_timestamp(request.created_at)}",
            f"Signing order:   {'sequential' if request.sequential_signing else 'any order'}",
            f"Original SHA-256: {self.document_hash(request.document_path) or '-'}",
            "",
            "RECIPIENTS",
            "-" * 72,
        ]

        recipients = sorted(request.recipients, key=lambda r: (r.order_index, r.email, r.id))
        for position, recipient in enumerate(recipients, start=1):
            lines.append(f"{position}. {recipient.name} <{recipient.email}>")
            lines.append(
                f"   Viewed: {format_timestamp(recipient.viewed_at)}"
                f" | Consent: {format_timestamp(recipient.consent_accepted_at)}"
                f" | Signed: {format_timestamp(recipient.signed_at)}"
            )

        lines += ["", "EVENTS", "-" * 72]

        for entry in events:
            label = EVENT_LABELS.get(entry.event_type, entry.event_type)
            lines.append(
                f"[{format_timestamp(entry.created_at)}] {label} "
                f"- {entry.signer_name} <{entry.signer_email}>"
            )
            lines.append(
                f"   Method: {entry.auth_method} | IP: {entry.ip_address or '-'}"
                f" | Location: {', '.join(p for p in (entry.city, entry.country) if p) or '-'}"
            )
            lines.append(
                f"   Device: {entry.device_info or '-'} | Browser: {entry.browser_info or '-'}"
                f" | OS: {entry.os_info or '-'}"
            )
            if entry.event_details:
                detail = ", ".join(
                    f"{key}={entry.event_details[key]}" for key in sorted(entry.event_details)
                )
                lines.append(f"   Details: {detail}")
            lines.append(
                f"   Document ({entry.document_version or '-'}): {entry.document_hash or '-'}"
            )
            lines.append(f"   Entry hash: {entry.entry_hash}")

        lines.append("")
        return "\n".join(lines)
