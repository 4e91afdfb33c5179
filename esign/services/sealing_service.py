"""Service for sealing completed signature requests."""

import logging
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from esign.config.settings import NotificationSettings, get_settings
from esign.infrastructure.storage.document_store import DocumentStore
from esign.models.base import utcnow
from esign.models.signature import (
    AuditEventType,
    AuthMethod,
    Signature,
    SignatureRequest,
    SignedDocument,
)
from esign.services.audit_trail_service import VERSION_SIGNED, AuditTrailService
from esign.services.context import SYSTEM_CONTEXT
from esign.services.document_generation import (
    CertificateGenerator,
    SignatureStamp,
    SignatureStamper,
)
from esign.services.field_validator import FieldPlacementValidator
from esign.services.notifications.base import (
    NotificationAttachment,
    NotificationSender,
    NotificationTemplate,
    TemplateContext,
)
from esign.utils.errors import SealingFailedError
from esign.utils.hashing import sha256_hex

logger = logging.getLogger(__name__)


class SealingService:
    """
    Produces the final signed artifact for a request.

    Sealing is idempotent: a request has at most one SignedDocument, and
    sealing an already sealed request returns the existing row.
    """

    def __init__(
        self,
        session: Session,
        document_store: DocumentStore,
        audit: AuditTrailService,
        notifier: Optional[NotificationSender] = None,
        notification_settings: Optional[NotificationSettings] = None,
    ):
        self.session = session
        self.document_store = document_store
        self.audit = audit
        self.notifier = notifier
        self.notification_settings = notification_settings or get_settings().notifications
        self.stamper = SignatureStamper()
        self.certificates = CertificateGenerator(self.notification_settings.firm_name)

    def get_signed_document(self, request_id: str) -> Optional[SignedDocument]:
        return self.session.execute(
            select(SignedDocument).where(SignedDocument.signature_request_id == request_id)
        ).scalar_one_or_none()

    # =========================================================================
    # Sealing
    # =========================================================================

    def seal(self, request: SignatureRequest, now: Optional[datetime] = None) -> SignedDocument:
        """
        Stamp every signature onto the source PDF and store the result.

        The new row is flushed but not committed.

        Raises:
            SealingFailedError: anything prevented the sealed document from being stored
        """
        existing = self.get_signed_document(request.id)
        if existing is not None:
            return existing

        now = now or utcnow()
        try:
            signed_document = self._build(request, now)
        except SealingFailedError:
            raise
        except Exception as e:
            logger.exception(f"Sealing failed for signature request {request.id}")
            raise SealingFailedError(details={"signature_request_id": request.id}) from e

        self.session.add(signed_document)
        try:
            self.session.flush()
        except IntegrityError:
            # Another worker sealed the same request first
            self.session.rollback()
            existing = self.get_signed_document(request.id)
            if existing is None:
                raise SealingFailedError(details={"signature_request_id": request.id})
            logger.info(f"Signature request {request.id} was sealed concurrently")
            return existing

        logger.info(
            f"Sealed signature request {request.id}: "
            f"{signed_document.original_pdf_hash[:12]} -> {signed_document.signed_pdf_hash[:12]}"
        )
        return signed_document

    def _collect_stamps(self, request: SignatureRequest) -> List[SignatureStamp]:
        signatures: Dict[str, Signature] = {}
        for recipient in request.recipients:
            for signature in recipient.signatures:
                signatures[signature.signature_field_id] = signature

        stamps = []
        for field in FieldPlacementValidator.sort_for_rendering(request.fields):
            signature = signatures.get(field.id)
            if signature is None:
                raise SealingFailedError(
                    message="Cannot seal a document with unsigned fields",
                    details={"signature_request_id": request.id, "field_id": field.id},
                )
            stamps.append(
                SignatureStamp(
                    page_number=field.page_number,
                    x=field.x_position,
                    y=field.y_position,
                    width=field.width,
                    height=field.height,
                    signature_type=signature.signature_type,
                    data=signature.signature_data,
                )
            )
        return stamps

    def _build(self, request: SignatureRequest, now: datetime) -> SignedDocument:
        stamps = self._collect_stamps(request)

        original = self.document_store.get(request.document_path)
        original_hash = sha256_hex(original)

        signed = self.stamper.stamp(
            original,
            stamps,
            metadata={
                "SignatureRequestId": request.id,
                "OriginalSHA256": original_hash,
            },
        )
        signed_hash = sha256_hex(signed)
        if signed_hash == original_hash:
            raise SealingFailedError(
                message="Sealed document is identical to the original",
                details={"signature_request_id": request.id},
            )

        file_name = f"{Path(request.document_name or request.friendly_name).stem}_signed.pdf"
        signed_path = self.document_store.put(signed, file_name)

        for recipient in request.recipients:
            self.audit.append(
                recipient,
                AuditEventType.DOCUMENT_SEALED,
                context=SYSTEM_CONTEXT,
                details={"signed_pdf_path": signed_path},
                auth_method=AuthMethod.SYSTEM,
                document_hash=signed_hash,
                document_version=VERSION_SIGNED,
                now=now,
            )

        certificate = self.certificates.generate(
            title=request.friendly_name,
            report_text=self.audit.render_report(request.id),
            signed_pdf_hash=signed_hash,
            original_pdf_hash=original_hash,
        )
        certificate_path = self.document_store.put(certificate, "audit_trail.pdf")

        completed_at = max(
            signature.signed_at
            for recipient in request.recipients
            for signature in recipient.signatures
        )

        return SignedDocument(
            signature_request_id=request.id,
            client_id=request.client_id,
            signed_pdf_path=signed_path,
            original_pdf_hash=original_hash,
            signed_pdf_hash=signed_hash,
            audit_trail_pdf_path=certificate_path,
            file_name=file_name,
            file_size=len(signed),
            completed_at=completed_at,
            created_at=now,
        )

    # =========================================================================
    # Completion Notice
    # =========================================================================

    def notify_completion(
        self,
        request: SignatureRequest,
        signed_document: SignedDocument,
        now: Optional[datetime] = None,
    ) -> int:
        """
        Send the signed copy to every recipient.

        Returns the number of notices delivered. Failures are logged only.
        """
        if self.notifier is None:
            return 0

        try:
            attachments = [
                NotificationAttachment(
                    filename=signed_document.file_name,
                    content=self.document_store.get(signed_document.signed_pdf_path),
                )
            ]
            if signed_document.audit_trail_pdf_path:
                attachments.append(
                    NotificationAttachment(
                        filename="certificate_of_completion.pdf",
                        content=self.document_store.get(signed_document.audit_trail_pdf_path),
                    )
                )
        except Exception:
            logger.exception(f"Could not load signed copy for request {request.id}")
            return 0

        delivered = 0
        for recipient in request.recipients:
            context = TemplateContext(
                template=NotificationTemplate.SIGNATURE_COMPLETED,
                recipient_name=recipient.name,
                document_name=request.friendly_name,
                firm_name=self.notification_settings.firm_name,
                attachments=attachments,
            )
            try:
                result = self.notifier.send(recipient.email, context)
            except Exception:
                logger.exception(f"Completion notice to {recipient.email} raised")
                continue

            if result.success:
                delivered += 1
            else:
                logger.error(
                    f"Completion notice to {recipient.email} failed: {result.error_message}"
                )

        if delivered:
            signed_document.email_sent_at = now or utcnow()
        return delivered
