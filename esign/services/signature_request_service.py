"""Service for the signature request lifecycle."""

import io
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Sequence, Tuple

from pypdf import PdfReader
from pypdf.errors import PdfReadError
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from esign.config.settings import Settings, get_settings
from esign.infrastructure.storage.document_store import DocumentStore
from esign.models.base import utcnow
from esign.models.signature import (
    AuditEventType,
    AuthMethod,
    SendStatus,
    Signature,
    SignatureField,
    SignatureRequest,
    SignatureRequestRecipient,
    SignatureRequestStatus,
    SignatureType,
    SignedDocument,
)
from esign.schemas.signature import (
    FieldCreate,
    RecipientCreate,
    SignatureItem,
    SignatureRequestCreate,
)
from esign.services.audit_trail_service import AuditTrailService
from esign.services.context import AccessContext
from esign.services.document_generation import decode_drawn_signature
from esign.services.field_validator import FieldPlacementValidator
from esign.services.notifications.base import (
    NotificationSender,
    NotificationTemplate,
    TemplateContext,
)
from esign.services.sealing_service import SealingService
from esign.services.token_service import AccessGrant, TokenService
from esign.utils.auth import CurrentUser
from esign.utils.errors import (
    AlreadySignedError,
    DocumentNotFoundError,
    DocumentIntegrityError,
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    OutOfOrderError,
    SealingFailedError,
    ValidationError,
    create_field_error,
    create_not_found_error,
    create_validation_error,
)
from esign.utils.hashing import sha256_hex, verify_hash

logger = logging.getLogger(__name__)


CONSENT_TEXT = (
    "I have read and agree to the Electronic Signature Disclosure and Consent. "
    "I understand that my electronic signature will be legally binding."
)

MAX_TYPED_SIGNATURE_LENGTH = 255

# Valid status transitions
VALID_STATUS_TRANSITIONS = {
    SignatureRequestStatus.DRAFT: [
        SignatureRequestStatus.PENDING,
        SignatureRequestStatus.CANCELLED,
    ],
    SignatureRequestStatus.PENDING: [
        SignatureRequestStatus.PARTIALLY_SIGNED,
        SignatureRequestStatus.COMPLETED,
        SignatureRequestStatus.CANCELLED,
    ],
    SignatureRequestStatus.PARTIALLY_SIGNED: [
        SignatureRequestStatus.COMPLETED,
        SignatureRequestStatus.CANCELLED,
    ],
    SignatureRequestStatus.COMPLETED: [],  # Terminal state
    SignatureRequestStatus.CANCELLED: [],  # Terminal state
}


@dataclass
class SigningOutcome:
    """Result of recording one or more signatures."""

    recorded: int
    skipped: int
    status: SignatureRequestStatus
    signed_document: Optional[SignedDocument] = None

    @property
    def completed(self) -> bool:
        return self.status == SignatureRequestStatus.COMPLETED


@dataclass
class ActivationResult:
    """Request state after activation plus notification delivery counts."""

    signature_request: SignatureRequest
    notifications_sent: int
    notifications_failed: int


class SignatureRequestService:
    """
    Drives a signature request from draft to completion or cancellation.

    Signing and cancellation lock the request row so completion and
    cancellation are decided exactly once.
    """

    def __init__(
        self,
        session: Session,
        document_store: DocumentStore,
        notifier: Optional[NotificationSender] = None,
        settings: Optional[Settings] = None,
    ):
        self.session = session
        self.document_store = document_store
        self.notifier = notifier
        self.settings = settings or get_settings()
        self.audit = AuditTrailService(session, document_store, self.settings.audit_secret_key)
        self.tokens = TokenService(session, self.audit, self.settings.tokens)
        self.sealing = SealingService(
            session,
            document_store,
            self.audit,
            notifier=notifier,
            notification_settings=self.settings.notifications,
        )
        self.validator = FieldPlacementValidator()

    # =========================================================================
    # Lookup
    # =========================================================================

    def get_request(self, request_id: str) -> SignatureRequest:
        request = self.session.get(SignatureRequest, request_id)
        if request is None:
            raise create_not_found_error("Signature request", request_id)
        return request

    def _lock_request(self, request_id: str) -> SignatureRequest:
        """Load the request with a row lock, refreshing any cached state."""
        request = self.session.execute(
            select(SignatureRequest)
            .where(SignatureRequest.id == request_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if request is None:
            raise create_not_found_error("Signature request", request_id)
        return request

    def list_requests(
        self,
        client_id: Optional[str] = None,
        status: Optional[SignatureRequestStatus] = None,
        page: int = 1,
        page_size: int = 20,
    ) -> Tuple[List[SignatureRequest], int]:
        """Newest first, with the total count before pagination."""
        query = select(SignatureRequest)
        if client_id:
            query = query.where(SignatureRequest.client_id == client_id)
        if status:
            query = query.where(SignatureRequest.status == SignatureRequestStatus(status).value)

        total = self.session.execute(
            select(func.count()).select_from(query.subquery())
        ).scalar() or 0

        items = self.session.execute(
            query.order_by(SignatureRequest.created_at.desc(), SignatureRequest.id)
            .offset((page - 1) * page_size)
            .limit(page_size)
        ).scalars().all()

        return list(items), total

    def get_signed_document(self, request_id: str) -> SignedDocument:
        self.get_request(request_id)
        signed = self.sealing.get_signed_document(request_id)
        if signed is None:
            raise create_not_found_error("Signed document", request_id)
        return signed

    def read_signed_pdf(self, request_id: str) -> Tuple[SignedDocument, bytes]:
        """Sealed PDF bytes, checked against the hash recorded at sealing."""
        signed = self.get_signed_document(request_id)
        content = self.document_store.get(signed.signed_pdf_path)
        if not verify_hash(content, signed.signed_pdf_hash):
            logger.error(f"Signed document for request {request_id} fails its hash check")
            raise DocumentIntegrityError(
                details={"signature_request_id": request_id, "path": signed.signed_pdf_path}
            )
        return signed, content

    # =========================================================================
    # Status Management
    # =========================================================================

    def _transition(self, request: SignatureRequest, new_status: SignatureRequestStatus) -> None:
        current = SignatureRequestStatus(request.status)
        if new_status not in VALID_STATUS_TRANSITIONS.get(current, []):
            raise InvalidStateError(
                message=f"Cannot move signature request from {current.value} to {new_status.value}",
                details={"current_status": current.value, "requested_status": new_status.value},
            )
        logger.info(f"Signature request {request.id}: {current.value} -> {new_status.value}")
        request.status = new_status.value

    @staticmethod
    def _require_draft(request: SignatureRequest) -> None:
        if request.status != SignatureRequestStatus.DRAFT.value:
            raise InvalidStateError(
                message="Signature request can only be edited while in draft",
                details={"current_status": request.status},
            )

    # =========================================================================
    # Draft Preparation
    # =========================================================================

    def create_request(
        self,
        data: SignatureRequestCreate,
        current_user: CurrentUser,
        now: Optional[datetime] = None,
    ) -> SignatureRequest:
        """Create a draft request for a document already in the store."""
        if not self.document_store.exists(data.document_path):
            raise create_validation_error(
                [create_field_error("document_path", "Document not found in store", "not_found")]
            )

        now = now or utcnow()
        request = SignatureRequest(
            client_id=data.client_id,
            friendly_name=data.friendly_name,
            document_path=data.document_path,
            document_name=data.document_name,
            created_by=current_user.id,
            status=SignatureRequestStatus.DRAFT.value,
            sequential_signing=data.sequential_signing,
            email_subject=data.email_subject,
            email_message=data.email_message,
            redirect_url=data.redirect_url,
            reminder_enabled=data.reminder_enabled,
            reminder_interval_days=data.reminder_interval_days,
            reminders_sent_count=0,
            created_at=now,
            updated_at=now,
        )
        self.session.add(request)
        self.session.commit()

        logger.info(f"Created signature request {request.id} for client {request.client_id}")
        return request

    def add_recipient(
        self,
        request_id: str,
        data: RecipientCreate,
        now: Optional[datetime] = None,
    ) -> SignatureRequestRecipient:
        request = self._lock_request(request_id)
        self._require_draft(request)

        if any(r.person_id == data.person_id for r in request.recipients):
            raise create_validation_error(
                [create_field_error("person_id", "Person is already a recipient", "duplicate")]
            )

        recipient = SignatureRequestRecipient(
            signature_request_id=request.id,
            person_id=data.person_id,
            name=data.name,
            email=str(data.email),
            order_index=data.order_index,
            send_status=SendStatus.PENDING.value,
            created_at=now or utcnow(),
        )
        request.recipients.append(recipient)
        self.session.commit()
        return recipient

    def add_field(
        self,
        request_id: str,
        data: FieldCreate,
        now: Optional[datetime] = None,
    ) -> SignatureField:
        request = self._lock_request(request_id)
        self._require_draft(request)

        errors = self.validator.validate([data], request.recipients, require_coverage=False)
        if errors:
            raise create_validation_error(errors)

        field = SignatureField(
            signature_request_id=request.id,
            recipient_id=data.recipient_id,
            field_type=data.field_type.value,
            page_number=data.page_number,
            x_position=data.x_position,
            y_position=data.y_position,
            width=data.width,
            height=data.height,
            label=data.label,
            order_index=data.order_index,
            created_at=now or utcnow(),
        )
        request.fields.append(field)
        self.session.commit()
        return field

    # =========================================================================
    # Activation
    # =========================================================================

    def _page_count(self, document_path: str) -> Optional[int]:
        try:
            return len(PdfReader(io.BytesIO(self.document_store.get(document_path))).pages)
        except (DocumentNotFoundError, PdfReadError) as e:
            logger.warning(f"Cannot read page count for {document_path}: {e}")
            return None

    def activate(
        self,
        request_id: str,
        current_user: CurrentUser,
        context: Optional[AccessContext] = None,
        now: Optional[datetime] = None,
    ) -> ActivationResult:
        """
        Validate a draft, issue recipient tokens and send it out.

        Raises:
            InvalidStateError: the request is not a draft
            ValidationError: recipients or fields are missing or misplaced
        """
        now = now or utcnow()
        request = self._lock_request(request_id)
        self._require_draft(request)

        if not request.recipients:
            raise create_validation_error(
                [create_field_error("recipients", "At least one recipient is required", "required")]
            )

        errors = self.validator.validate(request.fields, request.recipients)

        page_count = self._page_count(request.document_path)
        if page_count is None:
            errors.append(
                create_field_error("document_path", "Document is not a readable PDF", "invalid")
            )
        else:
            for index, field in enumerate(request.fields):
                if field.page_number > page_count:
                    errors.append(
                        create_field_error(
                            f"fields[{index}].page_number",
                            f"Document has only {page_count} page(s)",
                            "out_of_range",
                        )
                    )

        if errors:
            raise create_validation_error(errors)

        tokens: Dict[str, str] = {}
        for recipient in request.recipients:
            tokens[recipient.id] = self.tokens.issue_token(recipient, context=context, now=now)

        self._transition(request, SignatureRequestStatus.PENDING)
        if request.reminder_enabled:
            request.next_reminder_date = now + timedelta(days=request.reminder_interval_days)
        request.updated_at = now
        self.session.commit()

        sent, failed = self._send_requests(request, tokens, now)
        self.session.commit()

        logger.info(
            f"Activated signature request {request.id} by {current_user.id}: "
            f"{sent} sent, {failed} failed"
        )
        return ActivationResult(request, sent, failed)

    def _send_requests(
        self,
        request: SignatureRequest,
        tokens: Dict[str, str],
        now: datetime,
    ) -> Tuple[int, int]:
        """Send the initial notice; failures are recorded on the recipient."""
        if self.notifier is None:
            return 0, 0

        sent = failed = 0
        for recipient in request.recipients:
            context = TemplateContext(
                template=NotificationTemplate.SIGNATURE_REQUEST,
                recipient_name=recipient.name,
                document_name=request.friendly_name,
                firm_name=self.settings.notifications.firm_name,
                signing_link=self.tokens.build_link(tokens[recipient.id]),
                custom_message=request.email_message,
                subject=request.email_subject,
            )
            try:
                result = self.notifier.send(recipient.email, context)
            except Exception as e:
                logger.exception(f"Notification to {recipient.email} raised")
                recipient.send_status = SendStatus.FAILED.value
                recipient.send_error = str(e)
                failed += 1
                continue

            if result.success:
                recipient.send_status = SendStatus.SENT.value
                recipient.sent_at = now
                recipient.send_error = None
                sent += 1
            else:
                logger.error(
                    f"Signature request notice to {recipient.email} failed: {result.error_message}"
                )
                recipient.send_status = SendStatus.FAILED.value
                recipient.send_error = result.error_message
                failed += 1

        return sent, failed

    # =========================================================================
    # Recipient Access
    # =========================================================================

    def open_signing_session(
        self,
        token: str,
        context: Optional[AccessContext] = None,
        now: Optional[datetime] = None,
    ) -> AccessGrant:
        """Validate a portal visit and commit the view event."""
        grant = self.tokens.validate_access(token, context=context, now=now)
        self.session.commit()
        return grant

    def can_sign_now(self, recipient: SignatureRequestRecipient) -> bool:
        try:
            self._check_order(recipient.signature_request, recipient)
        except OutOfOrderError:
            return False
        return True

    def record_consent(
        self,
        token: str,
        session_token: str,
        consent_text: Optional[str] = None,
        context: Optional[AccessContext] = None,
        now: Optional[datetime] = None,
    ) -> SignatureRequestRecipient:
        """Record acceptance of the electronic signature disclosure. Idempotent."""
        now = now or utcnow()
        recipient = self.tokens.require_session(token, session_token, context=context, now=now)

        if recipient.consent_accepted_at is not None:
            self.session.commit()
            return recipient

        text = consent_text or CONSENT_TEXT
        recipient.consent_accepted_at = now
        self.audit.append(
            recipient,
            AuditEventType.CONSENT,
            context=context,
            details={"consent_text_sha256": sha256_hex(text.encode("utf-8"))},
            consent_accepted=True,
            consent_accepted_at=now,
            metadata={"consent_text": text},
            now=now,
        )
        self.session.commit()

        logger.info(f"Recipient {recipient.id} accepted e-signature consent")
        return recipient

    # =========================================================================
    # Signing
    # =========================================================================

    def record_signature(
        self,
        token: str,
        session_token: str,
        field_id: str,
        signature_type: SignatureType,
        signature_data: str,
        context: Optional[AccessContext] = None,
        now: Optional[datetime] = None,
    ) -> SigningOutcome:
        """
        Record one field signature.

        Raises:
            AlreadySignedError: the field already carries a signature
            InvalidStateError: consent is missing or the request closed while signing
            OutOfOrderError: earlier recipients in sequence have not signed
            SealingFailedError: this signature completed the request but sealing failed
        """
        # Payload checks happen in _validate_payload so they raise our ValidationError
        item = SignatureItem.model_construct(
            field_id=field_id,
            signature_type=SignatureType(signature_type),
            signature_data=signature_data or "",
        )
        return self._sign(token, session_token, [item], context, now, skip_signed=False)

    def submit_signatures(
        self,
        token: str,
        session_token: str,
        items: Sequence[SignatureItem],
        context: Optional[AccessContext] = None,
        now: Optional[datetime] = None,
    ) -> SigningOutcome:
        """Record several field signatures at once, skipping fields already signed."""
        return self._sign(token, session_token, items, context, now, skip_signed=True)

    def _sign(
        self,
        token: str,
        session_token: str,
        items: Sequence[SignatureItem],
        context: Optional[AccessContext],
        now: Optional[datetime],
        skip_signed: bool,
    ) -> SigningOutcome:
        now = now or utcnow()
        recipient = self.tokens.require_session(token, session_token, context=context, now=now)
        request = self._lock_request(recipient.signature_request_id)

        # Cancelled or completed after the token check above
        if not request.is_open:
            raise InvalidStateError(
                message="This signature request is no longer open for signing",
                details={"current_status": request.status},
            )

        if recipient.consent_accepted_at is None:
            raise InvalidStateError(
                message="Electronic signature consent must be accepted before signing",
                details={"required": "consent"},
            )

        self._check_order(request, recipient)

        recorded = skipped = 0
        for item in items:
            if self._record_one(request, recipient, item, context, now, skip_signed):
                recorded += 1
            else:
                skipped += 1

        owned = {f.id for f in request.fields if f.recipient_id == recipient.id}
        signed = {s.signature_field_id for s in recipient.signatures}
        if recipient.signed_at is None and owned and owned <= signed:
            recipient.signed_at = now
            logger.info(f"Recipient {recipient.id} has signed all fields")

        if request.status == SignatureRequestStatus.PENDING.value and recorded:
            self._transition(request, SignatureRequestStatus.PARTIALLY_SIGNED)
        request.updated_at = now

        # Signatures are durable before any sealing work starts
        self.session.commit()

        if self._all_fields_signed(request):
            try:
                signed_document = self._complete(request.id, now)
            except SealingFailedError as exc:
                exc.details = {**(exc.details or {}), "recorded": recorded, "skipped": skipped}
                raise
            return SigningOutcome(
                recorded, skipped, SignatureRequestStatus.COMPLETED, signed_document
            )

        return SigningOutcome(recorded, skipped, SignatureRequestStatus(request.status))

    def _record_one(
        self,
        request: SignatureRequest,
        recipient: SignatureRequestRecipient,
        item: SignatureItem,
        context: Optional[AccessContext],
        now: datetime,
        skip_signed: bool,
    ) -> bool:
        field = self.session.get(SignatureField, item.field_id)
        if field is None or field.signature_request_id != request.id:
            raise NotFoundError(
                message="Signature field not found",
                details={"field_id": item.field_id},
            )
        if field.recipient_id != recipient.id:
            raise ForbiddenError(
                message="This field belongs to another recipient",
                details={"field_id": field.id},
            )

        if field.signatures:
            if skip_signed:
                return False
            raise AlreadySignedError(details={"field_id": field.id})

        self._validate_payload(item)

        signature = Signature(
            signature_field_id=field.id,
            signature_request_recipient_id=recipient.id,
            signature_type=item.signature_type.value,
            signature_data=item.signature_data,
            signed_at=now,
            created_at=now,
        )
        try:
            with self.session.begin_nested():
                field.signatures.append(signature)
                recipient.signatures.append(signature)
        except IntegrityError:
            logger.warning(f"Concurrent signature rejected for field {field.id}")
            raise AlreadySignedError(details={"field_id": field.id})

        self.audit.append(
            recipient,
            AuditEventType.SIGN,
            context=context,
            details={
                "field_id": field.id,
                "field_type": field.field_type,
                "page_number": field.page_number,
                "signature_type": item.signature_type.value,
            },
            consent_accepted=True,
            consent_accepted_at=recipient.consent_accepted_at,
            signed_at=now,
            now=now,
        )
        return True

    @staticmethod
    def _validate_payload(item: SignatureItem) -> None:
        if item.signature_type == SignatureType.DRAWN:
            try:
                decode_drawn_signature(item.signature_data)
            except ValueError as e:
                raise create_validation_error(
                    [create_field_error("signature_data", str(e), "invalid_image")]
                )
        else:
            text = item.signature_data.strip()
            if not text or len(text) > MAX_TYPED_SIGNATURE_LENGTH:
                raise create_validation_error(
                    [
                        create_field_error(
                            "signature_data",
                            f"Typed signatures must be 1-{MAX_TYPED_SIGNATURE_LENGTH} characters",
                        )
                    ]
                )

    @staticmethod
    def _check_order(request: SignatureRequest, recipient: SignatureRequestRecipient) -> None:
        """Sequential requests with distinct order indexes sign lowest index first."""
        if not request.sequential_signing:
            return
        if len({r.order_index for r in request.recipients}) <= 1:
            return

        waiting_on = [
            r.id
            for r in request.recipients
            if r.order_index < recipient.order_index and r.signed_at is None
        ]
        if waiting_on:
            raise OutOfOrderError(details={"waiting_on": waiting_on})

    def _all_fields_signed(self, request: SignatureRequest) -> bool:
        field_count = self.session.execute(
            select(func.count(SignatureField.id)).where(
                SignatureField.signature_request_id == request.id
            )
        ).scalar() or 0
        signed_count = self.session.execute(
            select(func.count(func.distinct(Signature.signature_field_id)))
            .join(SignatureField, Signature.signature_field_id == SignatureField.id)
            .where(SignatureField.signature_request_id == request.id)
        ).scalar() or 0
        return field_count > 0 and signed_count >= field_count

    # =========================================================================
    # Completion
    # =========================================================================

    def _complete(self, request_id: str, now: datetime) -> SignedDocument:
        """Seal under the request lock, then mark the request completed."""
        request = self._lock_request(request_id)

        if request.status == SignatureRequestStatus.COMPLETED.value:
            self.session.commit()
            return self.get_signed_document(request_id)
        if not request.is_open:
            raise InvalidStateError(
                message="Only open signature requests can be completed",
                details={"current_status": request.status},
            )

        try:
            signed_document = self.sealing.seal(request, now=now)
        except Exception:
            self.session.rollback()
            raise

        # seal() may have rolled back after losing a race; reload state
        if request.status == SignatureRequestStatus.COMPLETED.value:
            return signed_document

        self._transition(request, SignatureRequestStatus.COMPLETED)
        for recipient in request.recipients:
            self.tokens.invalidate(recipient, now=now)
        request.completed_at = now
        request.next_reminder_date = None
        request.updated_at = now
        self.session.commit()

        self.sealing.notify_completion(request, signed_document, now=now)
        self.session.commit()
        return signed_document

    def finalize(self, request_id: str, now: Optional[datetime] = None) -> SignedDocument:
        """
        Retry sealing for a fully signed request whose seal failed.

        Completed requests return their existing signed document.
        """
        now = now or utcnow()
        request = self.get_request(request_id)
        if request.status == SignatureRequestStatus.COMPLETED.value:
            return self.get_signed_document(request_id)
        if not self._all_fields_signed(request):
            raise InvalidStateError(
                message="Not every field has been signed",
                details={"current_status": request.status},
            )
        return self._complete(request_id, now)

    # =========================================================================
    # Cancellation
    # =========================================================================

    def cancel(
        self,
        request_id: str,
        cancelled_by: CurrentUser,
        reason: Optional[str] = None,
        context: Optional[AccessContext] = None,
        now: Optional[datetime] = None,
    ) -> SignatureRequest:
        """
        Cancel a draft or open request and revoke every signing link.

        Raises:
            InvalidStateError: the request is already completed or cancelled
        """
        now = now or utcnow()
        request = self._lock_request(request_id)

        if request.is_terminal:
            raise InvalidStateError(
                message=f"Cannot cancel a {request.status} signature request",
                details={"current_status": request.status},
            )

        self._transition(request, SignatureRequestStatus.CANCELLED)
        request.cancelled_at = now
        request.cancelled_by = cancelled_by.id
        request.cancellation_reason = reason
        request.next_reminder_date = None
        request.updated_at = now

        for recipient in request.recipients:
            self.tokens.invalidate(recipient, now=now)
            self.audit.append(
                recipient,
                AuditEventType.CANCEL,
                context=context,
                details={"reason": reason or "", "cancelled_by": cancelled_by.id},
                auth_method=AuthMethod.STAFF,
                now=now,
            )

        self.session.commit()
        logger.info(f"Cancelled signature request {request.id} by {cancelled_by.id}")
        return request
