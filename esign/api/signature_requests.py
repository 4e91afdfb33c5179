"""API endpoints for preparing and managing signature requests."""

import logging
import math
from typing import Annotated, List, Optional

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import PlainTextResponse, Response

from esign.api.dependencies import (
    get_access_context,
    get_signature_request_service,
    get_staff_user,
)
from esign.models.signature import SignatureRequestStatus
from esign.schemas.signature import (
    ActivationResponse,
    AuditEventResponse,
    CancelRequest,
    ChainVerificationResponse,
    FieldCreate,
    FieldResponse,
    RecipientCreate,
    RecipientResponse,
    SignatureRequestCreate,
    SignatureRequestListResponse,
    SignatureRequestResponse,
    SignatureRequestSummary,
    SignedDocumentResponse,
)
from esign.services.context import AccessContext
from esign.services.signature_request_service import SignatureRequestService
from esign.utils.auth import CurrentUser

logger = logging.getLogger(__name__)


# =============================================================================
# Router Setup
# =============================================================================

signature_requests_router = APIRouter(
    prefix="/api/signature-requests",
    tags=["Signature Requests"],
)

StaffUser = Annotated[CurrentUser, Depends(get_staff_user)]
Service = Annotated[SignatureRequestService, Depends(get_signature_request_service)]
Context = Annotated[AccessContext, Depends(get_access_context)]


# =============================================================================
# Draft Preparation
# =============================================================================

@signature_requests_router.post(
    "",
    response_model=SignatureRequestResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a draft signature request",
)
async def create_signature_request(
    request_body: SignatureRequestCreate,
    current_user: StaffUser,
    service: Service,
) -> SignatureRequestResponse:
    """Create a draft for a document already in the document store."""
    signature_request = service.create_request(request_body, current_user)
    return SignatureRequestResponse.model_validate(signature_request)


@signature_requests_router.get(
    "",
    response_model=SignatureRequestListResponse,
    summary="List signature requests",
)
async def list_signature_requests(
    current_user: StaffUser,
    service: Service,
    client_id: Optional[str] = Query(None),
    status_filter: Optional[SignatureRequestStatus] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
) -> SignatureRequestListResponse:
    items, total = service.list_requests(
        client_id=client_id,
        status=status_filter,
        page=page,
        page_size=page_size,
    )
    return SignatureRequestListResponse(
        items=[SignatureRequestSummary.model_validate(i) for i in items],
        total=total,
        page=page,
        page_size=page_size,
        total_pages=math.ceil(total / page_size) if total else 0,
    )


@signature_requests_router.get(
    "/{request_id}",
    response_model=SignatureRequestResponse,
    summary="Get signature request details",
)
async def get_signature_request(
    request_id: str,
    current_user: StaffUser,
    service: Service,
) -> SignatureRequestResponse:
    return SignatureRequestResponse.model_validate(service.get_request(request_id))


@signature_requests_router.post(
    "/{request_id}/recipients",
    response_model=RecipientResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Add a recipient to a draft",
)
async def add_recipient(
    request_id: str,
    request_body: RecipientCreate,
    current_user: StaffUser,
    service: Service,
) -> RecipientResponse:
    return RecipientResponse.model_validate(service.add_recipient(request_id, request_body))


@signature_requests_router.post(
    "/{request_id}/fields",
    response_model=FieldResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Place a signature field on a draft",
)
async def add_field(
    request_id: str,
    request_body: FieldCreate,
    current_user: StaffUser,
    service: Service,
) -> FieldResponse:
    return FieldResponse.model_validate(service.add_field(request_id, request_body))


# =============================================================================
# Lifecycle
# =============================================================================

@signature_requests_router.post(
    "/{request_id}/activate",
    response_model=ActivationResponse,
    summary="Send a draft out for signature",
    description="""
    Validate recipients and field placement, issue one signing link per
    recipient and notify them.

    **Validation:**
    - At least one recipient, each with at least one field
    - Field coordinates inside the page, on an existing page

    All placement problems are returned together in `field_errors`.
    Notification failures do not block activation; they are recorded on
    the recipient as `send_status=failed`.
    """,
)
async def activate_signature_request(
    request_id: str,
    current_user: StaffUser,
    service: Service,
    context: Context,
) -> ActivationResponse:
    result = service.activate(request_id, current_user, context=context)
    return ActivationResponse(
        signature_request=SignatureRequestResponse.model_validate(result.signature_request),
        notifications_sent=result.notifications_sent,
        notifications_failed=result.notifications_failed,
    )


@signature_requests_router.post(
    "/{request_id}/cancel",
    response_model=SignatureRequestResponse,
    summary="Cancel a signature request",
)
async def cancel_signature_request(
    request_id: str,
    current_user: StaffUser,
    service: Service,
    context: Context,
    request_body: Optional[CancelRequest] = None,
) -> SignatureRequestResponse:
    reason = request_body.reason if request_body else None
    cancelled = service.cancel(request_id, current_user, reason=reason, context=context)
    return SignatureRequestResponse.model_validate(cancelled)


@signature_requests_router.post(
    "/{request_id}/finalize",
    response_model=SignedDocumentResponse,
    summary="Retry sealing a fully signed request",
)
async def finalize_signature_request(
    request_id: str,
    current_user: StaffUser,
    service: Service,
) -> SignedDocumentResponse:
    signed = service.finalize(request_id)
    logger.info(f"Signature request {request_id} finalized by {current_user.id}")
    return SignedDocumentResponse.model_validate(signed)


# =============================================================================
# Audit Trail
# =============================================================================

@signature_requests_router.get(
    "/{request_id}/audit-trail",
    response_model=List[AuditEventResponse],
    summary="List audit events",
)
async def get_audit_trail(
    request_id: str,
    current_user: StaffUser,
    service: Service,
) -> List[AuditEventResponse]:
    return [AuditEventResponse.model_validate(e) for e in service.audit.list_events(request_id)]


@signature_requests_router.get(
    "/{request_id}/audit-trail/report",
    response_class=PlainTextResponse,
    summary="Render the audit report as text",
)
async def get_audit_report(
    request_id: str,
    current_user: StaffUser,
    service: Service,
) -> PlainTextResponse:
    return PlainTextResponse(service.audit.render_report(request_id))


@signature_requests_router.get(
    "/{request_id}/audit-trail/verify",
    response_model=ChainVerificationResponse,
    summary="Verify audit chain integrity",
)
async def verify_audit_trail(
    request_id: str,
    current_user: StaffUser,
    service: Service,
) -> ChainVerificationResponse:
    return ChainVerificationResponse(**service.audit.verify_request(request_id))


# =============================================================================
# Signed Document
# =============================================================================

@signature_requests_router.get(
    "/{request_id}/signed-document",
    response_model=SignedDocumentResponse,
    summary="Get sealed document metadata",
)
async def get_signed_document(
    request_id: str,
    current_user: StaffUser,
    service: Service,
) -> SignedDocumentResponse:
    return SignedDocumentResponse.model_validate(service.get_signed_document(request_id))


@signature_requests_router.get(
    "/{request_id}/signed-document/download",
    summary="Download the sealed PDF",
)
async def download_signed_document(
    request_id: str,
    current_user: StaffUser,
    service: Service,
) -> Response:
    signed, content = service.read_signed_pdf(request_id)
    return Response(
        content=content,
        media_type="application/pdf",
        headers={
            "Content-Disposition": f'attachment; filename="{signed.file_name}"',
            "X-Document-SHA256": signed.signed_pdf_hash,
        },
    )


@signature_requests_router.get(
    "/{request_id}/signed-document/certificate",
    summary="Download the certificate of completion",
)
async def download_certificate(
    request_id: str,
    current_user: StaffUser,
    service: Service,
) -> Response:
    signed = service.get_signed_document(request_id)
    if not signed.audit_trail_pdf_path:
        from esign.utils.errors import create_not_found_error

        raise create_not_found_error("Certificate", request_id)
    content = service.document_store.get(signed.audit_trail_pdf_path)
    return Response(
        content=content,
        media_type="application/pdf",
        headers={"Content-Disposition": 'attachment; filename="certificate_of_completion.pdf"'},
    )
