"""
Recipient signing portal endpoints.

Every route is addressed by the recipient's signing token. The session
token returned from ``GET /api/sign/{token}`` must accompany consent and
signature submissions.
"""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse

from esign.api.dependencies import get_access_context, get_signature_request_service
from esign.models.signature import SignatureRequestStatus
from esign.schemas.signature import (
    ConsentSubmit,
    SignaturesSubmit,
    SignatureSubmitResponse,
    SigningFieldView,
    SigningSessionResponse,
)
from esign.services.context import AccessContext
from esign.services.signature_request_service import CONSENT_TEXT, SignatureRequestService
from esign.utils.errors import SealingFailedError

logger = logging.getLogger(__name__)


# =============================================================================
# Router Setup
# =============================================================================

signing_router = APIRouter(
    prefix="/api/sign/{token}",
    tags=["Signing Portal"],
)

Service = Annotated[SignatureRequestService, Depends(get_signature_request_service)]
Context = Annotated[AccessContext, Depends(get_access_context)]


# =============================================================================
# Endpoints
# =============================================================================

@signing_router.get(
    "",
    response_model=SigningSessionResponse,
    summary="Open the signing portal",
    description="""
    Validate the signing link, record the view and start a portal session.

    Expired and revoked links return 410 with the message
    "This signing link is no longer valid". Unknown links return 404.
    """,
    responses={
        404: {"description": "Unknown signing link"},
        410: {"description": "Signing link expired or revoked"},
    },
)
async def open_signing_session(
    token: str,
    service: Service,
    context: Context,
) -> SigningSessionResponse:
    grant = service.open_signing_session(token, context=context)
    recipient = grant.recipient
    request = recipient.signature_request
    signed_field_ids = {s.signature_field_id for s in recipient.signatures}

    return SigningSessionResponse(
        session_token=grant.session_token,
        signature_request_id=request.id,
        document_name=request.document_name or request.friendly_name,
        recipient_name=recipient.name,
        recipient_email=recipient.email,
        consent_required=recipient.consent_accepted_at is None,
        consent_text=CONSENT_TEXT,
        can_sign_now=service.can_sign_now(recipient),
        fields=[
            SigningFieldView(
                id=f.id,
                field_type=f.field_type,
                page_number=f.page_number,
                x_position=f.x_position,
                y_position=f.y_position,
                width=f.width,
                height=f.height,
                label=f.label,
                signed=f.id in signed_field_ids,
            )
            for f in sorted(recipient.fields, key=lambda f: (f.page_number, f.order_index))
        ],
        redirect_url=request.redirect_url,
    )


@signing_router.post(
    "/consent",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Accept the electronic signature disclosure",
)
async def submit_consent(
    token: str,
    request_body: ConsentSubmit,
    service: Service,
    context: Context,
) -> None:
    service.record_consent(
        token,
        request_body.session_token,
        consent_text=request_body.consent_text,
        context=context,
    )


@signing_router.post(
    "/signatures",
    response_model=SignatureSubmitResponse,
    summary="Submit signatures",
    description="""
    Record one signature per field owned by this recipient.

    Fields already signed are skipped. When the last field on the request
    is signed, the document is sealed before responding. If sealing fails
    the signatures stay recorded and the response is 202 so the portal can
    tell the signer their part is done.
    """,
    responses={
        202: {"description": "Signatures recorded, finalization pending"},
        409: {"description": "Out of order, already signed, or consent missing"},
        410: {"description": "Signing link expired or revoked"},
    },
)
async def submit_signatures(
    token: str,
    request_body: SignaturesSubmit,
    service: Service,
    context: Context,
):
    try:
        outcome = service.submit_signatures(
            token,
            request_body.session_token,
            request_body.signatures,
            context=context,
        )
    except SealingFailedError as exc:
        logger.warning(f"Sealing deferred for signing link: {exc.details}")
        details = exc.details or {}
        pending = SignatureSubmitResponse(
            recorded=details.get("recorded", len(request_body.signatures)),
            skipped=details.get("skipped", 0),
            status=SignatureRequestStatus.PARTIALLY_SIGNED,
            completed=False,
            message=exc.message,
        )
        return JSONResponse(
            status_code=status.HTTP_202_ACCEPTED,
            content=pending.model_dump(mode="json"),
        )

    if outcome.completed:
        message = "All signatures collected. The signed document has been sent to every recipient."
    else:
        message = "Your signature has been recorded."

    return SignatureSubmitResponse(
        recorded=outcome.recorded,
        skipped=outcome.skipped,
        status=outcome.status,
        completed=outcome.completed,
        message=message,
    )
