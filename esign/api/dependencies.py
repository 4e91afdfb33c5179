"""Shared FastAPI dependencies for the signature API."""

from typing import Annotated, Optional

from fastapi import Depends, Header, Request
from sqlalchemy.orm import Session

from esign.database.database import get_db
from esign.infrastructure.storage.document_store import DocumentStore, get_document_store
from esign.services.context import AccessContext
from esign.services.notifications import NotificationSender, get_notification_sender
from esign.services.signature_request_service import SignatureRequestService
from esign.utils.auth import CurrentUser, UserRole, user_from_headers, require_staff


def get_current_user(
    x_user_id: Annotated[Optional[str], Header(alias="X-User-ID")] = None,
    x_user_role: Annotated[Optional[str], Header(alias="X-User-Role")] = None,
    x_user_name: Annotated[Optional[str], Header(alias="X-User-Name")] = None,
) -> Optional[CurrentUser]:
    """Caller identity as forwarded by the gateway, or None when absent."""
    if not x_user_id:
        return None

    roles = [UserRole.CLIENT]
    if x_user_role:
        try:
            roles = [UserRole(x_user_role)]
        except ValueError:
            # unknown roles get client access
            roles = [UserRole.CLIENT]

    return user_from_headers(user_id=x_user_id, roles=roles, name=x_user_name)


def get_staff_user(
    current_user: Annotated[Optional[CurrentUser], Depends(get_current_user)],
) -> CurrentUser:
    """Require an admin or staff caller."""
    return require_staff(current_user)


def get_access_context(request: Request) -> AccessContext:
    """
    Capture client address, user agent and location for audit entries.

    The first ``X-Forwarded-For`` hop wins over the socket address.
    Location comes from headers set by the edge proxy, when present.
    """
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        ip_address = forwarded.split(",")[0].strip()
    else:
        ip_address = request.client.host if request.client else None

    return AccessContext(
        ip_address=ip_address,
        user_agent=request.headers.get("user-agent"),
        city=request.headers.get("x-geo-city"),
        country=request.headers.get("x-geo-country"),
    )


def get_store() -> DocumentStore:
    return get_document_store()


def get_notifier() -> NotificationSender:
    return get_notification_sender()


def get_signature_request_service(
    session: Annotated[Session, Depends(get_db)],
    store: Annotated[DocumentStore, Depends(get_store)],
    notifier: Annotated[NotificationSender, Depends(get_notifier)],
) -> SignatureRequestService:
    """Get signature request service instance."""
    return SignatureRequestService(session, store, notifier)
