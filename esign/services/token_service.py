"""Per-recipient access tokens and portal sessions."""

import hmac
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from esign.config.settings import TokenSettings, get_settings
from esign.models.base import utcnow
from esign.models.signature import (
    TERMINAL_STATUSES,
    AuditEventType,
    AuthMethod,
    SignatureRequestRecipient,
)
from esign.services.audit_trail_service import AuditTrailService
from esign.services.context import AccessContext
from esign.utils.encryption import DecryptionError, TokenCipher
from esign.utils.errors import (
    AccessError,
    TokenExpiredError,
    TokenNotFoundError,
    TokenRevokedError,
)
from esign.utils.hashing import hash_token

logger = logging.getLogger(__name__)


@dataclass
class AccessGrant:
    """A validated token and the portal session opened for it."""

    recipient: SignatureRequestRecipient
    session_token: str


class TokenService:
    """
    Issues and validates signing links.

    Only a SHA-256 digest of each token is used for lookup. Validation
    failures for a known recipient are audited and committed before the
    error propagates.
    """

    def __init__(
        self,
        session: Session,
        audit: AuditTrailService,
        settings: Optional[TokenSettings] = None,
    ):
        self.session = session
        self.audit = audit
        self.settings = settings or get_settings().tokens
        self.cipher = TokenCipher(self.settings.encryption_key)

    # =========================================================================
    # Issuing
    # =========================================================================

    def issue_token(
        self,
        recipient: SignatureRequestRecipient,
        context: Optional[AccessContext] = None,
        now: Optional[datetime] = None,
    ) -> str:
        """
        Generate a fresh token for ``recipient`` and return it in plaintext.

        Any previous token and session stop working.
        """
        now = now or utcnow()
        token = secrets.token_urlsafe(self.settings.token_bytes)

        recipient.token_hash = hash_token(token)
        recipient.token_ciphertext = self.cipher.encrypt(
            token, associated_data=recipient.id.encode("utf-8")
        )
        recipient.token_expires_at = now + timedelta(days=self.settings.ttl_days)
        recipient.token_revoked_at = None
        self._clear_session(recipient)
        self.session.flush()

        self.audit.append(
            recipient,
            AuditEventType.TOKEN_ISSUED,
            context=context,
            details={"expires_at": recipient.token_expires_at.isoformat()},
            auth_method=AuthMethod.STAFF,
            now=now,
        )
        logger.info(f"Issued signing token for recipient {recipient.id}")
        return token

    def signing_link(self, recipient: SignatureRequestRecipient) -> str:
        """Rebuild the portal URL from the stored encrypted token."""
        if not recipient.token_ciphertext:
            raise TokenRevokedError(details={"reason": "no_token"})
        try:
            token = self.cipher.decrypt(
                recipient.token_ciphertext,
                associated_data=recipient.id.encode("utf-8"),
            )
        except DecryptionError as e:
            logger.error(f"Cannot decrypt token for recipient {recipient.id}: {e}")
            raise TokenRevokedError(details={"reason": "undecryptable"})
        return self.build_link(token)

    def build_link(self, token: str) -> str:
        return f"{self.settings.signing_base_url.rstrip('/')}/sign?token={token}"

    # =========================================================================
    # Validation
    # =========================================================================

    def find_recipient(self, token: str) -> Optional[SignatureRequestRecipient]:
        if not token:
            return None
        return self.session.execute(
            select(SignatureRequestRecipient).where(
                SignatureRequestRecipient.token_hash == hash_token(token)
            )
        ).scalar_one_or_none()

    def _check(
        self,
        token: str,
        now: datetime,
    ) -> SignatureRequestRecipient:
        """Resolve ``token`` or raise the matching access error."""
        recipient = self.find_recipient(token)
        if recipient is None:
            logger.warning("Signing link presented with unknown token")
            raise TokenNotFoundError()

        request = recipient.signature_request
        if recipient.token_revoked_at is not None or request.status in TERMINAL_STATUSES:
            raise TokenRevokedError(
                details={"reason": "revoked" if recipient.token_revoked_at else request.status}
            )

        if recipient.token_expires_at is not None and recipient.token_expires_at <= now:
            raise TokenExpiredError()

        return recipient

    def _deny(
        self,
        token: str,
        error: AccessError,
        context: Optional[AccessContext],
        now: datetime,
    ) -> None:
        """Audit a failed attempt against a known recipient, then commit."""
        recipient = self.find_recipient(token)
        if recipient is None:
            return
        logger.warning(
            f"Access denied for recipient {recipient.id}: {error.error_code}"
        )
        self.audit.append(
            recipient,
            AuditEventType.ACCESS_DENIED,
            context=context,
            details={"reason": error.error_code},
            now=now,
        )
        self.session.commit()

    def validate_access(
        self,
        token: str,
        context: Optional[AccessContext] = None,
        now: Optional[datetime] = None,
    ) -> AccessGrant:
        """
        Validate a portal visit and open a new session.

        Raises:
            TokenNotFoundError: no recipient holds the token
            TokenRevokedError: the token was invalidated or the request is closed
            TokenExpiredError: the token is past its expiry
        """
        now = now or utcnow()
        context = context or AccessContext()

        try:
            recipient = self._check(token, now)
        except AccessError as e:
            self._deny(token, e, context, now)
            raise

        first_view = recipient.viewed_at is None
        if first_view:
            recipient.viewed_at = now

        session_token = secrets.token_urlsafe(32)
        device = context.device
        recipient.active_session_token = session_token
        recipient.session_last_active = now
        recipient.session_device_info = device.device
        recipient.session_browser_info = device.browser
        recipient.session_os_info = device.os

        self.audit.append(
            recipient,
            AuditEventType.VIEW,
            context=context,
            details={"first_view": first_view},
            now=now,
        )
        logger.info(f"Recipient {recipient.id} opened signing session")
        return AccessGrant(recipient=recipient, session_token=session_token)

    def require_session(
        self,
        token: str,
        session_token: Optional[str],
        context: Optional[AccessContext] = None,
        now: Optional[datetime] = None,
    ) -> SignatureRequestRecipient:
        """
        Re-validate ``token`` and check ``session_token`` is the active session.

        A session replaced by a newer visit raises ``TokenRevokedError``.
        """
        now = now or utcnow()

        try:
            recipient = self._check(token, now)
            active = recipient.active_session_token
            if not session_token or not active or not hmac.compare_digest(
                active.encode("utf-8"), session_token.encode("utf-8")
            ):
                raise TokenRevokedError(details={"reason": "session_superseded"})
        except AccessError as e:
            self._deny(token, e, context, now)
            raise

        recipient.session_last_active = now
        return recipient

    # =========================================================================
    # Invalidation
    # =========================================================================

    def invalidate(
        self,
        recipient: SignatureRequestRecipient,
        now: Optional[datetime] = None,
    ) -> None:
        """Revoke the recipient's token and end any open session."""
        recipient.token_revoked_at = now or utcnow()
        self._clear_session(recipient)

    @staticmethod
    def _clear_session(recipient: SignatureRequestRecipient) -> None:
        recipient.active_session_token = None
        recipient.session_last_active = None
        recipient.session_device_info = None
        recipient.session_browser_info = None
        recipient.session_os_info = None
