"""Shared fixtures for service and API tests."""

import base64
import io
from datetime import datetime
from typing import Generator, List, Optional

import pytest
from fastapi.testclient import TestClient
from PIL import Image
from reportlab.lib.pagesizes import letter
from reportlab.pdfgen import canvas
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from esign.api.dependencies import (
    get_notifier,
    get_signature_request_service,
    get_store,
)
from esign.config.settings import (
    NotificationSettings,
    ReminderSettings,
    Settings,
    TokenSettings,
)
from esign.database.database import get_db
from esign.infrastructure.storage.document_store import InMemoryDocumentStore
from esign.main import create_app
from esign.models import Base, SignatureRequest, SignatureRequestRecipient, SignatureType
from esign.models.base import utcnow
from esign.schemas.signature import FieldCreate, RecipientCreate, SignatureRequestCreate
from esign.services.notifications.mock import MockNotificationSender
from esign.services.signature_request_service import SignatureRequestService
from esign.utils.auth import CurrentUser, UserRole


class FlakyDocumentStore(InMemoryDocumentStore):
    """In-memory store whose writes can be switched off."""

    def __init__(self):
        super().__init__()
        self.fail_puts = False

    def put(self, data: bytes, file_name: Optional[str] = None) -> str:
        if self.fail_puts:
            raise OSError("document store unavailable")
        return super().put(data, file_name)


# =============================================================================
# Database
# =============================================================================

@pytest.fixture
def engine():
    """In-memory SQLite shared by every connection in a test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture
def session(session_factory) -> Generator[Session, None, None]:
    session = session_factory()
    yield session
    session.close()


# =============================================================================
# Collaborators
# =============================================================================

@pytest.fixture
def store():
    return FlakyDocumentStore()


@pytest.fixture
def notifier():
    return MockNotificationSender()


@pytest.fixture
def settings():
    return Settings(
        audit_secret_key="test-audit-key",
        tokens=TokenSettings(
            ttl_days=30,
            encryption_key="test-token-encryption-key",
            signing_base_url="https://sign.example.com",
        ),
        reminders=ReminderSettings(default_interval_days=3, max_reminders=2),
        notifications=NotificationSettings(firm_name="Example & Partners LLP"),
    )


@pytest.fixture
def now():
    return utcnow().replace(microsecond=0)


@pytest.fixture
def staff_user():
    return CurrentUser(id="staff-1", roles=[UserRole.STAFF], name="Pat Staff")


@pytest.fixture
def sample_pdf() -> bytes:
    """Two-page letter PDF."""
    buffer = io.BytesIO()
    c = canvas.Canvas(buffer, pagesize=letter, invariant=1)
    for page in (1, 2):
        c.setFont("Helvetica", 14)
        c.drawString(72, 720, f"Engagement Letter - page {page}")
        c.showPage()
    c.save()
    return buffer.getvalue()


@pytest.fixture
def drawn_signature() -> str:
    """PNG data URL of a small drawn mark."""
    image = Image.new("RGBA", (60, 20), (255, 255, 255, 0))
    for x in range(5, 55):
        image.putpixel((x, 10), (0, 0, 0, 255))
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return "data:image/png;base64," + base64.b64encode(buffer.getvalue()).decode("ascii")


# =============================================================================
# Service Helpers
# =============================================================================

@pytest.fixture
def service(session, store, notifier, settings):
    return SignatureRequestService(session, store, notifier, settings)


@pytest.fixture
def make_request(service, store, sample_pdf, staff_user, now):
    """
    Build a request with ``recipients`` signers, each owning
    ``fields_per_recipient`` fields on page 1, optionally activated.
    """

    def _make(
        recipients: int = 2,
        fields_per_recipient: int = 1,
        sequential: bool = False,
        order_indexes: Optional[List[int]] = None,
        activate: bool = True,
        reminder_interval_days: int = 3,
    ) -> SignatureRequest:
        path = store.put(sample_pdf, "contract.pdf")
        request = service.create_request(
            SignatureRequestCreate(
                client_id="client-1",
                document_path=path,
                document_name="contract.pdf",
                friendly_name="Engagement Letter",
                sequential_signing=sequential,
                reminder_interval_days=reminder_interval_days,
            ),
            staff_user,
            now=now,
        )
        for i in range(recipients):
            recipient = service.add_recipient(
                request.id,
                RecipientCreate(
                    person_id=f"person-{i}",
                    name=f"Signer {i}",
                    email=f"signer{i}@example.com",
                    order_index=order_indexes[i] if order_indexes else i,
                ),
                now=now,
            )
            for j in range(fields_per_recipient):
                service.add_field(
                    request.id,
                    FieldCreate(
                        recipient_id=recipient.id,
                        page_number=1,
                        x_position=0.05 + 0.45 * j,
                        y_position=0.1 + 0.2 * i,
                        width=0.4,
                        height=0.08,
                        order_index=j,
                    ),
                    now=now,
                )
        if activate:
            service.activate(request.id, staff_user, now=now)
        return service.get_request(request.id)

    return _make


@pytest.fixture
def token_for(service):
    """Recover a recipient's plaintext token from its encrypted copy."""

    def _token(recipient: SignatureRequestRecipient) -> str:
        return service.tokens.signing_link(recipient).split("token=", 1)[1]

    return _token


@pytest.fixture
def fields_of():
    def _fields(request: SignatureRequest, recipient: SignatureRequestRecipient):
        return [f for f in request.fields if f.recipient_id == recipient.id]

    return _fields


@pytest.fixture
def sign_all(service, token_for, fields_of, now):
    """Open a session, accept consent and sign every field the recipient owns."""

    def _sign(request: SignatureRequest, recipient: SignatureRequestRecipient, at: Optional[datetime] = None):
        at = at or now
        token = token_for(recipient)
        grant = service.open_signing_session(token, now=at)
        service.record_consent(token, grant.session_token, now=at)
        outcome = None
        for field in fields_of(request, recipient):
            outcome = service.record_signature(
                token,
                grant.session_token,
                field.id,
                SignatureType.TYPED,
                recipient.name,
                now=at,
            )
        return outcome

    return _sign


# =============================================================================
# API
# =============================================================================

@pytest.fixture
def app(session_factory, store, notifier, settings):
    """Application wired to the test database and collaborators."""
    app = create_app(settings)

    def override_get_db():
        session = session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def override_service():
        session = session_factory()
        try:
            yield SignatureRequestService(session, store, notifier, settings)
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_notifier] = lambda: notifier
    app.dependency_overrides[get_signature_request_service] = override_service
    return app


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def staff_headers():
    return {"X-User-ID": "staff-1", "X-User-Role": "staff", "User-Agent": "pytest"}
