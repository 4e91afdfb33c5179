"""Tests for sealing completed signature requests."""

import io

import pytest
from pypdf import PdfReader
from sqlalchemy import select

from esign.models import AuditEventType, SignatureAuditLog, SignatureRequestStatus
from esign.services.document_generation import (
    CertificateGenerator,
    SignatureStamp,
    SignatureStamper,
    StampingError,
    decode_drawn_signature,
)
from esign.services.sealing_service import SealingService
from esign.utils.errors import SealingFailedError
from esign.utils.hashing import sha256_hex, verify_hash


@pytest.fixture
def sealing(service):
    return service.sealing


class TestSeal:
    """Test cases for SealingService.seal."""

    def test_sealed_document_hashes(self, service, make_request, sign_all, store, sample_pdf):
        request = make_request(recipients=2)
        for recipient in request.recipients:
            sign_all(request, recipient)

        signed = service.get_signed_document(request.id)

        assert signed.original_pdf_hash == sha256_hex(sample_pdf)
        assert signed.signed_pdf_hash != signed.original_pdf_hash
        assert verify_hash(store.get(signed.signed_pdf_path), signed.signed_pdf_hash)
        assert signed.file_name == "contract_signed.pdf"
        assert signed.file_size == len(store.get(signed.signed_pdf_path))

    def test_signed_pdf_carries_metadata(self, service, make_request, sign_all, store):
        request = make_request(recipients=1)
        sign_all(request, request.recipients[0])
        signed = service.get_signed_document(request.id)

        reader = PdfReader(io.BytesIO(store.get(signed.signed_pdf_path)))

        assert len(reader.pages) == 2
        assert reader.metadata["/SignatureRequestId"] == request.id
        assert reader.metadata["/OriginalSHA256"] == signed.original_pdf_hash

    def test_certificate_stored(self, service, make_request, sign_all, store):
        request = make_request(recipients=1)
        sign_all(request, request.recipients[0])
        signed = service.get_signed_document(request.id)

        certificate = store.get(signed.audit_trail_pdf_path)

        assert certificate.startswith(b"%PDF")

    def test_sealed_events_use_signed_hash(self, session, service, make_request, sign_all):
        request = make_request(recipients=2)
        for recipient in request.recipients:
            sign_all(request, recipient)
        signed = service.get_signed_document(request.id)

        sealed = session.execute(
            select(SignatureAuditLog).where(
                SignatureAuditLog.event_type == AuditEventType.DOCUMENT_SEALED.value
            )
        ).scalars().all()

        assert len(sealed) == 2
        assert {e.document_hash for e in sealed} == {signed.signed_pdf_hash}
        assert {e.document_version for e in sealed} == {"signed"}
        assert {e.auth_method for e in sealed} == {"system"}

    def test_seal_is_idempotent(self, service, sealing, make_request, sign_all):
        request = make_request(recipients=1)
        sign_all(request, request.recipients[0])
        first = service.get_signed_document(request.id)

        again = sealing.seal(service.get_request(request.id))

        assert again.id == first.id

    def test_unsigned_field_blocks_seal(self, session, service, sealing, make_request, sign_all):
        request = make_request(recipients=2)
        sign_all(request, request.recipients[0])

        with pytest.raises(SealingFailedError):
            sealing.seal(service.get_request(request.id))
        session.rollback()

        assert service.get_request(request.id).status == SignatureRequestStatus.PARTIALLY_SIGNED.value

    def test_notify_without_sender(self, session, store, service, make_request, sign_all):
        request = make_request(recipients=1)
        sign_all(request, request.recipients[0])
        silent = SealingService(session, store, service.audit, notifier=None)

        assert silent.notify_completion(request, service.get_signed_document(request.id)) == 0


class TestStamper:
    """Test cases for the PDF overlay."""

    def test_typed_and_drawn_stamps(self, sample_pdf, drawn_signature):
        stamps = [
            SignatureStamp(1, 0.1, 0.8, 0.4, 0.08, "typed", "Jordan Signer"),
            SignatureStamp(2, 0.5, 0.1, 0.4, 0.1, "drawn", drawn_signature),
        ]

        output = SignatureStamper().stamp(sample_pdf, stamps)

        assert sha256_hex(output) != sha256_hex(sample_pdf)
        reader = PdfReader(io.BytesIO(output))
        assert "Jordan Signer" in reader.pages[0].extract_text()

    def test_page_out_of_range(self, sample_pdf):
        with pytest.raises(StampingError):
            SignatureStamper().stamp(sample_pdf, [SignatureStamp(5, 0.1, 0.1, 0.2, 0.1, "typed", "X")])

    def test_not_a_pdf(self):
        with pytest.raises(StampingError):
            SignatureStamper().stamp(b"plain text", [])

    def test_decode_rejects_other_formats(self):
        with pytest.raises(ValueError):
            decode_drawn_signature("data:image/jpeg;base64,AAAA")
        with pytest.raises(ValueError):
            decode_drawn_signature("data:image/png;base64,bm90IGEgcG5n")


class TestCertificate:
    def test_certificate_is_reproducible(self):
        generator = CertificateGenerator("Example & Partners LLP")

        first = generator.generate("Engagement <Letter>", "line one\nline two", "b" * 64, "a" * 64)
        second = generator.generate("Engagement <Letter>", "line one\nline two", "b" * 64, "a" * 64)

        assert first == second
        assert first.startswith(b"%PDF")
