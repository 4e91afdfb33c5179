"""Tests for the signature audit trail."""

from datetime import timedelta

import pytest
from sqlalchemy import select, update

from esign.models import AuditEventType, SignatureAuditLog, SignatureRequestRecipient
from esign.services.audit_trail_service import AuditTrailService
from esign.services.context import AccessContext
from esign.utils.errors import AuditLogImmutableError, NotFoundError
from esign.utils.hashing import IntegrityVerifier, canonical_json, sha256_hex


@pytest.fixture
def audit(service):
    return service.audit


def recipient_entries(session, recipient_id):
    return session.execute(
        select(SignatureAuditLog)
        .where(SignatureAuditLog.signature_request_recipient_id == recipient_id)
        .order_by(SignatureAuditLog.sequence)
    ).scalars().all()


class TestAppend:
    """Test cases for recording entries."""

    def test_sequence_and_chain_links(self, session, audit, make_request, now):
        recipient = make_request(recipients=1).recipients[0]

        audit.append(recipient, AuditEventType.VIEW, now=now)
        audit.append(recipient, AuditEventType.CONSENT, now=now)
        session.commit()

        entries = recipient_entries(session, recipient.id)
        assert [e.sequence for e in entries] == [1, 2, 3]
        assert entries[0].previous_hash is None
        assert entries[1].previous_hash == entries[0].entry_hash
        assert entries[2].previous_hash == entries[1].entry_hash

    def test_records_document_hash_and_context(self, session, audit, make_request, sample_pdf, now):
        recipient = make_request(recipients=1).recipients[0]

        entry = audit.append(
            recipient,
            AuditEventType.VIEW,
            context=AccessContext(ip_address="198.51.100.4", country="CA"),
            now=now,
        )

        assert entry.document_hash == sha256_hex(sample_pdf)
        assert entry.document_version == "original"
        assert entry.ip_address == "198.51.100.4"
        assert entry.country == "CA"
        assert entry.signer_email == recipient.email

    def test_timestamps_never_go_backwards(self, session, audit, make_request, now):
        recipient = make_request(recipients=1).recipients[0]

        later = audit.append(recipient, AuditEventType.VIEW, now=now + timedelta(minutes=10))
        earlier = audit.append(recipient, AuditEventType.CONSENT, now=now + timedelta(minutes=1))

        assert earlier.created_at == later.created_at

    def test_concurrent_writer_takes_next_sequence(
        self, session, session_factory, store, settings, audit, make_request, now, monkeypatch
    ):
        """Test an append that loses its sequence number to another writer retries with the next one."""
        request = make_request(recipients=1)
        recipient = request.recipients[0]

        other_session = session_factory()
        other = AuditTrailService(other_session, store, secret_key=settings.audit_secret_key)
        last_entry = audit._last_entry
        raced = []

        def last_entry_then_other_tab_writes(recipient_id):
            entry = last_entry(recipient_id)
            if not raced:
                raced.append(True)
                other.append(
                    other_session.get(SignatureRequestRecipient, recipient_id),
                    AuditEventType.VIEW,
                    now=now,
                )
                other_session.commit()
            return entry

        monkeypatch.setattr(audit, "_last_entry", last_entry_then_other_tab_writes)

        entry = audit.append(recipient, AuditEventType.VIEW, now=now)
        session.commit()
        other_session.close()

        entries = recipient_entries(session, recipient.id)
        assert entry.sequence == 3
        assert [e.sequence for e in entries] == [1, 2, 3]
        assert entries[2].previous_hash == entries[1].entry_hash
        assert audit.verify_chain(recipient.id) == (True, [])

    def test_list_events_for_unknown_request(self, audit):
        with pytest.raises(NotFoundError):
            audit.list_events("missing")


class TestImmutability:
    """Entries cannot be changed through the ORM."""

    def test_update_rejected(self, session, audit, make_request, now):
        recipient = make_request(recipients=1).recipients[0]
        entry = audit.append(recipient, AuditEventType.VIEW, now=now)
        session.commit()

        entry.ip_address = "10.0.0.1"
        with pytest.raises(AuditLogImmutableError):
            session.flush()
        session.rollback()

    def test_delete_rejected(self, session, audit, make_request, now):
        recipient = make_request(recipients=1).recipients[0]
        entry = audit.append(recipient, AuditEventType.VIEW, now=now)
        session.commit()

        session.delete(entry)
        with pytest.raises(AuditLogImmutableError):
            session.flush()
        session.rollback()


class TestChainVerification:
    def test_untouched_chain_is_valid(self, session, audit, make_request, sign_all):
        request = make_request(recipients=2)
        sign_all(request, request.recipients[0])

        result = audit.verify_request(request.id)

        assert result["is_valid"] is True
        assert all(r["errors"] == [] for r in result["recipients"].values())

    def test_tampered_entry_detected(self, session, audit, make_request, sign_all):
        """Test a row edited outside the ORM breaks verification."""
        request = make_request(recipients=1)
        recipient = request.recipients[0]
        sign_all(request, recipient)
        entries = recipient_entries(session, recipient.id)

        session.execute(
            update(SignatureAuditLog)
            .where(SignatureAuditLog.id == entries[1].id)
            .values(ip_address="192.0.2.66")
        )
        session.commit()
        session.expire_all()

        is_valid, errors = audit.verify_chain(recipient.id)

        assert is_valid is False
        assert any("checksum mismatch" in e for e in errors)

    def test_checksum_uses_previous_link(self):
        verifier = IntegrityVerifier("k")
        data = {"a": 1}

        assert verifier.compute_checksum(data, "x") != verifier.compute_checksum(data, "y")
        assert verifier.verify_checksum(data, verifier.compute_checksum(data, "x"), "x")

    def test_canonical_json_is_key_order_independent(self):
        assert canonical_json({"b": 1, "a": 2}) == canonical_json({"a": 2, "b": 1})


class TestReport:
    def test_report_is_deterministic(self, audit, make_request, sign_all):
        """Test rendering the same state twice gives identical text."""
        request = make_request(recipients=2)
        for recipient in request.recipients:
            sign_all(request, recipient)

        first = audit.render_report(request.id)
        second = AuditTrailService(audit.session, audit.document_store, "test-audit-key").render_report(
            request.id
        )

        assert first == second
        assert first.encode("utf-8") == second.encode("utf-8")

    def test_report_sections(self, audit, make_request, sign_all):
        request = make_request(recipients=1)
        sign_all(request, request.recipients[0])

        report = audit.render_report(request.id)

        assert report.startswith("SIGNATURE AUDIT TRAIL")
        assert "RECIPIENTS" in report
        assert "EVENTS" in report
        assert "Signer 0 <signer0@example.com>" in report
        assert "Electronic signature consent accepted" in report
        assert "Signed document sealed" in report
