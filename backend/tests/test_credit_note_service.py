"""
Credit note tests.

Credit notes compensate ISSUED invoices of voided sales. They share the
invoice state machine and duplicate guard.
"""

import pytest

from conftest import cash, rejection, retryable_failure, sale_request
from fiscalpos.models import Alert, CreditNote, Invoice
from fiscalpos.services import credit_note_service, void_service
from fiscalpos.services.credit_note_service import (
    generate_credit_note_for_invoice,
    list_retryable_credit_notes,
    retry_credit_note,
    submit_credit_note,
)
from fiscalpos.services.sale_service import create_sale
from fiscalpos.services.void_service import void_sale
from fiscalpos.validation import BusinessRuleError, NotFoundError


def _voided_sale_invoice(db_session, pos, cashier, owner, product):
    sale = create_sale(sale_request(pos, [(product, 1)], [cash(product.price_cents)]), cashier)
    void_sale(sale.id, owner, reason="Devolución")
    return db_session.query(Invoice).filter_by(sale_id=sale.id).one()


class TestCreditNoteGeneration:
    def test_payload_references_original_invoice(self, db_session, pos, cashier, owner, product_included, fake_gateway):
        invoice = _voided_sale_invoice(db_session, pos, cashier, owner, product_included)

        credit_note = db_session.query(CreditNote).one()
        assert credit_note.credit_note_number == 1
        assert credit_note.formatted_number == "0003-00000001"
        assert credit_note.sale_id == invoice.sale_id
        assert credit_note.created_by_user_id == owner.id
        assert (credit_note.net_cents, credit_note.tax_cents, credit_note.total_cents) == (
            invoice.net_cents, invoice.tax_cents, invoice.total_cents,
        )

        payload = fake_gateway.credit_note_payloads[0]
        assert payload["voucher_type"] == "NC_B"
        assert payload["original_invoice"] == {
            "voucher_type": "B",
            "point_of_sale": 3,
            "number": invoice.invoice_number,
            "cae": invoice.cae,
        }
        assert payload["reason"] == "Devolución"

    def test_duplicate_generation_returns_existing(self, db_session, pos, cashier, owner, product_included, fake_gateway):
        invoice = _voided_sale_invoice(db_session, pos, cashier, owner, product_included)
        existing = db_session.query(CreditNote).one()

        again = generate_credit_note_for_invoice(invoice.id, reason="Otra vez")

        assert again.id == existing.id
        assert db_session.query(CreditNote).count() == 1
        assert len(fake_gateway.credit_note_payloads) == 1

    def test_invoice_without_cae_needs_no_credit_note(self, db_session, pos, cashier, product_included, fake_gateway):
        fake_gateway.queue(retryable_failure())
        sale = create_sale(sale_request(pos, [(product_included, 1)], [cash(12100)]), cashier)
        invoice = db_session.query(Invoice).filter_by(sale_id=sale.id).one()

        assert generate_credit_note_for_invoice(invoice.id) is None
        assert db_session.query(CreditNote).count() == 0

    def test_unknown_invoice(self, db_session):
        with pytest.raises(NotFoundError):
            generate_credit_note_for_invoice(31337)

    def test_lost_insert_race_returns_competing_credit_note(self, db_session, pos, cashier, owner, product_included,
                                                            fake_gateway, monkeypatch):
        monkeypatch.setattr(void_service, "dispatch_credit_note", lambda *args, **kwargs: None)
        invoice = _voided_sale_invoice(db_session, pos, cashier, owner, product_included)
        invoice_id, sale_id, branch_id = invoice.id, invoice.sale_id, invoice.branch_id
        original_next = credit_note_service.next_credit_note_number

        def _competing_worker_commits_first(**kwargs):
            monkeypatch.setattr(credit_note_service, "next_credit_note_number", original_next)
            db_session.add(CreditNote(
                original_invoice_id=invoice_id,
                sale_id=sale_id,
                branch_id=branch_id,
                credit_note_type="B",
                point_of_sale=3,
                credit_note_number=original_next(**kwargs),
                reason="Devolución",
                net_cents=10000,
                tax_cents=2100,
                total_cents=12100,
                status="PENDING",
                retry_count=0,
            ))
            db_session.commit()
            return original_next(**kwargs)

        monkeypatch.setattr(credit_note_service, "next_credit_note_number", _competing_worker_commits_first)

        credit_note = generate_credit_note_for_invoice(invoice_id, reason="Devolución")

        competitor = db_session.query(CreditNote).filter_by(original_invoice_id=invoice_id).one()
        assert credit_note.id == competitor.id
        assert credit_note.credit_note_number == 1
        assert fake_gateway.credit_note_payloads == []


class TestCreditNoteRetries:
    def test_pending_credit_note_retried_to_issued(self, db_session, pos, cashier, owner, product_included, fake_gateway):
        sale = create_sale(sale_request(pos, [(product_included, 1)], [cash(12100)]), cashier)
        fake_gateway.queue(retryable_failure())
        void_sale(sale.id, owner, reason="Devolución")

        credit_note = db_session.query(CreditNote).one()
        assert credit_note.status == "PENDING"
        assert [note.id for note in list_retryable_credit_notes(10)] == [credit_note.id]

        credit_note = retry_credit_note(credit_note.id)

        assert credit_note.status == "ISSUED"
        assert credit_note.cae is not None
        assert list_retryable_credit_notes(10) == []

        with pytest.raises(BusinessRuleError) as exc:
            retry_credit_note(credit_note.id)
        assert exc.value.code == "CREDIT_NOTE_NOT_RETRYABLE"

    def test_concurrent_submit_does_not_reach_gateway(self, db_session, pos, cashier, owner, product_included,
                                                      fake_gateway):
        sale = create_sale(sale_request(pos, [(product_included, 1)], [cash(12100)]), cashier)
        fake_gateway.queue(retryable_failure())
        void_sale(sale.id, owner, reason="Devolución")
        credit_note_id = db_session.query(CreditNote).one().id
        concurrent_status = []
        fake_gateway.on_submit = lambda: concurrent_status.append(submit_credit_note(credit_note_id).status)

        credit_note = retry_credit_note(credit_note_id)

        assert len(fake_gateway.credit_note_payloads) == 2
        assert concurrent_status == ["PENDING"]
        assert credit_note.status == "ISSUED"
        assert credit_note.submission_claimed_at is None

    def test_rejected_credit_note_fails(self, db_session, pos, cashier, owner, product_included, fake_gateway):
        sale = create_sale(sale_request(pos, [(product_included, 1)], [cash(12100)]), cashier)
        fake_gateway.queue(rejection("Comprobante asociado inexistente"))
        void_sale(sale.id, owner, reason="Devolución")

        credit_note = db_session.query(CreditNote).one()
        assert credit_note.status == "FAILED"
        assert credit_note.retry_count == 1
        assert credit_note.error_message == "Comprobante asociado inexistente"
        alert = db_session.query(Alert).filter_by(alert_type="FAILED_CREDIT_NOTE").one()
        assert alert.severity == "HIGH"

    def test_gateway_crash_raises_alert_on_invoice(self, db_session, pos, cashier, owner, product_included, fake_gateway):
        sale = create_sale(sale_request(pos, [(product_included, 1)], [cash(12100)]), cashier)
        invoice = db_session.query(Invoice).filter_by(sale_id=sale.id).one()
        fake_gateway.queue(RuntimeError("socket closed"))

        void_sale(sale.id, owner, reason="Devolución")

        credit_note = db_session.query(CreditNote).one()
        assert credit_note.status == "PENDING"
        assert credit_note.retry_count == 0
        alert = db_session.query(Alert).filter_by(alert_type="FAILED_CREDIT_NOTE").one()
        assert alert.reference_type == "INVOICE"
        assert alert.reference_id == invoice.id
