"""
Fiscal invoice tests.

Verifies:
- Invoice type table (A / B / C) and type A data requirements
- Retry state machine: retryable failures, non-retryable rejection, limit
- Duplicate guard: one invoice per sale, including a lost insert race
- Only one caller at a time sends an invoice to the gateway; a second CAE
  never replaces the first
- A gateway success arriving after the sale was voided yields a credit note
"""

from datetime import timedelta

import pytest

from conftest import OWNER_PIN, cash, rejection, retryable_failure, sale_request
from fiscalpos.models import Alert, Branch, CreditNote, Customer, Invoice
from fiscalpos.services import invoice_service, sale_service
from fiscalpos.services.fiscal_gateway import GatewayResult
from fiscalpos.services.invoice_service import (
    build_invoice_payload,
    determine_invoice_type,
    generate_invoice_for_sale,
    list_retryable_invoices,
    resolve_fiscal_customer,
    retry_invoice,
    submit_invoice,
)
from fiscalpos.services.sale_service import create_sale
from fiscalpos.services.void_service import void_sale
from fiscalpos.time_utils import utcnow
from fiscalpos.validation import BusinessRuleError, NotFoundError, ValidationError


def _sell(pos, actor, product, quantity=1, **extra):
    return create_sale(sale_request(pos, [(product, quantity)], [cash(product.price_cents * quantity)], **extra), actor)


# =============================================================================
# TYPE DETERMINATION
# =============================================================================


class TestInvoiceType:
    @pytest.mark.parametrize("seller,customer,tax_id,expected", [
        ("MONOTRIBUTO", "RESPONSABLE_INSCRIPTO", "30709876543", "C"),
        ("MONOTRIBUTO", "CONSUMIDOR_FINAL", None, "C"),
        ("RESPONSABLE_INSCRIPTO", "RESPONSABLE_INSCRIPTO", "30709876543", "A"),
        ("RESPONSABLE_INSCRIPTO", "RESPONSABLE_INSCRIPTO", None, "B"),
        ("RESPONSABLE_INSCRIPTO", "CONSUMIDOR_FINAL", None, "B"),
        ("RESPONSABLE_INSCRIPTO", "MONOTRIBUTO", "20304050607", "B"),
        ("EXENTO", "RESPONSABLE_INSCRIPTO", "30709876543", "B"),
        (None, None, None, "B"),
    ])
    def test_type_table(self, seller, customer, tax_id, expected):
        assert determine_invoice_type(seller, customer, tax_id) == expected

    def test_anonymous_sale_snapshot(self, db_session, branch):
        snapshot = resolve_fiscal_customer(branch, None, None)
        assert snapshot["invoice_type"] == "B"
        assert snapshot["name"] == "Consumidor Final"
        assert snapshot["tax_condition"] == "CONSUMIDOR_FINAL"

    def test_registered_customer_gets_type_a(self, db_session, branch, ri_customer):
        snapshot = resolve_fiscal_customer(branch, ri_customer, None)
        assert snapshot["invoice_type"] == "A"
        assert snapshot["tax_id"] == "30709876543"
        assert snapshot["address"] == "Calle Falsa 123, Lanús"

    def test_override_normalizes_tax_id(self, db_session, branch):
        snapshot = resolve_fiscal_customer(branch, None, {
            "invoice_type": "a",
            "customer_tax_id": "30-70987654-3",
            "customer_tax_condition": "RESPONSABLE_INSCRIPTO",
            "customer_name": "Distribuidora del Sur SRL",
            "customer_address": "Calle Falsa 123",
        })
        assert snapshot["invoice_type"] == "A"
        assert snapshot["tax_id"] == "30709876543"
        assert snapshot["document_type"] == "CUIT"

    def test_invalid_tax_id(self, db_session, branch):
        with pytest.raises(BusinessRuleError) as exc:
            resolve_fiscal_customer(branch, None, {"customer_tax_id": "30-123"})
        assert exc.value.code == "INVALID_TAX_ID"

    def test_type_a_lists_missing_fields(self, db_session, branch):
        with pytest.raises(BusinessRuleError) as exc:
            resolve_fiscal_customer(branch, None, {"invoice_type": "A"})
        assert exc.value.code == "INVOICE_A_DATA_REQUIRED"
        assert set(exc.value.details["missing"]) == {
            "customer_tax_id", "customer_tax_condition", "customer_address", "customer_name",
        }

    def test_unknown_override_type(self, db_session, branch):
        with pytest.raises(ValidationError):
            resolve_fiscal_customer(branch, None, {"invoice_type": "E"})


# =============================================================================
# GENERATION
# =============================================================================


class TestInvoiceGeneration:
    def test_type_b_invoice_issued(self, db_session, pos, cashier, product_included, fake_gateway):
        sale = _sell(pos, cashier, product_included, 2)

        invoice = db_session.query(Invoice).filter_by(sale_id=sale.id).one()
        assert invoice.invoice_type == "B"
        assert invoice.status == "ISSUED"
        assert invoice.point_of_sale == 3
        assert invoice.invoice_number == 1
        assert invoice.formatted_number == "0003-00000001"
        assert invoice.cae is not None
        assert invoice.issued_at is not None
        assert invoice.total_cents == 24200
        assert invoice.tax_cents == 4200
        assert invoice.net_cents == 20000
        assert invoice.retry_count == 0

        payload = fake_gateway.invoice_payloads[0]
        assert payload["voucher_type"] == "B"
        assert payload["totals"]["tax_by_rate"] == {2100: 4200}
        assert payload["items"][0]["quantity"] == 2
        assert payload["seller"]["tax_id"] == "30712345674"

    def test_numbers_are_consecutive_per_type(self, db_session, pos, cashier, product_included):
        first = _sell(pos, cashier, product_included)
        second = _sell(pos, cashier, product_included)

        numbers = [
            db_session.query(Invoice).filter_by(sale_id=sale.id).one().invoice_number
            for sale in (first, second)
        ]
        assert numbers == [1, 2]

    def test_type_a_for_registered_customer(self, db_session, pos, cashier, ri_customer, product_included, fake_gateway):
        sale = _sell(pos, cashier, product_included, customer_id=ri_customer.id)

        invoice = db_session.query(Invoice).filter_by(sale_id=sale.id).one()
        assert invoice.invoice_type == "A"
        assert invoice.customer_tax_id == "30709876543"
        assert invoice.customer_address == "Calle Falsa 123, Lanús"
        assert fake_gateway.invoice_payloads[0]["customer"]["tax_condition"] == "RESPONSABLE_INSCRIPTO"

    def test_type_c_for_monotributo_branch(self, db_session, pos, branch, cashier, product_included):
        stored = db_session.get(Branch, branch.id)
        stored.tax_condition = "MONOTRIBUTO"
        db_session.commit()

        sale = _sell(pos, cashier, product_included)
        assert db_session.query(Invoice).filter_by(sale_id=sale.id).one().invoice_type == "C"

    def test_incomplete_type_a_data_fails_before_gateway(self, db_session, pos, cashier, ri_customer,
                                                         product_included, fake_gateway):
        stored = db_session.get(Customer, ri_customer.id)
        stored.address = None
        db_session.commit()

        sale = _sell(pos, cashier, product_included, customer_id=ri_customer.id)

        assert sale.status == "COMPLETED"
        assert db_session.query(Invoice).count() == 0
        assert fake_gateway.invoice_payloads == []
        alert = db_session.query(Alert).filter_by(alert_type="FAILED_INVOICE").one()
        assert alert.severity == "HIGH"
        assert alert.reference_id == sale.id

    def test_discounted_sale_invoice_figures(self, db_session, pos, manager, customer, product_included, fake_gateway):
        data = sale_request(
            pos, [(product_included, 2)], [cash(20000)],
            customer_id=customer.id, discount_type="PERCENT", discount_percent=10,
            discount_reason="Cliente frecuente", points_to_redeem=100, credit_to_use_cents=5000,
        )
        sale = create_sale(data, manager)

        invoice = db_session.query(Invoice).filter_by(sale_id=sale.id).one()
        assert invoice.total_cents == 15780
        assert invoice.tax_cents == 2739
        assert invoice.net_cents == 13041
        totals = fake_gateway.invoice_payloads[0]["totals"]
        assert totals["discount_cents"] == 24200 - 15780
        assert totals["tax_by_rate"] == {2100: 2739}

    def test_duplicate_generation_returns_existing(self, db_session, pos, cashier, product_included, fake_gateway):
        sale = _sell(pos, cashier, product_included)
        existing = db_session.query(Invoice).filter_by(sale_id=sale.id).one()

        again = generate_invoice_for_sale(sale.id)

        assert again.id == existing.id
        assert db_session.query(Invoice).filter_by(sale_id=sale.id).count() == 1
        assert len(fake_gateway.invoice_payloads) == 1

    def test_lost_insert_race_returns_competing_invoice(self, db_session, pos, cashier, product_included,
                                                        fake_gateway, monkeypatch):
        monkeypatch.setattr(sale_service, "dispatch_invoice_generation", lambda *args, **kwargs: None)
        sale = _sell(pos, cashier, product_included)
        sale_id, branch_id = sale.id, sale.branch_id
        original_next = invoice_service.next_invoice_number

        def _competing_worker_commits_first(**kwargs):
            monkeypatch.setattr(invoice_service, "next_invoice_number", original_next)
            db_session.add(Invoice(
                sale_id=sale_id,
                branch_id=branch_id,
                invoice_type="B",
                point_of_sale=3,
                invoice_number=original_next(**kwargs),
                net_cents=10000,
                tax_cents=2100,
                total_cents=12100,
                status="PENDING",
                retry_count=0,
            ))
            db_session.commit()
            return original_next(**kwargs)

        monkeypatch.setattr(invoice_service, "next_invoice_number", _competing_worker_commits_first)

        invoice = generate_invoice_for_sale(sale_id)

        competitor = db_session.query(Invoice).filter_by(sale_id=sale_id).one()
        assert invoice.id == competitor.id
        assert invoice.invoice_number == 1
        assert invoice.status == "PENDING"
        assert fake_gateway.invoice_payloads == []

    def test_voided_sale_without_invoice_is_skipped(self, db_session, pos, cashier, owner, product_included,
                                                    fake_gateway, monkeypatch):
        monkeypatch.setattr(sale_service, "dispatch_invoice_generation", lambda *args, **kwargs: None)
        sale = _sell(pos, cashier, product_included)
        void_sale(sale.id, owner, reason="Devolución")

        assert generate_invoice_for_sale(sale.id) is None
        assert db_session.query(Invoice).count() == 0
        assert fake_gateway.invoice_payloads == []

    def test_unknown_sale(self, db_session):
        with pytest.raises(NotFoundError):
            generate_invoice_for_sale(424242)

    def test_payload_issue_date_uses_business_day(self, db_session, pos, cashier, product_included, today):
        sale = _sell(pos, cashier, product_included)
        invoice = db_session.query(Invoice).filter_by(sale_id=sale.id).one()
        assert build_invoice_payload(invoice)["issue_date"] == today.isoformat()


# =============================================================================
# RETRY STATE MACHINE
# =============================================================================


class TestInvoiceRetries:
    def test_retryable_failures_until_failed(self, db_session, pos, cashier, product_included, fake_gateway):
        fake_gateway.queue(retryable_failure(), retryable_failure(), retryable_failure())

        sale = _sell(pos, cashier, product_included)
        invoice = db_session.query(Invoice).filter_by(sale_id=sale.id).one()
        assert invoice.status == "PENDING"
        assert invoice.retry_count == 1
        assert invoice.last_retry_at is not None
        assert invoice.error_message == "Gateway timeout: read timed out"
        assert [i.id for i in list_retryable_invoices(10)] == [invoice.id]

        invoice = retry_invoice(invoice.id)
        assert invoice.status == "PENDING"
        assert invoice.retry_count == 2

        invoice = retry_invoice(invoice.id)
        assert invoice.status == "FAILED"
        assert invoice.retry_count == 3
        assert list_retryable_invoices(10) == []

        severities = [
            a.severity for a in db_session.query(Alert).filter_by(alert_type="FAILED_INVOICE").order_by(Alert.id)
        ]
        assert severities == ["MEDIUM", "HIGH"]

        with pytest.raises(BusinessRuleError) as exc:
            retry_invoice(invoice.id)
        assert exc.value.code == "INVOICE_NOT_RETRYABLE"
        assert len(fake_gateway.invoice_payloads) == 3

    def test_rejection_fails_immediately(self, db_session, pos, cashier, product_included, fake_gateway):
        fake_gateway.queue(rejection())

        sale = _sell(pos, cashier, product_included)

        invoice = db_session.query(Invoice).filter_by(sale_id=sale.id).one()
        assert invoice.status == "FAILED"
        assert invoice.retry_count == 1
        assert invoice.error_message == "CUIT del receptor inválido"
        assert invoice.gateway_response == {"success": False, "error": "CUIT del receptor inválido"}
        alert = db_session.query(Alert).filter_by(alert_type="FAILED_INVOICE").one()
        assert alert.severity == "HIGH"

    def test_success_after_failure(self, db_session, pos, cashier, product_included, fake_gateway, events):
        fake_gateway.queue(retryable_failure())
        sale = _sell(pos, cashier, product_included)
        invoice = db_session.query(Invoice).filter_by(sale_id=sale.id).one()

        invoice = retry_invoice(invoice.id)

        assert invoice.status == "ISSUED"
        assert invoice.retry_count == 1
        assert invoice.error_message is None
        assert "INVOICE_ISSUED" in [event["type"] for event in events]

    def test_issued_invoice_not_retryable(self, db_session, pos, cashier, product_included):
        sale = _sell(pos, cashier, product_included)
        invoice = db_session.query(Invoice).filter_by(sale_id=sale.id).one()

        with pytest.raises(BusinessRuleError) as exc:
            retry_invoice(invoice.id)
        assert exc.value.code == "INVOICE_NOT_RETRYABLE"

    def test_retry_unknown_invoice(self, db_session):
        with pytest.raises(NotFoundError):
            retry_invoice(999)


# =============================================================================
# SUBMISSION CLAIM
# =============================================================================


class TestSubmissionClaim:
    def _pending_invoice_id(self, db_session, pos, cashier, product, fake_gateway):
        fake_gateway.queue(retryable_failure())
        sale = _sell(pos, cashier, product)
        return db_session.query(Invoice).filter_by(sale_id=sale.id).one().id

    def test_concurrent_submit_does_not_reach_gateway(self, db_session, pos, cashier, product_included, fake_gateway):
        invoice_id = self._pending_invoice_id(db_session, pos, cashier, product_included, fake_gateway)
        calls_before = len(fake_gateway.invoice_payloads)
        concurrent_status = []
        fake_gateway.on_submit = lambda: concurrent_status.append(submit_invoice(invoice_id).status)

        invoice = retry_invoice(invoice_id)

        assert len(fake_gateway.invoice_payloads) == calls_before + 1
        assert concurrent_status == ["PENDING"]
        assert invoice.status == "ISSUED"
        assert invoice.cae == "74000000000001"
        assert invoice.submission_claimed_at is None

    def test_manual_retry_rejected_while_in_flight(self, db_session, pos, cashier, product_included, fake_gateway):
        invoice_id = self._pending_invoice_id(db_session, pos, cashier, product_included, fake_gateway)
        db_session.get(Invoice, invoice_id).submission_claimed_at = utcnow()
        db_session.commit()

        with pytest.raises(BusinessRuleError) as exc:
            retry_invoice(invoice_id)
        assert exc.value.code == "INVOICE_SUBMISSION_IN_PROGRESS"
        assert list_retryable_invoices(10) == []
        assert len(fake_gateway.invoice_payloads) == 1

    def test_stale_claim_is_taken_over(self, db_session, pos, cashier, product_included, fake_gateway):
        invoice_id = self._pending_invoice_id(db_session, pos, cashier, product_included, fake_gateway)
        db_session.get(Invoice, invoice_id).submission_claimed_at = utcnow() - timedelta(hours=1)
        db_session.commit()

        assert [i.id for i in list_retryable_invoices(10)] == [invoice_id]
        invoice = retry_invoice(invoice_id)

        assert invoice.status == "ISSUED"
        assert invoice.submission_claimed_at is None

    def test_gateway_crash_releases_claim(self, db_session, pos, cashier, product_included, fake_gateway):
        fake_gateway.queue(RuntimeError("connection reset"))
        sale = _sell(pos, cashier, product_included)
        invoice = db_session.query(Invoice).filter_by(sale_id=sale.id).one()

        assert invoice.status == "PENDING"
        assert invoice.submission_claimed_at is None
        assert retry_invoice(invoice.id).status == "ISSUED"

    def test_second_cae_never_replaces_the_first(self, db_session, pos, cashier, product_included, fake_gateway):
        invoice_id = self._pending_invoice_id(db_session, pos, cashier, product_included, fake_gateway)

        def _takeover_after_claim_went_stale():
            db_session.query(Invoice).filter_by(id=invoice_id).update(
                {Invoice.submission_claimed_at: utcnow() - timedelta(hours=1)}, synchronize_session=False
            )
            db_session.commit()
            submit_invoice(invoice_id)

        fake_gateway.on_submit = _takeover_after_claim_went_stale

        invoice = retry_invoice(invoice_id)

        assert len(fake_gateway.invoice_payloads) == 3
        assert invoice.status == "ISSUED"
        assert invoice.cae == "74000000000001"
        assert invoice.submission_claimed_at is None

        alert = db_session.query(Alert).filter_by(alert_type="FAILED_INVOICE", severity="HIGH").one()
        assert alert.reference_type == "INVOICE"
        assert alert.reference_id == invoice_id
        assert "74000000000002" in alert.message

    def test_late_failure_keeps_invoice_issued(self, db_session, pos, cashier, product_included, fake_gateway):
        invoice_id = self._pending_invoice_id(db_session, pos, cashier, product_included, fake_gateway)

        def _takeover_after_claim_went_stale():
            db_session.query(Invoice).filter_by(id=invoice_id).update(
                {Invoice.submission_claimed_at: utcnow() - timedelta(hours=1)}, synchronize_session=False
            )
            db_session.commit()
            submit_invoice(invoice_id)

        fake_gateway.on_submit = _takeover_after_claim_went_stale
        fake_gateway.queue(GatewayResult(success=True, cae="74000000000555"), retryable_failure())

        invoice = retry_invoice(invoice_id)

        assert invoice.status == "ISSUED"
        assert invoice.cae == "74000000000555"
        assert invoice.retry_count == 1
        assert db_session.query(Alert).filter_by(alert_type="FAILED_INVOICE", severity="HIGH").count() == 0


# =============================================================================
# LATE ISSUE
# =============================================================================


class TestLateIssue:
    def test_success_after_void_produces_credit_note(self, db_session, pos, cashier, owner,
                                                     product_included, fake_gateway):
        def _void_mid_flight():
            invoice = db_session.query(Invoice).one()
            void_sale(invoice.sale_id, owner, reason="Anulada durante la emisión")

        fake_gateway.on_submit = _void_mid_flight

        sale = _sell(pos, cashier, product_included)

        invoice = db_session.query(Invoice).filter_by(sale_id=sale.id).one()
        assert invoice.status == "CANCELLED"
        assert invoice.cae is not None

        credit_note = db_session.query(CreditNote).filter_by(original_invoice_id=invoice.id).one()
        assert credit_note.status == "ISSUED"
        assert credit_note.reason == "Anulada durante la emisión"
        assert len(fake_gateway.credit_note_payloads) == 1

    def test_supervisor_void_mid_flight(self, db_session, pos, cashier, owner, product_included, fake_gateway):
        def _void_mid_flight():
            invoice = db_session.query(Invoice).one()
            void_sale(invoice.sale_id, cashier, reason="Error de cobro", supervisor_pin=OWNER_PIN)

        fake_gateway.on_submit = _void_mid_flight
        fake_gateway.queue(retryable_failure())

        sale = _sell(pos, cashier, product_included)

        invoice = db_session.query(Invoice).filter_by(sale_id=sale.id).one()
        # A failure on a cancelled invoice is recorded but does not move it
        assert invoice.status == "CANCELLED"
        assert invoice.retry_count == 1
        assert db_session.query(CreditNote).count() == 0
