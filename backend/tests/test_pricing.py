"""
Integer-cents arithmetic and customer ledger tests.
"""

import pytest

from fiscalpos.models import Customer, CreditTransaction, LoyaltyTransaction
from fiscalpos.services.customer_ledger_service import points_earned_for, post_credit, post_loyalty
from fiscalpos.services.pricing import percent_of, price_line, prorate, tax_by_rate
from fiscalpos.validation import BusinessRuleError, ValidationError, percent_to_bps


# =============================================================================
# LINE PRICING
# =============================================================================


class TestPriceLine:
    def test_tax_excluded_adds_vat(self):
        line = price_line(unit_price_cents=10000, quantity=2, tax_rate_bps=2100, is_tax_included=False)
        assert (line.gross_cents, line.tax_cents, line.line_total_cents) == (20000, 4200, 24200)
        assert line.net_cents == 20000

    def test_tax_included_extracts_vat(self):
        line = price_line(unit_price_cents=12100, quantity=2, tax_rate_bps=2100, is_tax_included=True)
        assert (line.gross_cents, line.tax_cents, line.line_total_cents) == (24200, 4200, 24200)

    def test_line_discount_before_tax(self):
        line = price_line(unit_price_cents=10000, quantity=1, tax_rate_bps=2100, is_tax_included=False,
                          discount_cents=1000)
        assert line.gross_cents == 9000
        assert line.tax_cents == 1890
        assert line.line_total_cents == 10890

    def test_reduced_rate_rounds_half_up(self):
        # 999 * 1050 / 11050 = 94.92...
        line = price_line(unit_price_cents=999, quantity=1, tax_rate_bps=1050, is_tax_included=True)
        assert line.tax_cents == 95

    def test_zero_rate(self):
        line = price_line(unit_price_cents=500, quantity=3, tax_rate_bps=0, is_tax_included=False)
        assert (line.tax_cents, line.line_total_cents) == (0, 1500)


class TestProrate:
    @pytest.mark.parametrize("amount,num,den,expected", [
        (4200, 15780, 24200, 2739),
        (24200, 1000, 10000, 2420),
        (5, 1, 2, 3),
        (100, 0, 3, 0),
        (100, 5, 0, 0),
    ])
    def test_half_up(self, amount, num, den, expected):
        assert prorate(amount, num, den) == expected

    def test_percent_of(self):
        assert percent_of(24200, 1500) == 3630

    def test_tax_by_rate_groups_and_scales(self):
        class Line:
            def __init__(self, rate, tax):
                self.tax_rate_bps = rate
                self.tax_cents = tax

        lines = [Line(2100, 2100), Line(1050, 950), Line(2100, 2100)]
        assert tax_by_rate(lines, numerator=1, denominator=2) == {1050: 475, 2100: 2100}


class TestPercentToBps:
    @pytest.mark.parametrize("value,expected", [(15, 1500), ("12.5", 1250), (0, 0), (100, 10000)])
    def test_valid(self, value, expected):
        assert percent_to_bps(value, "discount_percent") == expected

    @pytest.mark.parametrize("value", [-1, 101, "abc", None])
    def test_invalid(self, value):
        with pytest.raises(ValidationError):
            percent_to_bps(value, "discount_percent")


# =============================================================================
# CUSTOMER LEDGERS
# =============================================================================


class TestCustomerLedgers:
    def test_points_earned_floor(self):
        assert points_earned_for(15780, 10000) == 1
        assert points_earned_for(9999, 10000) == 0
        assert points_earned_for(-100, 10000) == 0

    def test_loyalty_balance_snapshot(self, db_session, customer):
        post_loyalty(customer, points=-200, transaction_type="REDEEM")
        post_loyalty(customer, points=3, transaction_type="EARN")
        db_session.commit()

        assert db_session.get(Customer, customer.id).loyalty_points == 303
        balances = [t.balance_after for t in db_session.query(LoyaltyTransaction).order_by(LoyaltyTransaction.id)]
        assert balances == [300, 303]

    def test_loyalty_cannot_go_negative(self, db_session, customer):
        with pytest.raises(BusinessRuleError) as exc:
            post_loyalty(customer, points=-501, transaction_type="REDEEM")
        assert exc.value.code == "INSUFFICIENT_POINTS"
        assert customer.loyalty_points == 500

    def test_credit_cannot_go_negative(self, db_session, customer):
        post_credit(customer, amount_cents=-10000, transaction_type="DEBIT")
        with pytest.raises(BusinessRuleError) as exc:
            post_credit(customer, amount_cents=-1, transaction_type="DEBIT")
        assert exc.value.code == "INSUFFICIENT_CREDIT"
        db_session.commit()

        assert db_session.get(Customer, customer.id).credit_balance_cents == 0
        assert db_session.query(CreditTransaction).count() == 1
