from datetime import date, datetime, timedelta
from decimal import Decimal

import pytest

from app.errors import InvalidStateTransition, ValidationError
from app.models import Booking, LedgerTransaction, Vendor
from app.services import booking_service, commission_service
from app.utils.money import split_commission

BOOKING_DATE = date(2030, 1, 7)
NOW = datetime(2030, 1, 1, 9, 0)


def _paid_booking(customer, vendor, service, slot="10:00", promo_code=None):
    booking, _ = booking_service.create_booking(
        customer.id, vendor.id, service.id, BOOKING_DATE, slot, promo_code=promo_code, now=NOW
    )
    return booking_service.process_booking_payment(booking.id, "card", "pi_test", now=NOW)


def _vendor(db_session, vendor_id):
    db_session.expire_all()
    return db_session.get(Vendor, vendor_id)


@pytest.mark.settlement
class TestSplit:
    def test_split_always_adds_up(self):
        for amount, rate in (("2450", "0.22"), ("999.99", "0.15"), ("0.01", "0.22"), ("1234.57", "0.333")):
            commission, remainder = split_commission(amount, rate)
            assert commission + remainder == Decimal(amount)

    def test_split_rounds_half_up(self):
        commission, remainder = split_commission("10.25", "0.2")
        assert commission == Decimal("2.05")
        assert remainder == Decimal("8.20")


@pytest.mark.settlement
class TestSettle:
    def test_save50_booking_settlement(
        self, db, db_session, sample_customer, sample_vendor, sample_service, save50_promo
    ):
        booking = _paid_booking(sample_customer, sample_vendor, sample_service, promo_code="SAVE50")

        assert booking.final_price == Decimal("2450.00")
        assert booking.commission_amount == Decimal("539.00")
        assert booking.vendor_earnings == Decimal("1911.00")
        assert booking.commission_amount + booking.vendor_earnings == booking.final_price
        assert booking.payment_status == "paid"
        assert booking.settled_at == NOW

        txn = commission_service.get_commission_transaction(booking.id)
        assert txn.amount == Decimal("2450.00")
        assert txn.commission_amount == Decimal("539.00")
        assert txn.status == "completed"

        vendor = _vendor(db_session, sample_vendor.id)
        assert vendor.total_earnings == Decimal("1911.00")
        assert vendor.pending_payouts == Decimal("1911.00")

    def test_settle_is_idempotent(self, db, db_session, sample_customer, sample_vendor, sample_service):
        booking = _paid_booking(sample_customer, sample_vendor, sample_service)
        first = commission_service.get_commission_transaction(booking.id)

        again = commission_service.settle(booking, now=NOW + timedelta(hours=1))

        assert again.id == first.id
        assert db_session.query(LedgerTransaction).filter_by(type="commission").count() == 1
        assert _vendor(db_session, sample_vendor.id).total_earnings == Decimal("1950.00")

    def test_rate_is_captured_at_settlement(
        self, db, db_session, sample_customer, sample_vendor, sample_service
    ):
        booking = _paid_booking(sample_customer, sample_vendor, sample_service)

        vendor = _vendor(db_session, sample_vendor.id)
        vendor.commission_rate = Decimal("0.10")
        db_session.commit()

        txn = commission_service.process_refund(booking.id, now=NOW)

        assert booking.commission_rate == Decimal("0.2200")
        assert txn.commission_amount == Decimal("-550.00")


@pytest.mark.settlement
class TestRefund:
    def test_full_refund_reverses_vendor_share(
        self, db, db_session, sample_customer, sample_vendor, sample_service
    ):
        booking = _paid_booking(sample_customer, sample_vendor, sample_service)

        txn = commission_service.process_refund(booking.id, reason="Customer request", now=NOW)

        assert txn.type == "refund"
        assert txn.amount == Decimal("-2500.00")
        assert txn.commission_amount == Decimal("-550.00")

        refreshed = db_session.get(Booking, booking.id)
        assert refreshed.status == "cancelled"
        assert refreshed.payment_status == "refunded"
        assert refreshed.slot_hold is None
        assert refreshed.cancelled_by == "admin"

        vendor = _vendor(db_session, sample_vendor.id)
        assert vendor.total_earnings == Decimal("0.00")
        assert vendor.pending_payouts == Decimal("0.00")

    def test_partial_refund(self, db, db_session, sample_customer, sample_vendor, sample_service):
        booking = _paid_booking(sample_customer, sample_vendor, sample_service)

        commission_service.process_refund(booking.id, amount=Decimal("1000"), now=NOW)

        vendor = _vendor(db_session, sample_vendor.id)
        assert vendor.total_earnings == Decimal("1170.00")

    def test_vendor_total_matches_ledger(
        self, db, db_session, sample_customer, sample_vendor, sample_service, cheap_service
    ):
        first = _paid_booking(sample_customer, sample_vendor, sample_service, slot="10:00")
        _paid_booking(sample_customer, sample_vendor, cheap_service, slot="15:00")
        commission_service.process_refund(first.id, now=NOW)

        rows = db_session.query(LedgerTransaction).filter(
            LedgerTransaction.type.in_(("commission", "refund"))
        )
        expected = sum((t.amount - t.commission_amount for t in rows), Decimal("0"))

        assert _vendor(db_session, sample_vendor.id).total_earnings == expected == Decimal("780.00")

    def test_pending_payouts_never_negative(
        self, db, db_session, sample_customer, sample_vendor, sample_service
    ):
        booking = _paid_booking(sample_customer, sample_vendor, sample_service)
        payout = commission_service.process_payout(sample_vendor.id, Decimal("1950"), now=NOW)
        commission_service.complete_payout(payout.id, now=NOW)

        commission_service.process_refund(booking.id, now=NOW)

        vendor = _vendor(db_session, sample_vendor.id)
        assert vendor.pending_payouts == Decimal("0.00")
        assert vendor.total_earnings == Decimal("0.00")

    def test_refund_requires_paid_booking(self, db, sample_customer, sample_vendor, sample_service):
        booking, _ = booking_service.create_booking(
            sample_customer.id, sample_vendor.id, sample_service.id, BOOKING_DATE, "10:00", now=NOW
        )
        with pytest.raises(InvalidStateTransition):
            commission_service.process_refund(booking.id, now=NOW)

    def test_refund_amount_bounds(self, db, sample_customer, sample_vendor, sample_service):
        booking = _paid_booking(sample_customer, sample_vendor, sample_service)

        with pytest.raises(ValidationError):
            commission_service.process_refund(booking.id, amount=Decimal("0"), now=NOW)
        with pytest.raises(ValidationError):
            commission_service.process_refund(booking.id, amount=Decimal("2500.01"), now=NOW)

    def test_refund_twice_rejected(self, db, sample_customer, sample_vendor, sample_service):
        booking = _paid_booking(sample_customer, sample_vendor, sample_service)
        commission_service.process_refund(booking.id, now=NOW)

        with pytest.raises(InvalidStateTransition):
            commission_service.process_refund(booking.id, now=NOW)

    def test_completed_booking_not_refundable(
        self, db, sample_customer, sample_vendor, sample_service
    ):
        booking = _paid_booking(sample_customer, sample_vendor, sample_service)
        booking_service.complete_booking(booking.id)

        with pytest.raises(InvalidStateTransition):
            commission_service.process_refund(booking.id, now=NOW)


@pytest.mark.settlement
class TestPayouts:
    def test_payout_exceeding_balance(self, db, db_session, sample_customer, sample_vendor, sample_service):
        _paid_booking(sample_customer, sample_vendor, sample_service)

        with pytest.raises(ValidationError) as exc:
            commission_service.process_payout(sample_vendor.id, Decimal("5000"), now=NOW)

        assert exc.value.reason == "insufficient_balance"
        assert db_session.query(LedgerTransaction).filter_by(type="payout").count() == 0
        assert _vendor(db_session, sample_vendor.id).pending_payouts == Decimal("1950.00")

    def test_payout_complete(self, db, db_session, sample_customer, sample_vendor, sample_service):
        _paid_booking(sample_customer, sample_vendor, sample_service)

        payout = commission_service.process_payout(sample_vendor.id, Decimal("1000"), now=NOW)
        assert payout.status == "pending"
        assert payout.amount == Decimal("-1000.00")
        assert _vendor(db_session, sample_vendor.id).pending_payouts == Decimal("950.00")

        completed = commission_service.complete_payout(payout.id, now=NOW)
        assert completed.status == "completed"

        with pytest.raises(InvalidStateTransition):
            commission_service.fail_payout(payout.id, now=NOW)

    def test_failed_payout_restores_balance(
        self, db, db_session, sample_customer, sample_vendor, sample_service
    ):
        _paid_booking(sample_customer, sample_vendor, sample_service)
        payout = commission_service.process_payout(sample_vendor.id, Decimal("1000"), now=NOW)

        commission_service.fail_payout(payout.id, now=NOW)

        assert _vendor(db_session, sample_vendor.id).pending_payouts == Decimal("1950.00")

    def test_non_positive_payout(self, db, sample_vendor):
        with pytest.raises(ValidationError):
            commission_service.process_payout(sample_vendor.id, Decimal("0"), now=NOW)


@pytest.mark.settlement
class TestReports:
    def test_vendor_earnings_report(self, db, sample_customer, sample_vendor, sample_service, cheap_service):
        first = _paid_booking(sample_customer, sample_vendor, sample_service, slot="10:00")
        _paid_booking(sample_customer, sample_vendor, cheap_service, slot="15:00")
        commission_service.process_refund(first.id, now=NOW)
        failed = commission_service.process_payout(sample_vendor.id, Decimal("100"), now=NOW)
        commission_service.fail_payout(failed.id, now=NOW)
        commission_service.process_payout(sample_vendor.id, Decimal("200"), now=NOW)

        report = commission_service.get_vendor_earnings(sample_vendor.id)

        assert report["total_earnings"] == 780.0
        assert report["total_refunds"] == 1950.0
        assert report["total_payouts"] == 200.0
        assert report["pending_earnings"] == 580.0
        assert report["balances"]["pending_payouts"] == 580.0
        assert len(report["transactions"]) == 5

    def test_platform_revenue(self, db, sample_customer, sample_vendor, sample_service, cheap_service):
        first = _paid_booking(sample_customer, sample_vendor, sample_service, slot="10:00")
        _paid_booking(sample_customer, sample_vendor, cheap_service, slot="15:00")
        commission_service.process_refund(first.id, now=NOW)

        revenue = commission_service.get_platform_revenue()

        assert revenue["total_commissions"] == 770.0
        assert revenue["commission_refunds"] == 550.0
        assert revenue["net_commissions"] == 220.0
        assert revenue["total_bookings"] == 2
        assert revenue["avg_commission_per_booking"] == 385.0

    def test_platform_revenue_window(self, db, sample_customer, sample_vendor, sample_service):
        _paid_booking(sample_customer, sample_vendor, sample_service)

        revenue = commission_service.get_platform_revenue(start=NOW + timedelta(days=1))

        assert revenue["total_bookings"] == 0
        assert revenue["total_commissions"] == 0.0
