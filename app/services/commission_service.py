"""
Commission & settlement ledger.

Every money movement is an appended ``ledger_transaction`` row plus atomic
updates to the vendor's running balances, committed as one unit.
"""

from datetime import datetime

from flask import current_app

from app.errors import InvalidStateTransition, NotFoundError, ValidationError
from app.models import Booking, LedgerTransaction, Vendor, serialize_transaction
from app.store import LedgerStore
from app.utils.money import ZERO, quantize, split_commission

REFUNDABLE_STATUSES = ("pending", "confirmed")


def get_commission_transaction(booking_id, store=None):
    store = store or LedgerStore()
    return store.first(
        LedgerTransaction,
        LedgerTransaction.booking_id == booking_id,
        LedgerTransaction.type == "commission",
    )


def settle(booking, now=None, store=None):
    """
    Split ``booking.final_price`` between platform and vendor and post it.

    Idempotent: a booking that already carries ``settled_at`` returns its
    existing commission entry and changes nothing.
    """
    store = store or LedgerStore()
    now = now or datetime.now()

    with store.atomic():
        booking = store.require(Booking, booking.id, "Booking", for_update=True)
        if booking.settled_at is not None:
            return get_commission_transaction(booking.id, store)

        vendor = store.require(Vendor, booking.vendor_id, "Vendor", for_update=True)
        rate = vendor.commission_rate
        final_price = quantize(booking.final_price)
        commission, earnings = split_commission(final_price, rate)

        txn = store.create(
            LedgerTransaction(
                type="commission",
                booking_id=booking.id,
                vendor_id=vendor.id,
                customer_id=booking.customer_id,
                amount=final_price,
                commission_amount=commission,
                description=f"Commission for booking #{booking.id}",
                status="completed",
                payment_method=booking.payment_method,
                created_at=now,
                processed_at=now,
            ),
            conflict_message=f"Booking {booking.id} is already settled",
        )
        store.increment(Vendor, vendor.id, "total_earnings", earnings)
        store.increment(Vendor, vendor.id, "pending_payouts", earnings)
        store.update(
            booking,
            commission_rate=rate,
            commission_amount=commission,
            vendor_earnings=earnings,
            payment_status="paid",
            settled_at=now,
        )

    current_app.logger.info(
        f"Settled booking {booking.id}: commission {commission}, vendor earnings {earnings}"
    )
    return txn


def process_refund(
    booking_id, amount=None, reason="Refund", cancelled_by="admin", now=None, store=None
):
    """
    Post a refund against a paid booking and cancel it.

    The split uses the commission rate captured at settlement. ``amount``
    defaults to the booking's final price.
    """
    store = store or LedgerStore()
    now = now or datetime.now()

    with store.atomic():
        booking = store.require(Booking, booking_id, "Booking", for_update=True)
        if booking.payment_status != "paid":
            raise InvalidStateTransition(
                f"Booking {booking_id} cannot be refunded with payment status {booking.payment_status}"
            )
        if booking.status not in REFUNDABLE_STATUSES:
            raise InvalidStateTransition(
                f"Booking {booking_id} cannot be refunded from status {booking.status}"
            )

        final_price = quantize(booking.final_price)
        amount = final_price if amount is None else quantize(amount)
        if amount <= ZERO or amount > final_price:
            raise ValidationError(f"Refund amount must be greater than 0 and at most {final_price}")

        rate = booking.commission_rate
        if rate is None:
            rate = store.require(Vendor, booking.vendor_id, "Vendor").commission_rate
        commission_refund, vendor_refund = split_commission(amount, rate)

        txn = store.create(
            LedgerTransaction(
                type="refund",
                booking_id=booking.id,
                vendor_id=booking.vendor_id,
                customer_id=booking.customer_id,
                amount=-amount,
                commission_amount=-commission_refund,
                description=f"Refund for booking #{booking.id}: {reason}",
                status="completed",
                created_at=now,
                processed_at=now,
            ),
            conflict_message=f"Booking {booking.id} is already refunded",
        )
        if vendor_refund > ZERO:
            store.increment(Vendor, booking.vendor_id, "total_earnings", -vendor_refund)
            store.increment(Vendor, booking.vendor_id, "pending_payouts", -vendor_refund, floor=0)

        store.update(
            booking,
            status="cancelled",
            payment_status="refunded",
            cancellation_reason=reason,
            cancelled_by=cancelled_by,
            slot_hold=None,
        )

    current_app.logger.info(f"Refunded {amount} on booking {booking_id} (vendor share {vendor_refund})")
    return txn


def process_payout(vendor_id, amount, payment_method="bank_transfer", now=None, store=None):
    store = store or LedgerStore()
    now = now or datetime.now()
    amount = quantize(amount)
    if amount <= ZERO:
        raise ValidationError("Payout amount must be positive")

    with store.atomic():
        vendor = store.require(Vendor, vendor_id, "Vendor")
        debited = store.increment(
            Vendor,
            vendor.id,
            "pending_payouts",
            -amount,
            guard=Vendor.pending_payouts >= amount,
            floor=0,
        )
        if not debited:
            raise ValidationError(
                f"Payout of {amount} exceeds pending payouts of {quantize(vendor.pending_payouts)}",
                reason="insufficient_balance",
            )
        txn = store.create(
            LedgerTransaction(
                type="payout",
                vendor_id=vendor.id,
                amount=-amount,
                description=f"Payout to vendor #{vendor.id}",
                status="pending",
                payment_method=payment_method,
                created_at=now,
            )
        )

    current_app.logger.info(f"Payout {txn.id} of {amount} queued for vendor {vendor_id}")
    return txn


def _pending_payout(transaction_id, store):
    txn = store.get(LedgerTransaction, transaction_id, for_update=True)
    if txn is None or txn.type != "payout":
        raise NotFoundError(f"Payout {transaction_id} not found")
    if txn.status != "pending":
        raise InvalidStateTransition(f"Payout {transaction_id} is already {txn.status}")
    return txn


def complete_payout(transaction_id, now=None, store=None):
    store = store or LedgerStore()
    with store.atomic():
        txn = _pending_payout(transaction_id, store)
        store.update(txn, status="completed", processed_at=now or datetime.now())
    current_app.logger.info(f"Payout {transaction_id} completed")
    return txn


def fail_payout(transaction_id, now=None, store=None):
    """Mark a payout failed and give the amount back to pending payouts."""
    store = store or LedgerStore()
    with store.atomic():
        txn = _pending_payout(transaction_id, store)
        store.increment(Vendor, txn.vendor_id, "pending_payouts", abs(quantize(txn.amount)))
        store.update(txn, status="failed", processed_at=now or datetime.now())
    current_app.logger.error(f"Payout {transaction_id} failed, {abs(txn.amount)} restored")
    return txn


def get_vendor_earnings(vendor_id, store=None):
    store = store or LedgerStore()
    vendor = store.require(Vendor, vendor_id, "Vendor")
    transactions = store.query(
        LedgerTransaction,
        LedgerTransaction.vendor_id == vendor.id,
        LedgerTransaction.type.in_(("commission", "refund", "payout")),
        order_by=LedgerTransaction.created_at.desc(),
    )

    earned = ZERO
    refunded = ZERO
    paid_out = ZERO
    for t in transactions:
        if t.type == "commission":
            earned += quantize(t.amount) - quantize(t.commission_amount)
        elif t.type == "refund":
            refunded += abs(quantize(t.amount)) - abs(quantize(t.commission_amount))
        elif t.status != "failed":
            paid_out += abs(quantize(t.amount))

    return {
        "vendor_id": vendor.id,
        "commission_rate": float(vendor.commission_rate),
        "total_earnings": float(earned - refunded),
        "total_refunds": float(refunded),
        "total_payouts": float(paid_out),
        "pending_earnings": float(earned - refunded - paid_out),
        "balances": {
            "total_earnings": float(vendor.total_earnings),
            "pending_payouts": float(vendor.pending_payouts),
        },
        "transactions": [serialize_transaction(t) for t in transactions],
    }


def get_platform_revenue(start=None, end=None, store=None):
    store = store or LedgerStore()
    predicates = [LedgerTransaction.type.in_(("commission", "refund"))]
    if start is not None:
        predicates.append(LedgerTransaction.created_at >= start)
    if end is not None:
        predicates.append(LedgerTransaction.created_at <= end)
    transactions = store.query(
        LedgerTransaction, *predicates, order_by=LedgerTransaction.created_at.desc()
    )

    commissions = [t for t in transactions if t.type == "commission"]
    total_commissions = sum((quantize(t.commission_amount) for t in commissions), ZERO)
    commission_refunds = sum(
        (abs(quantize(t.commission_amount)) for t in transactions if t.type == "refund"), ZERO
    )
    total_bookings = len(commissions)
    average = quantize(total_commissions / total_bookings) if total_bookings else ZERO
    return {
        "total_commissions": float(total_commissions),
        "commission_refunds": float(commission_refunds),
        "net_commissions": float(total_commissions - commission_refunds),
        "total_bookings": total_bookings,
        "avg_commission_per_booking": float(average),
        "transactions": [serialize_transaction(t) for t in transactions],
    }
