"""
Booking lifecycle.

    pending ──► confirmed ──► in_progress ──► completed
       │            │  └──────────────────────────▲
       │            ├──► cancelled
       └────────────┴──► no_show

completed, cancelled and no_show are terminal. Every money-moving transition
runs inside one ``LedgerStore.atomic()`` unit so a failure anywhere (for
example an insufficient loyalty balance at payment time) leaves nothing
half-applied.
"""

import datetime

from flask import current_app
from sqlalchemy import func, select

from app.errors import ConflictError, InvalidStateTransition, NotFoundError, ValidationError
from app.models import (
    TERMINAL_BOOKING_STATUSES,
    Booking,
    Customer,
    Vendor,
)
from app.services import (
    availability_service,
    commission_service,
    loyalty_service,
    pricing_service,
    promo_service,
)
from app.store import LedgerStore
from app.utils.money import ZERO, quantize

TRANSITIONS = {
    "pending": {"confirmed", "cancelled", "no_show"},
    "confirmed": {"in_progress", "completed", "cancelled", "no_show"},
    "in_progress": {"completed"},
    "completed": set(),
    "cancelled": set(),
    "no_show": set(),
}

CANCELLERS = ("customer", "vendor", "admin")
NO_SHOW_TOKENS = 3


def can_transition(current, target):
    return target in TRANSITIONS.get(current, set())


def _ensure_transition(booking, target):
    if not can_transition(booking.status, target):
        raise InvalidStateTransition(
            f"Booking {booking.id} cannot move from {booking.status} to {target}"
        )


def cancellation_tokens_for(starts_at, now, cancelled_by):
    """Penalty tokens for a cancellation made at ``now``."""
    if cancelled_by != "customer":
        return 0
    hours_until = (starts_at - now).total_seconds() / 3600
    if hours_until < 2:
        return 2
    if hours_until < 24:
        return 1
    return 0


def _parse_date(value):
    if isinstance(value, datetime.datetime):
        return value.date()
    if isinstance(value, datetime.date):
        return value
    try:
        return datetime.date.fromisoformat(str(value))
    except ValueError:
        raise ValidationError(f"Invalid date '{value}', expected YYYY-MM-DD")


def _load(booking_id, store, for_update=False):
    return store.require(Booking, booking_id, "Booking", for_update=for_update)


def create_booking(
    customer_id,
    vendor_id,
    service_id,
    booking_date,
    time_slot,
    add_on_ids=None,
    promo_code=None,
    loyalty_points=0,
    notes=None,
    strict=False,
    now=None,
    store=None,
):
    store = store or LedgerStore()
    now = now or datetime.datetime.now()
    booking_date = _parse_date(booking_date)
    time_slot = availability_service.format_slot(availability_service.parse_slot(time_slot))

    store.require(Customer, customer_id, "Customer")
    starts_at = datetime.datetime.combine(
        booking_date, availability_service.parse_slot(time_slot)
    )
    if starts_at <= now:
        raise ValidationError("Cannot book a time slot in the past")

    quote = pricing_service.quote(
        customer_id,
        vendor_id,
        service_id,
        add_on_ids=add_on_ids,
        promo_code=promo_code,
        loyalty_points=loyalty_points,
        strict=strict,
        now=now,
        store=store,
    )
    breakdown = quote.breakdown

    availability = availability_service.get_availability(
        vendor_id, booking_date, breakdown.duration, store
    )
    if time_slot in availability["booked_slots"]:
        raise ConflictError(f"Time slot {time_slot} is already booked", reason="slot_taken")
    if time_slot not in availability["available_slots"]:
        raise ValidationError(f"Time slot {time_slot} is not bookable on {booking_date}")

    promo_applied = quote.promo is not None and quote.promo.is_valid
    with store.atomic():
        booking = store.create(
            Booking(
                customer_id=customer_id,
                vendor_id=vendor_id,
                service_id=service_id,
                add_on_service_ids=breakdown.add_on_ids,
                booking_date=booking_date,
                time_slot=time_slot,
                duration=breakdown.duration,
                slot_hold=True,
                base_price=breakdown.base_price,
                add_on_price=breakdown.add_on_price,
                total_price=breakdown.subtotal,
                discount_amount=quote.discount_amount,
                final_price=quote.final_price,
                status="pending",
                payment_status="pending",
                loyalty_points_used=quote.loyalty_points,
                promo_code=promo_code.strip().upper() if promo_applied else None,
                promo_code_id=quote.promo.promo_code_id if promo_applied else None,
                promo_discount=quote.promo_discount,
                notes=notes,
                created_at=now,
                updated_at=now,
            ),
            conflict_message=f"Time slot {time_slot} on {booking_date} was just taken",
            conflict_reason="slot_taken",
        )
        if promo_applied:
            promo_service.record_promo_usage(
                quote.promo.promo_code_id,
                customer_id,
                booking.id,
                discount=quote.promo_discount,
                store=store,
            )
        store.increment(Customer, customer_id, "total_bookings", 1)

    current_app.logger.info(
        f"Created booking {booking.id} for vendor {vendor_id} on {booking_date} {time_slot}"
    )
    return booking, quote


def process_booking_payment(booking_id, payment_method, payment_id=None, now=None, store=None):
    """Confirm a pending booking: settle commission, move loyalty points."""
    store = store or LedgerStore()
    now = now or datetime.datetime.now()
    if not payment_method:
        raise ValidationError("payment_method is required")

    with store.atomic():
        booking = _load(booking_id, store, for_update=True)
        if booking.payment_status in ("paid", "refunded"):
            raise InvalidStateTransition(
                f"Booking {booking_id} payment is already {booking.payment_status}"
            )
        _ensure_transition(booking, "confirmed")

        store.update(
            booking,
            status="confirmed",
            payment_method=payment_method,
            payment_id=payment_id,
        )

        if booking.loyalty_points_used:
            loyalty_service.redeem_points(
                booking.customer_id,
                booking.loyalty_points_used,
                booking_id=booking.id,
                now=now,
                store=store,
            )

        commission_service.settle(booking, now=now, store=store)

        earned = loyalty_service.award_points(
            booking.customer_id, booking.final_price, booking_id=booking.id, now=now, store=store
        )
        customer = store.require(Customer, booking.customer_id, "Customer")
        store.update(customer, is_first_time_user=False)
        store.update(booking, loyalty_points_earned=earned)

    current_app.logger.info(f"Booking {booking_id} paid via {payment_method}")
    return booking


def mark_payment_failed(booking_id, store=None):
    store = store or LedgerStore()
    with store.atomic():
        booking = _load(booking_id, store, for_update=True)
        if booking.status != "pending" or booking.payment_status not in ("pending", "failed"):
            raise InvalidStateTransition(
                f"Booking {booking_id} is {booking.status}/{booking.payment_status}, "
                "payment cannot fail now"
            )
        store.update(booking, payment_status="failed")
    current_app.logger.error(f"Payment failed for booking {booking_id}")
    return booking


def start_booking(booking_id, store=None):
    store = store or LedgerStore()
    with store.atomic():
        booking = _load(booking_id, store, for_update=True)
        _ensure_transition(booking, "in_progress")
        store.update(booking, status="in_progress")
    return booking


def cancel_booking(booking_id, reason, cancelled_by="customer", now=None, store=None):
    store = store or LedgerStore()
    now = now or datetime.datetime.now()
    if cancelled_by not in CANCELLERS:
        raise ValidationError(f"cancelled_by must be one of {', '.join(CANCELLERS)}")

    with store.atomic():
        booking = _load(booking_id, store, for_update=True)
        _ensure_transition(booking, "cancelled")
        tokens = cancellation_tokens_for(booking.starts_at, now, cancelled_by)

        if booking.payment_status == "paid":
            if quantize(booking.final_price) > ZERO:
                commission_service.process_refund(
                    booking.id,
                    booking.final_price,
                    reason or "Booking cancelled",
                    cancelled_by=cancelled_by,
                    now=now,
                    store=store,
                )
            else:
                store.update(booking, payment_status="refunded")

        store.update(
            booking,
            status="cancelled",
            slot_hold=None,
            cancellation_reason=reason,
            cancellation_tokens=tokens,
            cancelled_by=cancelled_by,
        )
        if tokens:
            store.increment(Customer, booking.customer_id, "cancellation_tokens", tokens)

    current_app.logger.info(
        f"Booking {booking_id} cancelled by {cancelled_by}, tokens: {tokens}"
    )
    return booking


def complete_booking(booking_id, store=None):
    store = store or LedgerStore()
    with store.atomic():
        booking = _load(booking_id, store, for_update=True)
        _ensure_transition(booking, "completed")
        store.update(booking, status="completed", slot_hold=None)
    current_app.logger.info(f"Booking {booking_id} completed")
    return booking


def mark_no_show(booking_id, now=None, store=None):
    """The vendor still gets paid for the held slot."""
    store = store or LedgerStore()
    now = now or datetime.datetime.now()
    with store.atomic():
        booking = _load(booking_id, store, for_update=True)
        _ensure_transition(booking, "no_show")
        store.update(
            booking,
            status="no_show",
            slot_hold=None,
            cancellation_tokens=NO_SHOW_TOKENS,
        )
        store.increment(Customer, booking.customer_id, "cancellation_tokens", NO_SHOW_TOKENS)
        if booking.settled_at is None:
            if booking.loyalty_points_used:
                _spend_or_forfeit_loyalty(booking, now, store)
            commission_service.settle(booking, now=now, store=store)

    current_app.logger.info(f"Booking {booking_id} marked as no-show")
    return booking


def _spend_or_forfeit_loyalty(booking, now, store):
    """
    An unpaid no-show is charged as booked. Points the customer can still
    cover are redeemed; otherwise the loyalty discount is dropped and the
    booking is charged the subtotal less any promo discount.
    """
    points = booking.loyalty_points_used
    available = loyalty_service.get_available_points(booking.customer_id, now=now, store=store)
    if points <= available:
        loyalty_service.redeem_points(
            booking.customer_id, points, booking_id=booking.id, now=now, store=store
        )
        return

    subtotal = quantize(booking.total_price)
    final_price = max(ZERO, subtotal - quantize(booking.promo_discount or ZERO))
    store.update(
        booking,
        loyalty_points_used=0,
        final_price=final_price,
        discount_amount=subtotal - final_price,
    )
    current_app.logger.warning(
        f"Booking {booking.id}: {points} loyalty points no longer available, discount dropped"
    )


def get_booking(booking_id, store=None):
    store = store or LedgerStore()
    return _load(booking_id, store)


def get_customer_bookings(customer_id, status=None, limit=None, store=None):
    store = store or LedgerStore()
    predicates = [Booking.customer_id == customer_id]
    if status:
        predicates.append(Booking.status == status)
    return store.query(
        Booking,
        *predicates,
        order_by=(Booking.created_at.desc(), Booking.id.desc()),
        limit=limit,
    )


def get_vendor_bookings(vendor_id, status=None, on_date=None, store=None):
    store = store or LedgerStore()
    predicates = [Booking.vendor_id == vendor_id]
    if status:
        predicates.append(Booking.status == status)
    if on_date:
        predicates.append(Booking.booking_date == _parse_date(on_date))
    return store.query(
        Booking,
        *predicates,
        order_by=(Booking.booking_date.desc(), Booking.time_slot),
    )


def get_vendor_booking_analytics(vendor_id, start=None, end=None, store=None):
    store = store or LedgerStore()
    vendor = store.get(Vendor, vendor_id)
    if vendor is None:
        raise NotFoundError(f"Vendor {vendor_id} not found")

    stmt = (
        select(Booking.status, func.count(Booking.id))
        .where(Booking.vendor_id == vendor.id)
        .group_by(Booking.status)
    )
    revenue_stmt = select(func.coalesce(func.sum(Booking.vendor_earnings), 0)).where(
        Booking.vendor_id == vendor.id, Booking.payment_status == "paid"
    )
    if start is not None:
        stmt = stmt.where(Booking.created_at >= start)
        revenue_stmt = revenue_stmt.where(Booking.created_at >= start)
    if end is not None:
        stmt = stmt.where(Booking.created_at <= end)
        revenue_stmt = revenue_stmt.where(Booking.created_at <= end)

    counts = {status: count for status, count in store.session.execute(stmt).all()}
    total = sum(counts.values())
    completed = counts.get("completed", 0)
    revenue = quantize(store.session.scalar(revenue_stmt) or 0)

    return {
        "vendor_id": vendor.id,
        "total_bookings": total,
        "completed_bookings": completed,
        "cancelled_bookings": counts.get("cancelled", 0),
        "no_show_bookings": counts.get("no_show", 0),
        "active_bookings": sum(
            c for s, c in counts.items() if s not in TERMINAL_BOOKING_STATUSES
        ),
        "total_revenue": float(revenue),
        "completion_rate": round(completed / total * 100, 2) if total else 0,
    }
