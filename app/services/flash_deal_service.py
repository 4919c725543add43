"""
Flash deals: fixed-capacity, time-boxed discounted slots.

Claiming a slot is a guarded counter update
(``booked_slots = booked_slots + 1 WHERE booked_slots < total_slots``) in the
same unit of work as the claim row, and a customer can hold at most one claim
per deal. Business-rule rejections come back as ``FlashDealResult`` objects.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from flask import current_app

from app.errors import ConflictError, NotFoundError, ValidationError
from app.models import (
    Customer,
    FlashDeal,
    FlashDealBooking,
    Vendor,
    VendorService,
    serialize_flash_deal,
)
from app.store import LedgerStore
from app.utils.money import ZERO, quantize


@dataclass
class FlashDealResult:
    success: bool
    message: str
    reason: Optional[str] = None
    booking_id: Optional[int] = None

    def to_dict(self):
        return {
            "success": self.success,
            "message": self.message,
            "reason": self.reason,
            "booking_id": self.booking_id,
        }


def discount_percentage(original_price, discounted_price):
    original_price = quantize(original_price)
    ratio = (original_price - quantize(discounted_price)) / original_price * 100
    return int(ratio.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def create_flash_deal(
    vendor_id,
    service_id,
    title,
    original_price,
    discounted_price,
    start_time,
    end_time,
    total_slots,
    description=None,
    store=None,
):
    store = store or LedgerStore()
    if not title:
        raise ValidationError("title is required")
    if start_time >= end_time:
        raise ValidationError("start_time must be before end_time")

    original_price = quantize(original_price)
    discounted_price = quantize(discounted_price)
    if original_price <= ZERO:
        raise ValidationError("original_price must be positive")
    if discounted_price <= ZERO or discounted_price >= original_price:
        raise ValidationError("discounted_price must be between 0 and original_price")
    if int(total_slots) < 1:
        raise ValidationError("total_slots must be at least 1")

    store.require(Vendor, vendor_id, "Vendor")
    service = store.require(VendorService, service_id, "Service")
    if service.vendor_id != vendor_id:
        raise ValidationError(f"Service {service_id} is not offered by vendor {vendor_id}")

    with store.atomic():
        deal = store.create(
            FlashDeal(
                title=title,
                description=description,
                vendor_id=vendor_id,
                service_id=service_id,
                original_price=original_price,
                discounted_price=discounted_price,
                discount_percentage=discount_percentage(original_price, discounted_price),
                start_time=start_time,
                end_time=end_time,
                total_slots=int(total_slots),
                booked_slots=0,
                is_active=True,
            )
        )
    current_app.logger.info(f"Created flash deal {deal.id} for vendor {vendor_id}")
    return deal


def book_flash_deal(deal_id, customer_id, now=None, store=None):
    store = store or LedgerStore()
    now = now or datetime.now()

    deal = store.get(FlashDeal, deal_id)
    if deal is None:
        return FlashDealResult(False, "Flash deal not found", "not_found")
    if not deal.is_active:
        return FlashDealResult(False, "Flash deal is no longer active", "inactive")
    if now < deal.start_time:
        return FlashDealResult(False, "Flash deal has not started yet", "not_started")
    if now >= deal.end_time:
        return FlashDealResult(False, "Flash deal has ended", "ended")
    if deal.booked_slots >= deal.total_slots:
        return FlashDealResult(False, "Flash deal is sold out", "sold_out")

    existing = store.first(
        FlashDealBooking,
        FlashDealBooking.deal_id == deal.id,
        FlashDealBooking.customer_id == customer_id,
    )
    if existing is not None:
        return FlashDealResult(False, "You have already booked this flash deal", "already_booked")

    store.require(Customer, customer_id, "Customer")
    try:
        with store.atomic():
            claimed = store.increment(
                FlashDeal,
                deal.id,
                "booked_slots",
                1,
                guard=FlashDeal.booked_slots < FlashDeal.total_slots,
            )
            if not claimed:
                raise ConflictError("Flash deal is sold out", reason="sold_out")

            claim = store.create(
                FlashDealBooking(
                    deal_id=deal.id,
                    customer_id=customer_id,
                    vendor_id=deal.vendor_id,
                    service_id=deal.service_id,
                    original_price=deal.original_price,
                    discounted_price=deal.discounted_price,
                    savings=quantize(deal.original_price) - quantize(deal.discounted_price),
                    status="booked",
                    booked_at=now,
                    expires_at=deal.end_time,
                ),
            )
    except ConflictError as e:
        if e.reason == "sold_out":
            return FlashDealResult(False, "Flash deal is sold out", "sold_out")
        return FlashDealResult(False, "You have already booked this flash deal", "already_booked")

    current_app.logger.info(f"Customer {customer_id} claimed flash deal {deal.id}")
    return FlashDealResult(True, "Flash deal booked successfully", booking_id=claim.id)


def redeem_flash_deal_booking(booking_id, vendor_id, now=None, store=None):
    store = store or LedgerStore()
    now = now or datetime.now()

    with store.atomic():
        claim = store.get(FlashDealBooking, booking_id, for_update=True)
        if claim is None:
            return FlashDealResult(False, "Flash deal booking not found", "not_found")
        if claim.vendor_id != vendor_id:
            return FlashDealResult(False, "Booking belongs to a different vendor", "not_owner")
        if claim.status == "redeemed":
            return FlashDealResult(False, "Flash deal booking already redeemed", "already_redeemed")
        if claim.status == "expired" or now >= claim.expires_at:
            store.update(claim, status="expired")
            return FlashDealResult(False, "Flash deal booking has expired", "expired")

        store.update(claim, status="redeemed", redeemed_at=now)

    current_app.logger.info(f"Flash deal booking {booking_id} redeemed by vendor {vendor_id}")
    return FlashDealResult(True, "Flash deal redeemed", booking_id=claim.id)


def expire_old_flash_deals(now=None, store=None):
    """Deactivate ended deals and expire unredeemed claims. Safe to re-run."""
    store = store or LedgerStore()
    now = now or datetime.now()
    with store.atomic():
        deals = store.update_where(
            FlashDeal,
            FlashDeal.is_active.is_(True),
            FlashDeal.end_time <= now,
            is_active=False,
        )
        claims = store.update_where(
            FlashDealBooking,
            FlashDealBooking.status == "booked",
            FlashDealBooking.expires_at <= now,
            status="expired",
        )
    current_app.logger.info(f"Flash deal sweep: {deals} deal(s) closed, {claims} claim(s) expired")
    return {"deals_deactivated": deals, "bookings_expired": claims}


def get_active_flash_deals(vendor_id=None, now=None, store=None):
    store = store or LedgerStore()
    now = now or datetime.now()
    predicates = [
        FlashDeal.is_active.is_(True),
        FlashDeal.start_time <= now,
        FlashDeal.end_time > now,
    ]
    if vendor_id is not None:
        predicates.append(FlashDeal.vendor_id == vendor_id)
    return store.query(FlashDeal, *predicates, order_by=FlashDeal.end_time)


def get_upcoming_flash_deals(vendor_id=None, now=None, limit=10, store=None):
    store = store or LedgerStore()
    now = now or datetime.now()
    predicates = [FlashDeal.is_active.is_(True), FlashDeal.start_time > now]
    if vendor_id is not None:
        predicates.append(FlashDeal.vendor_id == vendor_id)
    return store.query(FlashDeal, *predicates, order_by=FlashDeal.start_time, limit=limit)


def serialize_claim(claim):
    return {
        "id": claim.id,
        "deal_id": claim.deal_id,
        "deal_title": claim.deal.title if claim.deal else None,
        "customer_id": claim.customer_id,
        "vendor_id": claim.vendor_id,
        "service_id": claim.service_id,
        "original_price": float(claim.original_price),
        "discounted_price": float(claim.discounted_price),
        "savings": float(claim.savings),
        "status": claim.status,
        "booked_at": claim.booked_at.isoformat(),
        "expires_at": claim.expires_at.isoformat(),
        "redeemed_at": claim.redeemed_at.isoformat() if claim.redeemed_at else None,
    }


def get_customer_flash_deal_bookings(customer_id, store=None):
    store = store or LedgerStore()
    return store.query(
        FlashDealBooking,
        FlashDealBooking.customer_id == customer_id,
        order_by=FlashDealBooking.booked_at.desc(),
    )


def toggle_flash_deal_status(deal_id, is_active, store=None):
    store = store or LedgerStore()
    with store.atomic():
        deal = store.require(FlashDeal, deal_id, "Flash deal")
        store.update(deal, is_active=bool(is_active))
    current_app.logger.info(f"Flash deal {deal_id} is_active={bool(is_active)}")
    return deal


def get_flash_deal_analytics(deal_id=None, vendor_id=None, store=None):
    store = store or LedgerStore()
    deal_predicates = []
    claim_predicates = []
    if deal_id is not None:
        if store.get(FlashDeal, deal_id) is None:
            raise NotFoundError(f"Flash deal {deal_id} not found")
        deal_predicates.append(FlashDeal.id == deal_id)
        claim_predicates.append(FlashDealBooking.deal_id == deal_id)
    elif vendor_id is not None:
        deal_predicates.append(FlashDeal.vendor_id == vendor_id)
        claim_predicates.append(FlashDealBooking.vendor_id == vendor_id)

    deals = store.query(FlashDeal, *deal_predicates, order_by=FlashDeal.created_at.desc())
    claims = store.query(
        FlashDealBooking, *claim_predicates, order_by=FlashDealBooking.booked_at.desc()
    )

    redeemed = len([c for c in claims if c.status == "redeemed"])
    fill_rate = (
        sum(d.booked_slots / d.total_slots for d in deals) / len(deals) * 100 if deals else 0
    )
    return {
        "total_deals": len(deals),
        "active_deals": len([d for d in deals if d.is_active]),
        "total_bookings": len(claims),
        "redeemed_bookings": redeemed,
        "total_revenue": float(sum((quantize(c.discounted_price) for c in claims), ZERO)),
        "total_savings": float(sum((quantize(c.savings) for c in claims), ZERO)),
        "redemption_rate": round(redeemed / len(claims) * 100, 2) if claims else 0,
        "average_booking_rate": round(fill_rate, 2),
        "deals": [serialize_flash_deal(d) for d in deals],
    }
