"""
Price composition for a booking: service + add-ons, then promo and loyalty.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional

from app.errors import NotFoundError, ValidationError
from app.models import AddOnService, Vendor, VendorService
from app.services import loyalty_service, promo_service
from app.store import LedgerStore
from app.utils.money import ZERO, quantize


@dataclass
class PriceBreakdown:
    base_price: Decimal
    add_on_price: Decimal
    subtotal: Decimal
    duration: int
    add_on_ids: List[int]


@dataclass
class LoyaltyRedemptionResult:
    is_valid: bool
    points: int
    value: Decimal
    message: str
    reason: Optional[str] = None

    def to_dict(self):
        return {
            "is_valid": self.is_valid,
            "points": self.points,
            "value": float(self.value),
            "message": self.message,
            "reason": self.reason,
        }


@dataclass
class Quote:
    vendor_id: int
    service_id: int
    breakdown: PriceBreakdown
    promo: Optional[promo_service.PromoResult] = None
    loyalty: Optional[LoyaltyRedemptionResult] = None
    warnings: List[str] = field(default_factory=list)

    @property
    def promo_discount(self):
        return self.promo.discount if self.promo and self.promo.is_valid else ZERO

    @property
    def loyalty_discount(self):
        return self.loyalty.value if self.loyalty and self.loyalty.is_valid else ZERO

    @property
    def loyalty_points(self):
        return self.loyalty.points if self.loyalty and self.loyalty.is_valid else 0

    @property
    def discount_amount(self):
        return quantize(self.promo_discount + self.loyalty_discount)

    @property
    def final_price(self):
        return max(ZERO, quantize(self.breakdown.subtotal - self.discount_amount))

    def to_dict(self):
        return {
            "vendor_id": self.vendor_id,
            "service_id": self.service_id,
            "base_price": float(self.breakdown.base_price),
            "add_on_price": float(self.breakdown.add_on_price),
            "total_price": float(self.breakdown.subtotal),
            "duration": self.breakdown.duration,
            "add_on_service_ids": self.breakdown.add_on_ids,
            "promo": self.promo.to_dict() if self.promo else None,
            "loyalty": self.loyalty.to_dict() if self.loyalty else None,
            "discount_amount": float(self.discount_amount),
            "final_price": float(self.final_price),
            "warnings": self.warnings,
        }


def compose_price(service, add_on_ids=None, store=None):
    store = store or LedgerStore()

    # set semantics, first occurrence wins the ordering
    wanted = list(dict.fromkeys(int(i) for i in (add_on_ids or [])))
    add_ons = []
    if wanted:
        add_ons = store.query(
            AddOnService,
            AddOnService.service_id == service.id,
            AddOnService.id.in_(wanted),
        )
        missing = set(wanted) - {a.id for a in add_ons}
        if missing:
            raise ValidationError(
                f"Unknown add-on service(s) for service {service.id}: "
                f"{', '.join(str(m) for m in sorted(missing))}"
            )

    base_price = quantize(service.price)
    add_on_price = quantize(sum((quantize(a.price) for a in add_ons), ZERO))
    duration = int(service.duration) + sum(int(a.duration or 0) for a in add_ons)
    return PriceBreakdown(
        base_price=base_price,
        add_on_price=add_on_price,
        subtotal=base_price + add_on_price,
        duration=duration,
        add_on_ids=wanted,
    )


def resolve_loyalty_redemption(customer_id, points, now=None, store=None):
    points = int(points or 0)
    minimum = loyalty_service.min_redemption_points()
    if points < minimum:
        return LoyaltyRedemptionResult(
            is_valid=False,
            points=points,
            value=ZERO,
            message=f"Minimum {minimum} points required for redemption",
            reason="below_minimum",
        )

    available = loyalty_service.get_available_points(customer_id, now=now, store=store)
    if points > available:
        return LoyaltyRedemptionResult(
            is_valid=False,
            points=points,
            value=ZERO,
            message=f"Insufficient loyalty points: {available} available",
            reason="insufficient_points",
        )

    value = loyalty_service.calculate_redemption_value(points)
    return LoyaltyRedemptionResult(
        is_valid=True,
        points=points,
        value=value,
        message=f"{points} points applied for {value} off",
    )


def load_service(vendor_id, service_id, store=None):
    store = store or LedgerStore()
    vendor = store.require(Vendor, vendor_id, "Vendor")
    service = store.get(VendorService, service_id)
    if service is None:
        raise NotFoundError(f"Service {service_id} not found")
    if service.vendor_id != vendor.id:
        raise ValidationError(f"Service {service_id} is not offered by vendor {vendor_id}")
    if not service.is_active:
        raise ValidationError(f"Service {service_id} is not currently offered")
    return vendor, service


def quote(
    customer_id,
    vendor_id,
    service_id,
    add_on_ids=None,
    promo_code=None,
    loyalty_points=0,
    strict=False,
    now=None,
    store=None,
):
    """
    Price a prospective booking.

    Promo and loyalty rejections are collected in ``warnings`` and simply
    contribute no discount. With ``strict=True`` the first one is raised as a
    ``ValidationError`` instead.
    """
    store = store or LedgerStore()
    vendor, service = load_service(vendor_id, service_id, store)
    breakdown = compose_price(service, add_on_ids, store)
    result = Quote(vendor_id=vendor.id, service_id=service.id, breakdown=breakdown)

    if promo_code:
        result.promo = promo_service.validate_and_apply_promo_code(
            promo_code,
            customer_id,
            breakdown.subtotal,
            [service.id],
            vendor.id,
            now=now,
            store=store,
        )
        if not result.promo.is_valid:
            if strict:
                raise ValidationError(result.promo.message, reason=result.promo.reason)
            result.warnings.append(result.promo.message)

    if loyalty_points:
        result.loyalty = resolve_loyalty_redemption(customer_id, loyalty_points, now=now, store=store)
        if not result.loyalty.is_valid:
            if strict:
                raise ValidationError(result.loyalty.message, reason=result.loyalty.reason)
            result.warnings.append(result.loyalty.message)

    return result
