"""
Promo codes: validation against an order, usage recording and admin reads.

Validation never raises for a business-rule failure; it returns a
``PromoResult`` whose ``reason`` says which rule rejected the code.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional

from flask import current_app
from sqlalchemy import func, select

from app.errors import ConflictError, NotFoundError, ValidationError
from app.models import PROMO_TYPES, Customer, PromoCode, PromoUsage
from app.store import LedgerStore
from app.utils.money import ZERO, quantize, round_whole, to_decimal


@dataclass
class PromoResult:
    is_valid: bool
    discount: Decimal
    message: str
    reason: Optional[str] = None
    promo_code_id: Optional[int] = None

    def to_dict(self):
        return {
            "is_valid": self.is_valid,
            "discount": float(self.discount),
            "message": self.message,
            "reason": self.reason,
            "promo_code_id": self.promo_code_id,
        }


def _reject(reason, message):
    return PromoResult(is_valid=False, discount=ZERO, message=message, reason=reason)


def find_promo_code(code, store=None):
    store = store or LedgerStore()
    if not code:
        return None
    return store.first(PromoCode, PromoCode.code == code.strip().upper())


def customer_usage_count(promo_code_id, customer_id, store=None):
    store = store or LedgerStore()
    return (
        store.session.scalar(
            select(func.count(PromoUsage.id))
            .where(PromoUsage.promo_code_id == promo_code_id)
            .where(PromoUsage.customer_id == customer_id)
        )
        or 0
    )


def compute_discount(promo, order_value):
    order_value = quantize(order_value)
    if promo.type == "percentage":
        discount = order_value * to_decimal(promo.value) / Decimal("100")
        if promo.max_discount is not None and discount > promo.max_discount:
            discount = to_decimal(promo.max_discount)
    else:
        discount = min(to_decimal(promo.value), order_value)
    return round_whole(discount)


def validate_and_apply_promo_code(
    code, customer_id, order_value, service_ids, vendor_id, now=None, store=None
):
    store = store or LedgerStore()
    now = now or datetime.now()
    order_value = quantize(order_value)

    promo = find_promo_code(code, store)
    if promo is None or not promo.is_active:
        return _reject("not_found", "Invalid promo code")

    # validity window is [start_date, end_date)
    if now >= promo.end_date:
        return _reject("expired", "Promo code has expired")
    if now < promo.start_date:
        return _reject("not_started", "Promo code is not yet active")

    if promo.used_count >= promo.usage_limit:
        return _reject("usage_limit", "Promo code usage limit exceeded")

    if customer_usage_count(promo.id, customer_id, store) >= promo.user_limit:
        return _reject("user_limit", "You have already used this promo code")

    if order_value < promo.min_order_value:
        return _reject(
            "min_order", f"Minimum order value of {quantize(promo.min_order_value)} required"
        )

    if promo.type == "first_time":
        customer = store.get(Customer, customer_id)
        if customer is None or not customer.is_first_time_user:
            return _reject("first_time_only", "This promo code is only for first-time users")

    applicable_services = list(promo.applicable_services or [])
    if applicable_services and not any(sid in applicable_services for sid in service_ids or []):
        return _reject(
            "service_not_applicable", "Promo code not applicable for selected services"
        )

    applicable_vendors = list(promo.applicable_vendors or [])
    if applicable_vendors and vendor_id not in applicable_vendors:
        return _reject("vendor_not_applicable", "Promo code not applicable for this vendor")

    discount = compute_discount(promo, order_value)
    return PromoResult(
        is_valid=True,
        discount=discount,
        message=f"Promo code applied! You saved {discount}",
        promo_code_id=promo.id,
    )


def record_promo_usage(promo_code_id, customer_id, booking_id, discount=ZERO, store=None):
    """Consume one use of a promo code for a booking."""
    store = store or LedgerStore()
    with store.atomic():
        promo = store.require(PromoCode, promo_code_id, "Promo code")
        if customer_usage_count(promo.id, customer_id, store) >= promo.user_limit:
            raise ConflictError("Promo code already used by this customer", reason="user_limit")

        claimed = store.increment(
            PromoCode,
            promo.id,
            "used_count",
            1,
            guard=PromoCode.used_count < PromoCode.usage_limit,
        )
        if not claimed:
            raise ConflictError("Promo code usage limit exceeded", reason="usage_limit")

        usage = store.create(
            PromoUsage(
                promo_code_id=promo.id,
                customer_id=customer_id,
                booking_id=booking_id,
                discount=quantize(discount),
                used_at=datetime.now(),
            ),
            conflict_message="Promo code already applied to this booking",
        )
    current_app.logger.info(f"Promo {promo.code} applied to booking {booking_id}")
    return usage


def create_promo_code(
    code,
    type,
    value,
    usage_limit,
    start_date,
    end_date,
    min_order_value=0,
    max_discount=None,
    user_limit=1,
    applicable_services=None,
    applicable_vendors=None,
    description=None,
    created_by=None,
    is_active=True,
    store=None,
):
    store = store or LedgerStore()

    if not code or not str(code).strip():
        raise ValidationError("code is required")
    if type not in PROMO_TYPES:
        raise ValidationError(f"type must be one of {', '.join(PROMO_TYPES)}")
    value = quantize(value)
    if value <= 0:
        raise ValidationError("value must be positive")
    if type == "percentage" and value > 100:
        raise ValidationError("percentage value cannot exceed 100")
    if start_date >= end_date:
        raise ValidationError("start_date must be before end_date")
    if int(usage_limit) < 1 or int(user_limit) < 1:
        raise ValidationError("usage_limit and user_limit must be at least 1")

    with store.atomic():
        promo = store.create(
            PromoCode(
                code=str(code).strip().upper(),
                type=type,
                value=value,
                min_order_value=quantize(min_order_value or 0),
                max_discount=quantize(max_discount) if max_discount is not None else None,
                usage_limit=int(usage_limit),
                used_count=0,
                user_limit=int(user_limit),
                is_active=is_active,
                start_date=start_date,
                end_date=end_date,
                applicable_services=list(applicable_services or []),
                applicable_vendors=list(applicable_vendors or []),
                description=description,
                created_by=created_by,
            ),
            conflict_message=f"Promo code {str(code).strip().upper()} already exists",
        )
    current_app.logger.info(f"Created promo code {promo.code}")
    return promo


def create_first_time_user_discount(now=None, store=None):
    now = now or datetime.now()
    return create_promo_code(
        code="WELCOME200",
        type="first_time",
        value=200,
        min_order_value=500,
        usage_limit=10000,
        user_limit=1,
        start_date=now,
        end_date=now + timedelta(days=365),
        description="Welcome discount for first booking",
        created_by="system",
        store=store,
    )


def get_active_promo_codes(now=None, store=None):
    store = store or LedgerStore()
    now = now or datetime.now()
    return store.query(
        PromoCode,
        PromoCode.is_active.is_(True),
        PromoCode.start_date <= now,
        PromoCode.end_date > now,
        order_by=PromoCode.start_date.desc(),
    )


def deactivate_promo_code(promo_code_id, store=None):
    store = store or LedgerStore()
    with store.atomic():
        promo = store.require(PromoCode, promo_code_id, "Promo code")
        store.update(promo, is_active=False)
    current_app.logger.info(f"Deactivated promo code {promo.code}")
    return promo


def get_promo_code_analytics(promo_code_id, store=None):
    store = store or LedgerStore()
    promo = store.get(PromoCode, promo_code_id)
    if promo is None:
        raise NotFoundError(f"Promo code {promo_code_id} not found")

    usages = store.query(
        PromoUsage,
        PromoUsage.promo_code_id == promo.id,
        order_by=PromoUsage.used_at.desc(),
    )
    total_discount = sum((quantize(u.discount) for u in usages), ZERO)
    return {
        "promo_code_id": promo.id,
        "code": promo.code,
        "total_usage": promo.used_count,
        "remaining_usage": max(0, promo.usage_limit - promo.used_count),
        "usage_rate": round(promo.used_count / promo.usage_limit * 100, 2),
        "total_discount_given": float(total_discount),
        "usage_details": [
            {
                "customer_id": u.customer_id,
                "booking_id": u.booking_id,
                "discount": float(u.discount),
                "used_at": u.used_at.isoformat(),
            }
            for u in usages
        ],
    }
