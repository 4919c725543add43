"""
Loyalty ledger.

The ``loyalty_transaction`` table is the source of truth. A customer's balance
is recomputed by replaying their entries:

* every ``earned`` entry opens a lot that is live until its ``expires_at``;
* a ``redeemed`` entry consumes the soonest-expiring lots that were live when
  it was written;
* an ``expired`` entry closes the lot named by its ``source_entry_id``.

``customer.loyalty_points`` is only a cached copy, updated in the same unit of
work as every append.
"""

import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional

from flask import current_app
from sqlalchemy import select

from app.errors import ConflictError, ValidationError
from app.models import Customer, LoyaltyTransaction
from app.store import LedgerStore
from app.utils.money import to_decimal

POINTS_PER_UNIT = 1
POINT_VALUE = Decimal("1")
MIN_REDEMPTION_POINTS = 100
POINTS_EXPIRY_DAYS = 365


@dataclass
class _Lot:
    entry_id: int
    expires_at: Optional[datetime]
    remaining: int
    closed: bool = False

    def live_at(self, moment):
        return not self.closed and (self.expires_at is None or self.expires_at > moment)


def _setting(name, default):
    try:
        return current_app.config.get(name, default)
    except RuntimeError:
        return default


def min_redemption_points():
    return int(_setting("MIN_REDEMPTION_POINTS", MIN_REDEMPTION_POINTS))


def expiry_days():
    return int(_setting("LOYALTY_EXPIRY_DAYS", POINTS_EXPIRY_DAYS))


def calculate_points_for_amount(amount):
    return int(math.floor(to_decimal(amount) * POINTS_PER_UNIT))


def calculate_redemption_value(points):
    return (Decimal(int(points)) * POINT_VALUE).quantize(Decimal("0.01"))


def can_redeem_points(points):
    return int(points) >= min_redemption_points()


def _entries(customer_id, store):
    return store.query(
        LoyaltyTransaction,
        LoyaltyTransaction.customer_id == customer_id,
        order_by=(LoyaltyTransaction.created_at, LoyaltyTransaction.id),
    )


def replay_lots(entries):
    """Rebuild the lots for one customer from their entries, oldest first."""
    lots = {}
    for entry in entries:
        if entry.type == "earned":
            lots[entry.id] = _Lot(entry.id, entry.expires_at, entry.points)
        elif entry.type == "redeemed":
            needed = abs(entry.points)
            live = sorted(
                (lot for lot in lots.values() if lot.remaining > 0 and lot.live_at(entry.created_at)),
                key=lambda lot: (lot.expires_at or datetime.max, lot.entry_id),
            )
            for lot in live:
                if needed <= 0:
                    break
                taken = min(lot.remaining, needed)
                lot.remaining -= taken
                needed -= taken
        elif entry.type == "expired":
            lot = lots.get(entry.source_entry_id)
            if lot is not None:
                lot.remaining = 0
                lot.closed = True
    return lots


def _available(lots, now):
    return max(0, sum(lot.remaining for lot in lots.values() if lot.live_at(now)))


def get_available_points(customer_id, now=None, store=None):
    store = store or LedgerStore()
    now = now or datetime.now()
    store.require(Customer, customer_id, "Customer")
    return _available(replay_lots(_entries(customer_id, store)), now)


def award_points(customer_id, amount, booking_id=None, description=None, now=None, store=None):
    """Credit points for ``amount`` spent. Returns the number of points awarded."""
    store = store or LedgerStore()
    now = now or datetime.now()
    points = calculate_points_for_amount(amount)
    if points <= 0:
        return 0

    with store.atomic():
        store.require(Customer, customer_id, "Customer")
        store.create(
            LoyaltyTransaction(
                customer_id=customer_id,
                type="earned",
                points=points,
                booking_id=booking_id,
                description=description or f"Points earned from booking #{booking_id}",
                created_at=now,
                expires_at=now + timedelta(days=expiry_days()),
            )
        )
        store.increment(Customer, customer_id, "loyalty_points", points, floor=0)

    current_app.logger.info(f"Awarded {points} points to customer {customer_id}")
    return points


def redeem_points(customer_id, points, booking_id=None, description=None, now=None, store=None):
    """Debit ``points``; returns their monetary value."""
    store = store or LedgerStore()
    now = now or datetime.now()
    points = int(points)
    minimum = min_redemption_points()
    if points < minimum:
        raise ValidationError(
            f"Minimum {minimum} points required for redemption", reason="below_minimum"
        )

    with store.atomic():
        store.require(Customer, customer_id, "Customer", for_update=True)
        available = _available(replay_lots(_entries(customer_id, store)), now)
        if points > available:
            raise ValidationError(
                f"Insufficient loyalty points: {available} available", reason="insufficient_points"
            )

        store.create(
            LoyaltyTransaction(
                customer_id=customer_id,
                type="redeemed",
                points=-points,
                booking_id=booking_id,
                description=description or f"Points redeemed for booking #{booking_id}",
                created_at=now,
            )
        )
        store.increment(Customer, customer_id, "loyalty_points", -points, floor=0)

    current_app.logger.info(f"Customer {customer_id} redeemed {points} points")
    return calculate_redemption_value(points)


def _expire_for_customer(customer_id, lot_ids, now, store):
    expired_points = 0
    written = 0
    with store.atomic():
        lots = replay_lots(_entries(customer_id, store))
        for lot_id in lot_ids:
            lot = lots.get(lot_id)
            if lot is None or lot.closed:
                continue
            remaining = max(0, lot.remaining)
            store.create(
                LoyaltyTransaction(
                    customer_id=customer_id,
                    type="expired",
                    points=-remaining,
                    source_entry_id=lot.entry_id,
                    description=f"Points expired from entry #{lot.entry_id}",
                    created_at=now,
                ),
                conflict_message=f"Loyalty entry {lot.entry_id} already expired",
            )
            if remaining:
                store.increment(Customer, customer_id, "loyalty_points", -remaining, floor=0)
            expired_points += remaining
            written += 1
    return written, expired_points


def expire_old_points(now=None, store=None):
    """
    Close every earned lot whose expiry has passed.

    Safe to re-run: each lot gets at most one ``expired`` entry, enforced by
    the unique ``source_entry_id``.
    """
    store = store or LedgerStore()
    now = now or datetime.now()

    already_expired = select(LoyaltyTransaction.source_entry_id).where(
        LoyaltyTransaction.type == "expired",
        LoyaltyTransaction.source_entry_id.is_not(None),
    )
    due = store.query(
        LoyaltyTransaction,
        LoyaltyTransaction.type == "earned",
        LoyaltyTransaction.expires_at <= now,
        LoyaltyTransaction.id.not_in(already_expired),
        order_by=(LoyaltyTransaction.customer_id, LoyaltyTransaction.id),
    )

    by_customer = {}
    for entry in due:
        by_customer.setdefault(entry.customer_id, []).append(entry.id)

    entries_written = 0
    points_expired = 0
    for customer_id, lot_ids in by_customer.items():
        try:
            written, expired = _expire_for_customer(customer_id, lot_ids, now, store)
        except ConflictError as e:
            # another sweep got there first
            current_app.logger.info(f"Skipping customer {customer_id}: {e.message}")
            continue
        entries_written += written
        points_expired += expired

    current_app.logger.info(
        f"Loyalty sweep: {entries_written} lot(s) closed, {points_expired} points expired"
    )
    return {"lots_expired": entries_written, "points_expired": points_expired}


def serialize_entry(entry):
    return {
        "id": entry.id,
        "type": entry.type,
        "points": entry.points,
        "booking_id": entry.booking_id,
        "description": entry.description,
        "created_at": entry.created_at.isoformat() if entry.created_at else None,
        "expires_at": entry.expires_at.isoformat() if entry.expires_at else None,
    }


def get_loyalty_history(customer_id, now=None, store=None):
    store = store or LedgerStore()
    now = now or datetime.now()
    store.require(Customer, customer_id, "Customer")

    entries = _entries(customer_id, store)
    available = _available(replay_lots(entries), now)
    return {
        "transactions": [serialize_entry(e) for e in reversed(entries)],
        "summary": {
            "total_earned": sum(e.points for e in entries if e.type == "earned"),
            "total_redeemed": abs(sum(e.points for e in entries if e.type == "redeemed")),
            "total_expired": abs(sum(e.points for e in entries if e.type == "expired")),
            "available_points": available,
            "redemption_value": float(calculate_redemption_value(available)),
        },
    }


def get_loyalty_analytics(start=None, end=None, store=None):
    store = store or LedgerStore()
    predicates = []
    if start is not None:
        predicates.append(LoyaltyTransaction.created_at >= start)
    if end is not None:
        predicates.append(LoyaltyTransaction.created_at <= end)
    entries = store.query(
        LoyaltyTransaction, *predicates, order_by=LoyaltyTransaction.created_at.desc()
    )

    earned = sum(e.points for e in entries if e.type == "earned")
    redeemed = abs(sum(e.points for e in entries if e.type == "redeemed"))
    expired = abs(sum(e.points for e in entries if e.type == "expired"))
    return {
        "total_points_earned": earned,
        "total_points_redeemed": redeemed,
        "total_points_expired": expired,
        "active_customers": len({e.customer_id for e in entries}),
        "redemption_rate": round(redeemed / earned * 100, 2) if earned else 0,
        "redemption_value": float(calculate_redemption_value(redeemed)),
    }
