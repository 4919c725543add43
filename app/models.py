from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Enum,
    ForeignKeyConstraint,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    Time,
    text,
)
from sqlalchemy.orm import Mapped, declarative_base, mapped_column, relationship

Base = declarative_base()
metadata = Base.metadata

BOOKING_STATUSES = ("pending", "confirmed", "in_progress", "completed", "cancelled", "no_show")
ACTIVE_BOOKING_STATUSES = ("pending", "confirmed", "in_progress")
TERMINAL_BOOKING_STATUSES = ("completed", "cancelled", "no_show")
PAYMENT_STATUSES = ("pending", "paid", "refunded", "failed")
TRANSACTION_TYPES = ("booking", "commission", "subscription", "premium_listing", "payout", "refund")
TRANSACTION_STATUSES = ("pending", "completed", "failed", "cancelled")
LOYALTY_TYPES = ("earned", "redeemed", "expired")
PROMO_TYPES = ("percentage", "fixed", "first_time")
FLASH_BOOKING_STATUSES = ("booked", "redeemed", "expired")


def _money(precision=10):
    return Numeric(precision, 2)


class Customer(Base):
    __tablename__ = "customer"
    __table_args__ = (Index("uq_customer_auth_uid", "auth_uid", unique=True),)

    id = mapped_column(Integer, primary_key=True)
    auth_uid = mapped_column(String(128), nullable=False)
    email = mapped_column(String(255))
    display_name = mapped_column(String(160))
    loyalty_points = mapped_column(Integer, nullable=False, server_default=text("0"), default=0)
    total_bookings = mapped_column(Integer, nullable=False, server_default=text("0"), default=0)
    is_first_time_user = mapped_column(Boolean, nullable=False, server_default=text("1"), default=True)
    cancellation_tokens = mapped_column(Integer, nullable=False, server_default=text("0"), default=0)
    created_at = mapped_column(DateTime, nullable=False, default=datetime.now)
    updated_at = mapped_column(DateTime, nullable=False, default=datetime.now, onupdate=datetime.now)

    booking: Mapped[List["Booking"]] = relationship(
        "Booking", uselist=True, back_populates="customer"
    )
    loyalty_transaction: Mapped[List["LoyaltyTransaction"]] = relationship(
        "LoyaltyTransaction", uselist=True, back_populates="customer"
    )


class Vendor(Base):
    __tablename__ = "vendor"
    __table_args__ = (Index("uq_vendor_auth_uid", "auth_uid", unique=True),)

    id = mapped_column(Integer, primary_key=True)
    auth_uid = mapped_column(String(128), nullable=False)
    business_name = mapped_column(String(160), nullable=False)
    commission_rate = mapped_column(Numeric(5, 4), nullable=False, default=Decimal("0.22"))
    total_earnings = mapped_column(_money(12), nullable=False, default=Decimal("0.00"))
    pending_payouts = mapped_column(_money(12), nullable=False, default=Decimal("0.00"))
    is_active = mapped_column(Boolean, nullable=False, default=True)
    phone = mapped_column(String(25))
    address = mapped_column(String(255))
    created_at = mapped_column(DateTime, nullable=False, default=datetime.now)
    updated_at = mapped_column(DateTime, nullable=False, default=datetime.now, onupdate=datetime.now)

    vendor_hours: Mapped[List["VendorHours"]] = relationship(
        "VendorHours", uselist=True, back_populates="vendor"
    )
    vendor_service: Mapped[List["VendorService"]] = relationship(
        "VendorService", uselist=True, back_populates="vendor"
    )
    booking: Mapped[List["Booking"]] = relationship(
        "Booking", uselist=True, back_populates="vendor"
    )


class VendorHours(Base):
    """One row per weekday; weekday 0 is Sunday."""

    __tablename__ = "vendor_hours"
    __table_args__ = (
        ForeignKeyConstraint(
            ["vendor_id"], ["vendor.id"], ondelete="CASCADE", name="fk_vh_vendor"
        ),
        Index("uq_vendor_day", "vendor_id", "weekday", unique=True),
    )

    id = mapped_column(Integer, primary_key=True)
    vendor_id = mapped_column(Integer, nullable=False)
    weekday = mapped_column(Integer, nullable=False)
    is_open = mapped_column(Boolean, nullable=False, default=True)
    open_time = mapped_column(Time)
    close_time = mapped_column(Time)
    break_start = mapped_column(Time)
    break_end = mapped_column(Time)

    vendor: Mapped["Vendor"] = relationship("Vendor", back_populates="vendor_hours")


class VendorService(Base):
    __tablename__ = "vendor_service"
    __table_args__ = (
        ForeignKeyConstraint(
            ["vendor_id"], ["vendor.id"], ondelete="RESTRICT", name="fk_vs_vendor"
        ),
        Index("fk_vs_vendor", "vendor_id"),
    )

    id = mapped_column(Integer, primary_key=True)
    vendor_id = mapped_column(Integer, nullable=False)
    name = mapped_column(String(80), nullable=False)
    price = mapped_column(_money(), nullable=False, default=Decimal("0.00"))
    duration = mapped_column(Integer, nullable=False, default=30)
    category = mapped_column(Enum("hair", "spa", "massage", "facial", "nail", "beauty"))
    is_active = mapped_column(Boolean, nullable=False, default=True)
    description = mapped_column(Text)

    vendor: Mapped["Vendor"] = relationship("Vendor", back_populates="vendor_service")
    add_on_service: Mapped[List["AddOnService"]] = relationship(
        "AddOnService", uselist=True, back_populates="service"
    )


class AddOnService(Base):
    __tablename__ = "add_on_service"
    __table_args__ = (
        ForeignKeyConstraint(
            ["service_id"], ["vendor_service.id"], ondelete="CASCADE", name="fk_ao_service"
        ),
        Index("fk_ao_service", "service_id"),
    )

    id = mapped_column(Integer, primary_key=True)
    service_id = mapped_column(Integer, nullable=False)
    name = mapped_column(String(80), nullable=False)
    price = mapped_column(_money(), nullable=False, default=Decimal("0.00"))
    duration = mapped_column(Integer, nullable=False, default=0)

    service: Mapped["VendorService"] = relationship(
        "VendorService", back_populates="add_on_service"
    )


class Booking(Base):
    __tablename__ = "booking"
    __table_args__ = (
        ForeignKeyConstraint(["customer_id"], ["customer.id"], name="fk_bk_customer"),
        ForeignKeyConstraint(["vendor_id"], ["vendor.id"], name="fk_bk_vendor"),
        ForeignKeyConstraint(
            ["service_id"], ["vendor_service.id"], name="fk_bk_service"
        ),
        # slot_hold is 1 while the booking is active and NULL afterwards, so at
        # most one active booking can own a (vendor, day, slot) key
        Index(
            "uq_booking_active_slot",
            "vendor_id",
            "booking_date",
            "time_slot",
            "slot_hold",
            unique=True,
        ),
        Index("customer_id", "customer_id", "created_at"),
        Index("vendor_id", "vendor_id", "booking_date"),
    )

    id = mapped_column(Integer, primary_key=True)
    customer_id = mapped_column(Integer, nullable=False)
    vendor_id = mapped_column(Integer, nullable=False)
    service_id = mapped_column(Integer, nullable=False)
    add_on_service_ids = mapped_column(JSON, nullable=False, default=list)
    booking_date = mapped_column(Date, nullable=False)
    time_slot = mapped_column(String(5), nullable=False)
    duration = mapped_column(Integer, nullable=False)
    slot_hold = mapped_column(Boolean)

    base_price = mapped_column(_money(), nullable=False)
    add_on_price = mapped_column(_money(), nullable=False, default=Decimal("0.00"))
    total_price = mapped_column(_money(), nullable=False)
    discount_amount = mapped_column(_money(), nullable=False, default=Decimal("0.00"))
    final_price = mapped_column(_money(), nullable=False)
    commission_rate = mapped_column(Numeric(5, 4))
    commission_amount = mapped_column(_money(), nullable=False, default=Decimal("0.00"))
    vendor_earnings = mapped_column(_money(), nullable=False, default=Decimal("0.00"))

    status = mapped_column(Enum(*BOOKING_STATUSES), nullable=False, default="pending")
    payment_status = mapped_column(Enum(*PAYMENT_STATUSES), nullable=False, default="pending")
    payment_method = mapped_column(String(20))
    payment_id = mapped_column(String(255))
    settled_at = mapped_column(DateTime)

    loyalty_points_earned = mapped_column(Integer, nullable=False, default=0)
    loyalty_points_used = mapped_column(Integer, nullable=False, default=0)
    promo_code = mapped_column(String(50))
    promo_code_id = mapped_column(Integer)
    promo_discount = mapped_column(_money(), nullable=False, default=Decimal("0.00"))

    cancellation_reason = mapped_column(Text)
    cancellation_tokens = mapped_column(Integer, nullable=False, default=0)
    cancelled_by = mapped_column(String(10))
    notes = mapped_column(Text)
    created_at = mapped_column(DateTime, nullable=False, default=datetime.now)
    updated_at = mapped_column(DateTime, nullable=False, default=datetime.now, onupdate=datetime.now)

    customer: Mapped["Customer"] = relationship("Customer", back_populates="booking")
    vendor: Mapped["Vendor"] = relationship("Vendor", back_populates="booking")
    service: Mapped["VendorService"] = relationship("VendorService")

    @property
    def starts_at(self):
        hours, minutes = (int(part) for part in self.time_slot.split(":"))
        return datetime.combine(self.booking_date, datetime.min.time()).replace(
            hour=hours, minute=minutes
        )


class LedgerTransaction(Base):
    """Append-only money ledger. Reversals are new rows, never edits."""

    __tablename__ = "ledger_transaction"
    __table_args__ = (
        # one commission entry and one refund entry per booking; payouts carry
        # no booking_id and NULLs never collide
        Index("uq_ledger_booking_type", "booking_id", "type", unique=True),
        Index("idx_ledger_vendor", "vendor_id", "created_at"),
        Index("idx_ledger_type", "type", "created_at"),
    )

    id = mapped_column(Integer, primary_key=True)
    type = mapped_column(Enum(*TRANSACTION_TYPES), nullable=False)
    booking_id = mapped_column(Integer)
    vendor_id = mapped_column(Integer)
    customer_id = mapped_column(Integer)
    amount = mapped_column(_money(12), nullable=False)
    commission_amount = mapped_column(_money(12))
    description = mapped_column(String(255), nullable=False)
    status = mapped_column(Enum(*TRANSACTION_STATUSES), nullable=False, default="pending")
    payment_method = mapped_column(String(30))
    created_at = mapped_column(DateTime, nullable=False, default=datetime.now)
    processed_at = mapped_column(DateTime)


class LoyaltyTransaction(Base):
    __tablename__ = "loyalty_transaction"
    __table_args__ = (
        ForeignKeyConstraint(
            ["customer_id"], ["customer.id"], ondelete="CASCADE", name="fk_lt_customer"
        ),
        Index("idx_lt_customer", "customer_id", "created_at"),
        Index("idx_lt_expiry", "type", "expires_at"),
        # an earned entry can be expired only once
        Index("uq_lt_source_entry", "source_entry_id", unique=True),
    )

    id = mapped_column(Integer, primary_key=True)
    customer_id = mapped_column(Integer, nullable=False)
    type = mapped_column(Enum(*LOYALTY_TYPES), nullable=False)
    points = mapped_column(
        Integer, nullable=False, comment="Positive for earned, negative for redeemed/expired"
    )
    booking_id = mapped_column(Integer)
    source_entry_id = mapped_column(Integer)
    description = mapped_column(String(255))
    created_at = mapped_column(DateTime, nullable=False, default=datetime.now)
    expires_at = mapped_column(DateTime)

    customer: Mapped["Customer"] = relationship(
        "Customer", back_populates="loyalty_transaction"
    )


class PromoCode(Base):
    __tablename__ = "promo_code"
    __table_args__ = (Index("uq_promo_code", "code", unique=True),)

    id = mapped_column(Integer, primary_key=True)
    code = mapped_column(String(50), nullable=False)
    type = mapped_column(Enum(*PROMO_TYPES), nullable=False)
    value = mapped_column(_money(), nullable=False)
    min_order_value = mapped_column(_money(), nullable=False, default=Decimal("0.00"))
    max_discount = mapped_column(_money())
    usage_limit = mapped_column(Integer, nullable=False)
    used_count = mapped_column(Integer, nullable=False, default=0)
    user_limit = mapped_column(Integer, nullable=False, default=1)
    is_active = mapped_column(Boolean, nullable=False, default=True)
    start_date = mapped_column(DateTime, nullable=False)
    end_date = mapped_column(DateTime, nullable=False)
    applicable_services = mapped_column(JSON, nullable=False, default=list)
    applicable_vendors = mapped_column(JSON, nullable=False, default=list)
    description = mapped_column(String(255))
    created_by = mapped_column(String(128))
    created_at = mapped_column(DateTime, nullable=False, default=datetime.now)

    promo_usage: Mapped[List["PromoUsage"]] = relationship(
        "PromoUsage", uselist=True, back_populates="promo_code"
    )


class PromoUsage(Base):
    __tablename__ = "promo_usage"
    __table_args__ = (
        ForeignKeyConstraint(
            ["promo_code_id"], ["promo_code.id"], ondelete="CASCADE", name="fk_pu_promo"
        ),
        Index("idx_pu_customer", "promo_code_id", "customer_id"),
        Index("uq_pu_booking", "promo_code_id", "booking_id", unique=True),
    )

    id = mapped_column(Integer, primary_key=True)
    promo_code_id = mapped_column(Integer, nullable=False)
    customer_id = mapped_column(Integer, nullable=False)
    booking_id = mapped_column(Integer)
    discount = mapped_column(_money(), nullable=False, default=Decimal("0.00"))
    used_at = mapped_column(DateTime, nullable=False, default=datetime.now)

    promo_code: Mapped["PromoCode"] = relationship("PromoCode", back_populates="promo_usage")


class FlashDeal(Base):
    __tablename__ = "flash_deal"
    __table_args__ = (
        ForeignKeyConstraint(["vendor_id"], ["vendor.id"], name="fk_fd_vendor"),
        ForeignKeyConstraint(["service_id"], ["vendor_service.id"], name="fk_fd_service"),
        Index("idx_fd_window", "is_active", "start_time", "end_time"),
    )

    id = mapped_column(Integer, primary_key=True)
    title = mapped_column(String(160), nullable=False)
    description = mapped_column(Text)
    vendor_id = mapped_column(Integer, nullable=False)
    service_id = mapped_column(Integer, nullable=False)
    original_price = mapped_column(_money(), nullable=False)
    discounted_price = mapped_column(_money(), nullable=False)
    discount_percentage = mapped_column(Integer, nullable=False)
    start_time = mapped_column(DateTime, nullable=False)
    end_time = mapped_column(DateTime, nullable=False)
    total_slots = mapped_column(Integer, nullable=False)
    booked_slots = mapped_column(Integer, nullable=False, default=0)
    is_active = mapped_column(Boolean, nullable=False, default=True)
    created_at = mapped_column(DateTime, nullable=False, default=datetime.now)

    flash_deal_booking: Mapped[List["FlashDealBooking"]] = relationship(
        "FlashDealBooking", uselist=True, back_populates="deal"
    )


class FlashDealBooking(Base):
    __tablename__ = "flash_deal_booking"
    __table_args__ = (
        ForeignKeyConstraint(
            ["deal_id"], ["flash_deal.id"], ondelete="CASCADE", name="fk_fdb_deal"
        ),
        Index("uq_fdb_deal_customer", "deal_id", "customer_id", unique=True),
        Index("idx_fdb_status", "status", "expires_at"),
    )

    id = mapped_column(Integer, primary_key=True)
    deal_id = mapped_column(Integer, nullable=False)
    customer_id = mapped_column(Integer, nullable=False)
    vendor_id = mapped_column(Integer, nullable=False)
    service_id = mapped_column(Integer, nullable=False)
    original_price = mapped_column(_money(), nullable=False)
    discounted_price = mapped_column(_money(), nullable=False)
    savings = mapped_column(_money(), nullable=False)
    status = mapped_column(Enum(*FLASH_BOOKING_STATUSES), nullable=False, default="booked")
    booked_at = mapped_column(DateTime, nullable=False, default=datetime.now)
    expires_at = mapped_column(DateTime, nullable=False)
    redeemed_at = mapped_column(DateTime)

    deal: Mapped["FlashDeal"] = relationship("FlashDeal", back_populates="flash_deal_booking")


def serialize_booking(booking: Booking) -> dict:
    return {
        "id": booking.id,
        "customer_id": booking.customer_id,
        "vendor_id": booking.vendor_id,
        "service_id": booking.service_id,
        "add_on_service_ids": list(booking.add_on_service_ids or []),
        "date": booking.booking_date.isoformat(),
        "time_slot": booking.time_slot,
        "duration": booking.duration,
        "base_price": float(booking.base_price),
        "add_on_price": float(booking.add_on_price),
        "total_price": float(booking.total_price),
        "discount_amount": float(booking.discount_amount),
        "final_price": float(booking.final_price),
        "commission_rate": float(booking.commission_rate) if booking.commission_rate is not None else None,
        "commission_amount": float(booking.commission_amount),
        "vendor_earnings": float(booking.vendor_earnings),
        "status": booking.status,
        "payment_status": booking.payment_status,
        "payment_method": booking.payment_method,
        "loyalty_points_earned": booking.loyalty_points_earned,
        "loyalty_points_used": booking.loyalty_points_used,
        "promo_code": booking.promo_code,
        "promo_discount": float(booking.promo_discount),
        "cancellation_reason": booking.cancellation_reason,
        "cancellation_tokens": booking.cancellation_tokens,
        "notes": booking.notes,
        "created_at": booking.created_at.isoformat() if booking.created_at else None,
        "updated_at": booking.updated_at.isoformat() if booking.updated_at else None,
    }


def serialize_transaction(txn: LedgerTransaction) -> dict:
    return {
        "id": txn.id,
        "type": txn.type,
        "booking_id": txn.booking_id,
        "vendor_id": txn.vendor_id,
        "customer_id": txn.customer_id,
        "amount": float(txn.amount),
        "commission_amount": float(txn.commission_amount) if txn.commission_amount is not None else None,
        "description": txn.description,
        "status": txn.status,
        "created_at": txn.created_at.isoformat() if txn.created_at else None,
        "processed_at": txn.processed_at.isoformat() if txn.processed_at else None,
    }


def serialize_flash_deal(deal: FlashDeal) -> dict:
    return {
        "id": deal.id,
        "title": deal.title,
        "description": deal.description,
        "vendor_id": deal.vendor_id,
        "service_id": deal.service_id,
        "original_price": float(deal.original_price),
        "discounted_price": float(deal.discounted_price),
        "discount_percentage": deal.discount_percentage,
        "start_time": deal.start_time.isoformat(),
        "end_time": deal.end_time.isoformat(),
        "total_slots": deal.total_slots,
        "booked_slots": deal.booked_slots,
        "is_active": bool(deal.is_active),
    }


def serialize_promo(promo: PromoCode) -> dict:
    return {
        "id": promo.id,
        "code": promo.code,
        "type": promo.type,
        "value": float(promo.value),
        "min_order_value": float(promo.min_order_value),
        "max_discount": float(promo.max_discount) if promo.max_discount is not None else None,
        "usage_limit": promo.usage_limit,
        "used_count": promo.used_count,
        "user_limit": promo.user_limit,
        "is_active": bool(promo.is_active),
        "start_date": promo.start_date.isoformat(),
        "end_date": promo.end_date.isoformat(),
        "applicable_services": list(promo.applicable_services or []),
        "applicable_vendors": list(promo.applicable_vendors or []),
    }
