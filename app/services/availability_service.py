"""
Availability: which start times a vendor can still accept on a given day.

Slots are laid on a fixed grid from the opening time. A slot is offered when
the whole service fits before closing, does not overlap the break window and
no active booking already holds that exact start time.
"""

import datetime

from flask import current_app

from app.errors import NotFoundError, ValidationError
from app.models import ACTIVE_BOOKING_STATUSES, Booking, Vendor, VendorHours
from app.store import LedgerStore

DEFAULT_SLOT_MINUTES = 30


def weekday_index(on_date):
    """0 = Sunday ... 6 = Saturday."""
    return on_date.isoweekday() % 7


def format_slot(value):
    return value.strftime("%H:%M")


def parse_slot(value):
    try:
        return datetime.datetime.strptime(value, "%H:%M").time()
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid time slot '{value}', expected HH:MM")


def _slot_minutes():
    try:
        return int(current_app.config.get("SLOT_MINUTES", DEFAULT_SLOT_MINUTES))
    except RuntimeError:
        return DEFAULT_SLOT_MINUTES


def _overlaps(start, end, window_start, window_end):
    return start < window_end and end > window_start


def _grid(hours, on_date, duration_minutes, step_minutes):
    open_at = datetime.datetime.combine(on_date, hours.open_time)
    close_at = datetime.datetime.combine(on_date, hours.close_time)
    service_duration = datetime.timedelta(minutes=duration_minutes)
    slot_increment = datetime.timedelta(minutes=step_minutes)

    break_start = break_end = None
    if hours.break_start and hours.break_end:
        break_start = datetime.datetime.combine(on_date, hours.break_start)
        break_end = datetime.datetime.combine(on_date, hours.break_end)

    slots = []
    current_time = open_at
    while current_time + service_duration <= close_at:
        slot_end_time = current_time + service_duration
        if break_start is None or not _overlaps(current_time, slot_end_time, break_start, break_end):
            slots.append(format_slot(current_time))
        current_time += slot_increment
    return slots


def _operating_hours(hours):
    if hours is None:
        return {"is_open": False, "open_time": None, "close_time": None, "break_start": None, "break_end": None}
    return {
        "is_open": bool(hours.is_open),
        "open_time": format_slot(hours.open_time) if hours.open_time else None,
        "close_time": format_slot(hours.close_time) if hours.close_time else None,
        "break_start": format_slot(hours.break_start) if hours.break_start else None,
        "break_end": format_slot(hours.break_end) if hours.break_end else None,
    }


def booked_slots_for(vendor_id, on_date, store=None):
    store = store or LedgerStore()
    bookings = store.query(
        Booking,
        Booking.vendor_id == vendor_id,
        Booking.booking_date == on_date,
        Booking.status.in_(ACTIVE_BOOKING_STATUSES),
        order_by=Booking.time_slot,
    )
    return sorted({b.time_slot for b in bookings})


def candidate_slots(vendor_id, on_date, duration_minutes, store=None):
    """The slot grid for the day, ignoring existing bookings."""
    store = store or LedgerStore()
    hours = store.first(
        VendorHours,
        VendorHours.vendor_id == vendor_id,
        VendorHours.weekday == weekday_index(on_date),
    )
    if hours is None or not hours.is_open or not hours.open_time or not hours.close_time:
        return hours, []
    return hours, _grid(hours, on_date, duration_minutes, _slot_minutes())


def get_availability(vendor_id, on_date, duration_minutes, store=None):
    if duration_minutes is None or int(duration_minutes) <= 0:
        raise ValidationError("duration_minutes must be a positive number of minutes")

    store = store or LedgerStore()
    store.require(Vendor, vendor_id, "Vendor")

    hours, slots = candidate_slots(vendor_id, on_date, int(duration_minutes), store)
    if not slots:
        return {
            "available_slots": [],
            "booked_slots": [],
            "operating_hours": _operating_hours(hours),
        }

    booked = booked_slots_for(vendor_id, on_date, store)
    taken = set(booked)
    return {
        "available_slots": [s for s in slots if s not in taken],
        "booked_slots": booked,
        "operating_hours": _operating_hours(hours),
    }


def is_slot_available(vendor_id, on_date, time_slot, duration_minutes, store=None):
    """True when ``time_slot`` is on the grid and no active booking holds it."""
    availability = get_availability(vendor_id, on_date, duration_minutes, store)
    return time_slot in availability["available_slots"]
