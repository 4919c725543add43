# Vendor profile, operating hours and service catalogue
import datetime

from flask import Blueprint, current_app, g, jsonify
from sqlalchemy.exc import SQLAlchemyError

from app.errors import AuthError, ValidationError
from app.extensions import db
from app.identity import current_vendor, identity_required, is_admin
from app.models import AddOnService, Vendor, VendorHours, VendorService
from app.services.availability_service import format_slot, parse_slot
from app.store import LedgerStore
from app.utils.money import quantize, to_decimal
from app.utils.request_parsing import json_body, parse_int

vendors_bp = Blueprint("vendors", __name__, url_prefix="/api/vendors")

WEEKDAY_NAMES = ["Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday"]


def serialize_hours(hours):
    return {
        "weekday": hours.weekday,
        "day": WEEKDAY_NAMES[hours.weekday],
        "is_open": bool(hours.is_open),
        "open_time": format_slot(hours.open_time) if hours.open_time else None,
        "close_time": format_slot(hours.close_time) if hours.close_time else None,
        "break_start": format_slot(hours.break_start) if hours.break_start else None,
        "break_end": format_slot(hours.break_end) if hours.break_end else None,
    }


def serialize_service(service):
    return {
        "id": service.id,
        "name": service.name,
        "price": float(service.price),
        "duration": service.duration,
        "category": service.category,
        "is_active": bool(service.is_active),
        "add_ons": [
            {"id": a.id, "name": a.name, "price": float(a.price), "duration": a.duration}
            for a in service.add_on_service
        ],
    }


def serialize_vendor(vendor, detailed=False):
    data = {
        "id": vendor.id,
        "business_name": vendor.business_name,
        "commission_rate": float(vendor.commission_rate),
        "is_active": bool(vendor.is_active),
        "phone": vendor.phone,
        "address": vendor.address,
    }
    if detailed:
        data["operating_hours"] = [
            serialize_hours(h) for h in sorted(vendor.vendor_hours, key=lambda h: h.weekday)
        ]
        data["services"] = [serialize_service(s) for s in vendor.vendor_service if s.is_active]
    return data


def _owned_vendor(vendor_id, store):
    vendor = store.require(Vendor, vendor_id, "Vendor")
    if not is_admin() and current_vendor(store).id != vendor.id:
        raise AuthError("You can only manage your own vendor profile", status_code=403)
    return vendor


def _optional_time(value, field):
    if value in (None, ""):
        return None
    try:
        return parse_slot(value)
    except ValidationError:
        raise ValidationError(f"{field} must be HH:MM")


@vendors_bp.route("", methods=["POST"])
@identity_required("VENDOR")
def register_vendor():
    """
    Create the vendor profile for the calling account.
    ---
    tags:
      - Vendors
    parameters:
      - in: body
        name: body
        required: true
        schema:
          type: object
          required: [business_name]
          properties:
            business_name:
              type: string
            phone:
              type: string
            address:
              type: string
    responses:
      201:
        description: Vendor profile created
      409:
        description: Profile already exists
    """
    data = json_body("business_name")
    store = LedgerStore()
    with store.atomic():
        vendor = store.create(
            Vendor(
                auth_uid=g.identity["sub"],
                business_name=data["business_name"].strip(),
                commission_rate=current_app.config["DEFAULT_COMMISSION_RATE"],
                total_earnings=0,
                pending_payouts=0,
                phone=data.get("phone"),
                address=data.get("address"),
            ),
            conflict_message="A vendor profile already exists for this account",
        )
    current_app.logger.info(f"Registered vendor {vendor.id} ({vendor.business_name})")
    return jsonify({"status": "success", "vendor": serialize_vendor(vendor)}), 201


@vendors_bp.route("/<int:vendor_id>", methods=["GET"])
def get_vendor(vendor_id):
    """
    Public vendor profile with operating hours and active services.
    ---
    tags:
      - Vendors
    parameters:
      - name: vendor_id
        in: path
        type: integer
        required: true
    responses:
      200:
        description: Vendor profile
      404:
        description: Vendor not found
    """
    vendor = LedgerStore().require(Vendor, vendor_id, "Vendor")
    return jsonify(serialize_vendor(vendor, detailed=True)), 200


@vendors_bp.route("/<int:vendor_id>/hours", methods=["PUT"])
@identity_required("VENDOR", "ADMIN")
def set_operating_hours(vendor_id):
    """
    Replace the weekly schedule. weekday 0 is Sunday.
    ---
    tags:
      - Vendors
    parameters:
      - name: vendor_id
        in: path
        type: integer
        required: true
      - in: body
        name: body
        required: true
        schema:
          type: object
          required: [hours]
          properties:
            hours:
              type: array
              items:
                type: object
                properties:
                  weekday:
                    type: integer
                    example: 1
                  is_open:
                    type: boolean
                  open_time:
                    type: string
                    example: "09:00"
                  close_time:
                    type: string
                    example: "18:00"
                  break_start:
                    type: string
                    example: "13:00"
                  break_end:
                    type: string
                    example: "14:00"
    responses:
      200:
        description: Updated vendor profile
      400:
        description: Invalid weekday or times
      403:
        description: Vendor belongs to someone else
    """
    data = json_body("hours")
    if not isinstance(data["hours"], list):
        raise ValidationError("hours must be a list")

    store = LedgerStore()
    vendor = _owned_vendor(vendor_id, store)

    rows = []
    for entry in data["hours"]:
        weekday = parse_int(entry.get("weekday"), "weekday")
        if weekday is None or not 0 <= weekday <= 6:
            raise ValidationError("weekday must be between 0 (Sunday) and 6 (Saturday)")
        is_open = bool(entry.get("is_open", True))
        open_time = _optional_time(entry.get("open_time"), "open_time")
        close_time = _optional_time(entry.get("close_time"), "close_time")
        break_start = _optional_time(entry.get("break_start"), "break_start")
        break_end = _optional_time(entry.get("break_end"), "break_end")

        if is_open:
            if not open_time or not close_time or open_time >= close_time:
                raise ValidationError(f"{WEEKDAY_NAMES[weekday]}: open_time must be before close_time")
            if (break_start is None) != (break_end is None):
                raise ValidationError(f"{WEEKDAY_NAMES[weekday]}: break needs both start and end")
            if break_start and break_start >= break_end:
                raise ValidationError(f"{WEEKDAY_NAMES[weekday]}: break_start must be before break_end")
        rows.append(
            VendorHours(
                vendor_id=vendor.id,
                weekday=weekday,
                is_open=is_open,
                open_time=open_time,
                close_time=close_time,
                break_start=break_start,
                break_end=break_end,
            )
        )

    try:
        for existing in list(vendor.vendor_hours):
            db.session.delete(existing)
        db.session.flush()
        db.session.add_all(rows)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        current_app.logger.error(f"Error saving hours for vendor {vendor_id}: {e}")
        return jsonify({"status": "error", "message": "Could not save operating hours"}), 500

    return jsonify(
        {
            "status": "success",
            "operating_hours": [serialize_hours(h) for h in sorted(rows, key=lambda h: h.weekday)],
        }
    ), 200


@vendors_bp.route("/<int:vendor_id>/services", methods=["POST"])
@identity_required("VENDOR", "ADMIN")
def add_service(vendor_id):
    """
    Add a service (optionally with add-ons) to the vendor's catalogue.
    ---
    tags:
      - Vendors
    parameters:
      - name: vendor_id
        in: path
        type: integer
        required: true
      - in: body
        name: body
        required: true
        schema:
          type: object
          required: [name, price, duration]
          properties:
            name:
              type: string
            price:
              type: number
            duration:
              type: integer
            category:
              type: string
            add_ons:
              type: array
              items:
                type: object
    responses:
      201:
        description: Service created
    """
    data = json_body("name", "price", "duration")
    store = LedgerStore()
    vendor = _owned_vendor(vendor_id, store)

    price = quantize(to_decimal(data["price"], "price"))
    duration = parse_int(data["duration"], "duration")
    if price < 0 or duration <= 0:
        raise ValidationError("price cannot be negative and duration must be positive")

    with store.atomic():
        service = store.create(
            VendorService(
                vendor_id=vendor.id,
                name=data["name"].strip(),
                price=price,
                duration=duration,
                category=data.get("category"),
                description=data.get("description"),
                is_active=True,
            )
        )
        for add_on in data.get("add_ons") or []:
            if not add_on.get("name"):
                raise ValidationError("Every add-on needs a name")
            store.create(
                AddOnService(
                    service_id=service.id,
                    name=add_on["name"].strip(),
                    price=quantize(to_decimal(add_on.get("price", 0), "add-on price")),
                    duration=parse_int(add_on.get("duration"), "add-on duration", default=0),
                )
            )
    db.session.refresh(service)
    return jsonify({"status": "success", "service": serialize_service(service)}), 201


@vendors_bp.route("/<int:vendor_id>/commission-rate", methods=["PUT"])
@identity_required("ADMIN")
def set_commission_rate(vendor_id):
    """
    Change a vendor's commission rate.
    Applies to bookings settled from now on; settled bookings keep their rate.
    ---
    tags:
      - Vendors
    parameters:
      - name: vendor_id
        in: path
        type: integer
        required: true
      - in: body
        name: body
        required: true
        schema:
          type: object
          required: [commission_rate]
          properties:
            commission_rate:
              type: number
              example: 0.15
    responses:
      200:
        description: Updated vendor
      400:
        description: Rate outside 0..1
      404:
        description: Vendor not found
    """
    data = json_body("commission_rate")
    rate = to_decimal(data["commission_rate"], "commission_rate")
    if rate < 0 or rate > 1:
        raise ValidationError("commission_rate must be between 0 and 1")

    store = LedgerStore()
    with store.atomic():
        vendor = store.require(Vendor, vendor_id, "Vendor")
        store.update(vendor, commission_rate=rate, updated_at=datetime.datetime.now())
    current_app.logger.info(f"Vendor {vendor_id} commission rate set to {rate}")
    return jsonify({"status": "success", "vendor": serialize_vendor(vendor)}), 200
