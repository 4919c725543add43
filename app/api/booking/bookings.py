# Availability, quotes and the booking lifecycle
from flask import Blueprint, current_app, g, jsonify, request

from app.errors import AuthError, ValidationError
from app.identity import current_customer, current_vendor, identity_required, is_admin
from app.models import Customer, Vendor, serialize_booking
from app.services import availability_service, booking_service, pricing_service
from app.store import LedgerStore
from app.utils.request_parsing import (
    json_body,
    parse_date,
    parse_datetime,
    parse_int,
    parse_int_list,
)

bookings_bp = Blueprint("bookings", __name__, url_prefix="/api/bookings")


def _authorize(booking, store, allow_customer=True, allow_vendor=True):
    """Admins see everything; customers and vendors only their own bookings."""
    if is_admin():
        return
    role = g.identity["role"]
    if role == "CUSTOMER" and allow_customer:
        customer = store.first(Customer, Customer.auth_uid == g.identity["sub"])
        if customer is not None and customer.id == booking.customer_id:
            return
    if role == "VENDOR" and allow_vendor:
        vendor = store.first(Vendor, Vendor.auth_uid == g.identity["sub"])
        if vendor is not None and vendor.id == booking.vendor_id:
            return
    raise AuthError("You do not have access to this booking", status_code=403)


@bookings_bp.route("/availability", methods=["GET"])
def get_availability():
    """
    Free and taken slots for a vendor on a day.
    ---
    tags:
      - Bookings
    parameters:
      - name: vendor_id
        in: query
        type: integer
        required: true
      - name: date
        in: query
        type: string
        required: true
        description: YYYY-MM-DD
      - name: duration
        in: query
        type: integer
        description: Service length in minutes. Ignored when service_id is given.
      - name: service_id
        in: query
        type: integer
      - name: add_on_ids
        in: query
        type: string
        description: Comma separated add-on ids
    responses:
      200:
        description: Availability for the day
        schema:
          type: object
          properties:
            available_slots:
              type: array
              items:
                type: string
                example: "09:30"
            booked_slots:
              type: array
              items:
                type: string
            operating_hours:
              type: object
      404:
        description: Vendor not found
    """
    vendor_id = parse_int(request.args.get("vendor_id"), "vendor_id")
    on_date = parse_date(request.args.get("date"))
    if vendor_id is None or on_date is None:
        raise ValidationError("vendor_id and date are required")

    store = LedgerStore()
    service_id = parse_int(request.args.get("service_id"), "service_id")
    if service_id is not None:
        _, service = pricing_service.load_service(vendor_id, service_id, store)
        breakdown = pricing_service.compose_price(
            service, parse_int_list(request.args.get("add_on_ids"), "add_on_ids"), store
        )
        duration = breakdown.duration
    else:
        duration = parse_int(request.args.get("duration"), "duration")
        if duration is None:
            raise ValidationError("duration or service_id is required")

    result = availability_service.get_availability(vendor_id, on_date, duration, store)
    return jsonify({"vendor_id": vendor_id, "date": on_date.isoformat(), "duration": duration, **result}), 200


@bookings_bp.route("/quote", methods=["POST"])
@identity_required("CUSTOMER")
def quote_booking():
    """
    Price a booking without writing anything.
    ---
    tags:
      - Bookings
    parameters:
      - in: body
        name: body
        required: true
        schema:
          type: object
          required: [vendor_id, service_id]
          properties:
            vendor_id:
              type: integer
            service_id:
              type: integer
            add_on_service_ids:
              type: array
              items:
                type: integer
            promo_code:
              type: string
            loyalty_points:
              type: integer
    responses:
      200:
        description: Price breakdown with promo and loyalty results and any warnings
      400:
        description: Missing fields or unknown add-on
      404:
        description: Vendor or service not found
    """
    data = json_body("vendor_id", "service_id")
    store = LedgerStore()
    customer = current_customer(store)
    quote = pricing_service.quote(
        customer.id,
        parse_int(data["vendor_id"], "vendor_id"),
        parse_int(data["service_id"], "service_id"),
        add_on_ids=parse_int_list(data.get("add_on_service_ids"), "add_on_service_ids"),
        promo_code=data.get("promo_code"),
        loyalty_points=parse_int(data.get("loyalty_points"), "loyalty_points", default=0),
        store=store,
    )
    return jsonify(quote.to_dict()), 200


@bookings_bp.route("", methods=["POST"])
@identity_required("CUSTOMER")
def create_booking():
    """
    Book a slot.
    ---
    tags:
      - Bookings
    parameters:
      - in: body
        name: body
        required: true
        schema:
          type: object
          required: [vendor_id, service_id, date, time_slot]
          properties:
            vendor_id:
              type: integer
            service_id:
              type: integer
            add_on_service_ids:
              type: array
              items:
                type: integer
            date:
              type: string
              example: "2026-05-04"
            time_slot:
              type: string
              example: "10:30"
            promo_code:
              type: string
            loyalty_points:
              type: integer
            strict:
              type: boolean
              description: Reject the booking instead of ignoring an invalid promo code or loyalty redemption
            notes:
              type: string
    responses:
      201:
        description: Booking created with status pending
      400:
        description: Invalid input or slot not on the vendor's grid
      409:
        description: Slot already taken
    """
    data = json_body("vendor_id", "service_id", "date", "time_slot")
    store = LedgerStore()
    customer = current_customer(store)

    booking, quote = booking_service.create_booking(
        customer.id,
        parse_int(data["vendor_id"], "vendor_id"),
        parse_int(data["service_id"], "service_id"),
        parse_date(data["date"]),
        data["time_slot"],
        add_on_ids=parse_int_list(data.get("add_on_service_ids"), "add_on_service_ids"),
        promo_code=data.get("promo_code"),
        loyalty_points=parse_int(data.get("loyalty_points"), "loyalty_points", default=0),
        notes=data.get("notes"),
        strict=bool(data.get("strict", False)),
        store=store,
    )
    return jsonify(
        {
            "status": "success",
            "message": "Booking created",
            "booking": serialize_booking(booking),
            "warnings": quote.warnings,
        }
    ), 201


@bookings_bp.route("/<int:booking_id>", methods=["GET"])
@identity_required()
def get_booking(booking_id):
    """
    Fetch one booking.
    ---
    tags:
      - Bookings
    parameters:
      - name: booking_id
        in: path
        type: integer
        required: true
    responses:
      200:
        description: The booking
      403:
        description: Booking belongs to someone else
      404:
        description: Booking not found
    """
    store = LedgerStore()
    booking = booking_service.get_booking(booking_id, store)
    _authorize(booking, store)
    return jsonify(serialize_booking(booking)), 200


@bookings_bp.route("/<int:booking_id>/pay", methods=["POST"])
@identity_required("CUSTOMER", "ADMIN")
def pay_booking(booking_id):
    """
    Record a successful payment: confirms the booking, settles commission
    and moves loyalty points in one transaction.
    ---
    tags:
      - Bookings
    parameters:
      - name: booking_id
        in: path
        type: integer
        required: true
      - in: body
        name: body
        required: true
        schema:
          type: object
          required: [payment_method]
          properties:
            payment_method:
              type: string
              example: card
            payment_id:
              type: string
    responses:
      200:
        description: Booking confirmed and paid
      400:
        description: Not enough loyalty points left to cover the redemption
      409:
        description: Booking already paid or no longer pending
    """
    data = json_body("payment_method")
    store = LedgerStore()
    _authorize(booking_service.get_booking(booking_id, store), store, allow_vendor=False)

    booking = booking_service.process_booking_payment(
        booking_id, data["payment_method"], data.get("payment_id"), store=store
    )
    return jsonify({"status": "success", "booking": serialize_booking(booking)}), 200


@bookings_bp.route("/<int:booking_id>/payment-failed", methods=["POST"])
@identity_required("CUSTOMER", "ADMIN")
def payment_failed(booking_id):
    """
    Flag a failed payment attempt. The booking stays pending and can be paid later.
    ---
    tags:
      - Bookings
    parameters:
      - name: booking_id
        in: path
        type: integer
        required: true
    responses:
      200:
        description: Payment status set to failed
      409:
        description: Booking is not awaiting payment
    """
    store = LedgerStore()
    _authorize(booking_service.get_booking(booking_id, store), store, allow_vendor=False)
    booking = booking_service.mark_payment_failed(booking_id, store=store)
    return jsonify({"status": "success", "booking": serialize_booking(booking)}), 200


@bookings_bp.route("/<int:booking_id>/start", methods=["POST"])
@identity_required("VENDOR", "ADMIN")
def start_booking(booking_id):
    """
    Mark a confirmed booking as in progress.
    ---
    tags:
      - Bookings
    parameters:
      - name: booking_id
        in: path
        type: integer
        required: true
    responses:
      200:
        description: Booking in progress
      403:
        description: Booking belongs to another vendor
      409:
        description: Booking is not confirmed
    """
    store = LedgerStore()
    _authorize(booking_service.get_booking(booking_id, store), store, allow_customer=False)
    booking = booking_service.start_booking(booking_id, store=store)
    return jsonify({"status": "success", "booking": serialize_booking(booking)}), 200


@bookings_bp.route("/<int:booking_id>/cancel", methods=["POST"])
@identity_required()
def cancel_booking(booking_id):
    """
    Cancel a booking. Customers cancelling late collect penalty tokens:
    under 2 hours before the slot 2 tokens, under 24 hours 1 token.
    Paid bookings are refunded in full.
    ---
    tags:
      - Bookings
    parameters:
      - name: booking_id
        in: path
        type: integer
        required: true
      - in: body
        name: body
        schema:
          type: object
          properties:
            reason:
              type: string
    responses:
      200:
        description: Booking cancelled, with the tokens charged
      403:
        description: Booking belongs to someone else
      409:
        description: Booking already in progress or finished
    """
    data = request.get_json(silent=True) or {}
    store = LedgerStore()
    _authorize(booking_service.get_booking(booking_id, store), store)

    cancelled_by = {"CUSTOMER": "customer", "VENDOR": "vendor", "ADMIN": "admin"}[g.identity["role"]]
    booking = booking_service.cancel_booking(
        booking_id, data.get("reason") or "Cancelled", cancelled_by, store=store
    )
    return jsonify(
        {
            "status": "success",
            "booking": serialize_booking(booking),
            "cancellation_tokens": booking.cancellation_tokens,
        }
    ), 200


@bookings_bp.route("/<int:booking_id>/complete", methods=["POST"])
@identity_required("VENDOR", "ADMIN")
def complete_booking(booking_id):
    """
    Mark a booking as completed and release its slot.
    ---
    tags:
      - Bookings
    parameters:
      - name: booking_id
        in: path
        type: integer
        required: true
    responses:
      200:
        description: Booking completed
      409:
        description: Booking is pending or already finished
    """
    store = LedgerStore()
    _authorize(booking_service.get_booking(booking_id, store), store, allow_customer=False)
    booking = booking_service.complete_booking(booking_id, store=store)
    return jsonify({"status": "success", "booking": serialize_booking(booking)}), 200


@bookings_bp.route("/<int:booking_id>/no-show", methods=["POST"])
@identity_required("VENDOR", "ADMIN")
def no_show(booking_id):
    """
    Record that the customer did not turn up.
    The customer collects 3 tokens and the vendor is still paid for the slot.
    ---
    tags:
      - Bookings
    parameters:
      - name: booking_id
        in: path
        type: integer
        required: true
    responses:
      200:
        description: Booking marked no_show and settled
      409:
        description: Booking already in progress or finished
    """
    store = LedgerStore()
    _authorize(booking_service.get_booking(booking_id, store), store, allow_customer=False)
    booking = booking_service.mark_no_show(booking_id, store=store)
    return jsonify({"status": "success", "booking": serialize_booking(booking)}), 200


@bookings_bp.route("/mine", methods=["GET"])
@identity_required("CUSTOMER")
def my_bookings():
    """
    The calling customer's bookings, newest first.
    ---
    tags:
      - Bookings
    parameters:
      - name: status
        in: query
        type: string
      - name: limit
        in: query
        type: integer
    responses:
      200:
        description: List of bookings
    """
    store = LedgerStore()
    customer = current_customer(store)
    bookings = booking_service.get_customer_bookings(
        customer.id,
        status=request.args.get("status"),
        limit=parse_int(request.args.get("limit"), "limit"),
        store=store,
    )
    return jsonify({"bookings": [serialize_booking(b) for b in bookings]}), 200


@bookings_bp.route("/vendor", methods=["GET"])
@identity_required("VENDOR")
def vendor_bookings():
    """
    Bookings for the calling vendor.
    ---
    tags:
      - Bookings
    parameters:
      - name: status
        in: query
        type: string
      - name: date
        in: query
        type: string
        description: YYYY-MM-DD
    responses:
      200:
        description: List of bookings
      403:
        description: Caller has no vendor profile
    """
    store = LedgerStore()
    vendor = current_vendor(store)
    bookings = booking_service.get_vendor_bookings(
        vendor.id,
        status=request.args.get("status"),
        on_date=parse_date(request.args.get("date")),
        store=store,
    )
    return jsonify({"bookings": [serialize_booking(b) for b in bookings]}), 200


@bookings_bp.route("/vendor/analytics", methods=["GET"])
@identity_required("VENDOR", "ADMIN")
def vendor_analytics():
    """
    Booking counts, completion rate and revenue for a vendor.
    ---
    tags:
      - Bookings
    parameters:
      - name: vendor_id
        in: query
        type: integer
        description: Required for admins, ignored for vendors
      - name: start
        in: query
        type: string
      - name: end
        in: query
        type: string
    responses:
      200:
        description: Analytics summary
      404:
        description: Vendor not found
    """
    store = LedgerStore()
    if is_admin():
        vendor_id = parse_int(request.args.get("vendor_id"), "vendor_id")
        if vendor_id is None:
            raise ValidationError("vendor_id is required")
    else:
        vendor_id = current_vendor(store).id

    analytics = booking_service.get_vendor_booking_analytics(
        vendor_id,
        start=parse_datetime(request.args.get("start"), "start"),
        end=parse_datetime(request.args.get("end"), "end"),
        store=store,
    )
    current_app.logger.debug(f"Analytics served for vendor {vendor_id}")
    return jsonify(analytics), 200
