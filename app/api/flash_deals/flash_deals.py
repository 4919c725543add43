# Flash deals: create, list, claim and redeem
from flask import Blueprint, jsonify, request

from app.errors import AuthError
from app.identity import current_customer, current_vendor, identity_required, is_admin
from app.models import FlashDeal, serialize_flash_deal
from app.services import flash_deal_service
from app.store import LedgerStore
from app.utils.request_parsing import json_body, parse_datetime, parse_int

flash_deals_bp = Blueprint("flash_deals", __name__, url_prefix="/api/flash-deals")

# HTTP status for each rejection reason of a claim or redemption
REASON_STATUS = {
    "not_found": 404,
    "not_owner": 403,
    "sold_out": 409,
    "already_booked": 409,
    "already_redeemed": 409,
}


def _result_response(result, success_status=200):
    if result.success:
        return jsonify({"status": "success", **result.to_dict()}), success_status
    status = REASON_STATUS.get(result.reason, 400)
    return jsonify({"status": "error", "message": result.message, **result.to_dict()}), status


@flash_deals_bp.route("", methods=["POST"])
@identity_required("VENDOR")
def create_deal():
    """
    Publish a flash deal on one of the caller's services.
    ---
    tags:
      - Flash Deals
    parameters:
      - in: body
        name: body
        required: true
        schema:
          type: object
          required: [service_id, title, original_price, discounted_price, start_time, end_time, total_slots]
          properties:
            service_id:
              type: integer
            title:
              type: string
            description:
              type: string
            original_price:
              type: number
            discounted_price:
              type: number
            start_time:
              type: string
              format: date-time
            end_time:
              type: string
              format: date-time
            total_slots:
              type: integer
    responses:
      201:
        description: Deal created
      400:
        description: Invalid window, prices or capacity
    """
    data = json_body(
        "service_id", "title", "original_price", "discounted_price", "start_time", "end_time", "total_slots"
    )
    store = LedgerStore()
    vendor = current_vendor(store)
    deal = flash_deal_service.create_flash_deal(
        vendor.id,
        parse_int(data["service_id"], "service_id"),
        data["title"],
        data["original_price"],
        data["discounted_price"],
        parse_datetime(data["start_time"], "start_time"),
        parse_datetime(data["end_time"], "end_time"),
        parse_int(data["total_slots"], "total_slots"),
        description=data.get("description"),
        store=store,
    )
    return jsonify({"status": "success", "deal": serialize_flash_deal(deal)}), 201


@flash_deals_bp.route("/active", methods=["GET"])
def active_deals():
    """
    Deals that can be claimed right now.
    ---
    tags:
      - Flash Deals
    parameters:
      - name: vendor_id
        in: query
        type: integer
    responses:
      200:
        description: Active deals, ending soonest first
    """
    deals = flash_deal_service.get_active_flash_deals(
        vendor_id=parse_int(request.args.get("vendor_id"), "vendor_id")
    )
    return jsonify({"deals": [serialize_flash_deal(d) for d in deals]}), 200


@flash_deals_bp.route("/upcoming", methods=["GET"])
def upcoming_deals():
    """
    Deals that have not started yet.
    ---
    tags:
      - Flash Deals
    parameters:
      - name: vendor_id
        in: query
        type: integer
    responses:
      200:
        description: Upcoming deals
    """
    deals = flash_deal_service.get_upcoming_flash_deals(
        vendor_id=parse_int(request.args.get("vendor_id"), "vendor_id")
    )
    return jsonify({"deals": [serialize_flash_deal(d) for d in deals]}), 200


@flash_deals_bp.route("/<int:deal_id>/book", methods=["POST"])
@identity_required("CUSTOMER")
def book_deal(deal_id):
    """
    Claim one slot of a flash deal. One claim per customer per deal.
    ---
    tags:
      - Flash Deals
    parameters:
      - name: deal_id
        in: path
        type: integer
        required: true
    responses:
      201:
        description: Slot claimed
      400:
        description: Deal inactive, not started or ended
      404:
        description: Deal not found
      409:
        description: Sold out or already claimed by this customer
    """
    store = LedgerStore()
    customer = current_customer(store)
    result = flash_deal_service.book_flash_deal(deal_id, customer.id, store=store)
    return _result_response(result, success_status=201)


@flash_deals_bp.route("/bookings/<int:booking_id>/redeem", methods=["POST"])
@identity_required("VENDOR")
def redeem_deal_booking(booking_id):
    """
    Redeem a customer's claim at the vendor's counter.
    ---
    tags:
      - Flash Deals
    parameters:
      - name: booking_id
        in: path
        type: integer
        required: true
    responses:
      200:
        description: Claim redeemed
      400:
        description: Claim expired
      403:
        description: Claim belongs to another vendor's deal
      404:
        description: Claim not found
      409:
        description: Already redeemed
    """
    store = LedgerStore()
    vendor = current_vendor(store)
    result = flash_deal_service.redeem_flash_deal_booking(booking_id, vendor.id, store=store)
    return _result_response(result)


@flash_deals_bp.route("/mine", methods=["GET"])
@identity_required("CUSTOMER")
def my_deal_bookings():
    """
    The calling customer's flash deal claims.
    ---
    tags:
      - Flash Deals
    responses:
      200:
        description: Claims, newest first
    """
    store = LedgerStore()
    customer = current_customer(store)
    claims = flash_deal_service.get_customer_flash_deal_bookings(customer.id, store=store)
    return jsonify({"bookings": [flash_deal_service.serialize_claim(c) for c in claims]}), 200


@flash_deals_bp.route("/<int:deal_id>/toggle", methods=["POST"])
@identity_required("VENDOR", "ADMIN")
def toggle_deal(deal_id):
    """
    Switch a deal on or off.
    ---
    tags:
      - Flash Deals
    parameters:
      - name: deal_id
        in: path
        type: integer
        required: true
      - in: body
        name: body
        required: true
        schema:
          type: object
          required: [is_active]
          properties:
            is_active:
              type: boolean
    responses:
      200:
        description: Updated deal
      403:
        description: Deal belongs to another vendor
      404:
        description: Deal not found
    """
    data = json_body("is_active")
    store = LedgerStore()
    deal = store.require(FlashDeal, deal_id, "Flash deal")
    if not is_admin() and current_vendor(store).id != deal.vendor_id:
        raise AuthError("You can only manage your own flash deals", status_code=403)
    deal = flash_deal_service.toggle_flash_deal_status(deal_id, data["is_active"], store=store)
    return jsonify({"status": "success", "deal": serialize_flash_deal(deal)}), 200


@flash_deals_bp.route("/analytics", methods=["GET"])
@identity_required("VENDOR", "ADMIN")
def deal_analytics():
    """
    Claims, redemption rate, revenue and savings for one deal or a vendor's deals.
    ---
    tags:
      - Flash Deals
    parameters:
      - name: deal_id
        in: query
        type: integer
      - name: vendor_id
        in: query
        type: integer
        description: Admins only
    responses:
      200:
        description: Analytics summary
      403:
        description: Deal belongs to another vendor
      404:
        description: Deal not found
    """
    store = LedgerStore()
    deal_id = parse_int(request.args.get("deal_id"), "deal_id")
    if is_admin():
        vendor_id = parse_int(request.args.get("vendor_id"), "vendor_id")
    else:
        vendor_id = current_vendor(store).id
        if deal_id is not None:
            deal = store.require(FlashDeal, deal_id, "Flash deal")
            if deal.vendor_id != vendor_id:
                raise AuthError("You can only view your own flash deals", status_code=403)
    analytics = flash_deal_service.get_flash_deal_analytics(
        deal_id=deal_id, vendor_id=vendor_id, store=store
    )
    return jsonify(analytics), 200
