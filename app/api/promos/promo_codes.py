# Promo code admin and validation
from flask import Blueprint, g, jsonify

from app.errors import ValidationError
from app.identity import current_customer, identity_required
from app.models import serialize_promo
from app.services import pricing_service, promo_service
from app.store import LedgerStore
from app.utils.request_parsing import json_body, parse_datetime, parse_int, parse_int_list

promos_bp = Blueprint("promos", __name__, url_prefix="/api/promos")


@promos_bp.route("", methods=["POST"])
@identity_required("ADMIN")
def create_promo():
    """
    Create a promo code.
    ---
    tags:
      - Promos
    parameters:
      - in: body
        name: body
        required: true
        schema:
          type: object
          required: [code, type, value, usage_limit, start_date, end_date]
          properties:
            code:
              type: string
              example: SAVE50
            type:
              type: string
              enum: [percentage, fixed, first_time]
            value:
              type: number
            min_order_value:
              type: number
            max_discount:
              type: number
            usage_limit:
              type: integer
            user_limit:
              type: integer
            start_date:
              type: string
              format: date-time
            end_date:
              type: string
              format: date-time
            applicable_services:
              type: array
              items:
                type: integer
            applicable_vendors:
              type: array
              items:
                type: integer
    responses:
      201:
        description: Promo code created
      409:
        description: Code already exists
    """
    data = json_body("code", "type", "value", "usage_limit", "start_date", "end_date")
    promo = promo_service.create_promo_code(
        code=data["code"],
        type=data["type"],
        value=data["value"],
        usage_limit=parse_int(data["usage_limit"], "usage_limit"),
        start_date=parse_datetime(data["start_date"], "start_date"),
        end_date=parse_datetime(data["end_date"], "end_date"),
        min_order_value=data.get("min_order_value") or 0,
        max_discount=data.get("max_discount"),
        user_limit=parse_int(data.get("user_limit"), "user_limit", default=1),
        applicable_services=parse_int_list(data.get("applicable_services"), "applicable_services"),
        applicable_vendors=parse_int_list(data.get("applicable_vendors"), "applicable_vendors"),
        description=data.get("description"),
        created_by=g.identity["sub"],
    )
    return jsonify({"status": "success", "promo": serialize_promo(promo)}), 201


@promos_bp.route("/welcome", methods=["POST"])
@identity_required("ADMIN")
def create_welcome_promo():
    """
    Create the WELCOME200 code: 200 off a first booking of at least 500.
    ---
    tags:
      - Promos
    responses:
      201:
        description: Promo code created
    """
    promo = promo_service.create_first_time_user_discount()
    return jsonify({"status": "success", "promo": serialize_promo(promo)}), 201


@promos_bp.route("/validate", methods=["POST"])
@identity_required("CUSTOMER")
def validate_promo():
    """
    Check a code against a prospective order. Always 200; see is_valid/reason.
    ---
    tags:
      - Promos
    parameters:
      - in: body
        name: body
        required: true
        schema:
          type: object
          required: [code, vendor_id, service_id]
          properties:
            code:
              type: string
            vendor_id:
              type: integer
            service_id:
              type: integer
            add_on_service_ids:
              type: array
              items:
                type: integer
    responses:
      200:
        description: Validation result with the discount it would give
    """
    data = json_body("code", "vendor_id", "service_id")
    store = LedgerStore()
    customer = current_customer(store)
    vendor_id = parse_int(data["vendor_id"], "vendor_id")
    _, service = pricing_service.load_service(
        vendor_id, parse_int(data["service_id"], "service_id"), store
    )
    breakdown = pricing_service.compose_price(
        service, parse_int_list(data.get("add_on_service_ids"), "add_on_service_ids"), store
    )
    result = promo_service.validate_and_apply_promo_code(
        data["code"], customer.id, breakdown.subtotal, [service.id], vendor_id, store=store
    )
    return jsonify({**result.to_dict(), "order_value": float(breakdown.subtotal)}), 200


@promos_bp.route("/active", methods=["GET"])
def active_promos():
    """
    Promo codes currently inside their window.
    ---
    tags:
      - Promos
    responses:
      200:
        description: Active promo codes
    """
    promos = promo_service.get_active_promo_codes()
    return jsonify({"promos": [serialize_promo(p) for p in promos]}), 200


@promos_bp.route("/<int:promo_id>/deactivate", methods=["POST"])
@identity_required("ADMIN")
def deactivate_promo(promo_id):
    """
    Stop a promo code from being accepted.
    ---
    tags:
      - Promos
    parameters:
      - name: promo_id
        in: path
        type: integer
        required: true
    responses:
      200:
        description: Promo code deactivated
      404:
        description: Promo code not found
    """
    promo = promo_service.deactivate_promo_code(promo_id)
    return jsonify({"status": "success", "promo": serialize_promo(promo)}), 200


@promos_bp.route("/<int:promo_id>/analytics", methods=["GET"])
@identity_required("ADMIN")
def promo_analytics(promo_id):
    """
    Usage count, remaining uses and total discount given for a code.
    ---
    tags:
      - Promos
    parameters:
      - name: promo_id
        in: path
        type: integer
        required: true
    responses:
      200:
        description: Promo analytics
      404:
        description: Promo code not found
    """
    if promo_id <= 0:
        raise ValidationError("promo_id must be positive")
    return jsonify(promo_service.get_promo_code_analytics(promo_id)), 200
