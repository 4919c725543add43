# loyalty.py
from flask import Blueprint, jsonify, request

from app.identity import current_customer, identity_required
from app.services import loyalty_service
from app.store import LedgerStore
from app.utils.request_parsing import parse_datetime

loyalty_bp = Blueprint("loyalty", __name__, url_prefix="/api/loyalty")


@loyalty_bp.route("/balance", methods=["GET"])
@identity_required("CUSTOMER")
def get_balance():
    """
    Spendable points for the calling customer.
    ---
    tags:
      - Loyalty
    responses:
      200:
        description: Current balance
        schema:
          type: object
          properties:
            available_points:
              type: integer
            redemption_value:
              type: number
            min_redemption_points:
              type: integer
            can_redeem:
              type: boolean
    """
    store = LedgerStore()
    customer = current_customer(store)
    points = loyalty_service.get_available_points(customer.id, store=store)
    return jsonify(
        {
            "customer_id": customer.id,
            "available_points": points,
            "redemption_value": float(loyalty_service.calculate_redemption_value(points)),
            "min_redemption_points": loyalty_service.min_redemption_points(),
            "can_redeem": loyalty_service.can_redeem_points(points),
        }
    ), 200


@loyalty_bp.route("/history", methods=["GET"])
@identity_required("CUSTOMER")
def get_history():
    """
    Every loyalty entry for the calling customer, with earned/redeemed/expired totals.
    ---
    tags:
      - Loyalty
    responses:
      200:
        description: Entries and summary
    """
    store = LedgerStore()
    customer = current_customer(store)
    return jsonify(loyalty_service.get_loyalty_history(customer.id, store=store)), 200


@loyalty_bp.route("/analytics", methods=["GET"])
@identity_required("ADMIN")
def get_analytics():
    """
    Programme-wide points issued, redeemed and expired.
    ---
    tags:
      - Loyalty
    parameters:
      - name: start
        in: query
        type: string
      - name: end
        in: query
        type: string
    responses:
      200:
        description: Loyalty totals
    """
    analytics = loyalty_service.get_loyalty_analytics(
        start=parse_datetime(request.args.get("start"), "start"),
        end=parse_datetime(request.args.get("end"), "end"),
    )
    return jsonify(analytics), 200
