# Vendor earnings, payouts, refunds and platform revenue
from flask import Blueprint, jsonify, request

from app.identity import current_vendor, identity_required
from app.models import serialize_transaction
from app.services import commission_service
from app.utils.request_parsing import json_body, parse_datetime, parse_int

settlements_bp = Blueprint("settlements", __name__, url_prefix="/api/settlements")


@settlements_bp.route("/earnings", methods=["GET"])
@identity_required("VENDOR")
def my_earnings():
    """
    Earnings, refunds and payouts for the calling vendor.
    ---
    tags:
      - Settlements
    responses:
      200:
        description: Ledger summary with transactions, newest first
      403:
        description: Caller has no vendor profile
    """
    vendor = current_vendor()
    return jsonify(commission_service.get_vendor_earnings(vendor.id)), 200


@settlements_bp.route("/vendors/<int:vendor_id>/earnings", methods=["GET"])
@identity_required("ADMIN")
def vendor_earnings(vendor_id):
    """
    Earnings summary for any vendor (admin).
    ---
    tags:
      - Settlements
    parameters:
      - name: vendor_id
        in: path
        type: integer
        required: true
    responses:
      200:
        description: Ledger summary with transactions, newest first
      404:
        description: Vendor not found
    """
    return jsonify(commission_service.get_vendor_earnings(vendor_id)), 200


@settlements_bp.route("/payouts", methods=["POST"])
@identity_required("ADMIN")
def create_payout():
    """
    Pay out part of a vendor's pending balance.
    ---
    tags:
      - Settlements
    parameters:
      - in: body
        name: body
        required: true
        schema:
          type: object
          required: [vendor_id, amount]
          properties:
            vendor_id:
              type: integer
            amount:
              type: number
            payment_method:
              type: string
              default: bank_transfer
    responses:
      201:
        description: Payout transaction created with status pending
      400:
        description: Amount is not positive or exceeds pending payouts
    """
    data = json_body("vendor_id", "amount")
    txn = commission_service.process_payout(
        parse_int(data["vendor_id"], "vendor_id"),
        data["amount"],
        payment_method=data.get("payment_method") or "bank_transfer",
    )
    return jsonify({"status": "success", "transaction": serialize_transaction(txn)}), 201


@settlements_bp.route("/payouts/<int:transaction_id>/complete", methods=["POST"])
@identity_required("ADMIN")
def complete_payout(transaction_id):
    """
    Mark a pending payout as sent.
    ---
    tags:
      - Settlements
    parameters:
      - name: transaction_id
        in: path
        type: integer
        required: true
    responses:
      200:
        description: Payout completed
      409:
        description: Payout is not pending
    """
    txn = commission_service.complete_payout(transaction_id)
    return jsonify({"status": "success", "transaction": serialize_transaction(txn)}), 200


@settlements_bp.route("/payouts/<int:transaction_id>/fail", methods=["POST"])
@identity_required("ADMIN")
def fail_payout(transaction_id):
    """
    Mark a pending payout as failed and return the amount to the vendor's balance.
    ---
    tags:
      - Settlements
    parameters:
      - name: transaction_id
        in: path
        type: integer
        required: true
    responses:
      200:
        description: Payout failed, balance restored
      409:
        description: Payout is not pending
    """
    txn = commission_service.fail_payout(transaction_id)
    return jsonify({"status": "success", "transaction": serialize_transaction(txn)}), 200


@settlements_bp.route("/refunds", methods=["POST"])
@identity_required("ADMIN")
def create_refund():
    """
    Refund a paid booking (all or part of its final price) and cancel it.
    ---
    tags:
      - Settlements
    parameters:
      - in: body
        name: body
        required: true
        schema:
          type: object
          required: [booking_id]
          properties:
            booking_id:
              type: integer
            amount:
              type: number
              description: Defaults to the booking's final price
            reason:
              type: string
    responses:
      201:
        description: Refund transaction
      400:
        description: Amount out of range
      409:
        description: Booking not paid, already refunded or completed
    """
    data = json_body("booking_id")
    txn = commission_service.process_refund(
        parse_int(data["booking_id"], "booking_id"),
        data.get("amount"),
        data.get("reason") or "Refund",
    )
    return jsonify({"status": "success", "transaction": serialize_transaction(txn)}), 201


@settlements_bp.route("/platform-revenue", methods=["GET"])
@identity_required("ADMIN")
def platform_revenue():
    """
    Commission collected by the platform, net of refunds.
    ---
    tags:
      - Settlements
    parameters:
      - name: start
        in: query
        type: string
      - name: end
        in: query
        type: string
    responses:
      200:
        description: Revenue totals for the window
    """
    revenue = commission_service.get_platform_revenue(
        start=parse_datetime(request.args.get("start"), "start"),
        end=parse_datetime(request.args.get("end"), "end"),
    )
    return jsonify(revenue), 200
