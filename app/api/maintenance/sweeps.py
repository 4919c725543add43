# On-demand expiry sweeps, for an external cron or an operator
from flask import Blueprint, jsonify, request

from app.identity import identity_required
from app.services import flash_deal_service, loyalty_service
from app.utils.request_parsing import parse_datetime

maintenance_bp = Blueprint("maintenance", __name__, url_prefix="/api/maintenance")


@maintenance_bp.route("/expire-points", methods=["POST"])
@identity_required("ADMIN")
def expire_points():
    """
    Expire loyalty points past their expiry date. Safe to call repeatedly.
    ---
    tags:
      - Maintenance
    parameters:
      - name: as_of
        in: query
        type: string
        format: date-time
        description: Run the sweep as of this moment (defaults to now)
    responses:
      200:
        description: Sweep summary
    """
    summary = loyalty_service.expire_old_points(now=parse_datetime(request.args.get("as_of"), "as_of"))
    return jsonify({"status": "success", **summary}), 200


@maintenance_bp.route("/expire-flash-deals", methods=["POST"])
@identity_required("ADMIN")
def expire_flash_deals():
    """
    Deactivate ended flash deals and expire their unredeemed claims.
    ---
    tags:
      - Maintenance
    parameters:
      - name: as_of
        in: query
        type: string
        format: date-time
        description: Run the sweep as of this moment (defaults to now)
    responses:
      200:
        description: Sweep summary
    """
    summary = flash_deal_service.expire_old_flash_deals(
        now=parse_datetime(request.args.get("as_of"), "as_of")
    )
    return jsonify({"status": "success", **summary}), 200
