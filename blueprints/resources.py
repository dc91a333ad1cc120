from flask import Blueprint, jsonify

from blueprints.common import bearer_token, engine

bp = Blueprint("res", __name__)


@bp.get("/me")
def me():
    found = engine().auth.authenticate_token(bearer_token())
    if not found:
        return jsonify({"error": "unauthorized", "message": found.message}), 401
    account, session = found.value
    device = engine().devices.get(session.device_id) if session.device_id else None
    return jsonify({
        "id": account.id,
        "email": account.email,
        "role": account.role,
        "trusted_device": bool(device and device.approved),
    })
