from functools import wraps

from flask import current_app, jsonify, request, session

from services.admin import Operator
from services.auth_flow import has_role
from services.session_store import CookieSessionStore
from services.signals import ClientInfo, IpApiSignalSource, Origin, StaticSignalSource
from utils.results import Failure

STATUS = {
    Failure.VALIDATION: 400,
    Failure.DUPLICATE_EMAIL: 409,
    Failure.INVALID_CREDENTIALS: 401,
    Failure.CODE_MISMATCH: 401,
    Failure.NOT_VERIFIED: 403,
    Failure.ACCOUNT_DISABLED: 403,
    Failure.RATE_LIMITED: 429,
    Failure.ACCOUNT_LOCKED: 423,
    Failure.OTP_EXPIRED: 410,
    Failure.OTP_ATTEMPTS_EXCEEDED: 429,
    Failure.POLICY_BLOCKED: 403,
    Failure.NOT_FOUND: 404,
    Failure.NO_PENDING_CHALLENGE: 409,
}


def engine():
    return current_app.extensions["zerotrust"]


def store() -> CookieSessionStore:
    return CookieSessionStore(session)


def request_source():
    ip = request.remote_addr or "0.0.0.0"
    user_agent = request.headers.get("User-Agent", "")
    url = current_app.config.get("GEOIP_URL")
    if not url:
        return StaticSignalSource(Origin.unknown(ip), ClientInfo.from_user_agent(user_agent))
    return IpApiSignalSource(ip, user_agent, url=url, timeout=current_app.config["GEOIP_TIMEOUT"])


def respond(result, status: int = 200, **extra):
    body = result.to_dict()
    body.update(extra)
    if result.ok:
        return jsonify(body), status
    return jsonify(body), STATUS.get(result.failure, 400)


def json_body() -> dict:
    """The request's JSON object; anything else (missing, malformed, a list) reads as empty."""
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def text(data: dict, key: str, default: str = "") -> str:
    value = data.get(key, default)
    return value if isinstance(value, str) else default


def bearer_token() -> str:
    return request.headers.get("Authorization", "").replace("Bearer ", "")


def require_roles(*roles):
    """Resolve the bearer token and check the caller's role; passes ``operator`` to the view."""

    def decorator(view):
        @wraps(view)
        def wrapper(*args, **kwargs):
            found = engine().auth.authenticate_token(bearer_token())
            if not found:
                return jsonify({"error": "unauthorized", "message": found.message}), 401
            account, _ = found.value
            if not has_role(account.role, roles):
                return jsonify({"error": "forbidden", "message": "Insufficient role"}), 403
            operator = Operator(account_id=account.id, email=account.email, origin=request_source().current_origin())
            return view(*args, operator=operator, **kwargs)

        return wrapper

    return decorator
