from flask import Blueprint, jsonify

from blueprints.common import engine, json_body, request_source, respond, store, text
from services.signals import DeviceClaim, Posture

bp = Blueprint("auth", __name__, url_prefix="/auth")


@bp.post("/register")
def register():
    data = json_body()
    ctx = store().load()
    result, ctx = engine().auth.register(
        ctx, text(data, "full_name"), text(data, "email"), text(data, "mobile"), text(data, "password"),
        request_source(),
    )
    store().save(ctx)
    if not result:
        return respond(result)
    return respond(result, 201, account_id=result.value.id)


@bp.post("/login")
def login():
    data = json_body()
    result, ctx = engine().auth.login(store().load(), text(data, "email"), text(data, "password"), request_source())
    store().save(ctx)
    return respond(result, needs_channel=bool(result))


@bp.post("/otp/send")
def send_otp():
    data = json_body()
    result, ctx = engine().auth.send_login_otp(store().load(), text(data, "channel"), request_source())
    store().save(ctx)
    return respond(result)


@bp.post("/otp/resend")
def resend_otp():
    result, ctx = engine().auth.resend_otp(store().load(), request_source())
    store().save(ctx)
    return respond(result)


@bp.post("/otp/verify")
def verify_otp():
    data = json_body()
    claim = DeviceClaim(fingerprint=text(data, "fingerprint"), posture=Posture.from_dict(data.get("posture")))
    result, ctx = engine().auth.verify_otp(store().load(), text(data, "code"), claim, request_source())
    store().save(ctx)
    policy = ctx.last_policy or ctx.blocked
    extra = {"policy": policy.to_dict()} if policy else {}
    if result:
        extra["access"] = ctx.token
    return respond(result, **extra)


@bp.get("/blocked")
def blocked():
    ctx = store().load()
    return jsonify({"blocked": ctx.blocked.to_dict() if ctx.blocked else None})


@bp.get("/session")
def current_session():
    ctx = engine().auth.restore(store().load())
    store().save(ctx)
    return jsonify({
        "authenticated": ctx.authenticated,
        "pending": ctx.pending.purpose if ctx.pending else None,
        "email": ctx.email or None,
        "role": ctx.role or None,
        "device_id": ctx.device_id,
        "last_policy": ctx.last_policy.to_dict() if ctx.last_policy else None,
    })


@bp.post("/device/request-approval")
def request_device_approval():
    ctx = engine().auth.restore(store().load())
    store().save(ctx)
    result = engine().auth.request_device_approval(ctx, request_source())
    return respond(result)


@bp.post("/logout")
def logout():
    result, _ = engine().auth.logout(store().load(), request_source())
    store().clear()
    return respond(result)
