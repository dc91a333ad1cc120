from flask import Blueprint, jsonify, request

from blueprints.common import engine, json_body, require_roles, respond, text
from models import Role

bp = Blueprint("admin", __name__, url_prefix="/admin")

ADMINS = (Role.ADMIN, Role.SUPERADMIN)
AUDITORS = (Role.IT, Role.ADMIN, Role.SUPERADMIN)


@bp.get("/users")
@require_roles(*ADMINS)
def users_list(operator):
    return jsonify([a.to_dict() for a in engine().admin.list_accounts()])


@bp.post("/users")
@require_roles(Role.SUPERADMIN)
def users_create(operator):
    data = json_body()
    result = engine().admin.create_account(
        operator, text(data, "full_name"), text(data, "email"), text(data, "mobile"), text(data, "password"),
        text(data, "role", Role.USER.value),
    )
    if not result:
        return respond(result)
    return respond(result, 201, user=result.value.to_dict())


@bp.patch("/users/<int:account_id>")
@require_roles(Role.SUPERADMIN)
def users_update(account_id, operator):
    changes = json_body()
    if not all(isinstance(v, str) for v in changes.values()):
        return jsonify({"error": "validation", "message": "Fields must be strings"}), 400
    result = engine().admin.update_account(operator, account_id, **changes)
    if not result:
        return respond(result)
    return respond(result, user=result.value.to_dict())


@bp.post("/users/<int:account_id>/role")
@require_roles(Role.SUPERADMIN)
def users_role(account_id, operator):
    data = json_body()
    result = engine().admin.change_role(operator, account_id, text(data, "role"))
    if not result:
        return respond(result)
    return respond(result, user=result.value.to_dict())


@bp.post("/users/<int:account_id>/toggle")
@require_roles(*ADMINS)
def users_toggle(account_id, operator):
    result = engine().admin.toggle_status(operator, account_id)
    if not result:
        return respond(result)
    return respond(result, user=result.value.to_dict())


@bp.post("/users/<int:account_id>/status")
@require_roles(*ADMINS)
def users_status(account_id, operator):
    data = json_body()
    result = engine().admin.set_status(operator, account_id, text(data, "status"))
    if not result:
        return respond(result)
    return respond(result, user=result.value.to_dict())


@bp.post("/users/<int:account_id>/unlock")
@require_roles(*ADMINS)
def users_unlock(account_id, operator):
    result = engine().admin.unlock(operator, account_id)
    if not result:
        return respond(result)
    return respond(result, user=result.value.to_dict())


@bp.delete("/users/<int:account_id>")
@require_roles(Role.SUPERADMIN)
def users_delete(account_id, operator):
    if account_id == operator.account_id:
        return jsonify({"error": "validation", "message": "Cannot delete your own account"}), 400
    return respond(engine().admin.delete_account(operator, account_id))


@bp.get("/devices")
@require_roles(*ADMINS)
def devices_list(operator):
    account_id = request.args.get("account_id", type=int)
    return jsonify([d.to_dict() for d in engine().admin.list_devices(account_id)])


@bp.post("/devices/<int:device_id>/approve")
@require_roles(*ADMINS)
def devices_approve(device_id, operator):
    result = engine().admin.approve_device(operator, device_id)
    if not result:
        return respond(result)
    return respond(result, device=result.value.to_dict())


@bp.delete("/devices/<int:device_id>")
@require_roles(*ADMINS)
def devices_deny(device_id, operator):
    result = engine().admin.deny_device(operator, device_id)
    if not result:
        return respond(result)
    return respond(result, device=result.value)


@bp.get("/audit")
@require_roles(*AUDITORS)
def audit_recent(operator):
    events = engine().audit.recent(
        limit=request.args.get("limit", 100, type=int),
        query=request.args.get("q"),
        outcome=request.args.get("outcome"),
    )
    return jsonify([e.to_dict() for e in events])


@bp.get("/audit/summary")
@require_roles(*AUDITORS)
def audit_summary(operator):
    return jsonify(engine().audit.summary())


@bp.get("/audit/suspicious")
@require_roles(*AUDITORS)
def audit_suspicious(operator):
    events = engine().audit.suspicious(limit=request.args.get("limit", 100, type=int))
    return jsonify([e.to_dict() for e in events])
