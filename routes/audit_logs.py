import json

from flask import Blueprint, jsonify, request

from models.audit_log import AuditLog
from security.rbac import require_roles

audit_bp = Blueprint("audit", __name__, url_prefix="/admin")


def _metadata(raw):
    if not raw:
        return None
    try:
        return json.loads(raw)
    except ValueError:
        return raw


@audit_bp.get("/audit-logs")
@require_roles("ADMIN")
def list_audit_logs():
    limit = request.args.get("limit", type=int) or 200
    limit = max(1, min(limit, 500))

    action = request.args.get("action")
    actor_id = request.args.get("actor_id", type=int)
    entity = request.args.get("entity")

    q = AuditLog.query
    if action:
        q = q.filter(AuditLog.action == action)
    if actor_id is not None:
        q = q.filter(AuditLog.actor_id == actor_id)
    if entity:
        q = q.filter(AuditLog.entity == entity)

    rows = q.order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).limit(limit).all()
    return jsonify(success=True, data=[
        {
            "id": r.id,
            "created_at": r.created_at.isoformat() if r.created_at else None,
            "actor_id": r.actor_id,
            "action": r.action,
            "entity": r.entity,
            "entity_id": r.entity_id,
            "ip": r.ip,
            "user_agent": r.user_agent,
            "metadata": _metadata(r.metadata_json),
        }
        for r in rows
    ]), 200
