"""Actor resolution decorators for role-based access control."""
from functools import wraps

from flask import current_app, g, request

from utils.workflow import AuthorizationError, ValidationError, normalize_role


def _actor_from_request():
    payload = request.get_json(silent=True) or {}
    actor_id = (
        payload.get("actor_id")
        or payload.get("actorId")
        or request.headers.get("X-Actor-Id")
        or ""
    )
    actor_role = (
        payload.get("actor_role")
        or payload.get("actorRole")
        or request.headers.get("X-Actor-Role")
        or ""
    )
    return str(actor_id).strip(), str(actor_role).strip()


def actor_required(*roles):
    """Resolve the acting user into ``g.actor_id``/``g.actor_role`` and enforce roles.

    Roles are compared after normalization, so ``ward_admin`` satisfies ``official``.
    """
    allowed = {r.lower() for r in roles}

    def decorator(view_func):
        @wraps(view_func)
        def wrapped(*args, **kwargs):
            actor_id, raw_role = _actor_from_request()
            if not actor_id or not raw_role:
                raise ValidationError("actor_id and actor_role are required", code="MISSING_ACTOR")
            role = normalize_role(raw_role)
            if role == "system" or (allowed and role not in allowed):
                current_app.logger.warning(
                    "Unauthorized role access attempt",
                    extra={"actor_id": actor_id, "role": raw_role, "path": request.path},
                )
                raise AuthorizationError(f"Role {raw_role} is not allowed to perform this action", code="ROLE_NOT_ALLOWED")
            g.actor_id = actor_id
            g.actor_role = role
            g.actor_raw_role = raw_role
            return view_func(*args, **kwargs)

        return wrapped

    return decorator
