# Overview: Request authentication and role-gate decorators for API routes.

from functools import wraps
from flask import current_app, g, jsonify, request

from .roles import Role, has_min_role
from .services import session_service


def _is_authenticated() -> bool:
    return hasattr(g, 'current_user') and hasattr(g, 'identity')


def require_auth(f):
    """
    Require a bearer token and establish the caller's identity.

    Sets on Flask g:
    - g.current_user: the authenticated User
    - g.identity: session_service.Identity (user_id, role, station_id)

    Returns 401 if the header is missing, or the token is unknown, expired,
    revoked, or belongs to a deactivated user.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        auth_header = request.headers.get("Authorization")

        if not auth_header or not auth_header.startswith("Bearer "):
            return jsonify({"error": "Authentication required", "code": "UNAUTHENTICATED"}), 401

        token = auth_header.split(" ", 1)[1]
        context = session_service.validate_session(token)

        if not context:
            return jsonify({"error": "Invalid or expired token", "code": "UNAUTHENTICATED"}), 401

        g.current_user = context.user
        g.identity = context.identity

        return f(*args, **kwargs)

    return decorated_function


def require_min_role(required: Role):
    """
    Require the caller's role to rank at or above `required`.

    Must be stacked under @require_auth.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not _is_authenticated():
                return jsonify({"error": "Authentication required", "code": "UNAUTHENTICATED"}), 401

            if not has_min_role(g.identity.role, required):
                current_app.logger.info(
                    "Role gate denied user %s (%s) on %s; requires %s",
                    g.identity.user_id, g.identity.role.value, request.path, required.value,
                )
                return jsonify({
                    "error": "Permission denied",
                    "code": "PERMISSION_DENIED",
                    "required_role": required.value,
                }), 403

            return f(*args, **kwargs)

        return decorated_function
    return decorator
