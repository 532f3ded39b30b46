# Overview: Request decorators for API routes.

from functools import wraps
from flask import request, jsonify, g

from .extensions import db
from .models import User

ACTOR_HEADER = "X-Actor-Id"


def require_actor(f):
    """
    Require an acting user for mutating requests.

    Authentication happens upstream; the gateway forwards the authenticated
    user id in the X-Actor-Id header. Sets:
    - g.actor: the active User
    - g.actor_id: its id (written to created_by / approved_by / user_id columns)

    Returns 401 if the header is missing or malformed, or names an unknown
    or inactive user.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        raw = (request.headers.get(ACTOR_HEADER) or "").strip()
        if not raw:
            return jsonify({"error": "Actor required", "error_type": "Unauthorized"}), 401
        if not raw.isdigit():
            return jsonify({"error": "Invalid actor id", "error_type": "Unauthorized"}), 401

        actor = db.session.get(User, int(raw))
        if actor is None or not actor.is_active:
            return jsonify({"error": "Unknown or inactive actor", "error_type": "Unauthorized"}), 401

        g.actor = actor
        g.actor_id = actor.id
        return f(*args, **kwargs)

    return decorated_function
