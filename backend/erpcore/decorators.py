# Overview: Request decorators for API routes.

from functools import wraps

from flask import g, jsonify, request

ACTOR_HEADER = "X-Actor-Id"
MAX_ACTOR_LENGTH = 64


def require_actor(f):
    """
    Require an acting user id and expose it as g.actor.

    Authentication happens upstream (gateway / auth service); this core only
    records WHO acted so that logs, movements and approvals are attributable.

    Returns 401 if the X-Actor-Id header is missing or blank.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        actor = (request.headers.get(ACTOR_HEADER) or "").strip()
        if not actor:
            return jsonify({"error": f"{ACTOR_HEADER} header required", "code": "actor_required"}), 401
        if len(actor) > MAX_ACTOR_LENGTH:
            return jsonify({"error": f"{ACTOR_HEADER} is too long", "code": "actor_invalid"}), 400

        g.actor = actor
        return f(*args, **kwargs)

    return decorated_function


def json_body() -> dict:
    """Request JSON as a dict; an empty or non-object body becomes {}."""
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}
