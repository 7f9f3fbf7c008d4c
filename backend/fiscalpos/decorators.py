# Overview: Request decorators for API routes.

from functools import wraps
from flask import request, jsonify, g

from .extensions import db
from .models import User


def require_actor(f):
    """
    Resolve the acting user for the request.

    Login and sessions live in front of this service; the caller forwards the
    authenticated user id in X-Actor-Id. Sets g.current_user.

    Returns 401 if the header is missing or malformed, or the user is unknown
    or deactivated.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        raw = request.headers.get("X-Actor-Id", "").strip()
        if not raw.isdigit():
            return jsonify({"error": "Authentication required"}), 401

        user = db.session.query(User).filter_by(id=int(raw)).first()
        if not user or not user.is_active:
            return jsonify({"error": "Unknown or inactive user"}), 401

        g.current_user = user
        return f(*args, **kwargs)

    return decorated_function
