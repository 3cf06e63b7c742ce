"""
Custom route decorators for access control.

- admin_required: ensures user is logged in AND has the admin role.
- api_login_required: like login_required, but answers JSON endpoints with
  a 401 body instead of redirecting to the login form.
"""

from functools import wraps

from flask import abort, jsonify
from flask_login import current_user, login_required


def admin_required(f):
    """Require login + admin role."""

    @wraps(f)
    @login_required
    def decorated(*args, **kwargs):
        if not current_user.is_admin:
            abort(403)
        return f(*args, **kwargs)

    return decorated


def api_login_required(f):
    """Require login; 401 JSON for anonymous callers."""

    @wraps(f)
    def decorated(*args, **kwargs):
        if not current_user.is_authenticated:
            return jsonify({"error": "Authentication required"}), 401
        return f(*args, **kwargs)

    return decorated


def api_admin_required(f):
    """Require an admin session; JSON errors instead of error pages."""

    @wraps(f)
    @api_login_required
    def decorated(*args, **kwargs):
        if not current_user.is_admin:
            return jsonify({"error": "Admin access required"}), 403
        return f(*args, **kwargs)

    return decorated
