"""Auth blueprint — /auth/*

Open registration, login, logout. New accounts start on the free plan.
"""

from flask import (
    Blueprint,
    flash,
    redirect,
    render_template,
    request,
    url_for,
)
from flask_login import current_user, login_user, logout_user
from werkzeug.security import check_password_hash, generate_password_hash

from statussaas.extensions import db, limiter
from statussaas.models.activity import log_activity
from statussaas.models.user import User

auth_bp = Blueprint("auth", __name__, url_prefix="/auth")


# ──────────────────────────────────────────────
# GET/POST /auth/register
# ──────────────────────────────────────────────

@auth_bp.route("/register", methods=["GET", "POST"])
@limiter.limit("10 per minute", methods=["POST"])
def register():
    """GET: show register form. POST: create the user and log them in."""
    if current_user.is_authenticated:
        return redirect(url_for("dashboard.index"))

    if request.method == "POST":
        email = request.form.get("email", "").lower().strip()
        password = request.form.get("password", "")
        confirm = request.form.get("confirm_password", "")
        full_name = request.form.get("full_name", "").strip()

        # --- Validation ---
        errors = []

        if not email or "@" not in email:
            errors.append("A valid email is required.")
        if not password:
            errors.append("Password is required.")
        elif len(password) < 8:
            errors.append("Password must be at least 8 characters.")
        elif confirm and confirm != password:
            errors.append("Passwords do not match.")
        if not full_name:
            errors.append("Full name is required.")

        if email and User.query.filter_by(email=email).first():
            errors.append("An account with this email already exists.")

        if errors:
            for err in errors:
                flash(err, "error")
            return render_template(
                "auth/register.html", email=email, full_name=full_name
            )

        user = User(
            email=email,
            password_hash=generate_password_hash(password),
            full_name=full_name,
        )
        db.session.add(user)
        db.session.flush()

        log_activity(user.id, "user.registered", f"{full_name} signed up", {"email": email})
        db.session.commit()

        login_user(user)

        flash("Welcome! Your account has been created.", "success")
        return redirect(url_for("dashboard.index"))

    return render_template("auth/register.html")


# ──────────────────────────────────────────────
# GET/POST /auth/login?next=/pages
# ──────────────────────────────────────────────

@auth_bp.route("/login", methods=["GET", "POST"])
@limiter.limit("15 per minute", methods=["POST"])
def login():
    """Email + password login; honours a relative `next` URL."""
    if current_user.is_authenticated:
        return redirect(url_for("dashboard.index"))

    if request.method == "POST":
        email = request.form.get("email", "").lower().strip()
        password = request.form.get("password", "")
        remember = bool(request.form.get("remember"))

        if not email or not password:
            flash("Email and password are required.", "error")
            return render_template(
                "auth/login.html",
                email=email,
                next_url=request.form.get("next", ""),
            )

        user = User.query.filter_by(email=email).first()

        if user is None or not check_password_hash(user.password_hash, password):
            flash("Invalid email or password.", "error")
            return render_template(
                "auth/login.html",
                email=email,
                next_url=request.form.get("next", ""),
            )

        if not user.is_active:
            flash("Your account has been deactivated.", "error")
            return render_template(
                "auth/login.html",
                email=email,
                next_url=request.form.get("next", ""),
            )

        login_user(user, remember=remember)

        next_url = request.form.get("next") or request.args.get("next", "/")

        # Only relative redirects (no open redirect, no scheme-relative //host).
        if not next_url.startswith("/") or next_url.startswith("//"):
            next_url = "/"

        flash("Logged in successfully.", "success")
        return redirect(next_url)

    return render_template(
        "auth/login.html",
        next_url=request.args.get("next", ""),
    )


# ──────────────────────────────────────────────
# GET /auth/logout
# ──────────────────────────────────────────────

@auth_bp.route("/logout")
def logout():
    """Log out and redirect to login page."""
    logout_user()
    flash("You have been logged out.", "info")
    return redirect(url_for("auth.login"))
