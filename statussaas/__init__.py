import os
import logging

import click
from flask import Flask, render_template
from werkzeug.security import generate_password_hash

from statussaas.config import config_by_name
from statussaas.extensions import db, migrate, login_manager, csrf, limiter


def create_app(config_name=None):
    """Application factory."""

    if config_name is None:
        config_name = os.environ.get("FLASK_ENV", "development")

    app = Flask(__name__)
    app.config.from_object(config_by_name[config_name])

    # --- Validate required env vars (skip in testing) ---
    if config_name != "testing":
        try:
            config_by_name[config_name].validate()
        except RuntimeError as e:
            app.logger.warning(f"Config validation: {e}")

    # --- Init extensions ---
    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)
    csrf.init_app(app)
    limiter.init_app(app)

    # --- Import models so Alembic can discover them ---
    with app.app_context():
        from statussaas import models  # noqa: F401

    # --- Register blueprints ---
    from statussaas.blueprints.auth import auth_bp
    from statussaas.blueprints.dashboard import dashboard_bp
    from statussaas.blueprints.pages import pages_bp
    from statussaas.blueprints.public import public_bp
    from statussaas.blueprints.settings import settings_bp
    from statussaas.blueprints.cloudflare import cloudflare_bp
    from statussaas.blueprints.billing import billing_bp
    from statussaas.blueprints.incidents import incidents_bp
    from statussaas.blueprints.api import api_bp
    from statussaas.blueprints.admin import admin_bp
    from statussaas.blueprints.webhooks import webhooks_bp

    app.register_blueprint(auth_bp)
    app.register_blueprint(dashboard_bp)
    app.register_blueprint(pages_bp)
    app.register_blueprint(public_bp)
    app.register_blueprint(settings_bp)
    app.register_blueprint(cloudflare_bp)
    app.register_blueprint(billing_bp)
    app.register_blueprint(incidents_bp)
    app.register_blueprint(api_bp)
    app.register_blueprint(admin_bp)
    app.register_blueprint(webhooks_bp)

    # Stripe signs the raw body; no CSRF token on webhooks
    csrf.exempt(webhooks_bp)
    # Public view tracking is hit by anonymous visitors' browsers
    csrf.exempt(public_bp)
    # JSON endpoints called from fetch()
    csrf.exempt(api_bp)
    csrf.exempt(incidents_bp)

    # --- Error handlers ---
    @app.errorhandler(403)
    def forbidden(e):
        return render_template("errors/403.html"), 403

    @app.errorhandler(404)
    def not_found(e):
        return render_template("errors/404.html"), 404

    @app.errorhandler(500)
    def server_error(e):
        return render_template("errors/500.html"), 500

    # --- CLI commands ---
    register_cli(app)

    # --- Security headers ---
    @app.after_request
    def add_security_headers(response):
        """Add security headers to every response."""
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Permissions-Policy"] = (
            "camera=(), microphone=(), geolocation=(), payment=(self)"
        )
        response.headers["Content-Security-Policy"] = (
            "default-src 'self'; "
            "script-src 'self' 'unsafe-inline' https://js.stripe.com; "
            "style-src 'self' 'unsafe-inline' https://fonts.googleapis.com; "
            "img-src 'self' data: https:; "
            "font-src 'self' https://fonts.gstatic.com; "
            "connect-src 'self' https://api.stripe.com; "
            "frame-src https://js.stripe.com https://hooks.stripe.com; "
            "base-uri 'self'; "
            "form-action 'self' https://checkout.stripe.com https://billing.stripe.com; "
            "frame-ancestors 'none';"
        )
        if not app.debug:
            response.headers["Strict-Transport-Security"] = (
                "max-age=31536000; includeSubDomains"
            )
        return response

    # --- Logging ---
    if not app.debug:
        logging.basicConfig(level=logging.INFO)

    return app


DEFAULT_PLANS = [
    {
        "code": "free",
        "name": "Free",
        "description": "One maintenance page to get started.",
        "price": 0,
        "interval": "forever",
        "stripe_price_id": "price_free",
        "page_limit": 1,
        "views_per_page": 1000,
        "features": ["1 maintenance page", "1,000 views per page", "Basic analytics"],
    },
    {
        "code": "basic",
        "name": "Basic",
        "description": "For small teams running a few sites.",
        "price": 9.99,
        "interval": "month",
        "stripe_price_id": "price_basic",
        "page_limit": 5,
        "views_per_page": 10000,
        "features": ["5 maintenance pages", "10,000 views per page", "Cloudflare edge deploys"],
    },
    {
        "code": "pro",
        "name": "Pro",
        "description": "Incident management and more pages.",
        "price": 29.99,
        "interval": "month",
        "stripe_price_id": "price_pro",
        "page_limit": 20,
        "views_per_page": 50000,
        "features": [
            "20 maintenance pages",
            "50,000 views per page",
            "Incident management",
            "Post-mortems",
        ],
    },
    {
        "code": "enterprise",
        "name": "Enterprise",
        "description": "High-volume status pages.",
        "price": 99.99,
        "interval": "month",
        "stripe_price_id": "price_enterprise",
        "page_limit": 100,
        "views_per_page": 100000,
        "features": ["100 maintenance pages", "100,000 views per page", "Priority support"],
    },
]


def register_cli(app):
    """Register custom CLI commands with the Flask app."""

    @app.cli.command("seed-admin")
    @click.option("--email", default="admin@statussaas.local", help="Admin email")
    @click.option("--password", default="admin123", help="Admin password")
    @click.option("--name", default="Admin", help="Admin full name")
    def seed_admin(email, password, name):
        """Create (or promote) an admin user.

        Usage:
            flask seed-admin
            flask seed-admin --email admin@example.com --password s3cret
        """
        from statussaas.models.user import User

        email = email.lower().strip()
        existing = User.query.filter_by(email=email).first()
        if existing:
            if existing.role != "admin":
                existing.role = "admin"
                db.session.commit()
                click.echo(f"Promoted existing user to admin: {email}")
            else:
                click.echo(f"Admin user already exists: {email}")
            return

        admin = User(
            email=email,
            password_hash=generate_password_hash(password),
            full_name=name,
            role="admin",
        )
        db.session.add(admin)
        db.session.commit()
        click.echo(f"Created admin user: {email} / {password}")

    @app.cli.command("seed-plans")
    def seed_plans():
        """Create the default plan catalog (existing codes are left alone)."""
        from statussaas.models.plan import SubscriptionPlan

        created = 0
        for spec in DEFAULT_PLANS:
            if SubscriptionPlan.query.filter_by(code=spec["code"]).first():
                click.echo(f"  {spec['code']}: already exists")
                continue
            db.session.add(SubscriptionPlan(**spec))
            created += 1
            click.echo(f"  {spec['code']}: created")
        db.session.commit()
        click.echo(f"{created} plan(s) created.")

    @app.cli.command("publish-scheduled")
    def publish_scheduled():
        """Publish every scheduled page whose time has passed."""
        from statussaas.services.page_service import publish_scheduled_pages

        pages = publish_scheduled_pages()
        db.session.commit()
        for page in pages:
            click.echo(f"  published {page.title} ({page.domain})")
        click.echo(f"{len(pages)} page(s) published.")
