"""User model.

Stores authentication credentials, role and the embedded subscription
state synced from Stripe. Flask-Login integration via UserMixin.
"""

import uuid
from datetime import datetime, timezone

from flask_login import UserMixin
from sqlalchemy import event, inspect

from statussaas.extensions import db


class User(UserMixin, db.Model):
    __tablename__ = "users"

    ROLES = ["user", "admin"]
    STATUSES = ["active", "inactive", "suspended"]

    # -- Subscription statuses (mirrors Stripe) --
    SUBSCRIPTION_STATUSES = [
        "active",
        "past_due",
        "canceled",
        "incomplete",
        "incomplete_expired",
        "trialing",
        "unpaid",
    ]

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    email = db.Column(db.String(255), unique=True, nullable=False)
    password_hash = db.Column(db.String(255), nullable=False)
    full_name = db.Column(db.String(255), nullable=False)
    role = db.Column(db.String(20), default="user", nullable=False)
    status = db.Column(db.String(20), default="active", nullable=False)

    # --- Subscription ---
    plan = db.Column(db.String(50), default="free", nullable=False)
    subscription_status = db.Column(
        db.String(50), default="active", nullable=False
    )
    stripe_customer_id = db.Column(db.String(255), unique=True, nullable=True)
    stripe_subscription_id = db.Column(
        db.String(255), unique=True, nullable=True
    )
    current_period_end = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    # --- Relationships ---
    pages = db.relationship(
        "MaintenancePage", back_populates="user", lazy="dynamic"
    )
    cloudflare_config = db.relationship(
        "CloudflareConfig",
        back_populates="user",
        uselist=False,
        cascade="all, delete-orphan",
    )
    activity_events = db.relationship(
        "ActivityEvent",
        back_populates="actor",
        lazy="dynamic",
        cascade="all, delete-orphan",
    )

    @property
    def is_admin(self):
        return self.role == "admin"

    @property
    def is_active(self):
        # Flask-Login refuses to log in inactive users.
        return self.status == "active"

    def has_active_subscription(self):
        """Free plans are always active; paid plans need a live period."""
        if self.plan == "free":
            return True
        if self.subscription_status != "active":
            return False
        if self.current_period_end is None:
            return True
        period_end = self.current_period_end
        if period_end.tzinfo is None:
            # SQLite drops tzinfo on the way back out.
            period_end = period_end.replace(tzinfo=timezone.utc)
        return period_end > datetime.now(timezone.utc)

    def __repr__(self):
        return f"<User {self.email} ({self.role})>"


@event.listens_for(User, "before_update")
def _publish_plan_change(mapper, connection, target):
    """Push a live 'subscription' event whenever an existing user's plan changes."""
    history = inspect(target).attrs.plan.history
    if not history.has_changes():
        return

    from statussaas.events import event_bus

    event_bus.publish(
        target.id,
        {"type": "subscription", "userId": target.id, "plan": target.plan},
    )
