"""Subscription plan catalog.

Plans are identified by `code` (free | basic | pro | enterprise | ...).
The code is the join key used on users.plan, so it cannot change once
the plan exists.
"""

import uuid

from sqlalchemy.orm import validates

from statussaas.extensions import db

# Limits applied when a user's plan is missing or inactive.
FREE_LIMITS = {"pages": 1, "views_per_page": 1000}


class SubscriptionPlan(db.Model):
    __tablename__ = "subscription_plans"

    INTERVALS = ["month", "year", "forever"]

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    code = db.Column(db.String(50), unique=True, nullable=False)
    name = db.Column(db.String(100), nullable=False)
    description = db.Column(db.Text, nullable=False, default="")
    price = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    interval = db.Column(db.String(20), nullable=False, default="month")
    stripe_price_id = db.Column(db.String(255), nullable=True)
    features = db.Column(db.JSON, default=list)
    page_limit = db.Column(db.Integer, nullable=False, default=1)
    views_per_page = db.Column(db.Integer, nullable=False, default=1000)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    @validates("code")
    def _validate_code(self, key, value):
        value = (value or "").strip().lower()
        if not value:
            raise ValueError("Plan code is required.")
        if self.code is not None and self.code != value:
            raise ValueError("Plan code cannot be changed once created.")
        return value

    @property
    def limits(self):
        return {"pages": self.page_limit, "views_per_page": self.views_per_page}

    @property
    def is_free(self):
        return not self.price or float(self.price) == 0

    def to_dict(self):
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "description": self.description,
            "price": float(self.price or 0),
            "interval": self.interval,
            "features": list(self.features or []),
            "limits": self.limits,
            "isActive": self.is_active,
        }

    def __repr__(self):
        return f"<SubscriptionPlan {self.code} ({self.price})>"
