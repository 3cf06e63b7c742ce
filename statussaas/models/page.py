"""Maintenance page models.

- MaintenancePage: user-authored maintenance/status page bound to a domain.
- PageViewDay: per-day view counters backing the analytics charts.

Status is draft | published | scheduled | archived. A scheduled page flips
to published at save time once scheduled_for has passed (see
apply_schedule, wired to before_insert / before_update).
"""

import re
import uuid
from datetime import datetime, timezone

from sqlalchemy import event

from statussaas.extensions import db

DEFAULT_DESIGN = {
    "backgroundColor": "#000000",
    "textColor": "#ffffff",
    "fontFamily": "Inter",
    "layout": "centered",
    "logo": "",
    "maxWidth": 768,
    "logoSize": {"width": 200, "height": 50},
    "customCSS": "",
}


def slugify(value):
    """Lowercase, collapse anything outside a-z0-9 to single hyphens."""
    value = re.sub(r"[^a-z0-9]+", "-", (value or "").lower())
    return value.strip("-")


class MaintenancePage(db.Model):
    __tablename__ = "maintenance_pages"

    STATUSES = ["draft", "published", "scheduled", "archived"]
    LAYOUTS = ["centered", "left-aligned", "right-aligned"]
    FONTS = ["Inter", "Roboto", "Open Sans"]

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    user_id = db.Column(
        db.String(36), db.ForeignKey("users.id"), nullable=False, index=True
    )
    domain = db.Column(db.String(255), nullable=False, default="")
    title = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=False, default="")
    content = db.Column(db.Text, nullable=False, default="")
    status = db.Column(db.String(20), default="draft", nullable=False)
    scheduled_for = db.Column(db.DateTime(timezone=True), nullable=True)
    slug = db.Column(db.String(255), unique=True, nullable=True)
    design = db.Column(db.JSON, default=lambda: dict(DEFAULT_DESIGN))

    # --- Edge deployment ---
    deployed = db.Column(db.Boolean, default=False, nullable=False)
    deployed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # --- Analytics ---
    total_views = db.Column(db.Integer, default=0, nullable=False)
    unique_views = db.Column(db.Integer, default=0, nullable=False)

    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    # --- Relationships ---
    user = db.relationship("User", back_populates="pages")
    view_days = db.relationship(
        "PageViewDay",
        back_populates="page",
        lazy="dynamic",
        cascade="all, delete-orphan",
        order_by="PageViewDay.day",
    )
    incidents = db.relationship(
        "Incident",
        back_populates="page",
        lazy="dynamic",
        cascade="all, delete-orphan",
    )

    @property
    def design_settings(self):
        """Stored design merged over defaults (older rows may lack keys)."""
        merged = dict(DEFAULT_DESIGN)
        merged.update(self.design or {})
        logo_size = dict(DEFAULT_DESIGN["logoSize"])
        logo_size.update((self.design or {}).get("logoSize") or {})
        merged["logoSize"] = logo_size
        return merged

    @property
    def route_pattern(self):
        return f"*{self.domain}/*"

    def apply_schedule(self, now=None):
        """Publish a scheduled page whose time has come."""
        if self.status != "scheduled" or self.scheduled_for is None:
            return False
        now = now or datetime.now(timezone.utc)
        scheduled_for = self.scheduled_for
        if scheduled_for.tzinfo is None:
            scheduled_for = scheduled_for.replace(tzinfo=timezone.utc)
        if scheduled_for <= now:
            self.status = "published"
            return True
        return False

    def to_dict(self):
        return {
            "id": self.id,
            "domain": self.domain,
            "title": self.title,
            "description": self.description,
            "content": self.content,
            "status": self.status,
            "slug": self.slug,
            "scheduledFor": (
                self.scheduled_for.isoformat() if self.scheduled_for else None
            ),
            "design": self.design_settings,
            "deployed": self.deployed,
            "analytics": {
                "totalViews": self.total_views,
                "uniqueViews": self.unique_views,
            },
        }

    def __repr__(self):
        return f"<MaintenancePage {self.domain} ({self.status})>"


@event.listens_for(MaintenancePage, "before_insert")
@event.listens_for(MaintenancePage, "before_update")
def _apply_schedule_on_save(mapper, connection, target):
    target.apply_schedule()
    if not target.slug and target.title:
        suffix = (target.id or uuid.uuid4().hex)[:8]
        target.slug = f"{slugify(target.title)}-{suffix}"


class PageViewDay(db.Model):
    __tablename__ = "page_view_days"
    __table_args__ = (
        db.UniqueConstraint("page_id", "day", name="uq_page_view_day"),
    )

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    page_id = db.Column(
        db.String(36),
        db.ForeignKey("maintenance_pages.id"),
        nullable=False,
        index=True,
    )
    day = db.Column(db.Date, nullable=False)
    views = db.Column(db.Integer, default=0, nullable=False)
    unique_views = db.Column(db.Integer, default=0, nullable=False)

    page = db.relationship("MaintenancePage", back_populates="view_days")

    def to_dict(self):
        return {
            "day": self.day.isoformat(),
            "views": self.views,
            "uniqueViews": self.unique_views,
        }

    def __repr__(self):
        return f"<PageViewDay {self.page_id} {self.day}: {self.views}>"
