"""Activity event model.

Logs significant user/admin actions (page created, deployed, plan changed,
...) for the dashboard activity feed and the admin activity log.
"""

import uuid

from statussaas.extensions import db


class ActivityEvent(db.Model):
    __tablename__ = "activity_events"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    actor_user_id = db.Column(
        db.String(36), db.ForeignKey("users.id"), nullable=True, index=True
    )
    action = db.Column(db.String(100), nullable=False)  # e.g. "page.deployed"
    description = db.Column(db.String(500), nullable=False, default="")
    metadata_ = db.Column(
        "metadata", db.JSON, default=dict
    )  # named metadata_ to avoid the declarative attribute clash
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now(), index=True
    )

    actor = db.relationship("User", back_populates="activity_events")

    def __repr__(self):
        return f"<ActivityEvent {self.action}>"


def log_activity(user_id, action, description="", metadata=None):
    """Record an activity event. Flushes; the caller commits."""
    activity = ActivityEvent(
        actor_user_id=user_id,
        action=action,
        description=description,
        metadata_=metadata or {},
    )
    db.session.add(activity)
    db.session.flush()
    return activity
