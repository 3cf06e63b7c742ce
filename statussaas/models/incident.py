"""Incident models.

- Incident: an outage/degradation report attached to a maintenance page.
- IncidentUpdate: append-only log of status changes and messages.

Status chain: investigating -> identified -> monitoring -> resolved ->
post-mortem. Transitions are enforced in incident_service via
Incident.VALID_TRANSITIONS.
"""

import uuid

from statussaas.extensions import db


class Incident(db.Model):
    __tablename__ = "incidents"

    STATUSES = ["investigating", "identified", "monitoring", "resolved", "post-mortem"]
    IMPACTS = ["none", "minor", "major", "critical"]

    # Forward-only; steps may be skipped, post-mortem only after resolved.
    VALID_TRANSITIONS = {
        "investigating": ["identified", "monitoring", "resolved"],
        "identified": ["monitoring", "resolved"],
        "monitoring": ["resolved"],
        "resolved": ["post-mortem"],
        "post-mortem": [],
    }

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    user_id = db.Column(
        db.String(36), db.ForeignKey("users.id"), nullable=False, index=True
    )
    page_id = db.Column(
        db.String(36), db.ForeignKey("maintenance_pages.id"), nullable=False
    )
    title = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=False)
    status = db.Column(db.String(20), default="investigating", nullable=False)
    impact = db.Column(db.String(20), nullable=False)
    affected_components = db.Column(db.JSON, default=list)
    start_time = db.Column(db.DateTime(timezone=True), nullable=False)
    end_time = db.Column(db.DateTime(timezone=True), nullable=True)
    resolved_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # --- Post-mortem ---
    postmortem_summary = db.Column(db.Text, nullable=True)
    postmortem_root_cause = db.Column(db.Text, nullable=True)
    postmortem_resolution = db.Column(db.Text, nullable=True)
    postmortem_prevention = db.Column(db.Text, nullable=True)
    postmortem_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    # --- Relationships ---
    page = db.relationship("MaintenancePage", back_populates="incidents")
    updates = db.relationship(
        "IncidentUpdate",
        back_populates="incident",
        lazy="dynamic",
        cascade="all, delete-orphan",
        order_by="IncidentUpdate.created_at",
    )

    def to_dict(self):
        postmortem = None
        if self.postmortem_at is not None:
            postmortem = {
                "summary": self.postmortem_summary,
                "rootCause": self.postmortem_root_cause,
                "resolution": self.postmortem_resolution,
                "prevention": self.postmortem_prevention,
                "createdAt": self.postmortem_at.isoformat(),
            }
        return {
            "id": self.id,
            "pageId": self.page_id,
            "title": self.title,
            "description": self.description,
            "status": self.status,
            "impact": self.impact,
            "affectedComponents": list(self.affected_components or []),
            "startTime": self.start_time.isoformat() if self.start_time else None,
            "endTime": self.end_time.isoformat() if self.end_time else None,
            "resolvedAt": self.resolved_at.isoformat() if self.resolved_at else None,
            "postMortem": postmortem,
            "updates": [u.to_dict() for u in self.updates],
        }

    def __repr__(self):
        return f"<Incident {self.title[:30]} ({self.status})>"


class IncidentUpdate(db.Model):
    __tablename__ = "incident_updates"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    incident_id = db.Column(
        db.String(36), db.ForeignKey("incidents.id"), nullable=False
    )
    author_user_id = db.Column(
        db.String(36), db.ForeignKey("users.id"), nullable=False
    )
    status = db.Column(db.String(20), nullable=False)
    message = db.Column(db.Text, nullable=False)
    impact = db.Column(db.String(20), nullable=False)
    affected_components = db.Column(db.JSON, default=list)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False)

    incident = db.relationship("Incident", back_populates="updates")
    author = db.relationship("User")

    def to_dict(self):
        return {
            "id": self.id,
            "status": self.status,
            "message": self.message,
            "impact": self.impact,
            "affectedComponents": list(self.affected_components or []),
            "timestamp": self.created_at.isoformat() if self.created_at else None,
            "createdBy": {
                "id": self.author_user_id,
                "name": self.author.full_name if self.author else None,
            },
        }

    def __repr__(self):
        return f"<IncidentUpdate {self.status}>"
