"""Incident service — incident log, status machine, updates, post-mortems.

Incidents are a pro-plan feature: every entry point checks
has_pro_access() and raises PermissionError otherwise. Text fields are
sanitized with bleach.clean() to strip HTML tags. Status transitions are
enforced via Incident.VALID_TRANSITIONS.

Functions flush but do NOT commit — the caller commits.
"""

import logging
from datetime import datetime, timezone

import bleach

from statussaas.extensions import db
from statussaas.models.activity import log_activity
from statussaas.models.incident import Incident, IncidentUpdate
from statussaas.services.subscription_service import has_pro_access

logger = logging.getLogger(__name__)


def _sanitize(text):
    """Strip all HTML tags from user input."""
    if text is None:
        return text
    return bleach.clean(text, tags=[], strip=True).strip()


def _require_pro(user):
    if not has_pro_access(user):
        raise PermissionError("Incident management requires an active Pro plan.")


def _components(value):
    if not value:
        return []
    if isinstance(value, str):
        value = value.split(",")
    return [c for c in (_sanitize(str(v)) for v in value) if c]


def _validate_impact(impact):
    if impact not in Incident.IMPACTS:
        raise ValueError(
            f"Invalid impact '{impact}'. Must be one of: {', '.join(Incident.IMPACTS)}"
        )


def get_incident_for_user(incident_id, user):
    incident = db.session.get(Incident, incident_id)
    if incident is None:
        return None
    if incident.user_id != user.id and not user.is_admin:
        return None
    return incident


def list_incidents(user, page):
    _require_pro(user)
    return (
        Incident.query
        .filter_by(page_id=page.id)
        .order_by(Incident.start_time.desc())
        .all()
    )


def create_incident(user, page, title, description, impact,
                    affected_components=None, start_time=None):
    """Open an incident on a page, status investigating.

    Raises:
        PermissionError: User lacks pro access.
        ValueError: Missing title/description or invalid impact.
    """
    _require_pro(user)

    title = _sanitize(title)
    description = _sanitize(description)
    if not title:
        raise ValueError("Title is required.")
    if not description:
        raise ValueError("Description is required.")
    _validate_impact(impact)

    now = datetime.now(timezone.utc)
    components = _components(affected_components)

    incident = Incident(
        user_id=user.id,
        page_id=page.id,
        title=title,
        description=description,
        status="investigating",
        impact=impact,
        affected_components=components,
        start_time=start_time or now,
    )
    db.session.add(incident)
    db.session.flush()

    db.session.add(IncidentUpdate(
        incident_id=incident.id,
        author_user_id=user.id,
        status="investigating",
        message=description,
        impact=impact,
        affected_components=components,
        created_at=now,
    ))
    db.session.flush()

    log_activity(
        user.id, "incident.created", f"Opened incident {title}",
        {"incident_id": incident.id, "page_id": page.id, "impact": impact},
    )
    return incident


def add_update(incident, user, status, message, impact=None, affected_components=None):
    """Append an update, moving the incident forward along its status chain.

    Re-posting the current status is allowed (a plain progress note).

    Raises:
        PermissionError: User lacks pro access.
        ValueError: Invalid transition, impact, or empty message.
    """
    _require_pro(user)

    message = _sanitize(message)
    if not message:
        raise ValueError("Message cannot be empty.")
    if status not in Incident.STATUSES:
        raise ValueError(f"Invalid status '{status}'.")
    if status == "post-mortem":
        raise ValueError("Use the post-mortem form to close out a resolved incident.")

    old_status = incident.status
    if status != old_status:
        allowed = Incident.VALID_TRANSITIONS.get(old_status, [])
        if status not in allowed:
            raise ValueError(
                f"Cannot transition from '{old_status}' to '{status}'. "
                f"Allowed: {', '.join(allowed) or 'none'}"
            )

    impact = impact or incident.impact
    _validate_impact(impact)
    components = (
        _components(affected_components)
        if affected_components is not None
        else list(incident.affected_components or [])
    )

    now = datetime.now(timezone.utc)
    db.session.add(IncidentUpdate(
        incident_id=incident.id,
        author_user_id=user.id,
        status=status,
        message=message,
        impact=impact,
        affected_components=components,
        created_at=now,
    ))

    incident.status = status
    incident.impact = impact
    incident.affected_components = components
    if status == "resolved" and old_status != "resolved":
        incident.resolved_at = now
        incident.end_time = incident.end_time or now
    db.session.flush()

    log_activity(
        user.id, "incident.updated", f"Incident {incident.title}: {status}",
        {"incident_id": incident.id, "old_status": old_status, "new_status": status},
    )
    return incident


def add_post_mortem(incident, user, summary, root_cause, resolution, prevention):
    """Attach a post-mortem and move a resolved incident to post-mortem.

    Raises:
        PermissionError: User lacks pro access.
        ValueError: Incident not resolved, or a section is empty.
    """
    _require_pro(user)

    if incident.status != "resolved":
        raise ValueError("Post-mortems can only be added to resolved incidents.")

    fields = {
        "summary": _sanitize(summary),
        "root cause": _sanitize(root_cause),
        "resolution": _sanitize(resolution),
        "prevention": _sanitize(prevention),
    }
    missing = [name for name, value in fields.items() if not value]
    if missing:
        raise ValueError(f"Post-mortem is missing: {', '.join(missing)}")

    now = datetime.now(timezone.utc)
    incident.postmortem_summary = fields["summary"]
    incident.postmortem_root_cause = fields["root cause"]
    incident.postmortem_resolution = fields["resolution"]
    incident.postmortem_prevention = fields["prevention"]
    incident.postmortem_at = now
    incident.status = "post-mortem"

    db.session.add(IncidentUpdate(
        incident_id=incident.id,
        author_user_id=user.id,
        status="post-mortem",
        message=fields["summary"],
        impact=incident.impact,
        affected_components=list(incident.affected_components or []),
        created_at=now,
    ))
    db.session.flush()

    log_activity(
        user.id, "incident.postmortem", f"Post-mortem added for {incident.title}",
        {"incident_id": incident.id},
    )
    return incident


def delete_incident(incident, user):
    _require_pro(user)
    title = incident.title
    db.session.delete(incident)
    db.session.flush()
    log_activity(user.id, "incident.deleted", f"Deleted incident {title}", {})
