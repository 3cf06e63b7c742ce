"""Incidents blueprint — /incidents/* (JSON)

Pro-plan incident log for a page. All responses are JSON; service
ValueErrors become 400s and PermissionErrors 403s.

Routes:
- GET    /incidents/page/<page_id>          — incidents for a page
- POST   /incidents                         — open an incident
- GET    /incidents/<id>                    — one incident with its updates
- POST   /incidents/<id>/updates            — append an update
- POST   /incidents/<id>/post-mortem        — attach the post-mortem
- DELETE /incidents/<id>                    — delete
"""

import logging

from flask import Blueprint, jsonify, request
from flask_login import current_user

from statussaas.decorators import api_login_required
from statussaas.extensions import db
from statussaas.services import incident_service, page_service

logger = logging.getLogger(__name__)

incidents_bp = Blueprint("incidents", __name__, url_prefix="/incidents")


def _payload():
    return request.get_json(silent=True) or request.form.to_dict()


def _not_found(what="Incident"):
    return jsonify({"error": f"{what} not found"}), 404


@incidents_bp.errorhandler(PermissionError)
def _forbidden(e):
    db.session.rollback()
    return jsonify({"error": str(e)}), 403


@incidents_bp.errorhandler(ValueError)
def _invalid(e):
    db.session.rollback()
    return jsonify({"error": str(e)}), 400


@incidents_bp.route("/page/<page_id>")
@api_login_required
def list_for_page(page_id):
    page = page_service.get_page_for_user(page_id, current_user)
    if page is None:
        return _not_found("Page")
    incidents = incident_service.list_incidents(current_user, page)
    return jsonify({"incidents": [i.to_dict() for i in incidents]})


@incidents_bp.route("", methods=["POST"])
@api_login_required
def create():
    data = _payload()
    page = page_service.get_page_for_user(data.get("pageId") or data.get("page_id"), current_user)
    if page is None:
        return _not_found("Page")

    incident = incident_service.create_incident(
        current_user,
        page,
        title=data.get("title"),
        description=data.get("description"),
        impact=data.get("impact", "minor"),
        affected_components=data.get("affectedComponents") or data.get("affected_components"),
    )
    db.session.commit()
    return jsonify(incident.to_dict()), 201


@incidents_bp.route("/<incident_id>")
@api_login_required
def detail(incident_id):
    incident = incident_service.get_incident_for_user(incident_id, current_user)
    if incident is None:
        return _not_found()
    return jsonify(incident.to_dict())


@incidents_bp.route("/<incident_id>/updates", methods=["POST"])
@api_login_required
def add_update(incident_id):
    incident = incident_service.get_incident_for_user(incident_id, current_user)
    if incident is None:
        return _not_found()

    data = _payload()
    incident_service.add_update(
        incident,
        current_user,
        status=data.get("status", incident.status),
        message=data.get("message"),
        impact=data.get("impact"),
        affected_components=data.get("affectedComponents"),
    )
    db.session.commit()
    return jsonify(incident.to_dict())


@incidents_bp.route("/<incident_id>/post-mortem", methods=["POST"])
@api_login_required
def post_mortem(incident_id):
    incident = incident_service.get_incident_for_user(incident_id, current_user)
    if incident is None:
        return _not_found()

    data = _payload()
    incident_service.add_post_mortem(
        incident,
        current_user,
        summary=data.get("summary"),
        root_cause=data.get("rootCause") or data.get("root_cause"),
        resolution=data.get("resolution"),
        prevention=data.get("prevention"),
    )
    db.session.commit()
    return jsonify(incident.to_dict())


@incidents_bp.route("/<incident_id>", methods=["DELETE"])
@api_login_required
def delete(incident_id):
    incident = incident_service.get_incident_for_user(incident_id, current_user)
    if incident is None:
        return _not_found()
    incident_service.delete_incident(incident, current_user)
    db.session.commit()
    return jsonify({"success": True})
