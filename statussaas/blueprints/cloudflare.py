"""Cloudflare settings blueprint — /settings/cloudflare/*

Routes:
- GET  /settings/cloudflare              — show config (or setup form)
- GET  /settings/cloudflare/edit         — edit form
- POST /settings/cloudflare/save         — save + run the connectivity test
- POST /settings/cloudflare/delete       — remove the config
- POST /settings/cloudflare/test         — re-run the connectivity test
- GET  /settings/cloudflare/test-result  — show the last test report

A save whose connectivity test fails deletes the freshly saved config, so
a stored config has always passed the test at least once. The test report
travels to the result page through the session.
"""

import logging

from flask import (
    Blueprint,
    current_app,
    flash,
    redirect,
    render_template,
    request,
    session,
    url_for,
)
from flask_login import current_user, login_required

from statussaas.extensions import db
from statussaas.models.activity import log_activity
from statussaas.models.cloudflare_config import CloudflareConfig
from statussaas.services import cloudflare_service
from statussaas.services.cloudflare_client import ConfigurationError

logger = logging.getLogger(__name__)

cloudflare_bp = Blueprint("cloudflare", __name__, url_prefix="/settings/cloudflare")

REQUIRED_FIELDS = {
    "email": "Cloudflare account email",
    "account_id": "Account ID",
    "zone_id": "Zone ID",
    "kv_namespace_id": "KV namespace ID",
}
TEST_RESULT_KEY = "cloudflare_test_result"


def _user_config():
    return CloudflareConfig.query.filter_by(user_id=current_user.id).first()


def _run_test():
    """Run the self-test against the stored config; report lands in the session."""
    try:
        _, credentials = cloudflare_service.load_credentials(current_user.id)
    except ConfigurationError as e:
        report = {
            "success": False,
            "checks": [{
                "name": "config", "label": "Configuration", "success": False,
                "skipped": False, "message": str(e),
            }],
        }
    else:
        client = cloudflare_service.build_client(credentials)
        report = cloudflare_service.run_connectivity_test(client)
    session[TEST_RESULT_KEY] = report
    return report


@cloudflare_bp.route("")
@login_required
def show():
    config = _user_config()
    return render_template(
        "settings/cloudflare.html",
        config=config,
        editing=config is None,
        default_worker_name=current_app.config["CLOUDFLARE_DEFAULT_WORKER_NAME"],
    )


@cloudflare_bp.route("/edit")
@login_required
def edit():
    return render_template(
        "settings/cloudflare.html",
        config=_user_config(),
        editing=True,
        default_worker_name=current_app.config["CLOUDFLARE_DEFAULT_WORKER_NAME"],
    )


@cloudflare_bp.route("/save", methods=["POST"])
@login_required
def save():
    form = {k: request.form.get(k, "").strip() for k in REQUIRED_FIELDS}
    api_token = request.form.get("api_token", "").strip()
    worker_name = (
        request.form.get("worker_name", "").strip()
        or current_app.config["CLOUDFLARE_DEFAULT_WORKER_NAME"]
    )

    config = _user_config()

    errors = [f"{label} is required." for key, label in REQUIRED_FIELDS.items() if not form[key]]
    if config is None and not api_token:
        errors.append("API token is required.")
    if errors:
        for err in errors:
            flash(err, "error")
        return redirect(url_for("cloudflare.edit"))

    if config is None:
        config = CloudflareConfig(user_id=current_user.id, api_token=api_token)
        db.session.add(config)
    elif api_token:
        # A blank token on edit keeps the stored one.
        config.api_token = api_token

    config.email = form["email"]
    config.account_id = form["account_id"]
    config.zone_id = form["zone_id"]
    config.kv_namespace_id = form["kv_namespace_id"]
    config.worker_name = worker_name
    config.is_active = True
    db.session.commit()

    report = _run_test()
    if report["success"]:
        log_activity(current_user.id, "cloudflare.configured", "Saved Cloudflare settings")
        db.session.commit()
        flash("Cloudflare settings saved and verified.", "success")
    else:
        db.session.delete(config)
        db.session.commit()
        logger.info(f"Cloudflare config for user {current_user.id} removed after failed test")
        flash("Cloudflare connection test failed; the settings were not kept.", "error")

    return redirect(url_for("cloudflare.test_result"))


@cloudflare_bp.route("/delete", methods=["POST"])
@login_required
def delete():
    config = _user_config()
    if config is None:
        flash("No Cloudflare settings to delete.", "info")
        return redirect(url_for("cloudflare.show"))

    db.session.delete(config)
    log_activity(current_user.id, "cloudflare.removed", "Removed Cloudflare settings")
    db.session.commit()
    flash("Cloudflare settings removed.", "info")
    return redirect(url_for("cloudflare.show"))


@cloudflare_bp.route("/test", methods=["POST"])
@login_required
def test():
    report = _run_test()
    db.session.commit()
    if report["success"]:
        flash("Cloudflare connection test passed.", "success")
    else:
        flash("Cloudflare connection test failed.", "error")
    return redirect(url_for("cloudflare.test_result"))


@cloudflare_bp.route("/test-result")
@login_required
def test_result():
    report = session.pop(TEST_RESULT_KEY, None)
    if report is None:
        return redirect(url_for("cloudflare.show"))
    return render_template("settings/cloudflare_test.html", report=report)
