"""Tests for maintenance page management.

Covers:
- Domain normalisation and design validation
- Create / update / archive / delete through the pages blueprint
- Plan page limits
- Publish now / schedule, and the scheduled publisher
- Deploy and toggle through the blueprint (Cloudflare faked)
- Delete tears down the edge deployment best-effort
- Ownership: other users' pages are 404
"""

import json
from datetime import datetime, timedelta, timezone

import pytest

from statussaas.extensions import db
from statussaas.models.activity import ActivityEvent
from statussaas.models.page import MaintenancePage
from statussaas.services import page_service
from conftest import CF_WORKER


def _create_page(user_id, title="Maintenance", domain="status.example.com", **kwargs):
    page = MaintenancePage(user_id=user_id, title=title, domain=domain, **kwargs)
    db.session.add(page)
    db.session.commit()
    return page


class TestNormalizeDomain:

    @pytest.mark.parametrize("raw, expected", [
        ("Status.Example.com", "status.example.com"),
        ("https://status.example.com/path", "status.example.com"),
        ("status.example.com:8443", "status.example.com"),
        ("example.co.uk.", "example.co.uk"),
    ])
    def test_normalizes(self, raw, expected):
        assert page_service.normalize_domain(raw) == expected

    @pytest.mark.parametrize("raw", ["", "localhost", "exa mple.com", "-bad.example.com"])
    def test_rejects(self, raw):
        with pytest.raises(ValueError):
            page_service.normalize_domain(raw)


class TestValidateDesign:

    def test_defaults_when_empty(self):
        design = page_service.validate_design({})
        assert design["backgroundColor"] == "#000000"
        assert design["logoSize"] == {"width": 200, "height": 50}

    def test_accepts_valid_values(self):
        design = page_service.validate_design({
            "backgroundColor": "#fff",
            "textColor": "#1a2b3c",
            "fontFamily": "Roboto",
            "layout": "left-aligned",
            "logo": "https://cdn.example.com/logo.png",
            "maxWidth": "1024",
            "logoSize": {"width": "120", "height": "40"},
        })
        assert design["fontFamily"] == "Roboto"
        assert design["maxWidth"] == 1024
        assert design["logoSize"] == {"width": 120, "height": 40}

    @pytest.mark.parametrize("field, value", [
        ("backgroundColor", "red"),
        ("fontFamily", "Comic Sans"),
        ("layout", "diagonal"),
        ("logo", "javascript:alert(1)"),
        ("maxWidth", "5000"),
    ])
    def test_rejects_invalid(self, field, value):
        with pytest.raises(ValueError):
            page_service.validate_design({field: value})


class TestCreatePage:

    def test_create_via_form(self, client, seed_data, login):
        login("owner@example.com")
        resp = client.post("/pages", data={
            "title": "Database upgrade",
            "domain": "https://Status.Example.com/",
            "description": "<b>Back</b> soon",
            "content": "<p>Details</p>",
            "publish_type": "now",
            "background_color": "#112233",
        })
        assert resp.status_code == 302

        page = MaintenancePage.query.filter_by(user_id=seed_data["owner_id"]).one()
        assert page.domain == "status.example.com"
        assert page.description == "Back soon"
        assert page.status == "published"
        assert page.design["backgroundColor"] == "#112233"
        assert page.slug.startswith("database-upgrade-")
        assert ActivityEvent.query.filter_by(action="page.created").count() == 1

    def test_invalid_domain_rerenders_form(self, client, seed_data, login):
        login("owner@example.com")
        resp = client.post("/pages", data={"title": "X", "domain": "not a domain"})
        assert resp.status_code == 400
        assert MaintenancePage.query.count() == 0

    def test_free_plan_limit(self, client, seed_data, login):
        _create_page(seed_data["owner_id"])
        login("owner@example.com")

        resp = client.post("/pages", data={"title": "Second", "domain": "two.example.com"})
        assert resp.status_code == 302
        assert MaintenancePage.query.filter_by(user_id=seed_data["owner_id"]).count() == 1

        resp = client.get("/pages/new")
        assert resp.status_code == 302

    def test_pro_plan_allows_more(self, seed_data):
        pro = seed_data["pro"]
        for i in range(3):
            page_service.create_page(pro, {"title": f"Page {i}", "domain": f"p{i}.example.com"})
        assert page_service.page_count(pro) == 3

    def test_lapsed_subscription_falls_back_to_free_limit(self, seed_data):
        pro = seed_data["pro"]
        pro.subscription_status = "past_due"
        page_service.create_page(pro, {"title": "First", "domain": "one.example.com"})
        with pytest.raises(PermissionError):
            page_service.create_page(pro, {"title": "Second", "domain": "two.example.com"})

    def test_schedule_in_past_rejected(self, seed_data):
        past = (datetime.now(timezone.utc) - timedelta(hours=1)).isoformat()
        with pytest.raises(ValueError, match="future"):
            page_service.create_page(seed_data["owner"], {
                "title": "Later", "domain": "later.example.com",
                "publish_type": "schedule", "scheduled_for": past,
            })


class TestScheduling:

    def test_scheduled_page_publishes_when_due(self, seed_data):
        future = datetime.now(timezone.utc) + timedelta(hours=1)
        page = page_service.create_page(seed_data["owner"], {
            "title": "Later", "domain": "later.example.com",
            "publish_type": "schedule", "scheduled_for": future.isoformat(),
        })
        db.session.commit()
        assert page.status == "scheduled"

        assert page_service.publish_scheduled_pages(now=future - timedelta(minutes=1)) == []
        published = page_service.publish_scheduled_pages(now=future + timedelta(minutes=1))
        assert published == [page]
        assert page.status == "published"

    def test_saving_a_due_page_publishes_it(self, seed_data):
        page = _create_page(
            seed_data["owner_id"],
            status="scheduled",
            scheduled_for=datetime.now(timezone.utc) + timedelta(days=1),
        )
        assert page.status == "scheduled"

        page.scheduled_for = datetime.now(timezone.utc) - timedelta(minutes=5)
        db.session.commit()
        assert page.status == "published"

    def test_publish_scheduled_cli(self, app, seed_data, reload):
        page = _create_page(seed_data["owner_id"])
        page_id = page.id
        # Bulk UPDATE skips the save-time hook, leaving a due page behind.
        db.session.execute(
            db.update(MaintenancePage)
            .where(MaintenancePage.id == page_id)
            .values(
                status="scheduled",
                scheduled_for=datetime.now(timezone.utc) - timedelta(minutes=5),
            )
        )
        db.session.commit()

        result = app.test_cli_runner().invoke(args=["publish-scheduled"])

        assert result.exit_code == 0
        assert "1 page(s) published." in result.output
        assert reload(MaintenancePage, page_id).status == "published"


class TestEditPage:

    def test_update(self, client, seed_data, login, reload):
        page = _create_page(seed_data["owner_id"])
        page_id = page.id
        login("owner@example.com")

        resp = client.post(f"/pages/{page_id}", data={
            "title": "New title",
            "domain": "status.example.com",
            "publish_type": "draft",
            "layout": "right-aligned",
        })
        assert resp.status_code == 302

        page = reload(MaintenancePage, page_id)
        assert page.title == "New title"
        assert page.design["layout"] == "right-aligned"

    def test_domain_locked_while_deployed(self, seed_data):
        page = _create_page(seed_data["owner_id"], deployed=True)
        with pytest.raises(ValueError, match="domain"):
            page_service.update_page(page, seed_data["owner"], {"domain": "other.example.com"})

    def test_archive(self, client, seed_data, login, reload):
        page = _create_page(seed_data["owner_id"], status="published")
        page_id = page.id
        login("owner@example.com")

        client.post(f"/pages/{page_id}/archive")
        assert reload(MaintenancePage, page_id).status == "archived"

    def test_other_users_page_is_404(self, client, seed_data, login):
        page = _create_page(seed_data["pro_id"])
        login("owner@example.com")
        assert client.get(f"/pages/{page.id}").status_code == 404
        assert client.post(f"/pages/{page.id}/delete").status_code == 404

    def test_admin_can_view_any_page(self, client, seed_data, login):
        page = _create_page(seed_data["owner_id"])
        login("admin@statussaas.local", "admin123")
        assert client.get(f"/pages/{page.id}").status_code == 200

    def test_preview_renders_edge_html(self, client, seed_data, login):
        page = _create_page(
            seed_data["owner_id"], content="<p>ok</p><script>alert(1)</script>"
        )
        login("owner@example.com")
        resp = client.get(f"/pages/{page.id}/preview")
        assert resp.status_code == 200
        assert b"<p>ok</p>" in resp.data
        assert b"<script>" not in resp.data


class TestDeployRoutes:

    def test_deploy(self, client, seed_data, login, fake_cloudflare, reload):
        page = _create_page(seed_data["owner_id"], status="published")
        page_id = page.id
        login("owner@example.com")

        resp = client.post(f"/pages/{page_id}/deploy")
        assert resp.status_code == 302
        assert resp.headers["Location"].endswith(f"/pages/{page_id}")

        assert reload(MaintenancePage, page_id).deployed is True
        assert "status.example.com" in fake_cloudflare.kv
        assert CF_WORKER in fake_cloudflare.scripts
        assert ActivityEvent.query.filter_by(action="page.deployed").count() == 1

    def test_deploy_without_cloudflare_redirects_to_settings(self, client, seed_data, login,
                                                            fake_cloudflare):
        page = _create_page(seed_data["admin_id"])
        login("admin@statussaas.local", "admin123")

        resp = client.post(f"/pages/{page.id}/deploy")
        assert resp.status_code == 302
        assert "/settings/cloudflare" in resp.headers["Location"]
        assert fake_cloudflare.calls == []

    def test_deploy_failure_keeps_page_undeployed(self, client, seed_data, login,
                                                   fake_cloudflare, reload):
        page = _create_page(seed_data["owner_id"])
        page_id = page.id
        fake_cloudflare.fail["route_create"] = 500
        login("owner@example.com")

        resp = client.post(f"/pages/{page_id}/deploy", follow_redirects=True)
        assert b"Deployment failed" in resp.data
        assert reload(MaintenancePage, page_id).deployed is False

    def test_toggle_deployed_page(self, client, seed_data, login, fake_cloudflare, reload):
        page = _create_page(seed_data["owner_id"], status="published")
        page_id = page.id
        login("owner@example.com")
        client.post(f"/pages/{page_id}/deploy")

        client.post(f"/pages/{page_id}/toggle", data={"status": "draft"})

        assert reload(MaintenancePage, page_id).status == "draft"
        assert json.loads(fake_cloudflare.kv["status.example.com"])["status"] == "draft"
        assert fake_cloudflare.route_for("*status.example.com/*") is None

    def test_toggle_undeployed_page_only_changes_status(self, client, seed_data, login,
                                                        fake_cloudflare, reload):
        page = _create_page(seed_data["owner_id"], status="draft")
        page_id = page.id
        login("owner@example.com")

        client.post(f"/pages/{page_id}/toggle")

        assert reload(MaintenancePage, page_id).status == "published"
        assert fake_cloudflare.calls == []

    def test_toggle_kv_failure_keeps_status(self, client, seed_data, login,
                                            fake_cloudflare, reload):
        page = _create_page(seed_data["owner_id"], status="published")
        page_id = page.id
        login("owner@example.com")
        client.post(f"/pages/{page_id}/deploy")
        fake_cloudflare.fail["kv_write"] = 500

        resp = client.post(f"/pages/{page_id}/toggle", data={"status": "draft"},
                           follow_redirects=True)
        assert b"Could not update the edge" in resp.data
        assert reload(MaintenancePage, page_id).status == "published"


class TestDeletePage:

    def test_delete_deployed_page_tears_down_edge(self, client, seed_data, login,
                                                  fake_cloudflare):
        page = _create_page(seed_data["owner_id"], status="published")
        page_id = page.id
        login("owner@example.com")
        client.post(f"/pages/{page_id}/deploy")
        fake_cloudflare.add_dns_record("status.example.com")

        resp = client.post(f"/pages/{page_id}/delete")
        assert resp.status_code == 302

        db.session.expire_all()
        assert db.session.get(MaintenancePage, page_id) is None
        assert fake_cloudflare.kv == {}
        assert fake_cloudflare.routes == {}
        assert fake_cloudflare.dns_records == {}

    def test_delete_survives_teardown_failure(self, client, seed_data, login, fake_cloudflare):
        page = _create_page(seed_data["owner_id"], status="published")
        page_id = page.id
        login("owner@example.com")
        client.post(f"/pages/{page_id}/deploy")
        fake_cloudflare.fail["kv_delete"] = 500

        client.post(f"/pages/{page_id}/delete")

        db.session.expire_all()
        assert db.session.get(MaintenancePage, page_id) is None

    def test_delete_undeployed_page_is_harmless(self, client, seed_data, login,
                                                fake_cloudflare):
        page = _create_page(seed_data["owner_id"])
        login("owner@example.com")

        resp = client.post(f"/pages/{page.id}/delete")

        assert resp.status_code == 302
        assert MaintenancePage.query.count() == 0
        assert fake_cloudflare.kv == {}

    def test_delete_after_partial_deploy_removes_kv_value(self, client, seed_data, login,
                                                          fake_cloudflare):
        page = _create_page(seed_data["owner_id"], status="published")
        page_id = page.id
        login("owner@example.com")
        fake_cloudflare.fail["route_create"] = 500

        client.post(f"/pages/{page_id}/deploy")

        db.session.expire_all()
        assert db.session.get(MaintenancePage, page_id).deployed is False
        # No rollback: the KV value written before the route step stays.
        assert "status.example.com" in fake_cloudflare.kv

        fake_cloudflare.fail.clear()
        client.post(f"/pages/{page_id}/delete")

        db.session.expire_all()
        assert db.session.get(MaintenancePage, page_id) is None
        assert fake_cloudflare.kv == {}
        assert fake_cloudflare.routes == {}
