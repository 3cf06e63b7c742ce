"""Tests for the admin panel.

Covers:
- Access control (anonymous -> login, non-admin -> 403)
- Dashboard metrics
- User create/update/delete (with edge teardown), self-protection
- Plan create/edit, delete vs deactivate
- Pages and activity listings
"""

from statussaas.extensions import db
from statussaas.models.activity import ActivityEvent
from statussaas.models.cloudflare_config import CloudflareConfig
from statussaas.models.page import MaintenancePage
from statussaas.models.plan import SubscriptionPlan
from statussaas.models.user import User


def _login_admin(login):
    return login("admin@statussaas.local", "admin123")


class TestAccess:

    def test_anonymous_redirected(self, client, seed_data):
        resp = client.get("/admin/")
        assert resp.status_code == 302
        assert "/auth/login" in resp.headers["Location"]

    def test_non_admin_forbidden(self, client, seed_data, login):
        login("owner@example.com")
        assert client.get("/admin/").status_code == 403
        assert client.get("/admin/users").status_code == 403
        assert client.post("/admin/plans/new", data={"name": "x"}).status_code == 403


class TestDashboard:

    def test_dashboard_renders_metrics(self, client, seed_data, login):
        _login_admin(login)
        resp = client.get("/admin/")
        assert resp.status_code == 200
        # One active pro subscriber at 29.99/month.
        assert b"29.99" in resp.data


class TestUsers:

    def test_list_and_search(self, client, seed_data, login):
        _login_admin(login)
        resp = client.get("/admin/users?q=pro")
        assert resp.status_code == 200
        assert b"pro@example.com" in resp.data
        assert b"owner@example.com" not in resp.data

    def test_filter_by_plan(self, client, seed_data, login):
        _login_admin(login)
        resp = client.get("/admin/users?plan=pro")
        assert b"pro@example.com" in resp.data
        assert b"owner@example.com" not in resp.data

    def test_create_user(self, client, seed_data, login):
        _login_admin(login)
        resp = client.post("/admin/users/new", data={
            "email": "made@example.com",
            "full_name": "Made By Admin",
            "password": "longenough",
            "role": "user",
            "status": "active",
            "plan": "basic",
        })
        assert resp.status_code == 302

        user = User.query.filter_by(email="made@example.com").one()
        assert user.plan == "basic"
        assert ActivityEvent.query.filter_by(action="admin.user_created").count() == 1

    def test_create_user_validation(self, client, seed_data, login):
        _login_admin(login)
        resp = client.post("/admin/users/new", data={
            "email": "bad", "full_name": "", "password": "short",
        })
        assert resp.status_code == 400
        assert User.query.filter_by(email="bad").count() == 0

    def test_update_user_plan(self, client, seed_data, login, reload):
        _login_admin(login)
        owner_id = seed_data["owner_id"]
        resp = client.post(f"/admin/users/{owner_id}", data={
            "email": "owner@example.com",
            "full_name": "Renamed Owner",
            "role": "user",
            "status": "active",
            "plan": "enterprise",
        })
        assert resp.status_code == 302

        user = reload(User, owner_id)
        assert user.full_name == "Renamed Owner"
        assert user.plan == "enterprise"
        assert ActivityEvent.query.filter_by(action="subscription.plan_changed").count() == 1

    def test_cannot_demote_self(self, client, seed_data, login, reload):
        _login_admin(login)
        admin_id = seed_data["admin_id"]
        client.post(f"/admin/users/{admin_id}", data={
            "email": "admin@statussaas.local",
            "full_name": "Admin User",
            "role": "user",
            "status": "active",
            "plan": "free",
        })
        assert reload(User, admin_id).role == "admin"

    def test_cannot_delete_self(self, client, seed_data, login):
        _login_admin(login)
        client.post(f"/admin/users/{seed_data['admin_id']}/delete")
        assert User.query.filter_by(email="admin@statussaas.local").count() == 1

    def test_delete_user_tears_down_pages(self, client, seed_data, login, fake_cloudflare):
        owner_id = seed_data["owner_id"]
        page = MaintenancePage(
            user_id=owner_id, title="Gone", domain="gone.example.com",
            status="published", deployed=True,
        )
        db.session.add(page)
        db.session.commit()
        fake_cloudflare.kv["gone.example.com"] = "{}"
        fake_cloudflare.add_route("*gone.example.com/*")
        _login_admin(login)

        resp = client.post(f"/admin/users/{owner_id}/delete")

        assert resp.status_code == 302
        assert User.query.filter_by(email="owner@example.com").count() == 0
        assert MaintenancePage.query.filter_by(user_id=owner_id).count() == 0
        assert CloudflareConfig.query.filter_by(user_id=owner_id).count() == 0
        assert "gone.example.com" not in fake_cloudflare.kv
        assert fake_cloudflare.route_for("*gone.example.com/*") is None

    def test_delete_user_cleans_up_partial_deploy(self, client, seed_data, login,
                                                  fake_cloudflare):
        owner_id = seed_data["owner_id"]
        # Deploy stopped after the KV write, so the record never became deployed.
        db.session.add(MaintenancePage(
            user_id=owner_id, title="Half", domain="half.example.com",
            status="published", deployed=False,
        ))
        db.session.commit()
        fake_cloudflare.kv["half.example.com"] = '{"status": "published"}'
        _login_admin(login)

        client.post(f"/admin/users/{owner_id}/delete")

        assert MaintenancePage.query.count() == 0
        assert fake_cloudflare.kv == {}

    def test_delete_user_survives_teardown_failure(self, client, seed_data, login,
                                                   fake_cloudflare):
        owner_id = seed_data["owner_id"]
        db.session.add(MaintenancePage(
            user_id=owner_id, title="Stuck", domain="stuck.example.com",
            status="published", deployed=True,
        ))
        db.session.commit()
        fake_cloudflare.fail["verify"] = 500
        _login_admin(login)

        client.post(f"/admin/users/{owner_id}/delete")

        assert User.query.filter_by(email="owner@example.com").count() == 0
        assert MaintenancePage.query.count() == 0

    def test_unknown_user_404(self, client, seed_data, login):
        _login_admin(login)
        assert client.get("/admin/users/nope").status_code == 404


class TestPlans:

    def _form(self, **overrides):
        form = {
            "code": "team",
            "name": "Team",
            "description": "For teams",
            "price": "49.00",
            "interval": "month",
            "stripe_price_id": "price_team",
            "page_limit": "50",
            "views_per_page": "100000",
            "features": "50 pages\nPriority support\n",
            "is_active": "on",
        }
        form.update(overrides)
        return form

    def test_plan_list(self, client, seed_data, login):
        _login_admin(login)
        resp = client.get("/admin/plans")
        assert resp.status_code == 200
        assert b"Enterprise" in resp.data

    def test_create_plan(self, client, seed_data, login):
        _login_admin(login)
        resp = client.post("/admin/plans/new", data=self._form())
        assert resp.status_code == 302

        plan = SubscriptionPlan.query.filter_by(code="team").one()
        assert plan.limits == {"pages": 50, "views_per_page": 100000}
        assert plan.features == ["50 pages", "Priority support"]
        assert plan.is_active is True

    def test_duplicate_code_rejected(self, client, seed_data, login):
        _login_admin(login)
        resp = client.post("/admin/plans/new", data=self._form(code="pro"))
        assert resp.status_code == 400
        assert SubscriptionPlan.query.filter_by(code="pro").count() == 1

    def test_invalid_limits_rejected(self, client, seed_data, login):
        _login_admin(login)
        resp = client.post("/admin/plans/new", data=self._form(page_limit="zero"))
        assert resp.status_code == 400
        assert SubscriptionPlan.query.filter_by(code="team").count() == 0

    def test_edit_plan_keeps_code(self, client, seed_data, login, reload):
        _login_admin(login)
        plan = SubscriptionPlan.query.filter_by(code="basic").one()
        plan_id = plan.id

        resp = client.post(
            f"/admin/plans/{plan_id}/edit",
            data=self._form(code="renamed", name="Basic Plus", page_limit="8"),
        )
        assert resp.status_code == 302

        plan = reload(SubscriptionPlan, plan_id)
        assert plan.code == "basic"
        assert plan.name == "Basic Plus"
        assert plan.page_limit == 8

    def test_delete_unused_plan(self, client, seed_data, login):
        _login_admin(login)
        plan_id = SubscriptionPlan.query.filter_by(code="enterprise").one().id

        client.post(f"/admin/plans/{plan_id}/delete")

        assert SubscriptionPlan.query.filter_by(code="enterprise").count() == 0

    def test_delete_plan_with_subscribers_deactivates(self, client, seed_data, login, reload):
        _login_admin(login)
        plan_id = SubscriptionPlan.query.filter_by(code="pro").one().id

        client.post(f"/admin/plans/{plan_id}/delete")

        plan = reload(SubscriptionPlan, plan_id)
        assert plan is not None
        assert plan.is_active is False


class TestListings:

    def test_pages_listing(self, client, seed_data, login):
        db.session.add(MaintenancePage(
            user_id=seed_data["owner_id"], title="Listed", domain="listed.example.com",
        ))
        db.session.commit()
        _login_admin(login)

        resp = client.get("/admin/pages")
        assert resp.status_code == 200
        assert b"listed.example.com" in resp.data

    def test_activity_log(self, client, seed_data, login):
        _login_admin(login)
        client.post("/admin/plans/new", data={
            "code": "x", "name": "X", "price": "1", "interval": "month",
            "page_limit": "1", "views_per_page": "1",
        })

        resp = client.get("/admin/activity")
        assert resp.status_code == 200
        assert b"admin.plan_created" in resp.data
