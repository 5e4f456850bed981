"""
Workpaper sign-off API tests.
"""

from auditflow.models import db
from auditflow.models.workpaper import Workpaper, WorkpaperSignoff

from conftest import make_tenant, make_user


def _sign(client, workpaper, user, as_user, signoff_type, **extra):
    return client.post(
        f"/api/v1/workpapers/{workpaper.id}/signoffs",
        json={"signoff_type": signoff_type, **extra},
        headers=as_user(user),
    )


def _sign_all(client, workpaper, users, as_user):
    ids = []
    for signoff_type, role in (("preparer", "staff"), ("reviewer", "reviewer"),
                               ("manager", "manager"), ("partner", "partner")):
        res = _sign(client, workpaper, users[role], as_user, signoff_type)
        assert res.status_code == 201, res.get_json()
        ids.append(res.get_json()["id"])
    return ids


class TestSignoffStatusEndpoint:

    def test_fresh_workpaper(self, client, workpaper, users, as_user):
        res = client.get(f"/api/v1/workpapers/{workpaper.id}/signoffs", headers=as_user(users["staff"]))
        assert res.status_code == 200
        data = res.get_json()
        assert data["status"]["next_required_type"] == "preparer"
        assert data["status"]["can_sign"] is True
        assert [r["type"] for r in data["requirements"]] == ["preparer", "reviewer", "manager", "partner"]
        assert data["signoffs"] == []

    def test_other_tenant_is_404(self, client, workpaper, as_user):
        other = make_tenant("other-firm")
        outsider = make_user(other.id, "partner", email="outsider@other.com")
        db.session.commit()
        res = client.get(f"/api/v1/workpapers/{workpaper.id}/signoffs", headers=as_user(outsider))
        assert res.status_code == 404


class TestCreateSignoffEndpoint:

    def test_created(self, client, workpaper, users, as_user):
        res = _sign(client, workpaper, users["staff"], as_user, "Preparer", comments="done")
        assert res.status_code == 201
        data = res.get_json()
        assert data["signoff_type"] == "preparer"
        assert data["comments"] == "done"
        assert data["signer_name"] == users["staff"].full_name
        assert data["chain"]["next_required_type"] == "reviewer"

    def test_non_string_comments_is_422(self, client, workpaper, users, as_user):
        res = _sign(client, workpaper, users["staff"], as_user, "preparer", comments={"note": "x"})
        assert res.status_code == 422
        assert db.session.query(WorkpaperSignoff).count() == 0

    def test_client_ip_from_forwarded_header(self, client, workpaper, users, as_user):
        res = client.post(
            f"/api/v1/workpapers/{workpaper.id}/signoffs",
            json={"signoff_type": "preparer"},
            headers={**as_user(users["staff"]), "X-Forwarded-For": "203.0.113.9, 10.0.0.1"},
        )
        assert res.get_json()["ip_address"] == "203.0.113.9"

    def test_missing_type_is_400(self, client, workpaper, users, as_user):
        res = client.post(f"/api/v1/workpapers/{workpaper.id}/signoffs", json={}, headers=as_user(users["staff"]))
        assert res.status_code == 400

    def test_invalid_type_is_422(self, client, workpaper, users, as_user):
        assert _sign(client, workpaper, users["staff"], as_user, "auditor").status_code == 422

    def test_out_of_order_is_403_with_reason(self, client, workpaper, users, as_user):
        res = _sign(client, workpaper, users["manager"], as_user, "manager")
        assert res.status_code == 403
        assert res.get_json()["details"]["reason"] == "out_of_order"

    def test_self_review_is_403(self, client, workpaper, users, as_user):
        _sign(client, workpaper, users["senior"], as_user, "preparer")
        res = _sign(client, workpaper, users["senior"], as_user, "reviewer")
        assert res.status_code == 403
        assert res.get_json()["details"]["reason"] == "already_signed"

    def test_full_chain_locks(self, client, workpaper, users, as_user):
        _sign_all(client, workpaper, users, as_user)
        assert db.session.get(Workpaper, workpaper.id).is_locked

        res = _sign(client, workpaper, users["second_partner"], as_user, "partner")
        assert res.status_code == 403
        assert res.get_json()["details"]["reason"] == "locked"


class TestRevokeEndpoint:

    def test_revoke_partner(self, client, workpaper, users, as_user):
        ids = _sign_all(client, workpaper, users, as_user)
        res = client.post(
            f"/api/v1/signoffs/{ids[-1]}/revoke",
            json={"reason": "Subsequent event identified"},
            headers=as_user(users["manager"]),
        )
        assert res.status_code == 200
        assert res.get_json()["review_status"] == "draft"
        assert res.get_json()["locked_at"] is None
        assert db.session.query(WorkpaperSignoff).count() == 3

    def test_reason_required(self, client, workpaper, users, as_user):
        ids = _sign_all(client, workpaper, users, as_user)
        res = client.post(f"/api/v1/signoffs/{ids[-1]}/revoke", json={}, headers=as_user(users["partner"]))
        assert res.status_code == 400

    def test_not_most_senior_is_403(self, client, workpaper, users, as_user):
        ids = _sign_all(client, workpaper, users, as_user)
        res = client.post(
            f"/api/v1/signoffs/{ids[0]}/revoke",
            json={"reason": "typo"},
            headers=as_user(users["partner"]),
        )
        assert res.status_code == 403
        assert res.get_json()["details"]["reason"] == "not_most_senior"

    def test_unknown_signoff_is_404(self, client, users, as_user):
        res = client.post("/api/v1/signoffs/9999/revoke", json={"reason": "x"}, headers=as_user(users["partner"]))
        assert res.status_code == 404


class TestWorkpaperEditAndIntegrity:

    def test_edit_then_integrity_fails(self, client, workpaper, users, as_user):
        _sign(client, workpaper, users["staff"], as_user, "preparer")
        ok = client.get(f"/api/v1/workpapers/{workpaper.id}/integrity", headers=as_user(users["manager"]))
        assert ok.get_json()["is_valid"] is True

        res = client.patch(
            f"/api/v1/workpapers/{workpaper.id}",
            json={"content": {"balance": 999}},
            headers=as_user(users["staff"]),
        )
        assert res.status_code == 200

        bad = client.get(f"/api/v1/workpapers/{workpaper.id}/integrity", headers=as_user(users["manager"]))
        assert bad.get_json()["is_valid"] is False

    def test_locked_edit_is_403(self, client, workpaper, users, as_user):
        _sign_all(client, workpaper, users, as_user)
        res = client.patch(
            f"/api/v1/workpapers/{workpaper.id}",
            json={"title": "Rewritten"},
            headers=as_user(users["partner"]),
        )
        assert res.status_code == 403
        assert res.get_json()["details"]["reason"] == "locked"
