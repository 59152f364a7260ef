"""
Tests for sign-in, profile administration, the catalog and the audit trail.
"""
from datetime import date

from app.db.models import ContractorRequirement, Profile, ProfileStatus, UserRole

from conftest import add_requirement, auth_headers, make_user


class TestLogin:

    def test_login_success(self, db_session, client, contractor_user, contractor):
        response = client.post("/api/auth/login", json={"email": "AnPhat@osh.vn", "password": "Password123"})
        assert response.status_code == 200
        body = response.json()
        assert body["token_type"] == "bearer"
        assert body["user"]["role"] == "contractor"
        assert body["user"]["contractor_id"] == contractor.id

    def test_wrong_password(self, db_session, client, contractor_user):
        response = client.post("/api/auth/login", json={"email": "anphat@osh.vn", "password": "wrong"})
        assert response.status_code == 401
        assert response.json()["detail"] == "Invalid email or password"

    def test_deactivated_profile(self, db_session, client, contractor):
        make_user(db_session, "old@anphat.vn", UserRole.CONTRACTOR.value,
                  contractor_id=contractor.id, status=ProfileStatus.DEACTIVATED.value)
        response = client.post("/api/auth/login", json={"email": "old@anphat.vn", "password": "Password123"})
        assert response.status_code == 401
        assert response.json()["detail"] == "Account is disabled"

    def test_me_resolves_role_from_profile(self, db_session, client, contractor_headers, contractor):
        response = client.get("/api/auth/me", headers=contractor_headers)
        assert response.status_code == 200
        body = response.json()
        assert body["role"] == "contractor"
        assert body["contractor_name"] == contractor.name
        assert body["status"] == ProfileStatus.ACTIVE.value

    def test_invited_user_is_guest(self, db_session, client, contractor):
        user = make_user(db_session, "new@anphat.vn", UserRole.CONTRACTOR.value,
                         contractor_id=contractor.id, status=ProfileStatus.INVITED.value)
        headers = auth_headers(user)
        assert client.get("/api/auth/me", headers=headers).json()["role"] == "guest"
        assert client.get("/api/dashboard/progress", headers=headers).status_code == 403

    def test_change_password(self, db_session, client, contractor_user, contractor_headers):
        response = client.post(
            "/api/auth/change-password",
            json={"current_password": "Password123", "new_password": "NewPassword2024"},
            headers=contractor_headers,
        )
        assert response.status_code == 200
        login = client.post("/api/auth/login", json={"email": "anphat@osh.vn", "password": "NewPassword2024"})
        assert login.status_code == 200


class TestProfileAdmin:

    def test_list_users_filtered_by_role(self, db_session, client, admin_headers, contractor_user):
        response = client.get("/api/admin/users?role=contractor", headers=admin_headers)
        assert response.status_code == 200
        assert [p["email"] for p in response.json()] == ["anphat@osh.vn"]

    def test_contractor_cannot_list_users(self, db_session, client, contractor_headers):
        assert client.get("/api/admin/users", headers=contractor_headers).status_code == 403

    def test_deactivate_user(self, db_session, client, admin_headers, contractor_user):
        profile = db_session.query(Profile).filter(Profile.user_id == contractor_user.id).one()
        response = client.patch(
            f"/api/admin/users/{profile.id}",
            json={"status": "deactivated"},
            headers=admin_headers,
        )
        assert response.status_code == 200
        assert response.json()["status"] == "deactivated"
        # Takes effect on the next request
        assert client.get("/api/auth/me", headers=auth_headers(contractor_user)).json()["role"] == "guest"

    def test_cannot_deactivate_self(self, db_session, client, admin_user, admin_headers):
        profile = db_session.query(Profile).filter(Profile.user_id == admin_user.id).one()
        response = client.patch(
            f"/api/admin/users/{profile.id}",
            json={"status": "deactivated"},
            headers=admin_headers,
        )
        assert response.status_code == 400

    def test_super_admin_protected(self, db_session, client, admin_user, second_admin):
        profile = db_session.query(Profile).filter(Profile.user_id == admin_user.id).one()
        response = client.patch(
            f"/api/admin/users/{profile.id}",
            json={"role": "contractor"},
            headers=auth_headers(second_admin),
        )
        assert response.status_code == 403

    def test_switch_to_admin_drops_contractor(self, db_session, client, admin_headers, contractor_user):
        profile = db_session.query(Profile).filter(Profile.user_id == contractor_user.id).one()
        response = client.patch(f"/api/admin/users/{profile.id}", json={"role": "admin"}, headers=admin_headers)
        assert response.status_code == 200
        assert response.json()["contractor_id"] is None

    def test_null_role_and_status_keep_current_values(self, db_session, client, admin_headers,
                                                      contractor_user, contractor):
        profile = db_session.query(Profile).filter(Profile.user_id == contractor_user.id).one()
        response = client.patch(
            f"/api/admin/users/{profile.id}",
            json={"role": None, "status": None, "note": "Đã xác minh"},
            headers=admin_headers,
        )
        assert response.status_code == 200
        body = response.json()
        assert body["role"] == "contractor"
        assert body["status"] == ProfileStatus.ACTIVE.value
        assert body["contractor_id"] == contractor.id
        assert body["note"] == "Đã xác minh"


class TestCatalog:

    def test_contractor_sees_only_itself(self, db_session, client, contractor_headers, contractor, other_contractor):
        response = client.get("/api/catalog/contractors", headers=contractor_headers)
        assert [c["id"] for c in response.json()] == [contractor.id]

    def test_create_contractor(self, db_session, client, admin_headers):
        response = client.post(
            "/api/catalog/contractors",
            json={"name": "Công ty Giàn giáo Minh Long"},
            headers=admin_headers,
        )
        assert response.status_code == 201

    def test_toggle_critical(self, db_session, client, admin_headers, doc_types):
        _, waste = doc_types
        response = client.put(
            f"/api/catalog/doc-types/{waste.id}/critical",
            json={"is_critical": True},
            headers=admin_headers,
        )
        assert response.status_code == 200
        assert response.json()["is_critical"] is True

    def test_requirement_upsert_updates_in_place(self, db_session, client, admin_headers, contractor, doc_types):
        jsa, _ = doc_types
        payload = {"contractor_id": contractor.id, "doc_type_id": jsa.id, "required_count": 2}
        first = client.put("/api/catalog/requirements", json=payload, headers=admin_headers)
        second = client.put(
            "/api/catalog/requirements",
            json={**payload, "required_count": 4, "planned_due_date": "2024-02-01"},
            headers=admin_headers,
        )
        assert first.json()["id"] == second.json()["id"]
        assert second.json()["required_count"] == 4
        assert db_session.query(ContractorRequirement).count() == 1

    def test_requirement_unknown_doc_type(self, db_session, client, admin_headers, contractor):
        response = client.put(
            "/api/catalog/requirements",
            json={"contractor_id": contractor.id, "doc_type_id": 999},
            headers=admin_headers,
        )
        assert response.status_code == 404

    def test_contractor_cannot_edit_requirements(self, db_session, client, contractor_headers,
                                                 contractor, doc_types):
        response = client.put(
            "/api/catalog/requirements",
            json={"contractor_id": contractor.id, "doc_type_id": doc_types[0].id},
            headers=contractor_headers,
        )
        assert response.status_code == 403

    def test_list_requirements_scoped(self, db_session, client, contractor_headers, contractor,
                                      other_contractor, doc_types):
        add_requirement(db_session, contractor.id, doc_types[0].id, planned_due_date=date(2024, 1, 1))
        add_requirement(db_session, other_contractor.id, doc_types[0].id)

        response = client.get("/api/catalog/requirements", headers=contractor_headers)
        assert [r["contractor_id"] for r in response.json()] == [contractor.id]


class TestAuditTrail:

    def test_actions_are_recorded(self, db_session, client, admin_headers, contractor):
        client.post("/api/catalog/contractors", json={"name": "Công ty Cơ khí Sao Mai"}, headers=admin_headers)

        response = client.get("/api/audit/logs", headers=admin_headers)
        assert response.status_code == 200
        actions = [log["action"] for log in response.json()]
        assert "create_contractor" in actions

        summary = client.get("/api/audit/summary", headers=admin_headers).json()
        assert summary["total_events"] >= 1
