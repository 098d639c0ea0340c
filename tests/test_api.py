"""HTTP surface: routing, actor resolution, envelopes and error mapping."""

import uuid
from urllib.parse import quote

import pytest

from api import app
from config import get_settings, settings_for

PR_URL = quote("Purchase Request")
RFQ1_URL = quote("RFQ 1")
FORM = {"approved_at": "2024-01-01T10:00", "office": "BAC", "remark": "ok"}


def headers(user_id, admin=False):
    h = {"X-User-Id": str(user_id)}
    if admin:
        h["X-User-Admin"] = "1"
    return h


@pytest.fixture
def staff_headers(staff):
    return headers(staff.id)


@pytest.fixture
def admin_headers(admin):
    return headers(admin.id, admin=True)


@pytest.fixture
def project_id(client, staff_headers):
    resp = client.post(
        "/api/v1/projects",
        json={"pr_number": "PR-2024-010", "project_details": "Network cabling"},
        headers=staff_headers,
    )
    assert resp.status_code == 201
    return resp.json()["data"]["project"]["id"]


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


def test_stage_catalog(client):
    resp = client.get("/api/v1/stages")
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert len(data) == 8
    assert data[0] == {"order": 1, "name": "Purchase Request", "short_form": "PR"}
    assert data[-1]["short_form"] == "NtP"


class TestActorResolution:
    def test_missing_user_header(self, client):
        resp = client.get("/api/v1/projects")
        assert resp.status_code == 401

    def test_malformed_user_id(self, client):
        resp = client.get("/api/v1/projects", headers={"X-User-Id": "not-a-uuid"})
        assert resp.status_code == 401


class TestProjects:
    def test_create_returns_project_and_stages(self, client, staff, staff_headers):
        resp = client.post(
            "/api/v1/projects",
            json={"pr_number": "PR-1", "project_details": "Chairs"},
            headers=staff_headers,
        )
        assert resp.status_code == 201
        data = resp.json()["data"]
        assert data["project"]["created_by_id"] == str(staff.id)
        stages = data["workflow"]["stages"]
        assert [s["short_form"] for s in stages][:2] == ["PR", "RFQ1"]
        assert stages[0]["created_at"] is not None
        assert stages[0]["button"] == "submit"
        assert {s["button"] for s in stages[1:]} == {"pending"}

    def test_create_requires_header_fields(self, client, staff_headers):
        resp = client.post(
            "/api/v1/projects",
            json={"pr_number": " ", "project_details": "Chairs"},
            headers=staff_headers,
        )
        assert resp.status_code == 422
        assert resp.json()["fields"] == ["pr_number"]

    def test_dashboard_and_statistics(self, client, project_id, staff_headers):
        resp = client.get("/api/v1/projects", params={"search": "cabling"}, headers=staff_headers)
        assert resp.status_code == 200
        rows = resp.json()["data"]
        assert [r["id"] for r in rows] == [project_id]
        assert rows[0]["status"] == "Purchase Request"

        resp = client.get("/api/v1/projects/statistics", headers=staff_headers)
        assert resp.status_code == 200
        assert resp.json()["data"] == {
            "total": 1, "finished": 0, "ongoing": 1,
            "finished_pct": 0.0, "ongoing_pct": 100.0,
        }

    def test_get_project(self, client, project_id, staff_headers):
        resp = client.get(f"/api/v1/projects/{project_id}", headers=staff_headers)
        assert resp.status_code == 200
        assert resp.json()["data"]["project"]["pr_number"] == "PR-2024-010"

    def test_get_unknown_project(self, client, staff_headers):
        resp = client.get(f"/api/v1/projects/{uuid.uuid4()}", headers=staff_headers)
        assert resp.status_code == 404

    def test_header_edit_requires_admin(self, client, project_id, staff_headers, admin_headers):
        body = {"pr_number": "PR-2024-011", "project_details": "Cabling, phase 2"}
        resp = client.patch(f"/api/v1/projects/{project_id}", json=body, headers=staff_headers)
        assert resp.status_code == 403

        resp = client.patch(f"/api/v1/projects/{project_id}", json=body, headers=admin_headers)
        assert resp.status_code == 200
        assert resp.json()["data"]["pr_number"] == "PR-2024-011"
        assert resp.json()["data"]["edited_at"] is not None

    def test_delete(self, client, project_id, staff_headers, admin_headers):
        resp = client.delete(f"/api/v1/projects/{project_id}", headers=staff_headers)
        assert resp.status_code == 403

        resp = client.delete(f"/api/v1/projects/{project_id}", headers=admin_headers)
        assert resp.status_code == 204

        resp = client.get(f"/api/v1/projects/{project_id}", headers=admin_headers)
        assert resp.status_code == 404


class TestStageActions:
    def url(self, project_id, stage=PR_URL):
        return f"/api/v1/projects/{project_id}/stages/{stage}"

    def test_submit_then_unsubmit(self, client, project_id, staff_headers, admin_headers):
        resp = client.post(self.url(project_id), json=FORM, headers=staff_headers)
        assert resp.status_code == 200
        data = resp.json()["data"]
        assert data["action"] == "submit"
        assert data["message"] == "Stage 'Purchase Request' submitted successfully."
        assert data["workflow"]["current_stage"] == "RFQ 1"

        resp = client.post(self.url(project_id), json={}, headers=admin_headers)
        assert resp.status_code == 200
        data = resp.json()["data"]
        assert data["action"] == "unsubmit"
        assert data["workflow"]["stages"][0]["office"] == ""
        assert data["workflow"]["last_submitted_stage"] is None

    def test_stage_listing_reflects_actor(self, client, project_id, staff_headers, admin_headers):
        client.post(self.url(project_id), json=FORM, headers=staff_headers)

        staff_view = client.get(f"/api/v1/projects/{project_id}/stages", headers=staff_headers)
        admin_view = client.get(f"/api/v1/projects/{project_id}/stages", headers=admin_headers)
        assert staff_view.status_code == admin_view.status_code == 200
        assert staff_view.json()["data"]["stages"][0]["button"] == "finished"
        assert admin_view.json()["data"]["stages"][0]["button"] == "unsubmit"
        assert admin_view.json()["data"]["stages"][1]["editable_fields"] == [
            "created_at", "approved_at", "office", "remark",
        ]

    def test_staff_repost_is_conflict(self, client, project_id, staff_headers):
        client.post(self.url(project_id), json=FORM, headers=staff_headers)
        resp = client.post(self.url(project_id), json=FORM, headers=staff_headers)
        assert resp.status_code == 409

    def test_stage_out_of_order_is_conflict(self, client, project_id, staff_headers):
        resp = client.post(self.url(project_id, quote("RFQ 2")), json=FORM, headers=staff_headers)
        assert resp.status_code == 409

    def test_missing_fields(self, client, project_id, staff_headers):
        resp = client.post(
            self.url(project_id), json={**FORM, "office": ""}, headers=staff_headers
        )
        assert resp.status_code == 422
        body = resp.json()
        assert body["fields"] == ["office"]
        assert "required" in body["detail"]

    def test_admin_must_send_created(self, client, project_id, staff_headers, admin_headers):
        client.post(self.url(project_id), json=FORM, headers=staff_headers)
        resp = client.post(self.url(project_id, RFQ1_URL), json=FORM, headers=admin_headers)
        assert resp.status_code == 422
        assert resp.json()["fields"] == ["created_at"]

        resp = client.post(
            self.url(project_id, RFQ1_URL),
            json={**FORM, "created_at": "2024-01-02T08:00"},
            headers=admin_headers,
        )
        assert resp.status_code == 200
        rfq1 = resp.json()["data"]["workflow"]["stages"][1]
        assert rfq1["created_at"] == "2024-01-02T08:00:00+00:00"

    def test_unknown_stage(self, client, project_id, staff_headers):
        resp = client.post(self.url(project_id, quote("RFQ 4")), json=FORM, headers=staff_headers)
        assert resp.status_code == 400

    def test_unknown_project(self, client, staff_headers):
        resp = client.post(self.url(uuid.uuid4()), json=FORM, headers=staff_headers)
        assert resp.status_code == 404


def test_unsubmit_without_body(client, project_id, staff_headers, admin_headers):
    url = f"/api/v1/projects/{project_id}/stages/{PR_URL}"
    client.post(url, json=FORM, headers=staff_headers)

    resp = client.post(url, headers=admin_headers)

    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["action"] == "unsubmit"
    assert data["workflow"]["stages"][0]["is_submitted"] is False


def test_submit_without_body_reports_missing_fields(client, project_id, staff_headers):
    resp = client.post(f"/api/v1/projects/{project_id}/stages/{PR_URL}", headers=staff_headers)
    assert resp.status_code == 422
    assert resp.json()["fields"] == ["approved_at", "office", "remark"]


class TestActorHeaderSettings:
    def test_header_name_read_from_environment(self, client, staff, monkeypatch):
        monkeypatch.setenv("ACTOR_HEADER", "X-Remote-User")
        get_settings.cache_clear()

        resp = client.get("/api/v1/projects", headers={"X-Remote-User": str(staff.id)})
        assert resp.status_code == 200

        resp = client.get("/api/v1/projects", headers=headers(staff.id))
        assert resp.status_code == 401

    def test_settings_dependency_override(self, client, admin, project_id):
        app.dependency_overrides[get_settings] = lambda: settings_for("testing").model_copy(
            update={"ADMIN_HEADER": "X-Remote-Admin"}
        )
        resp = client.delete(
            f"/api/v1/projects/{project_id}",
            headers={"X-User-Id": str(admin.id), "X-Remote-Admin": "true"},
        )
        assert resp.status_code == 204
