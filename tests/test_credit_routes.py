# -*- coding: utf-8 -*-

from datetime import timedelta


class TestClaimRoute:

    def test_requires_token(self, client):
        response = client.post("/api/v1/credits/claim", json={"type": "job_post"})
        assert response.status_code == 401
        assert response.get_json()["error"] == "auth_required"

    def test_claims_for_caller(self, client, auth_headers, make_credits):
        [credit_id] = make_credits()

        response = client.post("/api/v1/credits/claim", json={"type": "job_post"},
                               headers=auth_headers())

        assert response.status_code == 200
        credit = response.get_json()["credit"]
        assert credit["id"] == credit_id
        assert credit["status"] == "used"

    def test_claim_with_job_binds(self, client, auth_headers, make_credits):
        make_credits()

        response = client.post("/api/v1/credits/claim",
                               json={"type": "job_post", "job_id": "job-99"},
                               headers=auth_headers())

        assert response.get_json()["credit"]["used_for_job_id"] == "job-99"

    def test_insufficient_is_402(self, client, auth_headers):
        response = client.post("/api/v1/credits/claim", json={"type": "featured_post"},
                               headers=auth_headers())

        assert response.status_code == 402
        data = response.get_json()
        assert data["error"] == "insufficient_credits"
        assert data["credit_type"] == "featured_post"

    def test_unknown_type_is_400(self, client, auth_headers):
        response = client.post("/api/v1/credits/claim", json={"type": "banner"},
                               headers=auth_headers())
        assert response.status_code == 400
        assert "type" in response.get_json()["details"]

    def test_cannot_claim_for_another_user(self, client, auth_headers, make_credits):
        make_credits(user_id="employer-2")

        response = client.post("/api/v1/credits/claim",
                               json={"type": "job_post", "user_id": "employer-2"},
                               headers=auth_headers("employer-1"))

        assert response.status_code == 403

    def test_admin_may_claim_for_a_user(self, client, auth_headers, make_credits):
        make_credits(user_id="employer-2")

        response = client.post("/api/v1/credits/claim",
                               json={"type": "job_post", "user_id": "employer-2"},
                               headers=auth_headers("ops-1", role="admin"))

        assert response.status_code == 200
        assert response.get_json()["credit"]["user_id"] == "employer-2"


class TestBindRoute:

    def _claim(self, client, headers):
        response = client.post("/api/v1/credits/claim", json={"type": "job_post"},
                               headers=headers)
        return response.get_json()["credit"]["id"]

    def test_bind_once(self, client, auth_headers, make_credits):
        make_credits()
        headers = auth_headers()
        credit_id = self._claim(client, headers)

        first = client.post(f"/api/v1/credits/{credit_id}/bind", json={"job_id": "job-1"},
                            headers=headers)
        second = client.post(f"/api/v1/credits/{credit_id}/bind", json={"job_id": "job-2"},
                             headers=headers)

        assert first.status_code == 200
        assert first.get_json()["credit"]["used_for_job_id"] == "job-1"
        assert second.status_code == 409
        assert second.get_json()["error"] == "credit_binding_conflict"

    def test_someone_elses_credit_is_404(self, client, auth_headers, make_credits):
        make_credits(user_id="employer-2")
        credit_id = self._claim(client, auth_headers("employer-2"))

        response = client.post(f"/api/v1/credits/{credit_id}/bind", json={"job_id": "job-1"},
                               headers=auth_headers("employer-1"))

        assert response.status_code == 404

    def test_missing_job_id_is_400(self, client, auth_headers):
        response = client.post("/api/v1/credits/whatever/bind", json={},
                               headers=auth_headers())
        assert response.status_code == 400


class TestHistoryRoute:

    def test_history_for_caller(self, client, auth_headers, make_credits):
        make_credits(count=2)
        make_credits(expires_in=timedelta(days=-1))

        response = client.get("/api/v1/credits/history", headers=auth_headers())

        assert response.status_code == 200
        data = response.get_json()
        assert data["user_id"] == "employer-1"
        assert len(data["credits"]) == 3
        assert data["stats"]["available"] == 2
        assert data["stats"]["expired"] == 1
        assert len(data["purchases"]) == 2

    def test_status_filter(self, client, auth_headers, make_credits):
        make_credits(count=2)
        make_credits(expires_in=timedelta(days=-1))

        response = client.get("/api/v1/credits/history?status=expired",
                              headers=auth_headers())

        assert [c["status"] for c in response.get_json()["credits"]] == ["expired"]

    def test_bad_limit_is_400(self, client, auth_headers):
        response = client.get("/api/v1/credits/history?limit=0", headers=auth_headers())
        assert response.status_code == 400

    def test_unknown_status_is_400(self, client, auth_headers):
        response = client.get("/api/v1/credits/history?status=pending",
                              headers=auth_headers())
        assert response.status_code == 400
        assert "status" in response.get_json()["details"]

    def test_other_users_history_forbidden(self, client, auth_headers):
        response = client.get("/api/v1/credits/history?user_id=employer-2",
                              headers=auth_headers("employer-1"))
        assert response.status_code == 403


class TestNormalizeRoute:

    def test_admin_only(self, client, auth_headers):
        response = client.post("/api/v1/credits/normalize", json={},
                               headers=auth_headers())
        assert response.status_code == 403

    def test_admin_normalizes(self, client, auth_headers, make_credits):
        make_credits(count=2, user_id="employer-3")

        response = client.post("/api/v1/credits/normalize", json={"user_id": "employer-3"},
                               headers=auth_headers("ops-1", role="admin"))

        assert response.status_code == 200
        assert response.get_json() == {"converted": 2}
