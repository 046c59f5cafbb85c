"""Tests for Supabase JWT authentication on API routes."""

from unittest.mock import AsyncMock, patch


class TestAuthentication:
    def test_missing_token_returns_401(self, client):
        response = client.post("/api/focus-groups/00000000-0000-0000-0000-000000000001/apply")

        assert response.status_code == 401
        assert response.json()["detail"] == "Not authenticated"

    def test_invalid_token_returns_401(self, client):
        response = client.get(
            "/api/focus-groups/mine",
            headers={"Authorization": "Bearer not.a.token"},
        )

        assert response.status_code == 401

    def test_wrong_audience_returns_401(self, client, token_factory):
        token = token_factory(audience="anon")

        response = client.get(
            "/api/focus-groups/mine",
            headers={"Authorization": f"Bearer {token}"},
        )

        assert response.status_code == 401

    def test_wrong_secret_returns_401(self, client, token_factory):
        token = token_factory(secret="another-secret-with-at-least-32-bytes")

        response = client.get(
            "/api/focus-groups/mine",
            headers={"Authorization": f"Bearer {token}"},
        )

        assert response.status_code == 401

    def test_non_uuid_subject_returns_401(self, client, token_factory):
        token = token_factory(user_id="not-a-uuid")

        response = client.get(
            "/api/focus-groups/mine",
            headers={"Authorization": f"Bearer {token}"},
        )

        assert response.status_code == 401

    def test_cookie_token_accepted(self, client, token_factory, mock_conn):
        with patch(
            "web_api.routes.focus_groups.get_user_focus_groups",
            new_callable=AsyncMock,
            return_value=[],
        ):
            client.cookies.set("sb-access-token", token_factory())
            response = client.get("/api/focus-groups/mine")

        assert response.status_code == 200
        assert response.json() == {"focus_groups": []}

    def test_bearer_token_passes_user_id(self, client, auth_headers, mock_conn):
        with patch(
            "web_api.routes.focus_groups.get_user_focus_groups",
            new_callable=AsyncMock,
            return_value=[],
        ) as mock_get:
            response = client.get("/api/focus-groups/mine", headers=auth_headers)

        assert response.status_code == 200
        assert str(mock_get.call_args.args[1]) == "00000000-0000-0000-0000-0000000000aa"
