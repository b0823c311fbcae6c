"""Integration tests for the HTTP auth flow.

Tests the complete flow including:
- Login with password and with a device signature
- Validate / refresh / logout
- Error envelope for each failure kind
- Administrative disable switch
"""

import time

import pytest
from fastapi.testclient import TestClient

from nekolc import app as app_module
from nekolc.service.runtime import get_runtime, reset_runtime_for_tests

LOGIN = "/v0/api/auth/login"
REFRESH = "/v0/api/auth/refresh"
VALIDATE = "/v0/api/auth/validate"
LOGOUT = "/v0/api/auth/logout"


@pytest.fixture
def client():
    """Create a test client for the API."""
    return TestClient(app_module.app)


@pytest.fixture
def credentials():
    return {"username": "operator", "password": "Operator-Password-42"}


@pytest.fixture
def tokens(client, credentials):
    response = client.post(LOGIN, json={"auth": credentials})
    assert response.status_code == 200
    return response.json()


def _signed_body(identifier: str, timestamp: int) -> dict:
    guard = get_runtime().replay_guard
    return {
        "auth": {
            "identifier": identifier,
            "timestamp": timestamp,
            "signature": guard.expected_signature(identifier, timestamp),
        }
    }


class TestLogin:
    def test_password_login_returns_token_pair(self, client, credentials):
        response = client.post(
            LOGIN, json={"auth": credentials, "preferences": {"language": "en"}}
        )
        assert response.status_code == 200
        data = response.json()
        assert data["accessToken"]
        assert data["refreshToken"]
        assert data["accessToken"] != data["refreshToken"]
        assert data["meta"]["apiVersion"] == "v0"

    def test_device_login_returns_token_pair(self, client):
        response = client.post(LOGIN, json=_signed_body("dev-42", int(time.time())))
        assert response.status_code == 200
        assert response.json()["accessToken"]

    def test_stale_device_assertion_is_unauthorized(self, client):
        response = client.post(LOGIN, json=_signed_body("dev-42", int(time.time()) - 301))
        assert response.status_code == 401
        body = response.json()
        assert body["status"] == "error"
        assert body["error"]["code"] == "unauthorized"
        assert body["error"]["message"] == "Invalid credentials"

    def test_wrong_password_is_unauthorized(self, client):
        response = client.post(
            LOGIN, json={"auth": {"username": "operator", "password": "wrong"}}
        )
        assert response.status_code == 401
        assert response.json()["error"]["code"] == "unauthorized"

    def test_missing_mode_is_invalid_request(self, client):
        response = client.post(LOGIN, json={"auth": {"username": "operator"}})
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "invalid_request"

    def test_error_details_never_echo_input(self, client):
        response = client.post(
            LOGIN, json={"auth": {"password": "Operator-Password-42"}}
        )
        assert response.status_code == 400
        assert "Operator-Password-42" not in response.text


class TestTokenLifecycle:
    def test_validate_live_token_is_no_content(self, client, tokens):
        response = client.post(VALIDATE, json={"accessToken": tokens["accessToken"]})
        assert response.status_code == 204
        assert response.content == b""

    def test_refresh_returns_new_access_token(self, client, tokens):
        response = client.post(REFRESH, json={"refreshToken": tokens["refreshToken"]})
        assert response.status_code == 200
        renewed = response.json()["accessToken"]
        assert renewed != tokens["accessToken"]
        assert client.post(VALIDATE, json={"accessToken": renewed}).status_code == 204

    def test_refresh_with_access_token_is_unauthorized(self, client, tokens):
        response = client.post(REFRESH, json={"refreshToken": tokens["accessToken"]})
        assert response.status_code == 401

    def test_logout_revokes_both_tokens(self, client, tokens):
        response = client.post(
            LOGOUT,
            json={
                "logout": {
                    "accessToken": tokens["accessToken"],
                    "refreshToken": tokens["refreshToken"],
                }
            },
        )
        assert response.status_code == 204

        validate = client.post(VALIDATE, json={"accessToken": tokens["accessToken"]})
        assert validate.status_code == 401
        refresh = client.post(REFRESH, json={"refreshToken": tokens["refreshToken"]})
        assert refresh.status_code == 401

    def test_logout_twice_is_still_no_content(self, client, tokens):
        body = {"logout": {"accessToken": tokens["accessToken"], "refreshToken": ""}}
        assert client.post(LOGOUT, json=body).status_code == 204
        assert client.post(LOGOUT, json=body).status_code == 204

    def test_validate_garbage_is_unauthorized(self, client):
        response = client.post(VALIDATE, json={"accessToken": "a.b.c"})
        assert response.status_code == 401
        assert response.json()["error"]["message"] == "Invalid or expired access token"


class TestDisabled:
    @pytest.fixture
    def disabled_client(self, monkeypatch):
        monkeypatch.setenv("ENABLE_AUTH", "false")
        reset_runtime_for_tests()
        return TestClient(app_module.app)

    @pytest.mark.parametrize("path", [LOGIN, REFRESH, VALIDATE, LOGOUT])
    def test_every_endpoint_is_not_implemented(self, disabled_client, path):
        response = disabled_client.post(path, json={})
        assert response.status_code == 501
        assert response.json()["error"]["code"] == "not_implemented"

    def test_valid_login_is_still_not_implemented(self, disabled_client, credentials):
        response = disabled_client.post(LOGIN, json={"auth": credentials})
        assert response.status_code == 501


class TestAmbient:
    def test_request_id_is_echoed(self, client):
        response = client.get("/healthz", headers={"X-Request-ID": "req-123"})
        assert response.headers["X-Request-ID"] == "req-123"

    def test_error_envelope_carries_request_id(self, client):
        response = client.post(
            VALIDATE, json={"accessToken": "a.b.c"}, headers={"X-Request-ID": "req-456"}
        )
        assert response.json()["request_id"] == "req-456"

    def test_healthz_reports_store(self, client):
        response = client.get("/healthz")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["checks"]["store"]["type"] == "file"

    def test_token_responses_are_not_cacheable(self, client, credentials):
        response = client.post(LOGIN, json={"auth": credentials})
        assert response.headers["Cache-Control"] == "no-store"
