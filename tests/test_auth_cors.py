import pytest
from fastapi.testclient import TestClient

from receipt_api.main import create_app
from tests.conftest import make_settings

DOGE = {"symbol": "DOGE", "action": "buy", "price": 0.1, "size": 100}


@pytest.fixture
def secured(store, clock):
    return TestClient(create_app(make_settings(API_KEY="s3cret"), store=store, clock=clock))


def test_missing_or_wrong_key_is_401(secured):
    for headers in ({}, {"x-api-key": "nope"}, {"Authorization": "Bearer nope"}, {"Authorization": "Basic s3cret"}):
        r = secured.post("/receipt", json=DOGE, headers=headers)
        assert r.status_code == 401, headers
        body = r.json()
        assert body["ok"] is False
        assert body["code"] == "unauthorized"


def test_x_api_key_accepted(secured):
    r = secured.post("/receipt", json=DOGE, headers={"x-api-key": "s3cret"})
    assert r.status_code == 201


def test_bearer_token_accepted(secured):
    r = secured.get("/receipts", headers={"Authorization": "Bearer s3cret"})
    assert r.status_code == 200


def test_auth_checked_before_store(clock):
    client = TestClient(create_app(make_settings(API_KEY="s3cret"), store=None, clock=clock))
    assert client.get("/receipts").status_code == 401
    assert client.get("/receipts", headers={"x-api-key": "s3cret"}).json()["code"] == "kv_missing"


def test_health_is_public(secured):
    r = secured.get("/health")
    assert r.status_code == 200
    assert r.json()["auth"] is True


def test_options_any_path_is_204(secured):
    for path in ("/receipt", "/receipts", "/whatever/else"):
        r = secured.options(path, headers={"Origin": "https://app.example.com"})
        assert r.status_code == 204
        assert r.content == b""
        assert r.headers["access-control-allow-origin"] == "https://app.example.com"
        assert r.headers["access-control-max-age"] == "86400"
        assert "DELETE" in r.headers["access-control-allow-methods"]
        assert "x-api-key" in r.headers["access-control-allow-headers"]


def test_cors_reflects_origin_on_responses(client):
    r = client.get("/health", headers={"Origin": "https://dash.example.org"})
    assert r.headers["access-control-allow-origin"] == "https://dash.example.org"
    assert r.headers["vary"] == "Origin"

    r = client.get("/nope")
    assert r.headers["access-control-allow-origin"] == "*"


def test_cors_headers_on_errors(secured):
    r = secured.post("/receipt", json=DOGE, headers={"Origin": "https://x.test"})
    assert r.status_code == 401
    assert r.headers["access-control-allow-origin"] == "https://x.test"


def test_request_id_echoed_or_generated(client):
    r = client.get("/health", headers={"X-Request-ID": "abc-123"})
    assert r.headers["x-request-id"] == "abc-123"
    assert client.get("/health").headers["x-request-id"]


def test_valid_key_in_either_header_wins_over_stale_other(secured):
    r = secured.get("/receipts", headers={"x-api-key": "old", "Authorization": "Bearer s3cret"})
    assert r.status_code == 200
    r = secured.get("/receipts", headers={"x-api-key": "s3cret", "Authorization": "Bearer old"})
    assert r.status_code == 200


def test_unexpected_error_keeps_cors_and_request_id(store, clock):
    app = create_app(make_settings(), store=store, clock=clock)

    def explode():
        raise RuntimeError("boom")

    app.add_api_route("/explode", explode, methods=["GET"])
    r = TestClient(app).get("/explode", headers={"Origin": "https://x.test", "X-Request-ID": "rid-9"})
    assert r.status_code == 500
    assert r.json() == {"ok": False, "code": "internal_error", "message": "Internal server error"}
    assert r.headers["access-control-allow-origin"] == "https://x.test"
    assert r.headers["x-request-id"] == "rid-9"


def test_error_envelope_documented_in_openapi(client):
    schema = client.get("/openapi.json").json()
    not_found = schema["paths"]["/receipt/{receipt_id}"]["get"]["responses"]["404"]
    assert not_found["content"]["application/json"]["schema"]["$ref"].endswith("/ErrorResponse")
    assert "401" in schema["paths"]["/receipts"]["get"]["responses"]
