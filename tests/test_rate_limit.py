"""
tests/test_rate_limit.py -- slowapi limits on the credential endpoints.

conftest raises RATE_LIMIT_REQUESTS so other tests never trip the limiter.
Here the limit provider in api.limiter is patched down to two requests per
minute, and the shared in-memory counters are reset around each test.
"""

from __future__ import annotations

from types import SimpleNamespace

import pytest

from api.limiter import limiter


@pytest.fixture
def tight_limit(monkeypatch):
    monkeypatch.setattr("api.limiter.get_settings", lambda: SimpleNamespace(rate_limit="2/minute"))
    limiter.reset()
    yield
    limiter.reset()


def test_login_is_rate_limited(api_client, tight_limit):
    client, _, _ = api_client
    body = {"email": "hammer@example.com", "password": "guess-0001"}
    codes = [client.post("/auth/login", json=body).status_code for _ in range(3)]
    assert codes == [401, 401, 429]


def test_rate_limited_response_shape(api_client, tight_limit):
    client, _, _ = api_client
    body = {"refresh_token": "garbage"}
    for _ in range(2):
        client.post("/auth/refresh", json=body)
    resp = client.post("/auth/refresh", json=body)
    assert resp.status_code == 429
    assert resp.json()["error"]["code"] == "rate_limited"
    assert "retry-after" in resp.headers


def test_register_is_rate_limited(api_client, tight_limit):
    client, _, _ = api_client
    body = {"email": "flood@example.com", "password": "flood-pass-1", "first_name": "F", "last_name": "L"}
    codes = [client.post("/auth/register", json=body).status_code for _ in range(3)]
    assert codes == [200, 409, 429]


def test_unlimited_routes_are_not_throttled(api_client, tight_limit):
    client, _, _ = api_client
    codes = {client.get("/health").status_code for _ in range(5)}
    assert codes == {200}
