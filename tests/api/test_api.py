"""
Tests for the FastAPI application.
"""

import pytest
from fastapi.testclient import TestClient

from api.main import create_app
from storage.kv import MemoryKeyValueStore
from timetable.errors import MappingFetchError
from utilities.config import config

STALE_KEY = "cache:5a:2000:w1"


@pytest.fixture
def kv():
    """Store holding one cache entry from a long past week."""
    return MemoryKeyValueStore({STALE_KEY: {"hash": "old", "changeCount": 1, "updatedAt": "2000-01-03T07:00:00Z"}})


@pytest.fixture
def client(services):
    """Create test client."""
    with TestClient(create_app(services)) as test_client:
        yield test_client


@pytest.fixture
def admin_headers():
    return {"Authorization": f"Bearer {config.admin_key}"}


def register(client, token="token-a", class_name="5a", username="anna"):
    return client.post("/register", json={"deviceToken": token, "className": class_name, "username": username})


def test_health_check(client):
    """Test health check endpoint."""
    response = client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["database_status"] == "healthy"
    assert "timestamp" in data
    assert "version" in data


def test_status_before_first_run(client):
    """Test status on a fresh installation."""
    response = client.get("/status")
    assert response.status_code == 200
    data = response.json()
    assert data["devices"] == 0
    assert data["classes"] == []
    assert data["last_check"] == "never"
    assert data["cache_entries"] == 1
    assert 1 <= data["week"] <= 53


def test_register_and_unregister(client):
    """Test the device lifecycle through the public endpoints."""
    response = register(client)
    assert response.status_code == 200
    assert response.json()["class_name"] == "5a"

    status = client.get("/status").json()
    assert status["devices"] == 1
    assert status["classes"] == ["5a"]

    response = client.post("/unregister", json={"deviceToken": "token-a"})
    assert response.status_code == 200
    assert client.get("/status").json()["devices"] == 0


def test_register_requires_all_fields(client):
    """Test that incomplete registrations are rejected."""
    response = client.post("/register", json={"deviceToken": "token-a", "className": "5a"})
    assert response.status_code == 422


def test_admin_endpoint_requires_key(client):
    """Test that admin endpoints reject missing and wrong keys."""
    response = client.post("/check")
    assert response.status_code == 401

    response = client.post("/check", headers={"Authorization": "Bearer wrong"})
    assert response.status_code == 403
    assert response.json()["error"] == "Invalid admin key"


def test_run_check(client, fetcher, admin_headers, sample_page):
    """Test a manual batch run."""
    fetcher.pages["c00001"] = sample_page
    register(client)

    response = client.post("/check", headers=admin_headers)

    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert data["notified"] == 0
    assert data["errors"] == 0
    assert data["results"][0]["status"] == "first_check"
    assert client.get("/status").json()["last_check"] != "never"


def test_run_check_mapping_unavailable(client, fetcher, admin_headers):
    """Test that a failed run answers with a gateway error."""
    fetcher.mapping_error = MappingFetchError("mapping unavailable")
    register(client)

    response = client.post("/check", headers=admin_headers)

    assert response.status_code == 502
    assert response.json()["error"] == "mapping unavailable"


def test_diagnose_text(client, fetcher, admin_headers, sample_page):
    """Test the plain-text diagnose report."""
    fetcher.pages["c00001"] = sample_page
    register(client)

    response = client.get("/diagnose", params={"format": "text"}, headers=admin_headers)

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/plain")
    assert "STUNDENPLAN DIAGNOSE" in response.text
    assert "5a" in response.text


def test_diagnose_json(client, fetcher, admin_headers, sample_page):
    """Test the JSON diagnose report and its summary."""
    fetcher.pages["c00001"] = sample_page
    register(client)

    response = client.get("/diagnose", params={"class_name": "5a"}, headers=admin_headers)

    data = response.json()
    assert data["summary"]["total"] == 1
    assert data["results"][0]["change_count"] == 2
    assert data["results"][0]["would_push"] is False


def test_diagnose_mapping_unavailable(client, fetcher, admin_headers):
    """Test that diagnose reports an unavailable mapping."""
    fetcher.mapping_error = MappingFetchError("mapping unavailable")
    register(client)

    response = client.get("/diagnose", headers=admin_headers)

    assert response.status_code == 502


def test_cache_listing_and_clearing(client, admin_headers):
    """Test listing the cache and purging stale weeks."""
    listing = client.get("/cache", headers=admin_headers).json()
    assert listing["total"] == 1
    assert listing["entries"][0]["key"] == STALE_KEY

    response = client.post("/cache/clear", json={}, headers=admin_headers)
    assert response.status_code == 400

    response = client.post("/cache/clear", json={"stale_only": True}, headers=admin_headers)
    assert response.status_code == 200
    assert response.json()["deleted"] == 1
    assert client.get("/cache", headers=admin_headers).json()["total"] == 0


def test_test_push(client, push_client, admin_headers):
    """Test sending a test push to a class."""
    response = client.post("/test-push", json={"className": "5a"}, headers=admin_headers)
    assert response.status_code == 404

    register(client)
    response = client.post("/test-push", json={"className": "5a"}, headers=admin_headers)
    assert response.status_code == 200
    assert response.json()["sent"] == 1
    assert push_client.sent[0][0] == "token-a"


def test_device_cleanup_dry_run(client, push_client, admin_headers):
    """Test probing device tokens without removing any."""
    register(client)

    response = client.post("/devices/cleanup", params={"dry_run": True}, headers=admin_headers)

    assert response.status_code == 200
    data = response.json()
    assert data["dry_run"] is True
    assert data["checked"] == 1
    assert data["valid"] == 1
    assert push_client.probed == ["token-a"]
