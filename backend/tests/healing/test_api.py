"""
Tests for the healing REST API.

Runs the router against a real service backed by the in-memory probe.
"""

import pytest
from pathlib import Path
import sys

sys.path.insert(0, str(Path(__file__).parent.parent.parent / "app"))

from fastapi import FastAPI
from fastapi.testclient import TestClient

from healing.core.service import ElementHealingService
from healing_api import router, attach_service


@pytest.fixture
def client():
    """Create a test client for an app with only the healing router."""
    app = FastAPI()
    app.include_router(router)
    yield TestClient(app)
    attach_service(None)


@pytest.fixture
def service(fake_probe, button_facts):
    """Create a healing service attached to the router."""
    fake_probe.elements["#login-btn"] = button_facts
    service = ElementHealingService(fake_probe)
    attach_service(service)
    return service


class TestServiceAvailability:
    """Test behaviour without a running service."""

    def test_no_service(self, client):
        """Test that endpoints report 503 when no service is attached."""
        response = client.get("/api/healing/report")

        assert response.status_code == 503


class TestElementEndpoints:
    """Test element registration and lookup endpoints."""

    def test_register(self, client, service):
        """Test registering an element."""
        response = client.post("/api/healing/elements/register", json={
            "element_id": "login",
            "selector": "#login-btn",
            "metadata": {"page": "login"},
        })

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["element"]["selectors"][0]["selector"] == "#login-btn"

    def test_register_unmatched(self, client, service):
        """Test registering a selector that matches nothing."""
        response = client.post("/api/healing/elements/register", json={
            "element_id": "ghost",
            "selector": "#ghost",
        })

        assert response.status_code == 404

    def test_find(self, client, service):
        """Test a healing lookup."""
        client.post("/api/healing/elements/register", json={"element_id": "login", "selector": "#login-btn"})

        response = client.post("/api/healing/elements/login/find", json={"max_attempts": 2})

        assert response.status_code == 200
        result = response.json()["result"]
        assert result["found"] is True
        assert result["stage"] == "primary_selector"

    def test_find_invalid_options(self, client, service):
        """Test that out of range options are rejected."""
        client.post("/api/healing/elements/register", json={"element_id": "login", "selector": "#login-btn"})

        response = client.post("/api/healing/elements/login/find", json={"max_attempts": 0})

        assert response.status_code == 400

    def test_find_dead_page(self, client, service, fake_probe):
        """Test that a closed page maps to 503."""
        client.post("/api/healing/elements/register", json={"element_id": "login", "selector": "#login-btn"})
        fake_probe.unavailable = True

        response = client.post("/api/healing/elements/login/find", json={})

        assert response.status_code == 503

    def test_get_and_history(self, client, service):
        """Test reading a tracked element."""
        client.post("/api/healing/elements/register", json={"element_id": "login", "selector": "#login-btn"})

        element = client.get("/api/healing/elements/login")
        history = client.get("/api/healing/elements/login/history")

        assert element.status_code == 200
        assert element.json()["signature"]["tag_name"] == "button"
        assert len(history.json()["history"]) == 1

    def test_get_unknown(self, client, service):
        """Test reading an unknown element."""
        assert client.get("/api/healing/elements/ghost").status_code == 404

    def test_delete(self, client, service):
        """Test unregistering an element."""
        client.post("/api/healing/elements/register", json={"element_id": "login", "selector": "#login-btn"})

        assert client.delete("/api/healing/elements/login").status_code == 200
        assert client.delete("/api/healing/elements/login").status_code == 404


class TestReportingEndpoints:
    """Test report and analysis endpoints."""

    def test_report(self, client, service):
        """Test the healing report."""
        client.post("/api/healing/elements/register", json={"element_id": "login", "selector": "#login-btn"})
        client.post("/api/healing/elements/login/find", json={})

        report = client.get("/api/healing/report").json()["report"]

        assert report["total_elements"] == 1
        assert report["successful_healing"] == 1

    def test_analysis(self, client, service):
        """Test page change analysis."""
        client.post("/api/healing/elements/register", json={"element_id": "login", "selector": "#login-btn"})

        analysis = client.post("/api/healing/analysis").json()["analysis"]

        assert analysis["found"] == 1


class TestScenarioEndpoints:
    """Test scenario endpoints."""

    def test_execute(self, client, service):
        """Test running the healing scenario."""
        client.post("/api/healing/elements/register", json={"element_id": "login", "selector": "#login-btn"})

        response = client.post("/api/healing/scenarios/execute", json={
            "scenario_type": "healing",
            "element_id": "login",
        })

        assert response.status_code == 200
        assert response.json()["result"]["element_found"] is True

    def test_execute_multiple(self, client, service):
        """Test racing scenarios."""
        client.post("/api/healing/elements/register", json={"element_id": "login", "selector": "#login-btn"})

        response = client.post("/api/healing/scenarios/execute-multiple", json={
            "scenario_types": ["healing", "modal-dialog"],
            "element_id": "login",
            "selector": "#login-btn",
            "options": {"retry_attempts": 1},
        })

        result = response.json()["result"]
        assert result["best_result"]["scenario_type"] == "healing"
        assert result["total_count"] == 2

    def test_metrics_and_listing(self, client, service):
        """Test scenario listing and metrics."""
        listing = client.get("/api/healing/scenarios").json()["scenarios"]
        metrics = client.get("/api/healing/scenarios/metrics").json()["metrics"]

        assert {row["scenario_type"] for row in listing} == {"healing", "dynamic-content", "modal-dialog"}
        assert metrics["total_executions"] == 0

    def test_recommendations(self, client, service):
        """Test recommendations for a tracked element."""
        client.post("/api/healing/elements/register", json={"element_id": "login", "selector": "#login-btn"})

        response = client.get("/api/healing/scenarios/recommendations/login")

        types = [r["scenario_type"] for r in response.json()["recommendations"]]
        assert "form-validation" in types
        assert client.get("/api/healing/scenarios/recommendations/ghost").status_code == 404
