"""Tests for metrics and monitoring endpoints."""

from unittest.mock import patch

import pytest

from mealledger.app.api.metrics import (
    CLAIMED,
    get_metrics_collector,
    record_redemption,
    reset_metrics_collector,
)


class TestMetricsCollector:
    """Tests for MetricsCollector."""

    @pytest.fixture(autouse=True)
    def reset_collector(self):
        reset_metrics_collector()
        yield
        reset_metrics_collector()

    @pytest.mark.asyncio
    async def test_record_request(self):
        collector = get_metrics_collector()
        await collector.record_request("/school/claims", 0.5, 201)

        summary = await collector.get_summary()
        assert summary["total_requests"] == 1
        assert summary["endpoints"]["/school/claims"]["count"] == 1
        assert summary["endpoints"]["/school/claims"]["avg_duration_ms"] == 500.0

    @pytest.mark.asyncio
    async def test_record_error(self):
        collector = get_metrics_collector()
        await collector.record_request("/school/claims", 0.5, 409)

        summary = await collector.get_summary()
        assert summary["total_errors"] == 1
        assert summary["error_rate"] == 1.0

    @pytest.mark.asyncio
    async def test_redemption_outcomes(self):
        await record_redemption(CLAIMED)
        await record_redemption(CLAIMED)
        await record_redemption("already_claimed")
        await record_redemption("quota_exhausted")

        summary = await get_metrics_collector().get_summary()
        redemptions = summary["redemptions"]
        assert redemptions["attempts"] == 4
        assert redemptions["claimed"] == 2
        assert redemptions["rejected"] == 2
        assert redemptions["by_outcome"]["already_claimed"] == 1

    @pytest.mark.asyncio
    async def test_errors_by_type(self):
        collector = get_metrics_collector()
        await collector.record_error("IntegrityError")

        summary = await collector.get_summary()
        assert summary["errors_by_type"] == {"IntegrityError": 1}

    @pytest.mark.asyncio
    async def test_prometheus_format(self):
        collector = get_metrics_collector()
        await collector.record_request("/gov/allocations", 0.5, 200)
        await collector.record_redemption("quota_exhausted")

        metrics = await collector.get_prometheus_metrics()
        assert 'mealledger_requests_total{endpoint="/gov/allocations"} 1' in metrics
        assert 'mealledger_redemptions_total{outcome="quota_exhausted"} 1' in metrics
        assert "mealledger_uptime_seconds" in metrics

    def test_reset_creates_new_instance(self):
        first = get_metrics_collector()
        reset_metrics_collector()
        assert get_metrics_collector() is not first


class TestMetricsEndpoints:
    """Tests for metrics API endpoints."""

    def test_prometheus_metrics_endpoint(self, client, auth_headers):
        response = client.get("/metrics", headers=auth_headers("gov-1", "government"))
        assert response.status_code == 200
        assert "text/plain" in response.headers["content-type"]
        assert "mealledger_" in response.text

    def test_stats_endpoint_requires_auth(self, client):
        assert client.get("/stats").status_code == 401

    def test_stats_endpoint_rejects_school_callers(self, client, auth_headers):
        response = client.get("/stats", headers=auth_headers("school-a", "school"))
        assert response.status_code == 403

    def test_requests_labelled_by_route_template(self, client, auth_headers, ledger):
        allocation_id = ledger.add_allocation()
        client.get(
            f"/gov/allocations/{allocation_id}",
            headers=auth_headers("gov-1", "government"),
        )

        response = client.get("/stats", headers=auth_headers("gov-1", "government"))
        assert response.status_code == 200
        endpoints = response.json()["endpoints"]
        assert "/gov/allocations/{allocation_id}" in endpoints
        assert f"/gov/allocations/{allocation_id}" not in endpoints

    def test_unhandled_error_counted_by_type(self, client, auth_headers, ledger):
        with patch(
            "mealledger.app.services.rollup.RollupEngine.school_dashboard",
            side_effect=RuntimeError("boom"),
        ):
            failed = client.get("/school/dashboard", headers=auth_headers(ledger.school_a, "school"))
        assert failed.status_code == 500

        response = client.get("/stats", headers=auth_headers("gov-1", "government"))
        assert response.json()["errors_by_type"] == {"RuntimeError": 1}

    def test_ledger_error_counted_by_code(self, client, auth_headers, ledger):
        allocation_id = ledger.add_allocation(quantity=10)
        ledger.add_claim(ledger.student_a, allocation_id)

        conflict = client.delete(
            f"/gov/allocations/{allocation_id}", headers=auth_headers("gov-1", "government")
        )
        assert conflict.status_code == 409

        response = client.get("/stats", headers=auth_headers("gov-1", "government"))
        assert response.json()["errors_by_type"] == {"has_claims": 1}
