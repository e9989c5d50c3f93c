"""Tests for request ID middleware."""

from fastapi import FastAPI, Request
from fastapi.testclient import TestClient

from mealledger.app.core.logging import get_current_request_id
from mealledger.app.middleware.request_id import RequestIdMiddleware, get_request_id


def make_app() -> FastAPI:
    app = FastAPI()
    app.add_middleware(RequestIdMiddleware)

    @app.get("/echo")
    async def echo(request: Request):
        return {
            "request_id": get_request_id(request),
            "context_request_id": get_current_request_id(),
        }

    return app


class TestRequestIdMiddleware:

    def test_generates_request_id(self):
        client = TestClient(make_app())
        response = client.get("/echo")

        request_id = response.headers["X-Request-ID"]
        assert len(request_id) == 36
        assert response.json()["request_id"] == request_id

    def test_propagates_incoming_request_id(self):
        client = TestClient(make_app())
        response = client.get("/echo", headers={"X-Request-ID": "scan-42"})

        assert response.headers["X-Request-ID"] == "scan-42"
        assert response.json() == {
            "request_id": "scan-42",
            "context_request_id": "scan-42",
        }

    def test_each_request_gets_its_own_id(self):
        client = TestClient(make_app())
        first = client.get("/echo").headers["X-Request-ID"]
        second = client.get("/echo").headers["X-Request-ID"]
        assert first != second

    def test_context_cleared_after_request(self):
        client = TestClient(make_app())
        client.get("/echo", headers={"X-Request-ID": "scan-43"})
        assert get_current_request_id() is None


class TestGetRequestId:

    def test_unknown_without_middleware(self):
        app = FastAPI()

        @app.get("/bare")
        async def bare(request: Request):
            return {"request_id": get_request_id(request)}

        response = TestClient(app).get("/bare")
        assert response.json() == {"request_id": "unknown"}


def test_error_response_carries_request_id(client):
    """Unhandled failures answer with an opaque 500 that still names the request."""
    from unittest.mock import patch

    with patch(
        "mealledger.app.services.rollup.RollupEngine.government_analytics",
        side_effect=RuntimeError("boom"),
    ):
        response = client.get(
            "/gov/analytics",
            headers={
                "Authorization": "Bearer test-internal-token",
                "X-Caller-Id": "gov-1",
                "X-Caller-Role": "government",
                "X-Request-ID": "scan-500",
            },
        )

    assert response.status_code == 500
    body = response.json()
    assert body["error"] == "internal_error"
    assert body["request_id"] == "scan-500"
    assert "boom" not in body["message"]
