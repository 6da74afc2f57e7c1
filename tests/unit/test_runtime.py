"""Unit tests for the hubmirror.runtime module."""

from __future__ import annotations

import typing as typ
from http import HTTPStatus

import falcon.asgi
import falcon.testing
import pytest

from hubmirror.runtime import _parse_port, create_app
from tests.helpers.database import sqlite_url

if typ.TYPE_CHECKING:
    from pathlib import Path


@pytest.fixture
def health_only(monkeypatch: pytest.MonkeyPatch) -> falcon.testing.TestClient:
    """Return a client for the app built without a database URL."""
    monkeypatch.delenv("HUBMIRROR_DATABASE_URL", raising=False)
    return falcon.testing.TestClient(create_app())


class TestHealthOnlyApp:
    """Without a database the runtime serves probes only."""

    def test_create_app_returns_falcon_app(
        self, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """create_app returns a Falcon ASGI App instance."""
        monkeypatch.delenv("HUBMIRROR_DATABASE_URL", raising=False)
        assert isinstance(create_app(), falcon.asgi.App)

    def test_health(self, health_only: falcon.testing.TestClient) -> None:
        """GET /health reports ok."""
        result = health_only.simulate_get("/health")
        assert result.status_code == HTTPStatus.OK
        assert result.json == {"status": "ok"}

    def test_ready(self, health_only: falcon.testing.TestClient) -> None:
        """GET /ready succeeds when there is nothing to check."""
        result = health_only.simulate_get("/ready")
        assert result.status_code == HTTPStatus.OK
        assert result.headers.get("content-type", "").startswith("application/json")

    def test_webhook_route_is_absent(
        self, health_only: falcon.testing.TestClient
    ) -> None:
        """Deliveries cannot be accepted without an event store."""
        result = health_only.simulate_post("/api/github/webhook", body=b"{}")
        assert result.status_code == HTTPStatus.NOT_FOUND


def test_database_url_enables_webhooks(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    """With a database URL the webhook route is mounted."""
    monkeypatch.setenv("HUBMIRROR_DATABASE_URL", sqlite_url(tmp_path))
    monkeypatch.setenv("HUBMIRROR_WEBHOOK_SECRET", "s3cret")

    client = falcon.testing.TestClient(create_app())
    result = client.simulate_post("/api/github/webhook", body=b"{}")

    assert result.status_code == HTTPStatus.BAD_REQUEST, (
        "a delivery without GitHub headers is rejected, not routed away"
    )


class TestParsePort:
    """Tests for HUBMIRROR_PORT validation."""

    @pytest.mark.parametrize(("raw", "expected"), [("8080", 8080), ("1", 1)])
    def test_valid_ports(self, raw: str, expected: int) -> None:
        """Ports within range are returned as integers."""
        assert _parse_port(raw) == expected

    @pytest.mark.parametrize("raw", ["0", "65536", "http", ""])
    def test_invalid_ports_exit(self, raw: str) -> None:
        """Invalid ports stop the process with exit status 1."""
        with pytest.raises(SystemExit) as excinfo:
            _parse_port(raw)
        assert excinfo.value.code == 1
