"""Tests for the HTTP API."""

import base64
import json
from unittest.mock import AsyncMock, Mock

import pytest
from conftest import GUEST_A
from fastapi.testclient import TestClient

from cmon_agent.api.app import create_app
from cmon_agent.core.constants import CMON_OPTS_HEADER, EXPOSITION_CONTENT_TYPE
from cmon_agent.core.errors import KstatUnavailableError
from cmon_agent.inventory import InventoryError


def opts_header(**options) -> dict[str, str]:
    encoded = base64.b64encode(json.dumps(options).encode()).decode()
    return {CMON_OPTS_HEADER: encoded}


class TestMetricsRoutes:
    """Tests for the metrics endpoints."""

    @pytest.fixture
    def client(self, engine):
        return TestClient(create_app(engine))

    def test_gz_metrics_without_headers(self, client) -> None:
        """Test GZ metrics served as text exposition."""
        response = client.get("/v1/gz/metrics")
        assert response.status_code == 200
        assert response.headers["content-type"] == EXPOSITION_CONTENT_TYPE
        assert "# TYPE arcstats_hits counter" in response.text
        assert "vm_uuid" not in response.text

    def test_guest_metrics(self, client) -> None:
        """Test guest metrics carry the vm_uuid label."""
        response = client.get(f"/v1/{GUEST_A}/metrics")
        assert response.status_code == 200
        assert f'cpu_user_usage{{vm_uuid="{GUEST_A}"}} 3.0' in response.text
        assert "arcstats_hits" not in response.text
        assert "vfs_10ms_ops_count" not in response.text

    def test_core_zone_option(self, client) -> None:
        """Test core zone option adds latency metrics."""
        response = client.get(f"/v1/{GUEST_A}/metrics", headers=opts_header(isCoreZone=True))
        assert response.status_code == 200
        assert "vfs_10ms_ops_count" in response.text

    def test_unknown_guest(self, client) -> None:
        """Test 404 for an unknown guest."""
        response = client.get("/v1/44444444-4444-4444-4444-444444444444/metrics")
        assert response.status_code == 404
        assert response.text == "container not found"

    def test_malformed_options_header(self, client) -> None:
        """Test 400 for an undecodable options header."""
        response = client.get(f"/v1/{GUEST_A}/metrics", headers={CMON_OPTS_HEADER: "not base64!"})
        assert response.status_code == 400

    def test_options_header_not_an_object(self, client) -> None:
        """Test 400 for an options header that is not an object."""
        encoded = base64.b64encode(b"[1, 2]").decode()
        response = client.get(f"/v1/{GUEST_A}/metrics", headers={CMON_OPTS_HEADER: encoded})
        assert response.status_code == 400

    def test_refresh(self, client) -> None:
        """Test legacy refresh endpoint."""
        response = client.post("/v1/refresh")
        assert response.status_code == 200
        assert response.content == b""

    def test_inventory_lookup_failure(self, client, inventory) -> None:
        """Test failed guest lookup answers not found."""
        inventory.error = InventoryError("zoneadm: zone vanished")
        response = client.get(f"/v1/{GUEST_A}/metrics")
        assert response.status_code == 404
        assert response.text == "container not found"

    @pytest.mark.parametrize("value", ["yes", "true", 1])
    def test_non_boolean_core_zone_option(self, client, value) -> None:
        """Test 400 for a non-boolean core zone option."""
        response = client.get(f"/v1/{GUEST_A}/metrics", headers=opts_header(isCoreZone=value))
        assert response.status_code == 400

    def test_engine_on_app_state(self, engine) -> None:
        """Test engine stored on app state."""
        app = create_app(engine)
        assert app.state.engine is engine


class TestFatalErrors:
    """Tests for pass-fatal errors."""

    def test_kstat_unavailable(self) -> None:
        """Test 500 when kstat is unavailable."""
        engine = Mock()
        engine.collect = AsyncMock(side_effect=KstatUnavailableError("kstat: command not found"))
        client = TestClient(create_app(engine))

        response = client.get("/v1/gz/metrics")
        assert response.status_code == 500
        assert response.text == "internal error"
