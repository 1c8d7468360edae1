"""Tests for the HTTP API."""

import pytest
from fastapi.testclient import TestClient

from py_mapgen.api import main

SMALL = {"seed": "api", "cells_to_generate": 1500, "graph_width": 300,
         "graph_height": 200, "heightmap_template": "continents"}


@pytest.fixture
def client():
    main._latest.clear()
    yield TestClient(main.app)
    main._latest.clear()


class TestStatusEndpoints:
    """Test endpoints that do not generate anything."""

    def test_root(self, client):
        response = client.get("/")
        assert response.status_code == 200
        assert response.json()["docs"] == "/docs"

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy", "busy": False}

    def test_templates(self, client):
        templates = client.get("/templates").json()
        assert len(templates) == 14
        assert templates[0]["key"] == "volcano"
        assert {"key": "highIsland", "name": "High Island", "probability": 19} in templates

    def test_latest_before_generation(self, client):
        assert client.get("/maps/latest").status_code == 404
        assert client.get("/maps/latest/statistics").status_code == 404


class TestGenerateEndpoint:
    """Test map generation over HTTP."""

    def test_generate_and_fetch(self, client):
        response = client.post("/maps/generate", json=SMALL)
        assert response.status_code == 200
        summary = response.json()
        assert summary["seed"] == "api"
        assert summary["template"] == "continents"
        assert summary["land_cells"] + summary["water_cells"] == summary["pack_cells"]

        latest = client.get("/maps/latest")
        assert latest.status_code == 200
        assert latest.json()["pack_cells"] == summary["pack_cells"]

        stats = client.get("/maps/latest/statistics")
        assert stats.status_code == 200
        body = stats.json()
        assert body["total_cells"] == summary["pack_cells"]
        assert body["rivers_count"] == summary["rivers"]

    def test_unknown_template(self, client):
        response = client.post("/maps/generate", json={**SMALL, "heightmap_template": "moon"})
        assert response.status_code == 422
        assert client.get("/maps/latest").status_code == 404

    def test_bad_winds(self, client):
        response = client.post("/maps/generate", json={**SMALL, "winds": [90, 90]})
        assert response.status_code == 422

    def test_too_many_cells(self, client, monkeypatch):
        monkeypatch.setattr(main.settings, "max_cells", 1000)
        response = client.post("/maps/generate", json=SMALL)
        assert response.status_code == 422

    def test_busy(self, client):
        assert main._generation_lock.acquire(blocking=False)
        try:
            response = client.post("/maps/generate", json=SMALL)
            assert response.status_code == 409
            assert client.get("/health").json()["busy"] is True
        finally:
            main._generation_lock.release()
