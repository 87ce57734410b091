import pytest
from fastapi.testclient import TestClient

from tmtools.api.main import app
from tmtools.api.routes.reports import get_file_paths


@pytest.fixture()
def client(file_paths):
    app.dependency_overrides[get_file_paths] = lambda: file_paths
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_health(client) -> None:
    response = client.get("/api/health")

    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}


def test_list_reports_before_any_stage(client) -> None:
    response = client.get("/api/reports")

    assert response.status_code == 200
    body = response.json()
    assert body["completed"] == 0
    assert [s["stage"] for s in body["stages"]] == [
        "analyze", "extract", "transform", "import", "deploy", "load", "clean",
    ]
    assert body["stages"][0]["report_file"] == "tm1-analysis.json"


def test_reports_after_transform(client, transformed) -> None:
    summary = client.get("/api/reports").json()
    completed = [s["stage"] for s in summary["stages"] if s["completed"]]
    assert completed == ["analyze", "extract", "transform"]

    response = client.get("/api/reports/transform")
    assert response.status_code == 200
    assert response.json()["report_type"] == "tm1-transformation"
    assert response.json()["tm2_counts"]["territory2"] == 3


def test_missing_report_is_404(client) -> None:
    response = client.get("/api/reports/load")

    assert response.status_code == 404
    assert "No valid load report" in response.json()["detail"]


def test_unknown_stage_is_404(client) -> None:
    assert client.get("/api/reports/migrate").status_code == 404
