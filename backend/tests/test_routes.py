"""
Tests for the HTTP layer — dataset store routes, analytics endpoints, report downloads.
"""

import os
import sys

import pytest
from fastapi.testclient import TestClient

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from main import app

ADMIN = {"id": "admin", "role": "Administrator", "full_name": "National Admin"}
CLUSTER = {"id": "cl1", "role": "Cluster", "zone_id": "z1", "province_id": "p1",
           "department_id": "d1", "cluster_id": "c1"}
DIRECTOR = {"id": "dir1", "role": "Director", "zone_id": "z1", "province_id": "p1",
            "department_id": "d1", "cluster_id": "c1", "school_id": "s1"}


@pytest.fixture
def client(clock):
    with TestClient(app) as c:
        app.state.clock = clock
        yield c


@pytest.fixture
def dataset_id(client, payload):
    res = client.post("/api/datasets", json={"name": "term one", "data": payload})
    assert res.status_code == 200
    return res.json()["dataset_id"]


class TestDatasets:

    def test_create_and_list(self, client, dataset_id):
        res = client.get("/api/datasets")
        assert res.status_code == 200
        listed = {d["dataset_id"]: d for d in res.json()["datasets"]}
        assert listed[dataset_id]["name"] == "term one"
        assert listed[dataset_id]["row_counts"]["sessions"] == 18

    def test_get_with_preview(self, client, dataset_id):
        body = client.get(f"/api/datasets/{dataset_id}").json()
        assert body["row_counts"]["responses"] == 36
        assert len(body["preview"]) == 10

    def test_delete(self, client, dataset_id):
        assert client.delete(f"/api/datasets/{dataset_id}").json() == {"deleted": dataset_id}
        assert client.get(f"/api/datasets/{dataset_id}").status_code == 404
        assert client.delete(f"/api/datasets/{dataset_id}").status_code == 404

    def test_create_without_data(self, client):
        assert client.post("/api/datasets", json={"name": "empty"}).status_code == 400

    def test_csv_upload(self, client):
        csv = (
            "id,school_id,teacher_id,date_observed,status\n"
            "a,s1,t1,2024-01-10,completed\n"
            "b,s1,t1,2024-01-12,scheduled\n"
        )
        res = client.post("/api/datasets/file", files={"file": ("sessions.csv", csv, "text/csv")})
        assert res.status_code == 200
        body = res.json()
        assert body["sheets"] == ["sessions"]
        assert body["row_counts"]["sessions"] == 2

    def test_upload_rejects_other_types(self, client):
        res = client.post("/api/datasets/file", files={"file": ("notes.txt", "hello", "text/plain")})
        assert res.status_code == 400


class TestAnalyticsRoutes:

    def test_metrics(self, client, dataset_id):
        res = client.post("/api/analytics/metrics", json={"dataset_id": dataset_id, "actor": ADMIN})
        assert res.status_code == 200
        assert res.json()["total_sessions"] == 18
        assert res.json()["average_score"] == 2.0

    def test_metrics_scoped_to_director(self, client, dataset_id):
        res = client.post("/api/analytics/metrics", json={"dataset_id": dataset_id, "actor": DIRECTOR})
        assert res.json()["total_sessions"] == 6

    def test_inline_data(self, client, payload):
        res = client.post("/api/analytics/metrics", json={"data": payload, "actor": ADMIN})
        assert res.json()["total_sessions"] == 18

    def test_filter(self, client, dataset_id):
        res = client.post("/api/analytics/metrics", json={
            "dataset_id": dataset_id,
            "actor": ADMIN,
            "filter": {"start_date": "2024-03-01", "end_date": "2024-03-31"},
        })
        assert res.json()["total_sessions"] == 6

    def test_geographic(self, client, dataset_id):
        res = client.post("/api/analytics/geographic", json={
            "dataset_id": dataset_id, "actor": ADMIN, "entity_type": "school",
        })
        assert [r["entity_id"] for r in res.json()["entities"]] == ["s1", "s2", "s3"]

    def test_geographic_level_not_visible(self, client, dataset_id):
        res = client.post("/api/analytics/geographic", json={
            "dataset_id": dataset_id, "actor": CLUSTER, "entity_type": "province",
        })
        assert res.status_code == 403

    def test_trend_unknown_metric(self, client, dataset_id):
        res = client.post("/api/analytics/trends", json={
            "dataset_id": dataset_id, "actor": ADMIN, "metric": "blimp",
        })
        assert res.status_code == 400
        assert "blimp" in res.json()["detail"]

    def test_trend(self, client, dataset_id):
        res = client.post("/api/analytics/trends", json={
            "dataset_id": dataset_id, "actor": ADMIN, "metric": "session_count",
            "include_prediction": True,
        })
        body = res.json()
        assert [p["value"] for p in body["data"]] == [6.0, 6.0, 6.0]
        assert body["prediction"]["next_period"] == "2024-04"

    def test_compare(self, client, dataset_id):
        res = client.post("/api/analytics/compare", json={
            "dataset_id": dataset_id, "actor": ADMIN, "entity_type": "school",
            "entity_ids": ["s1", "s3"], "metrics": ["average_score"],
        })
        assert res.json()["rankings"][0]["entity_id"] == "s1"

    def test_dashboard_uses_app_clock(self, client, dataset_id):
        res = client.post("/api/analytics/dashboard", json={
            "dataset_id": dataset_id, "actor": ADMIN, "time_period": "last_30_days",
        })
        body = res.json()
        assert body["start_date"] == "2024-03-01"
        assert body["overview"]["total_sessions"] == 6

    def test_remaining_endpoints(self, client, dataset_id):
        body = {"dataset_id": dataset_id, "actor": ADMIN}
        overview = client.post("/api/analytics/overview", json=body).json()
        assert overview["performance_metrics"]["total_sessions"] == 18
        subjects = client.post("/api/analytics/subjects", json=body).json()["subjects"]
        assert {s["subject"] for s in subjects} == {"Mathematics", "Khmer"}
        series = client.post("/api/analytics/time-series", json={**body, "granularity": "monthly"}).json()
        assert len(series["series"]) == 3
        seasonal = client.post("/api/analytics/seasonal", json=body).json()
        assert [m["month"] for m in seasonal["seasonal_data"]] == [1, 2, 3]
        bench = client.post("/api/analytics/benchmarks", json={**body, "entity_type": "school"}).json()
        assert bench["benchmarks"][0]["entity_id"] == "s1"
        snap = client.post("/api/analytics/realtime", json=body).json()
        assert snap["today_sessions"] == 0

    def test_trend_prediction_flag_from_string(self, client, dataset_id):
        body = {"dataset_id": dataset_id, "actor": ADMIN, "metric": "session_count"}
        off = client.post("/api/analytics/trends", json={**body, "include_prediction": "false"}).json()
        assert off["prediction"] is None
        on = client.post("/api/analytics/trends", json={**body, "include_prediction": "true"}).json()
        assert on["prediction"]["next_period"] == "2024-04"

    def test_actor_not_an_object(self, client, dataset_id):
        res = client.post("/api/analytics/metrics", json={"dataset_id": dataset_id, "actor": "admin"})
        assert res.status_code == 400

    def test_unknown_role(self, client, dataset_id):
        res = client.post("/api/analytics/metrics", json={
            "dataset_id": dataset_id, "actor": {"id": "x", "role": "Mayor"},
        })
        assert res.status_code == 400

    def test_missing_dataset(self, client):
        res = client.post("/api/analytics/metrics", json={"dataset_id": "nope", "actor": ADMIN})
        assert res.status_code == 404

    def test_no_source(self, client):
        res = client.post("/api/analytics/metrics", json={"actor": ADMIN})
        assert res.status_code == 400


class TestReportRoutes:

    def test_templates(self, client, dataset_id):
        body = client.post("/api/reports/templates", json={"dataset_id": dataset_id, "actor": DIRECTOR}).json()
        assert [t["id"] for t in body["templates"]] == ["summary"]
        assert body["custom_reports"] is False

    def test_templates_need_no_dataset(self, client):
        res = client.post("/api/reports/templates", json={"actor": ADMIN})
        assert res.status_code == 200
        assert [t["id"] for t in res.json()["templates"]] == ["summary", "detailed", "trend", "comparison"]
        assert res.json()["custom_reports"] is True

    def test_generate_pdf(self, client, dataset_id):
        res = client.post("/api/reports/generate", json={
            "dataset_id": dataset_id, "actor": ADMIN, "template": "summary", "format": "pdf",
        })
        assert res.status_code == 200
        assert res.headers["content-type"] == "application/pdf"
        assert res.headers["content-disposition"] == (
            'attachment; filename="summary_report_20240331_120000.pdf"'
        )
        assert res.content.startswith(b"%PDF")

    def test_generate_csv_khmer(self, client, dataset_id):
        res = client.post("/api/reports/generate", json={
            "dataset_id": dataset_id, "actor": ADMIN, "template": "detailed",
            "format": "csv", "language": "km",
        })
        assert res.status_code == 200
        assert "កំពត" in res.content.decode("utf-8-sig")

    def test_forbidden_template(self, client, dataset_id):
        res = client.post("/api/reports/generate", json={
            "dataset_id": dataset_id, "actor": DIRECTOR, "template": "comparison",
        })
        assert res.status_code == 403

    def test_custom_requires_sections(self, client, dataset_id):
        res = client.post("/api/reports/custom", json={"dataset_id": dataset_id, "actor": ADMIN})
        assert res.status_code == 400

    def test_custom_xlsx(self, client, dataset_id):
        res = client.post("/api/reports/custom", json={
            "dataset_id": dataset_id, "actor": ADMIN, "sections": ["metrics", "subjects"],
            "format": "spreadsheet",
        })
        assert res.status_code == 200
        assert res.content[:2] == b"PK"
        assert res.headers["content-disposition"].endswith('.xlsx"')


class TestMeta:

    def test_health(self, client, dataset_id):
        body = client.get("/api/health").json()
        assert body["status"] == "ok"
        assert body["datasets"] >= 1

    def test_config(self, client):
        body = client.get("/api/config").json()
        assert "last_30_days" in body["time_periods"]
        assert "province" in body["entity_types"]
