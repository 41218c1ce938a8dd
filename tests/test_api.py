from __future__ import annotations

import csv
import io
import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

APP_ROOT = Path(__file__).resolve().parents[1] / "app"
if str(APP_ROOT) not in sys.path:
    sys.path.insert(0, str(APP_ROOT))

from site_coverage_app.web.app import create_app
from site_coverage_app.web.runtime import reset_runtime

SITE_CSV = (
    "Country,PXL Site Reference Number,PI Name,Site Personnel Name,Role,Site Personnel Email Address,"
    "Institution,City/Town,Starter Pack\n"
    "Canada,PXL-1,Dr. Ray,Ann Lee,LABP,ann@example.com,General Hospital,Toronto,no\n"
    "Canada,PXL-1,Dr. Ray,Bob Kay,PI,bob@example.com,General Hospital,Toronto,yes\n"
    "Canada,PXL-1,Dr. Ray,Cy Dunn,SC,cy@example.com,General Hospital,Toronto,\n"
    "Canada,PXL-1,Dr. Ray,Di Moe,CRC,di@example.com,General Hospital,Toronto,\n"
    "France,PXL-2,Dr. Roux,Eve Tan,PI,eve@example.com,Hopital Nord,Lyon,\n"
    "France,PXL-2,Dr. Roux,Fay Ng,SC,fay@example.com,Hopital Nord,Lyon,\n"
)

CRA_CSV = (
    "Full Name,First Name,Last Name,Email,Status,Study Country,Study Team Role\n"
    "Ada Stone,Ada,Stone,ada@example.com,active,Canada,Lead CRA\n"
    "Ben Hart,Ben,Hart,ben@example.com,inactive,France,CRA\n"
)


def _client(isolated_local_db: Path) -> TestClient:
    return TestClient(create_app())


def _import(client: TestClient, kind: str, text: str, project_id: str = "proj-1"):
    return client.post(
        f"/api/projects/{project_id}/imports/{kind}",
        content=text.encode("utf-8"),
        headers={"content-type": "text/csv"},
    )


@pytest.fixture()
def client(isolated_local_db: Path) -> TestClient:
    return _client(isolated_local_db)


@pytest.fixture()
def seeded_client(client: TestClient) -> TestClient:
    response = _import(client, "site-data", SITE_CSV)
    assert response.status_code == 200
    return client


def test_health_reports_local_mode(client: TestClient) -> None:
    response = client.get("/api/health")

    assert response.status_code == 200
    payload = response.json()
    assert payload["ok"] is True
    assert payload["mode"] == "local"
    assert payload["required_roles"] == ["PI", "SC", "LABP", "CRC"]
    assert payload["principal"] == "coordinator@example.com"
    assert response.headers.get("X-Request-ID")


def test_import_template_lists_display_headers(client: TestClient) -> None:
    response = client.get("/api/imports/site-data/template")

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/csv")
    assert response.text.startswith("Country,PXL Site Reference Number,")


def test_site_import_returns_report(client: TestClient) -> None:
    response = _import(client, "site-data", SITE_CSV)

    assert response.status_code == 200
    report = response.json()["report"]
    assert report["kind"] == "site-data"
    assert report["row_count"] == 6
    assert report["success_count"] == 6
    assert report["coerced_count"] == 1
    assert report["status"] == "completed"
    assert report["import_run_id"]


def test_import_validation_failure_uses_error_envelope(client: TestClient) -> None:
    broken = "PXL Site Reference Number,Site Personnel Name,Role\nPXL-1,,LABP\n"
    response = _import(client, "site-data", broken)

    assert response.status_code == 422
    payload = response.json()
    assert payload["ok"] is False
    assert payload["error"]["code"] == "VALIDATION_ERROR"
    assert "missing required fields" in payload["error"]["message"]
    assert payload["request_id"]


def test_import_parse_failure_is_bad_request(client: TestClient) -> None:
    response = _import(client, "cra-list", "")

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "PARSE_ERROR"


def test_unknown_import_kind_is_bad_request(client: TestClient) -> None:
    response = _import(client, "shipments", SITE_CSV)

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "BAD_REQUEST"


def test_site_references_and_filters(seeded_client: TestClient) -> None:
    payload = seeded_client.get("/api/projects/proj-1/site-references").json()

    assert payload["total"] == 2
    first, second = payload["site_references"]
    assert first["reference_number"] == "PXL-1"
    assert first["missing_roles"] == []
    assert first["starter_pack"] is False
    assert second["missing_roles"] == ["LABP", "CRC"]
    assert second["missing_labp"] is True
    assert second["site_id"] is None

    filtered = seeded_client.get("/api/projects/proj-1/site-references", params={"starter_pack": "no-labp"}).json()
    assert [item["reference_number"] for item in filtered["site_references"]] == ["PXL-2"]

    bad = seeded_client.get("/api/projects/proj-1/site-references", params={"starter_pack": "maybe"})
    assert bad.status_code == 400


def test_coverage_summary(seeded_client: TestClient) -> None:
    coverage = seeded_client.get("/api/projects/proj-1/coverage").json()["coverage"]

    assert coverage["total_references"] == 2
    assert coverage["labp_present_count"] == 1
    assert coverage["starter_pack_sent_count"] == 0
    assert coverage["starter_pack_percentage"] == 0
    assert coverage["role_gap_counts"] == {"LABP": 1, "CRC": 1}


def test_status_toggle_then_history(seeded_client: TestClient) -> None:
    response = seeded_client.post(
        "/api/projects/proj-1/site-references/PXL-1/status",
        json={"field": "starter_pack", "value": True},
    )

    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] == "confirmed"
    assert payload["old_value"] is False
    assert payload["new_value"] is True
    assert payload["history"]["actor_id"] == "coordinator@example.com"

    coverage = seeded_client.get("/api/projects/proj-1/coverage").json()["coverage"]
    assert coverage["starter_pack_sent_count"] == 1
    assert coverage["starter_pack_percentage"] == 50

    seeded_client.post(
        "/api/projects/proj-1/site-references/PXL-1/status",
        json={"field": "starter_pack", "value": "false"},
    )
    history = seeded_client.get("/api/projects/proj-1/status-history", params={"reference_number": "PXL-1"}).json()
    assert [(item["old_value"], item["new_value"]) for item in history["history"]] == [(True, False), (False, True)]

    recent = seeded_client.get("/api/projects/proj-1/status-history", params={"limit": 1}).json()
    assert len(recent["history"]) == 1
    assert seeded_client.get("/api/projects/proj-1/status-history", params={"limit": 0}).status_code == 422


def test_status_toggle_without_labp_is_conflict(seeded_client: TestClient) -> None:
    response = seeded_client.post(
        "/api/projects/proj-1/site-references/PXL-2/status",
        json={"field": "supplies_applied", "value": True},
    )

    assert response.status_code == 409
    assert response.json()["error"]["code"] == "ELIGIBILITY_ERROR"
    history = seeded_client.get("/api/projects/proj-1/status-history").json()["history"]
    assert history == []


def test_status_toggle_unknown_reference_and_field(seeded_client: TestClient) -> None:
    missing = seeded_client.post(
        "/api/projects/proj-1/site-references/PXL-404/status",
        json={"field": "starter_pack", "value": True},
    )
    assert missing.status_code == 404
    assert missing.json()["error"]["code"] == "NOT_FOUND"

    bad_field = seeded_client.post(
        "/api/projects/proj-1/site-references/PXL-1/status",
        json={"field": "shipping_status", "value": True},
    )
    assert bad_field.status_code == 400

    bad_value = seeded_client.post(
        "/api/projects/proj-1/site-references/PXL-1/status",
        json={"field": "starter_pack", "value": "perhaps"},
    )
    assert bad_value.status_code == 400


def test_labp_export_csv(seeded_client: TestClient) -> None:
    response = seeded_client.get(
        "/api/projects/proj-1/labp-export",
        params={"refs": ["PXL-1", "PXL-2"], "sponsor": "Acme Bio", "project_number": "PRJ-42"},
    )

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/csv")
    assert "labp-site-data-PRJ-42-" in response.headers["content-disposition"]
    rows = list(csv.reader(io.StringIO(response.text)))
    assert len(rows) == 2
    assert rows[1][0] == "Acme Bio"
    assert rows[1][7] == "PXL-1"
    assert rows[1][10] == "Ann Lee"

    empty = seeded_client.get("/api/projects/proj-1/labp-export", params={"refs": ["PXL-2"]})
    assert empty.status_code == 400


def test_cra_summary_endpoint(client: TestClient) -> None:
    assert _import(client, "cra-list", CRA_CSV).status_code == 200

    summary = client.get("/api/projects/proj-1/cra-summary").json()["summary"]

    assert summary["total"] == 2
    assert summary["active"] == 1
    assert summary["by_country"] == {"Canada": 1, "France": 1}


def test_locked_mode_blocks_writes(isolated_local_db: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("SITECOV_LOCKED_MODE", "true")
    reset_runtime()
    client = _client(isolated_local_db)

    response = _import(client, "site-data", SITE_CSV)

    assert response.status_code == 403
    assert response.json()["error"]["code"] == "LOCKED_MODE"
    assert client.get("/api/projects/proj-1/site-references").status_code == 200
    assert client.get("/api/health").json()["locked_mode"] is True
