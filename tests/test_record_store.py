from __future__ import annotations

import pytest
import sys
from pathlib import Path

APP_ROOT = Path(__file__).resolve().parents[1] / "app"
if str(APP_ROOT) not in sys.path:
    sys.path.insert(0, str(APP_ROOT))

from site_coverage_app.constants import TABLE_SITE_PERSONNEL, TABLE_SITE_STATUS_HISTORY
from site_coverage_app.errors import SchemaBootstrapRequiredError
from site_coverage_app.store import ChangeEvent, ChangeFeed


def _personnel(reference_number: str, role: str, project_id: str = "proj-1") -> dict:
    return {
        "project_id": project_id,
        "reference_number": reference_number,
        "role": role,
        "personnel_name": f"{role} person",
    }


def test_insert_stamps_id_and_timestamps(local_store) -> None:
    rows = local_store.insert(TABLE_SITE_PERSONNEL, _personnel("PXL-1", "LABP"))

    assert len(rows) == 1
    stored = local_store.get(TABLE_SITE_PERSONNEL, rows[0]["id"])
    assert stored["reference_number"] == "PXL-1"
    assert stored["created_at"] is not None
    assert stored["created_at"].tzinfo is not None
    assert stored["starter_pack"] is False


def test_select_filters_orders_and_limits(local_store) -> None:
    local_store.insert(
        TABLE_SITE_PERSONNEL,
        [
            _personnel("PXL-2", "PI"),
            _personnel("PXL-1", "SC"),
            _personnel("PXL-1", "PI"),
            _personnel("PXL-9", "PI", project_id="proj-2"),
        ],
    )

    rows = local_store.select(
        TABLE_SITE_PERSONNEL,
        {"project_id": "proj-1"},
        order_by=["reference_number ASC", "role DESC"],
    )
    assert [(row["reference_number"], row["role"]) for row in rows] == [
        ("PXL-1", "SC"),
        ("PXL-1", "PI"),
        ("PXL-2", "PI"),
    ]
    assert len(local_store.select(TABLE_SITE_PERSONNEL, {"project_id": "proj-1"}, limit=2)) == 2


def test_unknown_table_and_column_are_rejected(local_store) -> None:
    with pytest.raises(ValueError):
        local_store.select("app_unknown")
    with pytest.raises(ValueError):
        local_store.select(TABLE_SITE_PERSONNEL, {"shipping_status": "x"})
    with pytest.raises(ValueError):
        local_store.select(TABLE_SITE_PERSONNEL, order_by=["role; DROP TABLE x"])


def test_unknown_table_raises_value_error_on_every_operation(local_store) -> None:
    with pytest.raises(ValueError, match="Unknown table"):
        local_store.select("app_unknown", {"project_id": "proj-1"})
    with pytest.raises(ValueError, match="Unknown table"):
        local_store.insert("app_unknown", {"project_id": "proj-1"})
    with pytest.raises(ValueError, match="Unknown table"):
        local_store.subscribe("app_unknown", {"project_id": "proj-1"}, lambda event: None)
    with pytest.raises(ValueError, match="Unknown table"):
        local_store.upsert("app_unknown", [{"project_id": "proj-1"}], ("project_id",))


def test_update_and_delete(local_store) -> None:
    row = local_store.insert(TABLE_SITE_PERSONNEL, _personnel("PXL-1", "LABP"))[0]

    local_store.update(TABLE_SITE_PERSONNEL, row["id"], {"supplies_applied": True})
    updated = local_store.get(TABLE_SITE_PERSONNEL, row["id"])
    assert updated["supplies_applied"] is True
    assert updated["updated_at"] > updated["created_at"]

    local_store.delete(TABLE_SITE_PERSONNEL, row["id"])
    assert local_store.get(TABLE_SITE_PERSONNEL, row["id"]) is None


def test_subscribers_only_see_matching_project_events(local_store) -> None:
    seen: list[ChangeEvent] = []
    other: list[ChangeEvent] = []
    local_store.subscribe(TABLE_SITE_PERSONNEL, {"project_id": "proj-1"}, seen.append)
    local_store.subscribe(TABLE_SITE_PERSONNEL, {"project_id": "proj-2"}, other.append)

    row = local_store.insert(TABLE_SITE_PERSONNEL, _personnel("PXL-1", "LABP"))[0]
    local_store.update(TABLE_SITE_PERSONNEL, row["id"], {"starter_pack": True})

    assert [event.action for event in seen] == ["insert", "update"]
    assert seen[1].record_ids == (row["id"],)
    assert seen[1].project_id == "proj-1"
    assert other == []


def test_history_writes_do_not_notify_personnel_subscribers(local_store) -> None:
    seen: list[ChangeEvent] = []
    local_store.subscribe(TABLE_SITE_PERSONNEL, {"project_id": "proj-1"}, seen.append)

    local_store.insert(
        TABLE_SITE_STATUS_HISTORY,
        {
            "project_id": "proj-1",
            "site_id": "site-1",
            "field_changed": "starter_pack",
            "old_value": False,
            "new_value": True,
        },
    )
    assert seen == []


def test_failing_subscriber_does_not_block_others_or_the_write(local_store) -> None:
    seen: list[str] = []

    def _broken(event: ChangeEvent) -> None:
        raise RuntimeError("subscriber bug")

    local_store.subscribe(TABLE_SITE_PERSONNEL, None, _broken)
    local_store.subscribe(TABLE_SITE_PERSONNEL, None, lambda event: seen.append(event.action))

    rows = local_store.insert(TABLE_SITE_PERSONNEL, _personnel("PXL-1", "PI"))

    assert seen == ["insert"]
    assert local_store.get(TABLE_SITE_PERSONNEL, rows[0]["id"]) is not None


def test_closed_subscription_stops_delivery() -> None:
    feed = ChangeFeed()
    seen: list[ChangeEvent] = []
    subscription = feed.subscribe(TABLE_SITE_PERSONNEL, {"project_id": "proj-1"}, seen.append)
    event = ChangeEvent(table=TABLE_SITE_PERSONNEL, action="update", record_ids=("r1",), keys={"project_id": "proj-1"})

    feed.publish(event)
    subscription.close()
    subscription.close()
    feed.publish(event)

    assert seen == [event]
    assert feed.subscriber_count == 0


def test_upsert_reports_written_count_and_reuses_ids(local_store) -> None:
    key = ("project_id", "reference_number", "role")
    assert local_store.upsert(TABLE_SITE_PERSONNEL, [], key) == 0

    first = local_store.upsert(TABLE_SITE_PERSONNEL, [_personnel("PXL-1", "PI")], key)
    before = local_store.select(TABLE_SITE_PERSONNEL)
    second = local_store.upsert(
        TABLE_SITE_PERSONNEL,
        [{**_personnel("PXL-1", "PI"), "personnel_name": "Renamed"}],
        key,
    )
    after = local_store.select(TABLE_SITE_PERSONNEL)

    assert first == second == 1
    assert [row["id"] for row in before] == [row["id"] for row in after]
    assert after[0]["personnel_name"] == "Renamed"
    assert after[0]["created_at"] == before[0]["created_at"]


def test_ensure_runtime_tables_passes_on_bootstrapped_db(local_store) -> None:
    local_store.ensure_runtime_tables()


def test_ensure_runtime_tables_reports_missing_tables(local_store, isolated_local_db: Path) -> None:
    import sqlite3

    conn = sqlite3.connect(str(isolated_local_db))
    try:
        conn.execute("DROP TABLE app_import_run")
        conn.commit()
    finally:
        conn.close()

    with pytest.raises(SchemaBootstrapRequiredError) as excinfo:
        local_store.ensure_runtime_tables()
    assert "app_import_run" in str(excinfo.value)
