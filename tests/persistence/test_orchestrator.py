# tests/persistence/test_orchestrator.py
from __future__ import annotations

from datetime import date, datetime, time, timezone

import pytest

from orsynth.errors import PersistenceError
from orsynth.generator.timeline import GeneratedDataset
from orsynth.persistence.orchestrator import (
    audit_triggers_suppressed,
    batched,
    finalize,
    persist_dataset,
    purge_case_data,
)
from orsynth.persistence.store import InMemoryStore
from orsynth.schemas.models import Case, MilestoneEvent, StaffAssignment


def _case(i: int) -> Case:
    return Case(
        id=f"c-{i}",
        facility_id="fac-1",
        case_number=f"TST-{i:05d}",
        surgeon_id="s-joint",
        procedure_type_id="p-tha",
        or_room_id="or-1" if i % 2 else "or-2",
        scheduled_date=date(2025, 2, 3),
        start_time=time(7, 0),
        status="completed",
        status_id="st-done",
    )


@pytest.fixture()
def small_dataset() -> GeneratedDataset:
    cases = [_case(i) for i in range(1, 6)]
    stamp = datetime(2025, 2, 3, 12, 0, tzinfo=timezone.utc)
    return GeneratedDataset(
        cases=cases,
        milestones=[MilestoneEvent(case_id=c.id, facility_milestone_id="ms-patient_in", recorded_at=stamp) for c in cases],
        staff=[StaffAssignment(case_id=c.id, user_id="rn-1", role="nurse") for c in cases],
        chain_links=[("c-1", "c-2"), ("c-2", "c-3")],
    )


def test_batched_splits_and_rejects_zero():
    assert list(batched([1, 2, 3, 4, 5], 2)) == [[1, 2], [3, 4], [5]]
    with pytest.raises(ValueError):
        list(batched([1], 0))


def test_persist_dataset_writes_cases_links_and_children(small_dataset):
    # --- Arrange ---
    store = InMemoryStore()
    phases = []

    # --- Act ---
    written = persist_dataset(store, small_dataset, batch_size=2, on_progress=phases.append)

    # --- Assert ---
    assert written["cases"] == 5
    assert written["called_next_case_id"] == 2
    assert written["case_milestones"] == 5
    assert written["case_flags"] == 0
    links = {r["id"]: r["called_next_case_id"] for r in store.rows("cases")}
    assert links["c-1"] == "c-2" and links["c-2"] == "c-3" and links["c-5"] is None
    assert store.trigger_history == [False, True]
    assert {p.phase for p in phases} == {"inserting"}


def test_persist_failure_restores_triggers_and_names_batch(small_dataset):
    # --- Arrange ---
    store = InMemoryStore()
    store.fail_on("insert:case_milestones", at_call=2)

    # --- Act ---
    with pytest.raises(PersistenceError) as exc:
        persist_dataset(store, small_dataset, batch_size=2)

    # --- Assert ---
    assert "Insert failed at milestone batch 2" in exc.value.args[0]
    assert "2 rows already committed" in exc.value.args[0]
    assert store.triggers_enabled is True
    assert len(store.rows("case_milestones")) == 2


def test_trigger_toggle_failure_does_not_mask_body(caplog):
    # --- Arrange ---
    store = InMemoryStore()
    store.fail_on("set_audit_triggers", at_call=1)
    ran = []

    # --- Act ---
    with audit_triggers_suppressed(store):
        ran.append(True)

    # --- Assert ---
    assert ran == [True]
    assert store.triggers_enabled is True
    assert "Could not disable audit triggers" in caplog.text


def test_purge_removes_everything_and_is_repeatable(small_dataset):
    # --- Arrange ---
    store = InMemoryStore()
    persist_dataset(store, small_dataset, batch_size=2)
    store.insert("surgeon_procedure_averages", [{"surgeon_id": "s-joint", "avg": 90}])

    # --- Act ---
    first = purge_case_data(store, "fac-1", surgeon_ids=["s-joint"], batch_size=2)
    second = purge_case_data(store, "fac-1", surgeon_ids=["s-joint"], batch_size=2)

    # --- Assert ---
    assert first.success and first.cases_deleted == 5
    assert second.success and second.cases_deleted == 0
    assert store.rows("cases") == []
    assert store.rows("case_milestones") == []
    assert store.rows("surgeon_procedure_averages") == []


def test_purge_only_touches_its_facility(small_dataset):
    # --- Arrange ---
    store = InMemoryStore()
    persist_dataset(store, small_dataset)
    store.insert("cases", [{"id": "other", "facility_id": "fac-2", "called_next_case_id": None}])

    # --- Act ---
    result = purge_case_data(store, "fac-1")

    # --- Assert ---
    assert result.cases_deleted == 5
    assert [r["id"] for r in store.rows("cases")] == ["other"]


def test_purge_failure_is_reported_not_raised(small_dataset):
    # --- Arrange ---
    store = InMemoryStore()
    persist_dataset(store, small_dataset)
    store.fail_on("delete:case_staff")

    # --- Act ---
    result = purge_case_data(store, "fac-1")

    # --- Assert ---
    assert result.success is False
    assert result.cases_deleted == 0
    assert "injected failure" in result.error


def test_finalize_is_best_effort():
    # --- Arrange ---
    store = InMemoryStore()
    store.fail_on("call:recalculate_surgeon_averages")

    # --- Act ---
    failed = finalize(store, "fac-1")

    # --- Assert ---
    assert failed == ["recalculate_surgeon_averages"]
    assert store.calls == [("refresh_case_stats", {"p_facility_id": "fac-1"})]
