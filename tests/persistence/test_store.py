# tests/persistence/test_store.py
from __future__ import annotations

import pytest

from orsynth.errors import PersistenceError
from orsynth.persistence.store import InMemoryStore


def _case(case_id: str, next_id: str | None = None) -> dict:
    return {"id": case_id, "facility_id": "fac-1", "called_next_case_id": next_id}


def test_load_reference_unknown_facility_is_empty(reference):
    # --- Arrange ---
    store = InMemoryStore([reference])

    # --- Act / Assert ---
    assert store.load_reference("fac-1") is reference
    assert store.load_reference("nope").facility is None


def test_child_rows_require_existing_case():
    store = InMemoryStore()
    with pytest.raises(PersistenceError, match="missing cases"):
        store.insert("case_milestones", [{"case_id": "c-1", "facility_milestone_id": "ms-1"}])


def test_duplicate_and_dangling_case_links_rejected():
    # --- Arrange ---
    store = InMemoryStore()
    store.insert("cases", [_case("c-1")])

    # --- Act / Assert ---
    with pytest.raises(PersistenceError, match="duplicate"):
        store.insert("cases", [_case("c-1")])
    with pytest.raises(PersistenceError, match="called_next_case_id"):
        store.insert("cases", [_case("c-2", next_id="c-9")])
    with pytest.raises(PersistenceError, match="called_next_case_id"):
        store.update("cases", [{"id": "c-1", "called_next_case_id": "c-9"}])


def test_delete_cases_enforces_foreign_keys():
    # --- Arrange ---
    store = InMemoryStore()
    store.insert("cases", [_case("c-1"), _case("c-2")])
    store.update("cases", [{"id": "c-1", "called_next_case_id": "c-2"}])
    store.insert("case_staff", [{"case_id": "c-2", "user_id": "rn-1", "role": "nurse"}])

    # --- Act / Assert ---
    with pytest.raises(PersistenceError, match="case_staff"):
        store.delete_cases(["c-2"])
    store.delete_in("case_staff", "case_id", ["c-2"])
    with pytest.raises(PersistenceError, match="link to deleted cases"):
        store.delete_cases(["c-2"])
    store.clear_next_case_links(["c-1"])
    assert store.delete_cases(["c-2"]) == 1
    assert [r["id"] for r in store.rows("cases")] == ["c-1"]


def test_fail_on_triggers_at_requested_call():
    # --- Arrange ---
    store = InMemoryStore()
    store.fail_on("insert:cases", at_call=2)

    # --- Act ---
    store.insert("cases", [_case("c-1")])

    # --- Assert ---
    with pytest.raises(PersistenceError, match="injected failure"):
        store.insert("cases", [_case("c-2")])
    store.insert("cases", [_case("c-3")])
    assert len(store.rows("cases")) == 2


def test_trigger_and_procedure_calls_are_recorded():
    store = InMemoryStore()
    store.set_audit_triggers(False)
    store.set_audit_triggers(True)
    store.call("recalculate_surgeon_averages", {"p_facility_id": "fac-1"})

    assert store.trigger_history == [False, True]
    assert store.triggers_enabled is True
    assert store.calls == [("recalculate_surgeon_averages", {"p_facility_id": "fac-1"})]
