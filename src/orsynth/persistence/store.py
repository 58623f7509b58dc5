# src/orsynth/persistence/store.py
"""
@brief
Datastore contracts and an in-memory implementation.

@details
`ReferenceReader` and `CaseDataStore` describe what the generator needs
from the hosted backend: reference lookups, batched insert/update/delete,
trigger suppression and stored-procedure calls. `InMemoryStore` implements
both, enforces the case foreign keys, records trigger state and procedure
calls, and can be told to fail specific operations.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Iterable, Sequence
from typing import Any, Protocol

from orsynth.errors import PersistenceError
from orsynth.schemas.models import FacilityReference

logger = logging.getLogger(__name__)

CASES_TABLE = "cases"

# Tables whose rows reference cases.id through case_id
CASE_CHILD_TABLES = (
    "case_flags",
    "case_complexities",
    "case_device_activity",
    "case_device_companies",
    "case_implant_companies",
    "metric_issues",
    "case_implants",
    "case_milestones",
    "case_milestone_stats",
    "case_completion_stats",
    "case_staff",
    "case_delays",
)


class ReferenceReader(Protocol):
    def load_reference(self, facility_id: str) -> FacilityReference: ...


class CaseDataStore(Protocol):
    def select_case_ids(self, facility_id: str) -> list[str]: ...

    def delete_in(self, table: str, column: str, values: Sequence[str]) -> int: ...

    def clear_next_case_links(self, case_ids: Sequence[str]) -> None: ...

    def delete_cases(self, case_ids: Sequence[str]) -> int: ...

    def insert(self, table: str, rows: Sequence[dict[str, Any]]) -> None: ...

    def update(self, table: str, rows: Sequence[dict[str, Any]], key: str = "id") -> None: ...

    def set_audit_triggers(self, enabled: bool) -> None: ...

    def call(self, procedure: str, params: dict[str, Any] | None = None) -> Any: ...


class InMemoryStore:
    """
    @brief
    Reference data and case tables held in process memory.

    @details
    Tables are lists of row dicts. Inserts into case child tables require
    the referenced case to exist; `called_next_case_id` must point at an
    existing case; a case cannot be deleted while child rows or links still
    reference it.

    Failure injection: `fail_on("insert:case_milestones", at_call=2)` makes
    the second matching call raise PersistenceError. Keys are
    "<operation>:<table or procedure>" or "set_audit_triggers".
    """

    def __init__(self, references: Iterable[FacilityReference] = ()):
        self._references: dict[str, FacilityReference] = {}
        for ref in references:
            self.add_reference(ref)
        self.tables: dict[str, list[dict[str, Any]]] = defaultdict(list)
        self.triggers_enabled = True
        self.trigger_history: list[bool] = []
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self._failures: dict[str, int] = {}
        self._counters: dict[str, int] = defaultdict(int)

    # ------------------------------------------------------------
    # Test hooks
    # ------------------------------------------------------------
    def add_reference(self, reference: FacilityReference) -> None:
        if reference.facility is None:
            raise ValueError("reference data must name its facility")
        self._references[reference.facility.id] = reference

    def fail_on(self, key: str, at_call: int = 1) -> None:
        self._failures[key] = at_call

    def _check_failure(self, key: str) -> None:
        self._counters[key] += 1
        at = self._failures.get(key)
        if at is not None and self._counters[key] == at:
            raise PersistenceError(f"injected failure on {key} (call {at})", source="InMemoryStore")

    def rows(self, table: str) -> list[dict[str, Any]]:
        return list(self.tables.get(table, []))

    # ------------------------------------------------------------
    # ReferenceReader
    # ------------------------------------------------------------
    def load_reference(self, facility_id: str) -> FacilityReference:
        ref = self._references.get(facility_id)
        if ref is None:
            return FacilityReference()
        return ref

    # ------------------------------------------------------------
    # CaseDataStore
    # ------------------------------------------------------------
    def _case_ids(self) -> set[str]:
        return {row["id"] for row in self.tables[CASES_TABLE]}

    def select_case_ids(self, facility_id: str) -> list[str]:
        self._check_failure(f"select:{CASES_TABLE}")
        return [row["id"] for row in self.tables[CASES_TABLE] if row.get("facility_id") == facility_id]

    def delete_in(self, table: str, column: str, values: Sequence[str]) -> int:
        self._check_failure(f"delete:{table}")
        wanted = set(values)
        before = self.tables[table]
        kept = [row for row in before if row.get(column) not in wanted]
        self.tables[table] = kept
        return len(before) - len(kept)

    def clear_next_case_links(self, case_ids: Sequence[str]) -> None:
        self._check_failure(f"update:{CASES_TABLE}")
        wanted = set(case_ids)
        for row in self.tables[CASES_TABLE]:
            if row["id"] in wanted:
                row["called_next_case_id"] = None

    def delete_cases(self, case_ids: Sequence[str]) -> int:
        self._check_failure(f"delete:{CASES_TABLE}")
        doomed = set(case_ids)

        # (1) Child rows must be gone first
        for table in CASE_CHILD_TABLES:
            blocking = [r for r in self.tables.get(table, []) if r.get("case_id") in doomed]
            if blocking:
                raise PersistenceError(
                    f"foreign key violation: {len(blocking)} rows in {table} reference deleted cases",
                    source="InMemoryStore.delete_cases",
                    suggested_action=f"Delete {table} rows before deleting cases.",
                )

        # (2) Surviving cases must not link to a deleted case
        linked = [
            r["id"]
            for r in self.tables[CASES_TABLE]
            if r["id"] not in doomed and r.get("called_next_case_id") in doomed
        ]
        if linked:
            raise PersistenceError(
                f"foreign key violation: {len(linked)} cases link to deleted cases",
                source="InMemoryStore.delete_cases",
                suggested_action="Clear called_next_case_id before deleting cases.",
            )

        before = self.tables[CASES_TABLE]
        self.tables[CASES_TABLE] = [r for r in before if r["id"] not in doomed]
        return len(before) - len(self.tables[CASES_TABLE])

    def insert(self, table: str, rows: Sequence[dict[str, Any]]) -> None:
        self._check_failure(f"insert:{table}")
        existing = self._case_ids()
        if table == CASES_TABLE:
            new_ids = [r["id"] for r in rows]
            dupes = (set(new_ids) & existing) | {i for i in new_ids if new_ids.count(i) > 1}
            if dupes:
                raise PersistenceError(
                    f"duplicate case ids: {sorted(dupes)[:3]}", source="InMemoryStore.insert"
                )
            known = existing | set(new_ids)
            bad = [r["id"] for r in rows if r.get("called_next_case_id") not in (None, *known)]
            if bad:
                raise PersistenceError(
                    f"foreign key violation: called_next_case_id of {bad[:3]}",
                    source="InMemoryStore.insert",
                )
        elif table in CASE_CHILD_TABLES:
            orphans = [r.get("case_id") for r in rows if r.get("case_id") not in existing]
            if orphans:
                raise PersistenceError(
                    f"foreign key violation: {table} rows reference missing cases {orphans[:3]}",
                    source="InMemoryStore.insert",
                    suggested_action="Insert cases before their child rows.",
                )
        self.tables[table].extend(dict(r) for r in rows)

    def update(self, table: str, rows: Sequence[dict[str, Any]], key: str = "id") -> None:
        self._check_failure(f"update:{table}")
        index = {r[key]: r for r in self.tables[table]}
        existing = self._case_ids()
        for change in rows:
            target = index.get(change[key])
            if target is None:
                raise PersistenceError(
                    f"update target {change[key]} not found in {table}", source="InMemoryStore.update"
                )
            next_id = change.get("called_next_case_id")
            if table == CASES_TABLE and next_id is not None and next_id not in existing:
                raise PersistenceError(
                    f"foreign key violation: called_next_case_id {next_id}",
                    source="InMemoryStore.update",
                )
            target.update(change)

    def set_audit_triggers(self, enabled: bool) -> None:
        self._check_failure("set_audit_triggers")
        self.triggers_enabled = enabled
        self.trigger_history.append(enabled)

    def call(self, procedure: str, params: dict[str, Any] | None = None) -> Any:
        self._check_failure(f"call:{procedure}")
        self.calls.append((procedure, dict(params or {})))
        logger.debug("Stored procedure %s called with %s", procedure, params)
        return None


__all__ = [
    "CASES_TABLE",
    "CASE_CHILD_TABLES",
    "CaseDataStore",
    "InMemoryStore",
    "ReferenceReader",
]
