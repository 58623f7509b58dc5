# src/orsynth/persistence/orchestrator.py
"""
@brief
Bulk persistence: purge previous case data and write a generated dataset.

@details
Purge deletes case child rows in foreign-key order, clears flip-room links,
then deletes the cases. Insert runs inside `audit_triggers_suppressed`:
cases first, deferred flip-room links next, then child tables, each in
sequential batches. A failed batch aborts the write with PersistenceError;
batches already committed stay in place.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager
from typing import Any, TypeVar

from orsynth.errors import PersistenceError
from orsynth.generator.catalog import DEFAULT_BATCH_SIZE
from orsynth.generator.timeline import GeneratedDataset
from orsynth.persistence.store import CASE_CHILD_TABLES, CASES_TABLE, CaseDataStore
from orsynth.schemas.models import GenerationProgress, PurgeResult

logger = logging.getLogger(__name__)

T = TypeVar("T")
ProgressCallback = Callable[[GenerationProgress], None]

AVERAGE_TABLES = ("surgeon_procedure_averages", "surgeon_milestone_averages")


def batched(items: Sequence[T], size: int) -> Iterator[list[T]]:
    if size < 1:
        raise ValueError("batch size must be >= 1")
    for start in range(0, len(items), size):
        yield list(items[start : start + size])


def _emit(on_progress: ProgressCallback | None, phase: str, current: int, message: str) -> None:
    if on_progress is not None:
        on_progress(GenerationProgress(phase=phase, current=current, total=100, message=message))


@contextmanager
def audit_triggers_suppressed(store: CaseDataStore) -> Iterator[None]:
    """
    @brief
    Disables audit triggers for the body and always re-enables them.

    @details
    Toggling triggers is best effort: a failure to disable or re-enable is
    logged and does not mask the body's own outcome.
    """
    try:
        store.set_audit_triggers(False)
    except Exception as e:
        logger.warning("Could not disable audit triggers: %s", e)
    try:
        yield
    finally:
        try:
            store.set_audit_triggers(True)
        except Exception as e:
            logger.error("Could not re-enable audit triggers: %s", e)


def purge_case_data(
    store: CaseDataStore,
    facility_id: str,
    surgeon_ids: Sequence[str] = (),
    batch_size: int = DEFAULT_BATCH_SIZE,
    on_progress: ProgressCallback | None = None,
) -> PurgeResult:
    """
    @brief
    Deletes all case-level data of a facility; configuration is untouched.

    @details
    Steps:
        (1) per batch of case ids: delete child rows in dependency order and
            clear `called_next_case_id`
        (2) per batch: delete the cases
        (3) best effort: clear computed surgeon averages
    Running it on an empty facility succeeds with `cases_deleted == 0`.

    @returns
        PurgeResult; failures are reported, not raised.
    """
    try:
        _emit(on_progress, "clearing", 5, "Fetching case IDs...")
        case_ids = store.select_case_ids(facility_id)
        total = len(case_ids)

        # (1) Children and self-references
        for n, batch in enumerate(batched(case_ids, batch_size), start=1):
            for table in CASE_CHILD_TABLES:
                store.delete_in(table, "case_id", batch)
            store.clear_next_case_links(batch)
            done = min(n * batch_size, total)
            _emit(on_progress, "clearing", 10 + (60 * done) // max(total, 1), f"Cleared {done} of {total} cases...")

        # (2) Cases
        _emit(on_progress, "clearing", 70, "Deleting cases...")
        deleted = 0
        for batch in batched(case_ids, batch_size):
            deleted += store.delete_cases(batch)

        # (3) Computed averages
        _emit(on_progress, "clearing", 85, "Clearing computed averages...")
        if surgeon_ids:
            for table in AVERAGE_TABLES:
                try:
                    store.delete_in(table, "surgeon_id", list(surgeon_ids))
                except Exception as e:
                    logger.warning("Clearing %s skipped: %s", table, e)

        _emit(on_progress, "clearing", 100, "Purge complete!")
        logger.info("Purged %d cases for facility %s", deleted, facility_id)
        return PurgeResult(success=True, cases_deleted=deleted)
    except Exception as e:
        logger.error("Purge failed for facility %s: %s", facility_id, e)
        return PurgeResult(success=False, cases_deleted=0, error=str(e))


def _insert_batches(
    store: CaseDataStore,
    table: str,
    rows: Sequence[dict[str, Any]],
    batch_size: int,
    label: str,
) -> int:
    written = 0
    for n, batch in enumerate(batched(rows, batch_size), start=1):
        try:
            store.insert(table, batch)
        except Exception as e:
            raise PersistenceError(
                f"Insert failed at {label} batch {n}: {e} ({written} rows already committed)",
                source="orchestrator.persist_dataset",
                suggested_action="Purge the facility and rerun generation.",
            ) from e
        written += len(batch)
    return written


def persist_dataset(
    store: CaseDataStore,
    dataset: GeneratedDataset,
    batch_size: int = DEFAULT_BATCH_SIZE,
    on_progress: ProgressCallback | None = None,
) -> dict[str, int]:
    """
    @brief
    Writes a generated dataset with audit triggers suppressed.

    @details
    Order matters: cases must exist before chain links and child rows.
    Batches are strictly sequential.

    @returns
        Rows written per table.

    @raises
        PersistenceError
            First failing batch; triggers are restored before it propagates.
    """
    written: dict[str, int] = {}
    with audit_triggers_suppressed(store):
        # (1) Cases
        _emit(on_progress, "inserting", 55, f"Inserting {len(dataset.cases)} cases...")
        written[CASES_TABLE] = _insert_batches(
            store, CASES_TABLE, [c.to_row() for c in dataset.cases], batch_size, "case"
        )

        # (2) Deferred flip-room links
        links = [{"id": a, "called_next_case_id": b} for a, b in dataset.chain_links]
        for n, batch in enumerate(batched(links, batch_size), start=1):
            try:
                store.update(CASES_TABLE, batch)
            except Exception as e:
                raise PersistenceError(
                    f"Chain link update failed at batch {n}: {e}",
                    source="orchestrator.persist_dataset",
                ) from e
        written["called_next_case_id"] = len(links)

        # (3) Child tables
        children: list[tuple[str, str, list[dict[str, Any]]]] = [
            ("case_milestones", "milestone", [m.to_row() for m in dataset.milestones]),
            ("case_staff", "staff", [s.to_row() for s in dataset.staff]),
            ("case_implants", "implant", [i.to_row() for i in dataset.implants]),
            ("case_delays", "delay", [d.to_row() for d in dataset.delays]),
            ("case_complexities", "complexity", [c.to_row() for c in dataset.complexities]),
            ("case_device_companies", "device", [d.to_row() for d in dataset.devices]),
            ("case_flags", "flag", [f.to_row() for f in dataset.flags]),
        ]
        for step, (table, label, rows) in enumerate(children):
            _emit(on_progress, "inserting", 70 + step * 3, f"Inserting {len(rows)} {label} rows...")
            written[table] = _insert_batches(store, table, rows, batch_size, label)

    logger.info("Persisted dataset: %s", ", ".join(f"{k}={v}" for k, v in written.items()))
    return written


def finalize(store: CaseDataStore, facility_id: str) -> list[str]:
    """
    @brief
    Best-effort derived-data refresh after a successful write.

    @returns
        Names of stored procedures that failed (logged, never raised).
    """
    failed = []
    for procedure in ("recalculate_surgeon_averages", "refresh_case_stats"):
        try:
            store.call(procedure, {"p_facility_id": facility_id})
        except Exception as e:
            logger.warning("%s skipped: %s", procedure, e)
            failed.append(procedure)
    return failed


__all__ = [
    "AVERAGE_TABLES",
    "audit_triggers_suppressed",
    "batched",
    "finalize",
    "persist_dataset",
    "purge_case_data",
]
