# src/orsynth/validator/validator.py
from __future__ import annotations

import json
import logging
from collections import defaultdict
from collections.abc import Mapping
from datetime import date, datetime, timedelta, timezone, tzinfo
from pathlib import Path
from typing import Any

from orsynth.errors import ValidationError
from orsynth.generator.catalog import CANCELLATION_LEAD_MINUTES
from orsynth.generator.perturbation import scheduled_instant
from orsynth.generator.roster import StaffRoster
from orsynth.generator.timeline import GeneratedDataset
from orsynth.schemas.models import Case

logger = logging.getLogger(__name__)

CRITICAL_CHECKS = (
    "References",
    "MilestoneOrder",
    "RosterExclusivity",
    "CancelledCases",
    "FlipAlternation",
    "RoomOverlap",
)


def _preview(ids: list[str], limit: int = 5) -> str:
    return f"{ids[:limit]}{'...' if len(ids) > limit else ''}"


class DatasetValidator:
    """
    @brief
    Post-generation dataset validator.

    @details
    Verifies the structural guarantees of a generated dataset: case-level
    references, milestone monotonicity, roster staff exclusivity,
    cancelled-case cleanliness with its cancellation window, flip-room
    alternation and room occupancy. Violations are collected into the
    report; nothing is raised for business-rule failures.
    """

    def __init__(
        self,
        dataset: GeneratedDataset,
        roster: StaffRoster | None = None,
        tz: tzinfo | None = None,
        milestone_names: Mapping[str, str] | None = None,
    ) -> None:
        self.dataset = dataset
        self.roster = roster
        self.tz = tz or timezone.utc
        self.milestone_names = dict(milestone_names or {})

        # (1) Lookups
        self.case_by_id: dict[str, Case] = {c.id: c for c in dataset.cases}

        # (2) Accumulators
        self.errors: list[dict[str, Any]] = []
        self.warnings: list[dict[str, Any]] = []
        self.checks: dict[str, bool] = {}
        self.metrics: dict[str, Any] = {}

    # ---------- Public lifecycle API ----------
    def run_all_checks(self) -> None:
        """
        @brief
        Execute the full validation sequence.

        @details
        Reference integrity runs first; when it fails the remaining checks
        are marked unavailable because they rely on case lookups.
        """
        self._check_references()
        if not self.checks["References"]:
            self.checks.update({name: False for name in CRITICAL_CHECKS if name != "References"})
            return

        self._check_milestone_order()
        self._check_roster_exclusivity()
        self._check_cancelled_cases()
        self._check_flip_alternation()
        self._check_room_overlaps()
        self._compute_metrics()

    def build_report(self, fail_on_warnings: bool = False) -> dict[str, Any]:
        critical_ok = all(self.checks.get(name, True) for name in CRITICAL_CHECKS)
        is_valid = critical_ok and not self.errors
        if fail_on_warnings and self.warnings:
            is_valid = False
        return {
            "timestamp": datetime.now(timezone.utc).isoformat(timespec="seconds"),
            "valid": bool(is_valid),
            "errors": self.errors,
            "warnings": self.warnings,
            "metrics": self.metrics,
            "checks": self.checks,
        }

    def save_report(
        self,
        report: dict[str, Any],
        out_dir: Path | None = None,
        filename: str = "validation_report.json",
    ) -> Path:
        """Writes the report atomically to `out_dir/filename`."""
        target_dir = Path(out_dir or "data/output")
        target_dir.mkdir(parents=True, exist_ok=True)
        final_path = target_dir / filename
        tmp_path = final_path.with_suffix(".tmp")

        try:
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(report, f, indent=2, ensure_ascii=False, default=str)
            tmp_path.replace(final_path)
        except OSError as e:
            raise ValidationError(
                f"Failed to write validation report: {e}",
                source="DatasetValidator.save_report",
                suggested_action="Check disk permissions and free space.",
            )

        logger.info("Validation report saved: %s", final_path)
        return final_path

    # ---------- Checks ----------
    def _check_references(self) -> None:
        """
        @brief
        Case ids are unique and every child row or link points at a known case.
        """
        ok = True

        # (1) Unique case ids and case numbers
        seen: set[str] = set()
        numbers: set[str] = set()
        for case in self.dataset.cases:
            if case.id in seen:
                ok = False
                self._add_error("References", f"Duplicate case id: {case.id}", {"case_id": case.id})
            if case.case_number in numbers:
                ok = False
                self._add_error(
                    "References",
                    f"Duplicate case number: {case.case_number}",
                    {"case_number": case.case_number},
                )
            seen.add(case.id)
            numbers.add(case.case_number)

        # (2) Child tables
        children = {
            "milestones": self.dataset.milestones,
            "staff": self.dataset.staff,
            "implants": self.dataset.implants,
            "delays": self.dataset.delays,
            "complexities": self.dataset.complexities,
            "devices": self.dataset.devices,
            "flags": self.dataset.flags,
        }
        for name, rows in children.items():
            orphans = sorted({r.case_id for r in rows if r.case_id not in self.case_by_id})
            if orphans:
                ok = False
                self._add_error(
                    "References",
                    f"{name} rows reference unknown cases: {_preview(orphans)}",
                    {"table": name, "orphan_count": len(orphans)},
                    suggested_action="Child rows must be generated together with their case",
                )

        # (3) Flip-room links
        for source, target in self.dataset.chain_links:
            if source not in self.case_by_id or target not in self.case_by_id:
                ok = False
                self._add_error(
                    "References",
                    f"Chain link {source} -> {target} references an unknown case",
                    {"case_id": source, "next_case_id": target},
                )

        self.checks["References"] = ok

    def _check_milestone_order(self) -> None:
        """Recorded timestamps never decrease in emission order within a case."""
        ok = True
        for case_id, events in self.dataset.milestones_by_case().items():
            last: datetime | None = None
            for event in events:
                if event.recorded_at is None:
                    continue
                if last is not None and event.recorded_at < last:
                    ok = False
                    self._add_error(
                        "MilestoneOrder",
                        f"Milestone {event.facility_milestone_id} of case {case_id} precedes its predecessor",
                        {"case_id": case_id, "recorded_at": event.recorded_at.isoformat()},
                        suggested_action="Inspect milestone offsets and clamping",
                    )
                    break
                last = event.recorded_at
        self.checks["MilestoneOrder"] = ok

    def _check_roster_exclusivity(self) -> None:
        """
        @brief
        A staff member works in at most one room per date.

        @details
        Checked on the roster itself (when provided) and on the case staff
        assignments, which must agree with it.
        """
        ok = True

        # (1) Roster entries
        if self.roster is not None:
            rooms_by_staff: dict[tuple[date, str], set[str]] = defaultdict(set)
            for entry in self.roster:
                for staff_id in entry.staff_ids():
                    rooms_by_staff[(entry.day, staff_id)].add(entry.room_id)
            for (day, staff_id), rooms in sorted(rooms_by_staff.items()):
                if len(rooms) > 1:
                    ok = False
                    self._add_error(
                        "RosterExclusivity",
                        f"Staff {staff_id} rostered in {len(rooms)} rooms on {day.isoformat()}",
                        {"user_id": staff_id, "day": day.isoformat(), "rooms": sorted(rooms)},
                    )

        # (2) Case staff assignments
        assigned: dict[tuple[date, str], set[str]] = defaultdict(set)
        for row in self.dataset.staff:
            case = self.case_by_id[row.case_id]
            assigned[(case.scheduled_date, row.user_id)].add(case.or_room_id)
        for (day, staff_id), rooms in sorted(assigned.items()):
            if len(rooms) > 1:
                ok = False
                self._add_error(
                    "RosterExclusivity",
                    f"Staff {staff_id} assigned to cases in {len(rooms)} rooms on {day.isoformat()}",
                    {"user_id": staff_id, "day": day.isoformat(), "rooms": sorted(rooms)},
                    suggested_action="Staff must come from the room-day roster",
                )

        # (3) Rooms with cases but no roster entry
        if self.roster is not None:
            unstaffed = sorted(
                {
                    (c.scheduled_date, c.or_room_id)
                    for c in self.dataset.cases
                    if c.status != "cancelled" and self.roster.get(c.scheduled_date, c.or_room_id) is None
                }
            )
            if unstaffed:
                self._add_warning(
                    "RosterExclusivity",
                    f"{len(unstaffed)} room-days have cases but no roster entry",
                    {"first": f"{unstaffed[0][0].isoformat()} {unstaffed[0][1]}"},
                    suggested_action="Add active staff to the facility",
                )

        self.checks["RosterExclusivity"] = ok

    def _check_cancelled_cases(self) -> None:
        """
        @brief
        Cancelled cases carry no timeline data.

        @details
        No milestones, staff, implants, surgeon-left time or flip links, and
        `cancelled_at` lies 6 to 18 hours before the scheduled start.
        """
        ok = True
        cancelled = {c.id: c for c in self.dataset.cases if c.status == "cancelled"}
        if not cancelled:
            self.checks["CancelledCases"] = True
            return

        # (1) Child rows
        children = {
            "milestones": self.dataset.milestones,
            "staff": self.dataset.staff,
            "implants": self.dataset.implants,
        }
        for name, rows in children.items():
            dirty = sorted({r.case_id for r in rows if r.case_id in cancelled})
            if dirty:
                ok = False
                self._add_error(
                    "CancelledCases",
                    f"Cancelled cases still have {name}: {_preview(dirty)}",
                    {"table": name, "count": len(dirty)},
                )

        # (2) Links
        linked = sorted(
            {a for a, b in self.dataset.chain_links if a in cancelled}
            | {b for a, b in self.dataset.chain_links if b in cancelled}
            | {c.id for c in cancelled.values() if c.called_next_case_id}
        )
        if linked:
            ok = False
            self._add_error(
                "CancelledCases",
                f"Cancelled cases still take part in flip-room links: {_preview(linked)}",
                {"count": len(linked)},
            )

        # (3) Fields and cancellation window
        low = timedelta(minutes=CANCELLATION_LEAD_MINUTES[0])
        high = timedelta(minutes=CANCELLATION_LEAD_MINUTES[1])
        for case in cancelled.values():
            if case.surgeon_left_at is not None:
                ok = False
                self._add_error(
                    "CancelledCases",
                    f"Cancelled case {case.id} has surgeon_left_at",
                    {"case_id": case.id},
                )
            if case.cancelled_at is None:
                continue
            lead = scheduled_instant(case, self.tz) - case.cancelled_at
            if not low <= lead <= high:
                ok = False
                self._add_error(
                    "CancelledCases",
                    f"Case {case.id} cancelled {lead.total_seconds() / 3600:.1f} h before start",
                    {"case_id": case.id},
                    suggested_action="cancelled_at must fall 6-18 hours before the scheduled start",
                )

        self.checks["CancelledCases"] = ok

    def _check_flip_alternation(self) -> None:
        """Linked cases share surgeon and date and sit in different rooms."""
        ok = True
        for source, target in self.dataset.chain_links:
            a, b = self.case_by_id[source], self.case_by_id[target]
            if a.surgeon_id != b.surgeon_id or a.scheduled_date != b.scheduled_date:
                ok = False
                self._add_error(
                    "FlipAlternation",
                    f"Chain link {source} -> {target} crosses surgeons or dates",
                    {"case_id": source, "next_case_id": target},
                )
            elif a.or_room_id == b.or_room_id:
                ok = False
                self._add_error(
                    "FlipAlternation",
                    f"Consecutive flip cases {source} -> {target} share room {a.or_room_id}",
                    {"case_id": source, "next_case_id": target, "room_id": a.or_room_id},
                )
        self.checks["FlipAlternation"] = ok

    def _check_room_overlaps(self) -> None:
        """
        @brief
        No two cases occupy the same room at the same time.

        @details
        A case occupies its room from patient_in to patient_out. Without a
        milestone name map the earliest and latest recorded milestones are
        used instead. Cases without recorded milestones (future or
        cancelled) are skipped.
        """
        ok = True
        ids_by_name = {name: mid for mid, name in self.milestone_names.items()}
        in_id, out_id = ids_by_name.get("patient_in"), ids_by_name.get("patient_out")

        # (1) Occupancy interval per case
        intervals: dict[tuple[date, str], list[tuple[datetime, datetime, str]]] = defaultdict(list)
        for case_id, events in self.dataset.milestones_by_case().items():
            recorded = {e.facility_milestone_id: e.recorded_at for e in events if e.recorded_at is not None}
            if not recorded:
                continue
            start = recorded.get(in_id) if in_id else None
            end = recorded.get(out_id) if out_id else None
            start = start or min(recorded.values())
            end = end or max(recorded.values())
            case = self.case_by_id[case_id]
            intervals[(case.scheduled_date, case.or_room_id)].append((start, end, case_id))

        # (2) Sweep each room-day in start order
        for (day, room_id), items in sorted(intervals.items()):
            items.sort()
            for (_, prev_end, prev_id), (start, _, case_id) in zip(items, items[1:]):
                if start < prev_end:
                    ok = False
                    self._add_error(
                        "RoomOverlap",
                        f"Cases {prev_id} and {case_id} overlap in room {room_id} on {day.isoformat()}",
                        {"room_id": room_id, "day": day.isoformat(), "case_ids": [prev_id, case_id]},
                        suggested_action="Assign each room to one surgeon per weekday",
                    )
        self.checks["RoomOverlap"] = ok

    def _compute_metrics(self) -> None:
        by_status: dict[str, int] = defaultdict(int)
        for case in self.dataset.cases:
            by_status[str(case.status)] += 1
        self.metrics = {
            "num_cases": len(self.dataset.cases),
            "cases_by_status": dict(sorted(by_status.items())),
            "num_milestones": len(self.dataset.milestones),
            "num_staff_assignments": len(self.dataset.staff),
            "num_chain_links": len(self.dataset.chain_links),
            "num_roster_entries": len(self.roster) if self.roster is not None else 0,
        }

    # ---------- Helpers ----------
    def _add_error(
        self,
        check: str,
        message: str,
        entities: dict[str, Any] | None = None,
        suggested_action: str | None = None,
    ) -> None:
        payload: dict[str, Any] = {"check": check, "message": message}
        if entities:
            payload["entities"] = entities
        if suggested_action:
            payload["suggested_action"] = suggested_action
        self.errors.append(payload)

    def _add_warning(
        self,
        check: str,
        message: str,
        entities: dict[str, Any] | None = None,
        suggested_action: str | None = None,
    ) -> None:
        payload: dict[str, Any] = {"check": check, "message": message}
        if entities:
            payload["entities"] = entities
        if suggested_action:
            payload["suggested_action"] = suggested_action
        self.warnings.append(payload)


def validate_dataset(
    dataset: GeneratedDataset,
    roster: StaffRoster | None = None,
    tz: tzinfo | None = None,
    *,
    milestone_names: Mapping[str, str] | None = None,
    fail_on_warnings: bool = False,
    write_report: bool = True,
    out_dir: Path | None = None,
    filename: str = "validation_report.json",
) -> dict[str, Any]:
    """
    @brief
    High-level convenience wrapper for dataset validation.

    @params
        dataset : GeneratedDataset
            Generated (and perturbed) dataset.
        roster : StaffRoster | None
            Room-day staffing used for generation.
        tz : tzinfo | None
            Facility timezone for scheduled start instants (UTC when None).
        milestone_names : Mapping[str, str] | None
            Facility milestone id -> canonical name, used for room occupancy.
        fail_on_warnings : bool
            Treat warnings as invalidating.
        write_report : bool
            Persist the report as JSON.

    @returns
        Report dictionary {timestamp, valid, errors, warnings, metrics, checks}.
    """
    validator = DatasetValidator(dataset, roster, tz, milestone_names)
    validator.run_all_checks()
    report = validator.build_report(fail_on_warnings=fail_on_warnings)
    if write_report:
        validator.save_report(report, out_dir=out_dir, filename=filename)
    return report


__all__ = ["CRITICAL_CHECKS", "DatasetValidator", "validate_dataset"]
