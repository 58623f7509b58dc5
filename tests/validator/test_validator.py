# tests/validator/test_validator.py
from __future__ import annotations

import json
import random
from dataclasses import replace
from datetime import date, timedelta
from zoneinfo import ZoneInfo

import pytest

from orsynth.errors import ValidationError
from orsynth.generator.perturbation import apply_perturbations, scheduled_instant
from orsynth.generator.profiles import resolve_surgeon_profile, resolve_surgeon_profiles
from orsynth.generator.roster import StaffRoster, plan_roster
from orsynth.generator.timeline import TimelineContext, generate_timelines
from orsynth.schemas.models import MilestoneEvent, PerturbationConfig, RoomDayStaffing, SurgeonProfile
from orsynth.validator.validator import CRITICAL_CHECKS, DatasetValidator, validate_dataset
from orsynth.workdays.business_calendar import BusinessCalendar

TZ = ZoneInfo("America/New_York")


# -----------------------------
# FIXTURES
# -----------------------------
@pytest.fixture()
def generated(reference, joint_profile, hand_profile):
    """
    @brief
    A generated and perturbed dataset with its roster.

    @details
    Six weeks of history for the joint (flip) and hand surgeons, with a
    raised cancellation rate so every check has material to look at.
    """
    surgeons = resolve_surgeon_profiles([joint_profile, hand_profile], reference)
    calendar = BusinessCalendar.for_range(date(2025, 1, 13), date(2025, 2, 21))
    roster = plan_roster(surgeons, calendar, reference.staff)
    ctx = TimelineContext(
        reference=reference, calendar=calendar, roster=roster, today=date(2025, 3, 3), created_by="u-1"
    )
    rng = random.Random(21)
    dataset = generate_timelines(surgeons, ctx, rng)
    dataset, _ = apply_perturbations(
        dataset, surgeons, reference, PerturbationConfig(cancellation_rate=0.1), rng, TZ
    )
    return dataset, roster


def _messages(report, check):
    return [e["message"] for e in report["errors"] if e["check"] == check]


# -----------------------------
# HAPPY PATH
# -----------------------------
def test_generated_dataset_is_valid(generated, reference, tmp_path):
    # --- Arrange ---
    dataset, roster = generated
    names = {m.id: m.name for m in reference.milestone_types}

    # --- Act ---
    report = validate_dataset(dataset, roster, TZ, milestone_names=names, out_dir=tmp_path)

    # --- Assert ---
    assert report["valid"] is True, report["errors"]
    assert all(report["checks"][name] for name in CRITICAL_CHECKS)
    assert report["metrics"]["num_cases"] == len(dataset.cases)
    assert report["metrics"]["cases_by_status"].get("cancelled", 0) > 0
    saved = json.loads((tmp_path / "validation_report.json").read_text(encoding="utf-8"))
    assert saved["valid"] is True


# -----------------------------
# VIOLATIONS
# -----------------------------
def test_orphan_child_rows_stop_remaining_checks(generated):
    # --- Arrange ---
    dataset, roster = generated
    orphan = MilestoneEvent(case_id="ghost", facility_milestone_id="ms-patient_in")
    broken = replace(dataset, milestones=[*dataset.milestones, orphan])

    # --- Act ---
    report = validate_dataset(broken, roster, TZ, write_report=False)

    # --- Assert ---
    assert report["valid"] is False
    assert any("milestones rows reference unknown cases" in m for m in _messages(report, "References"))
    assert not any(report["checks"].values())


def test_duplicate_case_number_is_reported(generated):
    dataset, roster = generated
    twin = dataset.cases[1].model_copy(update={"id": "twin", "case_number": dataset.cases[0].case_number})
    report = validate_dataset(replace(dataset, cases=[*dataset.cases, twin]), roster, TZ, write_report=False)

    assert report["checks"]["References"] is False
    assert any("Duplicate case number" in m for m in _messages(report, "References"))


def test_decreasing_milestones_are_reported(generated):
    # --- Arrange ---
    dataset, roster = generated
    first = dataset.milestones[0]
    early = MilestoneEvent(
        case_id=first.case_id,
        facility_milestone_id="ms-room_cleaned",
        recorded_at=first.recorded_at - timedelta(minutes=5),
    )

    # --- Act ---
    report = validate_dataset(replace(dataset, milestones=[*dataset.milestones, early]), roster, TZ, write_report=False)

    # --- Assert ---
    assert report["checks"]["MilestoneOrder"] is False
    assert report["valid"] is False


def test_staff_in_two_rooms_on_one_day_is_reported(generated):
    # --- Arrange ---
    dataset, roster = generated
    day = next(iter(roster)).day
    double = StaffRoster(
        [
            RoomDayStaffing(day=day, room_id="or-1", nurse_id="rn-1"),
            RoomDayStaffing(day=day, room_id="or-2", nurse_id="rn-1"),
        ]
    )

    # --- Act ---
    validator = DatasetValidator(dataset, double, TZ)
    validator.run_all_checks()

    # --- Assert ---
    assert validator.checks["RosterExclusivity"] is False
    assert any("rostered in 2 rooms" in e["message"] for e in validator.errors)
    assert any(w["check"] == "RosterExclusivity" for w in validator.warnings)


def test_cancelled_case_with_bad_window_is_reported(generated):
    # --- Arrange ---
    dataset, roster = generated
    cases = list(dataset.cases)
    idx = next(i for i, c in enumerate(cases) if c.status == "cancelled")
    late = scheduled_instant(cases[idx], TZ) - timedelta(hours=2)
    cases[idx] = cases[idx].model_copy(update={"cancelled_at": late})

    # --- Act ---
    report = validate_dataset(replace(dataset, cases=cases), roster, TZ, write_report=False)

    # --- Assert ---
    assert report["checks"]["CancelledCases"] is False
    assert any("2.0 h before start" in m for m in _messages(report, "CancelledCases"))


def test_cancelled_case_with_milestones_is_reported(generated):
    # --- Arrange ---
    dataset, roster = generated
    victim = next(c for c in dataset.cases if c.status == "cancelled")
    stray = MilestoneEvent(case_id=victim.id, facility_milestone_id="ms-patient_in")

    # --- Act ---
    report = validate_dataset(replace(dataset, milestones=[*dataset.milestones, stray]), roster, TZ, write_report=False)

    # --- Assert ---
    assert any("still have milestones" in m for m in _messages(report, "CancelledCases"))


def test_flip_link_in_same_room_is_reported(generated):
    # --- Arrange ---
    dataset, roster = generated
    source, target = dataset.chain_links[0]
    cases = [
        c.model_copy(update={"or_room_id": "or-9"}) if c.id in (source, target) else c for c in dataset.cases
    ]

    # --- Act ---
    validator = DatasetValidator(replace(dataset, cases=cases), None, TZ)
    validator.run_all_checks()

    # --- Assert ---
    assert validator.checks["FlipAlternation"] is False


def test_overlapping_cases_in_one_room_are_reported(generated, reference):
    # --- Arrange ---
    dataset, roster = generated
    names = {m.id: m.name for m in reference.milestone_types}
    grouped = dataset.milestones_by_case()
    case = next(c for c in dataset.cases if c.status == "completed" and c.id in grouped)
    twin = case.model_copy(update={"id": "twin", "case_number": "TST-99999"})
    shifted = [
        m.model_copy(update={"case_id": "twin", "recorded_at": m.recorded_at + timedelta(minutes=10)})
        for m in grouped[case.id]
    ]
    broken = replace(dataset, cases=[*dataset.cases, twin], milestones=[*dataset.milestones, *shifted])

    # --- Act ---
    report = validate_dataset(broken, roster, TZ, milestone_names=names, write_report=False)

    # --- Assert ---
    assert report["checks"]["RoomOverlap"] is False
    assert report["valid"] is False
    error = next(e for e in report["errors"] if e["check"] == "RoomOverlap")
    assert error["entities"]["room_id"] == case.or_room_id
    assert set(error["entities"]["case_ids"]) == {case.id, "twin"}


def test_two_surgeons_sharing_a_room_day(reference, joint_profile):
    # --- Arrange ---
    hand = SurgeonProfile(
        surgeon_id="s-hand",
        specialty="hand_wrist",
        operating_days=[1],
        day_room_assignments={1: ["or-1"]},
    )
    joint = joint_profile.model_copy(update={"operating_days": [1], "day_room_assignments": {1: ["or-1"]}})
    calendar = BusinessCalendar.for_range(date(2025, 2, 3), date(2025, 2, 14))
    names = {m.id: m.name for m in reference.milestone_types}

    def _validate(surgeons):
        roster = plan_roster(surgeons, calendar, reference.staff)
        ctx = TimelineContext(reference=reference, calendar=calendar, roster=roster, today=date(2025, 3, 3))
        dataset = generate_timelines(surgeons, ctx, random.Random(5))
        return validate_dataset(dataset, None, TZ, milestone_names=names, write_report=False)

    # --- Act ---
    clashing = _validate([resolve_surgeon_profile(p, reference) for p in (joint, hand)])
    resolved = _validate(resolve_surgeon_profiles([joint, hand], reference))

    # --- Assert ---
    assert clashing["checks"]["RoomOverlap"] is False
    assert resolved["checks"]["RoomOverlap"] is True
    assert resolved["valid"] is True


def test_fail_on_warnings_invalidates_report(generated):
    # --- Arrange ---
    dataset, _ = generated

    # --- Act ---
    report = validate_dataset(dataset, StaffRoster(), TZ, fail_on_warnings=True, write_report=False)

    # --- Assert ---
    assert report["errors"] == []
    assert report["warnings"]
    assert report["valid"] is False


def test_save_report_wraps_os_errors(generated, tmp_path, monkeypatch):
    # --- Arrange ---
    dataset, roster = generated
    validator = DatasetValidator(dataset, roster, TZ)
    validator.run_all_checks()

    def boom(*args, **kwargs):
        raise OSError("disk full")

    monkeypatch.setattr(json, "dump", boom)

    # --- Act / Assert ---
    with pytest.raises(ValidationError, match="Failed to write validation report"):
        validator.save_report(validator.build_report(), out_dir=tmp_path)
