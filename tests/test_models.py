from datetime import date, datetime, time, timezone

import pytest
from pydantic import ValidationError

from orsynth.schemas.models import (
    Case,
    CaseDelay,
    GenerationConfig,
    MilestoneEvent,
    PerturbationConfig,
    RoomDayStaffing,
    SurgeonProfile,
)

UTC = timezone.utc


def _case(**overrides) -> Case:
    data = {
        "id": "c-1",
        "facility_id": "fac-1",
        "case_number": "TST-00001",
        "surgeon_id": "s-1",
        "procedure_type_id": "p-1",
        "or_room_id": "or-1",
        "scheduled_date": date(2025, 2, 3),
        "start_time": time(7, 30),
        "status": "completed",
        "status_id": "st-done",
    }
    data.update(overrides)
    return Case(**data)


def test_case_row_excludes_status_and_serializes_iso():
    case = _case(call_time=datetime(2025, 2, 3, 13, 5, tzinfo=UTC))
    row = case.to_row()

    assert "status" not in row
    assert row["scheduled_date"] == "2025-02-03"
    assert row["start_time"] == "07:30:00"
    assert row["call_time"].startswith("2025-02-03T13:05:00")
    assert row["data_validated"] is False


@pytest.mark.parametrize(
    "overrides",
    [
        {"status": "cancelled"},
        {"cancelled_at": datetime(2025, 2, 2, 20, tzinfo=UTC)},
        {
            "status": "cancelled",
            "cancelled_at": datetime(2025, 2, 2, 20, tzinfo=UTC),
            "called_next_case_id": "c-2",
        },
        {"called_next_case_id": "c-1"},
        {"call_time": datetime(2025, 2, 3, 13, 5)},
        {"status": "in_progress"},
    ],
)
def test_case_lifecycle_rules(overrides):
    with pytest.raises(ValidationError):
        _case(**overrides)


def test_milestone_event_requires_aware_timestamp():
    MilestoneEvent(case_id="c-1", facility_milestone_id="ms-1")
    with pytest.raises(ValidationError):
        MilestoneEvent(case_id="c-1", facility_milestone_id="ms-1", recorded_at=datetime(2025, 2, 3, 12))


def test_case_delay_duration_bounds():
    stamp = datetime(2025, 2, 3, 12, tzinfo=UTC)
    assert CaseDelay(case_id="c", delay_type_id="d", duration_minutes=45, recorded_at=stamp).duration_minutes == 45
    with pytest.raises(ValidationError):
        CaseDelay(case_id="c", delay_type_id="d", duration_minutes=4, recorded_at=stamp)


def test_surgeon_profile_normalizes_and_validates_days():
    profile = SurgeonProfile(surgeon_id="s-1", specialty="joint", operating_days=[3, 1, 3])
    assert profile.operating_days == [1, 3]
    assert profile.speed_profile == "average"

    with pytest.raises(ValidationError):
        SurgeonProfile(surgeon_id="s-1", specialty="joint", operating_days=[0])
    with pytest.raises(ValidationError):
        SurgeonProfile(surgeon_id="s-1", specialty="joint", day_room_assignments={1: ["a", "b", "c"]})
    with pytest.raises(ValidationError):
        SurgeonProfile(surgeon_id="s-1", specialty="joint", day_room_assignments={2: ["a", "a"]})
    with pytest.raises(ValidationError):
        SurgeonProfile(surgeon_id="s-1", specialty="podiatry")


def test_room_day_staffing_rejects_repeated_staff():
    RoomDayStaffing(day=date(2025, 2, 3), room_id="or-1", nurse_id="rn-1", tech_ids=("st-1", "st-2"))
    with pytest.raises(ValidationError):
        RoomDayStaffing(day=date(2025, 2, 3), room_id="or-1", tech_ids=("st-1", "st-1"))
    with pytest.raises(ValidationError):
        RoomDayStaffing(day=date(2025, 2, 3), room_id="or-1", tech_ids=("st-1", "st-2", "st-3"))


def test_generation_config_defaults_and_bounds():
    cfg = GenerationConfig(facility_id="fac-1")
    assert cfg.months_of_history == 6
    assert cfg.months_ahead == 1
    assert isinstance(cfg.perturbation, PerturbationConfig)
    assert "perturbation" in cfg.model_dump()

    with pytest.raises(ValidationError):
        GenerationConfig(facility_id="")
    with pytest.raises(ValidationError):
        GenerationConfig(facility_id="fac-1", unknown=1)
