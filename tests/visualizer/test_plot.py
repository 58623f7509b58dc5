# tests/visualizer/test_plot.py
from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from pathlib import Path
from types import SimpleNamespace
from zoneinfo import ZoneInfo

import pytest

from orsynth.errors import DataError, VisualizationError
from orsynth.generator.timeline import GeneratedDataset
from orsynth.schemas.models import Case, MilestoneEvent
from orsynth.visualizer.plot import _day_frame, _extract_visual_params, busiest_day, plot_room_day

DAY = date(2025, 2, 3)


# ------------------------------
# Helpers
# ------------------------------
def _case(case_id: str, room: str, day: date = DAY, status: str = "completed") -> Case:
    extra = {"cancelled_at": datetime(2025, 2, 2, 20, tzinfo=timezone.utc)} if status == "cancelled" else {}
    return Case(
        id=case_id,
        facility_id="fac-1",
        case_number=f"TST-{case_id}",
        surgeon_id="s-joint" if room != "or-3" else "s-hand",
        procedure_type_id="p-tha",
        or_room_id=room,
        scheduled_date=day,
        start_time=time(7, 0),
        status=status,
        status_id="st-" + status,
        **extra,
    )


def _events(case_id: str, start: datetime, minutes: int) -> list[MilestoneEvent]:
    return [
        MilestoneEvent(case_id=case_id, facility_milestone_id="ms-patient_in", recorded_at=start),
        MilestoneEvent(case_id=case_id, facility_milestone_id="ms-patient_out", recorded_at=start + timedelta(minutes=minutes)),
    ]


@pytest.fixture()
def day_dataset() -> GeneratedDataset:
    """
    @brief
    Three recorded cases on DAY, one cancelled on DAY, one on the next day.
    """
    t0 = datetime(2025, 2, 3, 12, 0, tzinfo=timezone.utc)
    return GeneratedDataset(
        cases=[
            _case("c1", "or-1"),
            _case("c2", "or-2"),
            _case("c3", "or-3"),
            _case("c4", "or-3", status="cancelled"),
            _case("c5", "or-1", day=DAY + timedelta(days=1)),
        ],
        milestones=[
            *_events("c1", t0, 100),
            *_events("c2", t0 + timedelta(minutes=80), 110),
            *_events("c3", t0, 45),
            *_events("c5", t0 + timedelta(days=1), 60),
        ],
    )


# ------------------------------
# Data preparation
# ------------------------------
def test_day_frame_skips_cases_without_milestones(day_dataset):
    # --- Act ---
    df = _day_frame(day_dataset, DAY, ZoneInfo("America/New_York"))

    # --- Assert ---
    assert list(df["case_number"]) == ["TST-c1", "TST-c2", "TST-c3"]
    assert df.loc[0, "start"].hour == 7
    assert (df["end"] > df["start"]).all()


def test_busiest_day_prefers_most_completed_then_earliest(day_dataset):
    assert busiest_day(day_dataset) == DAY
    assert busiest_day(GeneratedDataset()) is None


def test_extract_visual_params_defaults_and_overrides():
    assert _extract_visual_params(None) == (19.0, 10.0, 150)
    cfg = SimpleNamespace(visual=SimpleNamespace(width=8, height=4, dpi=72))
    assert _extract_visual_params(cfg) == (8.0, 4.0, 72)


# ------------------------------
# Rendering
# ------------------------------
def test_plot_room_day_writes_png(tmp_path, day_dataset, generation_config):
    # --- Arrange ---
    out = tmp_path / "plots" / "room_day.png"

    # --- Act ---
    path = plot_room_day(day_dataset, DAY, out, generation_config, ZoneInfo("America/New_York"))

    # --- Assert ---
    assert path == out.resolve()
    assert path.exists()
    assert path.read_bytes()[:8] == b"\x89PNG\r\n\x1a\n"


def test_plot_room_day_without_cases_raises(tmp_path, day_dataset):
    with pytest.raises(DataError, match="No recorded cases"):
        plot_room_day(day_dataset, date(2025, 3, 1), tmp_path / "x.png")


def test_plot_room_day_save_failure_raises(tmp_path, day_dataset, monkeypatch):
    # --- Arrange ---
    from matplotlib import pyplot as plt

    def boom(*args, **kwargs):
        raise OSError("read-only")

    monkeypatch.setattr(plt, "savefig", boom)

    # --- Act / Assert ---
    with pytest.raises(VisualizationError, match="Failed to save figure"):
        plot_room_day(day_dataset, DAY, Path(tmp_path) / "room_day.png")
