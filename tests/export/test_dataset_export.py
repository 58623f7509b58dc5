# tests/export/test_dataset_export.py
from __future__ import annotations

from dataclasses import replace
from datetime import date, datetime, time, timezone

import pandas as pd
import pytest

from orsynth.errors import DataError
from orsynth.export.dataset_export import EXPORT_TABLES, write_dataset_csv
from orsynth.generator.timeline import GeneratedDataset
from orsynth.schemas.models import Case, MilestoneEvent, StaffAssignment


def _case(case_id: str, room: str) -> Case:
    return Case(
        id=case_id,
        facility_id="fac-1",
        case_number=f"TST-{case_id}",
        surgeon_id="s-joint",
        procedure_type_id="p-tha",
        or_room_id=room,
        scheduled_date=date(2025, 2, 3),
        start_time=time(7, 30),
        status="completed",
        status_id="st-done",
        payer_id="pay-1",
    )


@pytest.fixture()
def flip_pair() -> GeneratedDataset:
    stamp = datetime(2025, 2, 3, 12, 30, tzinfo=timezone.utc)
    return GeneratedDataset(
        cases=[_case("c1", "or-1"), _case("c2", "or-2")],
        milestones=[MilestoneEvent(case_id="c1", facility_milestone_id="ms-patient_in", recorded_at=stamp)],
        staff=[StaffAssignment(case_id="c1", user_id="rn-1", role="nurse")],
        chain_links=[("c1", "c2")],
    )


def test_writes_one_csv_per_table(tmp_path, flip_pair):
    # --- Act ---
    written = write_dataset_csv(flip_pair, tmp_path / "dataset")

    # --- Assert ---
    assert set(written) == set(EXPORT_TABLES)
    for table, path in written.items():
        assert path.name == f"{table}.csv"
        assert path.exists()
    assert not list((tmp_path / "dataset").glob("*.tmp"))


def test_case_rows_carry_flip_links_and_no_status_column(tmp_path, flip_pair):
    # --- Act ---
    written = write_dataset_csv(flip_pair, tmp_path)
    cases = pd.read_csv(written["cases"], dtype=str, keep_default_na=False)

    # --- Assert ---
    assert "status" not in cases.columns
    assert list(cases["id"]) == ["c1", "c2"]
    links = dict(zip(cases["id"], cases["called_next_case_id"]))
    assert links == {"c1": "c2", "c2": ""}
    assert cases.loc[0, "start_time"] == "07:30:00"


def test_empty_tables_keep_header(tmp_path, flip_pair):
    # --- Act ---
    written = write_dataset_csv(flip_pair, tmp_path)
    delays = pd.read_csv(written["case_delays"])

    # --- Assert ---
    assert delays.empty
    assert list(delays.columns) == ["case_id", "delay_type_id", "duration_minutes", "notes", "recorded_at"]


def test_milestone_timestamps_are_iso8601(tmp_path, flip_pair):
    written = write_dataset_csv(flip_pair, tmp_path)
    milestones = pd.read_csv(written["case_milestones"])

    recorded = pd.to_datetime(milestones["recorded_at"], utc=True)
    assert recorded.iloc[0] == pd.Timestamp("2025-02-03T12:30:00Z")


def test_duplicate_case_ids_raise(tmp_path, flip_pair):
    doubled = replace(flip_pair, cases=[*flip_pair.cases, flip_pair.cases[0]])
    with pytest.raises(DataError, match="Duplicate case id"):
        write_dataset_csv(doubled, tmp_path)
