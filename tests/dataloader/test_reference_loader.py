# tests/dataloader/test_reference_loader.py

from pathlib import Path

import pytest
import yaml

from orsynth.dataloader.reference_loader import ReferenceLoader
from orsynth.errors import ConfigError
from orsynth.schemas.models import FacilityReference

ROOT = Path(__file__).resolve().parents[2]


def test_repository_reference_loads():
    # --- Act ---
    ref = ReferenceLoader().load(ROOT / "config" / "reference.yaml")

    # --- Assert ---
    assert isinstance(ref, FacilityReference)
    assert ref.facility.id == "fac-demo"
    assert ref.facility.timezone == "America/New_York"
    assert [r.id for r in ref.rooms] == ["or-1", "or-2", "or-3", "or-4"]
    assert {m.name for m in ref.milestone_types} >= {"patient_in", "incision", "closing", "patient_out"}
    assert ref.statuses.completed is not None


def test_reference_round_trips_through_yaml(tmp_path: Path, reference: FacilityReference):
    # --- Arrange ---
    path = tmp_path / "reference.yaml"
    path.write_text(yaml.safe_dump(reference.model_dump(mode="json")), encoding="utf-8")

    # --- Act ---
    loaded = ReferenceLoader().load(path)

    # --- Assert ---
    assert loaded == reference


def test_unknown_section_raises_configerror(tmp_path: Path):
    # --- Arrange ---
    path = tmp_path / "reference.yaml"
    path.write_text("facility: {id: f, name: F}\nsurgery_rooms: []\n", encoding="utf-8")

    # --- Act / Assert ---
    with pytest.raises(ConfigError) as e:
        ReferenceLoader().load(path)

    assert e.value.source == "ReferenceLoader._validate"


def test_missing_reference_file_raises_configerror(tmp_path: Path):
    with pytest.raises(ConfigError) as e:
        ReferenceLoader().load(tmp_path / "missing.yaml")
    assert e.value.source == "ReferenceLoader._read_yaml"
