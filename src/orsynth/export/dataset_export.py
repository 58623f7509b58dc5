from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import Any

import pandas as pd
from pydantic import BaseModel

from orsynth.errors import DataError
from orsynth.generator.timeline import GeneratedDataset
from orsynth.schemas.models import (
    Case,
    CaseComplexity,
    CaseDelay,
    CaseFlag,
    DeviceRecord,
    ImplantRecord,
    MilestoneEvent,
    StaffAssignment,
)

logger = logging.getLogger(__name__)

# Output file stem -> (dataset attribute, row model)
EXPORT_TABLES: dict[str, tuple[str, type[BaseModel]]] = {
    "cases": ("cases", Case),
    "case_milestones": ("milestones", MilestoneEvent),
    "case_staff": ("staff", StaffAssignment),
    "case_implants": ("implants", ImplantRecord),
    "case_delays": ("delays", CaseDelay),
    "case_complexities": ("complexities", CaseComplexity),
    "case_device_companies": ("devices", DeviceRecord),
    "case_flags": ("flags", CaseFlag),
}


def _columns(model: type[BaseModel]) -> list[str]:
    return [name for name in model.model_fields if not (model is Case and name == "status")]


def _case_rows(dataset: GeneratedDataset) -> list[dict[str, Any]]:
    """Case rows with the deferred flip-room links applied."""
    links = dict(dataset.chain_links)
    rows = []
    for case in dataset.cases:
        row = case.to_row()
        if case.id in links:
            row["called_next_case_id"] = links[case.id]
        rows.append(row)
    return rows


def _write_frame_atomic(df: pd.DataFrame, out_path: Path) -> None:
    """
    @brief
    Writes a DataFrame as UTF-8 CSV via temporary file replacement.

    @raises
        DataError on filesystem failure; the temporary file is removed.
    """
    tmp_fd, tmp_name = tempfile.mkstemp(dir=str(out_path.parent), suffix=".tmp", text=True)
    try:
        with os.fdopen(tmp_fd, "w", encoding="utf-8", newline="") as f:
            df.to_csv(f, index=False)
        os.replace(tmp_name, out_path)
    except OSError as e:
        if os.path.exists(tmp_name):
            os.remove(tmp_name)
        raise DataError(
            f"Failed to write {out_path.name}: {e}",
            source="export.write_dataset_csv",
            suggested_action="Check output directory permissions and disk space.",
        ) from e


def write_dataset_csv(dataset: GeneratedDataset, out_dir: Path) -> dict[str, Path]:
    """
    @brief
    Exports every generated table into its own CSV file.

    @details
    One file per table (cases.csv, case_milestones.csv, ...), with columns in
    model field order so empty tables still carry a header. Datetimes are
    ISO-8601 strings, ids are strings; files are readable by pandas.read_csv.
    Case rows include their flip-room `called_next_case_id`.

    @params
        dataset : GeneratedDataset
            Dataset to export.
        out_dir : Path
            Destination directory, created when missing.

    @returns
        Mapping of table name to written file path.

    @raises
        DataError on duplicate case ids or write failure.
    """
    # (1) Case ids must be unique
    ids = [c.id for c in dataset.cases]
    if len(ids) != len(set(ids)):
        raise DataError(
            "Duplicate case id detected in dataset",
            source="export.write_dataset_csv",
            suggested_action="Ensure each generated case has a unique id.",
        )

    out_dir = Path(out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)

    # (2) One frame per table
    written: dict[str, Path] = {}
    for table, (attr, model) in EXPORT_TABLES.items():
        if table == "cases":
            rows = _case_rows(dataset)
        else:
            rows = [r.to_row() for r in getattr(dataset, attr)]
        df = pd.DataFrame(rows, columns=_columns(model))
        target = out_dir / f"{table}.csv"
        _write_frame_atomic(df, target)
        written[table] = target

    logger.info("Exported %d tables to %s", len(written), out_dir)
    return written


__all__ = ["EXPORT_TABLES", "write_dataset_csv"]
