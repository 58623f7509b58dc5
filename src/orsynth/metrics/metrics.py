# src/orsynth/metrics/metrics.py
from __future__ import annotations

import json
import math
from datetime import datetime, timezone
from typing import Any

import pandas as pd

from orsynth.errors import DataError
from orsynth.generator.timeline import GeneratedDataset
from orsynth.schemas.models import FacilityReference, GenerationResult


def collect_metrics(
    dataset: GeneratedDataset,
    result: GenerationResult | None = None,
    reference: FacilityReference | None = None,
) -> dict[str, Any]:
    """
    @brief
    Builds a JSON-serializable summary of one generation run.

    @details
    Case counts by status and surgeon, median case and surgical minutes,
    flip-room share, cancellation/delay/unvalidated rates and child-row
    counts. Surgical minutes (incision to closing) need `reference` to map
    milestone ids to names and are 0.0 without it.

    @raises
        DataError
            If a computed value is not finite.
    """
    # (1) Case frame
    cases = _cases_frame(dataset)
    n_cases = int(len(cases))
    by_status = cases["status"].value_counts().sort_index() if n_cases else pd.Series(dtype="int64")
    n_completed = int(by_status.get("completed", 0))
    n_cancelled = int(by_status.get("cancelled", 0))

    # (2) Milestone-derived durations
    median_case, median_surgical = _median_durations(dataset, reference)

    # (3) Flip-room share among non-cancelled cases
    linked = {a for a, _ in dataset.chain_links} | {b for _, b in dataset.chain_links}
    active = cases[cases["status"] != "cancelled"] if n_cases else cases
    flip_share = float(active["id"].isin(linked).mean()) if len(active) else 0.0

    # (4) Rates
    unvalidated = (
        int(((cases["status"] == "completed") & ~cases["data_validated"]).sum()) if n_cases else 0
    )
    metrics = {
        "timestamp": _utc_now_iso(),
        "success": bool(result.success) if result is not None else True,
        "cases_generated": int(result.cases_generated) if result is not None else n_cases,
        "num_cases": n_cases,
        "cases_by_status": {str(k): int(v) for k, v in by_status.items()},
        "cases_per_surgeon": (
            {str(k): int(v) for k, v in cases["surgeon_id"].value_counts().sort_index().items()}
            if n_cases
            else {}
        ),
        "median_case_minutes": _f(median_case),
        "median_surgical_minutes": _f(median_surgical),
        "flip_room_share": _f(flip_share),
        "cancellation_rate": _f(_ratio(n_cancelled, n_completed + n_cancelled)),
        "delay_rate": _f(_ratio(len(dataset.delays), n_completed)),
        "unvalidated_rate": _f(_ratio(unvalidated, n_completed)),
        "num_milestones": len(dataset.milestones),
        "num_staff_assignments": len(dataset.staff),
        "num_implants": len(dataset.implants),
        "num_delays": len(dataset.delays),
        "num_flags": len(dataset.flags),
    }

    # (5) Integrity
    _assert_no_nans(metrics)
    json.dumps(metrics, ensure_ascii=False)
    return metrics


# ----------------- internal -----------------


def _cases_frame(dataset: GeneratedDataset) -> pd.DataFrame:
    columns = ["id", "surgeon_id", "status", "data_validated"]
    if not dataset.cases:
        return pd.DataFrame(columns=columns)
    return pd.DataFrame([c.model_dump(include=set(columns)) for c in dataset.cases], columns=columns)


def _median_durations(
    dataset: GeneratedDataset, reference: FacilityReference | None
) -> tuple[float, float]:
    """
    @brief
    Median first-to-last milestone span and median incision-to-closing span.
    """
    rows = [
        {"case_id": m.case_id, "milestone_id": m.facility_milestone_id, "recorded_at": m.recorded_at}
        for m in dataset.milestones
        if m.recorded_at is not None
    ]
    if not rows:
        return 0.0, 0.0
    df = pd.DataFrame(rows)
    df["recorded_at"] = pd.to_datetime(df["recorded_at"], utc=True)

    # (1) Whole-case span
    span = df.groupby("case_id")["recorded_at"].agg(["min", "max"])
    case_minutes = (span["max"] - span["min"]).dt.total_seconds() / 60.0
    median_case = float(case_minutes.median()) if len(case_minutes) else 0.0

    # (2) Incision to closing
    if reference is None:
        return median_case, 0.0
    names = {m.id: m.name for m in reference.milestone_types}
    df["name"] = df["milestone_id"].map(names)
    picked = df[df["name"].isin(["incision", "closing"])]
    wide = picked.groupby(["case_id", "name"])["recorded_at"].first().unstack("name")
    if "incision" not in wide.columns or "closing" not in wide.columns:
        return median_case, 0.0
    surgical = ((wide["closing"] - wide["incision"]).dt.total_seconds() / 60.0).dropna()
    return median_case, float(surgical.median()) if len(surgical) else 0.0


def _ratio(numerator: int, denominator: int) -> float:
    return numerator / denominator if denominator else 0.0


def _assert_no_nans(obj: Any) -> None:
    """
    @brief
    Validates that object contains no NaN or infinite values.

    @details
    Recursively traverses dicts, lists, and tuples. Raises DataError on
    detection.
    """
    if obj is None:
        raise DataError("None encountered in metrics", source="metrics.collect_metrics")
    if isinstance(obj, float) and (math.isnan(obj) or math.isinf(obj)):
        raise DataError("NaN/Inf encountered in metrics", source="metrics.collect_metrics")
    if isinstance(obj, dict):
        for v in obj.values():
            _assert_no_nans(v)
    elif isinstance(obj, (list | tuple)):
        for v in obj:
            _assert_no_nans(v)


def _utc_now_iso() -> str:
    """ISO-8601 UTC timestamp with a Z suffix and no microseconds."""
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def _f(x: float) -> float:
    """Rounds to 4 decimals and folds tiny values to zero."""
    return 0.0 if abs(x) < 1e-15 else round(float(x), 4)
