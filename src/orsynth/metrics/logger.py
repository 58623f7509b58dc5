# src/orsynth/metrics/logger.py
from __future__ import annotations

import json
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from orsynth.errors import DataError
from orsynth.schemas.models import GenerationConfig, GenerationResult


def write_metrics(metrics: dict[str, Any], out_dir: Path) -> Path:
    """
    @brief
    Writes metrics.json atomically in UTF-8 encoding.

    @details
    Validates that the input is a serializable dictionary, dumps it to JSON
    with sorted keys and indentation, and atomically replaces the target file.

    @params
        metrics : dict[str, Any]
            Run summary produced by collect_metrics().
        out_dir : Path
            Directory where metrics.json will be created.

    @returns
        Path to the created metrics.json file.

    @raises
        DataError
            If input is not a dict or JSON serialization fails.
    """
    if not isinstance(metrics, dict):
        raise DataError("metrics must be a dict", source="metrics.write_metrics")

    # (1) Serializability
    try:
        payload = json.dumps(metrics, ensure_ascii=False, sort_keys=True, indent=2)
    except (TypeError, ValueError) as e:
        raise DataError(
            f"metrics not JSON-serializable: {e}",
            source="metrics.write_metrics",
            suggested_action="Ensure metrics values are primitives (str/float/int/bool).",
        )

    # (2) Write
    out_dir = Path(out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)
    target = out_dir / "metrics.json"
    _atomic_write_text(target, payload, encoding="utf-8")
    return target


def write_run_log(result: GenerationResult, cfg: GenerationConfig, out_dir: Path) -> Path:
    """
    @brief
    Writes generation.log with the run parameters and outcome.

    @details
    One line per fact, prefixed with a UTC timestamp, so runs can be compared
    by diffing their logs.
    """
    out_dir = Path(out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)
    target = out_dir / "generation.log"

    now = _utc_now_hms()
    lines = [
        f"[{now}] INFO Generation for facility {cfg.facility_id}",
        f"[{now}] INFO Parameters: history={cfg.months_of_history}m, ahead={cfg.months_ahead}m, "
        f"seed={cfg.random_seed}, today={cfg.today}, purge_first={cfg.purge_first}, "
        f"batch_size={cfg.batch_size}, surgeons={len(cfg.surgeon_profiles)}",
    ]
    if result.success:
        lines.append(f"[{now}] INFO Generated {result.cases_generated} cases")
        if result.details is not None:
            for key, value in result.details.model_dump().items():
                lines.append(f"[{now}] INFO {key}={value}")
    else:
        lines.append(f"[{now}] ERROR {result.error}")

    _atomic_write_text(target, "\n".join(lines) + "\n", encoding="utf-8")
    return target


def _atomic_write_text(path: Path, text: str, encoding: str = "utf-8") -> None:
    """
    @brief
    Performs atomic text file writing using a temporary file swap.

    @details
    Writes text to a temporary file within the same directory, then replaces
    the destination in a single filesystem operation.

    @raises
        DataError
            On write or rename failure.
    """
    path = Path(path)
    tmp_dir = path.parent
    tmp_dir.mkdir(parents=True, exist_ok=True)

    # (1) Temporary file next to the target
    fd, tmp_path = tempfile.mkstemp(prefix=path.name + ".", dir=str(tmp_dir))
    try:
        with open(fd, "w", encoding=encoding, newline="") as f:
            f.write(text)
        os.replace(tmp_path, path)
    except OSError as e:
        # (2) Clean up on error
        try:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
        finally:
            raise DataError(
                f"atomic write failed for {path}: {e}",
                source="metrics._atomic_write_text",
                suggested_action="Check output directory permissions and disk space.",
            )


def _utc_now_hms() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")
