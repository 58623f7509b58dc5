# scripts/run.py
from __future__ import annotations

import argparse
import logging
import sys
import time
import traceback
from pathlib import Path
from typing import Any

from orsynth.dataloader.config_loader import ConfigLoader
from orsynth.dataloader.reference_loader import ReferenceLoader
from orsynth.errors import OrsynthError
from orsynth.export.dataset_export import write_dataset_csv
from orsynth.metrics.logger import write_metrics, write_run_log
from orsynth.metrics.metrics import collect_metrics
from orsynth.persistence.store import InMemoryStore
from orsynth.pipeline import run_generation
from orsynth.schemas.models import GenerationProgress
from orsynth.validator.validator import validate_dataset
from orsynth.visualizer.plot import busiest_day, plot_room_day


def _setup_logging() -> None:
    """
    @brief
    Initializes global logging configuration.

    @details
    Sets the default logging level to INFO and defines a simple console format.
    """
    logging.basicConfig(level=logging.INFO, format="[%(levelname)s] %(message)s")


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="orsynth-run",
        description=(
            "Generate synthetic OR case data: load -> generate -> persist -> validate -> "
            "metrics -> export -> visualize"
        ),
    )
    parser.add_argument(
        "--config",
        type=str,
        default="config/config.yaml",
        help="Path to generation config YAML (default: config/config.yaml)",
    )
    parser.add_argument(
        "--reference",
        type=str,
        default="config/reference.yaml",
        help="Path to facility reference YAML (default: config/reference.yaml)",
    )
    parser.add_argument(
        "--output",
        type=str,
        default=None,
        help="Output directory for artifacts (default: output_dir from config)",
    )
    return parser.parse_args()


def _log_progress(progress: GenerationProgress) -> None:
    logging.info("[%s %d%%] %s", progress.phase, progress.current, progress.message)


def run_pipeline(config_path: Path, reference_path: Path, output_dir: Path | None = None) -> dict[str, Any]:
    """
    @brief
    Executes one generation run against an in-memory store.

    @details
    Performs sequential steps:
    (1) Load configuration and facility reference data.
    (2) Generate and persist the dataset.
    (3) Validate it, collect metrics, export CSVs, render a plot.

    @returns
        Dictionary with success and validity flags, case count and artifact
        paths.

    @raises
        OrsynthError
            On configuration or generation failure.
    """
    t0 = time.perf_counter()

    # (1) Inputs
    logging.info("Loading config: %s", config_path)
    cfg = ConfigLoader().load(config_path)
    logging.info("Loading reference data: %s", reference_path)
    reference = ReferenceLoader().load(reference_path)
    out_dir = Path(output_dir or cfg.output_dir or "data/output")
    out_dir.mkdir(parents=True, exist_ok=True)

    # (2) Generation
    store = InMemoryStore([reference])
    run = run_generation(store, cfg, on_progress=_log_progress)
    result = run.result
    artifacts: dict[str, Path | None] = {
        "validation_report": None,
        "metrics": None,
        "run_log": None,
        "dataset": None,
        "plot": None,
    }
    if cfg.io_policy.write_artifacts:
        artifacts["run_log"] = write_run_log(result, cfg, out_dir)
    if not result.success or run.dataset is None:
        raise OrsynthError(f"Generation failed: {result.error}", source="scripts.run")

    tz = run.tz

    # (3) Validation
    logging.info("Validating dataset...")
    report = validate_dataset(
        run.dataset,
        run.roster,
        tz,
        milestone_names={m.id: m.name for m in run.reference.milestone_types} if run.reference else None,
        fail_on_warnings=cfg.validation.fail_on_warnings,
        write_report=cfg.validation.write_report,
        out_dir=out_dir,
    )
    valid = bool(report.get("valid", False))
    if cfg.validation.write_report:
        artifacts["validation_report"] = out_dir / "validation_report.json"
    if not valid:
        logging.warning("Validation failed (valid=False); see validation_report.json")

    # (4) Metrics and CSVs
    if cfg.io_policy.write_artifacts:
        logging.info("Collecting metrics...")
        summary = collect_metrics(run.dataset, result, run.reference)
        artifacts["metrics"] = write_metrics(summary, out_dir=out_dir)
        logging.info("Exporting dataset CSVs...")
        write_dataset_csv(run.dataset, out_dir / "dataset")
        artifacts["dataset"] = out_dir / "dataset"

    # (5) Plot of the busiest day
    day = busiest_day(run.dataset)
    if cfg.io_policy.write_plot and day is not None:
        logging.info("Rendering room-day plot for %s...", day.isoformat())
        artifacts["plot"] = plot_room_day(run.dataset, day, out_dir / "room_day.png", cfg, tz)

    logging.info("Pipeline finished in %.2f s", time.perf_counter() - t0)
    return {
        "success": result.success,
        "valid": valid,
        "cases_generated": result.cases_generated,
        "artifacts": artifacts,
    }


def main() -> int:
    """
    @brief
    CLI entry point.

    @details
    Exit codes:
      0 - success (valid dataset)
      1 - controlled failure (config/generation/validation)
      2 - unexpected crash
    """
    _setup_logging()
    args = _parse_args()

    try:
        result = run_pipeline(
            Path(args.config),
            Path(args.reference),
            Path(args.output) if args.output else None,
        )
        written = [name for name, path in result["artifacts"].items() if path is not None]
        logging.info("Generated %d cases; artifacts: %s", result["cases_generated"], ", ".join(written))
        return 0 if result.get("valid") else 1
    except OrsynthError as e:
        logging.error(str(e))
        return 1
    except Exception:
        logging.error("Unexpected error occurred:")
        traceback.print_exc()
        return 2


if __name__ == "__main__":
    sys.exit(main())
