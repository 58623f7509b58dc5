# src/orsynth/visualizer/plot.py
"""
Room-day Gantt chart of generated cases.

Responsibilities:
- Build one bar per case of the chosen day from its recorded milestones.
- Enforce headless backend (Agg) and figure export parameters (DPI, size).
- Color bars by surgeon so flip-room alternation is visible across rooms.
- Save PNG to the requested out_path and return that Path.
"""

from __future__ import annotations

from collections import Counter
from datetime import date
from pathlib import Path
from typing import Any

import colorcet as cc
import matplotlib
import pandas as pd
import seaborn as sns

from orsynth.errors import DataError, VisualizationError
from orsynth.generator.timeline import GeneratedDataset
from orsynth.schemas.models import GenerationConfig

# (1) Headless backend
matplotlib.use("Agg")

REQUIRED_COLUMNS = ["case_number", "surgeon_id", "or_room_id", "start", "end"]


def _day_frame(dataset: GeneratedDataset, day: date, tz: Any = None) -> pd.DataFrame:
    """
    @brief
    One row per case of `day` with recorded milestone bounds.

    @details
    The bar spans the first to the last recorded milestone. Cases without
    recorded milestones (scheduled or cancelled) are left out. Timestamps are
    shown in `tz` when given.
    """
    by_case = dataset.milestones_by_case()
    rows = []
    for case in dataset.cases:
        if case.scheduled_date != day:
            continue
        stamps = [m.recorded_at for m in by_case.get(case.id, []) if m.recorded_at is not None]
        if not stamps:
            continue
        rows.append(
            {
                "case_number": case.case_number,
                "surgeon_id": case.surgeon_id,
                "or_room_id": case.or_room_id,
                "start": min(stamps),
                "end": max(stamps),
            }
        )
    df = pd.DataFrame(rows, columns=REQUIRED_COLUMNS)
    if df.empty:
        return df
    df["start"] = pd.to_datetime(df["start"], utc=True)
    df["end"] = pd.to_datetime(df["end"], utc=True)
    if tz is not None:
        df["start"] = df["start"].dt.tz_convert(tz)
        df["end"] = df["end"].dt.tz_convert(tz)
    return df.sort_values(["or_room_id", "start"], kind="stable", ignore_index=True)


def busiest_day(dataset: GeneratedDataset) -> date | None:
    """Date with the most completed cases (earliest on ties)."""
    counts = Counter(c.scheduled_date for c in dataset.cases if c.status == "completed")
    if not counts:
        return None
    return min(counts, key=lambda d: (-counts[d], d))


def _draw_room_day(schedule: pd.DataFrame, width: float, height: float) -> None:
    from matplotlib import pyplot as plt

    # (1) Figure
    fig, ax = plt.subplots(nrows=1, ncols=1)
    fig.set_size_inches(w=width, h=height)

    # (2) Room rows
    rooms = sorted(set(schedule["or_room_id"]), reverse=True)
    room_row = {room: i for i, room in enumerate(rooms)}

    # (3) Hours since midnight of the first start
    midnight = schedule["start"].min().normalize()
    starts = (schedule["start"] - midnight).dt.total_seconds().div(3600)
    ends = (schedule["end"] - midnight).dt.total_seconds().div(3600)

    # (4) One color per surgeon
    surgeons = sorted(set(schedule["surgeon_id"]))
    palette = sns.color_palette(cc.glasbey_dark, n_colors=max(len(surgeons), 1))
    colors = {s: palette[i] for i, s in enumerate(surgeons)}

    # (5) Bars with case numbers
    for room, surgeon, left, right, label in zip(
        schedule["or_room_id"], schedule["surgeon_id"], starts, ends, schedule["case_number"]
    ):
        ax.barh(
            room_row[room],
            width=right - left,
            left=left,
            linewidth=1,
            edgecolor="black",
            color=colors[surgeon],
        )
        ax.text((left + right) / 2, room_row[room], str(label), color="white", va="center", ha="center", fontsize=7)

    # (6) Axes
    ax.set_yticks(range(len(rooms)))
    ax.set_yticklabels(rooms)
    ax.set_ylabel("OR room")
    ax.set_xlabel("hour of day")
    ax.title.set_text(
        f"{schedule['start'].min().date().isoformat()}: {len(schedule)} cases, {len(surgeons)} surgeons"
    )


def _extract_visual_params(cfg: GenerationConfig | Any) -> tuple[float, float, int]:
    width, height, dpi = 19.0, 10.0, 150
    visual = getattr(cfg, "visual", None)
    if visual is not None:
        width = float(getattr(visual, "width", width))
        height = float(getattr(visual, "height", height))
        dpi = int(getattr(visual, "dpi", dpi))
    return width, height, dpi


def plot_room_day(
    dataset: GeneratedDataset,
    day: date,
    out_path: Path,
    cfg: GenerationConfig | Any = None,
    tz: Any = None,
) -> Path:
    """
    @brief
    Renders the cases of one day as a per-room Gantt chart and saves a PNG.

    @params
        dataset : GeneratedDataset
            Generated dataset.
        day : date
            Calendar date to draw.
        out_path : Path
            Destination PNG path.
        cfg : GenerationConfig | Any
            Configuration with an optional `visual` section.
        tz : tzinfo | None
            Display timezone (facility timezone).

    @returns
        Absolute path to saved PNG file.

    @raises
        DataError if the day has no recorded cases; VisualizationError on
        rendering or save failure.
    """
    from matplotlib import pyplot as plt

    # (1) Data
    df = _day_frame(dataset, day, tz)
    if df.empty:
        raise DataError(
            f"No recorded cases on {day.isoformat()}",
            source="visualizer.plot.plot_room_day",
            suggested_action="Pick a past operating day with completed cases",
        )

    # (2) Output directory
    out_path = Path(out_path)
    try:
        out_path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as exc:  # pragma: no cover
        raise VisualizationError(
            f"Cannot create output directory: {out_path.parent} ({exc})",
            source="visualizer.plot.plot_room_day",
            suggested_action="Check filesystem permissions or choose another output path",
        )

    width, height, dpi = _extract_visual_params(cfg)

    # (3) Draw and save
    try:
        _draw_room_day(df, width, height)
        plt.tight_layout()
        plt.savefig(out_path, dpi=dpi, bbox_inches="tight")
    except OSError as exc:  # pragma: no cover
        raise VisualizationError(
            f"Failed to save figure: {exc}",
            source="visualizer.plot.plot_room_day",
            suggested_action="Check disk space and image backend settings",
        )
    finally:
        plt.close("all")

    return out_path.resolve()


__all__ = ["busiest_day", "plot_room_day"]
