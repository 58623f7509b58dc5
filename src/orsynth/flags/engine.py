# src/orsynth/flags/engine.py
"""
@brief
Flag rule evaluation over generated cases.

@details
The perturbation pass hands every non-cancelled case, projected together
with its named milestone timestamps, to a `FlagRuleEngine`. The bundled
`ThresholdFlagEngine` evaluates milestone-pair duration metrics against
absolute or baseline-relative thresholds. Baselines are facility-wide and
computed from the same case set with pandas.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import Protocol

import pandas as pd

from orsynth.schemas.models import Case, CaseFlag, FlagRule

logger = logging.getLogger(__name__)

# Named metrics as (start milestone, end milestone)
METRIC_MILESTONES: dict[str, tuple[str, str]] = {
    "total_case_time": ("patient_in", "patient_out"),
    "surgical_time": ("incision", "closing"),
    "pre_op_time": ("patient_in", "incision"),
    "anesthesia_time": ("anes_start", "anes_end"),
    "closing_time": ("closing", "closing_complete"),
    "emergence_time": ("closing_complete", "patient_out"),
    "prep_to_incision": ("prep_drape_complete", "incision"),
    "surgeon_readiness_gap": ("prep_drape_complete", "incision"),
}


@dataclass(frozen=True, slots=True)
class CaseProjection:
    """A case with its recorded milestones keyed by canonical name."""

    case: Case
    milestones: Mapping[str, datetime]


class FlagRuleEngine(Protocol):
    def evaluate(
        self,
        cases: Sequence[CaseProjection],
        rules: Sequence[FlagRule],
        created_by: str | None = None,
    ) -> list[CaseFlag]: ...


def _minutes_between(start: datetime | None, end: datetime | None) -> float | None:
    if start is None or end is None:
        return None
    return (end - start).total_seconds() / 60.0


def extract_metric_value(
    milestones: Mapping[str, datetime],
    metric: str,
    start_milestone: str | None = None,
    end_milestone: str | None = None,
) -> float | None:
    """
    @brief
    Duration in minutes for a metric, or None when it cannot be computed.

    @details
    Explicit start/end milestones on the rule win over the named shortcut.
    """
    if start_milestone and end_milestone:
        return _minutes_between(milestones.get(start_milestone), milestones.get(end_milestone))
    pair = METRIC_MILESTONES.get(metric)
    if pair is None:
        return None
    return _minutes_between(milestones.get(pair[0]), milestones.get(pair[1]))


def compare_value(actual: float, threshold: float, operator: str) -> bool:
    if operator == "gt":
        return actual > threshold
    if operator == "gte":
        return actual >= threshold
    if operator == "lt":
        return actual < threshold
    if operator == "lte":
        return actual <= threshold
    return False


class ThresholdFlagEngine:
    """
    @brief
    Default FlagRuleEngine for milestone-pair duration metrics.

    @details
    Rules with unknown metrics are skipped with a warning. Relative
    thresholds resolve against the median and population standard deviation
    of the metric over all evaluated cases; a rule whose baseline has no
    values raises no flags.
    """

    def evaluate(
        self,
        cases: Sequence[CaseProjection],
        rules: Sequence[FlagRule],
        created_by: str | None = None,
    ) -> list[CaseFlag]:
        active = [r for r in rules if r.is_active]
        flags: list[CaseFlag] = []

        for rule in active:
            if not (rule.start_milestone and rule.end_milestone) and rule.metric not in METRIC_MILESTONES:
                logger.warning("Flag rule %s: unsupported metric '%s', skipped", rule.id, rule.metric)
                continue

            # (1) Metric value per case
            values = [
                (c, extract_metric_value(c.milestones, rule.metric, rule.start_milestone, rule.end_milestone))
                for c in cases
            ]
            values = [(c, v) for c, v in values if v is not None]
            if not values:
                continue

            # (2) Effective threshold
            threshold = self._resolve_threshold(rule, pd.Series([v for _, v in values], dtype=float))
            if threshold is None:
                continue

            # (3) Compare and emit
            for proj, value in values:
                if compare_value(value, threshold, rule.operator):
                    flags.append(
                        CaseFlag(
                            case_id=proj.case.id,
                            facility_id=proj.case.facility_id,
                            flag_rule_id=rule.id,
                            metric_value=round(value, 1),
                            threshold_value=round(threshold, 1),
                            severity=rule.severity,
                            created_by=created_by,
                        )
                    )
        return flags

    @staticmethod
    def _resolve_threshold(rule: FlagRule, series: pd.Series) -> float | None:
        if rule.threshold_type == "absolute":
            return float(rule.threshold)
        if series.empty:
            return None
        median = float(series.median())
        upward = rule.operator in ("gt", "gte")
        if rule.threshold_type == "median_plus_sd":
            sd = float(series.std(ddof=0))
            return median + rule.threshold * sd if upward else median - rule.threshold * sd
        pct = rule.threshold / 100
        return median * (1 + pct) if upward else median * (1 - pct)


__all__ = [
    "METRIC_MILESTONES",
    "CaseProjection",
    "FlagRuleEngine",
    "ThresholdFlagEngine",
    "compare_value",
    "extract_metric_value",
]
