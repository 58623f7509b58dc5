# src/orsynth/generator/perturbation.py
"""
@brief
Post-generation perturbation pass.

@details
Runs once over the complete in-memory dataset, in order:
    (1) cancellations
    (2) delay records
    (3) complexity tags
    (4) device / implant-company records
    (5) validation marks
    (6) flag-rule evaluation
Every step returns new collections instead of editing lists in place.
A step whose lookup data is missing is skipped with a warning.
"""

from __future__ import annotations

import logging
import random
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone, tzinfo
from typing import Any

from orsynth.flags.engine import CaseProjection, FlagRuleEngine, ThresholdFlagEngine
from orsynth.generator.catalog import (
    CANCELLATION_LEAD_MINUTES,
    COMPLEXITY_COMPLEX,
    COMPLEXITY_STANDARD,
    DELAY_MINUTES,
)
from orsynth.generator.profiles import ResolvedSurgeon
from orsynth.generator.timeline import GeneratedDataset
from orsynth.schemas.models import (
    Case,
    CaseComplexity,
    CaseDelay,
    DeviceRecord,
    FacilityReference,
    LookupEntry,
    PerturbationConfig,
)

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class PerturbationStats:
    cancelled: int = 0
    delayed: int = 0
    unvalidated: int = 0
    flagged: int = 0


def _updated(case: Case, **changes: Any) -> Case:
    return Case.model_validate({**case.model_dump(), **changes})


def scheduled_instant(case: Case, tz: tzinfo) -> datetime:
    """Scheduled start of a case as a UTC instant."""
    return datetime.combine(case.scheduled_date, case.start_time, tzinfo=tz).astimezone(timezone.utc)


def _find(entries: Iterable[LookupEntry], name: str) -> LookupEntry | None:
    wanted = name.casefold()
    return next((e for e in entries if e.name.casefold() == wanted), None)


def cancel_cases(
    dataset: GeneratedDataset,
    reference: FacilityReference,
    rate: float,
    rng: random.Random,
    tz: tzinfo,
) -> tuple[GeneratedDataset, int]:
    """
    @brief
    Cancels a share of completed cases and strips their child records.

    @details
    Cases are drawn without replacement. `cancelled_at` falls 6-18 hours
    before the scheduled start instant. Milestones, staff, implants and every
    flip-room link touching a cancelled case are dropped.
    """
    cancelled_status = reference.statuses.cancelled
    if cancelled_status is None:
        logger.warning("No 'cancelled' status configured; skipping cancellations")
        return dataset, 0
    if not reference.cancellation_reasons:
        logger.warning("No cancellation reasons configured; cancelled cases carry no reason")

    # (1) Choose victims among completed cases
    completed = [c for c in dataset.cases if c.status == "completed"]
    count = min(len(completed), round(len(completed) * rate))
    chosen = {c.id for c in rng.sample(completed, count)}
    if not chosen:
        return dataset, 0

    # (2) Rebuild cases with cancellation data
    cases = []
    for case in dataset.cases:
        if case.id in chosen:
            lead = rng.randint(*CANCELLATION_LEAD_MINUTES)
            reason = rng.choice(reference.cancellation_reasons).id if reference.cancellation_reasons else None
            case = _updated(
                case,
                status="cancelled",
                status_id=cancelled_status,
                cancelled_at=scheduled_instant(case, tz) - timedelta(minutes=lead),
                cancellation_reason_id=reason,
                called_next_case_id=None,
                call_time=None,
                surgeon_left_at=None,
            )
        cases.append(case)

    # (3) Partition child records
    result = replace(
        dataset,
        cases=cases,
        milestones=[m for m in dataset.milestones if m.case_id not in chosen],
        staff=[s for s in dataset.staff if s.case_id not in chosen],
        implants=[i for i in dataset.implants if i.case_id not in chosen],
        chain_links=[(a, b) for a, b in dataset.chain_links if a not in chosen and b not in chosen],
    )
    return result, len(chosen)


def add_delays(
    dataset: GeneratedDataset,
    reference: FacilityReference,
    config: PerturbationConfig,
    rng: random.Random,
    tz: tzinfo,
) -> tuple[GeneratedDataset, int]:
    """One delay record (5-45 min) for 5-8 % of completed cases."""
    if not reference.delay_types:
        logger.warning("No delay types configured; skipping delays")
        return dataset, 0

    completed = [c for c in dataset.cases if c.status == "completed"]
    rate = rng.uniform(config.delay_rate_min, config.delay_rate_max)
    chosen = rng.sample(completed, min(len(completed), round(len(completed) * rate)))
    delays = [
        CaseDelay(
            case_id=c.id,
            delay_type_id=rng.choice(reference.delay_types).id,
            duration_minutes=rng.randint(*DELAY_MINUTES),
            recorded_at=scheduled_instant(c, tz),
        )
        for c in chosen
    ]
    return replace(dataset, delays=[*dataset.delays, *delays]), len(delays)


def tag_complexities(
    dataset: GeneratedDataset,
    reference: FacilityReference,
    surgeons: Mapping[str, ResolvedSurgeon],
    config: PerturbationConfig,
    rng: random.Random,
) -> GeneratedDataset:
    """
    @brief
    Complexity tags for non-cancelled cases.

    @details
    Spine cases are always Complex. Joint cases are Complex with
    `joint_complex_share` probability, else Standard, and may get one extra
    factor from the remaining complexities. Hand/wrist cases get none.
    """
    standard = _find(reference.complexities, COMPLEXITY_STANDARD)
    complex_ = _find(reference.complexities, COMPLEXITY_COMPLEX)
    if standard is None or complex_ is None:
        logger.warning("Complexities 'Standard'/'Complex' not configured; skipping complexity tags")
        return dataset

    extras = [c for c in reference.complexities if c.id not in (standard.id, complex_.id)]
    tags: list[CaseComplexity] = []
    for case in dataset.cases:
        surgeon = surgeons.get(case.surgeon_id)
        if case.status == "cancelled" or surgeon is None:
            continue
        if surgeon.specialty == "spine":
            tags.append(CaseComplexity(case_id=case.id, complexity_id=complex_.id))
        elif surgeon.specialty == "joint":
            primary = complex_ if rng.random() < config.joint_complex_share else standard
            tags.append(CaseComplexity(case_id=case.id, complexity_id=primary.id))
            if extras and rng.random() < config.second_complexity_chance:
                tags.append(CaseComplexity(case_id=case.id, complexity_id=rng.choice(extras).id))
    return replace(dataset, complexities=[*dataset.complexities, *tags])


def add_device_records(
    dataset: GeneratedDataset,
    reference: FacilityReference,
    surgeons: Mapping[str, ResolvedSurgeon],
) -> GeneratedDataset:
    """Case <-> implant company link for joint cases whose surgeon has a vendor."""
    devices: list[DeviceRecord] = []
    missing: set[str] = set()
    for case in dataset.cases:
        surgeon = surgeons.get(case.surgeon_id)
        if case.status == "cancelled" or surgeon is None:
            continue
        if surgeon.specialty != "joint" or not surgeon.preferred_vendor:
            continue
        company = _find(reference.implant_companies, surgeon.preferred_vendor)
        if company is None:
            missing.add(surgeon.preferred_vendor)
            continue
        devices.append(DeviceRecord(case_id=case.id, implant_company_id=company.id))
    for vendor in sorted(missing):
        logger.warning("Implant company '%s' not configured; no device records for it", vendor)
    return replace(dataset, devices=[*dataset.devices, *devices])


def mark_validation(
    dataset: GeneratedDataset, rate: float, rng: random.Random
) -> tuple[GeneratedDataset, int]:
    """Leaves ~`rate` of completed cases unvalidated and validates the rest."""
    completed = [c for c in dataset.cases if c.status == "completed"]
    skipped = {c.id for c in rng.sample(completed, min(len(completed), round(len(completed) * rate)))}
    cases = [
        _updated(c, data_validated=c.id not in skipped) if c.status == "completed" else c
        for c in dataset.cases
    ]
    return replace(dataset, cases=cases), len(skipped)


def project_cases(dataset: GeneratedDataset, reference: FacilityReference) -> list[CaseProjection]:
    """Completed cases with their recorded milestones keyed by milestone name."""
    names = {m.id: m.name for m in reference.milestone_types}
    by_case = dataset.milestones_by_case()
    projections = []
    for case in dataset.cases:
        if case.status != "completed":
            continue
        stamps = {
            names[m.facility_milestone_id]: m.recorded_at
            for m in by_case.get(case.id, [])
            if m.recorded_at is not None and m.facility_milestone_id in names
        }
        projections.append(CaseProjection(case=case, milestones=stamps))
    return projections


def evaluate_flags(
    dataset: GeneratedDataset,
    reference: FacilityReference,
    engine: FlagRuleEngine,
    created_by: str | None = None,
) -> tuple[GeneratedDataset, int]:
    rules = [r for r in reference.flag_rules if r.is_active]
    if not rules:
        logger.warning("No active flag rules; skipping flag evaluation")
        return dataset, 0
    flags = engine.evaluate(project_cases(dataset, reference), rules, created_by)
    return replace(dataset, flags=[*dataset.flags, *flags]), len(flags)


def apply_perturbations(
    dataset: GeneratedDataset,
    surgeons: Iterable[ResolvedSurgeon],
    reference: FacilityReference,
    config: PerturbationConfig,
    rng: random.Random,
    tz: tzinfo,
    flag_engine: FlagRuleEngine | None = None,
    created_by: str | None = None,
) -> tuple[GeneratedDataset, PerturbationStats]:
    """
    @brief
    Runs the full perturbation pass in its fixed order.

    @returns
        (new dataset, counters for the run result)
    """
    by_id = {s.surgeon_id: s for s in surgeons}
    stats = PerturbationStats()

    dataset, stats.cancelled = cancel_cases(dataset, reference, config.cancellation_rate, rng, tz)
    dataset, stats.delayed = add_delays(dataset, reference, config, rng, tz)
    dataset = tag_complexities(dataset, reference, by_id, config, rng)
    dataset = add_device_records(dataset, reference, by_id)
    dataset, stats.unvalidated = mark_validation(dataset, config.unvalidated_rate, rng)
    dataset, stats.flagged = evaluate_flags(
        dataset, reference, flag_engine or ThresholdFlagEngine(), created_by
    )

    logger.info(
        "Perturbation: %d cancelled, %d delayed, %d unvalidated, %d flags",
        stats.cancelled,
        stats.delayed,
        stats.unvalidated,
        stats.flagged,
    )
    return dataset, stats


__all__ = [
    "PerturbationStats",
    "add_delays",
    "add_device_records",
    "apply_perturbations",
    "cancel_cases",
    "evaluate_flags",
    "mark_validation",
    "project_cases",
    "scheduled_instant",
    "tag_complexities",
]
