# src/orsynth/pipeline.py
"""
@brief
Top-level demo-data generation run.

@details
load reference -> validate -> purge (optional) -> resolve surgeons ->
calendar -> roster -> timelines -> perturbation -> persist -> finalize.

Configuration problems abort before anything is written. Taxonomy errors
never escape `generate_demo_data`; they are reported on GenerationResult.
"""

from __future__ import annotations

import logging
import random
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date, tzinfo

from orsynth.errors import ConfigError, OrsynthError, ResolutionError
from orsynth.flags.engine import FlagRuleEngine
from orsynth.generator.perturbation import PerturbationStats, apply_perturbations
from orsynth.generator.profiles import ResolvedSurgeon, resolve_surgeon_profiles
from orsynth.generator.roster import StaffRoster, plan_roster
from orsynth.generator.timeline import GeneratedDataset, TimelineContext, generate_timelines
from orsynth.persistence.orchestrator import finalize, persist_dataset, purge_case_data
from orsynth.persistence.store import CaseDataStore, ReferenceReader
from orsynth.schemas.models import (
    FacilityReference,
    GenerationConfig,
    GenerationDetails,
    GenerationProgress,
    GenerationResult,
)
from orsynth.workdays.business_calendar import BusinessCalendar, shift_months

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[GenerationProgress], None]


@dataclass
class GenerationRun:
    """Everything a run produced; artifacts are derived from it by the CLI."""

    result: GenerationResult
    reference: FacilityReference | None = None
    calendar: BusinessCalendar | None = None
    surgeons: list[ResolvedSurgeon] | None = None
    roster: StaffRoster | None = None
    dataset: GeneratedDataset | None = None
    tz: tzinfo | None = None


def validate_reference(reference: FacilityReference) -> None:
    """
    @brief
    Fatal configuration checks performed before any write.

    @raises
        ConfigError
            Missing facility, rooms, procedure catalog, milestone catalog,
            payers, or completed status.
    """
    checks = [
        (reference.facility is None, "Facility not found", "Check facility_id in config.yaml."),
        (not reference.rooms, "No OR rooms found", "Add rooms first."),
        (not reference.procedure_types, "No procedure types found", "Add procedures first."),
        (not reference.milestone_types, "No milestone types found", "Configure facility milestones."),
        (not reference.payers, "No payers found", "Add payers first."),
        (
            reference.statuses.completed is None,
            "Completed case status not found",
            "Add the 'completed' case status.",
        ),
    ]
    for failed, message, action in checks:
        if failed:
            raise ConfigError(message, source="pipeline.validate_reference", suggested_action=action)
    if reference.statuses.scheduled is None:
        logger.warning("Scheduled case status not found; future days will not be generated")


def generation_window(config: GenerationConfig, today: date) -> BusinessCalendar:
    start = shift_months(today, -config.months_of_history)
    end = shift_months(today, config.months_ahead)
    return BusinessCalendar.for_range(start, end)


def run_generation(
    store: CaseDataStore,
    config: GenerationConfig,
    on_progress: ProgressCallback | None = None,
    flag_engine: FlagRuleEngine | None = None,
    reader: ReferenceReader | None = None,
) -> GenerationRun:
    """
    @brief
    Executes one generation run and keeps its intermediate products.

    @params
        store : CaseDataStore
            Target datastore.
        config : GenerationConfig
            Validated run configuration.
        on_progress : ProgressCallback | None
            Receives {phase, current, total, message}; observational only.
        flag_engine : FlagRuleEngine | None
            Rule engine for the flag step (defaults to ThresholdFlagEngine).
        reader : ReferenceReader | None
            Reference source; defaults to `store` when it can read references.

    @returns
        GenerationRun whose `result` reports success or the first fatal error.
    """

    def emit(phase: str, current: int, message: str) -> None:
        if on_progress is not None:
            on_progress(GenerationProgress(phase=phase, current=current, total=100, message=message))

    rng = random.Random(config.random_seed)
    today = config.today or date.today()
    run = GenerationRun(result=GenerationResult(success=False))
    source = reader if reader is not None else store

    try:
        # (1) Reference data and fatal checks
        emit("loading", 5, "Loading facility configuration...")
        reference = source.load_reference(config.facility_id)
        validate_reference(reference)
        run.reference = reference

        # (2) Purge previous case data
        if config.purge_first:
            emit("clearing", 10, "Purging existing data...")
            purge = purge_case_data(
                store,
                config.facility_id,
                surgeon_ids=[s.id for s in reference.surgeons],
                batch_size=config.batch_size,
            )
            if not purge.success:
                run.result = GenerationResult(success=False, error=f"Purge failed: {purge.error}")
                return run

        # (3) Surgeons
        emit("resolving", 20, "Resolving surgeon profiles...")
        surgeons = resolve_surgeon_profiles(config.surgeon_profiles, reference)
        if not surgeons:
            raise ResolutionError(
                "No surgeons could be resolved. Check that surgeon IDs exist and matching "
                "procedures are configured.",
                source="pipeline.run_generation",
            )
        run.surgeons = surgeons

        # (4) Calendar and roster
        emit("planning", 22, "Planning staff roster...")
        calendar = generation_window(config, today)
        roster = plan_roster(surgeons, calendar, reference.staff)
        run.calendar, run.roster = calendar, roster

        # (5) Timelines
        ctx = TimelineContext(
            reference=reference,
            calendar=calendar,
            roster=roster,
            today=today,
            created_by=config.created_by_user_id,
        )
        run.tz = ctx.tz

        def on_surgeon(surgeon: ResolvedSurgeon, idx: int, total: int, count: int) -> None:
            emit(
                "generating",
                25 + (25 * (idx + 1)) // total,
                f"Generated cases for {surgeon.display_name} ({count} cases)...",
            )

        emit("generating", 25, "Generating case data...")
        dataset = generate_timelines(surgeons, ctx, rng, on_surgeon=on_surgeon)

        # (6) Population-level effects
        emit("perturbing", 50, "Applying cancellations, delays and flags...")
        dataset, stats = apply_perturbations(
            dataset,
            surgeons,
            reference,
            config.perturbation,
            rng,
            ctx.tz,
            flag_engine=flag_engine,
            created_by=config.created_by_user_id,
        )
        run.dataset = dataset

        # (7) Write
        persist_dataset(store, dataset, config.batch_size, on_progress)

        # (8) Derived data, best effort
        emit("finalizing", 95, "Recalculating surgeon averages...")
        finalize(store, config.facility_id)
        emit("complete", 100, "Done!")

        run.result = GenerationResult(
            success=True,
            cases_generated=len(dataset.cases),
            details=_details(dataset, stats),
        )
        return run
    except OrsynthError as e:
        logger.error("Generation failed: %s", e)
        run.result = GenerationResult(success=False, cases_generated=0, error=str(e.args[0]))
        return run


def _details(dataset: GeneratedDataset, stats: PerturbationStats) -> GenerationDetails:
    return GenerationDetails(
        milestones=len(dataset.milestones),
        staff=len(dataset.staff),
        implants=len(dataset.implants),
        cancelled_count=stats.cancelled,
        delayed_count=stats.delayed,
        flagged_count=stats.flagged,
        unvalidated_count=stats.unvalidated,
    )


def generate_demo_data(
    store: CaseDataStore,
    config: GenerationConfig,
    on_progress: ProgressCallback | None = None,
    flag_engine: FlagRuleEngine | None = None,
    reader: ReferenceReader | None = None,
) -> GenerationResult:
    """Runs generation and returns only its result record."""
    return run_generation(store, config, on_progress, flag_engine, reader).result


__all__ = [
    "GenerationRun",
    "generate_demo_data",
    "generation_window",
    "run_generation",
    "validate_reference",
]
