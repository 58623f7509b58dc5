# src/orsynth/generator/timeline.py
"""
@brief
Case timeline generator.

@details
Walks each resolved surgeon's operating days and synthesizes cases with
timing, room, staffing, implant and flip-room linkage data. One day is a
small state machine over `current_time` (UTC instant), `room_index` and the
previous case of the day.

Days on or after `today` produce scheduled cases whose milestones carry no
timestamp; their projected timeline still drives time advancement.
When the facility has no scheduled status, days on or after `today` are
skipped.
"""

from __future__ import annotations

import logging
import random
import uuid
from collections import defaultdict
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from orsynth.errors import ConfigError
from orsynth.generator import outliers
from orsynth.generator.catalog import (
    COMMON_SIZE_CHANCE,
    DEFAULT_CASE_PREFIX,
    DEFAULT_PAYER_WEIGHT,
    DURATION_JITTER,
    FLIP_FALLBACK_INTERVAL,
    FLIP_TRANSIT_MINUTES,
    LATE_START_JITTER,
    MIN_SURGICAL_MINUTES,
    ON_TIME_SHARE,
    OPERATIVE_SIDES,
    PAYER_WEIGHTS,
    SPECIALTY_OVERHEAD,
    SPEED_CONFIGS,
    START_VARIANCE_LATE,
    START_VARIANCE_ON_TIME,
    TURNOVER_MINUTES,
    fallback_duration_range,
    implant_components,
)
from orsynth.generator.milestones import MilestoneSequence, build_milestone_sequence, milestone_lookup
from orsynth.generator.profiles import ResolvedSurgeon
from orsynth.generator.roster import StaffRoster
from orsynth.schemas.models import (
    Case,
    CaseComplexity,
    CaseDelay,
    CaseFlag,
    DeviceRecord,
    FacilityReference,
    ImplantRecord,
    MilestoneEvent,
    ProcedureType,
    StaffAssignment,
)
from orsynth.workdays.business_calendar import BusinessCalendar

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class GeneratedDataset:
    """
    @brief
    In-memory result of one generation run, written once by the orchestrator.

    @details
    `chain_links` holds deferred flip-room links as (case_id, next_case_id)
    pairs; they are applied after every case row exists.
    """

    cases: list[Case] = field(default_factory=list)
    milestones: list[MilestoneEvent] = field(default_factory=list)
    staff: list[StaffAssignment] = field(default_factory=list)
    implants: list[ImplantRecord] = field(default_factory=list)
    delays: list[CaseDelay] = field(default_factory=list)
    complexities: list[CaseComplexity] = field(default_factory=list)
    devices: list[DeviceRecord] = field(default_factory=list)
    flags: list[CaseFlag] = field(default_factory=list)
    chain_links: list[tuple[str, str]] = field(default_factory=list)

    def extend(self, other: GeneratedDataset) -> None:
        self.cases.extend(other.cases)
        self.milestones.extend(other.milestones)
        self.staff.extend(other.staff)
        self.implants.extend(other.implants)
        self.delays.extend(other.delays)
        self.complexities.extend(other.complexities)
        self.devices.extend(other.devices)
        self.flags.extend(other.flags)
        self.chain_links.extend(other.chain_links)

    def milestones_by_case(self) -> dict[str, list[MilestoneEvent]]:
        grouped: dict[str, list[MilestoneEvent]] = defaultdict(list)
        for m in self.milestones:
            grouped[m.case_id].append(m)
        return dict(grouped)


class CaseNumberer:
    """Sequential `PREFIX-00001` case numbers shared across surgeons."""

    def __init__(self, prefix: str | None = None, start: int = 1):
        self.prefix = prefix or DEFAULT_CASE_PREFIX
        self._next = start

    def next(self) -> str:
        number = f"{self.prefix}-{self._next:05d}"
        self._next += 1
        return number


@dataclass(frozen=True)
class TimelineContext:
    """Run-wide inputs shared by every surgeon's timeline."""

    reference: FacilityReference
    calendar: BusinessCalendar
    roster: StaffRoster
    today: date
    created_by: str | None = None

    @property
    def facility_id(self) -> str:
        return self.reference.facility.id if self.reference.facility else ""

    @property
    def tz(self) -> ZoneInfo:
        name = self.reference.facility.timezone if self.reference.facility else "UTC"
        try:
            return ZoneInfo(name)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ConfigError(
                f"Unknown facility timezone: {name}",
                source="timeline.TimelineContext",
                suggested_action="Use an IANA timezone name such as 'America/New_York'.",
            ) from e


def new_case_id(rng: random.Random) -> str:
    return str(uuid.UUID(int=rng.getrandbits(128), version=4))


def derive_surgical_time(duration: int, specialty: str, speed: str, jitter: int = 0) -> int:
    """
    @brief
    Converts a total procedure duration into surgical minutes.

    @details
    Subtracts the specialty overhead (floored at 15 minutes), adds jitter,
    scales by the speed factor and rounds. A fast surgeon with a 90-minute
    joint procedure and no jitter gets round((90 - 40) * 0.70) = 35.
    """
    base = max(MIN_SURGICAL_MINUTES, duration - SPECIALTY_OVERHEAD[specialty])
    return round((base + jitter) * SPEED_CONFIGS[speed].factor)


def resolve_surgical_duration(
    surgeon: ResolvedSurgeon, procedure: ProcedureType, rng: random.Random
) -> int:
    """
    @brief
    Surgical minutes for one case before outlier adjustment.

    @details
    Total duration comes from the first available tier: surgeon override,
    catalog default, then the fallback table keyed by procedure name or
    speed class.
    """
    # (1) Strict three-tier cascade
    if procedure.id in surgeon.duration_overrides:
        duration = surgeon.duration_overrides[procedure.id]
    elif procedure.expected_duration_minutes:
        duration = procedure.expected_duration_minutes
    else:
        lo, hi = fallback_duration_range(procedure.name, surgeon.specialty, surgeon.speed_profile)
        duration = rng.randint(lo, hi)

    # (2) Overhead, jitter and speed scaling
    jitter = rng.randint(*DURATION_JITTER)
    return derive_surgical_time(duration, surgeon.specialty, surgeon.speed_profile, jitter)


def _pick_payer(reference: FacilityReference, rng: random.Random) -> str | None:
    if not reference.payers:
        return None
    weights = [PAYER_WEIGHTS.get(p.name, DEFAULT_PAYER_WEIGHT) for p in reference.payers]
    return rng.choices([p.id for p in reference.payers], weights=weights, k=1)[0]


def _start_variance(late_delay: int, first_case: bool, rng: random.Random) -> int:
    if first_case and late_delay > 0:
        return late_delay + rng.randint(*LATE_START_JITTER)
    if rng.random() < ON_TIME_SHARE:
        return rng.randint(*START_VARIANCE_ON_TIME)
    return rng.randint(*START_VARIANCE_LATE)


def _surgeon_leaves(surgeon: ResolvedSurgeon, seq: MilestoneSequence) -> datetime | None:
    if surgeon.closing_workflow == "pa_closes":
        closing = seq.get("closing")
        return closing + timedelta(minutes=surgeon.closing_handoff_minutes) if closing else None
    return seq.get("closing_complete")


def _implants_for(
    case_id: str, surgeon: ResolvedSurgeon, procedure: ProcedureType, rng: random.Random
) -> list[ImplantRecord]:
    if surgeon.specialty != "joint" or not surgeon.preferred_vendor:
        return []
    records = []
    for component, spec in implant_components(surgeon.preferred_vendor, procedure.name).items():
        size = rng.choice(spec.common) if rng.random() < COMMON_SIZE_CHANCE else rng.choice(spec.sizes)
        records.append(
            ImplantRecord(
                case_id=case_id,
                component=component,
                implant_name=spec.name,
                implant_size=size,
                manufacturer=surgeon.preferred_vendor,
                catalog_number=f"{component.upper()}-{size}-{rng.randint(1000, 9999)}",
            )
        )
    return records


def _staff_for(case_id: str, day: date, room_id: str, ctx: TimelineContext) -> list[StaffAssignment]:
    entry = ctx.roster.get(day, room_id)
    if entry is None:
        return []
    roles = {s.id: s.role for s in ctx.reference.staff}
    out = []
    if entry.nurse_id:
        out.append(StaffAssignment(case_id=case_id, user_id=entry.nurse_id, role="nurse"))
    for tech_id in entry.tech_ids:
        out.append(StaffAssignment(case_id=case_id, user_id=tech_id, role="tech"))
    if entry.anesthesia_id:
        role = roles.get(entry.anesthesia_id, "anesthesiologist")
        out.append(StaffAssignment(case_id=case_id, user_id=entry.anesthesia_id, role=role))
    return out


@dataclass(slots=True)
class _PreviousCase:
    case_id: str
    incision: datetime | None
    surgical_minutes: int


def generate_surgeon_cases(
    surgeon: ResolvedSurgeon,
    ctx: TimelineContext,
    rng: random.Random,
    numberer: CaseNumberer,
) -> GeneratedDataset:
    """
    @brief
    Generates every case of one surgeon across the calendar window.

    @details
    Per operating day with assigned rooms:
        - flip mode when two rooms are assigned; rooms alternate by `room_index`
        - day-level late-start delay, plus a per-case cascade after the first case
        - three-tier surgical duration followed by the outlier adjustment
        - milestone sequence from the patient-in instant
        - callback time and deferred forward link on flip days
        - time advances from surgeon-left (flip) or patient-out plus turnover

    @params
        surgeon : ResolvedSurgeon
            Resolved surgeon profile.
        ctx : TimelineContext
            Reference data, calendar, roster and "today".
        rng : random.Random
            Run random generator.
        numberer : CaseNumberer
            Shared case-number sequence.

    @returns
        GeneratedDataset holding this surgeon's cases and child records.
    """
    out = GeneratedDataset()
    tz = ctx.tz
    profile = surgeon.outlier_profile
    statuses = ctx.reference.statuses
    completed_id = statuses.completed or ""
    scheduled_id = statuses.scheduled or ""
    speed_cfg = SPEED_CONFIGS[surgeon.speed_profile]
    lookups: dict[str, dict[str, str]] = {}

    # (1) Operating dates with rooms, and the bad days among them
    dates = [d for d in ctx.calendar.operating_dates(surgeon.operating_days) if surgeon.rooms_for(d)]
    if statuses.scheduled is None:
        dates = [d for d in dates if d < ctx.today]
    bad_days = outliers.schedule_bad_days(
        dates,
        profile.bad_days_per_month if profile else 0,
        rng,
        span=(ctx.calendar.start, ctx.calendar.end),
    )

    for day in dates:
        rooms = surgeon.rooms_for(day)
        is_flip = len(rooms) >= 2
        is_bad = day in bad_days
        is_future = day >= ctx.today
        num_cases = rng.randint(*surgeon.cases_per_day)
        late_delay = outliers.late_start_delay(profile, is_bad, rng)

        current = datetime.combine(day, surgeon.day_start, tzinfo=tz).astimezone(timezone.utc)
        room_index = 0
        previous: _PreviousCase | None = None

        for i in range(num_cases):
            # (2) Cascade keeps late days late
            if late_delay and i > 0:
                current += timedelta(minutes=outliers.cascade_delay(profile, is_bad, rng))

            procedure = rng.choice(surgeon.procedures)
            room_id = rooms[room_index % len(rooms)] if is_flip else rooms[0]

            surgical = resolve_surgical_duration(surgeon, procedure, rng)
            surgical = outliers.surgical_time_adjustment(profile, surgical, is_bad, rng)

            # (3) Patient-in relative to the scheduled start
            scheduled_start = current
            patient_in = scheduled_start + timedelta(
                minutes=_start_variance(late_delay, i == 0, rng)
            )

            case_id = new_case_id(rng)
            if procedure.id not in lookups:
                lookups[procedure.id] = milestone_lookup(ctx.reference, procedure.id)
            seq = build_milestone_sequence(
                case_id,
                surgeon.specialty,
                surgeon.speed_profile,
                patient_in,
                surgical,
                lookups[procedure.id],
                rng,
                record=not is_future,
            )
            leaves = _surgeon_leaves(surgeon, seq)

            # (4) Callback from the previous flip case
            call_time = None
            if is_flip and previous is not None:
                if not is_future and previous.incision is not None:
                    pct = rng.randint(*speed_cfg.callback_pct) / 100
                    extra = outliers.callback_delay(profile, is_bad, rng)
                    call_time = previous.incision + timedelta(
                        minutes=round(previous.surgical_minutes * pct) + extra
                    )
                out.chain_links.append((previous.case_id, case_id))

            out.cases.append(
                Case(
                    id=case_id,
                    facility_id=surgeon.facility_id or ctx.facility_id,
                    case_number=numberer.next(),
                    surgeon_id=surgeon.surgeon_id,
                    procedure_type_id=procedure.id,
                    or_room_id=room_id,
                    scheduled_date=day,
                    start_time=scheduled_start.astimezone(tz).time().replace(second=0, microsecond=0),
                    status="scheduled" if is_future else "completed",
                    status_id=scheduled_id if is_future else completed_id,
                    payer_id=_pick_payer(ctx.reference, rng),
                    operative_side=rng.choice(OPERATIVE_SIDES),
                    call_time=call_time,
                    surgeon_left_at=None if is_future else leaves,
                    created_by=ctx.created_by,
                )
            )
            out.milestones.extend(seq.events)

            # (5) Staff from the roster; implants for completed joint cases
            out.staff.extend(_staff_for(case_id, day, room_id, ctx))
            if not is_future:
                out.implants.extend(_implants_for(case_id, surgeon, procedure, rng))

            # (6) Advance the clock
            if is_flip:
                if leaves is not None:
                    current = leaves + timedelta(minutes=rng.randint(*FLIP_TRANSIT_MINUTES))
                else:
                    current = current + timedelta(minutes=FLIP_FALLBACK_INTERVAL)
                room_index += 1
            else:
                patient_out = seq.get("patient_out")
                if patient_out is not None:
                    turnover = outliers.turnover_adjustment(
                        profile, rng.randint(*TURNOVER_MINUTES), is_bad, rng
                    )
                    current = patient_out + timedelta(minutes=turnover)
                else:
                    current = current + timedelta(minutes=FLIP_FALLBACK_INTERVAL)

            previous = _PreviousCase(case_id, seq.get("incision"), surgical)

    return out


def generate_timelines(
    surgeons: Iterable[ResolvedSurgeon],
    ctx: TimelineContext,
    rng: random.Random,
    on_surgeon: Callable[[ResolvedSurgeon, int, int, int], None] | None = None,
) -> GeneratedDataset:
    """
    @brief
    Generates all surgeons' cases into one dataset with shared case numbering.

    @details
    `on_surgeon(surgeon, index, total, case_count)` is called after each
    surgeon for progress reporting.
    """
    surgeons = list(surgeons)
    prefix = ctx.reference.facility.case_number_prefix if ctx.reference.facility else None
    numberer = CaseNumberer(prefix)
    dataset = GeneratedDataset()
    for idx, surgeon in enumerate(surgeons):
        part = generate_surgeon_cases(surgeon, ctx, rng, numberer)
        dataset.extend(part)
        logger.info(
            "Generated %d cases for %s (%s, %s)",
            len(part.cases),
            surgeon.display_name,
            surgeon.specialty,
            surgeon.speed_profile,
        )
        if on_surgeon is not None:
            on_surgeon(surgeon, idx, len(surgeons), len(part.cases))
    return dataset


__all__ = [
    "CaseNumberer",
    "GeneratedDataset",
    "TimelineContext",
    "derive_surgical_time",
    "generate_surgeon_cases",
    "generate_timelines",
    "new_case_id",
    "resolve_surgical_duration",
]
