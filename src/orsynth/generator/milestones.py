# src/orsynth/generator/milestones.py
"""
@brief
Milestone sequence builder.

@details
Turns a specialty template of offsets into timestamped MilestoneEvents for
one case. Offsets are computed in canonical order and each emitted offset is
clamped to be at least one minute after the previous emitted one, so
timestamps are strictly increasing by construction.
"""

from __future__ import annotations

import random
from collections.abc import Container, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from orsynth.generator.catalog import (
    CANONICAL_MILESTONES,
    MILESTONE_BUMP_CHANCE,
    MILESTONE_BUMPS,
    MILESTONE_TEMPLATES,
    SPEED_CONFIGS,
)
from orsynth.schemas.models import FacilityReference, MilestoneEvent


@dataclass(slots=True)
class MilestoneSequence:
    """
    Events to persist plus the projected instant of every emitted milestone.
    Projected times are filled even when `recorded_at` is withheld.
    """

    events: list[MilestoneEvent] = field(default_factory=list)
    times: dict[str, datetime] = field(default_factory=dict)

    def get(self, name: str) -> datetime | None:
        return self.times.get(name)


def milestone_lookup(reference: FacilityReference, procedure_type_id: str) -> dict[str, str]:
    """
    @brief
    Canonical milestone name -> facility milestone id allowed for a procedure.

    @details
    A procedure missing from `procedure_milestones` allows every catalog
    milestone. Names outside the canonical list are ignored.
    """
    allowed = reference.procedure_milestones.get(procedure_type_id)
    lookup: dict[str, str] = {}
    for mt in sorted(reference.milestone_types, key=lambda m: m.display_order):
        if mt.name not in CANONICAL_MILESTONES or mt.name in lookup:
            continue
        if allowed is not None and mt.id not in allowed:
            continue
        lookup[mt.name] = mt.id
    return lookup


def template_offsets(
    specialty: str,
    speed: str,
    surgical_minutes: int,
    rng: random.Random | None = None,
    allowed: Container[str] | None = None,
) -> list[tuple[str, int]]:
    """
    @brief
    Ordered (name, offset-from-patient-in) pairs for a specialty template.

    @details
    Steps per milestone: look up, speed-scale when pre-incision, apply the
    15 % bump for volatile milestones (only when `rng` is given), then clamp
    to `max(offset, previous + 1)` against the previous emitted milestone.
    Post-incision offsets are relative to `incision + surgical_minutes`.
    Names outside `allowed` are computed but not emitted.
    """
    template = MILESTONE_TEMPLATES[specialty]
    factor = SPEED_CONFIGS[speed].factor
    out: list[tuple[str, int]] = []
    last: int | None = None
    incision = 0

    for name in CANONICAL_MILESTONES:
        # (1) Look up and scale
        if name in template.pre_incision:
            off = round(template.pre_incision[name] * factor)
        elif name in template.post_incision:
            off = incision + surgical_minutes + template.post_incision[name]
        else:
            continue

        # (2) Volatile milestones occasionally run long
        if rng is not None and name in MILESTONE_BUMPS and rng.random() < MILESTONE_BUMP_CHANCE:
            lo, hi = MILESTONE_BUMPS[name]
            off += rng.randint(lo, hi)

        # (3) Never go backwards
        if last is not None:
            off = max(off, last + 1)
        if name == "incision":
            incision = off
        if allowed is not None and name not in allowed:
            continue
        last = off
        out.append((name, off))
    return out


def build_milestone_sequence(
    case_id: str,
    specialty: str,
    speed: str,
    patient_in: datetime,
    surgical_minutes: int,
    allowed: Mapping[str, str],
    rng: random.Random,
    record: bool = True,
) -> MilestoneSequence:
    """
    @brief
    Builds the milestone events of one case.

    @details
    Only milestones present in `allowed` (name -> facility milestone id) are
    emitted. With `record=False` (future cases) the events carry no
    timestamp but projected times are still returned.

    @params
        case_id : str
            Owning case.
        specialty, speed : str
            Template and speed-scaling selectors.
        patient_in : datetime
            Timezone-aware patient-in instant.
        surgical_minutes : int
            Incision-to-closing minutes.
        allowed : Mapping[str, str]
            Milestone name -> facility milestone id.
        rng : random.Random
            Run random generator.
        record : bool
            Whether to stamp `recorded_at`.
    """
    seq = MilestoneSequence()
    for name, off in template_offsets(specialty, speed, surgical_minutes, rng, allowed):
        at = patient_in + timedelta(minutes=off)
        seq.times[name] = at
        seq.events.append(
            MilestoneEvent(
                case_id=case_id,
                facility_milestone_id=allowed[name],
                recorded_at=at if record else None,
            )
        )
    return seq


__all__ = ["MilestoneSequence", "build_milestone_sequence", "milestone_lookup", "template_offsets"]
