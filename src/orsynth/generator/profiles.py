# src/orsynth/generator/profiles.py
from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from datetime import date, time
from types import MappingProxyType

from orsynth.errors import ResolutionError
from orsynth.generator.catalog import SPECIALTY_CASES_PER_DAY, SPECIALTY_PROCEDURES, SPEED_CONFIGS
from orsynth.schemas.models import (
    FacilityReference,
    OutlierProfile,
    ProcedureType,
    SurgeonProfile,
)

logger = logging.getLogger(__name__)

_SPECIALTY_START = time(7, 30)


@dataclass(frozen=True)
class ResolvedSurgeon:
    """
    @brief
    Surgeon profile merged with facility reference data.

    @details
    Immutable once built. Every room id in `day_room_assignments` exists in
    the facility, and `procedures` is never empty.
    """

    surgeon_id: str
    first_name: str
    last_name: str
    facility_id: str
    speed_profile: str
    specialty: str
    operating_days: frozenset[int]
    day_room_assignments: Mapping[int, tuple[str, ...]]
    procedures: tuple[ProcedureType, ...]
    cases_per_day: tuple[int, int]
    day_start: time
    closing_workflow: str = "surgeon_closes"
    closing_handoff_minutes: int = 0
    preferred_vendor: str | None = None
    duration_overrides: Mapping[str, int] = field(default_factory=lambda: MappingProxyType({}))
    outlier_profile: OutlierProfile | None = None

    @property
    def display_name(self) -> str:
        return f"Dr. {self.last_name}" if self.last_name else self.surgeon_id

    def rooms_for(self, day: date) -> tuple[str, ...]:
        return self.day_room_assignments.get(day.isoweekday(), ())


def resolve_surgeon_profile(profile: SurgeonProfile, reference: FacilityReference) -> ResolvedSurgeon:
    """
    @brief
    Resolves one input profile against the facility's reference data.

    @details
    Eligible procedures are the profile's explicit ids filtered against the
    catalog, or the specialty's default procedure names when no ids are
    given. Closing workflow and handoff come from the profile when set, else
    from the surgeon record. Unknown room ids are dropped with a warning.

    @raises
        ResolutionError
            Surgeon not found, or no eligible procedure survives filtering.
    """
    # (1) Surgeon record must exist
    record = next((s for s in reference.surgeons if s.id == profile.surgeon_id), None)
    if record is None:
        raise ResolutionError(
            f"Surgeon {profile.surgeon_id} not found",
            source="profiles.resolve_surgeon_profile",
            suggested_action="Check the surgeon id in surgeon_profiles.",
        )

    # (2) Filter eligible procedures against the catalog
    if profile.procedure_type_ids:
        wanted = set(profile.procedure_type_ids)
        procedures = tuple(p for p in reference.procedure_types if p.id in wanted)
    else:
        names = set(SPECIALTY_PROCEDURES[profile.specialty])
        procedures = tuple(p for p in reference.procedure_types if p.name in names)
    if not procedures:
        raise ResolutionError(
            f"No matching procedures for surgeon {record.first_name} {record.last_name} "
            f"({profile.specialty})",
            source="profiles.resolve_surgeon_profile",
            suggested_action="Add the specialty's procedures to the facility catalog.",
        )

    # (3) Keep only rooms the facility knows about
    known_rooms = {r.id for r in reference.rooms}
    assignments: dict[int, tuple[str, ...]] = {}
    for weekday, rooms in sorted(profile.day_room_assignments.items()):
        kept = tuple(r for r in rooms if r in known_rooms)
        if len(kept) != len(rooms):
            logger.warning(
                "Surgeon %s weekday %d: dropping unknown rooms %s",
                profile.surgeon_id,
                weekday,
                sorted(set(rooms) - known_rooms),
            )
        if kept:
            assignments[weekday] = kept
    if not assignments:
        logger.warning("Surgeon %s has no room assignments; no cases will be generated", profile.surgeon_id)

    # (4) Timing envelope from profile, specialty, then speed class
    speed_cfg = SPEED_CONFIGS[profile.speed_profile]
    if profile.cases_per_day is not None:
        cases_per_day = (profile.cases_per_day.min, profile.cases_per_day.max)
    else:
        cases_per_day = SPECIALTY_CASES_PER_DAY.get(profile.specialty, speed_cfg.cases_per_day)
    day_start = _SPECIALTY_START if profile.specialty in SPECIALTY_CASES_PER_DAY else speed_cfg.start_time

    return ResolvedSurgeon(
        surgeon_id=profile.surgeon_id,
        first_name=record.first_name,
        last_name=record.last_name,
        facility_id=record.facility_id or (reference.facility.id if reference.facility else ""),
        speed_profile=profile.speed_profile,
        specialty=profile.specialty,
        operating_days=frozenset(profile.operating_days),
        day_room_assignments=MappingProxyType(assignments),
        procedures=procedures,
        cases_per_day=cases_per_day,
        day_start=day_start,
        closing_workflow=profile.closing_workflow or record.closing_workflow or "surgeon_closes",
        closing_handoff_minutes=(
            profile.closing_handoff_minutes
            if profile.closing_handoff_minutes is not None
            else record.closing_handoff_minutes or 0
        ),
        preferred_vendor=profile.preferred_vendor,
        duration_overrides=MappingProxyType(dict(profile.duration_overrides)),
        outlier_profile=profile.outlier_profile,
    )


def resolve_surgeon_profiles(
    profiles: list[SurgeonProfile], reference: FacilityReference
) -> list[ResolvedSurgeon]:
    """
    @brief
    Resolves every profile; failures are logged and skipped.

    @details
    A room belongs to one surgeon per weekday. When a later profile claims a
    (weekday, room) pair already taken by an earlier one, the room is dropped
    from the later surgeon's assignment with a warning.
    """
    resolved: list[ResolvedSurgeon] = []
    owners: dict[tuple[int, str], str] = {}
    for profile in profiles:
        try:
            surgeon = resolve_surgeon_profile(profile, reference)
        except ResolutionError as e:
            logger.warning("Skipping surgeon: %s", e)
            continue
        resolved.append(_release_taken_rooms(surgeon, owners))
    logger.info("Resolved %d of %d surgeon profiles", len(resolved), len(profiles))
    return resolved


def _release_taken_rooms(surgeon: ResolvedSurgeon, owners: dict[tuple[int, str], str]) -> ResolvedSurgeon:
    assignments: dict[int, tuple[str, ...]] = {}
    for weekday, rooms in surgeon.day_room_assignments.items():
        kept = []
        for room_id in rooms:
            owner = owners.setdefault((weekday, room_id), surgeon.surgeon_id)
            if owner == surgeon.surgeon_id:
                kept.append(room_id)
            else:
                logger.warning(
                    "Room %s on weekday %d already belongs to surgeon %s; dropping it for surgeon %s",
                    room_id,
                    weekday,
                    owner,
                    surgeon.surgeon_id,
                )
        if kept:
            assignments[weekday] = tuple(kept)
    if assignments == dict(surgeon.day_room_assignments):
        return surgeon
    return replace(surgeon, day_room_assignments=MappingProxyType(assignments))


__all__ = ["ResolvedSurgeon", "resolve_surgeon_profile", "resolve_surgeon_profiles"]
