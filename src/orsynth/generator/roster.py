# src/orsynth/generator/roster.py
from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Iterable, Iterator
from datetime import date

from orsynth.generator.profiles import ResolvedSurgeon
from orsynth.schemas.models import RoomDayStaffing, StaffMember
from orsynth.workdays.business_calendar import BusinessCalendar

logger = logging.getLogger(__name__)


class StaffRoster:
    """
    @brief
    Room-day staffing keyed by (date, room id).

    @details
    Built once per run by `plan_roster`. A staff id appears in at most one
    entry per date.
    """

    def __init__(self, entries: Iterable[RoomDayStaffing] = ()):
        self._entries: dict[tuple[date, str], RoomDayStaffing] = {}
        for entry in entries:
            self._entries[(entry.day, entry.room_id)] = entry

    def get(self, day: date, room_id: str) -> RoomDayStaffing | None:
        return self._entries.get((day, room_id))

    def for_date(self, day: date) -> list[RoomDayStaffing]:
        return [e for (d, _), e in sorted(self._entries.items()) if d == day]

    def __iter__(self) -> Iterator[RoomDayStaffing]:
        return iter(e for _, e in sorted(self._entries.items()))

    def __len__(self) -> int:
        return len(self._entries)


def _rotated(pool: list[str], day: date) -> list[str]:
    if not pool:
        return []
    offset = day.toordinal() % len(pool)
    return pool[offset:] + pool[:offset]


def active_rooms_by_date(
    surgeons: Iterable[ResolvedSurgeon], calendar: BusinessCalendar
) -> dict[date, set[str]]:
    """Rooms opened on each date by any surgeon's weekday assignment."""
    active: dict[date, set[str]] = defaultdict(set)
    for surgeon in surgeons:
        for day in calendar.operating_dates(surgeon.operating_days):
            rooms = surgeon.rooms_for(day)
            if rooms:
                active[day].update(rooms)
    return dict(active)


def plan_roster(
    surgeons: Iterable[ResolvedSurgeon],
    calendar: BusinessCalendar,
    staff: Iterable[StaffMember],
) -> StaffRoster:
    """
    @brief
    Assigns one nurse, two techs and one anesthesia provider per active room-day.

    @details
    Anesthesiologists and CRNAs form one pool. For each date the pools start
    at an offset derived from the date so workload spreads across days, and
    rooms are served in sorted order so the same room set always gets the
    same assignment. An exhausted pool leaves the slot empty.

    @params
        surgeons : Iterable[ResolvedSurgeon]
            Resolved surgeons with weekday room assignments.
        calendar : BusinessCalendar
            Window and holiday set.
        staff : Iterable[StaffMember]
            Facility staff; inactive members are ignored.

    @returns
        StaffRoster covering every active room-day.
    """
    # (1) Split active staff into stable, id-sorted pools
    members = [s for s in staff if s.is_active]
    nurses = sorted(s.id for s in members if s.role == "nurse")
    techs = sorted(s.id for s in members if s.role == "tech")
    anesthesia = sorted(s.id for s in members if s.role in ("anesthesiologist", "crna"))

    entries: list[RoomDayStaffing] = []
    short_days = 0

    # (2) Walk dates; each date draws from fresh rotated pools
    for day, rooms in sorted(active_rooms_by_date(surgeons, calendar).items()):
        nurse_iter = iter(_rotated(nurses, day))
        tech_iter = iter(_rotated(techs, day))
        anes_iter = iter(_rotated(anesthesia, day))
        short = False
        for room_id in sorted(rooms):
            nurse = next(nurse_iter, None)
            room_techs = tuple(t for t in (next(tech_iter, None), next(tech_iter, None)) if t)
            anes = next(anes_iter, None)
            if nurse is None or anes is None or len(room_techs) < 2:
                short = True
            entries.append(
                RoomDayStaffing(
                    day=day,
                    room_id=room_id,
                    nurse_id=nurse,
                    tech_ids=room_techs,
                    anesthesia_id=anes,
                )
            )
        short_days += short

    if short_days:
        logger.warning("Staff pools exhausted on %d dates; some room-days are understaffed", short_days)
    logger.info("Planned roster: %d room-days", len(entries))
    return StaffRoster(entries)


__all__ = ["StaffRoster", "active_rooms_by_date", "plan_roster"]
