# src/orsynth/schemas/models.py
"""
@brief
Pydantic data models for the orsynth demo-data generator.

@details
Defines four groups of canonical model types:
    - Inputs: OutlierSetting, OutlierProfile, SurgeonProfile
    - Facility reference data: FacilityReference and its lookup entries
    - Generated records: Case, MilestoneEvent, StaffAssignment, ImplantRecord,
      CaseDelay, CaseComplexity, DeviceRecord, CaseFlag, RoomDayStaffing
    - Run control: GenerationConfig (config.yaml), GenerationProgress,
      GenerationResult, PurgeResult

Generated records validate their invariants at construction time. Row payloads
for the datastore are produced with `to_row()` so that no loosely shaped dicts
are assembled by hand.
"""

from __future__ import annotations

from datetime import date, datetime, time
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator, model_validator

SpeedProfile = Literal["fast", "average", "slow"]
Specialty = Literal["joint", "hand_wrist", "spine"]
Vendor = Literal["Stryker", "Zimmer Biomet", "DePuy Synthes"]
ClosingWorkflow = Literal["surgeon_closes", "pa_closes"]
CaseStatus = Literal["scheduled", "completed", "cancelled"]
StaffRole = Literal["anesthesiologist", "crna", "nurse", "tech"]
OperativeSide = Literal["Left", "Right", "Bilateral"]


class _StrictBaseModel(BaseModel):
    """
    @brief
    Base model enforcing strict defaults for configuration and data contracts.

    @details
    Forbids unknown fields and preserves exact naming rules.
    Designed as a foundation for all other orsynth models.
    """

    model_config = {
        "extra": "forbid",  # Reject unknown fields
        "populate_by_name": True,  # Allow population by field name
        "use_enum_values": True,  # Export raw enum values if enums appear later
    }


class _FrozenModel(_StrictBaseModel):
    """Strict model that cannot be mutated after construction."""

    model_config = {**_StrictBaseModel.model_config, "frozen": True}


def _require_aware(value: datetime | None, field_name: str) -> None:
    if value is not None and value.tzinfo is None:
        raise ValueError(f"{field_name} must be timezone-aware")


# ------------------------------------------------------------
# Inputs: outlier configuration and surgeon profiles
# ------------------------------------------------------------
class OutlierSetting(_StrictBaseModel):
    """
    @brief
    One configurable perturbation kind.

    @details
    `frequency` is the percentage of days/cases/turnovers affected when the
    day is not a bad day. `range_min`/`range_max` carry the kind-specific
    magnitude (minutes for late starts, turnovers and callbacks; percent for
    extended phases and fast cases).
    """

    enabled: bool = Field(False, description="Whether this outlier kind can fire")
    frequency: float = Field(30.0, ge=0.0, le=100.0, description="Firing probability in percent")
    range_min: int = Field(0, ge=0, description="Lower bound of the configured range")
    range_max: int = Field(0, ge=0, description="Upper bound of the configured range")

    @model_validator(mode="after")
    def _check_range(self) -> OutlierSetting:
        if self.range_min > self.range_max:
            raise ValueError(
                f"range_min ({self.range_min}) must not exceed range_max ({self.range_max})"
            )
        return self


class OutlierProfile(_StrictBaseModel):
    """
    @brief
    Per-surgeon outlier policy.

    @details
    Five independent outlier kinds plus the number of "bad days" per month.
    On a bad day every enabled kind fires at 100 % using its configured range.
    The cascade range is the per-case extra delay added after the first case
    of a late-start day.
    """

    late_starts: OutlierSetting = Field(
        default_factory=lambda: OutlierSetting(range_min=20, range_max=35)
    )
    long_turnovers: OutlierSetting = Field(
        default_factory=lambda: OutlierSetting(range_min=30, range_max=45)
    )
    extended_phases: OutlierSetting = Field(
        default_factory=lambda: OutlierSetting(range_min=50, range_max=65)
    )
    callback_delays: OutlierSetting = Field(
        default_factory=lambda: OutlierSetting(range_min=15, range_max=20)
    )
    fast_cases: OutlierSetting = Field(
        default_factory=lambda: OutlierSetting(range_min=18, range_max=22)
    )
    bad_days_per_month: int = Field(0, ge=0, le=3, description="Forced outlier days per month")
    cascade_min: int = Field(5, ge=1, description="Minimum per-case cascade delay (minutes)")
    cascade_max: int = Field(12, ge=1, description="Maximum per-case cascade delay (minutes)")

    @model_validator(mode="after")
    def _check_cascade(self) -> OutlierProfile:
        if self.cascade_min > self.cascade_max:
            raise ValueError("cascade_min must not exceed cascade_max")
        return self

    def settings(self) -> dict[str, OutlierSetting]:
        return {
            "late_starts": self.late_starts,
            "long_turnovers": self.long_turnovers,
            "extended_phases": self.extended_phases,
            "callback_delays": self.callback_delays,
            "fast_cases": self.fast_cases,
        }


class CasesPerDay(_StrictBaseModel):
    min: int = Field(..., ge=1)
    max: int = Field(..., ge=1)

    @model_validator(mode="after")
    def _check_bounds(self) -> CasesPerDay:
        if self.min > self.max:
            raise ValueError("cases_per_day.min must not exceed cases_per_day.max")
        return self


class SurgeonProfile(_StrictBaseModel):
    """
    @brief
    Wizard input describing how one surgeon's history should look.

    @details
    Weekdays use ISO numbering (1 = Monday ... 7 = Sunday). Each weekday maps
    to an ordered list of one or two room ids; two rooms put the surgeon in
    flip-room mode for that day.
    """

    surgeon_id: str = Field(..., min_length=1)
    speed_profile: SpeedProfile = "average"
    specialty: Specialty
    operating_days: list[int] = Field(default_factory=lambda: [1, 2, 3, 4, 5])
    day_room_assignments: dict[int, list[str]] = Field(default_factory=dict)
    preferred_vendor: Vendor | None = None
    procedure_type_ids: list[str] = Field(default_factory=list)
    duration_overrides: dict[str, int] = Field(default_factory=dict)
    outlier_profile: OutlierProfile | None = None
    cases_per_day: CasesPerDay | None = None
    closing_workflow: ClosingWorkflow | None = None
    closing_handoff_minutes: int | None = Field(None, ge=0)

    @field_validator("operating_days")
    @classmethod
    def _check_operating_days(cls, v: list[int]) -> list[int]:
        bad = [d for d in v if d < 1 or d > 7]
        if bad:
            raise ValueError(f"operating_days must be ISO weekdays 1..7, got {bad}")
        return sorted(set(v))

    @field_validator("day_room_assignments")
    @classmethod
    def _check_rooms(cls, v: dict[int, list[str]]) -> dict[int, list[str]]:
        for weekday, rooms in v.items():
            if weekday < 1 or weekday > 7:
                raise ValueError(f"day_room_assignments key {weekday} is not an ISO weekday")
            if len(rooms) > 2:
                raise ValueError(f"weekday {weekday}: at most two rooms allowed, got {len(rooms)}")
            if len(set(rooms)) != len(rooms):
                raise ValueError(f"weekday {weekday}: duplicate room ids {rooms}")
        return v

    @field_validator("duration_overrides")
    @classmethod
    def _check_overrides(cls, v: dict[str, int]) -> dict[str, int]:
        bad = {k: m for k, m in v.items() if m <= 0}
        if bad:
            raise ValueError(f"duration_overrides must be positive minutes, got {bad}")
        return v


# ------------------------------------------------------------
# Facility reference data
# ------------------------------------------------------------
class Facility(_StrictBaseModel):
    id: str
    name: str = ""
    timezone: str = Field("UTC", description="IANA timezone name, e.g. 'America/New_York'")
    case_number_prefix: str | None = None


class Room(_StrictBaseModel):
    id: str
    name: str = ""
    display_order: int = 0


class ProcedureType(_StrictBaseModel):
    id: str
    name: str
    expected_duration_minutes: int | None = Field(None, gt=0)


class MilestoneType(_StrictBaseModel):
    id: str
    name: str
    display_order: int = 0
    source_milestone_type_id: str | None = None


class LookupEntry(_StrictBaseModel):
    """Generic id/name lookup row (payers, reasons, delay types, complexities, companies)."""

    id: str
    name: str


class StatusLookup(_StrictBaseModel):
    scheduled: str | None = None
    completed: str | None = None
    cancelled: str | None = None


class FlagRule(_StrictBaseModel):
    """
    @brief
    Threshold rule evaluated over a case's milestone timeline.

    @details
    The metric is either a named shortcut (e.g. `total_case_time`) or the
    minutes between `start_milestone` and `end_milestone`.
    `threshold_type` selects how `threshold` is read:
        - absolute: minutes, compared directly
        - median_plus_sd: number of standard deviations from the facility median
        - percentage_over_median: percent above (or below, for lt/lte) the median
    """

    id: str
    name: str = ""
    metric: str
    start_milestone: str | None = None
    end_milestone: str | None = None
    operator: Literal["gt", "gte", "lt", "lte"] = "gt"
    threshold_type: Literal["absolute", "median_plus_sd", "percentage_over_median"] = "absolute"
    threshold: float
    severity: str = "warning"
    is_active: bool = True


class SurgeonRecord(_StrictBaseModel):
    id: str
    first_name: str = ""
    last_name: str = ""
    facility_id: str | None = None
    closing_workflow: ClosingWorkflow | None = None
    closing_handoff_minutes: int | None = Field(None, ge=0)


class StaffMember(_StrictBaseModel):
    id: str
    first_name: str = ""
    last_name: str = ""
    role: StaffRole
    is_active: bool = True


class FacilityReference(_StrictBaseModel):
    """
    @brief
    Everything the generator reads from the facility before generating.

    @details
    Produced by a ReferenceReader (datastore) or by ReferenceLoader (YAML).
    `facility` is None when the facility could not be found.
    `procedure_milestones` maps a procedure id to the milestone ids its
    configuration allows; procedures absent from the map allow all milestones.
    """

    facility: Facility | None = None
    rooms: list[Room] = Field(default_factory=list)
    procedure_types: list[ProcedureType] = Field(default_factory=list)
    milestone_types: list[MilestoneType] = Field(default_factory=list)
    procedure_milestones: dict[str, list[str]] = Field(default_factory=dict)
    payers: list[LookupEntry] = Field(default_factory=list)
    statuses: StatusLookup = Field(default_factory=StatusLookup)
    cancellation_reasons: list[LookupEntry] = Field(default_factory=list)
    delay_types: list[LookupEntry] = Field(default_factory=list)
    complexities: list[LookupEntry] = Field(default_factory=list)
    implant_companies: list[LookupEntry] = Field(default_factory=list)
    flag_rules: list[FlagRule] = Field(default_factory=list)
    surgeons: list[SurgeonRecord] = Field(default_factory=list)
    staff: list[StaffMember] = Field(default_factory=list)


# ------------------------------------------------------------
# Generated records
# ------------------------------------------------------------
class Case(_StrictBaseModel):
    """
    @brief
    One generated surgical case.

    @details
    A case belongs to exactly one room-day. `status` is the lifecycle name and
    `status_id` its facility lookup id. Cancelled cases must carry a
    cancellation timestamp and never a forward flip-room link.
    """

    id: str
    facility_id: str
    case_number: str = Field(..., min_length=1)
    surgeon_id: str
    procedure_type_id: str
    or_room_id: str
    scheduled_date: date
    start_time: time
    status: CaseStatus
    status_id: str
    payer_id: str | None = None
    operative_side: OperativeSide | None = None
    call_time: datetime | None = None
    surgeon_left_at: datetime | None = None
    cancelled_at: datetime | None = None
    cancellation_reason_id: str | None = None
    called_next_case_id: str | None = None
    data_validated: bool = False
    is_excluded_from_metrics: bool = False
    created_by: str | None = None

    @model_validator(mode="after")
    def _check_lifecycle(self) -> Case:
        for name in ("call_time", "surgeon_left_at", "cancelled_at"):
            _require_aware(getattr(self, name), name)
        if self.status == "cancelled" and self.cancelled_at is None:
            raise ValueError("cancelled case requires cancelled_at")
        if self.status != "cancelled" and self.cancelled_at is not None:
            raise ValueError("cancelled_at is only allowed on cancelled cases")
        if self.status == "cancelled" and self.called_next_case_id is not None:
            raise ValueError("cancelled case cannot link to a next case")
        if self.called_next_case_id == self.id:
            raise ValueError("case cannot link to itself")
        return self

    def to_row(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude={"status"})


class MilestoneEvent(_StrictBaseModel):
    case_id: str
    facility_milestone_id: str
    recorded_at: datetime | None = None

    @model_validator(mode="after")
    def _check_aware(self) -> MilestoneEvent:
        _require_aware(self.recorded_at, "recorded_at")
        return self

    def to_row(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


class StaffAssignment(_StrictBaseModel):
    case_id: str
    user_id: str
    role: StaffRole

    def to_row(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


class ImplantRecord(_StrictBaseModel):
    case_id: str
    component: str
    implant_name: str
    implant_size: str
    manufacturer: str
    catalog_number: str

    def to_row(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


class CaseDelay(_StrictBaseModel):
    case_id: str
    delay_type_id: str
    duration_minutes: int = Field(..., ge=5, le=45)
    notes: str | None = None
    recorded_at: datetime

    def to_row(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


class CaseComplexity(_StrictBaseModel):
    case_id: str
    complexity_id: str

    def to_row(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


class DeviceRecord(_StrictBaseModel):
    case_id: str
    implant_company_id: str

    def to_row(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


class CaseFlag(_StrictBaseModel):
    case_id: str
    facility_id: str
    flag_rule_id: str
    flag_type: Literal["threshold"] = "threshold"
    metric_value: float
    threshold_value: float
    severity: str
    note: str | None = None
    created_by: str | None = None

    def to_row(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


class RoomDayStaffing(_FrozenModel):
    """
    @brief
    Staff planned for one room on one date.

    @details
    Slots stay empty (None / fewer techs) when a role pool is exhausted.
    A staff id may appear only once within one entry.
    """

    day: date
    room_id: str
    nurse_id: str | None = None
    tech_ids: tuple[str, ...] = ()
    anesthesia_id: str | None = None

    @model_validator(mode="after")
    def _check_slots(self) -> RoomDayStaffing:
        if len(self.tech_ids) > 2:
            raise ValueError("at most two technicians per room-day")
        ids = self.staff_ids()
        if len(ids) != len(set(ids)):
            raise ValueError(f"staff member listed twice for {self.room_id} on {self.day}")
        return self

    def staff_ids(self) -> list[str]:
        ids = [self.nurse_id, *self.tech_ids, self.anesthesia_id]
        return [i for i in ids if i is not None]


# ------------------------------------------------------------
# Run control
# ------------------------------------------------------------
class PerturbationConfig(_StrictBaseModel):
    """Population-level rates used by the post-generation pass."""

    cancellation_rate: float = Field(0.03, ge=0.0, le=1.0)
    delay_rate_min: float = Field(0.05, ge=0.0, le=1.0)
    delay_rate_max: float = Field(0.08, ge=0.0, le=1.0)
    unvalidated_rate: float = Field(0.02, ge=0.0, le=1.0)
    joint_complex_share: float = Field(0.30, ge=0.0, le=1.0)
    second_complexity_chance: float = Field(0.10, ge=0.0, le=1.0)

    @model_validator(mode="after")
    def _check_delay_band(self) -> PerturbationConfig:
        if self.delay_rate_min > self.delay_rate_max:
            raise ValueError("delay_rate_min must not exceed delay_rate_max")
        return self


class IOPolicy(BaseModel):
    """
    @brief
    Controls runtime behavior for artifact writing.

    @details
    Used by the CLI to determine whether to write metrics, dataset CSVs,
    and the room-day plot.
    """

    write_artifacts: bool = Field(
        True, description="If False, disables writing metrics.json and dataset CSV files."
    )
    write_plot: bool = Field(True, description="If True, renders one room-day plot.")


class VisualConfig(BaseModel):
    """Figure dimensions and DPI for matplotlib visualizations."""

    width: float = Field(19.0, description="Figure width in inches")
    height: float = Field(10.0, description="Figure height in inches")
    dpi: int = Field(150, description="Output figure DPI")


class ValidationConfig(BaseModel):
    write_report: bool = True
    fail_on_warnings: bool = False


class ExperimentConfig(BaseModel):
    name: str | None = None
    description: str | None = None
    tags: list[str] | None = None


class GenerationConfig(_StrictBaseModel):
    """
    @brief
    Represents the full run configuration loaded from config.yaml.

    @details
    The history window runs from `today - months_of_history` to
    `today + months_ahead`. `random_seed` and `today` make a run reproducible.
    """

    facility_id: str = Field(..., min_length=1)
    months_of_history: int = Field(6, ge=1, le=24)
    months_ahead: int = Field(1, ge=0, le=3)
    purge_first: bool = True
    random_seed: int | None = Field(None, description="Seed for the run's random generator")
    today: date | None = Field(None, description="Override for the current date")
    batch_size: int = Field(100, ge=1, description="Rows per datastore write")
    created_by_user_id: str | None = None
    surgeon_profiles: list[SurgeonProfile] = Field(default_factory=list)
    perturbation: PerturbationConfig = Field(default_factory=PerturbationConfig)

    output_dir: str | None = "data/output"
    io_policy: IOPolicy = Field(default_factory=IOPolicy.model_construct)
    visual: VisualConfig = Field(default_factory=VisualConfig.model_construct)
    validation: ValidationConfig = Field(default_factory=ValidationConfig.model_construct)
    experiment: ExperimentConfig = Field(default_factory=ExperimentConfig.model_construct)


class GenerationProgress(_StrictBaseModel):
    phase: str
    current: int
    total: int
    message: str


class GenerationDetails(_StrictBaseModel):
    milestones: int = 0
    staff: int = 0
    implants: int = 0
    cancelled_count: int = 0
    delayed_count: int = 0
    flagged_count: int = 0
    unvalidated_count: int = 0


class GenerationResult(_StrictBaseModel):
    success: bool
    cases_generated: int = 0
    error: str | None = None
    details: GenerationDetails | None = None


class PurgeResult(_StrictBaseModel):
    success: bool
    cases_deleted: int = 0
    error: str | None = None


__all__ = [
    "Case",
    "CaseComplexity",
    "CaseDelay",
    "CaseFlag",
    "CasesPerDay",
    "DeviceRecord",
    "Facility",
    "FacilityReference",
    "FlagRule",
    "GenerationConfig",
    "GenerationDetails",
    "GenerationProgress",
    "GenerationResult",
    "ImplantRecord",
    "LookupEntry",
    "MilestoneEvent",
    "MilestoneType",
    "OutlierProfile",
    "OutlierSetting",
    "PerturbationConfig",
    "ProcedureType",
    "PurgeResult",
    "Room",
    "RoomDayStaffing",
    "StaffAssignment",
    "StaffMember",
    "StatusLookup",
    "SurgeonProfile",
    "SurgeonRecord",
]
