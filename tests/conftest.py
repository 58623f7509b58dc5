import sys
from datetime import date
from pathlib import Path

import pytest

# (1) Add repository root to sys.path to enable absolute imports
#     The root directory contains scripts/, src/ and config/.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from orsynth.schemas.models import (  # noqa: E402
    Facility,
    FacilityReference,
    FlagRule,
    GenerationConfig,
    LookupEntry,
    MilestoneType,
    ProcedureType,
    Room,
    StaffMember,
    StatusLookup,
    SurgeonProfile,
    SurgeonRecord,
)

MILESTONE_NAMES = [
    "patient_in",
    "anes_start",
    "anes_end",
    "prep_drape_start",
    "prep_drape_complete",
    "incision",
    "closing",
    "closing_complete",
    "patient_out",
    "room_cleaned",
]


@pytest.fixture()
def reference() -> FacilityReference:
    """Small but complete facility: 3 rooms, joint/hand/spine catalog, full staff."""
    return FacilityReference(
        facility=Facility(id="fac-1", name="Test ASC", timezone="America/New_York", case_number_prefix="TST"),
        rooms=[Room(id=f"or-{i}", name=f"OR {i}", display_order=i) for i in (1, 2, 3)],
        procedure_types=[
            ProcedureType(id="p-tha", name="THA", expected_duration_minutes=90),
            ProcedureType(id="p-tka", name="TKA"),
            ProcedureType(id="p-ctr", name="Carpal Tunnel Release"),
            ProcedureType(id="p-acdf", name="ACDF"),
        ],
        milestone_types=[
            MilestoneType(id=f"ms-{name}", name=name, display_order=i)
            for i, name in enumerate(MILESTONE_NAMES, start=1)
        ],
        payers=[LookupEntry(id="pay-1", name="Medicare"), LookupEntry(id="pay-2", name="Aetna")],
        statuses=StatusLookup(scheduled="st-sched", completed="st-done", cancelled="st-cancel"),
        cancellation_reasons=[LookupEntry(id="cr-1", name="Patient Request")],
        delay_types=[LookupEntry(id="dt-1", name="Equipment Issue")],
        complexities=[
            LookupEntry(id="cx-std", name="Standard"),
            LookupEntry(id="cx-cpx", name="Complex"),
            LookupEntry(id="cx-rev", name="Revision"),
        ],
        implant_companies=[LookupEntry(id="ic-stryker", name="Stryker")],
        flag_rules=[
            FlagRule(id="fr-1", name="Long case", metric="total_case_time", threshold=150),
        ],
        surgeons=[
            SurgeonRecord(id="s-joint", first_name="Dana", last_name="Berry", facility_id="fac-1"),
            SurgeonRecord(id="s-hand", first_name="Chidi", last_name="Okafor", facility_id="fac-1"),
            SurgeonRecord(id="s-spine", first_name="Ari", last_name="Lind", facility_id="fac-1"),
        ],
        staff=[
            *[StaffMember(id=f"rn-{i}", role="nurse") for i in range(1, 5)],
            *[StaffMember(id=f"st-{i}", role="tech") for i in range(1, 9)],
            StaffMember(id="md-1", role="anesthesiologist"),
            StaffMember(id="md-2", role="anesthesiologist"),
            StaffMember(id="crna-1", role="crna"),
        ],
    )


@pytest.fixture()
def joint_profile() -> SurgeonProfile:
    """Fast joint surgeon flipping between OR 1 and OR 2 on Mondays, OR 1 on Wednesdays."""
    return SurgeonProfile(
        surgeon_id="s-joint",
        speed_profile="fast",
        specialty="joint",
        operating_days=[1, 3],
        day_room_assignments={1: ["or-1", "or-2"], 3: ["or-1"]},
        preferred_vendor="Stryker",
    )


@pytest.fixture()
def hand_profile() -> SurgeonProfile:
    return SurgeonProfile(
        surgeon_id="s-hand",
        specialty="hand_wrist",
        operating_days=[1, 2],
        day_room_assignments={1: ["or-3"], 2: ["or-3"]},
    )


@pytest.fixture()
def generation_config(joint_profile: SurgeonProfile, hand_profile: SurgeonProfile) -> GenerationConfig:
    return GenerationConfig(
        facility_id="fac-1",
        months_of_history=2,
        months_ahead=1,
        random_seed=7,
        today=date(2025, 3, 3),
        batch_size=25,
        created_by_user_id="u-admin",
        surgeon_profiles=[joint_profile, hand_profile],
    )
