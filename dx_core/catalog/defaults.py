# dx_core/catalog/defaults.py
"""
Default in-code test catalog.

Declaration order matters: `StaticCatalog.category_rank` breaks category ties
by the position of each category's first entry below.
"""
from __future__ import annotations

from decimal import Decimal

from dx_core.catalog.types import (
    AcceptanceCriteria,
    CriticalThreshold,
    DiagnosticTest,
    MedicationHold,
    NotificationChannel,
    NotificationProtocol,
    ReferenceRange,
    SpecimenRequirement,
    SpecimenType,
    TestCategory,
    ThresholdDirection,
)

# Resolved to the order's clinician when an escalation is planned.
ORDERING_CLINICIAN = "@ordering-clinician"

LAB_PROTOCOL = NotificationProtocol(
    primary_contact=ORDERING_CLINICIAN,
    backup_contact="on-call-physician",
    channel=NotificationChannel.PHONE,
    max_attempts=3,
    escalation_contact="lab-medical-director",
    escalation_procedure="Page the laboratory medical director and document read-back.",
)

CARDIAC_PROTOCOL = NotificationProtocol(
    primary_contact=ORDERING_CLINICIAN,
    backup_contact="cardiology-on-call",
    channel=NotificationChannel.PAGE,
    max_attempts=2,
    escalation_contact="rapid-response-team",
    escalation_procedure="Activate rapid response for suspected acute coronary syndrome.",
)


def _critical(protocol: NotificationProtocol = LAB_PROTOCOL, minutes: int = 30) -> tuple[CriticalThreshold, ...]:
    return (
        CriticalThreshold(direction=ThresholdDirection.LOW, protocol=protocol, timeframe_minutes=minutes),
        CriticalThreshold(direction=ThresholdDirection.HIGH, protocol=protocol, timeframe_minutes=minutes),
    )


SST = SpecimenRequirement(
    specimen_type=SpecimenType.BLOOD,
    container="SST (gold top)",
    volume_ml=5.0,
    transport_temperature="Room Temperature",
    special_handling=("Centrifuge within 2 hours",),
)

SST_FASTING = SpecimenRequirement(
    specimen_type=SpecimenType.BLOOD,
    container="SST (gold top)",
    volume_ml=5.0,
    fasting_required=True,
    fasting_hours=8,
    transport_temperature="Room Temperature",
    special_handling=("Centrifuge within 2 hours",),
)

EDTA = SpecimenRequirement(
    specimen_type=SpecimenType.BLOOD,
    container="EDTA (lavender top)",
    volume_ml=3.0,
    transport_temperature="Room Temperature",
    special_handling=("Invert 8-10 times",),
)

CITRATE = SpecimenRequirement(
    specimen_type=SpecimenType.BLOOD,
    container="Sodium citrate (light blue top)",
    volume_ml=2.7,
    transport_temperature="Room Temperature",
    special_handling=("Fill to line", "Test within 4 hours"),
)

CHEM_ACCEPT = AcceptanceCriteria(min_volume_ml=2.0)
HEME_ACCEPT = AcceptanceCriteria(min_volume_ml=1.0, reject_hemolysis=False)

CHEM_STEPS = ("Accession", "Centrifuge", "Analyze", "Verify")
HEME_STEPS = ("Accession", "Mix", "Analyze", "Smear Review", "Verify")


DEFAULT_TESTS: tuple[DiagnosticTest, ...] = (
    DiagnosticTest(
        code="GLU",
        name="Glucose, Fasting",
        cpt_code="82947",
        loinc_code="1558-6",
        category=TestCategory.CHEMISTRY,
        specimen=SST_FASTING,
        acceptance=CHEM_ACCEPT,
        reference_range=ReferenceRange(unit="mg/dL", lower=70, upper=99),
        turnaround_hours=4,
        critical_thresholds=_critical(),
        processing_steps=CHEM_STEPS,
        methodology="Hexokinase",
        delta_threshold_percent=50.0,
        unit_price=Decimal("12.00"),
        dietary_restrictions=("No food or caloric beverages; water permitted",),
    ),
    DiagnosticTest(
        code="K",
        name="Potassium",
        cpt_code="84132",
        loinc_code="2823-3",
        category=TestCategory.CHEMISTRY,
        specimen=SST,
        acceptance=CHEM_ACCEPT,
        reference_range=ReferenceRange(unit="mmol/L", lower=3.5, upper=5.1),
        turnaround_hours=4,
        critical_thresholds=_critical(minutes=15),
        processing_steps=CHEM_STEPS,
        methodology="Ion-Selective Electrode",
        delta_threshold_percent=20.0,
        related_tests=("CREAT",),
        unit_price=Decimal("10.00"),
    ),
    DiagnosticTest(
        code="NA",
        name="Sodium",
        cpt_code="84295",
        loinc_code="2951-2",
        category=TestCategory.CHEMISTRY,
        specimen=SST,
        acceptance=CHEM_ACCEPT,
        reference_range=ReferenceRange(unit="mmol/L", lower=136, upper=145),
        turnaround_hours=4,
        critical_thresholds=_critical(),
        processing_steps=CHEM_STEPS,
        methodology="Ion-Selective Electrode",
        delta_threshold_percent=10.0,
        unit_price=Decimal("10.00"),
    ),
    DiagnosticTest(
        code="BUN",
        name="Blood Urea Nitrogen",
        cpt_code="84520",
        loinc_code="3094-0",
        category=TestCategory.CHEMISTRY,
        specimen=SST,
        acceptance=CHEM_ACCEPT,
        reference_range=ReferenceRange(unit="mg/dL", lower=7, upper=20),
        processing_steps=CHEM_STEPS,
        methodology="Urease",
        delta_threshold_percent=50.0,
        related_tests=("CREAT",),
        unit_price=Decimal("9.00"),
    ),
    DiagnosticTest(
        code="CREAT",
        name="Creatinine",
        cpt_code="82565",
        loinc_code="2160-0",
        category=TestCategory.CHEMISTRY,
        specimen=SST,
        acceptance=CHEM_ACCEPT,
        reference_range=ReferenceRange(unit="mg/dL", lower=0.6, upper=1.3),
        critical_thresholds=_critical(),
        processing_steps=CHEM_STEPS,
        methodology="Enzymatic",
        delta_threshold_percent=30.0,
        related_tests=("BUN",),
        unit_price=Decimal("11.00"),
        medication_holds=(
            MedicationHold(
                medication="Metformin",
                hold_duration="48 hours after contrast",
                reason="Contrast nephropathy risk",
                resume_instructions="Resume once creatinine is stable",
            ),
        ),
    ),
    DiagnosticTest(
        code="LIPID",
        name="Lipid Panel",
        cpt_code="80061",
        loinc_code="57698-3",
        category=TestCategory.CHEMISTRY,
        specimen=SpecimenRequirement(
            specimen_type=SpecimenType.BLOOD,
            container="SST (gold top)",
            volume_ml=5.0,
            fasting_required=True,
        ),
        acceptance=CHEM_ACCEPT,
        reference_range=ReferenceRange(unit="mg/dL", lower=0, upper=200),
        processing_steps=CHEM_STEPS,
        methodology="Enzymatic colorimetric",
        unit_price=Decimal("25.00"),
        dietary_restrictions=("No alcohol for 24 hours",),
        activity_restrictions=("No strenuous exercise for 12 hours before collection",),
    ),
    DiagnosticTest(
        code="HGB",
        name="Hemoglobin",
        cpt_code="85018",
        loinc_code="718-7",
        category=TestCategory.HEMATOLOGY,
        specimen=EDTA,
        acceptance=HEME_ACCEPT,
        reference_range=ReferenceRange(unit="g/dL", lower=12.0, upper=17.5),
        turnaround_hours=2,
        critical_thresholds=_critical(),
        processing_steps=HEME_STEPS,
        methodology="Cyanide-free SLS",
        delta_threshold_percent=20.0,
        related_tests=("HCT",),
        unit_price=Decimal("8.00"),
    ),
    DiagnosticTest(
        code="HCT",
        name="Hematocrit",
        cpt_code="85014",
        loinc_code="4544-3",
        category=TestCategory.HEMATOLOGY,
        specimen=EDTA,
        acceptance=HEME_ACCEPT,
        reference_range=ReferenceRange(unit="%", lower=36, upper=50),
        turnaround_hours=2,
        processing_steps=HEME_STEPS,
        methodology="Calculated",
        delta_threshold_percent=20.0,
        related_tests=("HGB",),
        unit_price=Decimal("8.00"),
    ),
    DiagnosticTest(
        code="WBC",
        name="White Blood Cell Count",
        cpt_code="85048",
        loinc_code="6690-2",
        category=TestCategory.HEMATOLOGY,
        specimen=EDTA,
        acceptance=HEME_ACCEPT,
        reference_range=ReferenceRange(unit="10^3/uL", lower=4.5, upper=11.0),
        turnaround_hours=2,
        critical_thresholds=_critical(),
        processing_steps=HEME_STEPS,
        methodology="Impedance / flow cytometry",
        unit_price=Decimal("9.00"),
    ),
    DiagnosticTest(
        code="PLT",
        name="Platelet Count",
        cpt_code="85049",
        loinc_code="777-3",
        category=TestCategory.HEMATOLOGY,
        specimen=EDTA,
        acceptance=HEME_ACCEPT,
        reference_range=ReferenceRange(unit="10^3/uL", lower=150, upper=400),
        turnaround_hours=2,
        critical_thresholds=_critical(),
        processing_steps=HEME_STEPS,
        methodology="Impedance",
        unit_price=Decimal("9.00"),
    ),
    DiagnosticTest(
        code="INR",
        name="Prothrombin Time / INR",
        cpt_code="85610",
        loinc_code="6301-6",
        category=TestCategory.HEMATOLOGY,
        specimen=CITRATE,
        acceptance=AcceptanceCriteria(min_volume_ml=2.5),
        reference_range=ReferenceRange(unit="ratio", lower=0.8, upper=1.2),
        turnaround_hours=2,
        critical_thresholds=(
            CriticalThreshold(direction=ThresholdDirection.HIGH, protocol=LAB_PROTOCOL, timeframe_minutes=30),
        ),
        processing_steps=("Accession", "Centrifuge", "Clot Detection", "Verify"),
        methodology="Optical clot detection",
        unit_price=Decimal("14.00"),
    ),
    DiagnosticTest(
        code="TROP",
        name="Troponin I, High Sensitivity",
        cpt_code="84484",
        loinc_code="89579-7",
        category=TestCategory.CARDIOLOGY,
        specimen=SpecimenRequirement(
            specimen_type=SpecimenType.BLOOD,
            container="Lithium heparin (green top)",
            volume_ml=4.0,
            special_handling=("Process STAT",),
        ),
        acceptance=CHEM_ACCEPT,
        reference_range=ReferenceRange(unit="ng/mL", lower=0, upper=0.04),
        turnaround_hours=1,
        critical_thresholds=(
            CriticalThreshold(
                direction=ThresholdDirection.HIGH,
                protocol=CARDIAC_PROTOCOL,
                action_required="Evaluate for acute myocardial infarction",
                timeframe_minutes=15,
            ),
        ),
        processing_steps=CHEM_STEPS,
        methodology="Chemiluminescent immunoassay",
        delta_threshold_percent=20.0,
        unit_price=Decimal("35.00"),
    ),
    DiagnosticTest(
        code="BCX",
        name="Blood Culture",
        cpt_code="87040",
        loinc_code="600-7",
        category=TestCategory.MICROBIOLOGY,
        specimen=SpecimenRequirement(
            specimen_type=SpecimenType.BLOOD,
            container="Aerobic/anaerobic culture bottles",
            volume_ml=10.0,
            transport_temperature="Room Temperature",
            special_handling=("Draw before antibiotics", "Aseptic skin prep"),
        ),
        acceptance=AcceptanceCriteria(min_volume_ml=8.0, reject_hemolysis=False, max_contamination_risk="None"),
        reference_range=ReferenceRange(unit="", text="No growth"),
        turnaround_hours=120,
        processing_steps=("Accession", "Incubate", "Gram Stain", "Subculture", "Identify"),
        methodology="Continuous-monitoring blood culture",
        unit_price=Decimal("45.00"),
    ),
    DiagnosticTest(
        code="UA",
        name="Urinalysis",
        cpt_code="81003",
        loinc_code="24356-8",
        category=TestCategory.CHEMISTRY,
        specimen=SpecimenRequirement(
            specimen_type=SpecimenType.URINE,
            container="Sterile urine cup",
            volume_ml=10.0,
            transport_temperature="Refrigerated",
            special_handling=("Clean catch midstream",),
        ),
        acceptance=AcceptanceCriteria(min_volume_ml=5.0, reject_hemolysis=False, reject_clotting=False),
        reference_range=ReferenceRange(unit="", text="Negative"),
        processing_steps=("Accession", "Dipstick", "Microscopy", "Verify"),
        methodology="Automated dipstick",
        unit_price=Decimal("7.00"),
    ),
    DiagnosticTest(
        code="BRCA",
        name="BRCA1/BRCA2 Sequencing",
        cpt_code="81162",
        loinc_code="38531-6",
        category=TestCategory.MOLECULAR,
        specimen=SpecimenRequirement(
            specimen_type=SpecimenType.BLOOD,
            container="EDTA (lavender top)",
            volume_ml=4.0,
            transport_temperature="Refrigerated",
            transport_time_limit_minutes=2880,
        ),
        acceptance=AcceptanceCriteria(min_volume_ml=3.0, reject_hemolysis=False),
        reference_range=ReferenceRange(unit="", text="Negative"),
        turnaround_hours=336,
        processing_steps=("Accession", "Extract DNA", "Amplify", "Sequence", "Analyze Variants"),
        methodology="Next-generation sequencing",
        unit_price=Decimal("250.00"),
    ),
)
