# dx_core/specimens/tests/test_quality.py
import pytest

from dx_core.catalog.source import default_catalog
from dx_core.specimens.quality import AcceptanceCriteriaAssessor, SpecimenObservation


@pytest.fixture
def assess():
    return AcceptanceCriteriaAssessor().assess


def _issues(finding):
    return {i["issue"]: i["severity"] for i in finding["issues"]}


def test_specimen_collected_as_required_is_acceptable(assess):
    glu = default_catalog().get("GLU")
    finding = assess(glu, SpecimenObservation.as_required(glu))
    assert finding == {"acceptable": True, "issues": [], "contamination_risk": "None", "integrity": "Intact"}


@pytest.mark.parametrize("volume,severity", [(1.5, "Major"), (0.5, "Critical")])
def test_insufficient_volume(assess, volume, severity):
    finding = assess(default_catalog().get("GLU"), SpecimenObservation(volume_ml=volume))
    assert finding["acceptable"] is False
    assert finding["integrity"] == "Compromised"
    assert _issues(finding) == {"InsufficientVolume": severity}


def test_hemolysis_rejects_chemistry_but_not_hematology(assess):
    catalog = default_catalog()
    moderate = SpecimenObservation(volume_ml=5.0, hemolysis="Moderate")

    chem = assess(catalog.get("K"), moderate)
    assert chem["acceptable"] is False
    assert _issues(chem) == {"Hemolysis": "Major"}

    heme = assess(catalog.get("HGB"), moderate)
    assert heme["acceptable"] is True
    assert _issues(heme) == {"Hemolysis": "Minor"}


def test_slight_hemolysis_is_a_minor_finding(assess):
    finding = assess(default_catalog().get("K"), SpecimenObservation(volume_ml=5.0, hemolysis="Slight"))
    assert finding["acceptable"] is True
    assert _issues(finding) == {"Hemolysis": "Minor"}


def test_clotting_and_contamination(assess):
    catalog = default_catalog()
    clotted = assess(catalog.get("HGB"), SpecimenObservation(volume_ml=3.0, clotted=True))
    assert _issues(clotted) == {"Clotting": "Major"}

    likely = assess(catalog.get("UA"), SpecimenObservation(volume_ml=10.0, contamination_risk="Likely"))
    assert likely["acceptable"] is False
    assert likely["contamination_risk"] == "Likely"

    possible = assess(catalog.get("UA"), SpecimenObservation(volume_ml=10.0, contamination_risk="Possible"))
    assert possible["acceptable"] is True


def test_mislabeled_specimen_is_critical(assess):
    finding = assess(default_catalog().get("GLU"), SpecimenObservation(volume_ml=5.0, label_matches=False))
    assert _issues(finding) == {"Mislabeled": "Critical"}
    assert finding["acceptable"] is False
