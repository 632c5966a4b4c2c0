"""Tests for the findings classifier."""

from buildstate.models.inspection import Finding, FindingSeverity
from buildstate.models.job import JobPriority
from buildstate.services.findings_classifier import (
    ClassifiedFinding,
    classify_findings_text,
    classify_line,
    classify_observations,
    classify_structured_findings,
)


class TestClassifyText:
    """Tests for free-text classification."""

    def test_urgent_marker(self):
        assert classify_line("URGENT: Gas leak detected") == ClassifiedFinding(
            JobPriority.URGENT, "Gas leak detected"
        )

    def test_unflagged_line_is_excluded(self):
        assert classify_line("Normal wear on carpet") is None

    def test_keyword_without_marker_is_high(self):
        assert classify_line("Immediate safety hazard in stairwell") == ClassifiedFinding(
            JobPriority.HIGH, "Immediate safety hazard in stairwell"
        )

    def test_bracketed_and_lowercase_markers(self):
        assert classify_line("[urgent] Water ingress at ceiling").priority == JobPriority.URGENT
        assert classify_line("[urgent] Water ingress at ceiling").description == "Water ingress at ceiling"
        assert classify_line("High: Loose handrail") == ClassifiedFinding(JobPriority.HIGH, "Loose handrail")
        assert classify_line("[HIGH]: Cracked tile") == ClassifiedFinding(JobPriority.HIGH, "Cracked tile")

    def test_marker_only_keeps_whole_line(self):
        assert classify_line("URGENT") == ClassifiedFinding(JobPriority.URGENT, "URGENT")
        assert classify_line("[HIGH]:") == ClassifiedFinding(JobPriority.HIGH, "[HIGH]:")

    def test_marker_needs_word_boundary(self):
        assert classify_line("Highway noise audible from bedroom") is None

    def test_multiline_keeps_order_and_skips_blank_lines(self):
        text = "\n".join(
            [
                "URGENT: Gas leak detected",
                "",
                "   Normal wear on carpet   ",
                "Severe corrosion on balcony railing",
                "HIGH: Smoke detector missing",
            ]
        )
        result = classify_findings_text(text)
        assert [item.to_dict() for item in result] == [
            {"priority": "urgent", "description": "Gas leak detected"},
            {"priority": "high", "description": "Severe corrosion on balcony railing"},
            {"priority": "high", "description": "Smoke detector missing"},
        ]

    def test_empty_text(self):
        assert classify_findings_text(None) == []
        assert classify_findings_text("") == []
        assert classify_findings_text("\n \n") == []


class TestClassifyStructured:
    """Tests for structured finding classification."""

    def test_severity_mapping(self):
        findings = [
            Finding(system="Electrical", severity=FindingSeverity.CRITICAL, note="Exposed wiring"),
            Finding(system="Plumbing", severity=FindingSeverity.HIGH, note=" Slow leak "),
            Finding(system="Paint", severity=FindingSeverity.LOW, note="Scuffs"),
            Finding(system="HVAC", severity=FindingSeverity.MEDIUM, note="Filter dirty"),
        ]
        assert classify_structured_findings(findings) == [
            ClassifiedFinding(JobPriority.URGENT, "Electrical: Exposed wiring"),
            ClassifiedFinding(JobPriority.HIGH, "Plumbing: Slow leak"),
        ]

    def test_dicts_and_missing_note(self):
        result = classify_structured_findings([{"system": "Roof", "severity": "high"}])
        assert result == [ClassifiedFinding(JobPriority.HIGH, "Roof")]


class TestClassifyObservations:
    """Text takes precedence over structured findings."""

    def test_text_wins_when_present(self):
        findings = [{"system": "Roof", "severity": "CRITICAL"}]
        result = classify_observations("URGENT: Gas leak detected", findings)
        assert result == [ClassifiedFinding(JobPriority.URGENT, "Gas leak detected")]

    def test_blank_text_falls_back_to_findings(self):
        findings = [{"system": "Roof", "severity": "CRITICAL", "note": "Membrane torn"}]
        result = classify_observations("   ", findings)
        assert result == [ClassifiedFinding(JobPriority.URGENT, "Roof: Membrane torn")]
