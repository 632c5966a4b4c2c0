"""Classification of inspection observations into follow-up priorities.

Two inputs are supported. Free text is the narrative a technician types into
the ``findings`` field, one observation per line; structured findings are the
itemized rows with a severity. Only observations that warrant a follow-up
job come out of either path.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable

from buildstate.models.job import JobPriority

HIGH_PRIORITY_KEYWORDS = (
    "critical",
    "urgent",
    "immediate",
    "safety hazard",
    "emergency",
    "severe",
    "dangerous",
)

_URGENT_MARKER = re.compile(r"^\[?urgent\b\]?\s*:?\s*", re.IGNORECASE)
_HIGH_MARKER = re.compile(r"^\[?high\b\]?\s*:?\s*", re.IGNORECASE)


@dataclass(frozen=True)
class ClassifiedFinding:
    """An observation that needs a follow-up job."""

    priority: JobPriority
    description: str

    def to_dict(self) -> dict[str, str]:
        return {"priority": self.priority.value, "description": self.description}


def _strip_marker(pattern: re.Pattern, line: str) -> str | None:
    match = pattern.match(line)
    if not match:
        return None
    remainder = line[match.end():].strip()
    return remainder or line


def classify_line(line: str) -> ClassifiedFinding | None:
    """Classify a single trimmed line, or return None if it is not flagged."""
    description = _strip_marker(_URGENT_MARKER, line)
    if description is not None:
        return ClassifiedFinding(JobPriority.URGENT, description)

    description = _strip_marker(_HIGH_MARKER, line)
    if description is not None:
        return ClassifiedFinding(JobPriority.HIGH, description)

    lowered = line.lower()
    if any(keyword in lowered for keyword in HIGH_PRIORITY_KEYWORDS):
        return ClassifiedFinding(JobPriority.HIGH, line)

    return None


def classify_findings_text(text: str | None) -> list[ClassifiedFinding]:
    """Classify free-text findings, keeping line order."""
    if not text:
        return []

    classified = []
    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not line:
            continue
        item = classify_line(line)
        if item is not None:
            classified.append(item)
    return classified


def _field(finding: Any, name: str) -> Any:
    if isinstance(finding, dict):
        return finding.get(name)
    return getattr(finding, name, None)


def classify_structured_findings(findings: Iterable[Any]) -> list[ClassifiedFinding]:
    """Classify itemized findings: CRITICAL becomes URGENT, HIGH stays HIGH."""
    classified = []
    for finding in findings:
        severity = _field(finding, "severity")
        if isinstance(severity, Enum):
            severity = severity.value
        severity = str(severity or "").upper()

        if severity == "CRITICAL":
            priority = JobPriority.URGENT
        elif severity == "HIGH":
            priority = JobPriority.HIGH
        else:
            continue

        system = _field(finding, "system") or "General"
        note = (_field(finding, "note") or "").strip()
        description = f"{system}: {note}" if note else str(system)
        classified.append(ClassifiedFinding(priority, description))
    return classified


def classify_observations(text: str | None, findings: Iterable[Any] = ()) -> list[ClassifiedFinding]:
    """Use the free-text narrative when present, else the structured findings."""
    if text and text.strip():
        return classify_findings_text(text)
    return classify_structured_findings(findings)
