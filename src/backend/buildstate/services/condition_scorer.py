"""Property Condition Index (PCI) scoring.

The PCI summarizes how healthy a property looked at its latest inspection:
each structured finding is mapped to a score by severity and the scores are
averaged. No findings means nothing is wrong, so the index is 100.
"""

import math
from enum import Enum
from typing import Any, Iterable

SEVERITY_SCORES: dict[str, int] = {
    "LOW": 90,
    "MEDIUM": 70,
    "HIGH": 50,
    "CRITICAL": 20,
}

DEFAULT_SEVERITY_SCORE = 50
EMPTY_FINDINGS_SCORE = 100


def _severity_of(finding: Any) -> Any:
    if isinstance(finding, dict):
        return finding.get("severity")
    if hasattr(finding, "severity"):
        return finding.severity
    return finding


def severity_score(severity: Any) -> int:
    """Map a severity (enum, string or None) to its score."""
    if isinstance(severity, Enum):
        severity = severity.value
    if not isinstance(severity, str):
        return DEFAULT_SEVERITY_SCORE
    return SEVERITY_SCORES.get(severity.strip().upper(), DEFAULT_SEVERITY_SCORE)


def compute_pci(findings: Iterable[Any]) -> int:
    """Compute the condition index for a list of findings.

    Accepts Finding rows, dicts with a ``severity`` key, or bare severity
    values. Halves round up (72.5 -> 73).
    """
    scores = [severity_score(_severity_of(finding)) for finding in findings]
    if not scores:
        return EMPTY_FINDINGS_SCORE

    average = sum(scores) / len(scores)
    pci = math.floor(average + 0.5)
    return max(0, min(100, pci))
