"""Rule-driven remediation recommendations.

Rules live in a versioned JSON asset::

    {"version": "2025.1",
     "rules": [{"id": "plumbing-leak-high",
                "if": {"system": "Plumbing", "severity": "HIGH", "noteContains": "leak"},
                "then": {"summary": "...", "estimatedHours": 4, ...}}]}

Every rule is evaluated against every finding; a finding can produce zero,
one or many recommendations. The rule set is validated when loaded, so a
condition-less rule only reaches production when it says ``allowCatchAll``.
"""

import copy
import json
import uuid
from functools import lru_cache
from pathlib import Path
from typing import Any, Iterable

import structlog
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from buildstate.core.config import settings
from buildstate.models.inspection import Inspection, Recommendation

logger = structlog.get_logger()


class RuleCondition(BaseModel):
    """Condition clause. Every present key must hold for a match."""

    model_config = ConfigDict(extra="forbid", frozen=True, populate_by_name=True)

    system: str | None = None
    severity: str | None = None
    note_contains: str | None = Field(default=None, alias="noteContains")

    @property
    def is_empty(self) -> bool:
        return self.system is None and self.severity is None and self.note_contains is None


class Rule(BaseModel):
    """A single recommendation rule."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    condition: RuleCondition = Field(default_factory=RuleCondition, alias="if")
    then: dict[str, Any]
    allow_catch_all: bool = Field(default=False, alias="allowCatchAll")

    @field_validator("then")
    @classmethod
    def require_summary(cls, v: dict[str, Any]) -> dict[str, Any]:
        if not str(v.get("summary") or "").strip():
            raise ValueError("rule template must define a summary")
        return v

    @model_validator(mode="after")
    def reject_accidental_catch_all(self) -> "Rule":
        if self.condition.is_empty and not self.allow_catch_all:
            raise ValueError(
                f"rule '{self.id}' has no conditions; set allowCatchAll to match every finding"
            )
        return self


class RuleSet(BaseModel):
    """Immutable, versioned collection of rules."""

    model_config = ConfigDict(frozen=True)

    version: str
    rules: tuple[Rule, ...] = ()

    @field_validator("version", mode="before")
    @classmethod
    def coerce_version(cls, v: Any) -> str:
        return str(v)

    @model_validator(mode="after")
    def unique_ids(self) -> "RuleSet":
        seen: set[str] = set()
        for rule in self.rules:
            if rule.id in seen:
                raise ValueError(f"duplicate rule id '{rule.id}'")
            seen.add(rule.id)
        return self


def load_rule_set(path: str | Path) -> RuleSet:
    """Read and validate a rule set file."""
    with open(path, encoding="utf-8") as fh:
        data = json.load(fh)
    rule_set = RuleSet.model_validate(data)
    logger.info("Recommendation rules loaded", path=str(path), version=rule_set.version, rules=len(rule_set.rules))
    return rule_set


@lru_cache
def get_rule_set() -> RuleSet:
    """Rule set configured for this process, loaded once."""
    return load_rule_set(settings.recommendation_rules_path)


def _field(finding: Any, name: str) -> Any:
    if isinstance(finding, dict):
        return finding.get(name)
    return getattr(finding, name, None)


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(getattr(value, "value", value)).strip().lower()


def rule_matches(rule: Rule, finding: Any) -> bool:
    """True when the finding satisfies every key of the rule's condition."""
    condition = rule.condition
    if condition.system is not None and _text(_field(finding, "system")) != condition.system.strip().lower():
        return False
    if condition.severity is not None and _text(_field(finding, "severity")) != condition.severity.strip().lower():
        return False
    if condition.note_contains is not None and condition.note_contains.lower() not in _text(_field(finding, "note")):
        return False
    return True


def apply_rules(findings: Iterable[Any], rule_set: RuleSet | None = None) -> list[dict[str, Any]]:
    """Match every finding against every rule.

    Returns one payload per match: a deep copy of the rule's template with
    ``findingId`` and ``ruleId`` stamped on.
    """
    rule_set = rule_set or get_rule_set()
    payloads = []
    for finding in findings:
        for rule in rule_set.rules:
            if not rule_matches(rule, finding):
                continue
            payload = copy.deepcopy(rule.then)
            payload["findingId"] = _field(finding, "id")
            payload["ruleId"] = rule.id
            payloads.append(payload)
    return payloads


def _number(value: Any) -> float | None:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def build_recommendation(payload: dict[str, Any], inspection: Inspection) -> Recommendation:
    """Turn a matched payload into a Recommendation row for the inspection."""
    days = payload.get("suggestedWithinDays")
    finding_id = payload["findingId"]
    return Recommendation(
        id=uuid.uuid4(),
        inspection_id=inspection.id,
        finding_id=finding_id if isinstance(finding_id, uuid.UUID) else uuid.UUID(str(finding_id)),
        property_id=inspection.property_id,
        rule_id=payload.get("ruleId"),
        summary=str(payload["summary"]),
        estimated_hours=_number(payload.get("estimatedHours")),
        estimated_cost_aed=_number(payload.get("estimatedCostAED")),
        priority=str(payload.get("priority") or "medium").lower(),
        suggested_within_days=int(days) if days is not None else None,
    )
