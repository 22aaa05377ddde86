"""
Rule-based product title normalizer.

clean_product_name() and explain_title_cleaning() share _run_rules(), so the
explanation's cleaned_title is always the production result.
"""

import json
import re
from pathlib import Path
from typing import Iterable, Optional

import structlog
from pydantic import BaseModel, ConfigDict, Field

from reviewsync.pipeline.title_rules import DEFAULT_EXCEPTIONS, DEFAULT_RULES

logger = structlog.get_logger(__name__)

_WHITESPACE_RE = re.compile(r"\s+")


class CleaningRule(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    pattern: str
    replacement: str = ""
    is_regex: bool = Field(default=False, alias="isRegex")

    def apply(self, text: str) -> str:
        if self.is_regex:
            return re.sub(self.pattern, self.replacement, text)
        return text.replace(self.pattern, self.replacement)


class CleaningException(BaseModel):
    """Titles that must skip specific rules, matched on the exact trimmed title."""
    model_config = ConfigDict(populate_by_name=True)

    product_name: str = Field(alias="productName")
    skip_rules: list[str] = Field(default_factory=list, alias="skipRules")


class RuleTrace(BaseModel):
    id: str
    pattern: str
    replacement: str
    status: str  # applied | skipped_by_exception
    changed: bool = False
    skipped_by: list[str] = Field(default_factory=list)


class CleaningExplanation(BaseModel):
    original_title: Optional[str]
    cleaned_title: Optional[str]
    matching_exceptions: list[str] = Field(default_factory=list)
    rules: list[RuleTrace] = Field(default_factory=list)

    @property
    def applied_rules(self) -> list[RuleTrace]:
        return [r for r in self.rules if r.status == "applied"]

    @property
    def skipped_rules(self) -> list[RuleTrace]:
        return [r for r in self.rules if r.status == "skipped_by_exception"]


class CleaningRuleSet:
    """Ordered, mutable rules plus exception overrides."""

    def __init__(
        self,
        rules: Iterable[CleaningRule] = (),
        exceptions: Iterable[CleaningException] = (),
    ):
        self.rules: list[CleaningRule] = list(rules)
        self.exceptions: list[CleaningException] = list(exceptions)

    def add_rule(self, rule: CleaningRule | dict) -> None:
        if isinstance(rule, dict):
            rule = CleaningRule.model_validate(rule)
        if any(r.id == rule.id for r in self.rules):
            raise ValueError(f"Duplicate cleaning rule id: {rule.id}")
        self.rules.append(rule)

    def add_exception(self, exception: CleaningException | dict) -> None:
        if isinstance(exception, dict):
            exception = CleaningException.model_validate(exception)
        self.exceptions.append(exception)

    def extended(
        self,
        extra_rules: Iterable[CleaningRule | dict] = (),
        extra_exceptions: Iterable[CleaningException | dict] = (),
    ) -> "CleaningRuleSet":
        """Copy of this set with additional rules and exceptions appended."""
        combined = CleaningRuleSet(self.rules, self.exceptions)
        for rule in extra_rules:
            combined.add_rule(rule)
        for exception in extra_exceptions:
            combined.add_exception(exception)
        return combined

    @classmethod
    def from_dict(cls, data: dict) -> "CleaningRuleSet":
        rules = data.get("generalRules")
        exceptions = data.get("exceptions")
        if not isinstance(rules, list):
            raise ValueError("Title cleaning rules must contain a generalRules array")
        if not isinstance(exceptions, list):
            raise ValueError("Title cleaning rules must contain an exceptions array")
        rule_set = cls()
        for rule in rules:
            rule_set.add_rule(rule)
        for exception in exceptions:
            rule_set.add_exception(exception)
        return rule_set

    @classmethod
    def from_file(cls, path: str | Path) -> "CleaningRuleSet":
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Title cleaning rules file not found: {path}")
        rule_set = cls.from_dict(json.loads(path.read_text(encoding="utf-8")))
        logger.info(
            "title_rules_loaded",
            path=str(path),
            rules=len(rule_set.rules),
            exceptions=len(rule_set.exceptions),
        )
        return rule_set

    @classmethod
    def default(cls) -> "CleaningRuleSet":
        return cls.from_dict({"generalRules": DEFAULT_RULES, "exceptions": DEFAULT_EXCEPTIONS})


def load_rule_set(path: Optional[str] = None) -> CleaningRuleSet:
    """Rules from `path` (or TITLE_RULES_FILE) when set, else the defaults."""
    if path is None:
        from reviewsync.config import settings
        path = settings.TITLE_RULES_FILE
    if path:
        return CleaningRuleSet.from_file(path)
    return CleaningRuleSet.default()


def _run_rules(title: str, rule_set: CleaningRuleSet) -> tuple[str, list[str], list[RuleTrace]]:
    matching = [e for e in rule_set.exceptions if e.product_name == title]
    skip_ids: dict[str, list[str]] = {}
    for exception in matching:
        for rule_id in exception.skip_rules:
            skip_ids.setdefault(rule_id, []).append(exception.product_name)

    cleaned = title
    trace: list[RuleTrace] = []
    for rule in rule_set.rules:
        if rule.id in skip_ids:
            trace.append(RuleTrace(
                id=rule.id,
                pattern=rule.pattern,
                replacement=rule.replacement,
                status="skipped_by_exception",
                skipped_by=skip_ids[rule.id],
            ))
            continue
        before = cleaned
        cleaned = rule.apply(cleaned)
        trace.append(RuleTrace(
            id=rule.id,
            pattern=rule.pattern,
            replacement=rule.replacement,
            status="applied",
            changed=cleaned != before,
        ))

    cleaned = _WHITESPACE_RE.sub(" ", cleaned).strip()
    return cleaned, [e.product_name for e in matching], trace


def clean_product_name(
    text: Optional[str],
    rules: Optional[CleaningRuleSet] = None,
    extra_rules: Iterable[CleaningRule | dict] = (),
    extra_exceptions: Iterable[CleaningException | dict] = (),
) -> Optional[str]:
    """
    Canonicalize a product title.

    Returns None for empty or whitespace-only input, so callers can tell
    "nothing to clean" apart from a title that cleaned down to a value.
    """
    if text is None:
        return None
    title = text.strip()
    if not title:
        return None
    rule_set = (rules or CleaningRuleSet.default()).extended(extra_rules, extra_exceptions)
    cleaned, _, _ = _run_rules(title, rule_set)
    return cleaned


def explain_title_cleaning(
    text: Optional[str],
    rules: Optional[CleaningRuleSet] = None,
    extra_rules: Iterable[CleaningRule | dict] = (),
    extra_exceptions: Iterable[CleaningException | dict] = (),
) -> CleaningExplanation:
    """Per-rule trace of clean_product_name for debugging a title."""
    if text is None or not text.strip():
        return CleaningExplanation(original_title=text, cleaned_title=None)
    rule_set = (rules or CleaningRuleSet.default()).extended(extra_rules, extra_exceptions)
    cleaned, matching, trace = _run_rules(text.strip(), rule_set)
    return CleaningExplanation(
        original_title=text,
        cleaned_title=cleaned,
        matching_exceptions=matching,
        rules=trace,
    )
