import json
import os
import threading
from collections.abc import Iterable
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from spend_categorizer.core.errors import ConfigurationError
from spend_categorizer.domain.features import merchant_key
from spend_categorizer.domain.text import contains_phrase, normalize_merchant
from spend_categorizer.logger import get_logger
from spend_categorizer.models import CategorizationResult, MatchSource, Transaction

from .base import ClassificationContext, Classifier

logger = get_logger(__name__)


class Rule(BaseModel):
    """
    A deterministic predicate over transaction features.

    Populated conditions are AND-ed; within `keywords` and `merchant_contains`
    any single phrase is enough.
    """
    model_config = ConfigDict(frozen=True)

    id: str
    category_id: str
    confidence: float = Field(ge=0.0, le=1.0)
    priority: int = 100
    reasoning: str = "Matched rule '{rule}'"
    keywords: tuple[str, ...] = ()
    merchant_contains: tuple[str, ...] = ()
    amount_sign: Literal["debit", "credit"] | None = None
    min_amount: float | None = Field(default=None, ge=0.0)
    max_amount: float | None = Field(default=None, ge=0.0)
    source: Literal["curated", "promoted"] = "curated"

    @model_validator(mode="after")
    def _has_condition(self) -> "Rule":
        if not (self.keywords or self.merchant_contains):
            raise ValueError(f"rule '{self.id}' needs keywords or merchant_contains")
        if (
            self.min_amount is not None
            and self.max_amount is not None
            and self.min_amount > self.max_amount
        ):
            raise ValueError(f"rule '{self.id}' has min_amount above max_amount")
        return self

    def match(self, description: str, merchant: str, amount: float) -> str | None:
        """Return the phrase that satisfied the rule, or None."""
        if self.amount_sign == "debit" and amount >= 0:
            return None
        if self.amount_sign == "credit" and amount < 0:
            return None
        magnitude = abs(amount)
        if self.min_amount is not None and magnitude < self.min_amount:
            return None
        if self.max_amount is not None and magnitude > self.max_amount:
            return None

        matched: str | None = None
        if self.keywords:
            matched = next(
                (kw for kw in self.keywords if contains_phrase(description, normalize_merchant(kw))),
                None,
            )
            if matched is None:
                return None
        if self.merchant_contains:
            merchant_hit = next(
                (m for m in self.merchant_contains if contains_phrase(merchant, normalize_merchant(m))),
                None,
            )
            if merchant_hit is None:
                return None
            matched = matched or merchant_hit
        return matched

    def explain(self, matched: str) -> str:
        return self.reasoning.format(rule=self.id, keyword=matched, merchant=matched)


class RuleTable(BaseModel):
    model_config = ConfigDict(frozen=True)

    version: int = 1
    rules: tuple[Rule, ...] = ()

    def ordered(self) -> list[Rule]:
        return sorted(self.rules, key=lambda rule: (rule.priority, rule.id))

    def with_rule(self, rule: Rule) -> "RuleTable":
        kept = tuple(existing for existing in self.rules if existing.id != rule.id)
        return RuleTable(version=self.version + 1, rules=kept + (rule,))

    def without(self, rule_ids: Iterable[str]) -> "RuleTable":
        dropped = set(rule_ids)
        if not any(rule.id in dropped for rule in self.rules):
            return self
        kept = tuple(rule for rule in self.rules if rule.id not in dropped)
        return RuleTable(version=self.version + 1, rules=kept)

    def retarget(self, old_category_id: str, new_category_id: str) -> "RuleTable":
        if not any(rule.category_id == old_category_id for rule in self.rules):
            return self
        rules = tuple(
            rule.model_copy(update={"category_id": new_category_id})
            if rule.category_id == old_category_id
            else rule
            for rule in self.rules
        )
        return RuleTable(version=self.version + 1, rules=rules)

    def promoted(self) -> list[Rule]:
        return [rule for rule in self.rules if rule.source == "promoted"]


def load_rule_table(path: str) -> RuleTable:
    try:
        with open(path, encoding="utf-8") as f:
            table = RuleTable.model_validate(json.load(f))
    except (OSError, json.JSONDecodeError, ValidationError) as e:
        raise ConfigurationError(path, str(e)) from e
    logger.info("[RULES] Loaded %s rules (v%s) from %s", len(table.rules), table.version, path)
    return table


class RuleBook:
    """
    Current rule table plus the promoted rules learned from feedback.

    Promoted rules are persisted separately so the curated file stays
    read-only data.
    """

    def __init__(self, table: RuleTable, promoted_path: str | None = None):
        self.promoted_path = promoted_path
        self._lock = threading.Lock()
        self._table = table
        self._load_promoted()

    def snapshot(self) -> RuleTable:
        return self._table

    def promote(self, rule: Rule) -> RuleTable:
        """
        Add a promoted rule, dropping promoted rules for the same merchant
        that point at another category.
        """
        with self._lock:
            stale = [
                existing.id
                for existing in self._table.promoted()
                if existing.merchant_contains == rule.merchant_contains and existing.id != rule.id
            ]
            self._table = self._table.without(stale).with_rule(rule)
            self._save_promoted()
            return self._table

    def demote(self, rule_id: str) -> RuleTable:
        with self._lock:
            self._table = self._table.without([rule_id])
            self._save_promoted()
            return self._table

    def retarget(self, old_category_id: str, new_category_id: str) -> RuleTable:
        with self._lock:
            self._table = self._table.retarget(old_category_id, new_category_id)
            self._save_promoted()
            return self._table

    def _load_promoted(self) -> None:
        if not self.promoted_path or not os.path.exists(self.promoted_path):
            return
        try:
            with open(self.promoted_path, encoding="utf-8") as f:
                promoted = [Rule.model_validate(item) for item in json.load(f)]
        except (json.JSONDecodeError, ValidationError) as e:
            logger.warning("[RULES] Ignoring unreadable %s: %s", self.promoted_path, e)
            return
        for rule in promoted:
            self._table = self._table.with_rule(rule)
        logger.info("[RULES] Restored %s promoted rules", len(promoted))

    def _save_promoted(self) -> None:
        if not self.promoted_path:
            return
        with open(self.promoted_path, "w", encoding="utf-8") as f:
            json.dump([rule.model_dump(mode="json") for rule in self._table.promoted()], f, indent=2)


class RuleEngine(Classifier):
    name = "rules"

    def __init__(self, book: RuleBook, threshold: float = 0.85):
        self.book = book
        self.threshold = threshold

    def apply_rules(
        self, transaction: Transaction, context: ClassificationContext | None = None
    ) -> CategorizationResult | None:
        description = normalize_merchant(transaction.description)
        merchant = merchant_key(transaction)

        hits: list[tuple[Rule, str]] = []
        for rule in self.book.snapshot().ordered():
            if rule.confidence <= self.threshold:
                continue
            if context is not None and not context.is_valid(rule.category_id):
                continue
            matched = rule.match(description, merchant, transaction.amount)
            if matched is not None:
                hits.append((rule, matched))

        if not hits:
            return None

        rule, matched = hits[0]
        if len(hits) > 1:
            logger.debug(
                "[RULES] Ambiguous match for transaction %s: %s; using '%s' by priority.",
                transaction.id,
                [candidate.id for candidate, _ in hits],
                rule.id,
            )
        return CategorizationResult(
            transaction_id=transaction.id,
            category_id=rule.category_id,
            confidence=rule.confidence,
            reasoning=rule.explain(matched),
            matched_from=MatchSource.RULE,
        )

    def classify(
        self, transaction: Transaction, context: ClassificationContext
    ) -> CategorizationResult | None:
        return self.apply_rules(transaction, context)
