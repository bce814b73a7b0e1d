import json
from dataclasses import dataclass

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from rapidfuzz import fuzz, process

from spend_categorizer.core.errors import ConfigurationError
from spend_categorizer.domain.features import merchant_key
from spend_categorizer.domain.text import normalize_merchant
from spend_categorizer.logger import get_logger
from spend_categorizer.models import CategorizationResult, MatchSource, Transaction

from .base import ClassificationContext, Classifier

logger = get_logger(__name__)


class MerchantEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    pattern: str
    display: str | None = None
    confidence: float | None = Field(default=None, ge=0.0, le=1.0)
    category_id: str | None = None


class MerchantGroup(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    category_id: str
    confidence: float = Field(default=0.85, ge=0.0, le=1.0)
    entries: tuple[MerchantEntry, ...] = ()


class MerchantDictionary(BaseModel):
    model_config = ConfigDict(frozen=True)

    version: int = 1
    groups: tuple[MerchantGroup, ...] = ()


@dataclass(frozen=True)
class MerchantPattern:
    key: str
    display: str
    category_id: str
    confidence: float
    group: str
    order: int


def load_merchant_dictionary(path: str) -> MerchantDictionary:
    try:
        with open(path, encoding="utf-8") as f:
            dictionary = MerchantDictionary.model_validate(json.load(f))
    except (OSError, json.JSONDecodeError, ValidationError) as e:
        raise ConfigurationError(path, str(e)) from e
    logger.info(
        "[MERCHANTS] Loaded %s groups (v%s) from %s",
        len(dictionary.groups),
        dictionary.version,
        path,
    )
    return dictionary


def compile_patterns(dictionary: MerchantDictionary) -> list[MerchantPattern]:
    patterns: list[MerchantPattern] = []
    for group in dictionary.groups:
        for entry in group.entries:
            key = normalize_merchant(entry.pattern)
            if not key:
                logger.warning("[MERCHANTS] Skipping empty pattern in group '%s'", group.name)
                continue
            patterns.append(MerchantPattern(
                key=key,
                display=entry.display or entry.pattern,
                category_id=entry.category_id or group.category_id,
                confidence=entry.confidence if entry.confidence is not None else group.confidence,
                group=group.name,
                order=len(patterns),
            ))
    return patterns


class MerchantPatternMatcher(Classifier):
    name = "merchants"

    def __init__(
        self,
        dictionary: MerchantDictionary,
        threshold: float = 0.75,
        fuzzy_threshold: float = 92.0,
    ):
        self.dictionary = dictionary
        self.threshold = threshold
        self.fuzzy_threshold = fuzzy_threshold
        self.patterns = compile_patterns(dictionary)
        self._by_key: dict[str, MerchantPattern] = {}
        for pattern in self.patterns:
            self._by_key.setdefault(pattern.key, pattern)

    def find(self, name: str) -> tuple[MerchantPattern, float] | None:
        """
        Look up a normalized merchant name.

        Whole-word matches win over fuzzy ones; among whole-word matches the
        longest pattern wins, then a prefix match, then higher confidence,
        then dictionary order.
        """
        if not name:
            return None

        padded = f" {name} "
        candidates = [p for p in self.patterns if f" {p.key} " in padded]
        if candidates:
            best = min(
                candidates,
                key=lambda p: (
                    -len(p.key),
                    not padded.startswith(f" {p.key} "),
                    -p.confidence,
                    p.order,
                ),
            )
            return best, 100.0

        result = process.extractOne(
            name,
            self._by_key.keys(),
            scorer=fuzz.token_sort_ratio,
            score_cutoff=self.fuzzy_threshold,
        )
        if result:
            key, score, _ = result
            return self._by_key[key], float(score)
        return None

    def match_merchant(
        self, transaction: Transaction, context: ClassificationContext | None = None
    ) -> CategorizationResult | None:
        found = self.find(merchant_key(transaction))
        if found is None:
            return None

        pattern, score = found
        confidence = round(pattern.confidence * score / 100.0, 4)
        if confidence < self.threshold:
            logger.debug(
                "[MERCHANTS] '%s' matched %s at %.2f, below threshold %.2f",
                transaction.merchant_name or transaction.description,
                pattern.display,
                confidence,
                self.threshold,
            )
            return None
        if context is not None and not context.is_valid(pattern.category_id):
            return None

        how = "merchant" if score >= 100.0 else f"similar merchant ({score:.0f}%)"
        return CategorizationResult(
            transaction_id=transaction.id,
            category_id=pattern.category_id,
            confidence=confidence,
            reasoning=f"Matched {how} '{pattern.display}' in {pattern.group} list",
            matched_from=MatchSource.PATTERN,
        )

    def classify(
        self, transaction: Transaction, context: ClassificationContext
    ) -> CategorizationResult | None:
        return self.match_merchant(transaction, context)
