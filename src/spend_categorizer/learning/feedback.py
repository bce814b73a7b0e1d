from __future__ import annotations

import json
import math
import threading
from collections import defaultdict
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, datetime

from pydantic import BaseModel, ValidationError as PydanticValidationError

from spend_categorizer.classifiers.rules import Rule, RuleBook
from spend_categorizer.core.config import LearnerConfig
from spend_categorizer.core.errors import ConfigurationError, ErrorCode, ValidationError
from spend_categorizer.domain.features import MerchantHistory, extract_features, merchant_key
from spend_categorizer.domain.text import slugify
from spend_categorizer.learning.weights import WeightStore, WeightTable
from spend_categorizer.logger import get_logger
from spend_categorizer.models import (
    CategorizationStatus,
    FeedbackRecord,
    MatchSource,
    Transaction,
)
from spend_categorizer.services.registry import CategoryRegistry
from spend_categorizer.services.store import TransactionStore

logger = get_logger(__name__)

# Seed examples are replayed as if they happened on a Tuesday.
SEED_DATE = date(2024, 6, 11)


@dataclass(frozen=True)
class FeedbackEvent:
    category_id: str
    features: tuple[str, ...]
    weight: float
    previous_category_id: str | None = None


def apply_feedback(table: WeightTable, event: FeedbackEvent, learning_rate: float) -> WeightTable:
    """
    Pure EMA update: (WeightTable, FeedbackEvent) -> WeightTable.

    Features of the corrected category move toward the feedback weight.
    When the correction replaces a different assignment, that category's
    weights for the same features decay toward zero.
    """
    weights = table.copy_weights()
    target = weights.setdefault(event.category_id, {})
    for feature in event.features:
        current = target.get(feature, 0.0)
        target[feature] = (1.0 - learning_rate) * current + learning_rate * event.weight

    previous = event.previous_category_id
    if previous and previous != event.category_id and previous in weights:
        decayed = weights[previous]
        for feature in event.features:
            if feature in decayed:
                decayed[feature] = (1.0 - learning_rate) * decayed[feature]
    return table.replace(weights)


def merge_category_weights(table: WeightTable, old_category_id: str, new_category_id: str) -> WeightTable:
    if old_category_id not in table.weights:
        return table
    weights = table.copy_weights()
    moved = weights.pop(old_category_id)
    target = weights.setdefault(new_category_id, {})
    for feature, value in moved.items():
        target[feature] = max(value, target.get(feature, 0.0))
    return table.replace(weights)


def promoted_rule_id(merchant: str, category_id: str) -> str:
    return f"promoted-{slugify(merchant)}-{category_id}"


class TrainingExample(BaseModel):
    description: str
    merchant_name: str | None = None
    amount: float
    category_id: str
    weight: float = 1.0

    def to_transaction(self, index: int) -> Transaction:
        return Transaction(
            id=f"seed-{index}",
            account_id="seed",
            amount=self.amount,
            description=self.description,
            merchant_name=self.merchant_name,
            date=SEED_DATE,
        )


def load_training_examples(path: str) -> list[TrainingExample]:
    try:
        with open(path, encoding="utf-8") as f:
            payload = json.load(f)
        return [TrainingExample.model_validate(item) for item in payload.get("examples", [])]
    except (OSError, json.JSONDecodeError, PydanticValidationError) as e:
        raise ConfigurationError(path, str(e)) from e


class FeedbackLearner:
    """
    Sole writer of the WeightTable and of promoted rules.

    All writes happen under one lock, so each feedback commits fully
    before the next one starts.
    """

    def __init__(
        self,
        store: TransactionStore,
        registry: CategoryRegistry,
        weights: WeightStore,
        rules: RuleBook,
        config: LearnerConfig | None = None,
        seed_examples: list[TrainingExample] | None = None,
    ):
        self.store = store
        self.registry = registry
        self.weights = weights
        self.rules = rules
        self.config = config or LearnerConfig()
        self.seed_examples = seed_examples or []
        self.records: list[FeedbackRecord] = []
        self._latest: dict[str, FeedbackRecord] = {}
        self._corrections: dict[tuple[str, str], set[str]] = defaultdict(set)
        self._lock = threading.Lock()

        if self.seed_examples and self.weights.snapshot().is_empty():
            self.retrain()

    def record_feedback(
        self,
        transaction_id: str,
        category_id: str,
        weight: float = 1.0,
        timestamp: datetime | None = None,
    ) -> FeedbackRecord:
        if not isinstance(weight, (int, float)) or math.isnan(weight) or not 0.0 <= weight <= 1.0:
            raise ValidationError(
                ErrorCode.WEIGHT_OUT_OF_RANGE, f"weight must be within [0, 1], got {weight!r}"
            )
        # Registry before learner, the same order category deletion takes.
        with self.registry.lock, self._lock:
            if not self.registry.exists(category_id):
                raise ValidationError(ErrorCode.UNKNOWN_CATEGORY, f"category '{category_id}' does not exist")
            transaction = self.store.get(transaction_id)
            if transaction is None:
                raise ValidationError(
                    ErrorCode.UNKNOWN_TRANSACTION, f"transaction '{transaction_id}' is not known"
                )

            latest = self._latest.get(transaction_id)
            if (
                latest is not None
                and latest.corrected_category_id == category_id
                and latest.weight == weight
                and transaction.status.is_user_state
            ):
                logger.debug("[FEEDBACK] Repeat feedback for %s ignored", transaction_id)
                return latest

            record = FeedbackRecord(
                transaction_id=transaction_id,
                corrected_category_id=category_id,
                weight=float(weight),
                timestamp=timestamp or datetime.now(),
            )
            previous = transaction.assigned_category_id
            history = MerchantHistory.from_transactions(self.store.all())
            event = FeedbackEvent(
                category_id=category_id,
                features=extract_features(transaction, history).keys(),
                weight=record.weight,
                previous_category_id=previous,
            )
            table = self.weights.commit(
                lambda current: apply_feedback(current, event, self.config.learning_rate)
            )

            if transaction.status.is_user_state:
                status = CategorizationStatus.USER_CORRECTED if previous != category_id else transaction.status
            else:
                status = (
                    CategorizationStatus.USER_CONFIRMED
                    if previous == category_id
                    else CategorizationStatus.USER_CORRECTED
                )
            self.store.update(transaction.model_copy(update={
                "assigned_category_id": category_id,
                "confidence": record.weight,
                "matched_from": MatchSource.USER,
                "status": status,
            }))
            self.records.append(record)
            self._latest[transaction_id] = record
            logger.info(
                "[FEEDBACK] %s -> %s (weight %.2f, %s); weights now v%s",
                transaction_id,
                category_id,
                record.weight,
                status.value,
                table.version,
            )
            self._track_promotion(transaction, category_id)
            return record

    def _track_promotion(self, transaction: Transaction, category_id: str) -> None:
        merchant = merchant_key(transaction)
        if not merchant:
            return
        for (key_merchant, key_category), tx_ids in list(self._corrections.items()):
            if key_merchant != merchant or key_category == category_id:
                continue
            tx_ids.discard(transaction.id)
            if len(tx_ids) < self.config.promotion_threshold:
                self._demote(merchant, key_category)

        tx_ids = self._corrections[(merchant, category_id)]
        tx_ids.add(transaction.id)
        if len(tx_ids) < self.config.promotion_threshold:
            return

        rule_id = promoted_rule_id(merchant, category_id)
        if any(rule.id == rule_id for rule in self.rules.snapshot().rules):
            return
        table = self.rules.promote(Rule(
            id=rule_id,
            category_id=category_id,
            confidence=self.config.promoted_confidence,
            priority=0,
            reasoning="Learned from your corrections for '{merchant}'",
            merchant_contains=(merchant,),
            source="promoted",
        ))
        for key in [key for key in self._corrections if key[0] == merchant and key[1] != category_id]:
            del self._corrections[key]
        logger.info(
            "[FEEDBACK] Promoted '%s' -> %s into rule table v%s after %s corrections",
            merchant,
            category_id,
            table.version,
            len(tx_ids),
        )

    def _demote(self, merchant: str, category_id: str) -> None:
        rule_id = promoted_rule_id(merchant, category_id)
        if not any(rule.id == rule_id for rule in self.rules.snapshot().rules):
            return
        table = self.rules.demote(rule_id)
        logger.info(
            "[FEEDBACK] Dropped promoted rule '%s' -> %s (rule table v%s)", merchant, category_id, table.version
        )

    def retrain(self) -> WeightTable:
        """Rebuild the weight table from seed examples and the latest feedback per transaction."""
        with self._lock:
            history = MerchantHistory.from_transactions(self.store.all())
            events: list[FeedbackEvent] = []
            for index, example in enumerate(self.seed_examples):
                if not self.registry.exists(example.category_id):
                    logger.warning("[FEEDBACK] Seed example for unknown category '%s'", example.category_id)
                    continue
                events.append(FeedbackEvent(
                    category_id=example.category_id,
                    features=extract_features(example.to_transaction(index)).keys(),
                    weight=example.weight,
                ))
            for record in self._latest.values():
                transaction = self.store.get(record.transaction_id)
                if transaction is None:
                    continue
                events.append(FeedbackEvent(
                    category_id=record.corrected_category_id,
                    features=extract_features(transaction, history).keys(),
                    weight=record.weight,
                ))
            table = self.weights.commit(lambda current: self.replay(current.replace({}), events))
            logger.info("[FEEDBACK] Retrained weights from %s events (v%s)", len(events), table.version)
            return table

    def replay(self, table: WeightTable, events: Iterable[FeedbackEvent]) -> WeightTable:
        for event in events:
            table = apply_feedback(table, event, self.config.learning_rate)
        return table

    def reassign_category(self, old_category_id: str, new_category_id: str) -> None:
        with self._lock:
            self.weights.commit(
                lambda current: merge_category_weights(current, old_category_id, new_category_id)
            )
            self.rules.retarget(old_category_id, new_category_id)
            for transaction_id, record in list(self._latest.items()):
                if record.corrected_category_id == old_category_id:
                    self._latest[transaction_id] = record.model_copy(
                        update={"corrected_category_id": new_category_id}
                    )
            for (merchant, category_id), tx_ids in list(self._corrections.items()):
                if category_id == old_category_id:
                    self._corrections[(merchant, new_category_id)] |= tx_ids
                    del self._corrections[(merchant, category_id)]

    def clear(self) -> None:
        with self._lock:
            self.weights.clear()
            self._corrections.clear()
        logger.info("[FEEDBACK] Learned weights cleared.")
