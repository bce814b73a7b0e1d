import os
import threading
from collections import Counter
from collections.abc import Iterable
from concurrent.futures import ThreadPoolExecutor
from datetime import date

from spend_categorizer.anomaly.aggregates import AggregateTracker
from spend_categorizer.anomaly.detector import AnomalyDetector
from spend_categorizer.classifiers.base import ClassificationContext, Classifier
from spend_categorizer.classifiers.merchants import MerchantPatternMatcher, load_merchant_dictionary
from spend_categorizer.classifiers.rules import RuleBook, RuleEngine, load_rule_table
from spend_categorizer.classifiers.statistical import StatisticalClassifier
from spend_categorizer.core import settings
from spend_categorizer.core.config import CategoryConfig, DetectionConfig, LearnerConfig, PipelineConfig
from spend_categorizer.domain.features import MerchantHistory
from spend_categorizer.learning.feedback import FeedbackLearner, load_training_examples
from spend_categorizer.learning.weights import WeightStore, WeightTable
from spend_categorizer.logger import get_logger
from spend_categorizer.models import (
    AnomalyAlert,
    CategorizationResult,
    CategorizationStats,
    CategorizationStatus,
    Category,
    CategorySuggestion,
    CategoryUsageStats,
    FeedbackRecord,
    MatchSource,
    Transaction,
)
from spend_categorizer.services.categories import CategoryManager
from spend_categorizer.services.registry import CategoryRegistry
from spend_categorizer.services.store import TransactionStore

logger = get_logger(__name__)


class CategorizerService:
    """
    Entry point for the categorization core.

    Wires the tiers in order (rules, merchant patterns, learned weights),
    the feedback loop, anomaly detection and category management over one
    shared transaction store.
    """

    def __init__(self,
                 data_dir: str | None = ".",
                 rules_path: str | None = None,
                 merchants_path: str | None = None,
                 training_path: str | None = None,
                 seed_training: bool = True,
                 pipeline_config: PipelineConfig | None = None,
                 learner_config: LearnerConfig | None = None,
                 detection_config: DetectionConfig | None = None,
                 category_config: CategoryConfig | None = None,
                 batch_workers: int | None = None):

        self.pipeline_config = pipeline_config or PipelineConfig.from_env()
        self.learner_config = learner_config or LearnerConfig.from_env()
        self.detection_config = detection_config or DetectionConfig.from_env()
        self.category_config = category_config or CategoryConfig.from_env()
        self.batch_workers = batch_workers or settings.BATCH_WORKERS

        self.store = TransactionStore()
        self.registry = CategoryRegistry()

        # Learned state is only persisted when a data directory is given.
        weights_path = os.path.join(data_dir, "weights.json") if data_dir else None
        promoted_path = os.path.join(data_dir, "promoted_rules.json") if data_dir else None
        self.weights = WeightStore(data_path=weights_path)
        self.rules = RuleBook(load_rule_table(rules_path or settings.RULES_PATH), promoted_path=promoted_path)

        seeds = load_training_examples(training_path or settings.TRAINING_PATH) if seed_training else []
        self.learner = FeedbackLearner(
            store=self.store,
            registry=self.registry,
            weights=self.weights,
            rules=self.rules,
            config=self.learner_config,
            seed_examples=seeds,
        )

        # 1. Deterministic rules (highest priority)
        self.rule_engine = RuleEngine(self.rules, threshold=self.pipeline_config.rule_confidence_threshold)
        # 2. Curated merchant dictionary
        self.merchants = MerchantPatternMatcher(
            load_merchant_dictionary(merchants_path or settings.MERCHANTS_PATH),
            threshold=self.pipeline_config.pattern_confidence_threshold,
            fuzzy_threshold=self.pipeline_config.fuzzy_match_threshold,
        )
        # 3. Learned weights (fallback, always answers)
        self.statistical = StatisticalClassifier(
            prior=self.pipeline_config.weight_prior,
            temperature=self.pipeline_config.softmax_temperature,
            alternatives=self.pipeline_config.alternatives,
        )
        self.classifiers: list[Classifier] = [self.rule_engine, self.merchants, self.statistical]

        self.aggregates = AggregateTracker(recent_kept=self.detection_config.recent_charges_kept)
        self.detector = AnomalyDetector(self.detection_config)
        self.categories = CategoryManager(self.registry, self.store, self.learner, self.category_config)

        self._stats_lock = threading.Lock()
        self._predictions = 0
        self._confidence_total = 0.0

        logger.info(
            "Categorizer ready: %s rules, %s merchant patterns, weights v%s",
            len(self.rules.snapshot().rules),
            len(self.merchants.patterns),
            self.weights.snapshot().version,
        )

    def register_transactions(self, transactions: Iterable[Transaction]) -> list[Transaction]:
        return self.store.add_many(transactions)

    def snapshot(self) -> ClassificationContext:
        """One consistent view of learned state for a whole batch."""
        return ClassificationContext(
            weights=self.weights.snapshot(),
            history=MerchantHistory.from_transactions(self.store.all()),
            valid_categories=self.registry.ids(),
        )

    def categorize(self, transaction: Transaction, context: ClassificationContext) -> CategorizationResult:
        """Run the tiers in order; pure over the transaction and the snapshot."""
        if transaction.status.is_user_state and transaction.assigned_category_id:
            return CategorizationResult(
                transaction_id=transaction.id,
                category_id=transaction.assigned_category_id,
                confidence=transaction.confidence,
                reasoning="Category set by you",
                matched_from=MatchSource.USER,
            )

        for classifier in self.classifiers:
            result = classifier.classify(transaction, context)
            if result:
                logger.debug(
                    f"{classifier.name} returned '{result.category_id}' for {transaction.id} "
                    f"(confidence: {result.confidence:.2f})"
                )
                return result
            logger.debug(f"{classifier.name} returned: None")

        return self.statistical.uncategorized(transaction)

    def _record(self, result: CategorizationResult) -> None:
        if result.matched_from == MatchSource.USER:
            return
        self.store.assign(result)
        with self._stats_lock:
            self._predictions += 1
            self._confidence_total += result.confidence

    def categorize_transaction(self, transaction: Transaction) -> CategorizationResult:
        (stored,) = self.store.add_many([transaction])
        result = self.categorize(stored, self.snapshot())
        self._record(result)
        return result

    def categorize_transactions(self, transactions: list[Transaction]) -> list[CategorizationResult]:
        stored = self.store.add_many(transactions)
        if not stored:
            return []
        context = self.snapshot()
        with ThreadPoolExecutor(max_workers=self.batch_workers) as pool:
            results = list(pool.map(lambda tx: self.categorize(tx, context), stored))
        for result in results:
            self._record(result)
        logger.info(
            "Categorized %s transactions against weights v%s",
            len(results),
            context.weights.version,
        )
        return results

    def provide_feedback(
        self, transaction_id: str, category_id: str, weight: float = 1.0
    ) -> FeedbackRecord:
        return self.learner.record_feedback(transaction_id, category_id, weight)

    def detect_unusual_spending(
        self, transactions: list[Transaction], today: date | None = None
    ) -> list[AnomalyAlert]:
        stored = self.store.add_many(transactions)
        pending = [tx for tx in stored if tx.assigned_category_id is None]
        if pending:
            self.categorize_transactions(pending)
        batch = [self.store.get(tx.id) or tx for tx in stored]

        # The refresh finishes before any check runs against this batch.
        aggregates = self.aggregates.refresh(self.store.all(), exclude_ids=[tx.id for tx in batch])
        return self.detector.detect_unusual_spending(batch, aggregates, today=today)

    def create_custom_category(
        self,
        name: str,
        parent_id: str | None = None,
        color: str | None = None,
        icon: str | None = None,
    ) -> Category:
        return self.categories.create_custom_category(name, parent_id=parent_id, color=color, icon=icon)

    def update_category(self, category_id: str, **changes) -> Category:
        return self.categories.update_category(category_id, **changes)

    def delete_category(self, category_id: str, reassign_to_id: str | None = None) -> Category:
        return self.categories.delete_category(category_id, reassign_to_id)

    def merge_categories(self, source_id: str, target_id: str) -> Category:
        return self.categories.merge_categories(source_id, target_id)

    def get_categories(self) -> list[Category]:
        return self.registry.all()

    def get_category_usage_stats(self) -> list[CategoryUsageStats]:
        return self.categories.get_category_usage_stats()

    def suggest_category_improvements(self) -> list[CategorySuggestion]:
        return self.categories.suggest_category_improvements()

    def get_categorization_stats(self) -> CategorizationStats:
        categorized = [
            tx for tx in self.store.all()
            if tx.status != CategorizationStatus.UNCATEGORIZED and tx.assigned_category_id
        ]
        confirmed = sum(1 for tx in categorized if tx.status == CategorizationStatus.USER_CONFIRMED)
        corrected = sum(1 for tx in categorized if tx.status == CategorizationStatus.USER_CORRECTED)
        reviewed = confirmed + corrected

        with self._stats_lock:
            predictions = self._predictions
            average = self._confidence_total / predictions if predictions else 0.0

        return CategorizationStats(
            total_transactions_categorized=predictions,
            average_confidence=round(average, 4),
            user_feedback_count=len(self.learner.records),
            accuracy_rate=round(confirmed / reviewed, 4) if reviewed else 0.0,
            category_distribution=dict(Counter(tx.assigned_category_id for tx in categorized)),
            source_distribution=dict(Counter(tx.matched_from.value for tx in categorized if tx.matched_from)),
            last_model_update=self.weights.snapshot().updated_at,
        )

    def retrain_models(self) -> WeightTable:
        return self.learner.retrain()

    def clear_models(self) -> None:
        """
        Clear all learned weights. Curated rules, promoted rules and the
        merchant dictionary are kept.
        """
        self.learner.clear()
        with self._stats_lock:
            self._predictions = 0
            self._confidence_total = 0.0
        logger.info("All models cleared.")
