import numpy as np

from spend_categorizer.domain.categories import UNCATEGORIZED
from spend_categorizer.domain.features import MerchantHistory, extract_features
from spend_categorizer.learning.weights import WeightTable
from spend_categorizer.logger import get_logger
from spend_categorizer.models import CategorizationResult, CategoryScore, MatchSource, Transaction

from .base import ClassificationContext, Classifier

logger = get_logger(__name__)


class StatisticalClassifier(Classifier):
    """
    Fallback tier: weighted sum of learned feature weights per category,
    normalized with a softmax over the candidate categories.

    Always returns a result. With nothing learned that applies to the
    transaction the answer is UNCATEGORIZED with confidence 0.
    """
    name = "statistical"

    def __init__(self, prior: float = 0.01, temperature: float = 0.1, alternatives: int = 3):
        self.prior = prior
        self.temperature = temperature
        self.alternatives = alternatives

    def score(
        self, transaction: Transaction, weights: WeightTable, history: MerchantHistory | None = None
    ) -> tuple[list[str], np.ndarray, bool]:
        features = extract_features(transaction, history).keys()
        candidates = weights.categories()
        scores = np.zeros(len(candidates))
        informed = False
        for index, category_id in enumerate(candidates):
            total = 0.0
            for feature in features:
                value = weights.get(category_id, feature)
                if value is None:
                    total += self.prior
                else:
                    total += value
                    informed = informed or value > 0.0
            scores[index] = total
        return candidates, scores, informed

    def classify(
        self, transaction: Transaction, context: ClassificationContext
    ) -> CategorizationResult:
        candidates, scores, informed = self.score(transaction, context.weights, context.history)
        if context.valid_categories is not None:
            keep = [i for i, category_id in enumerate(candidates) if context.is_valid(category_id)]
            candidates = [candidates[i] for i in keep]
            scores = scores[keep]

        if not candidates or not informed:
            return self.uncategorized(transaction)

        scaled = (scores - scores.max()) / self.temperature
        probabilities = np.exp(scaled)
        probabilities /= probabilities.sum()

        # Stable sort keeps ties in category id order.
        ranking = np.argsort(-probabilities, kind="stable")
        best = int(ranking[0])
        confidence = float(np.clip(probabilities[best], 0.0, 1.0))
        alternatives = [
            CategoryScore(
                category_id=candidates[int(i)],
                confidence=float(np.clip(probabilities[int(i)], 0.0, 1.0)),
            )
            for i in ranking[1:1 + self.alternatives]
        ]
        logger.debug(
            "[STATS] %s -> %s (%.2f) over %s candidates, table v%s",
            transaction.id,
            candidates[best],
            confidence,
            len(candidates),
            context.weights.version,
        )
        return CategorizationResult(
            transaction_id=transaction.id,
            category_id=candidates[best],
            confidence=round(confidence, 4),
            reasoning=(
                f"Learned spending pattern (score {scores[best]:.2f} "
                f"across {len(candidates)} categories)"
            ),
            matched_from=MatchSource.STATISTICAL,
            alternatives=alternatives,
        )

    def uncategorized(self, transaction: Transaction) -> CategorizationResult:
        return CategorizationResult(
            transaction_id=transaction.id,
            category_id=UNCATEGORIZED,
            confidence=0.0,
            reasoning="No learned pattern applies to this transaction",
            matched_from=MatchSource.STATISTICAL,
        )
