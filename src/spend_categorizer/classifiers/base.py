from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from spend_categorizer.domain.features import MerchantHistory
from spend_categorizer.learning.weights import WeightTable
from spend_categorizer.models import CategorizationResult, Transaction


@dataclass(frozen=True)
class ClassificationContext:
    """Consistent view of learned state shared by every item of a batch."""

    weights: WeightTable = field(default_factory=WeightTable)
    history: MerchantHistory = field(default_factory=MerchantHistory)
    valid_categories: frozenset[str] | None = None

    def is_valid(self, category_id: str) -> bool:
        return self.valid_categories is None or category_id in self.valid_categories


class Classifier(ABC):
    name: str = "classifier"

    @abstractmethod
    def classify(
        self, transaction: Transaction, context: ClassificationContext
    ) -> CategorizationResult | None:
        """Return a confident result, or None to defer to the next tier."""
        pass
