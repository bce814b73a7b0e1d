import asyncio
from datetime import date

from spend_categorizer.logger import get_logger
from spend_categorizer.manager import CategorizerService
from spend_categorizer.models import (
    AnomalyAlert,
    CategorizationResult,
    FeedbackRecord,
    Transaction,
)

logger = get_logger(__name__)


class CategorizationPipeline:
    """Async front for the service; CPU-bound work runs in worker threads."""

    def __init__(self, service: CategorizerService) -> None:
        self.service = service

    async def predict(self, transaction: Transaction) -> CategorizationResult:
        return await asyncio.to_thread(self.service.categorize_transaction, transaction)

    async def predict_many(self, transactions: list[Transaction]) -> list[CategorizationResult]:
        logger.debug("[PREDICT] Batch of %s transactions", len(transactions))
        return await asyncio.to_thread(self.service.categorize_transactions, transactions)

    async def feedback(
        self, transaction_id: str, category_id: str, weight: float = 1.0
    ) -> FeedbackRecord:
        return await asyncio.to_thread(
            self.service.provide_feedback,
            transaction_id,
            category_id,
            weight,
        )

    async def detect(
        self, transactions: list[Transaction], today: date | None = None
    ) -> list[AnomalyAlert]:
        return await asyncio.to_thread(
            self.service.detect_unusual_spending,
            transactions,
            today,
        )
