import threading
from collections.abc import Iterable

from spend_categorizer.domain.categories import UNCATEGORIZED
from spend_categorizer.models import CategorizationResult, CategorizationStatus, Transaction


class TransactionStore:
    """In-process record of transactions handed over by the bank sync."""

    def __init__(self, transactions: Iterable[Transaction] | None = None):
        self._lock = threading.Lock()
        self._transactions: dict[str, Transaction] = {}
        if transactions:
            self.add_many(transactions)

    def add_many(self, transactions: Iterable[Transaction]) -> list[Transaction]:
        """
        Register transactions, keeping the categorization state of ones
        already known so a re-sync never drops user feedback.
        """
        registered: list[Transaction] = []
        with self._lock:
            for transaction in transactions:
                existing = self._transactions.get(transaction.id)
                if existing is not None and existing.assigned_category_id is not None:
                    transaction = transaction.model_copy(update={
                        "assigned_category_id": existing.assigned_category_id,
                        "confidence": existing.confidence,
                        "matched_from": existing.matched_from,
                        "status": existing.status,
                    })
                self._transactions[transaction.id] = transaction
                registered.append(transaction)
        return registered

    def get(self, transaction_id: str) -> Transaction | None:
        return self._transactions.get(transaction_id)

    def update(self, transaction: Transaction) -> None:
        with self._lock:
            self._transactions[transaction.id] = transaction

    def assign(self, result: CategorizationResult) -> Transaction | None:
        """Record an automatic result unless the user has already decided."""
        with self._lock:
            transaction = self._transactions.get(result.transaction_id)
            if transaction is None or transaction.status.is_user_state:
                return None
            uncategorized = result.category_id == UNCATEGORIZED and result.confidence == 0.0
            transaction = transaction.model_copy(update={
                "assigned_category_id": result.category_id,
                "confidence": result.confidence,
                "matched_from": result.matched_from,
                "status": (
                    CategorizationStatus.UNCATEGORIZED
                    if uncategorized
                    else CategorizationStatus.AUTO_CATEGORIZED
                ),
            })
            self._transactions[transaction.id] = transaction
            return transaction

    def all(self) -> list[Transaction]:
        return list(self._transactions.values())

    def by_category(self, category_id: str) -> list[Transaction]:
        return [t for t in self._transactions.values() if t.assigned_category_id == category_id]

    def reassign(self, old_category_id: str, new_category_id: str) -> int:
        with self._lock:
            moved = 0
            for transaction_id, transaction in self._transactions.items():
                if transaction.assigned_category_id == old_category_id:
                    self._transactions[transaction_id] = transaction.model_copy(
                        update={"assigned_category_id": new_category_id}
                    )
                    moved += 1
            return moved

    def __len__(self) -> int:
        return len(self._transactions)
