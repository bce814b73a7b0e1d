from __future__ import annotations

import math
from collections import defaultdict
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date

from spend_categorizer.domain.text import normalize_merchant, tokenize
from spend_categorizer.models import Transaction

MAX_AMOUNT_BUCKET = 16
RECURRING_MIN_OCCURRENCES = 2


@dataclass(frozen=True)
class MerchantHistory:
    """Dates on which each normalized merchant was seen, keyed by transaction id."""

    seen: dict[str, dict[str, date]] = field(default_factory=dict)

    @classmethod
    def from_transactions(cls, transactions: Iterable[Transaction]) -> MerchantHistory:
        seen: dict[str, dict[str, date]] = defaultdict(dict)
        for transaction in transactions:
            key = merchant_key(transaction)
            if key:
                seen[key][transaction.id] = transaction.date
        return cls(seen=dict(seen))

    def is_recurring(self, transaction: Transaction) -> bool:
        key = merchant_key(transaction)
        if not key:
            return False
        dates = {
            seen_date
            for tx_id, seen_date in self.seen.get(key, {}).items()
            if tx_id != transaction.id and seen_date != transaction.date
        }
        return len(dates) >= RECURRING_MIN_OCCURRENCES


@dataclass(frozen=True)
class FeatureVector:
    amount_bucket: int
    is_debit: bool
    day_of_week: int
    is_recurring: bool
    tokens: tuple[str, ...]

    def keys(self) -> tuple[str, ...]:
        """Flatten into the feature names used as WeightTable keys."""
        return (
            f"amount:{self.amount_bucket}",
            f"sign:{'debit' if self.is_debit else 'credit'}",
            f"dow:{self.day_of_week}",
            f"recurring:{int(self.is_recurring)}",
            *(f"token:{token}" for token in self.tokens),
        )


def merchant_key(transaction: Transaction) -> str:
    return normalize_merchant(transaction.merchant_name or transaction.description)


def amount_bucket(amount: float) -> int:
    return min(int(math.log2(1.0 + abs(amount))), MAX_AMOUNT_BUCKET)


def extract_features(
    transaction: Transaction, history: MerchantHistory | None = None
) -> FeatureVector:
    tokens = tokenize(transaction.description)
    for token in tokenize(transaction.merchant_name):
        if token not in tokens:
            tokens.append(token)
    return FeatureVector(
        amount_bucket=amount_bucket(transaction.amount),
        is_debit=transaction.is_debit,
        day_of_week=transaction.date.weekday(),
        is_recurring=history.is_recurring(transaction) if history else False,
        tokens=tuple(tokens),
    )
