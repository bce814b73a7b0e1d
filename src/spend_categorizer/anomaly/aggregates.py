from __future__ import annotations

import threading
from collections import Counter, defaultdict
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date

import numpy as np

from spend_categorizer.domain.categories import UNCATEGORIZED
from spend_categorizer.domain.features import merchant_key
from spend_categorizer.logger import get_logger
from spend_categorizer.models import Transaction

logger = get_logger(__name__)


@dataclass(frozen=True)
class CategoryAggregate:
    count: int
    mean: float
    stddev: float

    @classmethod
    def from_amounts(cls, amounts: list[float]) -> CategoryAggregate:
        values = np.abs(np.asarray(amounts, dtype=float))
        return cls(count=len(values), mean=float(values.mean()), stddev=float(values.std()))


@dataclass(frozen=True)
class MerchantAggregate:
    count: int
    first_seen: date
    last_seen: date
    daily_counts: dict[date, int] = field(default_factory=dict)
    # (date, amount) of the most recent charges, newest last.
    recent: tuple[tuple[date, float], ...] = ()


@dataclass(frozen=True)
class HistoricalAggregates:
    """
    Baseline the anomaly checks compare a batch against.

    Built in one pass from stored history and never mutated afterwards;
    a refresh produces a new instance.
    """

    categories: dict[str, CategoryAggregate] = field(default_factory=dict)
    merchants: dict[tuple[str, str], MerchantAggregate] = field(default_factory=dict)
    locations: dict[str, frozenset[str]] = field(default_factory=dict)
    located_counts: dict[str, int] = field(default_factory=dict)

    @classmethod
    def from_transactions(
        cls,
        transactions: Iterable[Transaction],
        exclude_ids: Iterable[str] = (),
        recent_kept: int = 50,
    ) -> HistoricalAggregates:
        excluded = set(exclude_ids)
        amounts: dict[str, list[float]] = defaultdict(list)
        merchant_rows: dict[tuple[str, str], list[Transaction]] = defaultdict(list)
        locations: dict[str, set[str]] = defaultdict(set)
        located_counts: Counter[str] = Counter()

        for transaction in transactions:
            if transaction.id in excluded:
                continue
            category_id = transaction.assigned_category_id
            if category_id and category_id != UNCATEGORIZED:
                amounts[category_id].append(transaction.amount)
            key = merchant_key(transaction)
            if key:
                merchant_rows[(transaction.account_id, key)].append(transaction)
            if transaction.location:
                locations[transaction.account_id].add(transaction.location.casefold())
                located_counts[transaction.account_id] += 1

        merchants: dict[tuple[str, str], MerchantAggregate] = {}
        for key, rows in merchant_rows.items():
            rows.sort(key=lambda t: t.date)
            merchants[key] = MerchantAggregate(
                count=len(rows),
                first_seen=rows[0].date,
                last_seen=rows[-1].date,
                daily_counts=dict(Counter(t.date for t in rows)),
                recent=tuple((t.date, t.amount) for t in rows[-recent_kept:]),
            )

        return cls(
            categories={
                category_id: CategoryAggregate.from_amounts(values)
                for category_id, values in amounts.items()
            },
            merchants=merchants,
            locations={account: frozenset(seen) for account, seen in locations.items()},
            located_counts=dict(located_counts),
        )

    def category(self, category_id: str | None) -> CategoryAggregate | None:
        if category_id is None:
            return None
        return self.categories.get(category_id)

    def merchant(self, account_id: str, merchant: str) -> MerchantAggregate | None:
        return self.merchants.get((account_id, merchant))


class AggregateTracker:
    """Current HistoricalAggregates, swapped once per detection batch."""

    def __init__(self, recent_kept: int = 50):
        self.recent_kept = recent_kept
        self._lock = threading.Lock()
        self._aggregates = HistoricalAggregates()

    def snapshot(self) -> HistoricalAggregates:
        return self._aggregates

    def refresh(
        self, history: Iterable[Transaction], exclude_ids: Iterable[str] = ()
    ) -> HistoricalAggregates:
        with self._lock:
            aggregates = HistoricalAggregates.from_transactions(
                history, exclude_ids, recent_kept=self.recent_kept
            )
            self._aggregates = aggregates
        logger.debug(
            "[ANOMALY] Aggregates refreshed: %s categories, %s merchants",
            len(aggregates.categories),
            len(aggregates.merchants),
        )
        return aggregates
