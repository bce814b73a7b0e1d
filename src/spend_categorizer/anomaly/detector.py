from collections import defaultdict
from datetime import date

from spend_categorizer.core.config import DetectionConfig
from spend_categorizer.domain.features import merchant_key
from spend_categorizer.logger import get_logger
from spend_categorizer.models import AnomalyAlert, AnomalyType, Severity, Transaction

from .aggregates import HistoricalAggregates, MerchantAggregate

logger = get_logger(__name__)


class AnomalyDetector:
    """
    Flags batch transactions that deviate from the historical baseline.

    Checks without enough history to compare against are skipped, so a
    missing baseline never produces an alert on its own.
    """

    def __init__(self, config: DetectionConfig | None = None):
        self.config = config or DetectionConfig()

    def amount_severity(self, z_score: float) -> Severity | None:
        medium, high, critical = self.config.severity_bands
        if z_score > critical:
            return Severity.CRITICAL
        if z_score > high:
            return Severity.HIGH
        if z_score > medium:
            return Severity.MEDIUM
        return None

    def detect_unusual_spending(
        self,
        transactions: list[Transaction],
        aggregates: HistoricalAggregates,
        today: date | None = None,
    ) -> list[AnomalyAlert]:
        today = today or date.today()
        alerts: list[AnomalyAlert] = []
        # Batch items processed so far, so later occurrences see earlier ones.
        day_counts: dict[tuple[str, str, date], int] = defaultdict(int)
        earlier: dict[tuple[str, str], list[Transaction]] = defaultdict(list)
        batch_locations: dict[str, set[str]] = defaultdict(set)

        for transaction in transactions:
            merchant = merchant_key(transaction)
            account = transaction.account_id

            amount_alert = self._check_amount(transaction, aggregates, today)
            if amount_alert:
                alerts.append(amount_alert)

            if merchant:
                history = aggregates.merchant(account, merchant)
                day_counts[(account, merchant, transaction.date)] += 1

                if history is not None:
                    seen_today = (
                        history.daily_counts.get(transaction.date, 0)
                        + day_counts[(account, merchant, transaction.date)]
                    )
                    if seen_today > self.config.frequency_limit:
                        alerts.append(self._alert(
                            transaction,
                            AnomalyType.FREQUENCY,
                            Severity.MEDIUM,
                            f"{seen_today} transactions at {transaction.merchant_name or merchant} "
                            f"on {transaction.date.isoformat()}",
                            "Check for repeated or unauthorized charges",
                            today,
                        ))

                if self._is_duplicate(transaction, earlier[(account, merchant)], history):
                    alerts.append(self._alert(
                        transaction,
                        AnomalyType.DUPLICATE,
                        Severity.HIGH,
                        f"Possible duplicate charge of {abs(transaction.amount):.2f} "
                        f"at {transaction.merchant_name or merchant}",
                        "Check if this is a duplicate charge",
                        today,
                    ))

                if history is None and not earlier[(account, merchant)]:
                    alerts.append(self._alert(
                        transaction,
                        AnomalyType.NEW_MERCHANT,
                        amount_alert.severity if amount_alert else Severity.LOW,
                        f"First transaction at {transaction.merchant_name or merchant}",
                        "Verify this is a legitimate transaction",
                        today,
                    ))
                earlier[(account, merchant)].append(transaction)

            location_alert = self._check_location(
                transaction, aggregates, batch_locations[account], today
            )
            if location_alert:
                alerts.append(location_alert)
            if transaction.location:
                batch_locations[account].add(transaction.location.casefold())

        alerts.sort(key=lambda alert: alert.severity.rank, reverse=True)
        if alerts:
            logger.info(
                "[ANOMALY] %s alerts over %s transactions",
                len(alerts),
                len(transactions),
            )
        return alerts

    def _check_amount(
        self, transaction: Transaction, aggregates: HistoricalAggregates, today: date
    ) -> AnomalyAlert | None:
        baseline = aggregates.category(transaction.assigned_category_id)
        if baseline is None or baseline.count < self.config.min_samples or baseline.stddev <= 0:
            return None
        z_score = abs(abs(transaction.amount) - baseline.mean) / baseline.stddev
        severity = self.amount_severity(z_score)
        if severity is None:
            return None
        kind = "expense" if transaction.is_debit else "income"
        return self._alert(
            transaction,
            AnomalyType.AMOUNT,
            severity,
            f"Unusual {kind} amount {abs(transaction.amount):.2f} for "
            f"{transaction.assigned_category_id} (usually {baseline.mean:.2f}, {z_score:.1f} std devs away)",
            "Please verify this transaction is correct",
            today,
        )

    def _is_duplicate(
        self,
        transaction: Transaction,
        earlier: list[Transaction],
        history: MerchantAggregate | None,
    ) -> bool:
        window = self.config.duplicate_window_days
        amount = round(transaction.amount, 2)
        for other in earlier:
            if round(other.amount, 2) == amount and abs((transaction.date - other.date).days) <= window:
                return True
        if history is None:
            return False
        return any(
            round(past_amount, 2) == amount and abs((transaction.date - past_date).days) <= window
            for past_date, past_amount in history.recent
        )

    def _check_location(
        self,
        transaction: Transaction,
        aggregates: HistoricalAggregates,
        batch_seen: set[str],
        today: date,
    ) -> AnomalyAlert | None:
        if not transaction.location:
            return None
        account = transaction.account_id
        if aggregates.located_counts.get(account, 0) < self.config.location_min_history:
            return None
        location = transaction.location.casefold()
        if location in aggregates.locations.get(account, frozenset()) or location in batch_seen:
            return None
        return self._alert(
            transaction,
            AnomalyType.LOCATION,
            Severity.MEDIUM,
            f"Transaction in {transaction.location}, where this account has not spent before",
            "Confirm you made this purchase",
            today,
        )

    @staticmethod
    def _alert(
        transaction: Transaction,
        kind: AnomalyType,
        severity: Severity,
        message: str,
        suggested_action: str,
        today: date,
    ) -> AnomalyAlert:
        return AnomalyAlert(
            id=f"{kind.value.lower()}_{transaction.id}",
            transaction_id=transaction.id,
            type=kind,
            severity=severity,
            message=message,
            suggested_action=suggested_action,
            detected_at=today,
        )
