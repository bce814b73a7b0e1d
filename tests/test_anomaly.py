from datetime import date

import pytest

from spend_categorizer.anomaly.aggregates import (
    AggregateTracker,
    CategoryAggregate,
    HistoricalAggregates,
)
from spend_categorizer.anomaly.detector import AnomalyDetector
from spend_categorizer.core.config import DetectionConfig
from spend_categorizer.models import AnomalyType, Severity

DAY = date(2024, 1, 14)


@pytest.fixture
def detector() -> AnomalyDetector:
    return AnomalyDetector(DetectionConfig())


@pytest.fixture
def dining_baseline() -> HistoricalAggregates:
    return HistoricalAggregates(
        categories={"restaurants": CategoryAggregate(count=20, mean=50.0, stddev=10.0)}
    )


def alerts_of(alerts, kind):
    return [alert for alert in alerts if alert.type == kind]


def test_large_amount_is_flagged(detector, dining_baseline, make_tx):
    tx = make_tx("KEG STEAKHOUSE", amount=-500.0, assigned_category_id="restaurants")

    amount_alerts = alerts_of(detector.detect_unusual_spending([tx], dining_baseline), AnomalyType.AMOUNT)

    assert len(amount_alerts) == 1
    assert amount_alerts[0].severity in {Severity.HIGH, Severity.CRITICAL}
    assert amount_alerts[0].transaction_id == tx.id


def test_amount_near_mean_is_not_flagged(detector, dining_baseline, make_tx):
    tx = make_tx("KEG STEAKHOUSE", amount=-55.0, assigned_category_id="restaurants")

    assert alerts_of(detector.detect_unusual_spending([tx], dining_baseline), AnomalyType.AMOUNT) == []


@pytest.mark.parametrize("amount, severity", [
    (-70.0, None),
    (-75.0, Severity.MEDIUM),
    (-90.0, Severity.HIGH),
    (-110.0, Severity.CRITICAL),
])
def test_severity_bands(detector, dining_baseline, make_tx, amount, severity):
    tx = make_tx("KEG STEAKHOUSE", amount=amount, assigned_category_id="restaurants")

    found = alerts_of(detector.detect_unusual_spending([tx], dining_baseline), AnomalyType.AMOUNT)

    assert [alert.severity for alert in found] == ([severity] if severity else [])


@pytest.mark.parametrize("baseline", [
    CategoryAggregate(count=2, mean=50.0, stddev=10.0),
    CategoryAggregate(count=20, mean=50.0, stddev=0.0),
])
def test_thin_baseline_suppresses_amount_check(detector, make_tx, baseline):
    aggregates = HistoricalAggregates(categories={"restaurants": baseline})
    tx = make_tx("KEG STEAKHOUSE", amount=-500.0, assigned_category_id="restaurants")

    assert alerts_of(detector.detect_unusual_spending([tx], aggregates), AnomalyType.AMOUNT) == []


def test_duplicate_in_batch_alerts_on_second_occurrence(detector, make_tx):
    first = make_tx("LOBLAWS", amount=-42.0, merchant_name="Loblaws", on=DAY)
    second = make_tx("LOBLAWS", amount=-42.0, merchant_name="Loblaws", on=DAY)

    duplicates = alerts_of(
        detector.detect_unusual_spending([first, second], HistoricalAggregates()), AnomalyType.DUPLICATE
    )

    assert len(duplicates) == 1
    assert duplicates[0].transaction_id == second.id
    assert duplicates[0].severity == Severity.HIGH


def test_duplicate_of_stored_charge(detector, make_tx):
    history = [make_tx("LOBLAWS", amount=-42.0, merchant_name="Loblaws", on=DAY)]
    aggregates = HistoricalAggregates.from_transactions(history)
    tx = make_tx("LOBLAWS", amount=-42.0, merchant_name="Loblaws", on=DAY)

    duplicates = alerts_of(detector.detect_unusual_spending([tx], aggregates), AnomalyType.DUPLICATE)

    assert [alert.transaction_id for alert in duplicates] == [tx.id]


def test_different_day_is_not_a_duplicate(detector, make_tx):
    first = make_tx("LOBLAWS", amount=-42.0, merchant_name="Loblaws", on=DAY)
    second = make_tx("LOBLAWS", amount=-42.0, merchant_name="Loblaws", on=date(2024, 1, 15))

    alerts = detector.detect_unusual_spending([first, second], HistoricalAggregates())

    assert alerts_of(alerts, AnomalyType.DUPLICATE) == []


def test_frequency_counts_history_and_batch(detector, make_tx):
    history = [
        make_tx("STARBUCKS", amount=-5.0 - i, merchant_name="Starbucks", on=DAY) for i in range(2)
    ]
    aggregates = HistoricalAggregates.from_transactions(history)
    batch = [make_tx("STARBUCKS", amount=-9.0 - i, merchant_name="Starbucks", on=DAY) for i in range(2)]

    frequency = alerts_of(detector.detect_unusual_spending(batch, aggregates), AnomalyType.FREQUENCY)

    assert [alert.transaction_id for alert in frequency] == [batch[1].id]
    assert frequency[0].severity == Severity.MEDIUM


def test_frequency_needs_merchant_history(detector, make_tx):
    batch = [make_tx("STARBUCKS", amount=-5.0 - i, merchant_name="Starbucks", on=DAY) for i in range(5)]

    alerts = detector.detect_unusual_spending(batch, HistoricalAggregates())

    assert alerts_of(alerts, AnomalyType.FREQUENCY) == []


def test_new_merchant_is_low_severity(detector, make_tx):
    history = [make_tx("LOBLAWS", amount=-30.0, merchant_name="Loblaws", on=date(2024, 1, 2))]
    aggregates = HistoricalAggregates.from_transactions(history)
    known = make_tx("LOBLAWS", amount=-35.0, merchant_name="Loblaws", on=DAY)
    fresh = make_tx("FARM BOY", amount=-20.0, merchant_name="Farm Boy", on=DAY)

    new_merchants = alerts_of(
        detector.detect_unusual_spending([known, fresh], aggregates), AnomalyType.NEW_MERCHANT
    )

    assert [alert.transaction_id for alert in new_merchants] == [fresh.id]
    assert new_merchants[0].severity == Severity.LOW


def test_new_merchant_takes_amount_severity(detector, dining_baseline, make_tx):
    tx = make_tx("KEG STEAKHOUSE", amount=-500.0, merchant_name="The Keg", assigned_category_id="restaurants")

    alerts = detector.detect_unusual_spending([tx], dining_baseline)

    assert alerts_of(alerts, AnomalyType.NEW_MERCHANT)[0].severity == Severity.CRITICAL


def test_merchant_is_new_per_account(detector, make_tx):
    history = [make_tx("LOBLAWS", merchant_name="Loblaws", account_id="visa", on=date(2024, 1, 2))]
    aggregates = HistoricalAggregates.from_transactions(history)
    tx = make_tx("LOBLAWS", merchant_name="Loblaws", account_id="chequing", on=DAY)

    assert len(alerts_of(detector.detect_unusual_spending([tx], aggregates), AnomalyType.NEW_MERCHANT)) == 1


def test_unseen_location_needs_enough_history(detector, make_tx):
    history = [
        make_tx("LOBLAWS", merchant_name="Loblaws", location="Toronto", on=date(2024, 1, d))
        for d in range(1, 6)
    ]
    tx = make_tx("LOBLAWS", merchant_name="Loblaws", location="Lisbon", on=DAY)

    enough = detector.detect_unusual_spending([tx], HistoricalAggregates.from_transactions(history))
    thin = detector.detect_unusual_spending([tx], HistoricalAggregates.from_transactions(history[:4]))

    assert [alert.severity for alert in alerts_of(enough, AnomalyType.LOCATION)] == [Severity.MEDIUM]
    assert alerts_of(thin, AnomalyType.LOCATION) == []


def test_alerts_sorted_by_severity(detector, dining_baseline, make_tx):
    batch = [
        make_tx("FARM BOY", amount=-20.0, merchant_name="Farm Boy", on=DAY),
        make_tx("LOBLAWS", amount=-42.0, merchant_name="Loblaws", on=DAY),
        make_tx("LOBLAWS", amount=-42.0, merchant_name="Loblaws", on=DAY),
        make_tx("KEG", amount=-90.0, merchant_name="The Keg", assigned_category_id="restaurants", on=DAY),
    ]

    alerts = detector.detect_unusual_spending(batch, dining_baseline)
    ranks = [alert.severity.rank for alert in alerts]

    assert ranks == sorted(ranks, reverse=True)
    assert alerts[0].severity == Severity.HIGH


def test_aggregates_exclude_batch_ids(make_tx):
    rows = [
        make_tx("A", amount=-40.0, assigned_category_id="groceries", id="h1"),
        make_tx("B", amount=-60.0, assigned_category_id="groceries", id="h2"),
        make_tx("C", amount=-900.0, assigned_category_id="groceries", id="batch"),
    ]

    aggregates = HistoricalAggregates.from_transactions(rows, exclude_ids=["batch"])

    baseline = aggregates.category("groceries")
    assert baseline.count == 2
    assert baseline.mean == pytest.approx(50.0)
    assert baseline.stddev == pytest.approx(10.0)


def test_tracker_swaps_in_fresh_aggregates(make_tx):
    tracker = AggregateTracker()
    before = tracker.snapshot()

    after = tracker.refresh([make_tx("LOBLAWS", merchant_name="Loblaws")])

    assert tracker.snapshot() is after
    assert before.merchants == {}
    assert after.merchant("chequing", "loblaws").count == 1
