import json

import pytest

from spend_categorizer.classifiers.rules import Rule, RuleBook, RuleEngine, RuleTable, load_rule_table
from spend_categorizer.core import settings
from spend_categorizer.core.errors import ConfigurationError
from spend_categorizer.models import MatchSource


@pytest.fixture
def engine() -> RuleEngine:
    return RuleEngine(RuleBook(load_rule_table(settings.DEFAULT_RULES_PATH)), threshold=0.85)


def test_payroll_credit_matches_salary_rule(engine, make_tx):
    tx = make_tx("PAYROLL DEPOSIT ACME CORP", amount=2500.0)

    res = engine.apply_rules(tx)

    assert res is not None
    assert res.category_id == "salary"
    assert res.confidence == 0.95
    assert res.matched_from == MatchSource.RULE
    assert "payroll" in res.reasoning


def test_amount_sign_is_part_of_the_predicate(engine, make_tx):
    assert engine.apply_rules(make_tx("PAYROLL DEPOSIT ACME CORP", amount=-2500.0)) is None


def test_amount_range_is_part_of_the_predicate(engine, make_tx):
    assert engine.apply_rules(make_tx("NETFLIX.COM", amount=-16.99)).category_id == "entertainment"
    assert engine.apply_rules(make_tx("NETFLIX.COM", amount=-55.00)) is None


def test_rule_below_threshold_is_never_accepted(engine, make_tx):
    assert engine.apply_rules(make_tx("INTERAC E-TRANSFER TO JOHN", amount=-100.0)) is None


def test_rule_must_exceed_threshold(make_tx):
    table = load_rule_table(settings.DEFAULT_RULES_PATH)
    tx = make_tx("TORONTO HYDRO", amount=-120.0)

    assert RuleEngine(RuleBook(table), threshold=0.9).apply_rules(tx) is None
    assert RuleEngine(RuleBook(table), threshold=0.89).apply_rules(tx).category_id == "hydro"


def test_priority_then_id_decides_between_matching_rules(make_tx):
    table = RuleTable(rules=(
        Rule(id="b-late", category_id="shopping", confidence=0.9, priority=50, keywords=("amazon",)),
        Rule(id="z-early", category_id="entertainment", confidence=0.9, priority=10, keywords=("amazon",)),
        Rule(id="a-early", category_id="education", confidence=0.9, priority=10, keywords=("amazon",)),
    ))
    engine = RuleEngine(RuleBook(table))

    res = engine.apply_rules(make_tx("AMAZON MARKETPLACE"))

    assert res.category_id == "education"


def test_keywords_match_whole_words_only(make_tx):
    table = RuleTable(rules=(
        Rule(id="gas", category_id="gas", confidence=0.9, keywords=("gas",)),
    ))
    engine = RuleEngine(RuleBook(table))

    assert engine.apply_rules(make_tx("SHELL GAS STATION")).category_id == "gas"
    assert engine.apply_rules(make_tx("LAS VEGAS BUFFET")) is None


def test_merchant_condition_falls_back_to_description(make_tx):
    table = RuleTable(rules=(
        Rule(id="bakery", category_id="restaurants", confidence=0.95, merchant_contains=("bob s bakery",)),
    ))
    engine = RuleEngine(RuleBook(table))

    assert engine.apply_rules(make_tx("BOB'S BAKERY #12")).category_id == "restaurants"
    assert engine.apply_rules(make_tx("CARD PURCHASE", merchant_name="Bob's Bakery")).category_id == "restaurants"


def test_with_rule_returns_new_version():
    table = RuleTable(version=3)
    rule = Rule(id="r", category_id="gas", confidence=0.9, keywords=("esso",))

    updated = table.with_rule(rule)

    assert updated.version == 4
    assert updated.rules == (rule,)
    assert table.rules == ()


def test_rule_requires_a_condition():
    with pytest.raises(ValueError):
        Rule(id="empty", category_id="gas", confidence=0.9)


def test_rule_book_persists_promoted_rules(tmp_path, make_tx):
    path = tmp_path / "promoted.json"
    book = RuleBook(RuleTable(), promoted_path=str(path))
    book.promote(Rule(
        id="promoted-esso-gas",
        category_id="gas",
        confidence=0.95,
        merchant_contains=("esso",),
        source="promoted",
    ))

    reloaded = RuleBook(RuleTable(), promoted_path=str(path))

    assert [rule.id for rule in reloaded.snapshot().rules] == ["promoted-esso-gas"]
    assert RuleEngine(reloaded).apply_rules(make_tx("ESSO 4421")).category_id == "gas"


def test_malformed_rules_file_raises_configuration_error(tmp_path):
    path = tmp_path / "rules.json"
    path.write_text(json.dumps({"version": 1, "rules": [{"id": "broken"}]}))

    with pytest.raises(ConfigurationError):
        load_rule_table(str(path))


def test_promote_replaces_rule_for_same_merchant(make_tx):
    book = RuleBook(RuleTable())
    book.promote(Rule(
        id="promoted-esso-groceries",
        category_id="groceries",
        confidence=0.95,
        merchant_contains=("esso",),
        source="promoted",
    ))

    table = book.promote(Rule(
        id="promoted-esso-gas",
        category_id="gas",
        confidence=0.95,
        merchant_contains=("esso",),
        source="promoted",
    ))

    assert [rule.id for rule in table.promoted()] == ["promoted-esso-gas"]
    assert RuleEngine(book).apply_rules(make_tx("ESSO 4421")).category_id == "gas"


def test_without_unknown_rule_keeps_version():
    table = RuleTable(version=2)

    assert table.without(["missing"]) is table
