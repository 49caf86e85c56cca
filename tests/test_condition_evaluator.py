from datetime import datetime

import pytest

from journey_engine.services.condition_evaluator import DonationAggregates, coerce_value, evaluate

NOW = datetime(2026, 3, 2, 9, 0, 0)


def donor(total=0.0, last=None):
    return DonationAggregates(
        has_donated=total > 0,
        last_donation_date=last,
        total_amount=total,
        donation_count=1 if total else 0,
    )


def test_has_donated():
    assert evaluate("has_donated", None, donor(total=500.0, last=datetime(2026, 1, 1))) is True
    assert evaluate("has_donated", None, donor()) is False


def test_donation_amount_gt_is_strict():
    aggregates = donor(total=1000.0, last=datetime(2026, 1, 1))
    assert evaluate("donation_amount_gt", 999, aggregates) is True
    assert evaluate("donation_amount_gt", 1000, aggregates) is False
    assert evaluate("donation_amount_gt", "500", aggregates) is True


def test_days_since_last_donation_gt():
    aggregates = donor(total=100.0, last=datetime(2025, 12, 1, 9, 0, 0))
    assert evaluate("days_since_last_donation_gt", 90, aggregates, now=NOW) is True
    assert evaluate("days_since_last_donation_gt", 91, aggregates, now=NOW) is False


def test_days_since_last_donation_without_any_donation_is_false():
    assert evaluate("days_since_last_donation_gt", 0, donor(), now=NOW) is False
    assert evaluate("days_since_last_donation_gt", 10000, donor(), now=NOW) is False


def test_unknown_predicate_raises():
    with pytest.raises(ValueError):
        evaluate("opened_email", None, donor())


@pytest.mark.parametrize("value", [None, "", "abc", True])
def test_value_predicates_need_a_number(value):
    with pytest.raises(ValueError):
        coerce_value("donation_amount_gt", value)


def test_has_donated_ignores_value():
    assert coerce_value("has_donated", "anything") is None
