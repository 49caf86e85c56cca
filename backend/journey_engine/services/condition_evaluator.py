"""Donation-history predicates used by condition nodes. Pure, no I/O."""
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional
import logging

from journey_engine.services.clock import utcnow

logger = logging.getLogger(__name__)

PREDICATES = ("has_donated", "donation_amount_gt", "days_since_last_donation_gt")
VALUE_PREDICATES = ("donation_amount_gt", "days_since_last_donation_gt")


@dataclass(frozen=True)
class DonationAggregates:
    has_donated: bool = False
    last_donation_date: Optional[datetime] = None
    total_amount: float = 0.0
    donation_count: int = 0


def coerce_value(predicate: str, value: Any) -> Optional[float]:
    """Turn the builder's free-text condition value into a number. Raises ValueError if it is not one."""
    if predicate not in VALUE_PREDICATES:
        return None
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValueError(f"Predicate {predicate} requires a numeric value")
    if isinstance(value, bool):
        raise ValueError(f"Predicate {predicate} requires a numeric value, got {value!r}")
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ValueError(f"Predicate {predicate} requires a numeric value, got {value!r}")


def evaluate(predicate: str, value: Any, aggregates: DonationAggregates, now: Optional[datetime] = None) -> bool:
    """
    Evaluate a condition node predicate against a donor's aggregates.

    Missing data never raises: a donor with no last donation date does not
    satisfy days_since_last_donation_gt, whatever the threshold.
    """
    if predicate == "has_donated":
        return bool(aggregates.has_donated)

    if predicate == "donation_amount_gt":
        return aggregates.total_amount > coerce_value(predicate, value)

    if predicate == "days_since_last_donation_gt":
        if aggregates.last_donation_date is None:
            logger.debug("[CONDITION] No last donation date, days_since_last_donation_gt is false")
            return False
        now = now or utcnow()
        days = (now - aggregates.last_donation_date).days
        return days > coerce_value(predicate, value)

    raise ValueError(f"Unknown condition predicate: {predicate}")
