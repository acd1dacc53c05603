"""
Team-level score aggregation for DevPulse.
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable

from devpulse.schemas import SCORE_FIELDS, AnalyticsRecord, ScoreSummary


def round_half_up(value: Decimal) -> int:
    """Round to the nearest integer, halves away from zero (70.5 -> 71)."""
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def average_scores(records: Iterable[AnalyticsRecord]) -> ScoreSummary:
    """
    Mean of each score field across records.

    An empty input yields all zeros. Missing values count as 0. Division is
    exact (Decimal) so the halfway case does not depend on float error.
    """
    records = list(records)
    if not records:
        return ScoreSummary()

    count = Decimal(len(records))
    averages = {}
    for field in SCORE_FIELDS:
        total = sum(Decimal(getattr(record, field, 0) or 0) for record in records)
        averages[field] = round_half_up(total / count)
    return ScoreSummary(**averages)
