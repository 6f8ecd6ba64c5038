from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Sequence

from grading_service.schemas import TestCase, TestResult


@dataclass
class ScoreSummary:
    score: int
    passed: bool
    earned_points: int
    total_points: int
    passed_count: int


def percentage(earned: int, total: int) -> int:
    """Round-half-up percentage of earned over total, 0 when nothing is at stake."""
    if total <= 0:
        return 0
    value = (Decimal(earned) * 100 / Decimal(total)).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return max(0, min(100, int(value)))


def aggregate(results: Sequence[TestResult], test_cases: Sequence[TestCase]) -> ScoreSummary:
    if len(results) != len(test_cases):
        raise ValueError("Every graded test case needs exactly one result")

    total_points = sum(tc.points for tc in test_cases)
    earned_points = sum(r.points_earned for r in results)
    passed_count = sum(1 for r in results if r.passed)

    return ScoreSummary(
        score=percentage(earned_points, total_points),
        passed=all(r.passed for r in results),
        earned_points=earned_points,
        total_points=total_points,
        passed_count=passed_count,
    )
