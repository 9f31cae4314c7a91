"""Fairness bonus: rewards raters whose scores track the teacher's."""

import bisect
import logging
from typing import Optional

from .models import BonusScale

LOG = logging.getLogger(__name__)


def deviation_percent(reference_score: float, compared_score: float) -> float:
    """Percentage distance of compared_score from reference_score.

    A zero reference counts as perfect agreement.
    """
    if reference_score == 0:
        return 0.0
    return abs(reference_score - compared_score) * 100 / reference_score


class FairnessBonusCalculator:
    """Maps rater/teacher deviation through a bonus scale."""

    def __init__(self, scale: Optional[BonusScale] = None):
        self.scale = scale or BonusScale.default()

    def bonus_percent(self, reference_score: float, compared_score: float) -> int:
        """
        Bonus percentage for a rater who scored compared_score against reference_score.

        The deviation is ranked among the scale thresholds, with thresholds equal
        to it ranking first. The bonus is the one attached to the next threshold
        above that rank, so a deviation at or past the last threshold earns 0.
        """
        deviation = deviation_percent(reference_score, compared_score)
        thresholds = self.scale.thresholds
        rank = bisect.bisect_right(thresholds, deviation)
        if rank >= len(thresholds):
            bonus = 0
        else:
            bonus = self.scale.tiers[rank].bonus
        LOG.debug(
            "Deviation %.2f%% (reference %s, compared %s) -> %s%% bonus",
            deviation, reference_score, compared_score, bonus
        )
        return bonus

    def bonus_points(
        self,
        reference_score: float,
        compared_score: float,
        max_percent: float,
        max_grade: float
    ) -> float:
        """Points awarded: bonus% x max_percent% x max_grade."""
        percent = self.bonus_percent(reference_score, compared_score)
        return (percent / 100) * (max_percent / 100) * max_grade
