"""Per-student aggregation of teacher, self, peer and class grades."""

import logging
import math
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from tqdm import tqdm

from .fairness_bonus import FairnessBonusCalculator
from .models import (
    AGGREGATED_RATER_TYPES,
    AggregatedGrade,
    GradingArea,
    ParticipantId,
    RaterType,
    Timing,
)
from .policy import BonusPolicy, GradingPolicy
from .store import GradeStore

LOG = logging.getLogger(__name__)

PEER_BONUS_TRIGGERS = (RaterType.PEER, RaterType.TEACHER)
SELF_BONUS_TRIGGERS = (RaterType.SELF, RaterType.TEACHER)


def round_half_away(value: float) -> int:
    """Round to the nearest integer, halves away from zero (2.5 -> 3, -2.5 -> -3)."""
    return int(math.copysign(math.floor(abs(value) + 0.5), value))


def mean_score(scores: Iterable[Optional[float]]) -> Optional[float]:
    """Arithmetic mean of graded scores, None if nothing was graded."""
    graded = [score for score in scores if score is not None]
    if not graded:
        return None
    return sum(graded) / len(graded)


@dataclass
class GradingStatus:
    """Which timings of a student have any aggregated grade."""
    any: bool = False
    timings: Dict[Timing, bool] = field(default_factory=dict)

    def graded(self, timing: Timing) -> bool:
        return self.timings.get(timing, False)


class GradeAggregator:
    """Recomputes a student's aggregated grades from the grade store.

    Composites are averaged per rater type and blended with the policy
    weights. A rater type without grades keeps None in its composite but
    counts as 0 in the weighted total, while its weight stays in the
    denominator. Fairness bonuses are only recomputed when the grade that
    triggered the aggregation came from a rater type they depend on and was
    submitted for the timing being aggregated; otherwise the previously
    stored bonus is carried forward.
    """

    def __init__(self, store: GradeStore, policy: Optional[GradingPolicy] = None):
        self.store = store
        self.policy = policy or GradingPolicy()
        self.peer_bonus = FairnessBonusCalculator(self.policy.fairness_bonus.scale)
        self.self_bonus = FairnessBonusCalculator(self.policy.self_fairness_bonus.scale)

    def aggregate(
        self,
        student_id: ParticipantId,
        trigger: Optional[RaterType] = None,
        trigger_timing: Optional[Timing] = None
    ) -> Dict[Timing, AggregatedGrade]:
        """
        Recompute and store every configured timing for a student.

        Args:
            student_id: Student whose grades changed
            trigger: Rater type of the submission that caused this call, if any
            trigger_timing: Timing of that submission; None applies the trigger
                to every timing

        Returns:
            The stored records keyed by timing
        """
        if student_id is None:
            raise ValueError("student_id is required")

        results = {}
        for timing in self.policy.timings:
            timing_trigger = trigger if trigger_timing in (None, timing) else None
            record = self._aggregate_timing(student_id, timing, timing_trigger)
            self.store.upsert_aggregated_grade(student_id, timing, record)
            results[timing] = record
            LOG.info(
                "Aggregated %s for %s: total=%s final=%s",
                timing.value, student_id, record.weighted_total, record.final_score
            )

        before = results.get(Timing.BEFORE)
        if before is not None:
            self._publish(student_id, before)
        return results

    def record_grade(
        self,
        area: GradingArea,
        graded_user: ParticipantId,
        grader: ParticipantId,
        score: Optional[float],
        comment: str = ""
    ) -> Dict[Timing, AggregatedGrade]:
        """Store a rater's submission and re-aggregate the graded student."""
        self.store.submit_grade(area, graded_user, grader, score, comment)
        return self.aggregate(graded_user, trigger=area.rater_type, trigger_timing=area.timing)

    def regrade(
        self,
        student_ids: Iterable[ParticipantId],
        show_progress: bool = False
    ) -> Dict[ParticipantId, Dict[Timing, AggregatedGrade]]:
        """Re-aggregate every student, for instance after peers were re-randomized."""
        student_ids = list(student_ids)
        results = {}
        for student_id in tqdm(student_ids, desc="Regrading students", disable=not show_progress):
            results[student_id] = self.aggregate(student_id)
        LOG.info("Regraded %d students", len(results))
        return results

    def grading_status(self, student_id: ParticipantId) -> GradingStatus:
        status = GradingStatus()
        for timing in self.policy.timings:
            record = self.store.fetch_aggregated_grade(student_id, timing)
            graded = record is not None and record.is_graded
            status.timings[timing] = graded
            status.any = status.any or graded
        return status

    def is_graded(self, student_id: ParticipantId) -> bool:
        return self.grading_status(student_id).any

    def composites(self, student_id: ParticipantId, timing: Timing) -> Dict[RaterType, Optional[float]]:
        """Unrounded mean score per rater type."""
        return {
            rater_type: mean_score(
                grade.score for grade in self.store.fetch_grades(student_id, GradingArea(timing=timing, rater_type=rater_type))
            )
            for rater_type in AGGREGATED_RATER_TYPES
        }

    def weighted_total(self, composites: Dict[RaterType, Optional[float]]) -> Optional[float]:
        """Weighted blend of composites, None when the weights sum to zero."""
        weight_sum = self.policy.weight_sum
        if weight_sum <= 0:
            LOG.warning("Rater-type weights sum to %s, cannot aggregate", weight_sum)
            return None
        numerator = sum(
            (composites.get(rater_type) or 0) * self.policy.weight(rater_type)
            for rater_type in AGGREGATED_RATER_TYPES
        )
        return numerator / weight_sum

    def _aggregate_timing(
        self,
        student_id: ParticipantId,
        timing: Timing,
        trigger: Optional[RaterType]
    ) -> AggregatedGrade:
        composites = self.composites(student_id, timing)
        total = self.weighted_total(composites)
        weighted_total = round_half_away(total) if total is not None else None

        previous = self.store.fetch_aggregated_grade(student_id, timing)
        fairness_bonus = previous.fairness_bonus if previous else 0.0
        self_fairness_bonus = previous.self_fairness_bonus if previous else 0.0

        teacher = composites[RaterType.TEACHER] or 0
        if self.policy.fairness_bonus.enabled and trigger in PEER_BONUS_TRIGGERS:
            if self.store.has_rated_as(student_id, RaterType.PEER):
                fairness_bonus = self._bonus(
                    self.peer_bonus, self.policy.fairness_bonus, teacher, composites[RaterType.PEER] or 0
                )
            else:
                fairness_bonus = 0.0
        if self.policy.self_fairness_bonus.enabled and trigger in SELF_BONUS_TRIGGERS:
            self_fairness_bonus = self._bonus(
                self.self_bonus, self.policy.self_fairness_bonus, teacher, composites[RaterType.SELF] or 0
            )

        final_score = min(100, (weighted_total or 0) + self_fairness_bonus + fairness_bonus)
        return AggregatedGrade(
            student_id=student_id,
            timing=timing,
            composites={
                rater_type: round_half_away(value) if value is not None else None
                for rater_type, value in composites.items()
            },
            weighted_total=weighted_total,
            fairness_bonus=fairness_bonus,
            self_fairness_bonus=self_fairness_bonus,
            final_score=max(0, final_score),
        )

    def _bonus(
        self,
        calculator: FairnessBonusCalculator,
        bonus_policy: BonusPolicy,
        teacher_score: float,
        rater_score: float
    ) -> float:
        return calculator.bonus_points(
            teacher_score, rater_score, bonus_policy.max_percent, self.policy.max_grade
        )

    def _publish(self, student_id: ParticipantId, record: AggregatedGrade):
        """Forward a positive 'before' total to the gradebook and completion tracking."""
        raw_grade = record.weighted_total or 0
        if raw_grade <= 0:
            return
        self.store.push_gradebook_score(student_id, raw_grade)
        if self.policy.completion_tracking and raw_grade >= self.policy.grade_pass:
            self.store.mark_activity_complete(student_id)
            LOG.info("Marked activity complete for %s (%s >= %s)", student_id, raw_grade, self.policy.grade_pass)


def aggregate_grades(
    store: GradeStore,
    policy: GradingPolicy,
    student_id: ParticipantId,
    trigger: Optional[RaterType] = None,
    trigger_timing: Optional[Timing] = None
) -> Dict[Timing, AggregatedGrade]:
    """Convenience wrapper around GradeAggregator.aggregate."""
    return GradeAggregator(store, policy).aggregate(student_id, trigger, trigger_timing)


def students_to_regrade(store: GradeStore) -> List[ParticipantId]:
    """Every non-teacher participant the store knows about."""
    return [p.id for p in store.fetch_participants() if not p.is_teacher]
