"""Training attempts: trainees must match the teacher's rubric before grading peers."""

import logging
from typing import Optional

from .models import ParticipantId, RubricDefinition
from .policy import GradingPolicy
from .rubric_comparator import ComparisonResult, RubricComparator
from .store import AttemptRef, GradeStore

LOG = logging.getLogger(__name__)


class TrainingEvaluator:
    """Compares a trainee's current attempt with the teacher's and records a pass."""

    def __init__(self, store: GradeStore, policy: Optional[GradingPolicy] = None):
        self.store = store
        self.policy = policy or GradingPolicy()
        self.comparator = RubricComparator()

    def evaluate(
        self,
        trainee_id: ParticipantId,
        attempt_ref: AttemptRef,
        teacher_ref: AttemptRef,
        definition: RubricDefinition
    ) -> ComparisonResult:
        """
        Evaluate the trainee's latest filling against the teacher's reference.

        Earlier attempts by the trainee are shown in the table but never change
        the verdict. Once passed, a trainee stays passed.
        """
        trainee = self.store.fetch_rubric_filling(attempt_ref)
        teacher = self.store.fetch_rubric_filling(teacher_ref)
        history = self.store.fetch_rubric_filling_history(attempt_ref)

        result = self.comparator.compare(
            definition, trainee, teacher, self.policy.accepted_difference, history
        )

        complete = trainee is not None and not trainee.is_empty() and teacher is not None and not teacher.is_empty()
        if result.passed and complete and not self.store.is_training_passed(trainee_id):
            self.store.mark_training_passed(trainee_id)
            LOG.info("Trainee %s passed training", trainee_id)
        elif not complete:
            LOG.info("Training attempt %s for %s is incomplete", attempt_ref, trainee_id)
        return result

    def has_passed(self, trainee_id: ParticipantId) -> bool:
        return self.store.is_training_passed(trainee_id)
