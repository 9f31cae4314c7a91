"""Compares a trainee's rubric selections with the teacher's reference selections."""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Set

from .models import CriterionId, LevelId, RubricCriterion, RubricDefinition, RubricFilling

LOG = logging.getLogger(__name__)


class CriterionStatus(str, Enum):
    PASSED = "passed"
    FAILED = "failed"
    NOT_ASSESSED = "not assessed"


@dataclass
class CriterionResult:
    """Outcome for a single rubric criterion."""
    criterion_id: CriterionId
    status: CriterionStatus
    trainee_level: Optional[LevelId] = None
    teacher_level: Optional[LevelId] = None
    difference_percent: Optional[float] = None

    @property
    def passed(self) -> bool:
        return self.status == CriterionStatus.PASSED


@dataclass
class ComparisonResult:
    """Overall verdict plus the rendered comparison table."""
    rendered_table: str
    passed: bool
    passed_criteria: Set[CriterionId] = field(default_factory=set)
    criteria: List[CriterionResult] = field(default_factory=list)


class RubricComparator:
    """Decides pass/fail for a training attempt, criterion by criterion."""

    def compare(
        self,
        definition: RubricDefinition,
        trainee: Optional[RubricFilling],
        teacher: Optional[RubricFilling],
        accepted_difference_percent: float,
        history: Optional[List[RubricFilling]] = None
    ) -> ComparisonResult:
        """
        Compare trainee and teacher fillings of the same rubric.

        A criterion passes when the gap between the two selected level scores,
        as a share of that criterion's score range, is within the accepted
        difference. A criterion missing from either filling is not assessed and
        keeps the attempt from passing. History fillings only show up in the
        rendered table.

        Raises:
            ValueError: If the definition is missing or the tolerance is negative
        """
        if definition is None:
            raise ValueError("A rubric definition is required")
        if accepted_difference_percent is None or accepted_difference_percent < 0:
            raise ValueError(f"Accepted difference must be a non-negative percent, got {accepted_difference_percent}")

        trainee = trainee or RubricFilling()
        teacher = teacher or RubricFilling()

        results = [
            self._compare_criterion(criterion, trainee, teacher, accepted_difference_percent)
            for criterion in definition.criteria
        ]
        passed = bool(results) and all(result.passed for result in results)
        passed_criteria = {result.criterion_id for result in results if result.passed}

        LOG.info(
            "Training comparison: %d/%d criteria passed, overall %s",
            len(passed_criteria), len(results), "passed" if passed else "failed"
        )
        return ComparisonResult(
            rendered_table=render_comparison_table(definition, results, trainee, teacher, history or []),
            passed=passed,
            passed_criteria=passed_criteria,
            criteria=results,
        )

    def _compare_criterion(
        self,
        criterion: RubricCriterion,
        trainee: RubricFilling,
        teacher: RubricFilling,
        accepted_difference_percent: float
    ) -> CriterionResult:
        trainee_level_id = trainee.selected(criterion.id)
        teacher_level_id = teacher.selected(criterion.id)
        result = CriterionResult(
            criterion_id=criterion.id,
            status=CriterionStatus.NOT_ASSESSED,
            trainee_level=trainee_level_id,
            teacher_level=teacher_level_id,
        )

        trainee_level = criterion.level(trainee_level_id) if trainee_level_id is not None else None
        teacher_level = criterion.level(teacher_level_id) if teacher_level_id is not None else None
        if trainee_level is None or teacher_level is None:
            if trainee_level_id is not None and trainee_level is None:
                LOG.warning("Trainee selected unknown level %s for criterion %s", trainee_level_id, criterion.id)
            if teacher_level_id is not None and teacher_level is None:
                LOG.warning("Teacher selected unknown level %s for criterion %s", teacher_level_id, criterion.id)
            return result

        score_range = criterion.score_range
        gap = abs(trainee_level.score - teacher_level.score)
        # Levels that all share one score cannot disagree.
        result.difference_percent = gap * 100 / score_range if score_range else 0.0
        if result.difference_percent <= accepted_difference_percent:
            result.status = CriterionStatus.PASSED
        else:
            result.status = CriterionStatus.FAILED
        return result


def _escape(text: str) -> str:
    return str(text).replace('|', '\\|').replace('\n', ' ')


def _format_score(score: float) -> str:
    return f"{score:g}"


def render_comparison_table(
    definition: RubricDefinition,
    results: List[CriterionResult],
    trainee: RubricFilling,
    teacher: RubricFilling,
    history: List[RubricFilling]
) -> str:
    """Render the comparison as a markdown table, one row per criterion.

    Each level cell lists the level's score and who picked it: ``self`` for the
    trainee's current selection, ``self (earlier)`` for levels picked in
    previous attempts, and ``teacher`` for the reference selection.
    """
    by_id: Dict[CriterionId, CriterionResult] = {r.criterion_id: r for r in results}
    width = max((len(c.levels) for c in definition.criteria), default=0)

    header = ["Criterion"] + [f"Level {i}" for i in range(1, width + 1)] + ["Result"]
    lines = [
        "| " + " | ".join(header) + " |",
        "|" + "|".join("---" for _ in header) + "|",
    ]

    for criterion in definition.criteria:
        earlier = {filling.selected(criterion.id) for filling in history}
        cells = [f"**{_escape(criterion.description or criterion.id)}**"]
        for level in criterion.levels:
            marks = []
            if trainee.selected(criterion.id) == level.id:
                marks.append("self")
            elif level.id in earlier:
                marks.append("self (earlier)")
            if teacher.selected(criterion.id) == level.id:
                marks.append("teacher")
            cell = f"{_escape(level.definition)} ({_format_score(level.score)} pts)".strip()
            if marks:
                cell += " [" + ", ".join(marks) + "]"
            cells.append(cell)
        cells.extend([""] * (width - len(criterion.levels)))

        result = by_id.get(criterion.id)
        cells.append(result.status.value if result else CriterionStatus.NOT_ASSESSED.value)
        lines.append("| " + " | ".join(cells) + " |")

    return "\n".join(lines)
