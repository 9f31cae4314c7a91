"""Pydantic models for peer grading, aggregation and rubric training."""

from enum import Enum
from typing import Dict, Iterator, List, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

ParticipantId = Union[int, str]
CriterionId = Union[int, str]
LevelId = Union[int, str]

# Legacy stores write -1 where no grade has been given.
UNGRADED_SENTINEL = -1

UNLIMITED_PEERS = "unlimited"
PeerCount = Union[int, str]


class Role(str, Enum):
    STUDENT = "student"
    TEACHER = "teacher"


class Timing(str, Enum):
    """Phase of the assessment a video belongs to."""
    BEFORE = "before"
    AFTER = "after"


class PeerMode(str, Enum):
    """How peers are drawn: from the whole course or within each group."""
    COURSE = "course"
    GROUP = "group"


class RaterType(str, Enum):
    """Who is scoring a subject."""
    TEACHER = "teacher"
    SELF = "self"
    PEER = "peer"
    CLASS = "class"
    TRAINING = "training"


# Training attempts are graded but never mixed into the weighted total.
AGGREGATED_RATER_TYPES: Tuple[RaterType, ...] = (
    RaterType.TEACHER,
    RaterType.SELF,
    RaterType.PEER,
    RaterType.CLASS,
)


class Participant(BaseModel):
    """A member of the cohort."""
    model_config = ConfigDict(frozen=True)

    id: ParticipantId = Field(description="Opaque participant identifier")
    role: Role = Field(default=Role.STUDENT, description="Student or teacher")

    @property
    def is_teacher(self) -> bool:
        return self.role == Role.TEACHER


class GradingArea(BaseModel):
    """A timing x rater-type slot such as 'before' graded by 'peer'."""
    model_config = ConfigDict(frozen=True)

    timing: Timing
    rater_type: RaterType

    @property
    def key(self) -> str:
        """Storage key, e.g. 'beforepeer'."""
        return f"{self.timing.value}{self.rater_type.value}"

    @classmethod
    def parse(cls, key: str) -> "GradingArea":
        for timing in Timing:
            if key.startswith(timing.value):
                return cls(timing=timing, rater_type=RaterType(key[len(timing.value):]))
        raise ValueError(f"Unknown grading area: {key!r}")


class GradeItem(BaseModel):
    """One scoring slot: a grader allowed to grade a subject in an area."""
    id: int = Field(description="Store-assigned grade item id")
    area: GradingArea
    graded_user: ParticipantId = Field(description="Participant being graded")
    grader: ParticipantId = Field(description="Participant giving the grade")


class Grade(BaseModel):
    """A score attached 1:1 to a grade item."""
    item_id: int
    score: Optional[float] = Field(default=None, description="0..100, or None when ungraded")
    comment: str = Field(default="", description="Free-text submission comment")

    @field_validator("score", mode="before")
    @classmethod
    def _sentinel_to_none(cls, value):
        if value is not None and value == UNGRADED_SENTINEL:
            return None
        return value

    @field_validator("score")
    @classmethod
    def _score_in_range(cls, value: Optional[float]) -> Optional[float]:
        if value is not None and not 0 <= value <= 100:
            raise ValueError(f"Grade score must be within 0..100, got {value}")
        return value

    @property
    def is_graded(self) -> bool:
        return self.score is not None


class AggregatedGrade(BaseModel):
    """Aggregated result for one student and timing, recomputed in full."""
    student_id: ParticipantId
    timing: Timing
    composites: Dict[RaterType, Optional[int]] = Field(
        default_factory=dict,
        description="Mean score per rater type, None when that type has no grades"
    )
    weighted_total: Optional[int] = Field(
        default=None,
        description="Rater-type weighted blend, None when no aggregation was possible"
    )
    fairness_bonus: float = Field(default=0.0, description="Peer fairness bonus in points")
    self_fairness_bonus: float = Field(default=0.0, description="Self fairness bonus in points")
    final_score: float = Field(default=0.0, description="Total plus bonuses, capped at 100")

    @field_validator("final_score")
    @classmethod
    def _final_in_range(cls, value: float) -> float:
        if not 0 <= value <= 100:
            raise ValueError(f"final_score must be within 0..100, got {value}")
        return value

    def composite(self, rater_type: RaterType) -> Optional[int]:
        return self.composites.get(rater_type)

    @property
    def is_graded(self) -> bool:
        return any(value is not None for value in self.composites.values())

    def to_yaml_dict(self) -> dict:
        """Convert to a plain dictionary suitable for YAML serialization."""
        return {
            'student_id': self.student_id,
            'timing': self.timing.value,
            'composites': {
                rater_type.value: self.composites.get(rater_type)
                for rater_type in AGGREGATED_RATER_TYPES
                if rater_type in self.composites
            },
            'weighted_total': self.weighted_total,
            'fairness_bonus': self.fairness_bonus,
            'self_fairness_bonus': self.self_fairness_bonus,
            'final_score': self.final_score,
        }


class RubricLevel(BaseModel):
    id: LevelId
    score: float = Field(description="Points awarded for this level")
    definition: str = Field(default="", description="Level description shown to raters")


class RubricCriterion(BaseModel):
    id: CriterionId
    description: str = Field(default="", description="What the criterion evaluates")
    levels: List[RubricLevel] = Field(default_factory=list)

    def level(self, level_id: LevelId) -> Optional[RubricLevel]:
        for level in self.levels:
            if level.id == level_id:
                return level
        return None

    @property
    def score_range(self) -> float:
        if not self.levels:
            return 0.0
        scores = [level.score for level in self.levels]
        return max(scores) - min(scores)


class RubricDefinition(BaseModel):
    """Ordered rubric criteria, each with ordered levels."""
    criteria: List[RubricCriterion] = Field(default_factory=list)


class RubricFilling(BaseModel):
    """A rater's selected level per criterion."""
    levels: Dict[CriterionId, LevelId] = Field(default_factory=dict)

    def selected(self, criterion_id: CriterionId) -> Optional[LevelId]:
        return self.levels.get(criterion_id)

    def is_empty(self) -> bool:
        return not self.levels


class BonusTier(BaseModel):
    model_config = ConfigDict(frozen=True)

    threshold: float = Field(description="Upper edge of the deviation band, in percent")
    bonus: int = Field(ge=0, le=100, description="Bonus percent for deviations in this band")


class BonusScale(BaseModel):
    """Deviation thresholds mapped to bonus percentages, kept sorted by threshold."""
    tiers: List[BonusTier] = Field(default_factory=list)

    @model_validator(mode="after")
    def _sort_tiers(self) -> "BonusScale":
        self.tiers = sorted(self.tiers, key=lambda tier: tier.threshold)
        return self

    @classmethod
    def from_pairs(cls, pairs) -> "BonusScale":
        return cls(tiers=[BonusTier(threshold=t, bonus=b) for t, b in pairs])

    @classmethod
    def default(cls) -> "BonusScale":
        return cls.from_pairs([(5, 100), (10, 80), (15, 60), (20, 40), (25, 20), (100, 0)])

    @property
    def thresholds(self) -> List[float]:
        return [tier.threshold for tier in self.tiers]


class PeerEdge(BaseModel):
    model_config = ConfigDict(frozen=True)

    reviewer: ParticipantId
    reviewee: ParticipantId


class PeerGraph(BaseModel):
    """Who reviews whom within one scope, replaced wholesale on randomization."""
    assignments: Dict[ParticipantId, List[ParticipantId]] = Field(
        default_factory=dict,
        description="Reviewer id mapped to the reviewees assigned to them"
    )

    @model_validator(mode="after")
    def _check_edges(self) -> "PeerGraph":
        for reviewer, reviewees in self.assignments.items():
            if reviewer in reviewees:
                raise ValueError(f"Participant {reviewer} cannot review themselves")
            if len(set(reviewees)) != len(reviewees):
                raise ValueError(f"Duplicate reviewees for participant {reviewer}")
        return self

    def edges(self) -> Iterator[PeerEdge]:
        for reviewer, reviewees in self.assignments.items():
            for reviewee in reviewees:
                yield PeerEdge(reviewer=reviewer, reviewee=reviewee)

    def reviewees_of(self, reviewer: ParticipantId) -> List[ParticipantId]:
        return list(self.assignments.get(reviewer, []))

    def reviewers_of(self, reviewee: ParticipantId) -> List[ParticipantId]:
        return [r for r, reviewees in self.assignments.items() if reviewee in reviewees]

    def out_degree(self, reviewer: ParticipantId) -> int:
        return len(self.assignments.get(reviewer, []))

    def has_edge(self, reviewer: ParticipantId, reviewee: ParticipantId) -> bool:
        return reviewee in self.assignments.get(reviewer, [])
