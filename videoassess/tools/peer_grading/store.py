"""Grade store interface and an in-memory implementation."""

import copy
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Hashable, Iterable, List, Optional, Set, Tuple

from .models import (
    AggregatedGrade,
    Grade,
    GradeItem,
    GradingArea,
    Participant,
    ParticipantId,
    PeerGraph,
    RaterType,
    RubricFilling,
    Timing,
)

LOG = logging.getLogger(__name__)

# Scope id used for course-wide (ungrouped) peer assignment.
COURSE_SCOPE = 0

ScopeId = Hashable
AttemptRef = Hashable


class GradeStore(ABC):
    """Everything the grading engine reads from or writes to persistence."""

    @abstractmethod
    def fetch_participants(self, scope_id: Optional[ScopeId] = None) -> List[Participant]:
        """Participants in a scope, or everyone when scope_id is None."""

    @abstractmethod
    def fetch_scopes(self) -> List[ScopeId]:
        """Group ids that have members; COURSE_SCOPE when nobody is grouped."""

    @abstractmethod
    def get_grade_item(
        self,
        area: GradingArea,
        graded_user: ParticipantId,
        grader: ParticipantId
    ) -> GradeItem:
        """Return the grade item for this slot, creating it on first use."""

    @abstractmethod
    def submit_grade(
        self,
        area: GradingArea,
        graded_user: ParticipantId,
        grader: ParticipantId,
        score: Optional[float],
        comment: str = ""
    ) -> Grade:
        """Create or overwrite the grade a grader gives a subject."""

    @abstractmethod
    def fetch_grades(self, student_id: ParticipantId, area: GradingArea) -> List[Grade]:
        """All grades given to student_id in area."""

    @abstractmethod
    def has_rated_as(self, rater_id: ParticipantId, rater_type: RaterType) -> bool:
        """Whether rater_id holds any grade item of rater_type, in any timing."""

    @abstractmethod
    def fetch_aggregated_grade(self, student_id: ParticipantId, timing: Timing) -> Optional[AggregatedGrade]:
        pass

    @abstractmethod
    def upsert_aggregated_grade(self, student_id: ParticipantId, timing: Timing, record: AggregatedGrade):
        pass

    @abstractmethod
    def fetch_peer_graph(self, scope_id: ScopeId) -> PeerGraph:
        pass

    @abstractmethod
    def upsert_peer_graph(self, scope_id: ScopeId, graph: PeerGraph) -> List[int]:
        """Replace a scope's graph and delete peer grade items no edge backs.

        Returns:
            Ids of the grade items that were removed
        """

    @abstractmethod
    def push_gradebook_score(self, student_id: ParticipantId, raw_score: float):
        pass

    @abstractmethod
    def mark_activity_complete(self, student_id: ParticipantId):
        pass

    @abstractmethod
    def save_rubric_filling(self, attempt_ref: AttemptRef, filling: RubricFilling):
        """Store a new current filling; the previous one moves to history."""

    @abstractmethod
    def fetch_rubric_filling(self, attempt_ref: AttemptRef) -> Optional[RubricFilling]:
        pass

    @abstractmethod
    def fetch_rubric_filling_history(self, attempt_ref: AttemptRef) -> List[RubricFilling]:
        pass

    @abstractmethod
    def mark_training_passed(self, student_id: ParticipantId):
        pass

    @abstractmethod
    def is_training_passed(self, student_id: ParticipantId) -> bool:
        pass

    def peer_graphs(self) -> Dict[ScopeId, PeerGraph]:
        """Graphs of the current scopes. Stores that keep other scopes should override this."""
        return {scope_id: self.fetch_peer_graph(scope_id) for scope_id in self.fetch_scopes()}


class InMemoryGradeStore(GradeStore):
    """Dictionary-backed store. Each write replaces state in one assignment."""

    def __init__(self):
        self.participants: Dict[ParticipantId, Participant] = {}
        self.groups: Dict[ScopeId, List[ParticipantId]] = {}
        self.grade_items: Dict[int, GradeItem] = {}
        self.grades: Dict[int, Grade] = {}
        self.aggregates: Dict[Tuple[ParticipantId, Timing], AggregatedGrade] = {}
        self.graphs: Dict[ScopeId, PeerGraph] = {}
        self.gradebook: Dict[ParticipantId, float] = {}
        self.completed: Set[ParticipantId] = set()
        self.fillings: Dict[AttemptRef, List[RubricFilling]] = {}
        self.training_passed: Set[ParticipantId] = set()
        self._next_item_id = 1

    def add_participant(self, participant: Participant, groups: Iterable[ScopeId] = ()):
        self.participants[participant.id] = participant
        for group_id in groups:
            members = self.groups.setdefault(group_id, [])
            if participant.id not in members:
                members.append(participant.id)

    def fetch_participants(self, scope_id: Optional[ScopeId] = None) -> List[Participant]:
        if scope_id is None or (scope_id == COURSE_SCOPE and COURSE_SCOPE not in self.groups):
            return list(self.participants.values())
        return [self.participants[pid] for pid in self.groups.get(scope_id, []) if pid in self.participants]

    def fetch_scopes(self) -> List[ScopeId]:
        scopes = [group_id for group_id, members in self.groups.items() if members]
        return scopes or [COURSE_SCOPE]

    def _find_item(
        self,
        area: GradingArea,
        graded_user: ParticipantId,
        grader: ParticipantId
    ) -> Optional[GradeItem]:
        for item in self.grade_items.values():
            if item.area == area and item.graded_user == graded_user and item.grader == grader:
                return item
        return None

    def get_grade_item(
        self,
        area: GradingArea,
        graded_user: ParticipantId,
        grader: ParticipantId
    ) -> GradeItem:
        item = self._find_item(area, graded_user, grader)
        if item is None:
            item = GradeItem(id=self._next_item_id, area=area, graded_user=graded_user, grader=grader)
            self.grade_items = {**self.grade_items, item.id: item}
            self._next_item_id += 1
            LOG.debug("Created grade item %d for %s grading %s (%s)", item.id, grader, graded_user, area.key)
        return item

    def submit_grade(
        self,
        area: GradingArea,
        graded_user: ParticipantId,
        grader: ParticipantId,
        score: Optional[float],
        comment: str = ""
    ) -> Grade:
        item = self.get_grade_item(area, graded_user, grader)
        grade = Grade(item_id=item.id, score=score, comment=comment)
        self.grades = {**self.grades, item.id: grade}
        LOG.info("%s graded %s in %s: %s", grader, graded_user, area.key, grade.score)
        return grade

    def fetch_grades(self, student_id: ParticipantId, area: GradingArea) -> List[Grade]:
        return [
            self.grades[item.id]
            for item in self.grade_items.values()
            if item.graded_user == student_id and item.area == area and item.id in self.grades
        ]

    def has_rated_as(self, rater_id: ParticipantId, rater_type: RaterType) -> bool:
        return any(
            item.grader == rater_id and item.area.rater_type == rater_type
            for item in self.grade_items.values()
        )

    def fetch_aggregated_grade(self, student_id: ParticipantId, timing: Timing) -> Optional[AggregatedGrade]:
        record = self.aggregates.get((student_id, timing))
        return record.model_copy(deep=True) if record else None

    def upsert_aggregated_grade(self, student_id: ParticipantId, timing: Timing, record: AggregatedGrade):
        self.aggregates = {**self.aggregates, (student_id, timing): record.model_copy(deep=True)}

    def fetch_peer_graph(self, scope_id: ScopeId) -> PeerGraph:
        graph = self.graphs.get(scope_id)
        return graph.model_copy(deep=True) if graph else PeerGraph()

    def peer_graphs(self) -> Dict[ScopeId, PeerGraph]:
        """Every stored graph, including a course-wide one when groups exist."""
        return {scope_id: graph.model_copy(deep=True) for scope_id, graph in self.graphs.items()}

    def upsert_peer_graph(self, scope_id: ScopeId, graph: PeerGraph) -> List[int]:
        graphs = {**self.graphs, scope_id: graph.model_copy(deep=True)}

        def has_edge(reviewer, reviewee):
            return any(g.has_edge(reviewer, reviewee) for g in graphs.values())

        orphaned = [
            item.id for item in self.grade_items.values()
            if item.area.rater_type == RaterType.PEER and not has_edge(item.grader, item.graded_user)
        ]
        grade_items = {k: v for k, v in self.grade_items.items() if k not in orphaned}
        grades = {k: v for k, v in self.grades.items() if k not in orphaned}

        self.graphs, self.grade_items, self.grades = graphs, grade_items, grades
        if orphaned:
            LOG.info("Removed %d peer grade items no longer backed by scope %s", len(orphaned), scope_id)
        return orphaned

    def push_gradebook_score(self, student_id: ParticipantId, raw_score: float):
        self.gradebook = {**self.gradebook, student_id: raw_score}

    def mark_activity_complete(self, student_id: ParticipantId):
        self.completed = self.completed | {student_id}

    def save_rubric_filling(self, attempt_ref: AttemptRef, filling: RubricFilling):
        history = self.fillings.get(attempt_ref, [])
        self.fillings = {**self.fillings, attempt_ref: history + [filling.model_copy(deep=True)]}

    def fetch_rubric_filling(self, attempt_ref: AttemptRef) -> Optional[RubricFilling]:
        fillings = self.fillings.get(attempt_ref)
        return fillings[-1].model_copy(deep=True) if fillings else None

    def fetch_rubric_filling_history(self, attempt_ref: AttemptRef) -> List[RubricFilling]:
        return [f.model_copy(deep=True) for f in self.fillings.get(attempt_ref, [])[:-1]]

    def mark_training_passed(self, student_id: ParticipantId):
        self.training_passed = self.training_passed | {student_id}

    def is_training_passed(self, student_id: ParticipantId) -> bool:
        return student_id in self.training_passed

    def snapshot(self) -> Dict[str, Any]:
        """Plain-data copy of the whole store, suitable for YAML."""
        return {
            'participants': [
                {
                    'id': p.id,
                    'role': p.role.value,
                    'groups': [g for g, members in self.groups.items() if p.id in members],
                }
                for p in self.participants.values()
            ],
            'grade_items': [
                {
                    'id': item.id,
                    'area': item.area.key,
                    'graded_user': item.graded_user,
                    'grader': item.grader,
                }
                for item in self.grade_items.values()
            ],
            'grades': [
                {
                    'item_id': grade.item_id,
                    'score': grade.score,
                    'comment': grade.comment,
                }
                for grade in self.grades.values()
            ],
            'aggregates': [record.to_yaml_dict() for record in self.aggregates.values()],
            'peer_graphs': [
                {
                    'scope': scope_id,
                    'edges': [[edge.reviewer, edge.reviewee] for edge in graph.edges()],
                }
                for scope_id, graph in self.graphs.items()
            ],
            'gradebook': [{'student_id': k, 'score': v} for k, v in self.gradebook.items()],
            'completed': sorted(self.completed, key=str),
            'fillings': [
                {
                    'attempt': attempt_ref,
                    'history': [
                        [[criterion, level] for criterion, level in filling.levels.items()]
                        for filling in fillings
                    ],
                }
                for attempt_ref, fillings in self.fillings.items()
            ],
            'training_passed': sorted(self.training_passed, key=str),
        }

    def restore(self, data: Dict[str, Any]):
        """Replace the whole store with a snapshot() result."""
        data = copy.deepcopy(data or {})
        restored = InMemoryGradeStore()

        for entry in data.get('participants', []):
            participant = Participant(id=entry['id'], role=entry.get('role', 'student'))
            restored.add_participant(participant, entry.get('groups', []))

        for entry in data.get('grade_items', []):
            item = GradeItem(
                id=entry['id'],
                area=GradingArea.parse(entry['area']),
                graded_user=entry['graded_user'],
                grader=entry['grader'],
            )
            restored.grade_items[item.id] = item
        restored._next_item_id = max(restored.grade_items, default=0) + 1

        for entry in data.get('grades', []):
            grade = Grade(**entry)
            restored.grades[grade.item_id] = grade

        for entry in data.get('aggregates', []):
            record = AggregatedGrade(**entry)
            restored.aggregates[(record.student_id, record.timing)] = record

        for entry in data.get('peer_graphs', []):
            assignments: Dict[ParticipantId, List[ParticipantId]] = {}
            for reviewer, reviewee in entry.get('edges', []):
                assignments.setdefault(reviewer, []).append(reviewee)
            restored.graphs[entry['scope']] = PeerGraph(assignments=assignments)

        restored.gradebook = {e['student_id']: e['score'] for e in data.get('gradebook', [])}
        restored.completed = set(data.get('completed', []))

        for entry in data.get('fillings', []):
            restored.fillings[entry['attempt']] = [
                RubricFilling(levels={criterion: level for criterion, level in filling})
                for filling in entry.get('history', [])
            ]
        restored.training_passed = set(data.get('training_passed', []))

        self.__dict__.update(restored.__dict__)
