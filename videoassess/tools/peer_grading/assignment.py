"""Peer assignment state, scope-wide randomization and rater-type resolution."""

import logging
import random
from dataclasses import dataclass, field, replace
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from .models import Participant, ParticipantId, PeerCount, PeerGraph, PeerMode, RaterType
from .peer_graph import PeerGraphBuilder
from .store import COURSE_SCOPE, GradeStore, ScopeId

LOG = logging.getLogger(__name__)


@dataclass(frozen=True)
class PeerAssignmentState:
    """Students of a scope and who each of them reviews.

    Operations never mutate the state; they return an updated copy.
    """
    students: Tuple[ParticipantId, ...] = ()
    assignments: Mapping[ParticipantId, Tuple[ParticipantId, ...]] = field(default_factory=dict)

    @classmethod
    def from_graph(cls, students: Iterable[ParticipantId], graph: PeerGraph) -> "PeerAssignmentState":
        students = tuple(dict.fromkeys(students))
        return cls(
            students=students,
            assignments={s: tuple(graph.reviewees_of(s)) for s in students},
        )

    def reviewees_of(self, reviewer: ParticipantId) -> Tuple[ParticipantId, ...]:
        return tuple(self.assignments.get(reviewer, ()))

    def assign(self, reviewer: ParticipantId, reviewee: ParticipantId) -> "PeerAssignmentState":
        """Add one edge; self-review and unknown students are rejected."""
        if reviewer == reviewee:
            raise ValueError(f"Participant {reviewer} cannot review themselves")
        for pid in (reviewer, reviewee):
            if pid not in self.students:
                raise ValueError(f"Unknown student {pid}")
        current = self.reviewees_of(reviewer)
        if reviewee in current:
            return self
        assignments = dict(self.assignments)
        assignments[reviewer] = current + (reviewee,)
        return replace(self, assignments=assignments)

    def unassign(self, reviewer: ParticipantId, reviewee: ParticipantId) -> "PeerAssignmentState":
        current = self.reviewees_of(reviewer)
        if reviewee not in current:
            return self
        assignments = dict(self.assignments)
        assignments[reviewer] = tuple(p for p in current if p != reviewee)
        return replace(self, assignments=assignments)

    def randomize(self, peer_count: PeerCount, rng: Optional[random.Random] = None) -> "PeerAssignmentState":
        peers = PeerGraphBuilder(rng).build(self.students, peer_count)
        return replace(self, assignments={s: tuple(p) for s, p in peers.items()})

    def to_graph(self) -> PeerGraph:
        return PeerGraph(assignments={s: list(p) for s, p in self.assignments.items() if p})


def students_only(participants: Iterable[Participant]) -> List[ParticipantId]:
    """Ids of participants who are not teachers."""
    return [p.id for p in participants if not p.is_teacher]


def peer_scopes(store: GradeStore, peer_mode: Optional[PeerMode] = None) -> List[ScopeId]:
    """Scopes to randomize for a peer mode; None follows the store's groups."""
    if peer_mode == PeerMode.COURSE:
        return [COURSE_SCOPE]
    scopes = store.fetch_scopes()
    if peer_mode == PeerMode.GROUP and scopes == [COURSE_SCOPE]:
        LOG.warning("Group peer mode requested but no groups exist, assigning course-wide")
    return scopes


def assign_random_peers(
    store: GradeStore,
    peer_count: PeerCount,
    scopes: Optional[Iterable[ScopeId]] = None,
    rng: Optional[random.Random] = None,
    exclusive: bool = False
) -> Dict[ScopeId, PeerGraph]:
    """
    Re-randomize peers for each scope and replace the stored graphs.

    Teachers never take part. Scopes without students are skipped and keep
    whatever graph they had, unless exclusive is set: then every stored graph
    outside the new ones is emptied, which removes its peer grade items.

    Returns:
        The new graph per scope that was replaced
    """
    builder = PeerGraphBuilder(rng)
    graphs = {}
    for scope_id in (store.fetch_scopes() if scopes is None else scopes):
        student_ids = students_only(store.fetch_participants(scope_id))
        if not student_ids:
            LOG.info("No students in scope %s, skipping", scope_id)
            continue
        graph = builder.build_graph(student_ids, peer_count)
        removed = store.upsert_peer_graph(scope_id, graph)
        LOG.info(
            "Assigned peers for %d students in scope %s (%d stale grade items removed)",
            len(student_ids), scope_id, len(removed)
        )
        graphs[scope_id] = graph

    if exclusive:
        for scope_id, graph in store.peer_graphs().items():
            if scope_id in graphs or not graph.assignments:
                continue
            removed = store.upsert_peer_graph(scope_id, PeerGraph())
            LOG.info("Cleared peer graph of scope %s (%d stale grade items removed)", scope_id, len(removed))
    return graphs


def resolve_rater_type(
    grader: ParticipantId,
    graded: ParticipantId,
    grader_is_teacher: bool,
    graphs: Iterable[PeerGraph]
) -> RaterType:
    """Which rater type a grader acts as when grading a participant."""
    if grader_is_teacher:
        return RaterType.TEACHER
    if grader == graded:
        return RaterType.SELF
    if any(graph.has_edge(grader, graded) for graph in graphs):
        return RaterType.PEER
    return RaterType.CLASS
