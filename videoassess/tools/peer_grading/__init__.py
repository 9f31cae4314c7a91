"""Peer assignment, grade aggregation and rubric training for video assessments."""

from .aggregator import GradeAggregator, round_half_away
from .assignment import PeerAssignmentState, assign_random_peers, resolve_rater_type
from .fairness_bonus import FairnessBonusCalculator
from .models import (
    AggregatedGrade,
    BonusScale,
    Grade,
    GradingArea,
    Participant,
    PeerGraph,
    RaterType,
    RubricDefinition,
    RubricFilling,
    Timing,
    UNLIMITED_PEERS,
)
from .peer_graph import PeerGraphBuilder, build_peer_graph
from .policy import GradingPolicy
from .rubric_comparator import ComparisonResult, RubricComparator
from .store import GradeStore, InMemoryGradeStore
from .training import TrainingEvaluator
from .yaml_store import YamlGradeStore

__all__ = [
    'GradeAggregator',
    'round_half_away',
    'PeerAssignmentState',
    'assign_random_peers',
    'resolve_rater_type',
    'FairnessBonusCalculator',
    'AggregatedGrade',
    'BonusScale',
    'Grade',
    'GradingArea',
    'Participant',
    'PeerGraph',
    'RaterType',
    'RubricDefinition',
    'RubricFilling',
    'Timing',
    'UNLIMITED_PEERS',
    'PeerGraphBuilder',
    'build_peer_graph',
    'GradingPolicy',
    'ComparisonResult',
    'RubricComparator',
    'GradeStore',
    'InMemoryGradeStore',
    'TrainingEvaluator',
    'YamlGradeStore',
]
