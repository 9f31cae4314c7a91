"""Grade store persisted to a single YAML file."""

import logging
import os
import tempfile
from pathlib import Path
from typing import Dict, Iterable, List, Optional

import yaml

from .models import (
    AggregatedGrade,
    Grade,
    GradeItem,
    GradingArea,
    Participant,
    ParticipantId,
    PeerGraph,
    RubricFilling,
    Timing,
)
from .store import AttemptRef, InMemoryGradeStore, ScopeId

LOG = logging.getLogger(__name__)


class YamlGradeStore(InMemoryGradeStore):
    """In-memory store that writes itself back to YAML after every change.

    Writes go to a temporary file in the same directory which then replaces the
    original, so a crash never leaves a half-written file behind.
    """

    def __init__(self, yaml_path: Path):
        super().__init__()
        self.yaml_path = Path(yaml_path)
        self.restore(self._load_yaml())

    def _load_yaml(self) -> Dict:
        """Load store contents from YAML."""
        if self.yaml_path.exists():
            with open(self.yaml_path, 'r', encoding='utf-8') as f:
                data = yaml.safe_load(f) or {}
            if not isinstance(data, dict):
                raise TypeError(f"Grade store file {self.yaml_path} must contain a mapping")
            LOG.info("Loaded grade store from %s", self.yaml_path)
            return data
        LOG.info("No grade store at %s, starting empty", self.yaml_path)
        return {}

    def save(self):
        """Save data back to the YAML file."""
        directory = self.yaml_path.parent
        directory.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=f".{self.yaml_path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                yaml.safe_dump(self.snapshot(), f, default_flow_style=False, sort_keys=False)
            os.replace(tmp_path, self.yaml_path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise
        LOG.debug("Saved grade store to %s", self.yaml_path)

    def add_participant(self, participant: Participant, groups: Iterable[ScopeId] = ()):
        super().add_participant(participant, groups)
        self.save()

    def get_grade_item(self, area: GradingArea, graded_user: ParticipantId, grader: ParticipantId) -> GradeItem:
        known = len(self.grade_items)
        item = super().get_grade_item(area, graded_user, grader)
        if len(self.grade_items) != known:
            self.save()
        return item

    def submit_grade(
        self,
        area: GradingArea,
        graded_user: ParticipantId,
        grader: ParticipantId,
        score: Optional[float],
        comment: str = ""
    ) -> Grade:
        grade = super().submit_grade(area, graded_user, grader, score, comment)
        self.save()
        return grade

    def upsert_aggregated_grade(self, student_id: ParticipantId, timing: Timing, record: AggregatedGrade):
        super().upsert_aggregated_grade(student_id, timing, record)
        self.save()

    def upsert_peer_graph(self, scope_id: ScopeId, graph: PeerGraph) -> List[int]:
        removed = super().upsert_peer_graph(scope_id, graph)
        self.save()
        return removed

    def push_gradebook_score(self, student_id: ParticipantId, raw_score: float):
        super().push_gradebook_score(student_id, raw_score)
        self.save()

    def mark_activity_complete(self, student_id: ParticipantId):
        super().mark_activity_complete(student_id)
        self.save()

    def save_rubric_filling(self, attempt_ref: AttemptRef, filling: RubricFilling):
        super().save_rubric_filling(attempt_ref, filling)
        self.save()

    def mark_training_passed(self, student_id: ParticipantId):
        super().mark_training_passed(student_id)
        self.save()
