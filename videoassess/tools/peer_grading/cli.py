#!/usr/bin/env python3
"""Command-line interface for peer assignment, regrading and training results."""

import argparse
import logging
import random
import sys
from pathlib import Path

import yaml
from rich.console import Console
from rich.markdown import Markdown
from rich.table import Table

from videoassess.libs.config_loader import ConfigType, get_config, load_all_configs, load_configs
from .aggregator import GradeAggregator, students_to_regrade
from .assignment import assign_random_peers, peer_scopes, resolve_rater_type
from .models import GradingArea, PeerMode, RaterType, RubricDefinition, RubricFilling, Timing
from .policy import GradingPolicy, normalize_peer_count
from .training import TrainingEvaluator
from .yaml_store import YamlGradeStore

DEFAULT_LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

LOG = logging.getLogger(__name__)

console = Console()


def _setting(config: ConfigType, key: str, default):
    try:
        return get_config(key, config)
    except KeyError:
        return default


def log_settings(config: ConfigType, verbose: bool = False):
    """Level and format from the logging section; --verbose forces DEBUG."""
    level = 'DEBUG' if verbose else str(_setting(config, 'logging.level', 'INFO')).upper()
    if not isinstance(logging.getLevelName(level), int):
        raise ValueError(f"Unknown logging level: {level}")
    return level, _setting(config, 'logging.format', DEFAULT_LOG_FORMAT)


def configure_logging(config: ConfigType, verbose: bool = False):
    level, fmt = log_settings(config, verbose)
    logging.basicConfig(level=level, format=fmt)
    logging.getLogger().setLevel(level)


def parse_id(value: str):
    """Participant ids are ints when they look like ints, strings otherwise."""
    return int(value) if value.lstrip('-').isdigit() else value


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='Peer assignment and grade aggregation for video assessments',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Randomize peers for every group, two reviewees each
  videoassess-grading --data course.yaml assign-peers --peer-count 2

  # Randomize across the whole course even when groups exist
  videoassess-grading --data course.yaml assign-peers --peer-mode course

  # Record a peer grade and re-aggregate the student
  videoassess-grading --data course.yaml grade --student 12 --grader 7 --score 85

  # Recompute every student's aggregated grades
  videoassess-grading --data course.yaml regrade

  # Store rubric fillings (criterion=level, repeatable) for an attempt
  videoassess-grading --data course.yaml submit-filling --attempt attempt-7 \\
      --level voice=high --level framing=mid

  # Check a training attempt against the teacher's reference
  videoassess-grading --data course.yaml training-result --trainee 7 \\
      --attempt attempt-7 --teacher reference --rubric rubric.yaml
        """
    )
    parser.add_argument(
        '--data', '-d',
        type=Path,
        required=True,
        help='YAML file holding participants, grades and peer graphs'
    )
    parser.add_argument(
        '--config', '-c',
        type=str,
        action='append',
        default=None,
        help='Config file to use instead of config/*.yaml (repeatable, later files win)'
    )
    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Enable verbose logging'
    )

    subparsers = parser.add_subparsers(dest='command', required=True)

    assign = subparsers.add_parser('assign-peers', help='Re-randomize peer assignments')
    assign.add_argument('--peer-count', '-n', default=None, help="Peers per student or 'unlimited' (overrides config)")
    assign.add_argument('--seed', type=int, default=None, help='Random seed for reproducible assignments')
    assign.add_argument(
        '--peer-mode',
        choices=[m.value for m in PeerMode],
        default=None,
        help='Draw peers course-wide or within groups (overrides config; default: groups when any exist)'
    )

    grade = subparsers.add_parser('grade', help='Record a grade and re-aggregate the student')
    grade.add_argument('--student', required=True, help='Graded participant id')
    grade.add_argument('--grader', required=True, help='Grading participant id')
    grade.add_argument('--score', type=float, required=True, help='Score 0-100, or -1 for ungraded')
    grade.add_argument('--comment', default='', help='Submission comment')
    grade.add_argument('--timing', choices=[t.value for t in Timing], default=Timing.BEFORE.value)
    grade.add_argument(
        '--rater-type',
        choices=[r.value for r in RaterType],
        default=None,
        help='Rater type (default: resolved from roles and peer assignments)'
    )

    subparsers.add_parser('regrade', help='Recompute aggregated grades for all students')

    filling = subparsers.add_parser('submit-filling', help='Store a rubric filling for a training attempt or reference')
    filling.add_argument('--attempt', required=True, help='Reference of the attempt the filling belongs to')
    filling.add_argument(
        '--level', '-l',
        action='append',
        required=True,
        metavar='CRITERION=LEVEL',
        help='Selected level for one criterion (repeatable)'
    )

    training = subparsers.add_parser('training-result', help='Compare a training attempt with the reference')
    training.add_argument('--trainee', required=True, help='Trainee participant id')
    training.add_argument('--attempt', required=True, help='Reference of the trainee attempt')
    training.add_argument('--teacher', required=True, help='Reference of the teacher filling')
    training.add_argument('--rubric', type=Path, required=True, help='Rubric definition YAML file')

    return parser


def _load_rubric(path: Path) -> RubricDefinition:
    with open(path, 'r', encoding='utf-8') as f:
        data = yaml.safe_load(f) or {}
    if isinstance(data, list):
        data = {'criteria': data}
    return RubricDefinition(**data)


def parse_levels(pairs) -> dict:
    levels = {}
    for pair in pairs:
        criterion, sep, level = pair.partition('=')
        if not sep or not criterion or not level:
            raise ValueError(f"Expected CRITERION=LEVEL, got '{pair}'")
        levels[parse_id(criterion)] = parse_id(level)
    return levels


def run_assign_peers(args, store: YamlGradeStore, policy: GradingPolicy) -> int:
    peer_count = normalize_peer_count(args.peer_count) if args.peer_count is not None else policy.peer_count
    rng = random.Random(args.seed) if args.seed is not None else None
    peer_mode = PeerMode(args.peer_mode) if args.peer_mode else policy.peer_mode
    graphs = assign_random_peers(
        store, peer_count, scopes=peer_scopes(store, peer_mode), rng=rng, exclusive=peer_mode is not None
    )
    for scope_id, graph in graphs.items():
        table = Table(title=f"Peer assignments, scope {scope_id}")
        table.add_column("Reviewer", style="cyan")
        table.add_column("Reviews")
        for reviewer, reviewees in graph.assignments.items():
            table.add_row(str(reviewer), ", ".join(str(r) for r in reviewees) or "-")
        console.print(table)
    aggregator = GradeAggregator(store, policy)
    aggregator.regrade(students_to_regrade(store), show_progress=True)
    return 0


def run_grade(args, store: YamlGradeStore, policy: GradingPolicy) -> int:
    student = parse_id(args.student)
    grader = parse_id(args.grader)
    if args.rater_type:
        rater_type = RaterType(args.rater_type)
    else:
        participants = {p.id: p for p in store.fetch_participants()}
        grader_is_teacher = grader in participants and participants[grader].is_teacher
        rater_type = resolve_rater_type(grader, student, grader_is_teacher, store.peer_graphs().values())

    area = GradingArea(timing=Timing(args.timing), rater_type=rater_type)
    results = GradeAggregator(store, policy).record_grade(area, student, grader, args.score, args.comment)
    for timing, record in results.items():
        console.print(
            yaml.safe_dump({timing.value: record.to_yaml_dict()}, default_flow_style=False, sort_keys=False),
            markup=False
        )
    return 0


def run_regrade(args, store: YamlGradeStore, policy: GradingPolicy) -> int:
    results = GradeAggregator(store, policy).regrade(students_to_regrade(store), show_progress=True)
    table = Table(title="Aggregated grades")
    table.add_column("Student", style="cyan")
    for timing in policy.timings:
        table.add_column(f"{timing.value} total", justify="right")
        table.add_column(f"{timing.value} final", justify="right")
    for student_id, records in results.items():
        row = [str(student_id)]
        for timing in policy.timings:
            record = records[timing]
            row.append("-" if record.weighted_total is None else str(record.weighted_total))
            row.append(f"{record.final_score:g}")
        table.add_row(*row)
    console.print(table)
    return 0


def run_submit_filling(args, store: YamlGradeStore, policy: GradingPolicy) -> int:
    filling = RubricFilling(levels=parse_levels(args.level))
    store.save_rubric_filling(args.attempt, filling)
    console.print(f"Stored filling for {args.attempt} ({len(filling.levels)} criteria)")
    return 0


def run_training_result(args, store: YamlGradeStore, policy: GradingPolicy) -> int:
    definition = _load_rubric(args.rubric)
    evaluator = TrainingEvaluator(store, policy)
    result = evaluator.evaluate(parse_id(args.trainee), args.attempt, args.teacher, definition)
    console.print(Markdown(result.rendered_table))
    if result.passed:
        console.print("\n[green]PASSED[/green]")
    else:
        console.print(f"\n[red]NOT PASSED[/red] (accepted difference {policy.accepted_difference:g}%)")
    return 0


COMMANDS = {
    'assign-peers': run_assign_peers,
    'grade': run_grade,
    'regrade': run_regrade,
    'submit-filling': run_submit_filling,
    'training-result': run_training_result,
}


def main(argv=None):
    """Main entry point for videoassess-grading command."""
    args = build_parser().parse_args(argv)

    try:
        config = load_configs(*args.config) if args.config else load_all_configs()
        configure_logging(config, args.verbose)
        policy = GradingPolicy.from_config(config)
    except Exception as e:
        LOG.error(f"Failed to load configuration: {e}")
        sys.exit(1)

    if args.command == 'training-result' and not args.rubric.is_file():
        LOG.error(f"Rubric file does not exist: {args.rubric}")
        sys.exit(1)

    try:
        store = YamlGradeStore(args.data)
        code = COMMANDS[args.command](args, store, policy)
    except (ValueError, TypeError, KeyError) as e:
        LOG.error(f"{args.command} failed: {e}")
        sys.exit(1)
    return code


if __name__ == '__main__':
    sys.exit(main())
