"""Tests for the videoassess-grading command line."""

import logging
import tempfile
from pathlib import Path

import pytest
import yaml

from videoassess.tools.peer_grading.cli import (
    DEFAULT_LOG_FORMAT,
    build_parser,
    log_settings,
    main,
    parse_id,
    parse_levels,
)

TEACHER_ID = 100


@pytest.fixture(autouse=True)
def restore_root_level():
    root = logging.getLogger()
    level = root.level
    yield
    root.setLevel(level)


@pytest.fixture
def workdir():
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


def write_yaml(path, data):
    with open(path, 'w', encoding='utf-8') as f:
        yaml.safe_dump(data, f)
    return path


def read_yaml(path):
    with open(path, 'r', encoding='utf-8') as f:
        return yaml.safe_load(f)


@pytest.fixture
def config_path(workdir):
    return write_yaml(workdir / "config.yaml", {
        "grading": {
            "weights": {"teacher": 100, "self": 0, "peer": 0, "class": 0},
            "peer_count": 2,
            "accepted_difference": 20,
        }
    })


@pytest.fixture
def data_path(workdir):
    return write_yaml(workdir / "course.yaml", {
        "participants": [
            {"id": TEACHER_ID, "role": "teacher"},
            {"id": 1, "role": "student"},
            {"id": 2, "role": "student"},
            {"id": 3, "role": "student"},
            {"id": 4, "role": "student"},
        ],
        "peer_graphs": [{"scope": 0, "edges": [[2, 1]]}],
    })


def run(data_path, config_path, *args):
    return main(["--data", str(data_path), "--config", str(config_path), *args])


class TestParser:
    """Argument parsing."""

    def test_parse_id(self):
        assert parse_id("12") == 12
        assert parse_id("-3") == -3
        assert parse_id("alice") == "alice"

    def test_command_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["--data", "x.yaml"])

    def test_repeatable_config(self):
        args = build_parser().parse_args(["-d", "x.yaml", "-c", "a.yaml", "-c", "b.yaml", "regrade"])
        assert args.config == ["a.yaml", "b.yaml"]


class TestAssignPeers:
    """assign-peers subcommand."""

    def test_assigns_students_only(self, data_path, config_path):
        assert run(data_path, config_path, "assign-peers", "--seed", "5") == 0

        data = read_yaml(data_path)
        edges = data["peer_graphs"][0]["edges"]
        reviewers = [reviewer for reviewer, _ in edges]
        assert sorted(set(reviewers)) == [1, 2, 3, 4]
        assert all(reviewers.count(r) == 2 for r in (1, 2, 3, 4))
        assert all(TEACHER_ID not in edge for edge in edges)
        assert len(data["aggregates"]) == 4

    def test_peer_count_override(self, data_path, config_path):
        run(data_path, config_path, "assign-peers", "--peer-count", "unlimited")
        edges = read_yaml(data_path)["peer_graphs"][0]["edges"]
        assert len(edges) == 4 * 3


class TestPeerMode:
    """assign-peers --peer-mode with grouped students."""

    @pytest.fixture
    def grouped_path(self, workdir):
        return write_yaml(workdir / "grouped.yaml", {
            "participants": [
                {"id": TEACHER_ID, "role": "teacher", "groups": ["a", "b"]},
                {"id": 1, "role": "student", "groups": ["a"]},
                {"id": 2, "role": "student", "groups": ["a"]},
                {"id": 3, "role": "student", "groups": ["b"]},
                {"id": 4, "role": "student", "groups": ["b"]},
            ],
            "peer_graphs": [{"scope": 0, "edges": [[1, 3]]}],
        })

    def edge_counts(self, path):
        return {g["scope"]: len(g["edges"]) for g in read_yaml(path)["peer_graphs"]}

    def test_course_mode(self, grouped_path, config_path):
        assert run(grouped_path, config_path, "assign-peers", "-n", "unlimited", "--peer-mode", "course") == 0
        assert self.edge_counts(grouped_path) == {0: 12}

    def test_group_mode_clears_course_graph(self, grouped_path, config_path):
        run(grouped_path, config_path, "assign-peers", "-n", "unlimited", "--peer-mode", "group")
        assert self.edge_counts(grouped_path) == {0: 0, "a": 2, "b": 2}

    def test_inferred_mode_keeps_course_graph(self, grouped_path, config_path):
        run(grouped_path, config_path, "assign-peers", "-n", "unlimited")
        assert self.edge_counts(grouped_path) == {0: 1, "a": 2, "b": 2}

    def test_mode_from_config(self, grouped_path, workdir):
        config = write_yaml(workdir / "course_mode.yaml", {
            "grading": {"weights": {"teacher": 100}, "peer_count": "unlimited", "peer_mode": "course"}
        })
        run(grouped_path, config, "assign-peers")
        assert self.edge_counts(grouped_path) == {0: 12}

    def test_cross_group_grade_is_peer_in_course_mode(self, grouped_path, config_path):
        run(grouped_path, config_path, "assign-peers", "-n", "unlimited", "--peer-mode", "course")
        run(grouped_path, config_path, "grade", "--student", "3", "--grader", "1", "--score", "70")
        assert read_yaml(grouped_path)["grade_items"][0]["area"] == "beforepeer"


class TestGrade:
    """grade subcommand."""

    def test_teacher_grade_resolved(self, data_path, config_path, capsys):
        assert run(data_path, config_path, "grade", "--student", "1", "--grader", str(TEACHER_ID), "--score", "80") == 0

        data = read_yaml(data_path)
        assert data["grade_items"][0]["area"] == "beforeteacher"
        assert data["gradebook"] == [{"student_id": 1, "score": 80}]
        assert "weighted_total: 80" in capsys.readouterr().out

    def test_peer_grade_resolved(self, data_path, config_path):
        run(data_path, config_path, "grade", "--student", "1", "--grader", "2", "--score", "60")
        assert read_yaml(data_path)["grade_items"][0]["area"] == "beforepeer"

    def test_class_grade_resolved(self, data_path, config_path):
        run(data_path, config_path, "grade", "--student", "1", "--grader", "3", "--score", "60")
        assert read_yaml(data_path)["grade_items"][0]["area"] == "beforeclass"

    def test_explicit_rater_type(self, data_path, config_path):
        run(data_path, config_path, "grade", "--student", "1", "--grader", "3", "--score", "60",
            "--rater-type", "self", "--timing", "after")
        assert read_yaml(data_path)["grade_items"][0]["area"] == "afterself"

    def test_out_of_range_score(self, data_path, config_path):
        with pytest.raises(SystemExit) as exc_info:
            run(data_path, config_path, "grade", "--student", "1", "--grader", "3", "--score", "150")
        assert exc_info.value.code == 1


class TestRegrade:
    """regrade subcommand."""

    def test_regrade_writes_aggregates(self, data_path, config_path, capsys):
        data = read_yaml(data_path)
        data["grade_items"] = [{"id": 1, "area": "beforeteacher", "graded_user": 3, "grader": TEACHER_ID}]
        data["grades"] = [{"item_id": 1, "score": 64, "comment": ""}]
        write_yaml(data_path, data)

        assert run(data_path, config_path, "regrade") == 0

        aggregates = {a["student_id"]: a for a in read_yaml(data_path)["aggregates"]}
        assert set(aggregates) == {1, 2, 3, 4}
        assert aggregates[3]["weighted_total"] == 64
        assert "Aggregated grades" in capsys.readouterr().out


class TestTrainingResult:
    """training-result subcommand."""

    @pytest.fixture
    def rubric_path(self, workdir):
        return write_yaml(workdir / "rubric.yaml", {
            "criteria": [{
                "id": "voice",
                "description": "Voice",
                "levels": [
                    {"id": "low", "score": 0, "definition": "Inaudible"},
                    {"id": "mid", "score": 5, "definition": "Audible"},
                    {"id": "high", "score": 10, "definition": "Clear"},
                ],
            }]
        })

    def add_fillings(self, data_path, trainee_level):
        data = read_yaml(data_path)
        data["fillings"] = [
            {"attempt": "attempt-1", "history": [[["voice", trainee_level]]]},
            {"attempt": "reference", "history": [[["voice", "high"]]]},
        ]
        write_yaml(data_path, data)

    def test_pass_recorded(self, data_path, config_path, rubric_path, capsys):
        self.add_fillings(data_path, "high")

        assert run(data_path, config_path, "training-result", "--trainee", "1",
                   "--attempt", "attempt-1", "--teacher", "reference", "--rubric", str(rubric_path)) == 0

        assert read_yaml(data_path)["training_passed"] == [1]
        assert "PASSED" in capsys.readouterr().out

    def test_fail_not_recorded(self, data_path, config_path, rubric_path, capsys):
        self.add_fillings(data_path, "mid")

        run(data_path, config_path, "training-result", "--trainee", "1",
            "--attempt", "attempt-1", "--teacher", "reference", "--rubric", str(rubric_path))

        assert not read_yaml(data_path).get("training_passed")
        assert "NOT PASSED" in capsys.readouterr().out

    def test_fillings_submitted_from_cli(self, data_path, config_path, rubric_path):
        """submit-filling stores both sides of the comparison."""
        assert run(data_path, config_path, "submit-filling", "--attempt", "attempt-1", "--level", "voice=high") == 0
        run(data_path, config_path, "submit-filling", "--attempt", "reference", "-l", "voice=mid")
        run(data_path, config_path, "submit-filling", "--attempt", "reference", "-l", "voice=high")

        run(data_path, config_path, "training-result", "--trainee", "1",
            "--attempt", "attempt-1", "--teacher", "reference", "--rubric", str(rubric_path))

        data = read_yaml(data_path)
        fillings = {f["attempt"]: f["history"] for f in data["fillings"]}
        assert fillings["reference"] == [[["voice", "mid"]], [["voice", "high"]]]
        assert data["training_passed"] == [1]

    def test_missing_rubric_file(self, data_path, config_path, workdir):
        with pytest.raises(SystemExit) as exc_info:
            run(data_path, config_path, "training-result", "--trainee", "1",
                "--attempt", "attempt-1", "--teacher", "reference", "--rubric", str(workdir / "nope.yaml"))
        assert exc_info.value.code == 1


class TestSubmitFilling:
    """submit-filling level parsing."""

    def test_parse_levels(self):
        assert parse_levels(["voice=high", "3=7"]) == {"voice": "high", 3: 7}

    def test_later_pair_wins(self):
        assert parse_levels(["voice=low", "voice=mid"]) == {"voice": "mid"}

    @pytest.mark.parametrize("pair", ["voice", "=high", "voice="])
    def test_malformed_pair(self, pair):
        with pytest.raises(ValueError, match="CRITERION=LEVEL"):
            parse_levels([pair])

    def test_malformed_pair_exits(self, data_path, config_path):
        with pytest.raises(SystemExit) as exc_info:
            run(data_path, config_path, "submit-filling", "--attempt", "a", "--level", "voice")
        assert exc_info.value.code == 1
        assert "fillings" not in read_yaml(data_path)

    def test_level_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["-d", "x.yaml", "submit-filling", "--attempt", "a"])


class TestLogging:
    """Logging level and format come from the logging config section."""

    def test_defaults(self):
        assert log_settings({}) == ("INFO", DEFAULT_LOG_FORMAT)

    def test_from_config(self):
        config = {"logging": {"level": "warning", "format": "%(levelname)s %(message)s"}}
        assert log_settings(config) == ("WARNING", "%(levelname)s %(message)s")

    def test_verbose_forces_debug(self):
        assert log_settings({"logging": {"level": "ERROR"}}, verbose=True)[0] == "DEBUG"

    def test_unknown_level(self):
        with pytest.raises(ValueError, match="Unknown logging level: LOUD"):
            log_settings({"logging": {"level": "loud"}})

    def test_cli_applies_level(self, data_path, workdir):
        config = write_yaml(workdir / "quiet.yaml", {
            "logging": {"level": "ERROR"},
            "grading": {"weights": {"teacher": 100}},
        })
        run(data_path, config, "regrade")
        assert logging.getLogger().level == logging.ERROR

    def test_cli_verbose(self, data_path, config_path):
        main(["--data", str(data_path), "--config", str(config_path), "--verbose", "regrade"])
        assert logging.getLogger().level == logging.DEBUG

    def test_cli_bad_level_exits(self, data_path, workdir):
        config = write_yaml(workdir / "bad_level.yaml", {"logging": {"level": "loud"}, "grading": {}})
        with pytest.raises(SystemExit) as exc_info:
            run(data_path, config, "regrade")
        assert exc_info.value.code == 1


class TestConfigErrors:
    """Configuration failures exit with status 1."""

    def test_invalid_policy(self, data_path, workdir):
        bad = write_yaml(workdir / "bad.yaml", {"grading": {"peer_count": -4}})
        with pytest.raises(SystemExit) as exc_info:
            run(data_path, bad, "regrade")
        assert exc_info.value.code == 1

    def test_missing_config(self, data_path, workdir):
        with pytest.raises(SystemExit) as exc_info:
            run(data_path, workdir / "missing.yaml", "regrade")
        assert exc_info.value.code == 1
