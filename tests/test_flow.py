"""
Tests for workflow flow-adherence checking
"""

import pytest
import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from core.errors import InvalidRequest
from evaluation.flow import FlowTrace, check_flow, lcs_length


class TestLcs:
    @pytest.mark.parametrize(
        "a,b,expected",
        [
            ([], ["a"], 0),
            (["a", "b", "c"], ["a", "b", "c"], 3),
            (["a", "b", "c"], ["a", "c"], 2),
            (["a", "b", "c"], ["c", "b", "a"], 1),
            (["a", "b", "c", "d"], ["x", "b", "y", "d"], 2),
        ],
    )
    def test_lengths(self, a, b, expected):
        assert lcs_length(a, b) == expected


class TestCheckFlow:
    def test_exact_match(self):
        trace = check_flow(["a", "b", "c"], ["a", "b", "c"], task_id="t1")
        assert trace.adherence_score == 1.0
        assert trace.deviations == 0
        assert trace.missed_steps == []
        assert trace.extra_steps == []
        assert trace.sequence_correct is True
        assert trace.task_id == "t1"

    def test_missed_step(self):
        trace = check_flow(["a", "b", "c"], ["a", "c"])
        assert trace.missed_steps == ["b"]
        assert trace.adherence_score == pytest.approx(2 / 3)
        assert trace.deviations == 1
        assert trace.sequence_correct is False

    def test_inserted_step_does_not_shift_alignment(self):
        trace = check_flow(["a", "b", "c"], ["a", "x", "b", "c"])
        assert trace.adherence_score == 1.0
        assert trace.extra_steps == ["x"]
        assert trace.deviations == 1

    def test_reordered_steps(self):
        trace = check_flow(["a", "b", "c"], ["c", "b", "a"])
        assert trace.missed_steps == []
        assert trace.extra_steps == []
        assert trace.adherence_score == pytest.approx(1 / 3)
        assert trace.deviations == 4

    def test_duplicates_reported_once(self):
        trace = check_flow(["a"], ["a", "z", "z", "y"])
        assert trace.extra_steps == ["z", "y"]

    def test_empty_expected_flow(self):
        trace = check_flow([], ["a", "b"])
        assert trace.adherence_score == 1.0
        assert trace.extra_steps == ["a", "b"]
        assert trace.deviations == 2

    def test_both_empty(self):
        trace = check_flow([], [])
        assert trace.adherence_score == 1.0
        assert trace.sequence_correct is True

    def test_nothing_done(self):
        trace = check_flow(["a", "b"], [])
        assert trace.adherence_score == 0.0
        assert trace.missed_steps == ["a", "b"]

    def test_tuples_accepted(self):
        assert check_flow(("a", "b"), ("a", "b")).expected_flow == ["a", "b"]

    @pytest.mark.parametrize(
        "expected,actual,field",
        [
            ("a,b", ["a"], "expected_flow"),
            (["a"], None, "actual_flow"),
            (["a", 1], ["a"], "expected_flow"),
        ],
    )
    def test_invalid_input(self, expected, actual, field):
        with pytest.raises(InvalidRequest) as exc:
            check_flow(expected, actual)
        assert exc.value.field == field

    def test_round_trip_dict(self):
        trace = check_flow(["a", "b"], ["b"], task_id="t")
        assert FlowTrace.from_dict(trace.to_dict()) == trace
