"""Tests for the execution journal, cancellation tokens and condition evaluators."""

import re
from datetime import datetime, timedelta, timezone

import pytest

from flowrunner.core.conditions import ExpressionConditionEvaluator, RandomConditionEvaluator
from flowrunner.core.exceptions import ExecutionCancelledError, ExecutionEngineError
from flowrunner.core.journal import CancellationToken, ExecutionJournal, generate_execution_id
from flowrunner.models.core import ExecutionStatus, LogStatus


class TestExecutionJournal:
    """Test cases for ExecutionJournal."""

    def test_execution_id_format(self):
        started_at = datetime(2024, 1, 1, tzinfo=timezone.utc)

        execution_id = generate_execution_id(started_at)

        assert re.fullmatch(r"1704067200000-[0-9a-f]{6}", execution_id)

    def test_execution_ids_are_distinct(self):
        started_at = datetime.now(timezone.utc)

        assert len({generate_execution_id(started_at) for _ in range(50)}) == 50

    def test_entries_keep_append_order(self):
        journal = ExecutionJournal()

        journal.append("start", LogStatus.SUCCESS, "started")
        journal.append("1", LogStatus.PENDING, "working")
        journal.append("1", LogStatus.SUCCESS, "done")

        assert [entry.message for entry in journal.entries] == ["started", "working", "done"]
        assert len(journal) == 3

    def test_timestamps_never_go_backwards(self):
        journal = ExecutionJournal(started_at=datetime.now(timezone.utc) + timedelta(hours=1))

        first = journal.append("start", LogStatus.SUCCESS, "started")
        second = journal.append("1", LogStatus.SUCCESS, "done")

        assert first.timestamp >= journal.started_at
        assert second.timestamp >= first.timestamp

    def test_seal_produces_immutable_execution(self):
        started_at = datetime.now(timezone.utc)
        journal = ExecutionJournal(started_at=started_at, execution_id="1-abcdef")
        journal.append("start", LogStatus.SUCCESS, "started")

        execution = journal.seal(ExecutionStatus.SUCCESS)
        journal.append("late", LogStatus.SUCCESS, "after seal")

        assert journal.is_sealed
        assert execution.id == "1-abcdef"
        assert execution.timestamp == started_at
        assert len(execution.logs) == 1

    def test_seal_twice_raises(self):
        journal = ExecutionJournal()
        journal.seal(ExecutionStatus.FAILED)

        with pytest.raises(ExecutionEngineError):
            journal.seal(ExecutionStatus.SUCCESS)


class TestCancellationToken:
    """Test cases for CancellationToken."""

    def test_not_cancelled_by_default(self):
        token = CancellationToken()

        token.raise_if_cancelled()

        assert not token.cancelled
        assert token.reason is None
        assert not token.wait(0.01)

    def test_cancel_keeps_first_reason(self):
        token = CancellationToken()

        token.cancel("user pressed stop")
        token.cancel("second request")

        assert token.cancelled
        assert token.reason == "user pressed stop"
        assert token.wait(0.01)

    def test_raise_if_cancelled(self):
        token = CancellationToken()
        token.cancel("stop")

        with pytest.raises(ExecutionCancelledError) as exc_info:
            token.raise_if_cancelled(run_id="run-1")

        assert "stop" in exc_info.value.message
        assert exc_info.value.context["run_id"] == "run-1"


class TestConditionEvaluators:
    """Test cases for decision condition evaluation."""

    def test_seeded_random_is_reproducible(self):
        first = RandomConditionEvaluator(seed=42)
        second = RandomConditionEvaluator(seed=42)

        assert [first.evaluate("x", {}) for _ in range(20)] == [second.evaluate("x", {}) for _ in range(20)]

    def test_random_produces_both_outcomes(self):
        evaluator = RandomConditionEvaluator(seed=7)

        assert {evaluator.evaluate("x", {}) for _ in range(100)} == {True, False}

    def test_expression_uses_run_variables(self):
        evaluator = ExpressionConditionEvaluator()
        variables = {"outcomes": {"1": "done", "2": "done"}, "branches": {"d": True}}

        assert evaluator.evaluate("len(outcomes) == 2", variables) is True
        assert evaluator.evaluate("branches['d'] and false", variables) is False

    def test_expression_errors_evaluate_to_false(self):
        evaluator = ExpressionConditionEvaluator()

        assert evaluator.evaluate("undefined_name > 1", {}) is False
        assert evaluator.evaluate("", {}) is False

    def test_expression_has_no_builtins(self):
        evaluator = ExpressionConditionEvaluator()

        assert evaluator.evaluate("__import__('os')", {}) is False

    @pytest.mark.parametrize("condition", [
        "[c for c in ().__class__.__base__.__subclasses__() if c.__name__ == 'Popen'] != []",
        "().__class__",
        "outcomes.keys()",
        "(lambda: 1)()",
        "getattr(outcomes, 'keys')",
        "len(outcomes, key=1)",
    ])
    def test_expression_rejects_disallowed_syntax(self, condition):
        evaluator = ExpressionConditionEvaluator()

        assert evaluator.evaluate(condition, {"outcomes": {"1": "done"}}) is False

    def test_expression_allows_membership_and_arithmetic(self):
        evaluator = ExpressionConditionEvaluator()
        variables = {"outcomes": {"1": "done"}, "branches": {}}

        assert evaluator.evaluate("'1' in outcomes and len(outcomes) - 1 == 0", variables) is True
        assert evaluator.evaluate("outcomes['1'] in ('done', 'skipped')", variables) is True
        assert evaluator.evaluate("not branches", variables) is True
