"""Tests for the result processor."""

import pytest

from actionspine.core.errors import ResultStrategyError
from actionspine.execution.models import ExecutionMode, ResultOptions, RunContext
from actionspine.execution.results import process_results


def make_context(results):
    context = RunContext(action="save", payload=None, handlers=(), execution_mode=ExecutionMode.SEQUENTIAL)
    context.results.extend(results)
    return context


class TestStrategies:
    @pytest.mark.parametrize(
        "strategy, expected",
        [
            ("first", 1),
            ("last", 3),
            ("all", [1, 2, 3]),
            ("merge", 3),
        ],
    )
    def test_builtin(self, strategy, expected):
        options = ResultOptions(collect=True, strategy=strategy).validate()
        assert process_results(make_context([1, 2, 3]), options) == expected

    def test_merge_with_merger(self):
        options = ResultOptions(collect=True, strategy="merge", merger=sum).validate()
        assert process_results(make_context([1, 2, 3]), options) == 6

    def test_custom(self):
        options = ResultOptions(collect=True, strategy="custom", merger=lambda r: r[::-1]).validate()
        assert process_results(make_context([1, 2]), options) == [2, 1]

    def test_custom_without_merger_raises(self):
        with pytest.raises(ResultStrategyError):
            process_results(make_context([1]), ResultOptions(collect=True, strategy="custom"))

    def test_all_is_a_copy(self):
        context = make_context([1])
        value = process_results(context, ResultOptions(collect=True, strategy="all"))
        value.append(2)
        assert context.results == [1]


class TestGating:
    def test_no_options(self):
        assert process_results(make_context([1]), None) is None

    def test_collect_false(self):
        assert process_results(make_context([1]), ResultOptions(strategy="first")) is None

    def test_no_strategy(self):
        assert process_results(make_context([1]), ResultOptions(collect=True)) is None

    def test_empty_results(self):
        assert process_results(make_context([]), ResultOptions(collect=True, strategy="all")) is None

    def test_max_results(self):
        options = ResultOptions(collect=True, strategy="all", max_results=2)
        assert process_results(make_context([1, 2, 3]), options) == [1, 2]

    def test_max_results_zero(self):
        options = ResultOptions(collect=True, strategy="first", max_results=0)
        assert process_results(make_context([1]), options) is None


class TestTermination:
    def test_return_value_wins(self):
        context = make_context([1, 2])
        context.mark_terminated("final")
        options = ResultOptions(collect=True, strategy="all")
        assert process_results(context, options) == "final"

    def test_return_value_without_options(self):
        context = make_context([])
        context.mark_terminated(None)
        assert process_results(context, None) is None

    def test_abort_after_return_falls_back_to_strategy(self):
        context = make_context([1, 2])
        context.mark_terminated("final")
        context.mark_aborted("stop")
        options = ResultOptions(collect=True, strategy="last")
        assert process_results(context, options) == 2
