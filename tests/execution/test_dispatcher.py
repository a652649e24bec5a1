"""Tests for ActionRegister — the public dispatch facade."""

import asyncio

import pytest

from actionspine.core.errors import GuardRejectedError, ResultStrategyError, UnknownExecutionModeError
from actionspine.core.settings import ActionSpineSettings
from actionspine.execution.cancellation import CancellationToken
from actionspine.execution.dispatcher import ActionRegister
from actionspine.execution.events import EventType
from actionspine.execution.models import (
    DispatchOptions,
    ExecutionMode,
    HandlerConfig,
    HandlerFilter,
    ResultOptions,
)

COLLECT_ALL = {"result": {"collect": True, "strategy": "all"}}


class TestConstruction:
    def test_defaults_from_settings(self, settings):
        register = ActionRegister(settings=settings)
        assert register.name == "ActionRegister"
        assert register.get_execution_mode() is ExecutionMode.SEQUENTIAL

    def test_explicit_values(self, settings):
        register = ActionRegister(name="checkout", default_execution_mode="race", settings=settings)
        assert register.name == "checkout"
        assert register.get_execution_mode() is ExecutionMode.RACE

    def test_env_driven_default_mode(self, monkeypatch):
        monkeypatch.setenv("ACTIONSPINE_DEFAULT_EXECUTION_MODE", "parallel")
        register = ActionRegister(settings=ActionSpineSettings(_env_file=None))
        assert register.get_execution_mode() is ExecutionMode.PARALLEL

    def test_unknown_default_mode(self, settings):
        with pytest.raises(UnknownExecutionModeError):
            ActionRegister(default_execution_mode="turbo", settings=settings)


class TestDispatchWithResult:
    """Report shape for the common paths."""

    @pytest.mark.asyncio
    async def test_zero_handlers_is_trivial_success(self, register):
        report = await register.dispatch_with_result("nothing", {"x": 1})
        assert report.success is True
        assert report.aborted is False
        assert report.results == []
        assert report.execution.handlers_executed == 0
        assert report.execution.handlers_skipped == 0

    @pytest.mark.asyncio
    async def test_raising_condition_counts_as_failed_not_executed(self, register):
        def bad(payload):
            raise ValueError("predicate")

        register.register("save", lambda p, c: "never", id="guarded", condition=bad)
        report = await register.dispatch_with_result("save")
        assert report.handlers[0].status == "failed"
        assert report.handlers[0].executed is False
        assert report.execution.handlers_executed == 0
        assert report.execution.handlers_failed == 1

    @pytest.mark.asyncio
    async def test_counts_and_outcomes(self, register):
        def boom(payload, controller):
            raise ValueError("boom")

        register.register("save", lambda p, c: "a", id="a", priority=3)
        register.register("save", boom, id="b", priority=2)
        register.register("save", lambda p, c: "c", id="c", priority=1, condition=lambda p: False)

        report = await register.dispatch_with_result("save")
        assert report.success is True
        assert report.execution.handlers_executed == 2
        assert report.execution.handlers_failed == 1
        assert report.execution.handlers_skipped == 1
        assert [(h.id, h.status) for h in report.handlers] == [
            ("a", "completed"),
            ("b", "failed"),
            ("c", "skipped"),
        ]
        assert [e.handler_id for e in report.errors] == ["b"]
        assert report.execution.ended_at >= report.execution.started_at
        assert report.execution.duration_ms >= 0

    @pytest.mark.asyncio
    async def test_dict_and_dataclass_options_equivalent(self, register):
        register.register("save", lambda p, c: "a")
        by_dict = await register.dispatch_with_result("save", None, COLLECT_ALL)
        by_dataclass = await register.dispatch_with_result(
            "save", None, DispatchOptions(result=ResultOptions(collect=True, strategy="all"))
        )
        assert by_dict.result == by_dataclass.result == ["a"]

    @pytest.mark.asyncio
    async def test_no_strategy_means_no_reduced_result(self, register):
        register.register("save", lambda p, c: "a")
        report = await register.dispatch_with_result("save")
        assert report.result is None
        assert report.results == ["a"]

    @pytest.mark.asyncio
    async def test_return_value_reported(self, register):
        register.register("save", lambda p, c: c.return_({"id": 1}), priority=2)
        register.register("save", lambda p, c: "never", priority=1)
        report = await register.dispatch_with_result("save", None, COLLECT_ALL)
        assert report.terminated is True
        assert report.success is True
        assert report.result == {"id": 1}
        assert report.termination_result == {"id": 1}

    @pytest.mark.asyncio
    async def test_abort_and_return_both_flags(self, register):
        def both(payload, controller):
            controller.return_("value")
            controller.abort("stop")

        register.register("save", both)
        report = await register.dispatch_with_result("save")
        assert report.aborted and report.terminated
        assert report.success is False
        assert report.abort_reason == "stop"

    @pytest.mark.asyncio
    async def test_to_dict(self, register):
        register.register("save", lambda p, c: "a", id="a")
        data = (await register.dispatch_with_result("save")).to_dict()
        assert data["action"] == "save"
        assert data["execution_mode"] == "sequential"
        assert data["handlers"][0]["id"] == "a"


class TestConfigurationErrors:
    """Configuration problems fail before any handler runs."""

    @pytest.mark.asyncio
    async def test_unknown_mode_raises(self, register, recorder, calls):
        register.register("save", recorder("a"))
        with pytest.raises(UnknownExecutionModeError):
            await register.dispatch_with_result("save", None, {"execution_mode": "turbo"})
        assert calls == []

    @pytest.mark.asyncio
    async def test_custom_without_merger_raises(self, register, recorder, calls):
        register.register("save", recorder("a"))
        with pytest.raises(ResultStrategyError):
            await register.dispatch_with_result("save", None, {"result": {"collect": True, "strategy": "custom"}})
        assert calls == []

    @pytest.mark.asyncio
    async def test_dispatch_swallows_everything(self, register):
        await register.dispatch("save", None, {"execution_mode": "turbo"})

    @pytest.mark.asyncio
    async def test_failing_merger_propagates_from_dispatch_with_result(self, register):
        register.register("save", lambda p, c: 1)
        events = []
        register.on(EventType.ACTION_ERROR, events.append)

        def merger(results):
            raise RuntimeError("merger bug")

        with pytest.raises(RuntimeError):
            await register.dispatch_with_result(
                "save", None, {"result": {"collect": True, "strategy": "custom", "merger": merger}}
            )
        assert len(events) == 1


class TestExecutionModes:
    @pytest.mark.asyncio
    async def test_resolution_order(self, register):
        register.set_execution_mode("parallel")
        register.set_action_execution_mode("save", "race")
        assert register.get_action_execution_mode("save") is ExecutionMode.RACE
        assert register.get_action_execution_mode("other") is ExecutionMode.PARALLEL

        register.register("save", lambda p, c: "a")
        report = await register.dispatch_with_result("save", None, {"execution_mode": "sequential"})
        assert report.execution_mode is ExecutionMode.SEQUENTIAL

        report = await register.dispatch_with_result("save")
        assert report.execution_mode is ExecutionMode.RACE

        register.remove_action_execution_mode("save")
        report = await register.dispatch_with_result("save")
        assert report.execution_mode is ExecutionMode.PARALLEL

    def test_remove_unknown_override_is_noop(self, settings):
        ActionRegister(settings=settings).remove_action_execution_mode("missing")

    @pytest.mark.asyncio
    async def test_race_failing_winner_is_not_success(self, register):
        def boom(payload, controller):
            raise ValueError("boom")

        register.register("save", boom)
        report = await register.dispatch_with_result("save", None, {"execution_mode": "race"})
        assert report.success is False
        assert report.execution.handlers_failed == 1

    @pytest.mark.asyncio
    async def test_race_report_ignores_loser_signals(self, register):
        async def winner(payload, controller):
            await asyncio.sleep(0.01)
            return "winner"

        async def loser(payload, controller):
            controller.set_result("loser")
            controller.abort("loser aborted")
            await asyncio.sleep(0.05)

        register.register("save", winner, id="winner", priority=1)
        register.register("save", loser, id="loser", priority=2)
        report = await register.dispatch_with_result(
            "save", None, {"execution_mode": "race", "result": {"collect": True, "strategy": "first"}}
        )
        assert report.result == "winner"
        assert report.results == ["winner"]
        assert report.aborted is False
        assert report.abort_reason is None
        assert report.success is True


class TestFilter:
    @pytest.mark.asyncio
    async def test_filter_applied_to_snapshot(self, register, recorder, calls):
        register.register("save", recorder("ui"), tags=["ui"])
        register.register("save", recorder("db"), tags=["io"])
        report = await register.dispatch_with_result(
            "save", None, DispatchOptions(filter=HandlerFilter(tags=["io"]))
        )
        assert calls == ["db"]
        assert len(report.handlers) == 1

    @pytest.mark.asyncio
    async def test_filter_selecting_nothing(self, register, recorder, calls):
        register.register("save", recorder("ui"), tags=["ui"])
        report = await register.dispatch_with_result("save", None, {"filter": {"tags": ["none"]}})
        assert report.success is True
        assert calls == []


class TestGuards:
    @pytest.mark.asyncio
    async def test_throttle_rejection_report(self, register, recorder, calls):
        register.register("scroll", recorder("a"))
        register.register("scroll", recorder("b"))
        first = await register.dispatch_with_result("scroll", None, {"throttle_ms": 1000})
        second = await register.dispatch_with_result("scroll", None, {"throttle_ms": 1000})

        assert first.success is True
        assert second.success is False
        assert second.aborted is True
        assert second.abort_reason == "Throttled execution"
        assert isinstance(second.rejection, GuardRejectedError)
        assert second.rejection.guard == "throttle"
        assert second.rejection.key == "scroll"
        assert second.to_dict()["rejection"]["category"] == "GUARD"
        assert first.rejection is None
        assert second.execution.handlers_executed == 0
        assert second.execution.handlers_skipped == 2
        assert calls == ["a", "b"]

    @pytest.mark.asyncio
    async def test_throttle_from_handler_config(self, register, recorder, calls):
        register.register("scroll", recorder("a"), throttle_ms=1000)
        await register.dispatch("scroll")
        await register.dispatch("scroll")
        assert calls == ["a"]

    @pytest.mark.asyncio
    async def test_debounce_burst_runs_once(self, register, recorder, calls):
        register.register("search", recorder("a"))
        reports = await asyncio.gather(
            *(register.dispatch_with_result("search", i, {"debounce_ms": 20}) for i in range(3))
        )
        assert calls == ["a"]
        assert [r.aborted for r in reports] == [True, True, False]
        assert reports[0].abort_reason == "Debounced execution"
        assert reports[0].rejection.guard == "debounce"
        assert reports[0].rejection.reason == "Debounced execution"

    @pytest.mark.asyncio
    async def test_debounce_and_throttle_together(self, register, recorder, calls):
        register.register("save", recorder("a"))
        report = await register.dispatch_with_result("save", None, {"debounce_ms": 5, "throttle_ms": 1000})
        assert report.success is True
        assert calls == ["a"]


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancelled_before_start(self, register, recorder, calls):
        register.register("save", recorder("a"))
        token = CancellationToken()
        token.cancel()
        report = await register.dispatch_with_result("save", None, {"cancellation_token": token})
        assert report.aborted is True
        assert report.abort_reason == "Dispatch cancelled"
        assert calls == []

    @pytest.mark.asyncio
    async def test_cancelled_during_sequential_run(self, register, recorder, calls):
        token = CancellationToken()

        async def slow(payload, controller):
            await asyncio.sleep(0.02)
            calls.append("slow")

        register.register("save", slow, priority=2)
        register.register("save", recorder("after"), priority=1)
        task = asyncio.ensure_future(
            register.dispatch_with_result("save", None, {"cancellation_token": token})
        )
        await asyncio.sleep(0.005)
        token.cancel("navigated away")
        report = await task
        assert calls == ["slow"]
        assert report.abort_reason == "navigated away"

    @pytest.mark.asyncio
    async def test_task_cancelled_mid_run_still_removes_once_handlers(self, register, recorder, calls):
        async def long(payload, controller):
            await asyncio.sleep(1)

        register.register("save", recorder("once"), priority=10, once=True)
        register.register("save", long, priority=5)
        task = asyncio.ensure_future(register.dispatch("save"))
        await asyncio.sleep(0.02)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert calls == ["once"]
        assert register.get_handler_count("save") == 1


class TestTimeouts:
    @pytest.mark.asyncio
    async def test_default_timeout_from_settings(self):
        settings = ActionSpineSettings(_env_file=None, default_handler_timeout_ms=10)
        register = ActionRegister(settings=settings)

        async def slow(payload, controller):
            await asyncio.sleep(0.05)
            return "late"

        register.register("save", slow, id="slow")
        register.register("save", lambda p, c: "ok", id="explicit", timeout_ms=500)
        stats = register.get_action_stats("save")
        assert stats is not None

        report = await register.dispatch_with_result("save")
        assert report.success is True
        assert report.results == ["ok"]
        assert "timed out after 10ms" in str(report.errors[0].error)
        assert register.pending_background_tasks == 1
        await register.aclose()
        assert register.pending_background_tasks == 0

    @pytest.mark.asyncio
    async def test_result_timeout(self, register):
        async def slow(payload, controller):
            await asyncio.sleep(0.1)

        register.register("save", slow)
        report = await register.dispatch_with_result(
            "save", None, {"execution_mode": "parallel", "result": {"timeout_ms": 10}}
        )
        assert report.aborted is True
        assert report.abort_reason == "Result timeout of 10ms exceeded"
        assert report.handlers[0].status == "abandoned"


class TestEvents:
    @pytest.mark.asyncio
    async def test_lifecycle_events(self, register):
        seen = []
        for event_type in EventType:
            register.on(event_type, lambda e: seen.append(e.event_type))

        unregister = register.register("save", lambda p, c: "a")
        await register.dispatch("save")
        unregister()

        assert seen == [
            EventType.HANDLER_REGISTER,
            EventType.ACTION_START,
            EventType.ACTION_COMPLETE,
            EventType.HANDLER_UNREGISTER,
        ]

    @pytest.mark.asyncio
    async def test_abort_event_carries_reason(self, register):
        events = []
        register.on("action.abort", events.append)
        register.register("save", lambda p, c: c.abort("nope"))
        await register.dispatch("save")
        assert events[0].data["reason"] == "nope"
        assert events[0].data["metrics"]["handlers_executed"] == 1

    @pytest.mark.asyncio
    async def test_off(self, register):
        events = []
        register.on(EventType.ACTION_START, events.append)
        register.off(EventType.ACTION_START, events.append)
        await register.dispatch("save")
        assert events == []


class TestIntrospection:
    def test_counts_and_actions(self, settings):
        register = ActionRegister(settings=settings)
        register.register("a", lambda p, c: None)
        register.register("a", lambda p, c: None)
        register.register("b", lambda p, c: None)
        assert register.has_handlers("a") is True
        assert register.get_handler_count("a") == 2
        assert register.get_registered_actions() == ["a", "b"]
        assert register.has_handlers("zzz") is False

    def test_stats(self, settings):
        register = ActionRegister(settings=settings)
        register.set_action_execution_mode("a", "parallel")
        register.register("a", lambda p, c: None, priority=2, category="ui")
        register.register("b", lambda p, c: None)

        stats = register.get_action_stats("a")
        assert stats.execution_mode is ExecutionMode.PARALLEL
        assert stats.handlers_by_priority[0]["handlers"][0]["category"] == "ui"
        assert [s.action for s in register.get_all_action_stats()] == ["a", "b"]
        assert register.get_action_stats("missing") is None

    def test_clear_action_and_all(self, settings):
        register = ActionRegister(settings=settings)
        register.register("a", lambda p, c: None)
        register.register("b", lambda p, c: None)
        register.on(EventType.ACTION_START, lambda e: None)

        register.clear_action("a")
        register.clear_action("missing")
        assert register.get_registered_actions() == ["b"]

        register.clear_all()
        assert register.get_registered_actions() == []
        assert register._events.listener_count(EventType.ACTION_START) == 0

    def test_register_config_object(self, settings):
        register = ActionRegister(settings=settings)
        register.register("a", lambda p, c: None, HandlerConfig(id="x", priority=5))
        assert register.get_action_stats("a").handlers_by_priority[0]["priority"] == 5

    @pytest.mark.asyncio
    async def test_async_context_manager(self, settings):
        async with ActionRegister(settings=settings) as register:
            register.register("a", lambda p, c: "x")
            report = await register.dispatch_with_result("a")
        assert report.results == ["x"]
