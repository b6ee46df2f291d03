"""
Tests for application services.

This module tests settings handling, launch option derivation, the script
factory and single-shot runs driven by the Orchestrator.
"""

import asyncio
from unittest.mock import Mock

import pytest

from loopwright.application.port import BrowserDriver, RunLog, ScriptCompiler, TraceAttacher
from loopwright.application.service import (
    Orchestrator,
    apply_overrides,
    build_launch_options,
    load_settings,
    script_factory,
)
from loopwright.domain.entity import CompiledScript
from loopwright.domain.exception import CompilationError, SessionError
from loopwright.domain.value_object import LaunchOptions, RecoverWith, Settings, Status, Viewport
from loopwright.infrastructure.adapter.in_memory.driver import InMemoryDriver
from loopwright.infrastructure.adapter.in_memory.lifecycle import SingleShotLifecycle
from loopwright.infrastructure.adapter.in_memory.reporter import InMemoryReporter
from loopwright.script import Script


def factory_for(script):
    async def factory():
        return script.compile()

    return factory


def three_steps(calls, **settings):
    script = Script(**settings)

    @script.step("one")
    async def one(page):
        calls.append("one")

    @script.step("two")
    async def two(page):
        calls.append("two")

    @script.step("three")
    async def three(page):
        calls.append("three")

    return script


class TestLoadSettings:
    """Test cases for load_settings."""

    def test_load_from_dict(self):
        settings = load_settings({"loop_count": 4, "tries": 2})

        assert settings.loop_count == 4
        assert settings.tries == 2

    def test_passthrough(self):
        settings = Settings(name="x")

        assert load_settings(settings) is settings

    def test_invalid_settings(self):
        with pytest.raises(CompilationError, match="Invalid settings"):
            load_settings({"loop_count": "many"})


class TestApplyOverrides:
    """Test cases for apply_overrides."""

    def test_no_overrides(self):
        settings = Settings(loop_count=3)

        assert apply_overrides(settings, None) is settings

    def test_overrides_win(self):
        settings = apply_overrides(Settings(loop_count=3, name="plan"), {"loop_count": 1, "duration": 30})

        assert settings.loop_count == 1
        assert settings.duration == 30.0
        assert settings.name == "plan"

    def test_unknown_override(self):
        with pytest.raises(ValueError, match="Unknown setting override"):
            apply_overrides(Settings(), {"loops": 1})

    def test_wrong_type(self):
        with pytest.raises(ValueError, match="Invalid setting override"):
            apply_overrides(Settings(), {"loop_count": "all"})


class TestBuildLaunchOptions:
    """Test cases for build_launch_options."""

    def test_settings_flow_into_options(self):
        settings = Settings(ignore_https_errors=True, viewport=Viewport(width=1024, height=768))

        options = build_launch_options(LaunchOptions(), settings)

        assert options.ignore_https_errors is True
        assert options.viewport == Viewport(width=1024, height=768)

    def test_args_are_merged_host_first(self):
        host = LaunchOptions(args=["--host"])

        options = build_launch_options(host, Settings(launch_args=["--script"]))

        assert options.args == ["--host", "--script"]
        assert host.args == ["--host"]

    def test_host_browser_version_wins(self):
        options = build_launch_options(LaunchOptions(browser_version="chrome"), Settings(browser_version="msedge"))

        assert options.browser_version == "chrome"

    def test_script_browser_version_when_host_unpinned(self):
        options = build_launch_options(LaunchOptions(), Settings(browser_version="msedge"))

        assert options.browser_version == "msedge"

    def test_sandbox_precedence(self):
        assert build_launch_options(LaunchOptions(sandbox=False), Settings(sandbox=True)).sandbox is False
        assert build_launch_options(LaunchOptions(), Settings(sandbox=True)).sandbox is True


class TestScriptFactory:
    """Test cases for script_factory."""

    @pytest.mark.asyncio
    async def test_compiles_on_every_call(self):
        compiler = Mock(spec=ScriptCompiler)
        script = Script()
        script.step("one")(lambda page: None)
        compiler.compile.return_value = script.compile()
        factory = script_factory(compiler, "checkout", {"attribute": "script"})

        await factory()
        await factory()

        assert compiler.compile.call_count == 2
        compiler.compile.assert_called_with("checkout", {"attribute": "script"})

    @pytest.mark.asyncio
    async def test_wraps_compiler_errors(self):
        compiler = Mock(spec=ScriptCompiler)
        compiler.compile.side_effect = SyntaxError("unexpected indent")
        factory = script_factory(compiler, "checkout.py")

        with pytest.raises(CompilationError, match="unexpected indent") as exc_info:
            await factory()

        assert exc_info.value.source == "checkout.py"

    @pytest.mark.asyncio
    async def test_validates_result(self):
        compiler = Mock(spec=ScriptCompiler)
        compiler.compile.return_value = CompiledScript(steps=[])
        factory = script_factory(compiler, "empty")

        with pytest.raises(CompilationError, match="no steps"):
            await factory()


class TestSingleShotRun:
    """Test cases for single-shot runs driven by the Orchestrator."""

    def setup_method(self):
        """Setup test fixtures."""
        self.driver = InMemoryDriver()
        self.reporter = InMemoryReporter()
        self.lifecycle = SingleShotLifecycle()
        self.run_log = Mock(spec=RunLog)
        self.orchestrator = Orchestrator(self.driver, self.reporter, self.lifecycle, self.run_log)

    def rows(self):
        return [result.row() for result in self.reporter.iterations]

    @pytest.mark.asyncio
    async def test_all_steps_pass(self):
        """Test three passing steps over two iterations."""
        calls = []

        await self.orchestrator.run(factory_for(three_steps(calls, loop_count=2)))

        assert calls == ["one", "two", "three"] * 2
        assert self.rows() == [[1, 3, 0, 0, 0], [2, 3, 0, 0, 0]]
        assert self.reporter.last_summary.totals()["passed"] == 6
        assert self.reporter.flushes == 1
        assert len(self.driver.launches) == 1
        assert self.driver.sessions[0].closed is True
        self.run_log.open.assert_called_once_with()
        self.run_log.close.assert_called_once_with()
        self.run_log.info.assert_any_call("Test completed after %d iterations", 2)

    @pytest.mark.asyncio
    async def test_failed_step_ends_iteration(self):
        """Test a failing step without recovery leaves the rest unexecuted."""
        script = Script()
        script.step("one")(lambda page: None)

        @script.step("two")
        async def two(page):
            raise RuntimeError("button not found")

        script.step("three")(lambda page: None)

        await self.orchestrator.run(factory_for(script))

        assert self.rows() == [[1, 1, 1, 0, 1]]
        failed = self.reporter.iterations[0].steps[1]
        assert failed.status == Status.FAILED
        assert "Step 'two' failed: button not found" in failed.error
        assert self.reporter.iterations[0].steps[2].status == Status.UNEXECUTED
        assert self.reporter.last_summary.failed is True

    @pytest.mark.asyncio
    async def test_continue_recovery(self):
        calls = []
        script = Script()
        script.step("one")(lambda page: calls.append("one"))
        script.step("two")(Mock(side_effect=RuntimeError("flaky")))
        script.step("three")(lambda page: calls.append("three"))

        @script.recovery("two", loop_count=1)
        def recover(page):
            return RecoverWith.CONTINUE

        await self.orchestrator.run(factory_for(script))

        assert self.rows() == [[1, 3, 0, 0, 0]]
        assert self.reporter.iterations[0].steps[1].recovered is True
        assert calls == ["one", "three"]

    @pytest.mark.asyncio
    async def test_restart_recovery(self):
        """Test a RESTART in iteration two of three reruns that iteration."""
        script = Script(loop_count=3)
        visits = []
        failures = []

        @script.step("one")
        def one(page):
            visits.append("one")

        @script.step("two")
        def two(page):
            if len(visits) == 2 and not failures:
                failures.append(True)
                raise RuntimeError("session expired")

        script.step("three")(lambda page: None)

        @script.recovery("two")
        def log_in_again(page):
            return RecoverWith.RESTART

        await self.orchestrator.run(factory_for(script))

        assert visits == ["one"] * 4
        assert self.rows() == [[1, 3, 0, 0, 0], [2, 3, 0, 0, 0], [3, 3, 0, 0, 0]]
        self.run_log.info.assert_any_call("Restarting iteration %d", 2)
        assert self.run_log.group.call_count == 3
        assert self.run_log.group_end.call_count == 3

    @pytest.mark.asyncio
    async def test_once_step_skipped_after_first_iteration(self):
        script = Script(loop_count=2)
        script.step("log in", once=True)(lambda page: None)
        script.step("browse")(lambda page: None)

        await self.orchestrator.run(factory_for(script))

        assert self.rows() == [[1, 2, 0, 0, 0], [2, 1, 0, 1, 0]]

    @pytest.mark.asyncio
    async def test_repeat_step(self):
        script = Script()
        action = Mock()
        script.step("scroll", repeat=3)(action)
        script.step("done")(lambda page: None)

        await self.orchestrator.run(factory_for(script))

        assert action.call_count == 3
        assert self.rows() == [[1, 2, 0, 0, 0]]

    @pytest.mark.asyncio
    async def test_step_while(self):
        script = Script()

        def next_page(page):
            page.data["pages"] = page.data.get("pages", 0) + 1

        script.step("paginate", step_while=lambda page: page.data.get("pages", 0) < 3)(next_page)
        after = Mock()
        script.step("checkout")(after)

        await self.orchestrator.run(factory_for(script))

        assert self.driver.sessions[0].page.data["pages"] == 3
        after.assert_called_once()
        assert self.rows() == [[1, 2, 0, 0, 0]]

    @pytest.mark.asyncio
    async def test_step_while_false_at_first_visit(self):
        script = Script()
        action = Mock()
        script.step("paginate", step_while=lambda page: False)(action)
        script.step("checkout")(lambda page: None)

        await self.orchestrator.run(factory_for(script))

        action.assert_not_called()
        assert self.rows() == [[1, 1, 0, 1, 0]]

    @pytest.mark.asyncio
    async def test_wait_until(self):
        script = Script()
        script.step("open", wait_until="networkidle")(lambda page: None)

        await self.orchestrator.run(factory_for(script))

        assert self.driver.sessions[0].page.load_states == ["networkidle"]

    @pytest.mark.asyncio
    async def test_hooks(self):
        script = Script(loop_count=2)
        calls = []
        script.before_all(lambda page: calls.append("before_all"))
        script.before_each(lambda page: calls.append("before_each"))
        script.after_each(lambda page: calls.append("after_each"))
        script.after_all(lambda page: calls.append("after_all"))
        script.step("one")(lambda page: calls.append("one"))

        await self.orchestrator.run(factory_for(script))

        assert calls == [
            "before_all",
            "before_each",
            "one",
            "after_each",
            "before_each",
            "one",
            "after_each",
            "after_all",
        ]

    @pytest.mark.asyncio
    async def test_failing_before_each_leaves_steps_unexecuted(self):
        script = Script()

        @script.before_each
        def broken(page):
            raise RuntimeError("no fixture")

        script.step("one")(lambda page: None)

        await self.orchestrator.run(factory_for(script))

        assert self.rows() == [[1, 0, 0, 0, 1]]
        assert self.run_log.error.call_args.args[:2] == ("%s hook failed: %s", "before_each")

    @pytest.mark.asyncio
    async def test_test_plan_banner(self):
        calls = []

        await self.orchestrator.run(factory_for(three_steps(calls, name="Checkout", description="Buys a book")))

        self.run_log.info.assert_any_call("Loaded test plan: %s", "Checkout")
        self.run_log.info.assert_any_call("%s", "Buys a book")

    @pytest.mark.asyncio
    async def test_trace_attacher_attached_once(self):
        attacher = Mock(spec=TraceAttacher)
        orchestrator = Orchestrator(
            self.driver, self.reporter, self.lifecycle, self.run_log, trace_attacher=attacher
        )

        await orchestrator.run(factory_for(three_steps([], loop_count=3)))

        attacher.attach.assert_called_once_with(self.driver.sessions[0], self.reporter)

    @pytest.mark.asyncio
    async def test_settings_overrides(self):
        orchestrator = Orchestrator(
            self.driver, self.reporter, self.lifecycle, self.run_log, settings_overrides={"loop_count": 1}
        )

        await orchestrator.run(factory_for(three_steps([], loop_count=5)))

        assert len(self.reporter.iterations) == 1

    @pytest.mark.asyncio
    async def test_launch_options_from_settings(self):
        orchestrator = Orchestrator(
            self.driver,
            self.reporter,
            self.lifecycle,
            self.run_log,
            launch_overrides=LaunchOptions(args=["--host"]),
        )

        await orchestrator.run(factory_for(three_steps([], launch_args=["--lang=en"], ignore_https_errors=True)))

        options = self.driver.launches[0]
        assert options.args == ["--host", "--lang=en"]
        assert options.ignore_https_errors is True

    @pytest.mark.asyncio
    async def test_compilation_error(self):
        async def factory():
            raise CompilationError("syntax error")

        with pytest.raises(CompilationError):
            await self.orchestrator.run(factory)

        assert self.driver.launches == []
        self.run_log.close.assert_called_once_with()

    @pytest.mark.asyncio
    async def test_session_error(self):
        """Test a launch failure propagates after the reporter was flushed."""
        driver = Mock(spec=BrowserDriver)
        driver.launch.side_effect = RuntimeError("chromium missing")
        orchestrator = Orchestrator(driver, self.reporter, self.lifecycle, self.run_log)

        with pytest.raises(SessionError, match="chromium missing"):
            await orchestrator.run(factory_for(three_steps([])))

        assert self.reporter.last_summary.iterations == []
        assert self.reporter.flushes == 1

    @pytest.mark.asyncio
    async def test_stop_cancels_in_flight_step(self):
        """Test stop() abandons the running step and reports the rest unexecuted."""
        script = Script(loop_count=5)
        entered = asyncio.Event()
        script.step("one")(lambda page: None)

        @script.step("two")
        async def two(page):
            entered.set()
            await asyncio.sleep(10)

        script.step("three")(lambda page: None)

        task = asyncio.ensure_future(self.orchestrator.run(factory_for(script)))
        await asyncio.wait_for(entered.wait(), timeout=1)
        await self.orchestrator.stop()
        await self.orchestrator.stop()
        await asyncio.wait_for(task, timeout=1)

        assert self.rows() == [[1, 1, 0, 0, 2]]
        assert self.orchestrator.stopped is True
        assert self.driver.sessions[0].close_calls == 1
        self.run_log.warning.assert_any_call("Iteration %d cancelled", 1)

    @pytest.mark.asyncio
    async def test_stop_between_iterations(self):
        """Test stop() landing between iterations ends an unbounded run."""
        script = Script(loop_count=0)
        visits = []

        @script.step("open")
        def open_page(page):
            visits.append(page)
            if len(visits) == 3:
                asyncio.ensure_future(self.orchestrator.stop())

        await asyncio.wait_for(self.orchestrator.run(factory_for(script)), timeout=1)

        assert 3 <= len(self.rows()) <= 4
        assert self.rows()[:3] == [[1, 1, 0, 0, 0], [2, 1, 0, 0, 0], [3, 1, 0, 0, 0]]
        assert self.orchestrator.stopped is True
        assert self.driver.sessions[0].close_calls == 1

    @pytest.mark.asyncio
    async def test_stop_before_run(self):
        await self.orchestrator.stop()

        await self.orchestrator.run(factory_for(three_steps([])))

        assert self.driver.launches == []
        assert self.reporter.summaries == []

    @pytest.mark.asyncio
    async def test_rerun_ignored_in_single_shot_mode(self):
        await self.orchestrator.run(factory_for(three_steps([])))

        self.orchestrator.rerun()

        assert len(self.reporter.summaries) == 1
