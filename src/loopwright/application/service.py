import asyncio
import inspect
import logging
import time
from collections.abc import Callable
from typing import Any

import msgspec
from msgspec import structs

from loopwright.application.adapter import CancellationToken, Looper, StepIterator, TraversalContext
from loopwright.application.port import (
    BrowserDriver,
    Reporter,
    RunLog,
    ScriptCompiler,
    ScriptFactory,
    Session,
    SessionLifecycle,
    TraceAttacher,
)
from loopwright.domain.entity import CompiledScript, Hook, IterationResult, RunSummary, Step, StepResult
from loopwright.domain.exception import CompilationError, LoopwrightError, RunCancelled, SessionError, StepFailure
from loopwright.domain.service import summarize_iteration, validate_script
from loopwright.domain.value_object import LaunchOptions, Settings, Status

logger = logging.getLogger(__name__)


def load_settings(data: dict[str, Any] | Settings) -> Settings:
    """
    Decodes script settings from a Python dictionary.

    :param data: The settings as a dictionary or Settings instance
    :type data: dict[str, Any] | Settings
    :returns: The decoded settings
    :rtype: Settings
    :raises CompilationError: If the settings are malformed
    """
    if isinstance(data, Settings):
        return data
    try:
        return msgspec.convert(data, type=Settings)
    except msgspec.ValidationError as e:
        raise CompilationError(f"Invalid settings: {e}") from None


def apply_overrides(settings: Settings, overrides: dict[str, Any] | None) -> Settings:
    """
    Merges host-level overrides over script settings.

    :param settings: The script settings
    :type settings: Settings
    :param overrides: Setting values that take precedence
    :type overrides: dict[str, Any] | None
    :returns: The effective settings
    :rtype: Settings
    :raises ValueError: If an override names an unknown setting or has the wrong type
    """
    if not overrides:
        return settings
    unknown = set(overrides) - set(Settings.__struct_fields__)
    if unknown:
        raise ValueError(f"Unknown setting override(s): {', '.join(sorted(unknown))}")
    try:
        return msgspec.convert({**msgspec.to_builtins(settings), **overrides}, type=Settings)
    except msgspec.ValidationError as e:
        raise ValueError(f"Invalid setting override: {e}") from None


def build_launch_options(overrides: LaunchOptions, settings: Settings) -> LaunchOptions:
    """
    Derives the launch options of a run from host overrides and script settings.

    Launch arguments are merged, host arguments first. The host's browser
    version pin and sandbox choice win over the script's.

    :param overrides: Launch options given by the host
    :type overrides: LaunchOptions
    :param settings: The effective script settings
    :type settings: Settings
    :returns: New launch options; ``overrides`` is left untouched
    :rtype: LaunchOptions
    """
    changes: dict[str, Any] = {
        "ignore_https_errors": settings.ignore_https_errors,
        "args": [*overrides.args, *settings.launch_args],
    }
    if settings.viewport is not None:
        changes["viewport"] = settings.viewport
    if overrides.browser_version is None:
        changes["browser_version"] = settings.browser_version
    if overrides.sandbox is None:
        changes["sandbox"] = settings.sandbox
    return structs.replace(overrides, **changes)


def script_factory(
    compiler: ScriptCompiler, source_path: str, options: dict[str, Any] | None = None
) -> ScriptFactory:
    """
    Creates a factory compiling ``source_path`` afresh on every call, picking up edits.

    :param compiler: The script compiler
    :type compiler: ScriptCompiler
    :param source_path: Location or name of the script source
    :type source_path: str
    :param options: Compiler specific options
    :type options: dict[str, Any] | None
    :returns: Coroutine function returning a validated compiled script
    :rtype: ScriptFactory
    """

    async def factory() -> CompiledScript:
        try:
            script = compiler.compile(source_path, options)
        except CompilationError:
            raise
        except Exception as e:
            raise CompilationError(f"Failed to compile {source_path}: {e}", source=source_path) from e
        validate_script(script)
        return script

    return factory


class TestRun:
    """Runs the steps of one compiled script against a session and records their status."""

    __test__ = False

    def __init__(
        self,
        session: Session,
        script: CompiledScript,
        reporter: Reporter,
        run_log: RunLog,
        settings: Settings | None = None,
        trace_attacher: TraceAttacher | None = None,
    ):
        self.session = session
        self.script = script
        self.reporter = reporter
        self.run_log = run_log
        self.settings = settings if settings is not None else script.settings
        self.trace_attacher = trace_attacher
        self.context = TraversalContext()
        self._results: dict[str, StepResult] = {}
        self._attached = False

    @property
    def page(self) -> Any:
        return self.session.page

    def attach(self) -> None:
        """Attach the trace observer. Only the first call per test run attaches."""
        if self._attached or self.trace_attacher is None:
            return
        self._attached = True
        self.trace_attacher.attach(self.session, self.reporter)

    async def before_run(self) -> None:
        self.attach()
        await self._run_hooks(self.script.hooks.before_all, "before_all")

    async def after_run(self) -> None:
        await self._run_hooks(self.script.hooks.after_all, "after_all")

    async def run_with_cancellation(self, iteration: int, cancel_token: CancellationToken, looper: Looper) -> None:
        """
        Run one iteration of the step list.

        :param iteration: The iteration number
        :type iteration: int
        :param cancel_token: Token of the run, observed at every suspension point
        :type cancel_token: CancellationToken
        :param looper: The scheduler, asked to restart by recovery steps
        :type looper: Looper
        """
        iterator = StepIterator(self.script.steps, self.context, cancel_token)

        async def visit(step: Step) -> None:
            await self._visit(iterator, step, iteration, cancel_token, looper)

        try:
            if not await self._run_hooks(self.script.hooks.before_each, "before_each", cancel_token):
                return
            await iterator.run(visit)
            await self._run_hooks(self.script.hooks.after_each, "after_each", cancel_token)
        except RunCancelled:
            self.run_log.warning("Iteration %d cancelled", iteration)

    def summarize_steps(self, iteration: int) -> list[StepResult]:
        """
        Step results of the current iteration in step order. Steps never reached are unexecuted.

        :param iteration: The iteration number
        :type iteration: int
        :returns: One result per step
        :rtype: list[StepResult]
        """
        return [
            self._results.get(step.name) or StepResult(name=step.name, status=Status.UNEXECUTED, iteration=iteration)
            for step in self.script.steps
        ]

    def reset_step_results(self) -> None:
        self._results.clear()

    async def _visit(
        self,
        iterator: StepIterator,
        step: Step,
        iteration: int,
        cancel_token: CancellationToken,
        looper: Looper,
    ) -> None:
        if self.settings.step_delay > 0 and self._results:
            if await cancel_token.sleep(self.settings.step_delay):
                raise RunCancelled("Run was cancelled")

        if not await iterator.call_condition(step, iteration, self.page):
            if step.name not in self._results:
                self._record(step, Status.SKIPPED, iteration)
            return

        started = time.monotonic()
        try:
            await cancel_token.call(step.action, self.page)
            if step.options.wait_until:
                await cancel_token.call(self.page.wait_for_load_state, step.options.wait_until)
        except RunCancelled:
            raise
        except Exception as e:
            failure = StepFailure(step.name, e)
            self.run_log.error("%s", failure)
            duration = (time.monotonic() - started) * 1000
            recovered = await iterator.call_recovery(
                step, looper, self.page, self.script.recovery, self.settings.tries
            )
            if recovered:
                self.run_log.info("Step '%s' recovered", step.name)
                self._record(step, Status.PASSED, iteration, duration, error=str(failure), recovered=True)
            else:
                self._record(step, Status.FAILED, iteration, duration, error=str(failure))
                iterator.step_end()
            return

        self._record(step, Status.PASSED, iteration, (time.monotonic() - started) * 1000)
        options = step.options
        if options.step_while is not None:
            iterator.go_previous_step()
        elif options.repeat is not None and self.context.repeat_iteration(step) != 0:
            iterator.go_previous_step()

    def _record(
        self,
        step: Step,
        status: Status,
        iteration: int,
        duration: float = 0.0,
        error: str | None = None,
        recovered: bool = False,
    ) -> None:
        self._results[step.name] = StepResult(
            name=step.name,
            status=status,
            iteration=iteration,
            duration=duration,
            error=error,
            recovered=recovered,
        )

    async def _run_hooks(self, hooks: list[Hook], kind: str, cancel_token: CancellationToken | None = None) -> bool:
        for hook in hooks:
            try:
                if cancel_token is not None:
                    await cancel_token.call(hook, self.page)
                else:
                    result = hook(self.page)
                    if inspect.isawaitable(result):
                        await result
            except RunCancelled:
                raise
            except Exception as e:
                self.run_log.error("%s hook failed: %s", kind, e)
                return False
        return True


class Orchestrator:
    """Run orchestrator.

    Owns the session lifecycle of a test run, drives the iteration scheduler
    over a ``TestRun`` and hands iteration and run summaries to the reporter.
    A persistent ``SessionLifecycle`` keeps the session across runs and
    re-executes the script whenever its rerun trigger fires.
    """

    def __init__(
        self,
        driver: BrowserDriver,
        reporter: Reporter,
        lifecycle: SessionLifecycle,
        run_log: RunLog,
        settings_overrides: dict[str, Any] | None = None,
        launch_overrides: LaunchOptions | None = None,
        trace_attacher: TraceAttacher | None = None,
        poll_interval: float = 1.0,
    ):
        self.driver = driver
        self.reporter = reporter
        self.lifecycle = lifecycle
        self.run_log = run_log
        self.settings_overrides = settings_overrides or {}
        self.launch_overrides = launch_overrides if launch_overrides is not None else LaunchOptions()
        self.trace_attacher = trace_attacher
        self.poll_interval = poll_interval
        self.running = True
        self.looper: Looper | None = None
        self.summary: RunSummary | None = None
        self._stopped = False
        self._script_factory: ScriptFactory | None = None
        self._rerun_task: asyncio.Task | None = None
        self._rerun_requested = False
        self._next_script: CompiledScript | None = None

    @property
    def stopped(self) -> bool:
        return self._stopped

    async def run(self, script_factory: ScriptFactory) -> None:
        """
        Compile the script and run it.

        :param script_factory: Coroutine function producing the compiled script
        :type script_factory: ScriptFactory
        :raises CompilationError: If the script cannot be compiled
        :raises SessionError: If the browser session cannot be launched
        """
        self._script_factory = script_factory
        self.run_log.open()
        try:
            script = await self._compile(script_factory)
            if self.lifecycle.persistent:
                await self._run_persistent(script)
            else:
                await self._run_script(script)
        finally:
            self.run_log.close()

    async def stop(self) -> None:
        """Stop running. Safe to call repeatedly and from a signal handler."""
        self.running = False
        self._stopped = True
        if self.looper is not None:
            self.looper.stop()
            if not self.lifecycle.persistent:
                self.looper.kill()
        if not self.lifecycle.persistent:
            await self.lifecycle.close()

    def rerun(self) -> None:
        """Re-execute the script against the retained session. A rerun requested mid-run supersedes it."""
        if not self.lifecycle.persistent or not self.running:
            return
        if self._script_factory is None or self.lifecycle.session is None:
            logger.debug("Rerun ignored, no session or script factory established yet")
            return
        self._schedule(None)

    async def wait_until_stopped(self) -> None:
        while not self._stopped:
            await asyncio.sleep(self.poll_interval)

    async def _compile(self, script_factory: ScriptFactory) -> CompiledScript:
        try:
            script = await script_factory()
        except CompilationError:
            raise
        except Exception as e:
            raise CompilationError(f"Failed to compile test script: {e}") from e
        validate_script(script)
        return script

    async def _launch(self, settings: Settings) -> Session:
        options = build_launch_options(self.launch_overrides, settings)
        try:
            return await self.driver.launch(options)
        except SessionError:
            raise
        except Exception as e:
            raise SessionError(f"Failed to launch browser session: {e}") from e

    def _launcher(self, settings: Settings) -> Callable[[], Any]:
        return lambda: self._launch(settings)

    async def _run_persistent(self, script: CompiledScript) -> None:
        settings = apply_overrides(script.settings, self.settings_overrides)
        await self.lifecycle.acquire(self._launcher(settings))
        trigger = self.lifecycle.rerun_trigger
        if trigger is not None:
            trigger.subscribe(self.rerun)
        try:
            self._schedule(script)
            await self.wait_until_stopped()
            if self._rerun_task is not None:
                await self._rerun_task
        finally:
            if trigger is not None:
                trigger.unsubscribe(self.rerun)
            await self.lifecycle.close()

    def _schedule(self, script: CompiledScript | None) -> None:
        self._rerun_requested = True
        self._next_script = script
        if self._rerun_task is not None and not self._rerun_task.done():
            logger.debug("Rerun requested while a run is in flight, superseding it")
            if self.looper is not None:
                self.looper.stop()
                self.looper.kill()
            return
        self._rerun_task = asyncio.ensure_future(self._rerun_loop())

    async def _rerun_loop(self) -> None:
        while self._rerun_requested and self.running:
            self._rerun_requested = False
            script, self._next_script = self._next_script, None
            try:
                if script is None:
                    script = await self._compile(self._script_factory)
                if self._rerun_requested:
                    continue
                await self._run_script(script)
            except LoopwrightError as e:
                self.run_log.error("%s", e)

    async def _run_script(self, script: CompiledScript) -> None:
        if not self.running:
            return

        settings = apply_overrides(script.settings, self.settings_overrides)
        reported: list[IterationResult] = []
        session = None
        try:
            session = await self.lifecycle.acquire(self._launcher(settings))
            if not self.running:
                return
            test = TestRun(session, script, self.reporter, self.run_log, settings, self.trace_attacher)

            if settings.name:
                self.run_log.info("Loaded test plan: %s", settings.name)
                if settings.description:
                    self.run_log.info("%s", settings.description)

            await test.before_run()

            cancel_token = CancellationToken()
            looper = Looper(settings, running=self.running)
            looper.killer = cancel_token.cancel
            self.looper = looper
            if self._rerun_requested:
                logger.debug("Rerun pending before the first iteration, superseding this run")
                return
            started = time.monotonic()

            async def run_iteration(iteration: int, is_restart: bool) -> None:
                nonlocal started
                if is_restart:
                    self.run_log.info("Restarting iteration %d", iteration)
                    looper.restart_loop_done()
                else:
                    started = time.monotonic()
                    if looper.loop_count > 0:
                        self.run_log.group("Iteration %d of %d", iteration, looper.loop_count)
                    else:
                        self.run_log.group("Iteration %d", iteration)
                try:
                    await test.run_with_cancellation(iteration, cancel_token, looper)
                finally:
                    steps = test.summarize_steps(iteration)
                    if not looper.is_restart:
                        result = summarize_iteration(iteration, steps, (time.monotonic() - started) * 1000)
                        reported.append(result)
                        self.reporter.report_iteration(result)
                        self.run_log.info(
                            "Iteration %d completed in %dms (walltime) %d passed, %d failed, %d skipped, %d unexecuted",
                            iteration,
                            result.duration,
                            result.passed,
                            result.failed,
                            result.skipped,
                            result.unexecuted,
                        )
                        self.run_log.group_end()
                    test.reset_step_results()

            completed = await looper.run(run_iteration)
            self.run_log.info("Test completed after %d iterations", completed)
            await test.after_run()
        finally:
            self.summary = RunSummary(iterations=reported)
            self.reporter.report_summary(self.summary)
            self.reporter.flush()
            if session is not None:
                await self.lifecycle.release(session)
