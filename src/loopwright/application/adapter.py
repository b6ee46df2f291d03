import asyncio
import inspect
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any

from loopwright.domain.entity import Predicate, Step, StepRecovery
from loopwright.domain.exception import RunCancelled
from loopwright.domain.value_object import GLOBAL_RECOVERY, RecoverWith, Settings

logger = logging.getLogger(__name__)


class CancellationToken:
    """Cooperative cancellation flag shared by the components taking part in one run.

    Cancelling never interrupts work by itself. It is observed at these points:

    - ``call``/``race`` stop waiting for a step action, predicate, recovery action or hook
    - ``sleep`` ends a delay early
    - the scheduler and the traversal check ``is_cancelled`` at iteration and step boundaries
    """

    def __init__(self):
        self._cancelled = False
        self._event: asyncio.Event | None = None

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        """Cancel the token. Cancelling twice has no further effect."""
        if self._cancelled:
            return
        self._cancelled = True
        if self._event is not None:
            self._event.set()

    def throw_if_cancelled(self) -> None:
        """
        Checkpoint.

        :raises RunCancelled: If the token has been cancelled
        """
        if self._cancelled:
            raise RunCancelled("Run was cancelled")

    async def race(self, awaitable: Awaitable[Any]) -> Any:
        """
        Await ``awaitable`` unless the token is cancelled first.

        The losing awaitable is cancelled.

        :param awaitable: The operation to wait for
        :type awaitable: Awaitable[Any]
        :returns: The result of the operation
        :rtype: Any
        :raises RunCancelled: If the token was cancelled before the operation completed
        """
        if self._cancelled:
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            raise RunCancelled("Run was cancelled")

        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._wait())
        try:
            done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            waiter.cancel()
            raise
        waiter.cancel()
        if task in done:
            return task.result()

        task.cancel()
        await asyncio.wait({task})
        if not task.cancelled():
            task.exception()
        raise RunCancelled("Run was cancelled")

    async def call(self, fn: Callable[..., Any], *args: Any) -> Any:
        """
        Call ``fn`` and race its result against cancellation when it is awaitable.

        :param fn: A plain or coroutine function
        :type fn: Callable[..., Any]
        :param args: Positional arguments for ``fn``
        :returns: The value returned by ``fn``
        :rtype: Any
        :raises RunCancelled: If the token is or becomes cancelled
        """
        self.throw_if_cancelled()
        result = fn(*args)
        if inspect.isawaitable(result):
            return await self.race(result)
        return result

    async def sleep(self, seconds: float) -> bool:
        """
        Sleep for ``seconds`` or until cancelled.

        :param seconds: Delay in seconds
        :type seconds: float
        :returns: True if the token is cancelled
        :rtype: bool
        """
        if seconds <= 0 or self._cancelled:
            return self._cancelled
        try:
            await asyncio.wait_for(self._wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return False
        return True

    async def _wait(self) -> None:
        if self._event is None:
            self._event = asyncio.Event()
            if self._cancelled:
                self._event.set()
        await self._event.wait()


IterationCallback = Callable[[int, bool], Awaitable[None]]


class Looper:
    """Iteration scheduler.

    Runs iterations until ``loop_count`` iterations completed, ``duration``
    seconds elapsed, or the scheduler was stopped. A restart requested during
    an iteration makes the next pass reuse the same iteration number with
    ``is_restart=True``.
    """

    def __init__(self, settings: Settings, running: bool = True):
        self.loop_count = settings.loop_count
        self.duration = settings.duration
        self.iterations = 0
        self.killer: Callable[[], None] | None = None
        self._cancelled = not running
        self._killed = False
        self._restart = False
        self._in_flight = False
        self._deadline: float | None = None

    @property
    def is_restart(self) -> bool:
        return self._restart

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    @property
    def continue_loop(self) -> bool:
        if self._cancelled:
            return False
        if self._deadline is not None and time.monotonic() >= self._deadline:
            return False
        if self._restart:
            return True
        return self.loop_count <= 0 or self.iterations < self.loop_count

    def stop(self) -> None:
        """End the run once the current iteration completes."""
        self._cancelled = True

    def kill(self) -> None:
        """End the run now. The killer is invoked only while an iteration is in flight."""
        self._cancelled = True
        if not self._in_flight or self._killed:
            return
        self._killed = True
        if self.killer is not None:
            self.killer()

    def restart_loop(self) -> None:
        self._restart = True

    def restart_loop_done(self) -> None:
        self._restart = False

    async def run(self, iterator: IterationCallback) -> int:
        """
        Drive iterations through ``iterator(iteration, is_restart)``.

        :param iterator: Coroutine function running one iteration
        :type iterator: IterationCallback
        :returns: The number of iterations started, restarts excluded
        :rtype: int
        """
        if self.duration > 0:
            self._deadline = time.monotonic() + self.duration
        while self.continue_loop:
            is_restart = self._restart
            if not is_restart:
                self.iterations += 1
            self._in_flight = True
            try:
                await iterator(self.iterations, is_restart)
            finally:
                self._in_flight = False
            # Yield so signal handlers and rerun triggers get a turn between iterations
            await asyncio.sleep(0)
        return self.iterations


class TraversalContext:
    """Per-run counters of repeat cycles and recovery attempts.

    Compiled scripts stay untouched, so one script can back any number of runs.
    """

    def __init__(self):
        self._repeat: dict[str, int] = {}
        self._recovery: dict[str, int] = {}

    def repeat_iteration(self, step: Step) -> int:
        return self._repeat.get(step.name, 0)

    def set_repeat_iteration(self, step: Step, value: int) -> None:
        self._repeat[step.name] = value

    def recovery_attempts(self, key: str) -> int:
        return self._recovery.get(key, 0)

    def set_recovery_attempts(self, key: str, value: int) -> None:
        self._recovery[key] = value


class StepIterator:
    """Walks a step list one step at a time.

    While a step is visited the cursor points at it. When the visit returns,
    a forward move made during the visit stands, a rewind makes the same step
    be visited again, and otherwise the cursor advances by one. The cursor
    always stays within ``[0, len(steps)]``, ``len(steps)`` being the done
    position.
    """

    def __init__(
        self,
        steps: list[Step],
        context: TraversalContext | None = None,
        cancel_token: CancellationToken | None = None,
    ):
        self.steps = steps
        self.context = context if context is not None else TraversalContext()
        self.cancel_token = cancel_token
        self._cursor = 0
        self._rewound = False
        self._current: Step | None = None

    @property
    def step(self) -> Step | None:
        return self._current

    @property
    def cursor(self) -> int:
        return self._cursor

    @property
    def done(self) -> bool:
        return self._cursor >= len(self.steps)

    def go_next_step(self) -> bool:
        self._cursor = min(self._cursor + 1, len(self.steps))
        self._rewound = False
        return True

    def go_previous_step(self) -> bool:
        self._cursor = max(self._cursor - 1, 0)
        self._rewound = True
        return True

    def step_end(self) -> bool:
        self._cursor = len(self.steps)
        self._rewound = False
        return True

    async def run(self, iterator: Callable[[Step], Awaitable[None]]) -> None:
        """
        Visit steps until the cursor reaches the done position.

        :param iterator: Coroutine function visiting one step
        :type iterator: Callable[[Step], Awaitable[None]]
        """
        while self._cursor < len(self.steps):
            if self.cancel_token is not None and self.cancel_token.is_cancelled:
                return
            index = self._cursor
            self._current = self.steps[index]
            self._rewound = False
            await iterator(self._current)
            if self._cursor > index:
                continue
            self._cursor = index if self._rewound else index + 1

    async def call_condition(self, step: Step, iteration: int, page: Any) -> bool:
        """
        Decide whether ``step`` runs in this visit.

        Advances the step's repeat cycle counter as a side effect.

        :param step: The visited step
        :type step: Step
        :param iteration: The iteration number
        :type iteration: int
        :param page: The page handed to a ``step_while`` predicate
        :type page: Any
        :returns: True if the step should run
        :rtype: bool
        """
        options = step.options
        if options.pending or (options.once and iteration > 1) or options.skip:
            return False

        if options.repeat is not None:
            current = self.context.repeat_iteration(step)
            if current >= options.repeat.count - 1:
                self.context.set_repeat_iteration(step, 0)
            else:
                self.context.set_repeat_iteration(step, current + 1)

        if options.step_while is not None:
            return await self.call_predicate(options.step_while.predicate, page)

        return True

    async def call_predicate(self, predicate: Predicate, page: Any) -> bool:
        """
        Evaluate a ``step_while`` predicate. A false or raising predicate moves the cursor on.

        :param predicate: The predicate
        :type predicate: Predicate
        :param page: The page handed to the predicate
        :type page: Any
        :returns: The predicate's verdict
        :rtype: bool
        :raises RunCancelled: If the run is cancelled while the predicate is pending
        """
        condition = False
        try:
            condition = bool(await self._call(predicate, page))
        except RunCancelled:
            raise
        except Exception as e:
            logger.error("Step predicate raised: %s", e)
        if not condition:
            self.go_next_step()
        return condition

    async def call_recovery(
        self,
        step: Step,
        looper: Looper,
        page: Any,
        recovery: dict[str, StepRecovery],
        tries: int | None = None,
    ) -> bool:
        """
        Run the recovery registered for a failed step and position the cursor accordingly.

        :param step: The step whose action failed
        :type step: Step
        :param looper: The scheduler, asked to restart on ``RecoverWith.RESTART``
        :type looper: Looper
        :param page: The page handed to the recovery action
        :type page: Any
        :param recovery: The recovery registry, keyed by step name or ``"global"``
        :type recovery: dict[str, StepRecovery]
        :param tries: Bound used when the entry declares no ``loop_count``
        :type tries: int | None
        :returns: True if the step recovered, False if recovery is unavailable or exhausted
        :rtype: bool
        :raises RunCancelled: If the run is cancelled while the recovery action is pending
        """
        key = step.name if step.name in recovery else GLOBAL_RECOVERY
        step_recovery = recovery.get(key)
        if step_recovery is None:
            return False

        bound = step_recovery.loop_count or tries or 1
        attempts = self.context.recovery_attempts(key)
        if step_recovery.recovery_step is None or attempts >= bound:
            self.context.set_recovery_attempts(key, 0)
            return False
        self.context.set_recovery_attempts(key, attempts + 1)

        try:
            result = await self._call(step_recovery.recovery_step.action, page)
        except RunCancelled:
            raise
        except Exception as e:
            logger.warning("Recovery step %s raised: %s", step_recovery.recovery_step.name, e)
            return False

        options = step.options
        if result == RecoverWith.CONTINUE:
            if options.repeat is not None:
                return self.go_previous_step()
            return self.go_next_step()
        elif result == RecoverWith.RESTART:
            if options.repeat is not None:
                self.context.set_repeat_iteration(step, 0)
            looper.restart_loop()
            return self.step_end()
        elif result == RecoverWith.RETRY:
            if options.repeat is not None or options.step_while is not None:
                if options.repeat is not None:
                    self.context.set_repeat_iteration(step, self.context.repeat_iteration(step) - 1)
                return self.go_previous_step()
            return self.go_next_step()

        return True

    async def _call(self, fn: Callable[..., Any], *args: Any) -> Any:
        if self.cancel_token is not None:
            return await self.cancel_token.call(fn, *args)
        result = fn(*args)
        if inspect.isawaitable(result):
            result = await result
        return result
