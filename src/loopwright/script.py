from collections.abc import Callable
from typing import Any

import msgspec

from loopwright.application.service import load_settings
from loopwright.domain.entity import (
    CompiledScript,
    Hook,
    Hooks,
    Predicate,
    RecoveryStep,
    Repeat,
    Step,
    StepAction,
    StepOptions,
    StepRecovery,
    StepWhile,
)
from loopwright.domain.service import validate_script
from loopwright.domain.value_object import GLOBAL_RECOVERY, Settings


class Script:
    """
    Builder for test scripts.

    Steps are registered in declaration order with the ``step`` decorator::

        script = Script(name="Checkout", loop_count=3)

        @script.step("Open home page", once=True)
        async def open_home(page):
            await page.goto("https://example.com")

        @script.recovery("Open home page", loop_count=2)
        async def reload(page):
            await page.reload()
            return RecoverWith.RETRY

    ``compile()`` validates the declarations and returns a ``CompiledScript``.
    """

    def __init__(self, settings: Settings | dict[str, Any] | None = None, source: str | None = None, **options):
        """
        :param settings: Script settings, as Settings or as a dictionary
        :type settings: Settings | dict[str, Any] | None
        :param source: Where the script came from, used in error messages
        :type source: str | None
        :param options: Individual settings, merged over ``settings``
        """
        base = msgspec.to_builtins(settings) if isinstance(settings, Settings) else dict(settings or {})
        self.settings = load_settings(msgspec.to_builtins({**base, **options}))
        self.source = source
        self._steps: list[Step] = []
        self._recovery: dict[str, StepRecovery] = {}
        self._hooks: dict[str, list[Hook]] = {"before_all": [], "before_each": [], "after_each": [], "after_all": []}

    def step(
        self,
        name: str,
        *,
        once: bool = False,
        skip: bool = False,
        pending: bool = False,
        repeat: int | None = None,
        step_while: Predicate | None = None,
        wait_until: str | None = None,
    ) -> Callable[[StepAction], StepAction]:
        """
        Register the decorated function as the next step.

        :param name: Unique step name, also the recovery lookup key
        :type name: str
        :param once: Run in the first iteration only
        :param skip: Never run
        :param pending: Never run, the step is not written yet
        :param repeat: Run the step this many times in a row
        :param step_while: Revisit the step while this predicate holds
        :param wait_until: Page load state awaited after the action
        :returns: The decorator
        """
        options = StepOptions(
            once=once,
            skip=skip,
            pending=pending,
            repeat=Repeat(count=repeat) if repeat is not None else None,
            step_while=StepWhile(predicate=step_while) if step_while is not None else None,
            wait_until=wait_until,
        )

        def decorator(fn: StepAction) -> StepAction:
            self._steps.append(Step(name=name, action=fn, options=options))
            return fn

        return decorator

    def recovery(self, name: str = GLOBAL_RECOVERY, *, loop_count: int = 0) -> Callable[[StepAction], StepAction]:
        """
        Register the decorated function as recovery for the named step, or for every step.

        :param name: Step name, or ``"global"`` for a fallback used by all steps
        :type name: str
        :param loop_count: How many recoveries are attempted before the failure is final
        :type loop_count: int
        :returns: The decorator
        """

        def decorator(fn: StepAction) -> StepAction:
            self._recovery[name] = StepRecovery(
                recovery_step=RecoveryStep(name=getattr(fn, "__name__", name), action=fn),
                loop_count=loop_count,
            )
            return fn

        return decorator

    def before_all(self, fn: Hook) -> Hook:
        self._hooks["before_all"].append(fn)
        return fn

    def before_each(self, fn: Hook) -> Hook:
        self._hooks["before_each"].append(fn)
        return fn

    def after_each(self, fn: Hook) -> Hook:
        self._hooks["after_each"].append(fn)
        return fn

    def after_all(self, fn: Hook) -> Hook:
        self._hooks["after_all"].append(fn)
        return fn

    def compile(self) -> CompiledScript:
        """
        Build the executable script.

        :returns: The validated compiled script
        :rtype: CompiledScript
        :raises CompilationError: If the declarations are invalid
        """
        script = CompiledScript(
            settings=self.settings,
            steps=list(self._steps),
            recovery=dict(self._recovery),
            hooks=Hooks(**{kind: list(hooks) for kind, hooks in self._hooks.items()}),
            source=self.source,
        )
        validate_script(script)
        return script

