from collections.abc import Awaitable, Callable
from typing import Any

import msgspec

from loopwright.domain.value_object import Settings, Status

StepAction = Callable[[Any], Awaitable[Any] | Any]
Predicate = Callable[[Any], Awaitable[bool] | bool]
Hook = Callable[[Any], Awaitable[Any] | Any]


class Repeat(msgspec.Struct, frozen=True, forbid_unknown_fields=True):
    """Run a step ``count`` times in a row within each iteration."""

    count: int


class StepWhile(msgspec.Struct, frozen=True):
    """Keep revisiting a step while ``predicate(page)`` holds."""

    predicate: Predicate


class StepOptions(msgspec.Struct, kw_only=True, frozen=True):
    """Gating options of a step.

    ``once`` runs the step in the first iteration only, ``skip`` and ``pending``
    never run it. ``wait_until`` names a page load state awaited after the
    action succeeds.
    """

    once: bool = False
    skip: bool = False
    pending: bool = False
    repeat: Repeat | None = None
    step_while: StepWhile | None = None
    wait_until: str | None = None


class Step(msgspec.Struct, frozen=True):
    """A named unit of scripted browser interaction."""

    name: str
    action: StepAction
    options: StepOptions = msgspec.field(default_factory=StepOptions)


class RecoveryStep(msgspec.Struct, frozen=True):
    """An action run after a step failed; it returns a ``RecoverWith`` outcome."""

    name: str
    action: StepAction


class StepRecovery(msgspec.Struct, kw_only=True, frozen=True):
    """A recovery registry entry.

    ``loop_count`` bounds how many times the recovery runs before the failure
    is final; zero falls back to the ``tries`` setting.
    """

    recovery_step: RecoveryStep | None = None
    loop_count: int = 0


class Hooks(msgspec.Struct, kw_only=True, frozen=True):
    before_all: list[Hook] = []
    before_each: list[Hook] = []
    after_each: list[Hook] = []
    after_all: list[Hook] = []


class CompiledScript(msgspec.Struct, kw_only=True, frozen=True):
    """The executable form of a test script: settings, ordered steps and recovery registry."""

    settings: Settings = msgspec.field(default_factory=Settings)
    steps: list[Step]
    recovery: dict[str, StepRecovery] = {}
    hooks: Hooks = msgspec.field(default_factory=Hooks)
    source: str | None = None


class StepResult(msgspec.Struct, kw_only=True, frozen=True, forbid_unknown_fields=True):
    """Outcome of one step within one iteration."""

    name: str
    status: Status
    iteration: int
    duration: float = 0.0
    error: str | None = None
    recovered: bool = False


class IterationResult(msgspec.Struct, kw_only=True, frozen=True, forbid_unknown_fields=True):
    """Per-iteration step counts. ``duration`` is wall time in milliseconds."""

    iteration: int
    passed: int = 0
    failed: int = 0
    skipped: int = 0
    unexecuted: int = 0
    duration: float = 0.0
    steps: list[StepResult] = []

    def row(self) -> list[int]:
        return [self.iteration, self.passed, self.failed, self.skipped, self.unexecuted]

    def to_dict(self):
        """Convert the IterationResult to a dictionary."""
        return msgspec.to_builtins(self)


class RunSummary(msgspec.Struct, kw_only=True, frozen=True, forbid_unknown_fields=True):
    """Final summary of a test run, one entry per reported iteration."""

    iterations: list[IterationResult] = []

    def rows(self) -> list[list[int]]:
        """
        Tabular form of the summary.

        :returns: ``[iteration, passed, failed, skipped, unexecuted]`` rows ordered by iteration
        :rtype: list[list[int]]
        """
        return [result.row() for result in sorted(self.iterations, key=lambda r: r.iteration)]

    def totals(self) -> dict[str, int]:
        totals = {status.value: 0 for status in Status}
        for result in self.iterations:
            totals[Status.PASSED.value] += result.passed
            totals[Status.FAILED.value] += result.failed
            totals[Status.SKIPPED.value] += result.skipped
            totals[Status.UNEXECUTED.value] += result.unexecuted
        return totals

    @property
    def failed(self) -> bool:
        return any(result.failed for result in self.iterations)

    def to_dict(self):
        """Convert the RunSummary to a dictionary."""
        return msgspec.to_builtins(self)

    def to_json(self) -> str:
        """Convert the RunSummary to a JSON string."""
        return msgspec.json.encode(self).decode()

    def to_yaml(self) -> str:
        """Convert the RunSummary to a YAML string."""
        return msgspec.yaml.encode(self).decode()
