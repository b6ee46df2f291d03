from loopwright.domain.entity import CompiledScript, IterationResult, StepResult
from loopwright.domain.exception import CompilationError
from loopwright.domain.value_object import GLOBAL_RECOVERY, Status


def validate_script(script: CompiledScript) -> bool:
    """
    Validates the compiled script structure.

    :param script: The compiled script to validate
    :type script: CompiledScript
    :returns: True if the script is valid
    :rtype: bool
    :raises CompilationError: If the script has no steps, duplicate step names,
        a repeat count below one, or a recovery entry for an unknown step
    """
    if not script.steps:
        raise CompilationError("Test script has no steps", source=script.source)
    seen_names = set()
    for step in script.steps:
        if not step.name or not isinstance(step.name, str):
            raise CompilationError(f"Invalid step name: {step.name!r}", source=script.source)
        if step.name in seen_names:
            raise CompilationError(f"Duplicate step name found: {step.name}", source=script.source)
        seen_names.add(step.name)
        if not callable(step.action):
            raise CompilationError(f"Step {step.name} has no callable action", source=script.source)
        repeat = step.options.repeat
        if repeat is not None and repeat.count < 1:
            raise CompilationError(f"Step {step.name} must repeat at least once", source=script.source)
    for key in script.recovery:
        if key != GLOBAL_RECOVERY and key not in seen_names:
            raise CompilationError(f"Recovery registered for unknown step: {key}", source=script.source)
    return True


def summarize_iteration(iteration: int, steps: list[StepResult], duration: float = 0.0) -> IterationResult:
    """
    Count the step outcomes of one iteration.

    :param iteration: The iteration number
    :type iteration: int
    :param steps: The step results of the iteration, in step order
    :type steps: list[StepResult]
    :param duration: Wall time of the iteration in milliseconds
    :type duration: float
    :returns: The iteration summary
    :rtype: IterationResult
    """
    counts = {status: 0 for status in Status}
    for step in steps:
        counts[step.status] += 1
    return IterationResult(
        iteration=iteration,
        passed=counts[Status.PASSED],
        failed=counts[Status.FAILED],
        skipped=counts[Status.SKIPPED],
        unexecuted=counts[Status.UNEXECUTED],
        duration=duration,
        steps=list(steps),
    )
