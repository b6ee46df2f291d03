class LoopwrightError(Exception):
    """Base class for errors raised by loopwright."""


class CompilationError(LoopwrightError):
    """A test script could not be compiled into a step list. The run never starts."""

    def __init__(self, message: str, source: str | None = None):
        super().__init__(message)
        self.source = source


class SessionError(LoopwrightError):
    """The browser session could not be launched or driven."""


class StepFailure(LoopwrightError):
    """A step action raised."""

    def __init__(self, step_name: str, cause: BaseException):
        super().__init__(f"Step '{step_name}' failed: {cause}")
        self.step_name = step_name
        self.cause = cause


class RunCancelled(LoopwrightError):
    """Raised at a cancellation checkpoint once the run's token has been cancelled."""
