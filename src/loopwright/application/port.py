from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from typing import Any

from loopwright.domain.entity import CompiledScript, IterationResult, RunSummary
from loopwright.domain.value_object import LaunchOptions

ScriptFactory = Callable[[], Awaitable[CompiledScript]]


class ScriptCompiler(ABC):
    """Abstract interface for turning a test script source into a compiled script."""

    @abstractmethod
    def compile(self, source_path: str, options: dict[str, Any] | None = None) -> CompiledScript:
        """
        Compile a test script.

        :param source_path: Location or name of the script source
        :type source_path: str
        :param options: Compiler specific options
        :type options: dict[str, Any] | None
        :returns: The compiled script
        :rtype: CompiledScript
        :raises CompilationError: If the script cannot be compiled
        """


class Session(ABC):
    """A launched browser session exposing a controllable page."""

    @property
    @abstractmethod
    def page(self) -> Any:
        """
        The page steps act upon.

        :returns: The driver's page handle
        :rtype: Any
        """

    @abstractmethod
    async def close(self) -> None:
        """Close the session. Closing an already closed session does nothing."""


class BrowserDriver(ABC):
    """Abstract interface for launching browser sessions."""

    @abstractmethod
    async def launch(self, options: LaunchOptions) -> Session:
        """
        Launch a browser session.

        :param options: The effective launch options
        :type options: LaunchOptions
        :returns: The launched session
        :rtype: Session
        """


class Reporter(ABC):
    """Abstract sink for structured run results."""

    @abstractmethod
    def report_iteration(self, result: IterationResult) -> None:
        """
        Receive the summary of a completed iteration.

        :param result: The iteration summary
        :type result: IterationResult
        """

    @abstractmethod
    def report_summary(self, summary: RunSummary) -> None:
        """
        Receive the final summary of a test run.

        :param summary: The run summary
        :type summary: RunSummary
        """

    @abstractmethod
    def flush(self) -> None:
        """Flush buffered output."""


class RerunTrigger(ABC):
    """Event source asking a persistent run to execute the script again."""

    @abstractmethod
    def subscribe(self, callback: Callable[[], None]) -> None:
        """
        Register a callback invoked for every rerun event.

        :param callback: The callback to invoke
        :type callback: Callable[[], None]
        """

    @abstractmethod
    def unsubscribe(self, callback: Callable[[], None]) -> None:
        """
        Remove a previously registered callback.

        :param callback: The callback to remove
        :type callback: Callable[[], None]
        """


class SessionLifecycle(ABC):
    """Decides how long a browser session lives relative to the runs using it."""

    persistent: bool = False
    rerun_trigger: RerunTrigger | None = None

    @property
    @abstractmethod
    def session(self) -> Session | None:
        """
        The session currently held, if any.

        :rtype: Session | None
        """

    @abstractmethod
    async def acquire(self, launch: Callable[[], Awaitable[Session]]) -> Session:
        """
        Get a session for a run.

        :param launch: Coroutine function launching a new session
        :type launch: Callable[[], Awaitable[Session]]
        :returns: The session the run acts upon
        :rtype: Session
        """

    @abstractmethod
    async def release(self, session: Session) -> None:
        """
        Hand a session back once a run is over.

        :param session: The session acquired for the run
        :type session: Session
        """

    @abstractmethod
    async def close(self) -> None:
        """Close the held session, if any. Safe to call more than once."""


class RunLog(ABC):
    """Sink for human readable run progress. Opened when a run starts, closed when it ends."""

    @abstractmethod
    def open(self) -> None: ...

    @abstractmethod
    def close(self) -> None: ...

    @abstractmethod
    def info(self, message: str, *args: Any) -> None: ...

    @abstractmethod
    def warning(self, message: str, *args: Any) -> None: ...

    @abstractmethod
    def error(self, message: str, *args: Any) -> None: ...

    @abstractmethod
    def group(self, title: str, *args: Any) -> None:
        """
        Start an indented group of messages.

        :param title: Group title, logged before indenting
        :type title: str
        """

    @abstractmethod
    def group_end(self) -> None:
        """End the innermost group."""


class TraceAttacher(ABC):
    """Observes page traffic for a test run."""

    @abstractmethod
    def attach(self, session: Session, reporter: Reporter) -> None:
        """
        Start observing the session's page.

        :param session: The session whose page is observed
        :type session: Session
        :param reporter: The reporter of the run
        :type reporter: Reporter
        """
