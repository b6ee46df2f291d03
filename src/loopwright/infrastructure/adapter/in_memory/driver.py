from typing import Any

from loopwright.application.port import BrowserDriver, Session
from loopwright.domain.value_object import LaunchOptions


class InMemoryPage:
    """Page stand-in for scripts that need no real browser."""

    def __init__(self):
        self.url = "about:blank"
        self.history: list[str] = []
        self.load_states: list[str] = []
        self.data: dict[str, Any] = {}

    async def goto(self, url: str) -> None:
        self.url = url
        self.history.append(url)

    async def wait_for_load_state(self, state: str = "load") -> None:
        self.load_states.append(state)


class InMemorySession(Session):
    def __init__(self, options: LaunchOptions):
        self.options = options
        self.closed = False
        self.close_calls = 0
        self._page = InMemoryPage()

    @property
    def page(self) -> InMemoryPage:
        return self._page

    async def close(self) -> None:
        """
        Mark the session closed.

        Repeated calls are counted but have no further effect.
        """
        self.close_calls += 1
        self.closed = True


class InMemoryDriver(BrowserDriver):
    """Launches in-memory sessions and remembers every launch."""

    def __init__(self):
        self.launches: list[LaunchOptions] = []
        self.sessions: list[InMemorySession] = []

    async def launch(self, options: LaunchOptions) -> InMemorySession:
        """
        Launch an in-memory session.

        :param options: The effective launch options
        :type options: LaunchOptions
        :returns: A new session
        :rtype: InMemorySession
        """
        self.launches.append(options)
        session = InMemorySession(options)
        self.sessions.append(session)
        return session
