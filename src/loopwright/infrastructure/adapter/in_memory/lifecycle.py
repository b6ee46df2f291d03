from collections.abc import Awaitable, Callable

from loopwright.application.port import RerunTrigger, Session, SessionLifecycle


class SingleShotLifecycle(SessionLifecycle):
    """Launches a session per run and closes it when the run is over."""

    persistent = False

    def __init__(self):
        self._session: Session | None = None

    @property
    def session(self) -> Session | None:
        return self._session

    async def acquire(self, launch: Callable[[], Awaitable[Session]]) -> Session:
        self._session = await launch()
        return self._session

    async def release(self, session: Session) -> None:
        if session is self._session:
            await self.close()

    async def close(self) -> None:
        session, self._session = self._session, None
        if session is not None:
            await session.close()


class PersistentLifecycle(SessionLifecycle):
    """Launches one session and keeps it across reruns until closed."""

    persistent = True

    def __init__(self, rerun_trigger: RerunTrigger | None = None):
        self.rerun_trigger = rerun_trigger
        self._session: Session | None = None

    @property
    def session(self) -> Session | None:
        return self._session

    async def acquire(self, launch: Callable[[], Awaitable[Session]]) -> Session:
        if self._session is None:
            self._session = await launch()
        return self._session

    async def release(self, session: Session) -> None:
        return None

    async def close(self) -> None:
        session, self._session = self._session, None
        if session is not None:
            await session.close()
