from collections.abc import Callable

from loopwright.application.port import RerunTrigger


class InMemoryRerunTrigger(RerunTrigger):
    """Rerun event source fired by calling ``fire()``, e.g. from a file watcher callback."""

    def __init__(self):
        self._callbacks: list[Callable[[], None]] = []

    def subscribe(self, callback: Callable[[], None]) -> None:
        if callback not in self._callbacks:
            self._callbacks.append(callback)

    def unsubscribe(self, callback: Callable[[], None]) -> None:
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    def fire(self) -> int:
        """
        Notify every subscriber.

        :returns: The number of subscribers notified
        :rtype: int
        """
        callbacks = list(self._callbacks)
        for callback in callbacks:
            callback()
        return len(callbacks)
