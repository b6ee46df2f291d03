import logging
import sys
from typing import Any, TextIO

from loopwright.application.port import RunLog

INDENT = "  "


class GroupFormatter(logging.Formatter):
    """Prefixes every line of a record with the sink's current group indentation."""

    def __init__(self, sink: "LoggerSink", fmt: str | None = None):
        super().__init__(fmt)
        self.sink = sink

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        prefix = INDENT * self.sink.depth
        if not prefix:
            return message
        return "\n".join(prefix + line for line in message.splitlines())


class LoggerSink(RunLog):
    """
    Run log writing through a standard library logger.

    ``open()`` attaches a stream handler to the logger and ``close()`` detaches
    it, so output only flows while a run is in progress. Messages logged inside
    a ``group()`` are indented one level per open group.
    """

    def __init__(self, logger: logging.Logger | None = None, stream: TextIO | None = None, fmt: str = "%(message)s"):
        self.logger = logger if logger is not None else logging.getLogger("loopwright.run")
        self.stream = stream
        self.fmt = fmt
        self.depth = 0
        self._handler: logging.Handler | None = None

    @property
    def is_open(self) -> bool:
        return self._handler is not None

    def open(self) -> None:
        if self._handler is not None:
            return
        handler = logging.StreamHandler(self.stream if self.stream is not None else sys.stderr)
        handler.setFormatter(GroupFormatter(self, self.fmt))
        self.logger.addHandler(handler)
        if self.logger.level == logging.NOTSET or self.logger.level > logging.INFO:
            self.logger.setLevel(logging.INFO)
        self._handler = handler

    def close(self) -> None:
        handler, self._handler = self._handler, None
        if handler is None:
            return
        handler.flush()
        self.logger.removeHandler(handler)
        self.depth = 0

    def info(self, message: str, *args: Any) -> None:
        self.logger.info(message, *args)

    def warning(self, message: str, *args: Any) -> None:
        self.logger.warning(message, *args)

    def error(self, message: str, *args: Any) -> None:
        self.logger.error(message, *args)

    def group(self, title: str, *args: Any) -> None:
        self.logger.info(title, *args)
        self.depth += 1

    def group_end(self) -> None:
        self.depth = max(self.depth - 1, 0)
