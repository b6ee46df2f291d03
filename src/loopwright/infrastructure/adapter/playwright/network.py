import logging
import time
from typing import Any

import msgspec

from loopwright.application.port import Reporter, Session, TraceAttacher

logger = logging.getLogger(__name__)


class NetworkEntry(msgspec.Struct, kw_only=True, frozen=True):
    method: str
    url: str
    resource_type: str = ""
    status: int | None = None
    timestamp: float = 0.0


class NetworkRecorder(TraceAttacher):
    """
    Records the requests and responses of a session's page.

    Entries are kept in arrival order; a response is recorded as its own entry
    carrying the status code.
    """

    def __init__(self):
        self.entries: list[NetworkEntry] = []
        self.reporter: Reporter | None = None

    def attach(self, session: Session, reporter: Reporter) -> None:
        self.reporter = reporter
        page = session.page
        page.on("request", self._on_request)
        page.on("response", self._on_response)

    def _on_request(self, request: Any) -> None:
        entry = NetworkEntry(
            method=request.method,
            url=request.url,
            resource_type=request.resource_type,
            timestamp=time.time(),
        )
        self.entries.append(entry)
        logger.debug("%s %s", entry.method, entry.url)

    def _on_response(self, response: Any) -> None:
        request = response.request
        entry = NetworkEntry(
            method=request.method,
            url=response.url,
            resource_type=request.resource_type,
            status=response.status,
            timestamp=time.time(),
        )
        self.entries.append(entry)
        logger.debug("%s %s -> %d", entry.method, entry.url, entry.status)

    def to_json(self) -> str:
        """Convert the recorded entries to a JSON string."""
        return msgspec.json.encode(self.entries).decode()
