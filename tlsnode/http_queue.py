"""Ordered queue of HTTP responses for request pipelining."""

from __future__ import annotations

from collections import deque
from collections.abc import Callable

from tlsnode.http_common import HttpResponse

Sender = Callable[[HttpResponse], None]


class ResponseQueue:
    """Holds responses waiting to be written; only the head is ever in flight."""

    def __init__(self, limit: int = 16, sender: Sender | None = None) -> None:
        self.limit = limit
        self.sender = sender
        self._responses: deque[HttpResponse] = deque()

    def __len__(self) -> int:
        return len(self._responses)

    def _send(self, response: HttpResponse) -> None:
        if self.sender is None:
            raise RuntimeError("no sender set on the response queue")
        self.sender(response)

    def is_full(self) -> bool:
        """True if the queue has reached its limit."""
        return len(self._responses) >= self.limit

    def on_write(self) -> bool:
        """Drop the sent head and send the next one.

        Returns True if the queue was full, i.e. the caller should resume reading.
        """
        if not self._responses:
            raise IndexError("on_write called on an empty response queue")
        was_full = self.is_full()
        self._responses.popleft()
        if self._responses:
            self._send(self._responses[0])
        return was_full

    def enqueue(self, response: HttpResponse) -> None:
        """Add a response; send it at once if nothing else is in flight."""
        self._responses.append(response)
        if len(self._responses) == 1:
            self._send(response)