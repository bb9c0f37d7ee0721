"""An HTTP session: reads requests, dispatches them and writes responses in order."""

from __future__ import annotations

import asyncio
import logging
import time
from http import HTTPStatus

from tlsnode.http_common import (
    PARSER_BODY_LIMITATION,
    HttpReqHandler,
    HttpRequest,
    HttpResponse,
    WsUpgradeHandler,
)
from tlsnode.http_queue import ResponseQueue
from tlsnode.http_stream import HttpStream

_log = logging.getLogger(__name__)

SERVER_NAME = "tlsnode"


class HttpSession:
    """Serves HTTP requests arriving on one :class:`HttpStream`."""

    def __init__(self, module_name: str = "DEFAULT") -> None:
        self.module_name = module_name
        self.http_stream: HttpStream | None = None
        self.request_handler: HttpReqHandler | None = None
        self.ws_upgrade_handler: WsUpgradeHandler | None = None
        self.node_id: str | None = None
        self.queue = ResponseQueue(sender=self._send)
        self._loop: asyncio.AbstractEventLoop | None = None
        self._resume = asyncio.Event()
        self._resume.set()
        self._writes: set[asyncio.Task] = set()
        self._upgraded = False
        _log.debug("[%s][HTTP][SESSION] [NEWOBJ][HTTPSESSION] %s", module_name, id(self))

    async def run(self) -> None:
        """Serve requests until the peer goes away, then close the stream."""
        self._loop = asyncio.get_running_loop()
        while True:
            await self._resume.wait()
            if not await self.do_read():
                break
        while self._writes:
            await asyncio.gather(*list(self._writes), return_exceptions=True)
        if not self._upgraded:
            self.do_close()

    async def do_read(self) -> bool:
        """Read and dispatch one request; return True if reading should go on."""
        stream = self.http_stream
        if stream is None:
            raise RuntimeError("http session has no stream")
        stream.body_limit = PARSER_BODY_LIMITATION
        try:
            request = await stream.read_request()
        except (ValueError, OSError) as exc:
            _log.warning("[%s][HTTP][SESSION] onRead close the connection error=%s", self.module_name, exc)
            return False
        if request is None:
            _log.debug("[%s][HTTP][SESSION] onRead end of stream", self.module_name)
            return False

        if request.is_websocket_upgrade():
            _log.info("[%s][HTTP][SESSION] onRead websocket upgrade", self.module_name)
            if self.ws_upgrade_handler is None:
                _log.warning(
                    "[%s][HTTP][SESSION] the session will be closed for unsupported websocket upgrade",
                    self.module_name,
                )
                return False
            self._upgraded = True
            self.ws_upgrade_handler(stream, request, self.node_id)
            return False

        _log.info("[%s][HTTP][SESSION] onRead receive http request", self.module_name)
        try:
            self.handle_request(request)
        except Exception as exc:
            _log.warning("[%s][HTTP][SESSION] onRead exception error=%s", self.module_name, exc)

        if self.queue.is_full():
            self._resume.clear()
        return True

    def on_write(self, close: bool) -> None:
        """Called after a response was written; resumes reading when the queue drains."""
        if close:
            self.do_close()
            return
        if self.queue.on_write():
            self._resume.set()

    def do_close(self) -> None:
        """Close the underlying stream."""
        if self.http_stream is not None:
            self.http_stream.close()
        self._resume.set()

    def handle_request(self, request: HttpRequest) -> None:
        """Pass the request body to the handler and queue its response."""
        _log.debug(
            "[%s][HTTP][SESSION] handleRequest method=%s target=%s keep_alive=%s",
            self.module_name,
            request.method,
            request.target,
            request.keep_alive,
        )
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        loop = self._loop
        version = request.version
        start = time.monotonic()

        if self.request_handler is None:
            response = self.build_http_resp(HTTPStatus.HTTP_VERSION_NOT_SUPPORTED, version, b"")
            self.queue.enqueue(response)
            _log.warning("[%s][HTTP][SESSION] handleRequest unsupported http service", self.module_name)
            return

        def respond(content: bytes) -> None:
            response = self.build_http_resp(HTTPStatus.OK, version, content)
            self._deliver(loop, response)
            _log.debug(
                "[%s][HTTP][SESSION] handleRequest response keep_alive=%s timecost=%.3f",
                self.module_name,
                response.keep_alive,
                time.monotonic() - start,
            )

        self.request_handler(request.body, respond)

    def build_http_resp(self, status: int, version: int, content: bytes) -> HttpResponse:
        """Build a keep-alive JSON response carrying ``content``."""
        response = HttpResponse(status=int(status), version=version, body=bytes(content))
        response.set_header("Server", SERVER_NAME)
        response.set_header("Content-Type", "application/json")
        response.keep_alive = True
        response.prepare_payload()
        return response

    def _deliver(self, loop: asyncio.AbstractEventLoop, response: HttpResponse) -> None:
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is loop:
            self.queue.enqueue(response)
            return
        try:
            loop.call_soon_threadsafe(self.queue.enqueue, response)
        except RuntimeError:
            _log.debug("[%s][HTTP][SESSION] response dropped, loop closed", self.module_name)

    def _send(self, response: HttpResponse) -> None:
        loop = self._loop or asyncio.get_running_loop()
        task = loop.create_task(self._write(response))
        self._writes.add(task)
        task.add_done_callback(self._writes.discard)

    async def _write(self, response: HttpResponse) -> None:
        stream = self.http_stream
        if stream is None:
            return
        try:
            await stream.write_response(response)
        except (OSError, RuntimeError) as exc:
            _log.warning("[%s][HTTP][SESSION] onWrite close the connection error=%s", self.module_name, exc)
            self.do_close()
            return
        self.on_write(response.need_eof)