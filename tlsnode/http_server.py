"""An asyncio HTTP server that accepts plain or TLS connections and serves them in sessions."""

from __future__ import annotations

import asyncio
import ipaddress
import logging
import socket

from tlsnode.http_common import HttpReqHandler, WsUpgradeHandler
from tlsnode.http_session import HttpSession
from tlsnode.http_stream import HttpStream, HttpStreamFactory
from tlsnode.node_info import node_id_from_der

_log = logging.getLogger(__name__)


class HttpServer:
    """Listens on an address and runs an :class:`HttpSession` for every connection."""

    def __init__(self, listen_ip: str, listen_port: int, module_name: str = "DEFAULT") -> None:
        self.listen_ip = listen_ip
        self.listen_port = listen_port
        self.module_name = module_name
        self.disable_ssl = False
        self.request_handler: HttpReqHandler | None = None
        self.ws_upgrade_handler: WsUpgradeHandler | None = None
        self.ssl_context = None
        self.http_stream_factory = HttpStreamFactory()
        self._server: asyncio.base_events.Server | None = None

    async def __aenter__(self) -> HttpServer:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.stop()
        await self.wait_closed()

    @property
    def is_running(self) -> bool:
        """True while the server accepts connections."""
        return self._server is not None and self._server.is_serving()

    @property
    def bound_port(self) -> int:
        """The port actually listened on (useful when ``listen_port`` is 0)."""
        if self._server is None or not self._server.sockets:
            return self.listen_port
        return self._server.sockets[0].getsockname()[1]

    async def start(self) -> None:
        """Open the listening socket and begin accepting connections."""
        if self.is_running:
            _log.info("[%s][HTTP][SERVER] [startListen] http server is running", self.module_name)
            return

        _log.info(
            "[%s][HTTP][SERVER] [startListen] listenIP=%s listenPort=%s",
            self.module_name,
            self.listen_ip,
            self.listen_port,
        )
        try:
            ipaddress.ip_address(self.listen_ip)
        except ValueError as exc:
            raise ValueError(f"invalid listen ip: {self.listen_ip}") from exc

        ssl_context = None
        if not self.disable_ssl:
            if self.ssl_context is None:
                raise RuntimeError("ssl is enabled but no ssl context is set")
            ssl_context = self.ssl_context

        try:
            self._server = await asyncio.start_server(
                self._on_connection,
                host=self.listen_ip,
                port=self.listen_port,
                ssl=ssl_context,
                reuse_address=True,
                backlog=socket.SOMAXCONN,
            )
        except OSError as exc:
            _log.warning("[%s][HTTP][SERVER] [bind] error=%s", self.module_name, exc)
            raise RuntimeError(f"acceptor bind failed: {exc}") from exc

        _log.info(
            "[%s][HTTP][SERVER] [startListen] ip=%s port=%s",
            self.module_name,
            self.listen_ip,
            self.bound_port,
        )

    def stop(self) -> None:
        """Stop accepting connections."""
        if self._server is not None and self._server.is_serving():
            self._server.close()
        _log.info("[%s][HTTP][SERVER] [stop] http server", self.module_name)

    async def wait_closed(self) -> None:
        """Wait until the listening socket has been closed."""
        if self._server is not None:
            await self._server.wait_closed()

    def build_http_session(self, http_stream: HttpStream, node_id: str | None) -> HttpSession:
        """Create a session serving ``http_stream`` with this server's handlers."""
        session = HttpSession(http_stream.module_name)
        session.http_stream = http_stream
        session.request_handler = self.request_handler
        session.ws_upgrade_handler = self.ws_upgrade_handler
        session.node_id = node_id
        return session

    def _peer_node_id(self, writer: asyncio.StreamWriter) -> str:
        ssl_object = writer.get_extra_info("ssl_object")
        if ssl_object is None:
            return ""
        der = ssl_object.getpeercert(binary_form=True)
        if not der:
            return ""
        try:
            return node_id_from_der(der)
        except ValueError as exc:
            _log.warning("[%s][NODEINFO] Cert verify failed error=%s", self.module_name, exc)
            return ""

    async def _on_connection(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        local = writer.get_extra_info("sockname")
        remote = writer.get_extra_info("peername")
        if not local or not remote:
            _log.warning("[%s][HTTP][SERVER] [accept] endpoint unavailable", self.module_name)
            writer.close()
            return

        sock = writer.get_extra_info("socket")
        if sock is not None and sock.family in (socket.AF_INET, socket.AF_INET6):
            try:
                sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
            except OSError as exc:
                _log.debug("[%s][HTTP][SERVER] no_delay failed error=%s", self.module_name, exc)

        _log.info(
            "[%s][HTTP][SERVER] [accept] local_endpoint=%s remote_endpoint=%s",
            self.module_name,
            local,
            remote,
        )

        node_id = None if self.disable_ssl else self._peer_node_id(writer)
        stream = self.http_stream_factory.build_http_stream(reader, writer, self.module_name)
        session = self.build_http_session(stream, node_id)
        try:
            await session.run()
        except Exception as exc:
            _log.warning("[%s][HTTP][SERVER] session failed error=%s", self.module_name, exc)
            stream.close()


class HttpServerFactory:
    """Creates :class:`HttpServer` objects."""

    def build_http_server(
        self, listen_ip: str, listen_port: int, ssl_context, module_name: str = "DEFAULT"
    ) -> HttpServer:
        """Create a server for ``listen_ip:listen_port`` using ``ssl_context``."""
        server = HttpServer(listen_ip, listen_port, module_name)
        server.ssl_context = ssl_context
        server.http_stream_factory = HttpStreamFactory()
        _log.info(
            "[%s][HTTP][SERVER] [buildHttpServer] listenIP=%s listenPort=%s",
            module_name,
            listen_ip,
            listen_port,
        )
        return server