"""HTTP/1.x request reading and response writing over an asyncio stream pair."""

from __future__ import annotations

import asyncio
import logging

import h11

from tlsnode.http_common import PARSER_BODY_LIMITATION, HttpRequest, HttpResponse

_log = logging.getLogger(__name__)

_READ_SIZE = 64 * 1024


def _version_number(http_version: bytes) -> int:
    major, _, minor = http_version.decode("ascii").partition(".")
    return int(major) * 10 + int(minor or 0)


class HttpStream:
    """One connection carrying HTTP requests in and HTTP responses out.

    TLS, when used, sits underneath the reader/writer pair, so plain and
    secured connections are handled alike.
    """

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        module_name: str = "DEFAULT",
    ) -> None:
        self._reader = reader
        self._writer = writer
        self.module_name = module_name
        self.body_limit = PARSER_BODY_LIMITATION
        self._closed = False
        self._buffer = b""
        _log.debug("[%s][HTTP][STREAM] [NEWOBJ][HttpStream] %s", module_name, id(self))

    @property
    def reader(self) -> asyncio.StreamReader:
        return self._reader

    @property
    def writer(self) -> asyncio.StreamWriter:
        return self._writer

    @property
    def is_ssl(self) -> bool:
        """True if the connection is secured with TLS."""
        return self._writer.get_extra_info("ssl_object") is not None

    def is_open(self) -> bool:
        """True while the stream has not been closed."""
        return not self._closed and not self._writer.is_closing()

    def close(self) -> None:
        """Close the connection; further calls do nothing."""
        if self._closed:
            return
        self._closed = True
        _log.info("[%s][HTTP][STREAM] close the stream this=%s", self.module_name, id(self))
        try:
            self._writer.close()
        except (OSError, RuntimeError) as exc:
            _log.debug("[%s][HTTP][STREAM] close failed error=%s", self.module_name, exc)

    async def read_request(self) -> HttpRequest | None:
        """Read the next request.

        Returns None when the peer closed the connection between requests.
        Raises ValueError for a malformed request or one whose body exceeds
        ``body_limit``, and ConnectionError if the stream is already closed.
        """
        if self._closed:
            raise ConnectionError("http stream is closed")

        conn = h11.Connection(h11.SERVER)
        if self._buffer:
            conn.receive_data(self._buffer)
            self._buffer = b""

        head: h11.Request | None = None
        body = bytearray()
        try:
            while True:
                event = conn.next_event()
                if event is h11.NEED_DATA:
                    conn.receive_data(await self._reader.read(_READ_SIZE))
                elif isinstance(event, h11.ConnectionClosed):
                    return None
                elif isinstance(event, h11.Request):
                    head = event
                    self._check_declared_length(event)
                elif isinstance(event, h11.Data):
                    body += event.data
                    if len(body) > self.body_limit:
                        raise ValueError("http request body exceeds the body limit")
                elif isinstance(event, h11.EndOfMessage):
                    self._buffer = conn.trailing_data[0]
                    break
        except h11.RemoteProtocolError as exc:
            raise ValueError(f"malformed http request: {exc}") from exc

        assert head is not None
        return HttpRequest(
            method=head.method.decode("ascii"),
            target=head.target.decode("latin-1"),
            version=_version_number(head.http_version),
            headers=[
                (name.decode("latin-1"), value.decode("latin-1"))
                for name, value in head.headers
            ],
            body=bytes(body).decode("utf-8", errors="surrogateescape"),
        )

    def _check_declared_length(self, request: h11.Request) -> None:
        for name, value in request.headers:
            if name == b"content-length" and int(value) > self.body_limit:
                raise ValueError("http request body exceeds the body limit")

    async def write_response(self, response: HttpResponse) -> int:
        """Write ``response`` and return the number of bytes written."""
        if self._closed:
            raise ConnectionError("http stream is closed")
        data = response.to_bytes()
        self._writer.write(data)
        await self._writer.drain()
        return len(data)

    def _endpoint(self, key: str) -> str:
        try:
            info = self._writer.get_extra_info(key)
        except (OSError, RuntimeError):
            return ""
        if not isinstance(info, tuple) or len(info) < 2:
            return ""
        return f"{info[0]}:{info[1]}"

    def local_endpoint(self) -> str:
        """Return ``"ip:port"`` of the local side, or an empty string."""
        return self._endpoint("sockname")

    def remote_endpoint(self) -> str:
        """Return ``"ip:port"`` of the peer, or an empty string."""
        return self._endpoint("peername")


class HttpStreamFactory:
    """Creates :class:`HttpStream` objects."""

    def build_http_stream(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        module_name: str = "DEFAULT",
    ) -> HttpStream:
        return HttpStream(reader, writer, module_name)