"""HTTP request and response messages used by the HTTP server."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from http import HTTPStatus
from typing import Any

# maximum size of a request body accepted by the parser: 100 MiB
PARSER_BODY_LIMITATION = 100 * 1024 * 1024

# handler(request_body, respond) where respond(content) sends the response body
HttpReqHandler = Callable[[str, Callable[[bytes], None]], None]
# handler(http_stream, request, node_id) taking over a websocket upgrade
WsUpgradeHandler = Callable[[Any, "HttpRequest", "str | None"], None]


def _tokens(value: str) -> list[str]:
    return [token.strip().lower() for token in value.split(",") if token.strip()]


class _HeaderMixin:
    headers: list[tuple[str, str]]
    version: int

    def get_header(self, name: str) -> str | None:
        """Return the value of header ``name`` (case-insensitive), or None."""
        wanted = name.lower()
        values = [value for key, value in self.headers if key.lower() == wanted]
        return ", ".join(values) if values else None

    def set_header(self, name: str, value: str) -> None:
        """Replace any header ``name`` with ``value``."""
        self.remove_header(name)
        self.headers.append((name, value))

    def remove_header(self, name: str) -> None:
        wanted = name.lower()
        self.headers[:] = [(k, v) for k, v in self.headers if k.lower() != wanted]

    def _header_tokens(self, name: str) -> list[str]:
        value = self.get_header(name)
        return _tokens(value) if value is not None else []

    @property
    def keep_alive(self) -> bool:
        """Whether the connection stays open after this message."""
        tokens = self._header_tokens("Connection")
        if self.version >= 11:
            return "close" not in tokens
        return "keep-alive" in tokens

    @keep_alive.setter
    def keep_alive(self, value: bool) -> None:
        tokens = [t for t in self._header_tokens("Connection") if t not in ("close", "keep-alive")]
        if self.version >= 11 and not value:
            tokens.append("close")
        elif self.version < 11 and value:
            tokens.append("keep-alive")
        if tokens:
            self.set_header("Connection", ", ".join(tokens))
        else:
            self.remove_header("Connection")


@dataclass
class HttpRequest(_HeaderMixin):
    """A parsed HTTP request with a text body."""

    method: str = "GET"
    target: str = "/"
    version: int = 11
    headers: list[tuple[str, str]] = field(default_factory=list)
    body: str = ""

    @property
    def need_eof(self) -> bool:
        return not self.keep_alive

    def is_websocket_upgrade(self) -> bool:
        """True if the request asks to upgrade the connection to a websocket."""
        if self.version < 11 or self.method.upper() != "GET":
            return False
        if "upgrade" not in self._header_tokens("Connection"):
            return False
        return "websocket" in self._header_tokens("Upgrade")


@dataclass
class HttpResponse(_HeaderMixin):
    """An HTTP response with a binary body."""

    status: int = 200
    version: int = 11
    headers: list[tuple[str, str]] = field(default_factory=list)
    body: bytes = b""

    @property
    def reason(self) -> str:
        try:
            return HTTPStatus(self.status).phrase
        except ValueError:
            return ""

    @property
    def need_eof(self) -> bool:
        """True if the connection must be closed to delimit this response."""
        if not self.keep_alive:
            return True
        if self.get_header("Content-Length") is not None:
            return False
        return "chunked" not in self._header_tokens("Transfer-Encoding")

    def prepare_payload(self) -> None:
        """Set Content-Length from the body."""
        self.remove_header("Transfer-Encoding")
        self.set_header("Content-Length", str(len(self.body)))

    def to_bytes(self) -> bytes:
        """Serialise the response to wire format."""
        lines = [f"HTTP/{self.version // 10}.{self.version % 10} {self.status} {self.reason}"]
        lines.extend(f"{name}: {value}" for name, value in self.headers)
        head = "\r\n".join(lines) + "\r\n\r\n"
        return head.encode("latin-1") + bytes(self.body)