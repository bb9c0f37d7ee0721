"""Message and endpoint abstractions shared by the networking layer."""

from __future__ import annotations

import enum
import functools
import ipaddress
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass


class MessageExtFieldFlag(enum.IntFlag):
    """Bits of a message's ``ext`` field."""

    RESPONSE = 0x0001


@dataclass
class EncodedMsg:
    """An encoded message: header bytes plus an optional payload."""

    header: bytes = b""
    payload: bytes | None = None


class MessageFace(ABC):
    """A framed message with version, packet type, sequence, ext flags and payload."""

    def __init__(
        self,
        version: int = 0,
        packet_type: int = 0,
        seq: str = "",
        ext: int = 0,
        payload: bytes | None = None,
    ) -> None:
        self.version = version
        self.packet_type = packet_type
        self.seq = seq
        self.ext = ext
        self.payload = payload

    @abstractmethod
    def encode(self) -> EncodedMsg:
        """Serialise the message into header and payload."""

    @abstractmethod
    def decode(self, buffer: bytes) -> int:
        """Parse the message from ``buffer``; return the number of bytes consumed."""

    @property
    @abstractmethod
    def length(self) -> int:
        """Total encoded length of the message."""

    def is_resp_packet(self) -> bool:
        """True if the response flag is set in ``ext``."""
        return bool(int(self.ext) & MessageExtFieldFlag.RESPONSE)

    def set_resp_packet(self) -> None:
        """Set the response flag in ``ext``."""
        self.ext = int(self.ext) | MessageExtFieldFlag.RESPONSE.value


class MessageFaceFactory(ABC):
    """Creates messages and sequence identifiers."""

    @abstractmethod
    def build_message(self) -> MessageFace:
        """Return a new, empty message."""

    def new_seq(self) -> str:
        """Return a fresh unique sequence identifier."""
        return uuid.uuid4().hex


@functools.total_ordering
@dataclass(eq=False)
class NodeIPEndpoint:
    """A host and port a node connects to."""

    host: str = ""
    port: int = 0
    ipv6: bool = False

    @classmethod
    def from_address(
        cls, address: str | ipaddress.IPv4Address | ipaddress.IPv6Address, port: int
    ) -> NodeIPEndpoint:
        """Build an endpoint from an IP address, recording whether it is IPv6."""
        ip = ipaddress.ip_address(address) if isinstance(address, str) else address
        return cls(str(ip), port, ip.version == 6)

    def _key(self) -> str:
        return f"{self.host}{self.port}"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, NodeIPEndpoint):
            return NotImplemented
        return self._key() == other._key()

    def __lt__(self, other: NodeIPEndpoint) -> bool:
        if not isinstance(other, NodeIPEndpoint):
            return NotImplemented
        return self._key() < other._key()

    def __hash__(self) -> int:
        return hash(self._key())

    def __str__(self) -> str:
        return f"{self.host}:{self.port}"

    def as_tuple(self) -> tuple[str, int]:
        """Return ``(host, port)`` suitable for socket calls."""
        return self.host, self.port