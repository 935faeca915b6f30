"""Protocol messages exchanged between clients and replicas.

Every concrete message separates the data that gets authenticated
(returned by ``payload()``) from the attached authentication data
(signature or USIG UI). Messages are serialized into a compact binary
form with :func:`encode_message` and restored with :func:`decode_message`.
"""

from __future__ import annotations

import struct
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

__all__ = [
    "ClientMessage",
    "ReplicaMessage",
    "MessageWithUI",
    "ViewMessage",
    "MessageWithSignature",
    "Request",
    "Reply",
    "Prepare",
    "Commit",
    "wrap_message",
    "unwrap_message",
    "encode_message",
    "decode_message",
]


class ClientMessage(ABC):
    """A message generated by a client; ``client_id`` names the client."""

    client_id: int


class ReplicaMessage(ABC):
    """A message generated by a replica; ``replica_id`` names the replica."""

    replica_id: int

    @abstractmethod
    def embedded_messages(self) -> list[Any]:
        """Return the messages embedded into this one."""


class MessageWithUI(ReplicaMessage):
    """A replica message carrying a USIG unique identifier."""

    @abstractmethod
    def payload(self) -> bytes:
        """Return the serialized message data, excluding the UI."""

    @property
    @abstractmethod
    def ui_bytes(self) -> bytes:
        """The serialized UI attached to the message."""

    @abstractmethod
    def attach_ui(self, ui: bytes) -> None:
        """Attach a serialized UI to the message."""


class ViewMessage(ABC):
    """A message that has to be processed in the view given by ``view``."""

    view: int


class MessageWithSignature(ABC):
    """A message carrying a normal signature."""

    @abstractmethod
    def payload(self) -> bytes:
        """Return the serialized message data, excluding the signature."""

    @property
    @abstractmethod
    def signature_bytes(self) -> bytes:
        """The serialized signature attached to the message."""

    @abstractmethod
    def attach_signature(self, signature: bytes) -> None:
        """Attach a serialized signature to the message."""


def _pack(fmt: str, *values: int) -> bytes:
    try:
        return struct.pack(fmt, *values)
    except struct.error as exc:
        raise ValueError(f"Message field out of range: {exc}") from exc


def _blob(data: bytes) -> bytes:
    return _pack(">I", len(data)) + bytes(data)


class _Reader:
    """Sequential reader over serialized message bytes."""

    def __init__(self, data: bytes) -> None:
        self._data = memoryview(bytes(data))
        self._pos = 0

    def take(self, size: int) -> bytes:
        end = self._pos + size
        if end > len(self._data):
            raise ValueError("Truncated message")
        chunk = bytes(self._data[self._pos:end])
        self._pos = end
        return chunk

    def unpack(self, fmt: str) -> tuple[int, ...]:
        layout = struct.Struct(fmt)
        return layout.unpack(self.take(layout.size))

    def blob(self) -> bytes:
        (size,) = self.unpack(">I")
        return self.take(size)

    def finish(self) -> None:
        if self._pos != len(self._data):
            raise ValueError("Trailing data after message")


@dataclass
class Request(ClientMessage, MessageWithSignature):
    """Client request carrying an operation to execute."""

    client_id: int = 0
    seq: int = 0
    operation: bytes = b""
    signature: bytes = b""

    def payload(self) -> bytes:
        return _pack(">IQ", self.client_id, self.seq) + _blob(self.operation)

    @property
    def signature_bytes(self) -> bytes:
        return self.signature

    def attach_signature(self, signature: bytes) -> None:
        self.signature = signature

    def _encode(self) -> bytes:
        return self.payload() + _blob(self.signature)

    @classmethod
    def _decode(cls, reader: _Reader) -> Request:
        client_id, seq = reader.unpack(">IQ")
        operation = reader.blob()
        signature = reader.blob()
        return cls(client_id, seq, operation, signature)


def _decode_nested_request(data: bytes) -> Request:
    reader = _Reader(data)
    request = Request._decode(reader)
    reader.finish()
    return request


@dataclass
class Reply(ReplicaMessage, MessageWithSignature):
    """Replica reply with the result of an executed request."""

    replica_id: int = 0
    client_id: int = 0
    seq: int = 0
    result: bytes = b""
    signature: bytes = b""

    def payload(self) -> bytes:
        header = _pack(">IIQ", self.replica_id, self.client_id, self.seq)
        return header + _blob(self.result)

    @property
    def signature_bytes(self) -> bytes:
        return self.signature

    def attach_signature(self, signature: bytes) -> None:
        self.signature = signature

    def embedded_messages(self) -> list[Any]:
        return []

    def _encode(self) -> bytes:
        return self.payload() + _blob(self.signature)

    @classmethod
    def _decode(cls, reader: _Reader) -> Reply:
        replica_id, client_id, seq = reader.unpack(">IIQ")
        result = reader.blob()
        signature = reader.blob()
        return cls(replica_id, client_id, seq, result, signature)


@dataclass
class Prepare(MessageWithUI, ViewMessage):
    """Primary's proposal to order a request in a view."""

    view: int = 0
    replica_id: int = 0
    request: Request = field(default_factory=Request)
    replica_ui: bytes = b""

    def payload(self) -> bytes:
        header = _pack(">QI", self.view, self.replica_id)
        return header + _blob(self.request._encode())

    @property
    def ui_bytes(self) -> bytes:
        return self.replica_ui

    def attach_ui(self, ui: bytes) -> None:
        self.replica_ui = ui

    def embedded_messages(self) -> list[Any]:
        return [self.request]

    def _encode(self) -> bytes:
        return self.payload() + _blob(self.replica_ui)

    @classmethod
    def _decode(cls, reader: _Reader) -> Prepare:
        view, replica_id = reader.unpack(">QI")
        request = _decode_nested_request(reader.blob())
        replica_ui = reader.blob()
        return cls(view, replica_id, request, replica_ui)


@dataclass
class Commit(MessageWithUI, ViewMessage):
    """Backup's commitment to a Prepare from the primary."""

    view: int = 0
    replica_id: int = 0
    primary_id: int = 0
    request: Request = field(default_factory=Request)
    primary_ui: bytes = b""
    replica_ui: bytes = b""

    def payload(self) -> bytes:
        header = _pack(">QII", self.view, self.replica_id, self.primary_id)
        return header + _blob(self.request._encode()) + _blob(self.primary_ui)

    @property
    def ui_bytes(self) -> bytes:
        return self.replica_ui

    def attach_ui(self, ui: bytes) -> None:
        self.replica_ui = ui

    def embedded_messages(self) -> list[Any]:
        return [self.prepare()]

    def prepare(self) -> Prepare:
        """Reconstruct the Prepare this Commit refers to."""
        return Prepare(
            view=self.view,
            replica_id=self.primary_id,
            request=self.request,
            replica_ui=self.primary_ui,
        )

    def _encode(self) -> bytes:
        return self.payload() + _blob(self.replica_ui)

    @classmethod
    def _decode(cls, reader: _Reader) -> Commit:
        view, replica_id, primary_id = reader.unpack(">QII")
        request = _decode_nested_request(reader.blob())
        primary_ui = reader.blob()
        replica_ui = reader.blob()
        return cls(view, replica_id, primary_id, request, primary_ui, replica_ui)


_KINDS: dict[str, tuple[int, type]] = {
    "request": (1, Request),
    "reply": (2, Reply),
    "prepare": (3, Prepare),
    "commit": (4, Commit),
}
_BY_TAG = {tag: cls for tag, cls in _KINDS.values()}


def _kind_of(msg: Any) -> str:
    for name, (_, cls) in _KINDS.items():
        if isinstance(msg, cls):
            return name
    raise TypeError("Unknown message type")


def wrap_message(msg: Any) -> dict[str, Any]:
    """Wrap a concrete message into a single-entry ``{kind: message}`` mapping."""
    return {_kind_of(msg): msg}


def unwrap_message(wrapped: dict[str, Any]) -> Any:
    """Return the concrete message held by a wrapper from :func:`wrap_message`."""
    if not isinstance(wrapped, dict) or len(wrapped) != 1:
        raise TypeError("Unknown message type")
    ((kind, msg),) = wrapped.items()
    entry = _KINDS.get(kind)
    if entry is None or not isinstance(msg, entry[1]):
        raise TypeError("Unknown message type")
    return msg


def encode_message(msg: Any) -> bytes:
    """Serialize a concrete message, including its type, to bytes."""
    tag, _ = _KINDS[_kind_of(msg)]
    return bytes([tag]) + msg._encode()


def decode_message(data: bytes) -> Any:
    """Restore a concrete message from bytes made by :func:`encode_message`.

    Raises ValueError if the data is malformed.
    """
    if not data:
        raise ValueError("Empty message")
    cls = _BY_TAG.get(data[0])
    if cls is None:
        raise ValueError(f"Unknown message tag {data[0]}")
    reader = _Reader(data[1:])
    msg = cls._decode(reader)
    reader.finish()
    return msg