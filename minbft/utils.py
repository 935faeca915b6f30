"""Shared helpers: message signing, signature checks and message formatting."""

from __future__ import annotations

import enum
from collections.abc import Callable
from typing import Any

from minbft.messages import (
    ClientMessage,
    Commit,
    MessageWithSignature,
    MessageWithUI,
    Prepare,
    Reply,
    Request,
)

__all__ = [
    "AuthenticationRole",
    "ProtocolError",
    "make_replica_message_signer",
    "make_message_signature_verifier",
    "is_primary",
    "message_string",
]


class AuthenticationRole(enum.Enum):
    """Role in which an authenticator produces or checks a tag."""

    REPLICA = "replica"
    CLIENT = "client"
    USIG = "usig"


class ProtocolError(Exception):
    """A message could not be validated, processed or applied."""


def make_replica_message_signer(
    authen: Any,
) -> Callable[[MessageWithSignature], None]:
    """Build a function that signs a message as this replica.

    ``authen.generate_message_authen_tag(role, payload)`` must return the
    signature; any exception it raises propagates.
    """

    def sign(msg: MessageWithSignature) -> None:
        signature = authen.generate_message_authen_tag(
            AuthenticationRole.REPLICA, msg.payload()
        )
        msg.attach_signature(signature)

    return sign


def make_message_signature_verifier(
    authen: Any,
) -> Callable[[MessageWithSignature], None]:
    """Build a function that checks the signature attached to a message.

    ``authen.verify_message_authen_tag(role, id, payload, tag)`` raises on
    an invalid signature. A message with no known signer raises TypeError.
    """

    def verify(msg: MessageWithSignature) -> None:
        if isinstance(msg, ClientMessage):
            role = AuthenticationRole.CLIENT
            signer_id = msg.client_id
        else:
            raise TypeError("Message with no signer ID")
        authen.verify_message_authen_tag(
            role, signer_id, msg.payload(), msg.signature_bytes
        )

    return verify


def is_primary(view: int, replica_id: int, n: int) -> bool:
    """Tell whether the replica is the primary for the view."""
    return replica_id == view % n


def _text(data: bytes) -> str:
    return bytes(data).decode("utf-8", errors="replace")


def message_string(msg: Any, parse_ui: Callable[[bytes], Any] | None = None) -> str:
    """Describe a message in one line for logging.

    ``parse_ui`` turns UI bytes into an object with a ``counter``; if it is
    missing or the UI cannot be parsed, the counter is shown as 0.
    """
    cv = 0
    if parse_ui is not None and isinstance(msg, MessageWithUI):
        try:
            cv = parse_ui(msg.ui_bytes).counter
        except (ValueError, ProtocolError):
            cv = 0

    if isinstance(msg, Request):
        return (
            f"REQUEST<client={msg.client_id} seq={msg.seq} "
            f"payload={_text(msg.operation)}>"
        )
    if isinstance(msg, Reply):
        return (
            f"REPLY<replica={msg.replica_id} seq={msg.seq} "
            f"result={_text(msg.result)}>"
        )
    if isinstance(msg, Prepare):
        return (
            f"PREPARE<cv={cv} replica={msg.replica_id} view={msg.view} "
            f"client={msg.request.client_id} seq={msg.request.seq}>"
        )
    if isinstance(msg, Commit):
        return (
            f"COMMIT<cv={cv} replica={msg.replica_id} primary={msg.primary_id} "
            f"view={msg.view} client={msg.request.client_id} seq={msg.request.seq}>"
        )
    return "(unknown message)"