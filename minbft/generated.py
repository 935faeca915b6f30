"""Handling of messages generated by the replica itself."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from typing import Any

from minbft.messages import Commit, MessageWithUI, Prepare, ReplicaMessage, Reply, wrap_message
from minbft.utils import ProtocolError, message_string

__all__ = [
    "make_generated_message_handler",
    "make_generated_ui_message_handler",
    "make_generated_message_consumer",
]


def make_generated_message_handler(
    apply: Callable[[ReplicaMessage], None],
    consume: Callable[[ReplicaMessage], None],
    logger: logging.Logger,
) -> Callable[[ReplicaMessage], None]:
    """Build a handler that applies a generated message, then consumes it.

    A generated message that cannot be applied is a fault of the replica
    itself and raises RuntimeError.
    """

    def handle(msg: ReplicaMessage) -> None:
        logger.debug("Generated %s", message_string(msg))
        try:
            apply(msg)
        except ProtocolError as exc:
            raise RuntimeError(f"Failed to apply generated message: {exc}") from exc
        consume(msg)

    return handle


def make_generated_ui_message_handler(
    assign_ui: Callable[[MessageWithUI], None],
    handle: Callable[[ReplicaMessage], None],
) -> Callable[[MessageWithUI], None]:
    """Build a handler that assigns a UI and handles the message.

    UI assignment and handling happen under one lock, so messages are
    handled in the order of their UI counter values.
    """
    lock = threading.Lock()

    def handle_ui_message(msg: MessageWithUI) -> None:
        with lock:
            assign_ui(msg)
            handle(msg)

    return handle_ui_message


def make_generated_message_consumer(
    log: Any,
    provide_client_state: Callable[[int], Any],
) -> Callable[[ReplicaMessage], None]:
    """Build a consumer delivering generated messages to their recipients.

    A Reply goes to the state of its client; Prepare and Commit are
    appended, wrapped, to the message log for the peer replicas.
    """

    def consume(msg: ReplicaMessage) -> None:
        if isinstance(msg, Reply):
            try:
                provide_client_state(msg.client_id).add_reply(msg)
            except Exception as exc:
                # An erroneous Reply must never be generated.
                raise RuntimeError(f"Failed to consume generated Reply: {exc}") from exc
        elif isinstance(msg, (Prepare, Commit)):
            log.append(wrap_message(msg))
        else:
            raise TypeError("Unknown message type")

    return consume