"""Dispatch and staged processing of incoming protocol messages."""

from __future__ import annotations

import itertools
from collections.abc import Callable, Iterable, Iterator
from typing import Any

from minbft.messages import (
    Commit,
    MessageWithUI,
    Prepare,
    ReplicaMessage,
    Reply,
    Request,
    ViewMessage,
)
from minbft.utils import ProtocolError

__all__ = [
    "ViewProvider",
    "ViewWaiter",
    "make_incoming_message_handler",
    "make_message_validator",
    "make_message_processor",
    "make_replica_message_processor",
    "make_ui_message_processor",
    "make_view_message_processor",
    "make_applicable_replica_message_processor",
    "make_replica_message_applier",
    "make_message_replier",
]

Release = Callable[[], None]

# Returns the current active view and a release function; no view change
# begins until the release function is called.
ViewProvider = Callable[[], tuple[int, Release]]

# Waits for a view to become active; returns False as soon as the view is
# known never to become active, otherwise True and a release function.
ViewWaiter = Callable[[int], tuple[bool, Release | None]]


def make_incoming_message_handler(
    validate: Callable[[Any], None],
    process: Callable[[Any], bool],
    reply: Callable[[Any], Iterable[Any] | None],
) -> Callable[[Any], tuple[Iterable[Any] | None, bool]]:
    """Build a handler that validates, processes and replies to a message.

    It returns the reply source (or None) and whether the message was new.
    Failures raise ProtocolError.
    """

    def handle(msg: Any) -> tuple[Iterable[Any] | None, bool]:
        try:
            validate(msg)
        except TypeError:
            raise
        except Exception as exc:
            raise ProtocolError(f"Validation failed: {exc}") from exc

        try:
            new = process(msg)
        except ProtocolError as exc:
            raise ProtocolError(f"Error processing message: {exc}") from exc

        try:
            reply_source = reply(msg)
        except ProtocolError as exc:
            raise ProtocolError(f"Error replying message: {exc}") from exc

        return reply_source, new

    return handle


def make_message_validator(
    validate_request: Callable[[Request], None],
    validate_prepare: Callable[[Prepare], None],
    validate_commit: Callable[[Commit], None],
) -> Callable[[Any], None]:
    """Build a validator dispatching on the message type."""

    def validate(msg: Any) -> None:
        if isinstance(msg, Request):
            validate_request(msg)
        elif isinstance(msg, Prepare):
            validate_prepare(msg)
        elif isinstance(msg, Commit):
            validate_commit(msg)
        else:
            raise TypeError("Unknown message type")

    return validate


def make_message_processor(
    process_request: Callable[[Request], bool],
    process_replica_message: Callable[[ReplicaMessage], bool],
) -> Callable[[Any], bool]:
    """Build a processor dispatching client and replica messages."""

    def process(msg: Any) -> bool:
        if isinstance(msg, Request):
            return process_request(msg)
        if isinstance(msg, ReplicaMessage):
            return process_replica_message(msg)
        raise TypeError("Unknown message type")

    return process


def make_replica_message_processor(
    replica_id: int,
    process_ui_message: Callable[[MessageWithUI], bool],
) -> Callable[[ReplicaMessage], bool]:
    """Build a processor of replica messages; own messages are skipped."""

    def process(msg: ReplicaMessage) -> bool:
        if msg.replica_id == replica_id:
            return False
        if isinstance(msg, MessageWithUI):
            return process_ui_message(msg)
        raise TypeError("Unknown message type")

    return process


def make_ui_message_processor(
    capture_ui: Callable[[MessageWithUI], tuple[bool, Release | None]],
    process_view_message: Callable[[ViewMessage], bool],
) -> Callable[[MessageWithUI], bool]:
    """Build a processor handling each UI once and in counter order."""

    def process(msg: MessageWithUI) -> bool:
        new, release = capture_ui(msg)
        if not new:
            return False
        try:
            if isinstance(msg, ViewMessage):
                return process_view_message(msg)
            raise TypeError("Unknown message type")
        finally:
            release()

    return process


def make_view_message_processor(
    wait_view: ViewWaiter,
    process_applicable: Callable[[ReplicaMessage], bool],
) -> Callable[[ViewMessage], bool]:
    """Build a processor handling a message only in its required view."""

    def process(msg: ViewMessage) -> bool:
        ok, release = wait_view(msg.view)
        if not ok:
            return False
        try:
            if isinstance(msg, ReplicaMessage):
                return process_applicable(msg)
            raise TypeError("Unknown message type")
        finally:
            release()

    return process


def make_applicable_replica_message_processor(
    process: Callable[[Any], bool],
    apply_replica_message: Callable[[ReplicaMessage], None],
) -> Callable[[ReplicaMessage], bool]:
    """Build a processor that handles embedded messages, then applies one."""

    def process_applicable(msg: ReplicaMessage) -> bool:
        for embedded in msg.embedded_messages():
            try:
                process(embedded)
            except ProtocolError as exc:
                raise ProtocolError(
                    f"Failed to process embedded message: {exc}"
                ) from exc
        try:
            apply_replica_message(msg)
        except ProtocolError as exc:
            raise ProtocolError(f"Failed to apply message: {exc}") from exc
        return True

    return process_applicable


def make_replica_message_applier(
    apply_prepare: Callable[[Prepare], None],
    apply_commit: Callable[[Commit], None],
) -> Callable[[ReplicaMessage], None]:
    """Build an applier dispatching on the replica message type."""

    def apply(msg: ReplicaMessage) -> None:
        if isinstance(msg, Prepare):
            apply_prepare(msg)
        elif isinstance(msg, Commit):
            apply_commit(msg)
        elif isinstance(msg, Reply):
            return
        else:
            raise TypeError("Unknown message type")

    return apply


def make_message_replier(
    reply_request: Callable[[Request], Iterable[Any]],
) -> Callable[[Any], Iterator[Any] | None]:
    """Build a function giving the reply to a message, if any.

    For a Request it returns an iterator yielding at most one Reply;
    Prepare and Commit have no reply and give None.
    """

    def reply(msg: Any) -> Iterator[Any] | None:
        if isinstance(msg, Request):
            return itertools.islice(iter(reply_request(msg)), 1)
        if isinstance(msg, (Prepare, Commit)):
            return None
        raise TypeError("Unknown message type")

    return reply