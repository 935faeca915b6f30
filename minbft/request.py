"""Handling of client Request messages and request execution."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from concurrent.futures import Future
from typing import Any

from minbft.messages import MessageWithSignature, Prepare, Reply, Request
from minbft.utils import ProtocolError, is_primary

__all__ = [
    "make_request_validator",
    "make_request_processor",
    "make_request_applier",
    "make_request_replier",
    "make_request_executor",
    "make_operation_executor",
    "make_request_seq_capturer",
    "make_request_seq_preparer",
    "make_request_seq_retirer",
    "make_request_timer_starter",
    "make_request_timer_stopper",
    "make_request_timeout_provider",
]

Release = Callable[[], None]


def make_request_validator(
    verify: Callable[[MessageWithSignature], None],
) -> Callable[[Request], None]:
    """Build a validator that checks the client signature of a Request.

    The validator raises whatever ``verify`` raises for an invalid request.
    """

    def validate(request: Request) -> None:
        verify(request)

    return validate


def make_request_processor(
    capture_seq: Callable[[Request], tuple[bool, Release | None]],
    apply_request: Callable[[Request], None],
) -> Callable[[Request], bool]:
    """Build a processor of valid Request messages.

    It returns False if the request was processed before, True otherwise,
    and raises ProtocolError if the request cannot be applied.
    """

    def process(request: Request) -> bool:
        new, release = capture_seq(request)
        if not new:
            return False
        try:
            apply_request(request)
        except ProtocolError as exc:
            raise ProtocolError(f"Failed to apply Request: {exc}") from exc
        finally:
            release()
        return True

    return process


def make_request_applier(
    replica_id: int,
    n: int,
    provide_view: Callable[[], tuple[int, Release]],
    handle_generated_ui_message: Callable[[Any], None],
    start_request_timer: Callable[[int, int], None],
) -> Callable[[Request], None]:
    """Build a function applying a Request to the replica state.

    The request timer is started in every case; the primary of the
    current view also generates a Prepare for the request.
    """

    def apply(request: Request) -> None:
        view, release = provide_view()
        try:
            # The primary starts the timer too: should other replicas move
            # to a new view with a faulty primary, they may rely on this
            # replica to trigger another view change.
            start_request_timer(request.client_id, view)

            if is_primary(view, replica_id, n):
                prepare = Prepare(view=view, replica_id=replica_id, request=request)
                handle_generated_ui_message(prepare)
        finally:
            release()

    return apply


def make_request_replier(
    provide_client_state: Callable[[int], Any],
) -> Callable[[Request], Any]:
    """Build a function returning the pending Reply for a Request.

    The result is whatever the client state's ``reply_channel(seq)`` gives.
    """

    def reply(request: Request) -> Any:
        state = provide_client_state(request.client_id)
        return state.reply_channel(request.seq)

    return reply


def make_request_executor(
    replica_id: int,
    execute_operation: Callable[[bytes], Future],
    sign: Callable[[MessageWithSignature], None],
    handle_generated_message: Callable[[Any], None],
) -> Callable[[Request], None]:
    """Build a function executing a Request's operation.

    Once the operation result is ready, a signed Reply is produced and
    handed to ``handle_generated_message``.
    """

    def execute(request: Request) -> None:
        result_future = execute_operation(request.operation)

        def on_result(done: Future) -> None:
            reply = Reply(
                replica_id=replica_id,
                client_id=request.client_id,
                seq=request.seq,
                result=done.result(),
            )
            sign(reply)
            handle_generated_message(reply)

        result_future.add_done_callback(on_result)

    return execute


def make_operation_executor(consumer: Any) -> Callable[[bytes], Future]:
    """Build a function delivering an operation to the request consumer.

    ``consumer.deliver(operation)`` returns a future of the result.
    Concurrent use raises RuntimeError.
    """
    busy = threading.Lock()

    def execute(operation: bytes) -> Future:
        if not busy.acquire(blocking=False):
            raise RuntimeError("Concurrent operation execution detected")
        try:
            return consumer.deliver(operation)
        finally:
            busy.release()

    return execute


def make_request_seq_capturer(
    provide_client_state: Callable[[int], Any],
) -> Callable[[Request], tuple[bool, Release | None]]:
    """Build a function capturing a request identifier for processing."""

    def capture(request: Request) -> tuple[bool, Release | None]:
        state = provide_client_state(request.client_id)
        return state.capture_request_seq(request.seq)

    return capture


def make_request_seq_preparer(
    provide_client_state: Callable[[int], Any],
) -> Callable[[Request], bool]:
    """Build a function recording a request identifier as prepared.

    Errors from the client state are not expected and propagate.
    """

    def prepare(request: Request) -> bool:
        state = provide_client_state(request.client_id)
        return bool(state.prepare_request_seq(request.seq))

    return prepare


def make_request_seq_retirer(
    provide_client_state: Callable[[int], Any],
) -> Callable[[Request], bool]:
    """Build a function recording a request identifier as retired.

    Errors from the client state are not expected and propagate.
    """

    def retire(request: Request) -> bool:
        state = provide_client_state(request.client_id)
        return bool(state.retire_request_seq(request.seq))

    return retire


def make_request_timer_starter(
    provide_client_state: Callable[[int], Any],
    handle_timeout: Callable[[int], None],
    logger: logging.Logger,
) -> Callable[[int, int], None]:
    """Build a function starting the request timer of a client."""

    def start(client_id: int, view: int) -> None:
        def expired() -> None:
            logger.warning(
                "Request timer expired: client=%d view=%d", client_id, view
            )
            handle_timeout(view)

        provide_client_state(client_id).start_request_timer(expired)

    return start


def make_request_timer_stopper(
    provide_client_state: Callable[[int], Any],
) -> Callable[[int], None]:
    """Build a function stopping the request timer of a client."""

    def stop(client_id: int) -> None:
        provide_client_state(client_id).stop_request_timer()

    return stop


def make_request_timeout_provider(config: Any) -> Callable[[], Any]:
    """Build a function returning the current request timeout.

    Without view changes the timeout stays the configured initial value.
    """

    def timeout() -> Any:
        return config.timeout_request()

    return timeout