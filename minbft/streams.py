"""Message streams between the replica, its peers and clients."""

from __future__ import annotations

import logging
import queue
import threading
from collections.abc import Callable, Iterable, Iterator
from typing import Any

from minbft.messages import decode_message, encode_message, unwrap_message
from minbft.utils import ProtocolError, message_string

__all__ = [
    "make_message_stream_handler",
    "start_peer_connections",
    "start_peer_connection",
    "make_peer_message_supplier",
    "make_peer_connector",
]

IncomingHandler = Callable[[Any], tuple[Iterable[Any] | None, bool]]
PeerConnector = Callable[[Iterable[bytes]], Iterable[bytes]]
PeerSupplier = Callable[["queue.Queue[bytes]"], None]

_NO_REPLY = object()


def make_message_stream_handler(
    handle: IncomingHandler,
    logger: logging.Logger,
) -> Callable[[Iterable[bytes]], Iterator[bytes]]:
    """Build a stream handler over serialized messages.

    The returned function takes an iterable of serialized messages and
    yields the serialized replies. Malformed messages and messages that
    fail handling are logged and skipped.
    """

    def handle_stream(incoming: Iterable[bytes]) -> Iterator[bytes]:
        for data in incoming:
            try:
                msg = decode_message(data)
            except ValueError as exc:
                logger.warning("Failed to unmarshal message: %s", exc)
                continue

            msg_str = message_string(msg)
            logger.debug("Received %s", msg_str)

            try:
                reply_source, new = handle(msg)
            except ProtocolError as exc:
                logger.warning("Failed to handle %s: %s", msg_str, exc)
                continue

            if reply_source is not None:
                reply = next(iter(reply_source), _NO_REPLY)
                if reply is _NO_REPLY:
                    continue
                yield encode_message(reply)
            elif not new:
                logger.info("Dropped %s", msg_str)
            else:
                logger.debug("Handled %s", msg_str)

    return handle_stream


def start_peer_connections(
    replica_id: int,
    n: int,
    connector: Any,
    log: Any,
    logger: logging.Logger,
) -> None:
    """Start message exchange with every peer replica but this one.

    Raises ConnectionError naming the first peer that cannot be reached.
    """
    supply = make_peer_message_supplier(log)
    for peer_id in range(n):
        if peer_id == replica_id:
            continue
        connect = make_peer_connector(peer_id, connector)
        try:
            start_peer_connection(connect, supply)
        except ConnectionError as exc:
            raise ConnectionError(f"Cannot connect to replica {peer_id}: {exc}") from exc
        logger.debug("Connected to replica %d", peer_id)


def _drain(out: "queue.Queue[bytes]") -> Iterator[bytes]:
    while True:
        yield out.get()


def start_peer_connection(connect: PeerConnector, supply: PeerSupplier) -> threading.Thread:
    """Start message exchange with one peer replica.

    The peer's reply stream is not used: every replica connects to the
    others the same way, so they all end up fully connected. Returns the
    background thread supplying outgoing messages.
    """
    out: queue.Queue[bytes] = queue.Queue()
    connect(_drain(out))

    thread = threading.Thread(target=supply, args=(out,), daemon=True)
    thread.start()
    return thread


def make_peer_message_supplier(log: Any) -> PeerSupplier:
    """Build a supplier putting every logged message, serialized, into a queue.

    ``log.stream(None)`` yields wrapped messages from the start of the log.
    """

    def supply(out: "queue.Queue[bytes]") -> None:
        for wrapped in log.stream(None):
            out.put(encode_message(unwrap_message(wrapped)))

    return supply


def make_peer_connector(peer_id: int, connector: Any) -> PeerConnector:
    """Build a function connecting an outgoing stream to a peer replica.

    Raises ConnectionError if the connector has no handler for the peer.
    """

    def connect(out: Iterable[bytes]) -> Iterable[bytes]:
        stream_handler = connector.replica_message_stream_handler(peer_id)
        if stream_handler is None:
            raise ConnectionError("Connection not possible")
        return stream_handler.handle_message_stream(out)

    return connect