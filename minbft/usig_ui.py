"""Handling of USIG unique identifiers attached to replica messages."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from minbft.messages import MessageWithUI
from minbft.utils import AuthenticationRole, ProtocolError

__all__ = [
    "parse_message_ui",
    "make_ui_capturer",
    "make_ui_verifier",
    "make_ui_assigner",
]

Release = Callable[[], None]
UIParser = Callable[[bytes], Any]


def parse_message_ui(msg: MessageWithUI, parse_ui: UIParser) -> Any:
    """Parse the UI attached to a message.

    ``parse_ui`` turns UI bytes into a UI object and raises ValueError on
    malformed data; that is reported as ProtocolError.
    """
    try:
        return parse_ui(msg.ui_bytes)
    except ValueError as exc:
        raise ProtocolError(f"Failed unmarshaling UI: {exc}") from exc


def make_ui_capturer(
    provide_peer_state: Callable[[int], Any],
    parse_ui: UIParser,
) -> Callable[[MessageWithUI], tuple[bool, Release | None]]:
    """Build a function capturing the UI of a message for processing.

    It returns whether the UI is new and, if so, the function that has to
    be called once processing is done. A message whose UI cannot be
    parsed raises ProtocolError.
    """

    def capture(msg: MessageWithUI) -> tuple[bool, Release | None]:
        ui = parse_message_ui(msg, parse_ui)
        peer_state = provide_peer_state(msg.replica_id)
        return peer_state.capture_ui(ui)

    return capture


def make_ui_verifier(
    authen: Any,
    parse_ui: UIParser,
) -> Callable[[MessageWithUI], Any]:
    """Build a function verifying the USIG certificate of a message.

    The verified UI is returned. A UI with zero counter value is never
    valid; any failure raises ProtocolError.
    """

    def verify(msg: MessageWithUI) -> Any:
        ui = parse_message_ui(msg, parse_ui)
        if ui.counter == 0:
            raise ProtocolError("Invalid (zero) counter value")
        try:
            authen.verify_message_authen_tag(
                AuthenticationRole.USIG, msg.replica_id, msg.payload(), msg.ui_bytes
            )
        except Exception as exc:
            raise ProtocolError(f"Failed verifying USIG certificate: {exc}") from exc
        return ui

    return verify


def make_ui_assigner(authen: Any) -> Callable[[MessageWithUI], None]:
    """Build a function generating a USIG UI and attaching it to a message.

    Errors from the authenticator are not expected and propagate.
    """

    def assign(msg: MessageWithUI) -> None:
        ui_bytes = authen.generate_message_authen_tag(
            AuthenticationRole.USIG, msg.payload()
        )
        msg.attach_ui(ui_bytes)

    return assign