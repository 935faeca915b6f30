"""Validation and application of Prepare messages."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from minbft.messages import Commit, Prepare, Request
from minbft.utils import ProtocolError, is_primary

__all__ = ["make_prepare_validator", "make_prepare_applier"]


def make_prepare_validator(
    n: int,
    verify_ui: Callable[[Prepare], Any],
    validate_request: Callable[[Request], None],
) -> Callable[[Prepare], None]:
    """Build a validator of Prepare messages for ``n`` replicas.

    It raises ProtocolError if the Prepare does not come from the primary
    of its view, or its request or UI is invalid.
    """

    def validate(prepare: Prepare) -> None:
        if not is_primary(prepare.view, prepare.replica_id, n):
            raise ProtocolError(
                f"Prepare from backup {prepare.replica_id} for view {prepare.view}"
            )
        try:
            validate_request(prepare.request)
        except Exception as exc:
            raise ProtocolError(f"Request invalid: {exc}") from exc
        try:
            verify_ui(prepare)
        except Exception as exc:
            raise ProtocolError(f"UI not valid: {exc}") from exc

    return validate


def make_prepare_applier(
    replica_id: int,
    prepare_seq: Callable[[Request], bool],
    collect_commitment: Callable[[int, Prepare], None],
    handle_generated_ui_message: Callable[[Any], None],
) -> Callable[[Prepare], None]:
    """Build a function applying a Prepare to the replica state.

    A backup replica answers the Prepare with its own Commit.
    """

    def apply(prepare: Prepare) -> None:
        if not prepare_seq(prepare.request):
            raise ProtocolError("Request already prepared")

        primary_id = prepare.replica_id
        try:
            collect_commitment(primary_id, prepare)
        except ProtocolError as exc:
            raise ProtocolError(
                f"Prepare cannot be taken into account: {exc}"
            ) from exc

        if replica_id == primary_id:
            return  # the primary does not generate Commit

        commit = Commit(
            view=prepare.view,
            replica_id=replica_id,
            primary_id=primary_id,
            request=prepare.request,
            primary_ui=prepare.ui_bytes,
        )
        handle_generated_ui_message(commit)

    return apply