# minbft

The message handling core of a MinBFT replica. MinBFT is a Byzantine fault
tolerant state machine replication protocol. It tolerates `f` faulty replicas
out of `n >= 2f + 1` because every replica message carries a unique identifier
(UI) from a trusted monotonic counter (USIG).

The package has two parts. The first is the protocol messages and their binary
encoding. The second is a set of factories that build the message processing
pipeline. You supply everything outside it: authentication, the UI parser,
client and peer state, view state, the message log and the request consumer
that runs operations.

## Installation

```
pip install .
```

To run the tests:

```
pip install .[test]
pytest
```

## Messages (`minbft.messages`)

The concrete messages are dataclasses:

- `Request(client_id, seq, operation, signature)`
- `Reply(replica_id, client_id, seq, result, signature)`
- `Prepare(view, replica_id, request, replica_ui)`
- `Commit(view, replica_id, primary_id, request, primary_ui, replica_ui)`

They implement the abstract roles `ClientMessage`, `ReplicaMessage`,
`MessageWithUI`, `ViewMessage` and `MessageWithSignature`:

- `payload()` returns the serialized message data without the signature or UI.
- `attach_signature(signature)` sets the signature. `signature_bytes` reads it
  back.
- `attach_ui(ui)` sets the UI. `ui_bytes` reads it back.
- `embedded_messages()` lists the messages that a replica message carries. A
  `Reply` carries none. A `Prepare` carries its `Request`. A `Commit` carries
  the `Prepare` that `Commit.prepare()` rebuilds from the commit's view,
  primary id, request and primary UI.

`wrap_message(msg)` returns a single-entry mapping such as
`{"prepare": msg}`. `unwrap_message(wrapped)` returns the message from that
mapping. Both raise `TypeError` for anything that is not a known message.

`encode_message(msg)` turns a message into bytes. `decode_message(data)` turns
them back and raises `ValueError` if the data is malformed.

```python
from minbft.messages import Prepare, Request, decode_message, encode_message

request = Request(client_id=1, seq=7, operation=b"op")
prepare = Prepare(view=0, replica_id=0, request=request)
assert decode_message(encode_message(prepare)) == prepare
```

## Helpers (`minbft.utils`)

- `ProtocolError` is raised when a message cannot be validated, processed or
  applied.
- `AuthenticationRole` has the members `REPLICA`, `CLIENT` and `USIG`.
- `is_primary(view, replica_id, n)` is true when `replica_id == view % n`.
- `make_replica_message_signer(authen)` signs messages as this replica.
- `make_message_signature_verifier(authen)` checks the signature of client
  messages. It raises `TypeError` for a message that has no known signer.
- `message_string(msg, parse_ui=None)` returns a one-line description for
  logs.

```python
from minbft.utils import is_primary

is_primary(view=4, replica_id=1, n=3)   # True: 4 % 3 == 1
```

## What you supply

The factories call plain objects and callables. They expect the following:

- An authenticator with `generate_message_authen_tag(role, payload)` and
  `verify_message_authen_tag(role, id, payload, tag)`. The verify method
  raises when a tag is invalid.
- A UI parser `parse_ui(ui_bytes)`. It returns an object with a `counter` and
  raises `ValueError` on malformed data.
- A client state provider `provide_client_state(client_id)`. It returns an
  object with these methods:
  - `capture_request_seq`
  - `prepare_request_seq`
  - `retire_request_seq`
  - `reply_channel`
  - `start_request_timer`
  - `stop_request_timer`
  - `add_reply`
- A peer state provider whose states have `capture_ui(ui)`.
- A request consumer with `deliver(operation)`, which returns a
  `concurrent.futures.Future` of the result.
- A config with `timeout_request()`.
- A message log with `append(wrapped)` and `stream(None)`.
- A connector with `replica_message_stream_handler(peer_id)`. It returns an
  object with `handle_message_stream(out)`, or None.

## Building a pipeline

Each stage is a factory. It takes the stages below it and returns a callable.

- `minbft.request` has these factories:
  - `make_request_validator`
  - `make_request_processor`
  - `make_request_applier`
  - `make_request_replier`
  - `make_request_executor`
  - `make_operation_executor`, which raises `RuntimeError` on concurrent use
  - `make_request_seq_capturer`, `make_request_seq_preparer` and
    `make_request_seq_retirer`
  - `make_request_timer_starter`, `make_request_timer_stopper` and
    `make_request_timeout_provider`
- `minbft.prepare` has `make_prepare_validator` and `make_prepare_applier`.
  On a backup, the applier answers each Prepare with a generated Commit.
- `minbft.usig_ui` has `parse_message_ui`, `make_ui_capturer`,
  `make_ui_verifier` and `make_ui_assigner`. The verifier rejects a UI with a
  zero counter.
- `minbft.processing` has these factories:
  - `make_incoming_message_handler`
  - `make_message_validator`
  - `make_message_processor`
  - `make_replica_message_processor`
  - `make_ui_message_processor`
  - `make_view_message_processor`
  - `make_applicable_replica_message_processor`
  - `make_replica_message_applier`
  - `make_message_replier`

  It also defines the type aliases `ViewProvider` and `ViewWaiter`.
- `minbft.generated` has `make_generated_message_handler`,
  `make_generated_ui_message_handler` and `make_generated_message_consumer`.
  The UI message handler assigns the UI and handles the message under one
  lock, so messages are handled in counter order.
- `minbft.streams` has these helpers:
  - `make_message_stream_handler` takes an iterable of serialized messages
    and yields the serialized replies.
  - `start_peer_connections` and `start_peer_connection` start the peer
    connections. They raise `ConnectionError` when a peer cannot be reached.
  - `make_peer_message_supplier` and `make_peer_connector` build the parts
    that those two functions use.

Processors return whether the message had any effect. Dispatchers raise
`TypeError` for a message type they do not handle.

## Logging (`minbft.options`)

`Options(log_level=logging.DEBUG, log_file=sys.stdout)` holds the logging
settings. `make_logger(replica_id, options)` returns a `logging.Logger` named
`minbft.<replica_id>` that writes to `options.log_file`.

## What this package does not do

- It does not assemble a complete replica.
- It has no network transport, client library or command-line program.
- It does not implement the USIG, UI parsing, client, peer or view state, or
  the message log. You pass these in.
- It does not collect commitments or validate and apply Commit messages.
  `make_prepare_applier` and `make_message_validator` take these as callables
  from the caller.
- It does not implement view changes.