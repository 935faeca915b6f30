from unittest.mock import Mock, call

import pytest

from minbft.messages import (
    Commit,
    MessageWithUI,
    Prepare,
    ReplicaMessage,
    Reply,
    Request,
    ViewMessage,
)
from minbft.processing import (
    make_applicable_replica_message_processor,
    make_incoming_message_handler,
    make_message_processor,
    make_message_replier,
    make_message_validator,
    make_replica_message_applier,
    make_replica_message_processor,
    make_ui_message_processor,
    make_view_message_processor,
)
from minbft.utils import ProtocolError


class UIOnlyMessage(MessageWithUI):
    def __init__(self, replica_id):
        self.replica_id = replica_id
        self._ui = b""

    def embedded_messages(self):
        return []

    def payload(self):
        return b""

    @property
    def ui_bytes(self):
        return self._ui

    def attach_ui(self, ui):
        self._ui = ui


class ViewOnlyMessage(ViewMessage):
    def __init__(self, view):
        self.view = view


class EmbeddingMessage(ReplicaMessage):
    def __init__(self, replica_id, embedded):
        self.replica_id = replica_id
        self._embedded = embedded

    def embedded_messages(self):
        return list(self._embedded)


@pytest.fixture
def request_msg():
    return Request(client_id=4, seq=123, operation=b"op")


@pytest.fixture
def prepare_msg(request_msg):
    return Prepare(view=2, replica_id=2, request=request_msg)


@pytest.fixture
def commit_msg(request_msg):
    return Commit(view=2, replica_id=1, primary_id=2, request=request_msg)


# incoming message handler


def test_incoming_handler_validation_error():
    validate = Mock(side_effect=ProtocolError("Error"))
    process = Mock()
    handle = make_incoming_message_handler(validate, process, Mock())
    with pytest.raises(ProtocolError, match="Validation failed"):
        handle("message")
    assert process.call_count == 0


def test_incoming_handler_processing_error():
    handle = make_incoming_message_handler(
        Mock(return_value=None), Mock(side_effect=ProtocolError("Error")), Mock()
    )
    with pytest.raises(ProtocolError, match="Error processing message"):
        handle("message")


def test_incoming_handler_reply_error():
    handle = make_incoming_message_handler(
        Mock(return_value=None),
        Mock(return_value=False),
        Mock(side_effect=ProtocolError("Error")),
    )
    with pytest.raises(ProtocolError, match="Error replying message"):
        handle("message")


@pytest.mark.parametrize("new", [False, True])
def test_incoming_handler_no_reply(new):
    handle = make_incoming_message_handler(
        Mock(return_value=None), Mock(return_value=new), Mock(return_value=None)
    )
    assert handle("message") == (None, new)


@pytest.mark.parametrize("new", [False, True])
def test_incoming_handler_with_reply(new):
    validate = Mock(return_value=None)
    process = Mock(return_value=new)
    replier = Mock(return_value=iter(["reply"]))
    handle = make_incoming_message_handler(validate, process, replier)
    reply_source, got_new = handle("message")
    assert got_new is new
    assert list(reply_source) == ["reply"]
    validate.assert_called_once_with("message")
    process.assert_called_once_with("message")
    replier.assert_called_once_with("message")


# message validator


def test_message_validator_unknown_type():
    validate = make_message_validator(Mock(), Mock(), Mock())
    with pytest.raises(TypeError, match="Unknown message type"):
        validate(object())


def test_message_validator_dispatch(request_msg, prepare_msg, commit_msg):
    v_req = Mock(side_effect=[ProtocolError("Error"), None])
    v_prep = Mock(side_effect=[ProtocolError("Error"), None])
    v_commit = Mock(side_effect=[ProtocolError("Error"), None])
    validate = make_message_validator(v_req, v_prep, v_commit)

    for msg, validator in (
        (request_msg, v_req),
        (prepare_msg, v_prep),
        (commit_msg, v_commit),
    ):
        with pytest.raises(ProtocolError):
            validate(msg)
        assert validate(msg) is None
        assert validator.call_args_list == [call(msg), call(msg)]


# message processor


def test_message_processor_unknown_type():
    process = make_message_processor(Mock(), Mock())
    with pytest.raises(TypeError):
        process(object())


def test_message_processor_request(request_msg):
    p_req = Mock(side_effect=[ProtocolError("Error"), False, True])
    p_rep = Mock()
    process = make_message_processor(p_req, p_rep)
    with pytest.raises(ProtocolError):
        process(request_msg)
    assert process(request_msg) is False
    assert process(request_msg) is True
    assert p_rep.call_count == 0


def test_message_processor_replica_message(prepare_msg):
    p_rep = Mock(side_effect=[ProtocolError("Error"), False, True])
    process = make_message_processor(Mock(), p_rep)
    with pytest.raises(ProtocolError):
        process(prepare_msg)
    assert process(prepare_msg) is False
    assert process(prepare_msg) is True
    p_rep.assert_called_with(prepare_msg)


# replica message processor


def test_replica_message_processor_unknown_type():
    process = make_replica_message_processor(1, Mock())
    with pytest.raises(TypeError):
        process(Reply(replica_id=2))


def test_replica_message_processor_own_message():
    p_ui = Mock()
    process = make_replica_message_processor(1, p_ui)
    assert process(Prepare(replica_id=1)) is False
    assert p_ui.call_count == 0


def test_replica_message_processor_other_replica():
    msg = Prepare(replica_id=2)
    p_ui = Mock(side_effect=[ProtocolError("Error"), False, True])
    process = make_replica_message_processor(1, p_ui)
    with pytest.raises(ProtocolError):
        process(msg)
    assert process(msg) is False
    assert process(msg) is True
    p_ui.assert_called_with(msg)


# UI message processor


def test_ui_message_processor_unknown_type():
    release = Mock()
    process = make_ui_message_processor(Mock(return_value=(True, release)), Mock())
    with pytest.raises(TypeError):
        process(UIOnlyMessage(2))
    release.assert_called_once_with()


def test_ui_message_processor_not_new(prepare_msg):
    p_view = Mock()
    process = make_ui_message_processor(Mock(return_value=(False, None)), p_view)
    assert process(prepare_msg) is False
    assert p_view.call_count == 0


def test_ui_message_processor_releases(prepare_msg):
    release = Mock()
    capture = Mock(return_value=(True, release))
    p_view = Mock(side_effect=[ProtocolError("Error"), False, True])
    process = make_ui_message_processor(capture, p_view)

    with pytest.raises(ProtocolError):
        process(prepare_msg)
    assert process(prepare_msg) is False
    assert process(prepare_msg) is True
    assert release.call_count == 3
    capture.assert_called_with(prepare_msg)
    p_view.assert_called_with(prepare_msg)


# view message processor


def test_view_message_processor_former_view(prepare_msg):
    wait = Mock(return_value=(False, None))
    p_app = Mock()
    process = make_view_message_processor(wait, p_app)
    assert process(prepare_msg) is False
    wait.assert_called_once_with(prepare_msg.view)
    assert p_app.call_count == 0


def test_view_message_processor_unknown_type():
    release = Mock()
    wait = Mock(return_value=(True, release))
    process = make_view_message_processor(wait, Mock())
    with pytest.raises(TypeError):
        process(ViewOnlyMessage(5))
    wait.assert_called_once_with(5)
    release.assert_called_once_with()


def test_view_message_processor_dispatch(prepare_msg):
    release = Mock()
    p_app = Mock(side_effect=[False, True])
    process = make_view_message_processor(Mock(return_value=(True, release)), p_app)
    assert process(prepare_msg) is False
    assert process(prepare_msg) is True
    assert release.call_count == 2
    p_app.assert_called_with(prepare_msg)


# applicable replica message processor


def test_applicable_processor_embedded_failure():
    embedded = [{"foo": 0}, {"bar": 1}]
    msg = EmbeddingMessage(1, embedded)
    process = Mock(side_effect=ProtocolError("Error"))
    apply = Mock()
    p = make_applicable_replica_message_processor(process, apply)
    with pytest.raises(ProtocolError, match="Failed to process embedded message"):
        p(msg)
    process.assert_called_once_with(embedded[0])
    assert apply.call_count == 0


def test_applicable_processor_apply_failure():
    embedded = [{"foo": 0}, {"bar": 1}]
    msg = EmbeddingMessage(1, embedded)
    process = Mock(side_effect=[False, True])
    apply = Mock(side_effect=ProtocolError("Error"))
    p = make_applicable_replica_message_processor(process, apply)
    with pytest.raises(ProtocolError, match="Failed to apply message"):
        p(msg)
    assert process.call_args_list == [call(embedded[0]), call(embedded[1])]


def test_applicable_processor_success():
    embedded = [{"foo": 0}, {"bar": 1}]
    msg = EmbeddingMessage(1, embedded)
    process = Mock(side_effect=[False, True])
    apply = Mock(return_value=None)
    p = make_applicable_replica_message_processor(process, apply)
    assert p(msg) is True
    apply.assert_called_once_with(msg)


# replica message applier


def test_replica_message_applier_unknown_type():
    apply = make_replica_message_applier(Mock(), Mock())
    with pytest.raises(TypeError):
        apply(EmbeddingMessage(1, []))


def test_replica_message_applier_dispatch(prepare_msg, commit_msg, request_msg):
    a_prep = Mock(side_effect=[ProtocolError("Error"), None])
    a_commit = Mock(side_effect=[ProtocolError("Error"), None])
    apply = make_replica_message_applier(a_prep, a_commit)

    with pytest.raises(ProtocolError):
        apply(prepare_msg)
    assert apply(prepare_msg) is None
    with pytest.raises(ProtocolError):
        apply(commit_msg)
    assert apply(commit_msg) is None
    assert apply(Reply(seq=request_msg.seq)) is None
    assert a_prep.call_count == 2
    assert a_commit.call_count == 2


# message replier


def test_message_replier_unknown_type():
    replier = make_message_replier(Mock())
    with pytest.raises(TypeError):
        replier(object())


def test_message_replier_request(request_msg):
    reply = Reply(seq=request_msg.seq)
    reply_request = Mock(return_value=iter([reply]))
    replier = make_message_replier(reply_request)
    assert list(replier(request_msg)) == [reply]
    reply_request.assert_called_once_with(request_msg)


def test_message_replier_request_at_most_one(request_msg):
    first, second = Reply(seq=1), Reply(seq=2)
    replier = make_message_replier(Mock(return_value=[first, second]))
    assert list(replier(request_msg)) == [first]


def test_message_replier_request_closed_channel(request_msg):
    replier = make_message_replier(Mock(return_value=[]))
    assert list(replier(request_msg)) == []


def test_message_replier_no_reply_for_replica_messages(prepare_msg, commit_msg):
    reply_request = Mock()
    replier = make_message_replier(reply_request)
    assert replier(prepare_msg) is None
    assert replier(commit_msg) is None
    assert reply_request.call_count == 0