# pylint: disable=missing-module-docstring,missing-function-docstring

import json
import re

import pytest

from protocol.envelope import (
    INBOUND_CONTROL_TYPES,
    Envelope,
    EnvelopeError,
    MessageType,
    decode_envelope,
    encode_envelope,
    new_message_id,
)


# ---------------------------------------------------------------------
# Encoding
# ---------------------------------------------------------------------

def test_encode_uses_wire_field_names():
    raw = encode_envelope(Envelope(
        type="chat_message",
        data={"orderId": "o1", "message": "hi"},
        timestamp=1700000000000,
        message_id="msg_1700000000000_abcdefghi",
    ))

    assert json.loads(raw) == {
        "type": "chat_message",
        "data": {"orderId": "o1", "message": "hi"},
        "timestamp": 1700000000000,
        "messageId": "msg_1700000000000_abcdefghi",
    }


def test_encode_omits_absent_message_id():
    raw = encode_envelope(Envelope(type="ping", data={"timestamp": 1}, timestamp=1))

    assert "messageId" not in json.loads(raw)


# ---------------------------------------------------------------------
# Decoding
# ---------------------------------------------------------------------

def test_decode_tolerates_missing_data_and_timestamp():
    env = decode_envelope('{"type": "pong"}')

    assert env.type == "pong"
    assert env.data is None
    assert env.timestamp == 0
    assert env.message_id is None


@pytest.mark.parametrize(
    "raw",
    [
        "not json",
        "[1, 2, 3]",
        '"chat_message"',
        '{"data": {}}',
        '{"type": ""}',
        '{"type": 42}',
    ],
)
def test_decode_rejects_malformed_frames(raw: str):
    with pytest.raises(EnvelopeError):
        decode_envelope(raw)


def test_decode_ignores_non_numeric_timestamp():
    env = decode_envelope('{"type": "notification", "data": {}, "timestamp": "later"}')

    assert env.timestamp == 0


# ---------------------------------------------------------------------
# Message ids / type catalogue
# ---------------------------------------------------------------------

def test_message_id_shape():
    message_id = new_message_id(1700000000000)

    assert re.fullmatch(r"msg_1700000000000_[a-z0-9]{9}", message_id)


def test_message_ids_are_locally_unique():
    ids = {new_message_id(1) for _ in range(200)}

    assert len(ids) == 200


def test_control_types_are_not_application_types():
    assert MessageType.PONG.value in INBOUND_CONTROL_TYPES
    assert MessageType.AUTH_SUCCESS.value in INBOUND_CONTROL_TYPES
    assert MessageType.CHAT_MESSAGE.value not in INBOUND_CONTROL_TYPES
    assert MessageType.NOTIFICATION.value not in INBOUND_CONTROL_TYPES
