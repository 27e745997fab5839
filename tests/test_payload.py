"""Tests for the APNs payload and frame encoding."""

import json

import pytest

from app.services.errors import ExceededMessageSize
from app.services.payload import (
    MAX_FRAME_SIZE,
    apple_hash,
    message_for_sending,
    to_apple_json,
)
from tests.conftest import make_notification


def test_apple_hash_with_all_fields():
    n = make_notification("n1", alert="Hello!", badge=5, sound="my_sound.aiff")

    assert apple_hash(n) == {"aps": {"alert": "Hello!", "badge": 5, "sound": "my_sound.aiff"}}
    assert to_apple_json(n) == '{"aps":{"alert":"Hello!","badge":5,"sound":"my_sound.aiff"}}'


def test_badge_zero_is_kept():
    n = make_notification("n1", badge=0)

    assert to_apple_json(n) == '{"aps":{"badge":0}}'


def test_sound_true_uses_default_sound_file():
    n = make_notification("n1", sound=True)

    assert apple_hash(n)["aps"] == {"sound": "1.aiff"}


def test_sound_false_is_omitted():
    n = make_notification("n1", sound=False, badge=1)

    assert "sound" not in apple_hash(n)["aps"]


def test_empty_notification_has_empty_aps():
    assert to_apple_json(make_notification("n1")) == '{"aps":{}}'


def test_custom_properties_are_stringified_siblings_of_aps():
    n = make_notification("n1", badge=0, sound=True, custom_properties={"typ": 1})

    payload = json.loads(to_apple_json(n))
    assert payload["typ"] == "1"
    assert payload["aps"] == {"badge": 0, "sound": "1.aiff"}


def test_custom_properties_keep_insertion_order():
    n = make_notification("n1", custom_properties={"z": 1, "a": None, "m": True})

    assert to_apple_json(n) == '{"aps":{},"z":"1","a":"","m":"true"}'


def test_alert_is_copied_verbatim():
    message = "x" * 150
    n = make_notification("n1", alert=message)

    assert apple_hash(n)["aps"]["alert"] == message


def test_non_ascii_alert_is_escaped():
    n = make_notification("n1", alert="¡Hola!")

    assert to_apple_json(n) == '{"aps":{"alert":"\\u00a1Hola!"}}'


def test_frame_layout(token):
    n = make_notification("n1", badge=3)
    payload = to_apple_json(n).encode()

    frame = message_for_sending(n, token)

    assert frame[:3] == b"\x00\x00\x20"
    assert frame[3:35] == token
    assert frame[35] == len(payload)
    assert frame[36:] == payload
    assert len(frame) == 36 + len(payload)


def test_encoding_is_deterministic(token):
    n = make_notification("n1", alert="Hi", custom_properties={"a": 1, "b": 2})

    assert message_for_sending(n, token) == message_for_sending(n, token)


def _padded(token, extra):
    """Notification whose frame is exactly MAX_FRAME_SIZE + extra bytes."""
    base = len(message_for_sending(make_notification("n1", custom_properties={"k": ""}), token))
    filler = "v" * (MAX_FRAME_SIZE - base + extra)
    return make_notification("n1", custom_properties={"k": filler})


def test_frame_of_exactly_256_bytes_is_accepted(token):
    frame = message_for_sending(_padded(token, 0), token)

    assert len(frame) == 256


def test_frame_of_257_bytes_raises(token):
    with pytest.raises(ExceededMessageSize) as exc_info:
        message_for_sending(_padded(token, 1), token)

    assert len(exc_info.value.frame) == 257


def test_payload_over_255_bytes_raises(token):
    n = make_notification("n1", custom_properties={"k": "v" * 400})

    with pytest.raises(ExceededMessageSize):
        message_for_sending(n, token)


def test_token_must_be_32_bytes():
    with pytest.raises(ValueError):
        message_for_sending(make_notification("n1"), b"\x01" * 16)
