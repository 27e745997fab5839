# app/services/payload.py
import json
import struct
from typing import Any, Dict

from app.models.notification import Notification
from app.services.errors import ExceededMessageSize

MAX_FRAME_SIZE = 256
TOKEN_LENGTH = 32
DEFAULT_SOUND = "1.aiff"

# preámbulo 0x00, comando 0x00, largo del token (32 = ' ')
FRAME_HEADER = struct.pack(">BBB", 0, 0, TOKEN_LENGTH)


def _stringify(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def apple_hash(notification: Notification) -> Dict[str, Any]:
    """
    Arma el payload de la notificación.

    Ejemplo:
      Notification(badge=5, sound="my_sound.aiff", alert="Hello!")
      -> {"aps": {"alert": "Hello!", "badge": 5, "sound": "my_sound.aiff"}}

    Las customProperties van al primer nivel, al lado de "aps",
    con clave y valor pasados a string.
    """
    aps: Dict[str, Any] = {}
    if notification.alert is not None:
        aps["alert"] = notification.alert
    if notification.badge is not None:
        aps["badge"] = int(notification.badge)
    if notification.sound is True:
        aps["sound"] = DEFAULT_SOUND
    elif isinstance(notification.sound, str):
        aps["sound"] = notification.sound

    result: Dict[str, Any] = {"aps": aps}
    for key, value in (notification.custom_properties or {}).items():
        result[str(key)] = _stringify(value)
    return result


def to_apple_json(notification: Notification) -> str:
    return json.dumps(apple_hash(notification), separators=(",", ":"))


def message_for_sending(notification: Notification, token: bytes) -> bytes:
    """
    Frame binario para el gateway:
      0x00 0x00 0x20 <token 32 bytes> <largo del json, 1 byte> <json>

    Lanza ExceededMessageSize si el frame pasa de 256 bytes.
    """
    if len(token) != TOKEN_LENGTH:
        raise ValueError(f"device token must be {TOKEN_LENGTH} bytes, got {len(token)}")

    payload = to_apple_json(notification).encode("utf-8")
    header = FRAME_HEADER + token
    if len(payload) > 0xFF:
        # no entra en un byte de largo; igual pasa el límite de 256
        raise ExceededMessageSize(header + b"\xff" + payload)

    frame = header + bytes([len(payload)]) + payload
    if len(frame) > MAX_FRAME_SIZE:
        raise ExceededMessageSize(frame)
    return frame
