# app/services/notification_handler.py
import logging
import uuid
from datetime import datetime, timezone
from typing import Optional

from app.models.notification import Notification
from app.models.queue_message import QueueMessage

logger = logging.getLogger(__name__)


async def process_notification(msg: dict, store) -> Optional[Notification]:
    """
    Procesa un mensaje de notificación que viene de la cola (o del API).
    Estructura esperada:
      {
        "deviceId": "abc",
        "alert": "Hello!",
        "badge": 5,
        "sound": true,              # o "my_sound.aiff"
        "customProperties": {...}
      }
    El alert se recorta a 150 caracteres al crear la notificación.
    Lanza pydantic.ValidationError si el mensaje es inválido.
    """
    if not msg.get("deviceId"):
        # si no hay device no hay a quién notificar
        logger.warning("Notification message without deviceId ignored")
        return None

    message = QueueMessage.model_validate(msg)
    notification = Notification(
        id=str(uuid.uuid4()),
        device_id=message.deviceId,
        alert=message.alert,
        badge=message.badge,
        sound=message.sound,
        custom_properties=message.customProperties,
        created_at=datetime.now(timezone.utc),
    )

    store.insert(notification)
    logger.info("Notification #%s queued for device %s", notification.id, notification.device_id)
    return notification
