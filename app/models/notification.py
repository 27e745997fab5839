# app/models/notification.py
from datetime import datetime
from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, Field, StrictBool, StrictInt, field_validator

ALERT_MAX_LENGTH = 150
OMISSION = "..."


def truncate_alert(message: Optional[str], length: int = ALERT_MAX_LENGTH) -> Optional[str]:
    """
    Recorta el mensaje a `length` caracteres terminando en "...".
    Mensajes cortos (o vacíos) se devuelven tal cual.
    """
    if not message or len(message) <= length:
        return message
    return message[: length - len(OMISSION)] + OMISSION


class Notification(BaseModel):
    id: str                     # RowKey
    device_id: str              # PartitionKey
    alert: Optional[str] = None
    badge: Optional[StrictInt] = Field(default=None, ge=0)
    sound: Optional[Union[StrictBool, str]] = None
    custom_properties: Optional[Dict[str, Any]] = None
    created_at: datetime
    sent_at: Optional[datetime] = None
    attempts: int = 0
    last_error: Optional[str] = None

    @field_validator("alert")
    @classmethod
    def _truncate(cls, value: Optional[str]) -> Optional[str]:
        return truncate_alert(value)

    @field_validator("custom_properties")
    @classmethod
    def _no_aps(cls, value: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
        # "aps" es la clave reservada del payload
        if value and "aps" in value:
            raise ValueError("custom property 'aps' is reserved")
        return value

    @property
    def is_pending(self) -> bool:
        return self.sent_at is None
