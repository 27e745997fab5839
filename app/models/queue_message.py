# app/models/queue_message.py
from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, Field, StrictBool, StrictInt


class QueueMessage(BaseModel):
    """
    Mensaje de la cola (y body del POST /notifications).
    Mismo formato camelCase en los dos lados.
    """
    deviceId: str = Field(min_length=1)
    alert: Optional[str] = None
    badge: Optional[StrictInt] = Field(default=None, ge=0)
    sound: Optional[Union[StrictBool, str]] = None
    customProperties: Optional[Dict[str, Any]] = None


class DeviceIn(BaseModel):
    deviceId: str = Field(min_length=1)
    token: str
