# app/infra/table_client.py
import json
import os
from datetime import datetime
from typing import List, Optional

from azure.core.exceptions import ResourceNotFoundError
from azure.data.tables import TableServiceClient, UpdateMode

from app.models.device import Device
from app.models.notification import Notification
from app.services.errors import DeviceNotFound

NOTIFICATIONS_TABLE = os.getenv("NOTIFICATIONS_TABLE", "apnnotifications")
DEVICES_TABLE = os.getenv("DEVICES_TABLE", "apndevices")
DEVICES_PARTITION = "device"
CONN_STR = os.getenv("AZURE_STORAGE_CONNECTION_STRING")


def get_table_client(table_name: str):
    if not CONN_STR:
        raise RuntimeError("AZURE_STORAGE_CONNECTION_STRING no está configurada en .env")

    service = TableServiceClient.from_connection_string(conn_str=CONN_STR)
    return service.get_table_client(table_name=table_name)


def notification_to_entity(notification: Notification) -> dict:
    entity = {
        "PartitionKey": notification.device_id,
        "RowKey": notification.id,
        "createdAt": notification.created_at,
        "attempts": notification.attempts,
        # flag indexable: Table Storage no filtra por propiedad ausente
        "pending": notification.sent_at is None,
    }
    if notification.alert is not None:
        entity["alert"] = notification.alert
    if notification.badge is not None:
        entity["badge"] = notification.badge
    if notification.sound is not None:
        entity["sound"] = notification.sound
    if notification.custom_properties:
        # Table Storage no guarda dicts: va como JSON (mantiene el orden)
        entity["customProperties"] = json.dumps(notification.custom_properties)
    if notification.sent_at is not None:
        entity["sentAt"] = notification.sent_at
    if notification.last_error is not None:
        entity["lastError"] = notification.last_error
    return entity


def entity_to_notification(entity: dict) -> Notification:
    custom = entity.get("customProperties")
    return Notification(
        id=entity["RowKey"],
        device_id=entity["PartitionKey"],
        alert=entity.get("alert"),
        badge=entity.get("badge"),
        sound=entity.get("sound"),
        custom_properties=json.loads(custom) if custom else None,
        created_at=entity["createdAt"],
        sent_at=entity.get("sentAt"),
        attempts=entity.get("attempts", 0),
        last_error=entity.get("lastError"),
    )


class TableNotificationStore:
    """
    Notificaciones en Azure Table Storage.
    PartitionKey = device_id, RowKey = id de la notificación.
    """

    def __init__(self, table_client=None):
        self._table_client = table_client

    @property
    def table(self):
        if self._table_client is None:
            self._table_client = get_table_client(NOTIFICATIONS_TABLE)
        return self._table_client

    def insert(self, notification: Notification) -> None:
        self.table.create_entity(entity=notification_to_entity(notification))

    def list_pending(self) -> List[Notification]:
        """
        Pendientes ordenadas por device y fecha de creación.
        El filtro corre en el servidor; las enviadas no se leen.
        """
        entities = self.table.query_entities(query_filter="pending eq true")
        pending = [entity_to_notification(e) for e in entities]
        return sorted(pending, key=lambda n: (n.device_id, n.created_at))

    def mark_sent(
        self, notification: Notification, sent_at: datetime, error: Optional[str] = None
    ) -> None:
        # sentAt se setea una sola vez
        if notification.sent_at is not None:
            return
        entity = {
            "PartitionKey": notification.device_id,
            "RowKey": notification.id,
            "sentAt": sent_at,
            "pending": False,
            "attempts": notification.attempts + 1,
        }
        if error is not None:
            entity["lastError"] = error
        self.table.update_entity(entity=entity, mode=UpdateMode.MERGE)
        notification.sent_at = sent_at
        notification.attempts += 1
        if error is not None:
            notification.last_error = error

    def record_attempt(self, notification: Notification, error: str) -> None:
        entity = {
            "PartitionKey": notification.device_id,
            "RowKey": notification.id,
            "attempts": notification.attempts + 1,
            "lastError": error,
        }
        self.table.update_entity(entity=entity, mode=UpdateMode.MERGE)
        notification.attempts += 1
        notification.last_error = error


class TableDeviceRegistry:
    """Devices (token del dispositivo) en Azure Table Storage."""

    def __init__(self, table_client=None):
        self._table_client = table_client

    @property
    def table(self):
        if self._table_client is None:
            self._table_client = get_table_client(DEVICES_TABLE)
        return self._table_client

    def register(self, device: Device) -> None:
        self.table.upsert_entity(
            entity={
                "PartitionKey": DEVICES_PARTITION,
                "RowKey": device.id,
                "token": device.token,
            },
            mode=UpdateMode.MERGE,
        )

    def get(self, device_id: str) -> Device:
        try:
            entity = self.table.get_entity(partition_key=DEVICES_PARTITION, row_key=device_id)
        except ResourceNotFoundError:
            raise DeviceNotFound(device_id)
        return Device(id=entity["RowKey"], token=entity["token"])

    def token_for(self, device_id: str) -> bytes:
        return self.get(device_id).to_hexa()
