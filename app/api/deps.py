# app/api/deps.py
import logging
from functools import lru_cache

from fastapi import Depends

from app.infra.apns_connection import open_for_delivery
from app.infra.table_client import TableDeviceRegistry, TableNotificationStore
from app.services.delivery import NotificationDelivery


@lru_cache
def get_store() -> TableNotificationStore:
    return TableNotificationStore()


@lru_cache
def get_registry() -> TableDeviceRegistry:
    return TableDeviceRegistry()


def get_delivery(
    store=Depends(get_store),
    registry=Depends(get_registry),
) -> NotificationDelivery:
    return NotificationDelivery(
        store,
        registry,
        open_for_delivery,
        logger=logging.getLogger("app.delivery"),
    )
