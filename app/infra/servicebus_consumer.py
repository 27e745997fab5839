# app/infra/servicebus_consumer.py
import os
import json
import asyncio
import logging
from datetime import datetime, timezone

from azure.servicebus.aio import ServiceBusClient
from azure.servicebus import TransportType
from pydantic import ValidationError

from app.infra.table_client import TableNotificationStore
from app.services.notification_handler import process_notification

logger = logging.getLogger(__name__)

# ====== env ======
SB_CONN_STR = os.getenv("AZURE_SERVICE_BUS_CONNECTION_STRING")
SB_QUEUE = os.getenv("AZURE_SERVICE_BUS_QUEUE_NAME", "apn-notifications")

_status = {
    "startedAt": None,
    "lastMessageAt": None,
    "lastError": None,
}


def consumer_status() -> dict:
    return {
        **_status,
        "queue": SB_QUEUE,
        "hasConnectionString": bool(SB_CONN_STR),
    }


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


async def handle_message(receiver, msg, store) -> None:
    """
    Guarda la notificación y completa el mensaje.
    Mensaje inválido -> dead-letter (reintentarlo no sirve).
    Otro error -> no se completa, Service Bus lo reintenta.
    """
    try:
        body_bytes = b"".join(part for part in msg.body)
        payload = json.loads(body_bytes.decode("utf-8"))
        await process_notification(payload, store)
    except (ValueError, ValidationError) as e:
        # json.JSONDecodeError es ValueError
        logger.warning("[consumer] Invalid message dead-lettered: %s", e)
        _status["lastError"] = str(e)
        await receiver.dead_letter_message(msg, reason="invalid-notification", error_description=str(e))
        return
    except Exception as e:
        logger.error("[consumer] Error processing message: %s", e)
        _status["lastError"] = str(e)
        return

    await receiver.complete_message(msg)
    _status["lastMessageAt"] = _now()


async def consume_notifications(store=None):
    """
    Consumer asíncrono de Azure Service Bus:
      - AMQP sobre WebSocket (443) para funcionar en App Service.
      - Lee mensajes de la cola y los guarda como notificaciones pendientes.
      - Reconecta con backoff si se cae.
    """
    if not SB_CONN_STR:
        logger.warning("AZURE_SERVICE_BUS_CONNECTION_STRING missing; queue will not be consumed")
        return

    store = store or TableNotificationStore()
    _status["startedAt"] = _now()
    backoff = 5  # segundos

    while True:
        try:
            logger.info("[consumer] Connecting to Service Bus (queue: %s)", SB_QUEUE)
            async with ServiceBusClient.from_connection_string(
                SB_CONN_STR,
                transport_type=TransportType.AmqpOverWebsocket,  # clave para 443
            ) as sb_client:
                receiver = sb_client.get_queue_receiver(
                    queue_name=SB_QUEUE,
                    max_wait_time=20,
                )
                async with receiver:
                    logger.info("[consumer] Listening on queue %s", SB_QUEUE)
                    while True:
                        messages = await receiver.receive_messages(
                            max_message_count=10,
                            max_wait_time=10,
                        )
                        if not messages:
                            await asyncio.sleep(0.5)
                            continue

                        for msg in messages:
                            await handle_message(receiver, msg, store)

            await asyncio.sleep(1)

        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("[consumer] Connection error, retrying in %ss: %s", backoff, e)
            _status["lastError"] = str(e)
            await asyncio.sleep(backoff)
