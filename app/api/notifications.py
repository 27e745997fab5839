# app/api/notifications.py
from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import ValidationError

from app.api.deps import get_delivery, get_registry, get_store
from app.infra.servicebus_consumer import consumer_status
from app.models.device import Device
from app.models.queue_message import DeviceIn, QueueMessage
from app.security.jwt_utils import get_current_user
from app.services.delivery import DeliveryReport
from app.services.notification_handler import process_notification

router = APIRouter(prefix="/notifications", tags=["notifications"])
devices_router = APIRouter(prefix="/devices", tags=["devices"])


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_notification(body: QueueMessage, request: Request, store=Depends(get_store)):
    """
    Crea una notificación pendiente para un device.
    El alert se recorta a 150 caracteres.
    """
    get_current_user(request.headers.get("Authorization", ""))

    try:
        notification = await process_notification(body.model_dump(), store)
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=e.errors(include_url=False, include_context=False))
    return notification


@router.get("/pending")
def list_pending(request: Request, store=Depends(get_store)):
    """Notificaciones sin sentAt, en el orden en que se van a enviar."""
    get_current_user(request.headers.get("Authorization", ""))
    return store.list_pending()


@router.post("/deliver", response_model=DeliveryReport)
def deliver_notifications(request: Request, delivery=Depends(get_delivery)):
    """
    Entrega todas las pendientes por una conexión al gateway.
    Los errores por notificación no cortan el lote. 409 si ya hay un
    lote en curso, 503 si no se pudo abrir la conexión.
    """
    get_current_user(request.headers.get("Authorization", ""))

    report = delivery.send_notifications()
    if report.already_running:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Ya hay un envío en curso",
        )
    if report.error and report.processed == 0:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"No se pudo entregar: {report.error}",
        )
    return report


@devices_router.post("", status_code=status.HTTP_201_CREATED)
def register_device(body: DeviceIn, request: Request, registry=Depends(get_registry)):
    get_current_user(request.headers.get("Authorization", ""))

    try:
        device = Device(id=body.deviceId, token=body.token)
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=e.errors(include_url=False, include_context=False))
    registry.register(device)
    return {"ok": True, "deviceId": device.id}


@router.get("/debug/consumer-status")
async def debug_consumer_status():
    """Estado del consumer que carga notificaciones desde la cola (sin auth)."""
    return consumer_status()
