# app/services/delivery.py
import logging
import os
import threading
from datetime import datetime, timezone
from typing import (
    Callable,
    ContextManager,
    Iterable,
    List,
    Optional,
    Protocol,
)

from pydantic import BaseModel, Field

from app.models.notification import Notification
from app.services.errors import (
    ChannelUnavailable,
    ChannelWriteFailed,
    ExceededMessageSize,
)
from app.services.payload import message_for_sending

MAX_ATTEMPTS = int(os.getenv("APNS_MAX_ATTEMPTS", "1"))

# un solo lote a la vez por proceso: dos lotes leerían las mismas pendientes
DELIVERY_LOCK = threading.Lock()


class NotificationStore(Protocol):
    def list_pending(self) -> List[Notification]: ...

    def mark_sent(
        self, notification: Notification, sent_at: datetime, error: Optional[str] = None
    ) -> None: ...

    def record_attempt(self, notification: Notification, error: str) -> None: ...


class DeviceRegistry(Protocol):
    def token_for(self, device_id: str) -> bytes: ...


class Channel(Protocol):
    def write(self, frame: bytes) -> None: ...


class DeliveryReport(BaseModel):
    sent: List[str] = Field(default_factory=list)
    oversized: List[str] = Field(default_factory=list)
    failed: List[str] = Field(default_factory=list)
    aborted: bool = False
    already_running: bool = False
    error: Optional[str] = None

    @property
    def processed(self) -> int:
        return len(self.sent) + len(self.oversized) + len(self.failed)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _delivery_order(notifications: Iterable[Notification]) -> List[Notification]:
    # sorted() es estable: empates quedan en el orden de creación recibido
    pending = [n for n in notifications if n.is_pending]
    return sorted(pending, key=lambda n: (n.device_id, n.created_at))


class NotificationDelivery:
    """
    Envía en lote las notificaciones pendientes por una sola conexión.

    Una notificación a la vez (el canal no admite escrituras concurrentes).
    Cada notificación procesada queda con sent_at, salvo que falle la
    escritura sin romper el canal y todavía le queden intentos
    (max_attempts > 1).
    Si el canal se rompe (broken pipe) se corta el lote.

    Garantía: at-least-once. Primero se escribe el frame y después se
    persiste sent_at; si el proceso muere en el medio, se reenvía.
    """

    def __init__(
        self,
        store: NotificationStore,
        registry: DeviceRegistry,
        open_channel: Callable[[], ContextManager[Channel]],
        *,
        logger: Optional[logging.Logger] = None,
        max_attempts: int = MAX_ATTEMPTS,
        clock: Callable[[], datetime] = _utcnow,
        lock: Optional[threading.Lock] = None,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.store = store
        self.registry = registry
        self.open_channel = open_channel
        self.logger = logger or logging.getLogger(__name__)
        self.max_attempts = max_attempts
        self.clock = clock
        self.lock = lock or DELIVERY_LOCK

    def send_notifications(
        self, notifications: Optional[Iterable[Notification]] = None
    ) -> DeliveryReport:
        """
        Entrega todas las pendientes (o las pasadas por parámetro que sigan
        pendientes). Nunca lanza: los errores de conexión quedan en el log
        y en report.error.
        Si ya hay un lote en curso no hace nada y devuelve already_running.
        """
        report = DeliveryReport()
        if not self.lock.acquire(blocking=False):
            self.logger.warning("Delivery run already in progress; skipping")
            report.already_running = True
            return report
        try:
            self._run(report, notifications)
        finally:
            self.lock.release()

        self.logger.info(
            "Delivery finished: sent=%d oversized=%d failed=%d aborted=%s",
            len(report.sent),
            len(report.oversized),
            len(report.failed),
            report.aborted,
        )
        return report

    def _run(
        self, report: DeliveryReport, notifications: Optional[Iterable[Notification]]
    ) -> None:
        try:
            with self.open_channel() as channel:
                if notifications is None:
                    batch = self.store.list_pending()
                else:
                    batch = _delivery_order(notifications)

                for notification in batch:
                    if not self._deliver_one(channel, notification, report):
                        report.aborted = True
                        break
        except ChannelUnavailable as e:
            self.logger.error("Cannot open delivery channel: %s", e)
            report.error = str(e)
        except Exception as e:
            self.logger.exception("Delivery run failed: %s", e)
            report.error = str(e)

    def _deliver_one(
        self, channel: Channel, notification: Notification, report: DeliveryReport
    ) -> bool:
        """Procesa una notificación. Devuelve False si hay que cortar el lote."""
        self.logger.debug("Sending notification #%s", notification.id)

        try:
            frame = message_for_sending(
                notification, self.registry.token_for(notification.device_id)
            )
            channel.write(frame)
        except ExceededMessageSize as e:
            # nunca va a entrar: se marca para no reintentar
            self.logger.warning("Notification #%s skipped: %s", notification.id, e)
            self.store.mark_sent(notification, self.clock(), error=str(e))
            report.oversized.append(notification.id)
            return True
        except ChannelWriteFailed as e:
            self.logger.error("Cannot send notification #%s: %s", notification.id, e)
            if e.fatal:
                # el canal no sirve más: se marca igual, sin importar los intentos
                self.store.mark_sent(notification, self.clock(), error=str(e))
            else:
                self._give_up_or_retry(notification, str(e))
            report.failed.append(notification.id)
            return not e.fatal
        except Exception as e:
            # device desconocido, token inválido, etc.
            self.logger.error("Cannot send notification #%s: %s", notification.id, e)
            self._give_up_or_retry(notification, str(e))
            report.failed.append(notification.id)
            return True

        self.store.mark_sent(notification, self.clock())
        report.sent.append(notification.id)
        return True

    def _give_up_or_retry(self, notification: Notification, error: str) -> None:
        if notification.attempts + 1 >= self.max_attempts:
            self.store.mark_sent(notification, self.clock(), error=error)
        else:
            self.store.record_attempt(notification, error)
