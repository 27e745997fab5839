# app/services/errors.py


class DeliveryError(Exception):
    """Base de los errores de entrega."""


class ExceededMessageSize(DeliveryError):
    """El frame supera los 256 bytes: nunca va a poder enviarse."""

    def __init__(self, frame: bytes):
        self.frame = frame
        super().__init__(f"message of {len(frame)} bytes exceeds the 256 bytes limit")


class ChannelUnavailable(DeliveryError):
    """No se pudo abrir la conexión con el gateway."""


class ChannelWriteFailed(DeliveryError):
    """
    Falló la escritura de un frame.
    fatal=True indica que el canal ya no sirve (broken pipe y similares).
    """

    def __init__(self, reason: str, fatal: bool = False):
        self.reason = reason
        self.fatal = fatal
        super().__init__(reason)


class DeviceNotFound(DeliveryError):
    def __init__(self, device_id: str):
        self.device_id = device_id
        super().__init__(f"device {device_id} not found")
