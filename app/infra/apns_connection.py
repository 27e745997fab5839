# app/infra/apns_connection.py
import logging
import os
import socket
from contextlib import contextmanager
from typing import Iterator, Optional

from OpenSSL import SSL

from app.services.errors import ChannelUnavailable, ChannelWriteFailed
from app.services.payload import MAX_FRAME_SIZE

logger = logging.getLogger(__name__)

# ====== env ======
APNS_HOST = os.getenv("APNS_HOST", "gateway.sandbox.push.apple.com")
APNS_PORT = int(os.getenv("APNS_PORT", "2195"))
APNS_CERT_FILE = os.getenv("APNS_CERT_FILE")
APNS_KEY_FILE = os.getenv("APNS_KEY_FILE")
APNS_CERT_PASSPHRASE = os.getenv("APNS_CERT_PASSPHRASE")
APNS_CONNECT_TIMEOUT = float(os.getenv("APNS_CONNECT_TIMEOUT", "30"))


class ApnsChannel:
    """
    Conexión TLS (pyOpenSSL) con el gateway. Un solo escritor a la vez.

    Si sendall falla no se sabe cuántos bytes del frame ya salieron, así que
    cualquier error de escritura cierra el canal y es fatal: el siguiente
    frame quedaría desalineado. Solo un frame inválido, que no llega a
    escribirse, es un error recuperable.
    """

    def __init__(self, connection):
        self.connection: Optional[SSL.Connection] = connection

    def write(self, frame: bytes) -> None:
        if self.connection is None:
            raise ChannelWriteFailed("channel is closed", fatal=True)
        if not frame or len(frame) > MAX_FRAME_SIZE:
            raise ChannelWriteFailed(f"invalid frame of {len(frame)} bytes", fatal=False)
        try:
            self.connection.sendall(frame)
        except (SSL.Error, OSError) as e:
            self.close()
            raise ChannelWriteFailed(str(e) or "Broken pipe", fatal=True) from e

    def close(self) -> None:
        if self.connection is None:
            return
        connection, self.connection = self.connection, None
        try:
            connection.shutdown()
        except (SSL.Error, OSError) as e:
            logger.debug("TLS shutdown failed: %s", e)
        try:
            connection.close()
        except (SSL.Error, OSError) as e:
            logger.warning("Error closing APNs connection: %s", e)


def _ssl_context() -> SSL.Context:
    context = SSL.Context(SSL.TLS_METHOD)
    context.set_verify(SSL.VERIFY_PEER, lambda conn, cert, errno, depth, ok: bool(ok))
    context.set_default_verify_paths()
    if APNS_CERT_FILE:
        if APNS_CERT_PASSPHRASE:
            context.set_passwd_cb(lambda *args: APNS_CERT_PASSPHRASE.encode("utf-8"))
        context.use_certificate_file(APNS_CERT_FILE)
        # sin key file, la clave privada viene en el mismo PEM
        context.use_privatekey_file(APNS_KEY_FILE or APNS_CERT_FILE)
        context.check_privatekey()
    return context


def connect(host: str = APNS_HOST, port: int = APNS_PORT) -> ApnsChannel:
    """Abre la conexión TLS con el certificado del cliente y hace el handshake."""
    raw = None
    try:
        context = _ssl_context()
        raw = socket.create_connection((host, port), timeout=APNS_CONNECT_TIMEOUT)
        # escrituras bloqueantes: pyOpenSSL no reintenta WantWriteError solo
        raw.setblocking(True)
        connection = SSL.Connection(context, raw)
        connection.set_tlsext_host_name(host.encode("ascii"))
        connection.set_connect_state()
        connection.do_handshake()
    except (SSL.Error, OSError) as e:
        if raw is not None:
            raw.close()
        raise ChannelUnavailable(f"cannot connect to {host}:{port}: {e}") from e
    logger.info("Connected to APNs gateway %s:%s", host, port)
    return ApnsChannel(connection)


@contextmanager
def open_for_delivery(host: str = APNS_HOST, port: int = APNS_PORT) -> Iterator[ApnsChannel]:
    """
    Canal de entrega para un lote. Se cierra siempre al salir,
    aunque el lote se corte o haya una excepción.
    """
    channel = connect(host, port)
    try:
        yield channel
    finally:
        channel.close()
