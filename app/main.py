# app/main.py
import asyncio
import logging
import os
from contextlib import asynccontextmanager, suppress

from dotenv import load_dotenv

# las variables del .env tienen que estar antes de importar infra (lee os.getenv al importar)
load_dotenv()

from fastapi import FastAPI

from app.api.notifications import devices_router, router as notifications_router
from app.infra.servicebus_consumer import consume_notifications

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # la cola alimenta la tabla de pendientes; el envío lo dispara POST /notifications/deliver
    consumer = asyncio.create_task(consume_notifications())
    yield
    consumer.cancel()
    with suppress(asyncio.CancelledError):
        await consumer


app = FastAPI(title="APN Notification Service", lifespan=lifespan)
app.include_router(notifications_router)
app.include_router(devices_router)
