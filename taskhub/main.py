from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI

from taskhub.cache.layer import cache_layer
from taskhub.clients.auth_client import close_auth_client
from taskhub.core.config import get_settings
from taskhub.core.logging import configure_logging
from taskhub.events.consumer import NotificationsConsumer
from taskhub.events.publisher import event_publisher
from taskhub.routers import notifications, tasks
from taskhub.services.notification_dispatcher import NotificationDispatcher
from taskhub.websocket.manager import connection_manager

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    configure_logging(settings.log_level)

    await cache_layer.init_cache()
    await event_publisher.start()

    consumer = None
    if settings.notifications_consumer_enabled:
        consumer = NotificationsConsumer(NotificationDispatcher())
        await consumer.start()
    app.state.consumer = consumer

    yield

    if consumer is not None:
        await consumer.close()
    await event_publisher.close()
    await close_auth_client()
    await cache_layer.close()


app = FastAPI(
    title="Task Management API",
    description="Async task management API with event-driven notifications",
    swagger_ui_parameters={"displayRequestDuration": True},
    version="1.0.0",
    lifespan=lifespan,
)

# Include routers
app.include_router(tasks.router)
app.include_router(notifications.router)


@app.get("/")
async def root():
    return {
        "message": "Welcome to Task Management API",
        "docs": "/docs",
        "version": "1.0.0",
    }


@app.get("/health")
async def health_check():
    consumer = getattr(app.state, "consumer", None)
    return {
        "status": "healthy",
        "broker": {
            "publisher": event_publisher.is_connected,
            "consumer": consumer.is_connected if consumer else None,
        },
        "websocket_users": connection_manager.connected_users_count(),
        "cache": cache_layer.get_stats(),
    }
