from datetime import timedelta
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
from app.config import settings
from app.database import Database
from app.features.auth.store import BeanieUserStore, UserStore
from app.features.medications.router import router as medications_router
from app.features.medications.scheduler import ReminderScheduler
from app.features.medications.service import MedicationService
from app.features.medications.store import BeanieMedicationStore, MedicationStore
from app.features.messages.router import router as messages_router
from app.features.messages.service import ChatService
from app.features.messages.store import BeanieChatStore, ChatStore
from app.features.realtime.bus import EventBus, SocketIOTransport
from app.features.realtime.presence import PresenceRegistry
from app.features.realtime.socket import RealtimeGateway, sio, socket_app
from app.routers import health_router
from app.core.logging import logger


def init_services(
    app: FastAPI,
    users: UserStore,
    medications: MedicationStore,
    chats: ChatStore,
) -> ReminderScheduler:
    """Wire the realtime services together and keep them on ``app.state``."""
    presence = PresenceRegistry()
    bus = EventBus(SocketIOTransport(sio))

    scheduler = ReminderScheduler(
        medications,
        presence,
        bus,
        window=timedelta(minutes=settings.REMINDER_WINDOW_MINUTES),
        interval=settings.REMINDER_SWEEP_INTERVAL_SECONDS,
        retention=timedelta(minutes=settings.REMINDER_LEDGER_RETENTION_MINUTES),
        default_snooze_minutes=settings.DEFAULT_SNOOZE_MINUTES,
    )
    chat = ChatService(chats, users, presence, bus)

    RealtimeGateway(sio, users, presence, bus, scheduler, chat).register()

    app.state.user_store = users
    app.state.presence = presence
    app.state.bus = bus
    app.state.scheduler = scheduler
    app.state.medication_service = MedicationService(medications, scheduler)
    app.state.chat_service = chat

    return scheduler


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan events for FastAPI application."""
    # Startup
    logger.info("Starting PharmaLink notification service...")
    await Database.connect_db()

    scheduler = init_services(
        app,
        users=BeanieUserStore(),
        medications=BeanieMedicationStore(),
        chats=BeanieChatStore(),
    )

    if settings.REMINDER_SCHEDULER_ENABLED:
        scheduler.start()
    else:
        logger.info("Reminder scheduler disabled")

    logger.info("Application started successfully")

    yield

    # Shutdown
    logger.info("Shutting down...")
    scheduler.stop()
    await Database.close_db()
    logger.info("Application shutdown complete")


# Create FastAPI application
app = FastAPI(
    title=settings.APP_NAME,
    description="Medication reminders, pharmacy chat and live notifications",
    version="1.0.0",
    lifespan=lifespan,
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Register routers
app.include_router(health_router)
app.include_router(medications_router, prefix=settings.API_V1_PREFIX)
app.include_router(messages_router, prefix=settings.API_V1_PREFIX)

# Mount Socket.IO application
app.mount("/socket.io", socket_app)


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "message": f"Welcome to {settings.APP_NAME}",
        "version": "1.0.0",
        "docs": "/docs",
        "socket.io": "/socket.io",
    }
