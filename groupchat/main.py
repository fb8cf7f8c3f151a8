from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from groupchat.database.connection import close_mongo_connection, connect_to_mongo, get_database
from groupchat.exceptions import (
    ConcurrentModificationError,
    ConfigurationError,
    NotFoundError,
    PersistenceError,
)
from groupchat.logging_config import setup_logging
from groupchat.repositories.conversation_repository import ConversationRepository
from groupchat.repositories.message_repository import MessageRepository
from groupchat.routers.chat import manager
from groupchat.routers.chat import router as chat_router
from groupchat.routers.communities import router as communities_router
from groupchat.routers.conversations import router as conversations_router
from groupchat.routers.messages import router as messages_router
from groupchat.services.realtime import RealtimeNotifier
from groupchat.utils.dependencies import get_conversation_service
from groupchat.utils.event_bus import close_bus, get_bus


@asynccontextmanager
async def lifespan(app: FastAPI):

    setup_logging()
    await connect_to_mongo()
    db = get_database()
    await ConversationRepository(db).ensure_indexes()
    await MessageRepository(db).ensure_indexes()

    bus = get_bus()
    notifier = RealtimeNotifier(bus, manager, lambda: get_conversation_service(get_database(), bus))
    await notifier.start()
    try:
        yield
    finally:
        await notifier.stop()
        await close_bus()
        await close_mongo_connection()


app = FastAPI(title="Group chat", lifespan=lifespan)


def _error(status_code: int):
    async def handler(request: Request, exc: Exception) -> JSONResponse:
        return JSONResponse(status_code=status_code, content={"detail": str(exc)})
    return handler


app.add_exception_handler(ConfigurationError, _error(400))
app.add_exception_handler(NotFoundError, _error(404))
app.add_exception_handler(ConcurrentModificationError, _error(409))
app.add_exception_handler(PersistenceError, _error(503))

app.include_router(conversations_router)
app.include_router(messages_router)
app.include_router(communities_router)
app.include_router(chat_router)

