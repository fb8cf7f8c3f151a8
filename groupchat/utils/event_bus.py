import asyncio
import inspect
import json
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

import redis.asyncio as redis
from fastapi.encoders import jsonable_encoder

from groupchat.config import settings

logger = logging.getLogger(__name__)

Handler = Callable[[Any], Union[None, Awaitable[None]]]


async def _dispatch(handler: Handler, payload: Any) -> None:
    result = handler(payload)
    if inspect.isawaitable(result):
        await result


class Topic:

    def __init__(self, bus: "EventBus", name: str) -> None:
        self._bus = bus
        self.name = name

    async def publish(self, payload: Any) -> None:
        await self._bus.publish(self.name, payload)

    async def subscribe(self, handler: Handler):
        return await self._bus.subscribe(self.name, handler)


class EventBus:
    """Named topics carrying JSON-compatible payloads."""

    def topic(self, name: str) -> Topic:
        return Topic(self, name)

    async def publish(self, channel: str, payload: Any) -> None:
        raise NotImplementedError

    async def subscribe(self, channel: str, handler: Handler):
        raise NotImplementedError

    async def close(self) -> None:
        return


class LocalEventBus(EventBus):
    """In-process delivery; handlers run before ``publish`` returns."""

    def __init__(self) -> None:
        self._handlers: Dict[str, List[Handler]] = {}

    async def publish(self, channel: str, payload: Any) -> None:
        data = jsonable_encoder(payload)
        for handler in list(self._handlers.get(channel, [])):
            try:
                await _dispatch(handler, data)
            except Exception:
                logger.exception("Handler failed for %s", channel)

    async def subscribe(self, channel: str, handler: Handler):
        handlers = self._handlers.setdefault(channel, [])
        handlers.append(handler)

        class _Sub:
            async def run(self_inner):
                await asyncio.Future()

            async def cancel(self_inner):
                if handler in handlers:
                    handlers.remove(handler)

        return _Sub()


class RedisEventBus(EventBus):

    def __init__(self, url: str) -> None:
        self._redis = redis.from_url(url, decode_responses=True)

    async def publish(self, channel: str, payload: Any) -> None:
        await self._redis.publish(channel, json.dumps(jsonable_encoder(payload)))

    async def subscribe(self, channel: str, handler: Handler):
        pubsub = self._redis.pubsub()
        await pubsub.subscribe(channel)

        class _Sub:
            _running = True

            async def run(self_inner):
                while self_inner._running:
                    try:
                        msg = await pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
                        if msg and msg.get("type") == "message":
                            await _dispatch(handler, json.loads(msg["data"]))
                    except Exception:
                        logger.exception("Failed to deliver message from %s", channel)
                        await asyncio.sleep(0.5)

            async def cancel(self_inner):
                self_inner._running = False
                await pubsub.unsubscribe(channel)
                await pubsub.aclose()

        return _Sub()

    async def close(self) -> None:
        await self._redis.aclose()


_bus: Optional[EventBus] = None


def get_bus() -> EventBus:
    global _bus
    if _bus is None:
        _bus = RedisEventBus(settings.REDIS_URL) if settings.REDIS_URL else LocalEventBus()
    return _bus


async def close_bus() -> None:
    global _bus
    if _bus is not None:
        await _bus.close()
        _bus = None
