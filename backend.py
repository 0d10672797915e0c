import asyncio
import copy
import functools
import json
from typing import Callable, Dict, Optional, Set

import redis.asyncio as redis
from redis.exceptions import RedisError, WatchError

from constants import REDIS_HOST, REDIS_PORT, REDIS_PASSWORD, REDIS_DB, ROOM_TTL_SECONDS
from errors import NotFound, StorageError
from redis_keys import REDIS_ROOM_KEY, REDIS_ROOM_CHANNEL
from logging_config import get_logger

logger = get_logger(__name__)

# Receives the current room document, returns the new one or None when nothing changed
Mutation = Callable[[dict], Optional[dict]]


def storage_errors(func):
    """Surface Redis failures as StorageError."""
    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        try:
            return await func(*args, **kwargs)
        except RedisError as e:
            logger.error(f"Redis call {func.__name__} failed: {e}", exc_info=True)
            raise StorageError(f"Backing store unavailable: {e}") from e
    return wrapper


class RedisRoomChannel:
    """Async iterator over room documents published on a room channel."""

    def __init__(self, room_code: str, pubsub):
        self.room_code = room_code
        self.pubsub = pubsub

    def __aiter__(self):
        return self

    async def __anext__(self) -> Optional[dict]:
        while True:
            try:
                message = await self.pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
            except RedisError as e:
                logger.error(f"Error reading pub/sub for room {self.room_code}: {e}", exc_info=True)
                raise StorageError(f"Lost room stream: {e}") from e
            if message is None:
                # Timeout or no message, keep waiting
                continue
            if message.get("type") != "message":
                continue
            try:
                payload = json.loads(message["data"])
            except json.JSONDecodeError as e:
                logger.error(f"Error parsing message from Redis for room {self.room_code}: {e}")
                continue
            return payload.get("room")

    async def close(self):
        try:
            await self.pubsub.aclose()
            logger.debug(f"Closed pub/sub connection for room: {self.room_code}")
        except RedisError as e:
            logger.error(f"Error closing pub/sub for room {self.room_code}: {e}")


class RedisBackend:
    """Rooms stored as one JSON document per key; changes published on a per-room channel.

    Every write and its publish go through one MULTI/EXEC so subscribers see
    changes in the order Redis applied them.
    """

    def __init__(self, client=None, ttl: int = ROOM_TTL_SECONDS):
        self.redis_client = client or redis.Redis(
            host=REDIS_HOST, port=REDIS_PORT, password=REDIS_PASSWORD, db=REDIS_DB, decode_responses=True
        )
        self.ttl = ttl or None
        logger.info(f"Initializing RedisBackend with connection to {REDIS_HOST}:{REDIS_PORT}")

    def get_room_channel_name(self, room_code: str) -> str:
        return REDIS_ROOM_CHANNEL.format(code=room_code)

    @storage_errors
    async def ping(self):
        await self.redis_client.ping()
        logger.info(f"Redis client connected successfully to {REDIS_HOST}:{REDIS_PORT}")

    async def close(self):
        await self.redis_client.aclose()

    @storage_errors
    async def room_exists(self, room_code: str) -> bool:
        return bool(await self.redis_client.exists(REDIS_ROOM_KEY.format(code=room_code)))

    @storage_errors
    async def get_room(self, room_code: str) -> Optional[dict]:
        logger.debug(f"Fetching room {room_code}")
        raw = await self.redis_client.get(REDIS_ROOM_KEY.format(code=room_code))
        if raw is None:
            logger.debug(f"Room {room_code} not found in Redis")
            return None
        return json.loads(raw)

    @storage_errors
    async def create_room(self, room_code: str, room_data: dict) -> bool:
        """Store a new room unless the code is already taken."""
        key = REDIS_ROOM_KEY.format(code=room_code)
        created = await self.redis_client.set(key, json.dumps(room_data), nx=True, ex=self.ttl)
        if not created:
            logger.debug(f"Room code {room_code} already taken")
            return False
        await self.redis_client.publish(self.get_room_channel_name(room_code), json.dumps({"room": room_data}))
        logger.debug(f"Room {room_code} created with key: {key}")
        return True

    @storage_errors
    async def update_room(self, room_code: str, mutate: Mutation) -> dict:
        """Optimistic read-modify-write of a room document.

        Retries when another writer touches the key between WATCH and EXEC.
        Raises NotFound when the room is absent.
        """
        key = REDIS_ROOM_KEY.format(code=room_code)
        channel = self.get_room_channel_name(room_code)
        async with self.redis_client.pipeline(transaction=True) as pipe:
            while True:
                try:
                    await pipe.watch(key)
                    raw = await pipe.get(key)
                    if raw is None:
                        raise NotFound(f"Room {room_code} not found")
                    current = json.loads(raw)
                    updated = mutate(copy.deepcopy(current))
                    if updated is None:
                        return current
                    pipe.multi()
                    pipe.set(key, json.dumps(updated), ex=self.ttl)
                    pipe.publish(channel, json.dumps({"room": updated}))
                    await pipe.execute()
                    return updated
                except WatchError:
                    logger.debug(f"Concurrent write on room {room_code}, retrying update")
                    continue

    @storage_errors
    async def delete_room(self, room_code: str) -> bool:
        logger.info(f"Deleting room {room_code}")
        async with self.redis_client.pipeline(transaction=True) as pipe:
            pipe.delete(REDIS_ROOM_KEY.format(code=room_code))
            pipe.publish(self.get_room_channel_name(room_code), json.dumps({"room": None}))
            deleted, subscribers = await pipe.execute()
        logger.debug(f"Room {room_code} deleted: key={deleted}, notified {subscribers} subscribers")
        return bool(deleted)

    @storage_errors
    async def open_channel(self, room_code: str) -> RedisRoomChannel:
        channel = self.get_room_channel_name(room_code)
        logger.debug(f"Subscribing to Redis channel {channel} for room {room_code}")
        pubsub = self.redis_client.pubsub()
        await pubsub.subscribe(channel)
        return RedisRoomChannel(room_code, pubsub)


class MemoryRoomChannel:
    def __init__(self, backend: "MemoryBackend", room_code: str):
        self.backend = backend
        self.room_code = room_code
        self.messages: asyncio.Queue = asyncio.Queue()

    def __aiter__(self):
        return self

    async def __anext__(self) -> Optional[dict]:
        return await self.messages.get()

    async def close(self):
        self.backend.channels.get(self.room_code, set()).discard(self)


class MemoryBackend:
    """Single-process store with the same contract as RedisBackend.

    No method awaits between reading and writing, so each call is atomic on
    the event loop.
    """

    def __init__(self):
        self.rooms: Dict[str, dict] = {}
        self.channels: Dict[str, Set[MemoryRoomChannel]] = {}

    def _publish(self, room_code: str, room_data: Optional[dict]):
        for channel in list(self.channels.get(room_code, ())):
            channel.messages.put_nowait(copy.deepcopy(room_data))

    async def ping(self):
        return True

    async def close(self):
        self.channels.clear()

    async def room_exists(self, room_code: str) -> bool:
        return room_code in self.rooms

    async def get_room(self, room_code: str) -> Optional[dict]:
        room = self.rooms.get(room_code)
        return copy.deepcopy(room) if room is not None else None

    async def create_room(self, room_code: str, room_data: dict) -> bool:
        if room_code in self.rooms:
            return False
        self.rooms[room_code] = copy.deepcopy(room_data)
        self._publish(room_code, room_data)
        return True

    async def update_room(self, room_code: str, mutate: Mutation) -> dict:
        current = self.rooms.get(room_code)
        if current is None:
            raise NotFound(f"Room {room_code} not found")
        updated = mutate(copy.deepcopy(current))
        if updated is None:
            return copy.deepcopy(current)
        self.rooms[room_code] = copy.deepcopy(updated)
        self._publish(room_code, updated)
        return updated

    async def delete_room(self, room_code: str) -> bool:
        deleted = self.rooms.pop(room_code, None) is not None
        self._publish(room_code, None)
        return deleted

    async def open_channel(self, room_code: str) -> MemoryRoomChannel:
        channel = MemoryRoomChannel(self, room_code)
        self.channels.setdefault(room_code, set()).add(channel)
        return channel


def build_backend(kind: str):
    if kind == "redis":
        return RedisBackend()
    if kind == "memory":
        logger.info("Using in-memory room backend; state is local to this process")
        return MemoryBackend()
    raise ValueError(f"Unknown store backend: {kind}")
