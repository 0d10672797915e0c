import asyncio
import inspect
import time
import uuid
from typing import Awaitable, Callable, Optional, Union

from constants import STORE_TIMEOUT_SECONDS
from errors import NotFound, StorageError
from models import Participant, QueueEntry, Room
from room_codes import generate_room_code, normalize_join_code, validate_name
from logging_config import get_logger

logger = get_logger(__name__)

RoomListener = Callable[[Optional[Room]], Union[None, Awaitable[None]]]
ErrorListener = Callable[[StorageError], Union[None, Awaitable[None]]]


def now_ms() -> int:
    return int(time.time() * 1000)


def _drop_entries(room: Room, participant_id: str) -> bool:
    stale = room.entries_for(participant_id)
    for entry_id in stale:
        del room.queue[entry_id]
    return bool(stale)


class Subscription:
    """Handle for a room snapshot stream. cancel() may be called any number of times.

    When the backend stream fails the subscription goes inactive and the
    failure is kept on `error`.
    """

    def __init__(self, room_code: str):
        self.room_code = room_code
        self.active = True
        self.error: Optional[StorageError] = None
        self.task: Optional[asyncio.Task] = None

    def cancel(self):
        if not self.active:
            return
        self.active = False
        if self.task is not None and not self.task.done():
            self.task.cancel()
        logger.debug(f"Subscription to room {self.room_code} cancelled")


class RoomStore:
    """Authoritative room state.

    Each mutation is applied as one conditional read-modify-write on the
    backend, so concurrent callers never duplicate queue entries and
    subscribers never see half of a change.
    """

    def __init__(self, backend, clock: Callable[[], int] = now_ms, timeout: float = STORE_TIMEOUT_SECONDS):
        self.backend = backend
        self.clock = clock
        self.timeout = timeout

    async def _guard(self, awaitable, operation: str):
        try:
            return await asyncio.wait_for(awaitable, timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.error(f"Store operation {operation} timed out after {self.timeout}s")
            raise StorageError(f"{operation} timed out") from None

    async def _mutate(self, room_code: str, mutation: Callable[[Room], bool], operation: str) -> Room:
        """Run mutation against the stored room; it returns False when it changed nothing."""
        def apply(doc: dict) -> Optional[dict]:
            room = Room.model_validate(doc)
            if not mutation(room):
                return None
            return room.model_dump(mode="json")

        doc = await self._guard(self.backend.update_room(room_code, apply), operation)
        return Room.model_validate(doc)

    async def create_room(self, admin_name: str) -> str:
        admin_name = validate_name(admin_name)
        while True:
            room_code = generate_room_code()
            if await self._guard(self.backend.room_exists(room_code), "room_exists"):
                logger.debug(f"Room code {room_code} in use, generating another")
                continue
            room = Room(code=room_code, admin_name=admin_name, created_at=self.clock())
            if await self._guard(self.backend.create_room(room_code, room.model_dump(mode="json")), "create_room"):
                logger.info(f"Room {room_code} created by {admin_name}")
                return room_code
            logger.debug(f"Room code {room_code} was taken concurrently, generating another")

    async def room_exists(self, room_code: str) -> bool:
        room_code = normalize_join_code(room_code)
        return await self._guard(self.backend.room_exists(room_code), "room_exists")

    async def get_room(self, room_code: str) -> Optional[Room]:
        room_code = normalize_join_code(room_code)
        doc = await self._guard(self.backend.get_room(room_code), "get_room")
        return Room.model_validate(doc) if doc is not None else None

    async def join_room(self, room_code: str, user_name: str) -> str:
        room_code = normalize_join_code(room_code)
        user_name = validate_name(user_name)
        participant_id = uuid.uuid4().hex

        def add(room: Room) -> bool:
            room.participants[participant_id] = Participant(
                participant_id=participant_id, name=user_name, joined_at=self.clock()
            )
            return True

        await self._mutate(room_code, add, "join_room")
        logger.info(f"Participant {participant_id} ({user_name}) joined room {room_code}")
        return participant_id

    async def rejoin_room(self, room_code: str, user_name: str, previous_participant_id: Optional[str]) -> str:
        """Admit a returning user under a fresh id, hand down, with no leftover queue entry."""
        room_code = normalize_join_code(room_code)
        user_name = validate_name(user_name)
        participant_id = uuid.uuid4().hex

        def readmit(room: Room) -> bool:
            if previous_participant_id:
                room.participants.pop(previous_participant_id, None)
                _drop_entries(room, previous_participant_id)
            room.participants[participant_id] = Participant(
                participant_id=participant_id, name=user_name, joined_at=self.clock()
            )
            return True

        await self._mutate(room_code, readmit, "rejoin_room")
        logger.info(f"Participant {user_name} rejoined room {room_code} as {participant_id} (was {previous_participant_id})")
        return participant_id

    async def leave_room(self, room_code: str, participant_id: str):
        room_code = normalize_join_code(room_code)

        def remove(room: Room) -> bool:
            removed = room.participants.pop(participant_id, None) is not None
            return _drop_entries(room, participant_id) or removed

        try:
            await self._mutate(room_code, remove, "leave_room")
        except NotFound:
            logger.debug(f"Leave ignored: room {room_code} no longer exists")
            return
        logger.info(f"Participant {participant_id} left room {room_code}")

    async def set_hand_raised(self, room_code: str, participant_id: str, raised: bool) -> Room:
        room_code = normalize_join_code(room_code)

        def toggle(room: Room) -> bool:
            participant = room.participants.get(participant_id)
            if participant is None:
                raise NotFound(f"Participant {participant_id} is not in room {room_code}")
            if raised:
                if participant.hand_raised:
                    return False
                _drop_entries(room, participant_id)
                raised_at = self.clock()
                room.entry_seq += 1
                entry_id = f"{room.entry_seq:08d}"
                room.queue[entry_id] = QueueEntry(entry_id=entry_id, participant_id=participant_id, raised_at=raised_at)
                participant.hand_raised = True
                participant.raised_at = raised_at
                return True
            changed = _drop_entries(room, participant_id) or participant.hand_raised
            participant.hand_raised = False
            participant.raised_at = None
            return changed

        room = await self._mutate(room_code, toggle, "set_hand_raised")
        logger.debug(f"Participant {participant_id} in room {room_code} hand_raised={raised}")
        return room

    async def remove_from_queue(self, room_code: str, participant_id: str):
        """Admin "done speaking": drop the entry and force the hand down."""
        room_code = normalize_join_code(room_code)

        def dismiss(room: Room) -> bool:
            changed = _drop_entries(room, participant_id)
            participant = room.participants.get(participant_id)
            if participant is not None and (participant.hand_raised or participant.raised_at is not None):
                participant.hand_raised = False
                participant.raised_at = None
                changed = True
            return changed

        try:
            await self._mutate(room_code, dismiss, "remove_from_queue")
        except NotFound:
            logger.debug(f"Queue removal ignored: room {room_code} no longer exists")
            return
        logger.info(f"Participant {participant_id} removed from queue in room {room_code}")

    async def delete_room(self, room_code: str) -> bool:
        room_code = normalize_join_code(room_code)
        deleted = await self._guard(self.backend.delete_room(room_code), "delete_room")
        logger.info(f"Room {room_code} deleted (existed={deleted})")
        return deleted

    def subscribe(self, room_code: str, on_change: RoomListener, on_error: Optional[ErrorListener] = None) -> Subscription:
        """Stream full room snapshots to on_change, starting with the current one.

        on_change receives None once the room is gone. If the stream breaks,
        on_error receives the StorageError and delivery stops. Must be called
        with a running event loop.
        """
        room_code = normalize_join_code(room_code)
        subscription = Subscription(room_code)
        subscription.task = asyncio.get_running_loop().create_task(self._pump(subscription, on_change, on_error))
        return subscription

    async def _deliver(self, subscription: Subscription, on_change: RoomListener, room: Optional[Room]):
        if not subscription.active:
            return
        try:
            result = on_change(room)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.warning(f"Room {subscription.room_code} listener failed: {e}", exc_info=True)

    async def _pump(self, subscription: Subscription, on_change: RoomListener, on_error: Optional[ErrorListener]):
        room_code = subscription.room_code
        channel = None
        try:
            # Open the channel before reading so no change falls between the two
            channel = await self._guard(self.backend.open_channel(room_code), "subscribe")
            await self._deliver(subscription, on_change, await self.get_room(room_code))
            async for doc in channel:
                room = Room.model_validate(doc) if doc is not None else None
                await self._deliver(subscription, on_change, room)
        except asyncio.CancelledError:
            logger.debug(f"Room stream task cancelled for room: {room_code}")
            raise
        except StorageError as e:
            logger.error(f"Room stream for {room_code} stopped: {e}")
            subscription.active = False
            subscription.error = e
            if on_error is not None:
                try:
                    result = on_error(e)
                    if inspect.isawaitable(result):
                        await result
                except Exception as listener_error:
                    logger.warning(f"Room {room_code} error listener failed: {listener_error}", exc_info=True)
        finally:
            if channel is not None:
                await channel.close()
