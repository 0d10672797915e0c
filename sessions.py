import json
import os
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from errors import HandstackError
from models import Session
from room_store import RoomStore
from logging_config import get_logger

logger = get_logger(__name__)

# Routes that do not belong to a room; a restored session may redirect away from these
NEUTRAL_PATHS = ("/", "/create", "/join")


class RestoreAction(str, Enum):
    NONE = "none"
    KEPT = "kept"
    DISCARDED = "discarded"
    REJOINED = "rejoined"
    DEFERRED = "deferred"


@dataclass
class RestoreResult:
    session: Optional[Session]
    action: RestoreAction
    redirect_to: Optional[str] = None


def room_path(session: Session) -> str:
    if session.role == "admin":
        return f"/admin/{session.room_code}"
    return f"/room/{session.room_code}"


def _normalize_path(path: Optional[str]) -> str:
    path = (path or "/").split("?", 1)[0]
    return path.rstrip("/") or "/"


def _is_room_page(current_path: str, session: Session) -> bool:
    return _normalize_path(current_path).lower() == room_path(session).lower()


def _redirect_for(session: Session, current_path: str) -> Optional[str]:
    if _normalize_path(current_path) in NEUTRAL_PATHS:
        return room_path(session)
    return None


async def reconcile_session(store: RoomStore, session: Optional[Session], current_path: str = "/") -> RestoreResult:
    """Check a cached session against the room it points at.

    A participant missing from the room is re-admitted only while the client
    is on that room's page (a refresh); anywhere else the session is kept for
    later. Any store failure discards the session.
    """
    if session is None:
        return RestoreResult(session=None, action=RestoreAction.NONE)

    try:
        if not await store.room_exists(session.room_code):
            logger.info(f"Discarding session for {session.user_name}: room {session.room_code} no longer exists")
            return RestoreResult(session=None, action=RestoreAction.DISCARDED)

        if session.role == "admin":
            action = RestoreAction.KEPT
        else:
            room = await store.get_room(session.room_code)
            if room is None:
                logger.info(f"Room {session.room_code} disappeared during restore")
                return RestoreResult(session=None, action=RestoreAction.DISCARDED)
            if session.participant_id in room.participants:
                action = RestoreAction.KEPT
            elif _is_room_page(current_path, session):
                participant_id = await store.rejoin_room(session.room_code, session.user_name, session.participant_id)
                session = session.model_copy(update={"participant_id": participant_id})
                action = RestoreAction.REJOINED
            else:
                action = RestoreAction.DEFERRED
    except HandstackError as e:
        logger.warning(f"Session restore for room {session.room_code} failed, discarding session: {e}")
        return RestoreResult(session=None, action=RestoreAction.DISCARDED)

    logger.info(f"Session for {session.user_name} in room {session.room_code}: {action.value}")
    return RestoreResult(session=session, action=action, redirect_to=_redirect_for(session, current_path))


async def end_session(store: RoomStore, session: Optional[Session]):
    """Admin ends the meeting, a participant leaves. Failures are logged, never raised."""
    if session is None:
        return
    try:
        if session.role == "admin":
            await store.delete_room(session.room_code)
        elif session.participant_id:
            await store.leave_room(session.room_code, session.participant_id)
    except HandstackError as e:
        logger.error(f"Error during session cleanup for room {session.room_code}: {e}")


class SessionCache:
    """The one cached session of a client process.

    Owned by whoever drives the client and passed along explicitly. With a
    path, every change is written through to a JSON file.
    """

    def __init__(self, path: Optional[str] = None):
        self.path = path
        self.session: Optional[Session] = None

    def load(self) -> Optional[Session]:
        if not self.path or not os.path.exists(self.path):
            return self.session
        try:
            with open(self.path, encoding="utf-8") as f:
                self.session = Session.model_validate(json.load(f))
        except (OSError, ValueError) as e:
            # ValueError covers bad UTF-8, bad JSON and schema failures
            logger.warning(f"Clearing unreadable session cache {self.path}: {e}")
            self.clear()
        return self.session

    def save(self, session: Session):
        self.session = session
        if self.path:
            with open(self.path, "w", encoding="utf-8") as f:
                f.write(session.model_dump_json())

    def clear(self):
        self.session = None
        if self.path and os.path.exists(self.path):
            os.remove(self.path)


async def restore_cached_session(store: RoomStore, cache: SessionCache, current_path: str = "/") -> RestoreResult:
    result = await reconcile_session(store, cache.load(), current_path)
    if result.session is None:
        cache.clear()
    else:
        cache.save(result.session)
    return result


async def end_cached_session(store: RoomStore, cache: SessionCache):
    await end_session(store, cache.session)
    cache.clear()
