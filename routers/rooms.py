from fastapi import APIRouter, HTTPException, Request
from schemas.rooms import (
    CreateRoomRequest, CreateRoomResponse, RoomExistsResponse, JoinRoomRequest, JoinRoomResponse,
    LeaveRoomRequest, HandRequest, HandResponse, ParticipantView, QueueItemView, RoomDetailsResponse,
)
from models import Room
from room_codes import normalize_join_code
from room_store import RoomStore
from speaking_queue import derive_queue, queue_position_of, people_ahead
from logging_config import get_logger

logger = get_logger(__name__)

rooms_router = APIRouter(prefix="/rooms", tags=["rooms"])


def get_store(request: Request) -> RoomStore:
    return request.app.state.room_store


def build_ws_url(request: Request, room_code: str) -> str:
    # Construct WebSocket URL using request's base URL
    base_url = str(request.base_url).rstrip('/')
    ws_base = base_url.replace("http://", "ws://").replace("https://", "wss://")
    return f"{ws_base}/rooms/{room_code}/ws"


def room_details(room: Room) -> RoomDetailsResponse:
    """Snapshot view for clients: participants by join time and the derived speaking queue."""
    participants = sorted(room.participants.values(), key=lambda p: (p.joined_at, p.participant_id))
    ordered = derive_queue(room.participants, room.queue)
    queue = [
        QueueItemView(
            entry_id=entry.entry_id,
            participant_id=entry.participant_id,
            name=room.participants[entry.participant_id].name,
            raised_at=entry.raised_at,
            position=position,
        )
        for position, entry in enumerate(ordered, start=1)
    ]
    return RoomDetailsResponse(
        room_code=room.code,
        admin_name=room.admin_name,
        created_at=room.created_at,
        participants=[
            ParticipantView(participant_id=p.participant_id, name=p.name, joined_at=p.joined_at, hand_raised=p.hand_raised)
            for p in participants
        ],
        queue=queue,
        participant_count=len(participants),
        queue_length=len(queue),
    )


@rooms_router.post("/", response_model=CreateRoomResponse, status_code=201)
async def create_room(body: CreateRoomRequest, request: Request):
    logger.info(f"Room creation request from {request.client.host if request.client else 'unknown'}")
    room_code = await get_store(request).create_room(body.admin_name)
    return CreateRoomResponse(room_code=room_code, ws_url=build_ws_url(request, room_code))


@rooms_router.get("/{room_code}/exists", response_model=RoomExistsResponse)
async def room_exists(room_code: str, request: Request):
    room_code = normalize_join_code(room_code)
    exists = await get_store(request).room_exists(room_code)
    return RoomExistsResponse(room_code=room_code, exists=exists)


@rooms_router.get("/{room_code}", response_model=RoomDetailsResponse)
async def get_room_details(room_code: str, request: Request):
    room = await get_store(request).get_room(room_code)
    if room is None:
        logger.warning(f"Room details failed: Room {room_code} not found")
        raise HTTPException(status_code=404, detail="Room not found")
    return room_details(room)


@rooms_router.post("/{room_code}/join", response_model=JoinRoomResponse)
async def join_room(room_code: str, body: JoinRoomRequest, request: Request):
    room_code = normalize_join_code(room_code)
    logger.info(f"Join room request for {room_code}, user_name: {body.user_name}")
    participant_id = await get_store(request).join_room(room_code, body.user_name)
    return JoinRoomResponse(room_code=room_code, participant_id=participant_id, ws_url=build_ws_url(request, room_code))


@rooms_router.post("/{room_code}/leave")
async def leave_room(room_code: str, body: LeaveRoomRequest, request: Request):
    await get_store(request).leave_room(room_code, body.participant_id)
    return {"message": "Left room"}


@rooms_router.post("/{room_code}/hand", response_model=HandResponse)
async def set_hand(room_code: str, body: HandRequest, request: Request):
    room = await get_store(request).set_hand_raised(room_code, body.participant_id, body.raised)
    participant = room.participants[body.participant_id]
    position = queue_position_of(body.participant_id, derive_queue(room.participants, room.queue))
    return HandResponse(
        participant_id=body.participant_id,
        hand_raised=participant.hand_raised,
        queue_position=position,
        people_ahead=people_ahead(position),
    )


@rooms_router.post("/{room_code}/queue/{participant_id}/done")
async def remove_from_queue(room_code: str, participant_id: str, request: Request):
    # Admin "done speaking"
    await get_store(request).remove_from_queue(room_code, participant_id)
    return {"message": "Removed from queue"}


@rooms_router.post("/{room_code}/close")
async def close_room(room_code: str, request: Request):
    deleted = await get_store(request).delete_room(room_code)
    if not deleted:
        logger.info(f"Close room for {room_code}: room was already gone")
    return {"message": "Room closed successfully"}
