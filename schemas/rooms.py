from pydantic import BaseModel
from typing import Optional


class CreateRoomRequest(BaseModel):
    admin_name: str

class CreateRoomResponse(BaseModel):
    room_code: str
    ws_url: str

class RoomExistsResponse(BaseModel):
    room_code: str
    exists: bool

class JoinRoomRequest(BaseModel):
    user_name: str

class JoinRoomResponse(BaseModel):
    room_code: str
    participant_id: str
    ws_url: str

class LeaveRoomRequest(BaseModel):
    participant_id: str

class HandRequest(BaseModel):
    participant_id: str
    raised: bool

class HandResponse(BaseModel):
    participant_id: str
    hand_raised: bool
    queue_position: Optional[int] = None
    people_ahead: Optional[int] = None

class ParticipantView(BaseModel):
    participant_id: str
    name: str
    joined_at: int
    hand_raised: bool

class QueueItemView(BaseModel):
    entry_id: str
    participant_id: str
    name: str
    raised_at: int
    position: int

class RoomDetailsResponse(BaseModel):
    room_code: str
    admin_name: str
    created_at: int
    participants: list[ParticipantView]
    queue: list[QueueItemView]
    participant_count: int
    queue_length: int
