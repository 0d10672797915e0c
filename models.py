from typing import Dict, Literal, Optional

from pydantic import BaseModel, Field, model_validator


class Participant(BaseModel):
    participant_id: str
    name: str
    joined_at: int
    hand_raised: bool = False
    raised_at: Optional[int] = None


class QueueEntry(BaseModel):
    """One raised-hand event. Entry ids sort in allocation order."""
    entry_id: str
    participant_id: str
    raised_at: int


class Room(BaseModel):
    code: str
    admin_name: str
    created_at: int
    participants: Dict[str, Participant] = Field(default_factory=dict)
    queue: Dict[str, QueueEntry] = Field(default_factory=dict)
    entry_seq: int = 0

    def entries_for(self, participant_id: str) -> list[str]:
        return [entry_id for entry_id, entry in self.queue.items() if entry.participant_id == participant_id]


class Session(BaseModel):
    """Client-side cache of which room a user is in and as whom."""
    room_code: str
    user_name: str
    role: Literal["admin", "participant"]
    participant_id: Optional[str] = None

    @model_validator(mode="after")
    def check_participant_id(self):
        if self.role == "participant" and not self.participant_id:
            raise ValueError("participant sessions need a participant_id")
        return self
