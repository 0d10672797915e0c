from pydantic import BaseModel
from typing import Any, Optional

from models import Session


class RestoreSessionRequest(BaseModel):
    # Left unvalidated here: a corrupt cache must come back as "discarded", not a 422
    session: Optional[dict[str, Any]] = None
    current_path: str = "/"

class RestoreSessionResponse(BaseModel):
    session: Optional[Session]
    action: str
    redirect_to: Optional[str] = None

class EndSessionRequest(BaseModel):
    session: Session
