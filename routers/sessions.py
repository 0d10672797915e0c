from fastapi import APIRouter, Request
from pydantic import ValidationError as SchemaError

from models import Session
from schemas.sessions import RestoreSessionRequest, RestoreSessionResponse, EndSessionRequest
from routers.rooms import get_store
from sessions import RestoreAction, reconcile_session, end_session
from logging_config import get_logger

logger = get_logger(__name__)

sessions_router = APIRouter(prefix="/sessions", tags=["sessions"])


@sessions_router.post("/restore", response_model=RestoreSessionResponse)
async def restore_session(body: RestoreSessionRequest, request: Request):
    """Validate a client's cached session after a start or reconnect.

    Returns the session to keep (possibly with a new participant_id), or null
    when the client should forget it, plus where to navigate if anywhere.
    """
    session = None
    if body.session is not None:
        try:
            session = Session.model_validate(body.session)
        except SchemaError as e:
            logger.warning(f"Discarding corrupt cached session: {e.error_count()} errors")
            return RestoreSessionResponse(session=None, action=RestoreAction.DISCARDED.value)

    result = await reconcile_session(get_store(request), session, body.current_path)
    return RestoreSessionResponse(session=result.session, action=result.action.value, redirect_to=result.redirect_to)


@sessions_router.post("/end")
async def end_session_route(body: EndSessionRequest, request: Request):
    # Called on tab close as well; never fails the request
    await end_session(get_store(request), body.session)
    return {"message": "Session ended"}
