"""
Session lifecycle API endpoints.

A session is the client's short-lived working set of images. The client
starts one, keeps it alive with pings while the user is working, and
ends it when done. Sessions that stop pinging expire after the
configured TTL and are removed by the background sweeper.

Every other endpoint identifies its session with the X-Session-Id header.
"""

import logging
from typing import Annotated, Optional

from fastapi import APIRouter, Header, HTTPException, status
from pydantic import BaseModel, Field

from ...infrastructure.sessions.store import InvalidSessionError
from ..dependencies import SESSION_HEADER, CurrentSession, SettingsDep, WorkspaceDep

logger = logging.getLogger(__name__)

router = APIRouter()


# ---------------------------------------------------------------------------
# Request/Response Models
# ---------------------------------------------------------------------------

class StartSessionResponse(BaseModel):
    """Response after creating a session."""
    session_id: str = Field(description="Send this back in the X-Session-Id header")
    expires_in_seconds: float = Field(description="Seconds until the session expires without a ping")


class MessageResponse(BaseModel):
    """Plain acknowledgement."""
    message: str


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.post(
    "",
    response_model=StartSessionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Start session",
    description="Create a new empty working session",
)
async def start_session(
    workspace: WorkspaceDep,
    settings: SettingsDep,
) -> StartSessionResponse:
    session = workspace.start_session()
    return StartSessionResponse(
        session_id=session.id,
        expires_in_seconds=settings.session_ttl_seconds,
    )


@router.post(
    "/ping",
    response_model=MessageResponse,
    status_code=status.HTTP_200_OK,
    summary="Extend session",
    description="Reset the session's expiry clock",
)
async def ping_session(
    workspace: WorkspaceDep,
    x_session_id: Annotated[Optional[str], Header(alias=SESSION_HEADER)] = None,
) -> MessageResponse:
    """
    Keep a session alive.

    Fails with 400 if the session is unknown or has already expired;
    an expired session cannot be revived.
    """
    try:
        workspace.ping_session(x_session_id or "")
    except InvalidSessionError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid session ID",
        )

    return MessageResponse(message="Session extended successfully")


@router.delete(
    "",
    response_model=MessageResponse,
    status_code=status.HTTP_200_OK,
    summary="End session",
    description="Delete the session and every image it holds",
)
async def end_session(
    session: CurrentSession,
    workspace: WorkspaceDep,
) -> MessageResponse:
    workspace.end_session(session.id)
    return MessageResponse(message="Session ended and data cleared successfully")
