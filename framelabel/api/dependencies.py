"""
FastAPI dependency injection.

Dependencies provide the workspace, session and configuration to route
handlers. The long-lived objects (session store, video processor,
metadata codec) are built once by the application factory and kept on
app.state; these functions hand them out per request.

Each dependency is a function that FastAPI calls when needed.
"""

import logging
from typing import Annotated, Optional

from fastapi import Depends, Header, HTTPException, Request, status

from ..config.settings import Settings
from ..core.annotation.workspace import AnnotationWorkspace, WorkingSession
from ..infrastructure.sessions.store import InvalidSessionError, SessionStore
from ..infrastructure.video.processor import VideoProcessor

logger = logging.getLogger(__name__)

SESSION_HEADER = "X-Session-Id"


# ---------------------------------------------------------------------------
# Application State
# ---------------------------------------------------------------------------

def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_session_store(request: Request) -> SessionStore:
    return request.app.state.session_store


def get_video_processor(request: Request) -> VideoProcessor:
    return request.app.state.video_processor


def get_workspace(request: Request) -> AnnotationWorkspace:
    return request.app.state.workspace


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------

async def require_session(
    workspace: Annotated[AnnotationWorkspace, Depends(get_workspace)],
    x_session_id: Annotated[Optional[str], Header(alias=SESSION_HEADER)] = None,
) -> WorkingSession:
    """
    Resolve the session named in the X-Session-Id header.

    Raises 400 if the header is missing or the session is unknown/expired.
    """
    if not x_session_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid session ID",
        )

    try:
        return workspace.session(x_session_id)
    except InvalidSessionError:
        logger.warning("Request with invalid session", extra={"session_id": x_session_id})
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid session ID",
        )


# ---------------------------------------------------------------------------
# Convenience Type Aliases
# ---------------------------------------------------------------------------

# These type aliases make route signatures cleaner
SettingsDep = Annotated[Settings, Depends(get_app_settings)]
SessionStoreDep = Annotated[SessionStore, Depends(get_session_store)]
VideoProcessorDep = Annotated[VideoProcessor, Depends(get_video_processor)]
WorkspaceDep = Annotated[AnnotationWorkspace, Depends(get_workspace)]
CurrentSession = Annotated[WorkingSession, Depends(require_session)]
