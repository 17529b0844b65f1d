# app/routers/assistant.py
"""Live voice assistant controls."""

from fastapi import APIRouter, Depends
from app.dependencies import get_voice_bridge, require_session
from app.schemas.session import UserSession
from app.schemas.voice import BridgeStatus

router = APIRouter()


@router.post("/assistant/start", response_model=BridgeStatus, summary="Start the live assistant")
async def start_assistant(session: UserSession = Depends(require_session), bridge=Depends(get_voice_bridge)):
    """Returns once the session is active, or idle again if the mic / remote session failed."""
    await bridge.start()
    return bridge.status()


@router.post("/assistant/stop", response_model=BridgeStatus, summary="Stop the live assistant")
async def stop_assistant(session: UserSession = Depends(require_session), bridge=Depends(get_voice_bridge)):
    await bridge.stop()
    return bridge.status()


@router.get("/assistant/status", response_model=BridgeStatus, summary="Assistant state and transcript")
async def assistant_status(session: UserSession = Depends(require_session), bridge=Depends(get_voice_bridge)):
    return bridge.status()
