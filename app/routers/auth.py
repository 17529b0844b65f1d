# app/routers/auth.py
"""Login / logout against the fixed credential list. One active session at a time."""

from fastapi import APIRouter, Depends, HTTPException, status
from app.dependencies import get_session_state, get_voice_bridge, require_session
from app.schemas.session import LoginRequest, UserSession
from app.services.session_state import SessionState

router = APIRouter()


@router.post("/auth/login", response_model=UserSession, summary="Log in with the registry credentials")
async def login(body: LoginRequest, state: SessionState = Depends(get_session_state)):
    session = state.login(body.username, body.password)
    if session is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid username or password")
    return session


@router.post("/auth/logout", summary="End the current session")
async def logout(state: SessionState = Depends(get_session_state), bridge=Depends(get_voice_bridge)):
    # The assistant only lives while someone is logged in
    await bridge.stop()
    state.logout()
    return {"status": "logged_out"}


@router.get("/auth/session", response_model=UserSession, summary="Current session")
async def current_session(session: UserSession = Depends(require_session)):
    return session
