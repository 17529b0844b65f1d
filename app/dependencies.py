# app/dependencies.py
"""
Application singletons and the FastAPI dependencies that hand them to routers.
Tests replace them through app.dependency_overrides.
"""

from functools import lru_cache

from fastapi import Depends, HTTPException, status

from app.config import settings
from app.schemas.session import UserSession
from app.services.access_policy import AccessPolicy
from app.services.lookup import LookupEngine
from app.services.record_store import RecordStore
from app.services.session_state import SessionState
from app.services.storage import JSONRepository, MemoryKeyValueStore, SQLKeyValueStore
from app.utils.logger import get_logger

logger = get_logger(__name__)


@lru_cache
def get_kv_store():
    if settings.STORAGE_BACKEND == "memory":
        logger.warning("Using in-memory storage — data is lost on restart")
        return MemoryKeyValueStore()
    from app.database import SessionLocal, create_tables

    create_tables()
    return SQLKeyValueStore(SessionLocal)


@lru_cache
def get_policy() -> AccessPolicy:
    return AccessPolicy(settings.ACCESS_MODE)


@lru_cache
def get_record_store() -> RecordStore:
    return RecordStore(JSONRepository(get_kv_store(), settings.DATA_KEY), get_policy())


@lru_cache
def get_lookup() -> LookupEngine:
    return LookupEngine(get_record_store().list)


@lru_cache
def get_session_state() -> SessionState:
    return SessionState(JSONRepository(get_kv_store(), settings.SESSION_KEY), settings.CREDENTIALS)


@lru_cache
def get_voice_bridge():
    from app.services.audio import SoundDeviceMicrophone, SoundDeviceSpeaker
    from app.services.live_client import GeminiLiveConnector
    from app.services.voice_bridge import VoiceBridge

    return VoiceBridge(
        store=get_record_store(),
        lookup=get_lookup(),
        role_provider=lambda: get_session_state().role,
        connector=GeminiLiveConnector(
            api_key=settings.GEMINI_API_KEY,
            model=settings.LIVE_MODEL,
            voice=settings.LIVE_VOICE,
            input_sample_rate=settings.INPUT_SAMPLE_RATE,
        ),
        microphone=SoundDeviceMicrophone(settings.INPUT_SAMPLE_RATE, settings.FRAME_SAMPLES),
        speaker=SoundDeviceSpeaker(settings.OUTPUT_SAMPLE_RATE),
        output_sample_rate=settings.OUTPUT_SAMPLE_RATE,
        transcript_lines=settings.TRANSCRIPT_LINES,
    )


def require_session(state: SessionState = Depends(get_session_state)) -> UserSession:
    """No session → 401; the client falls back to its login screen."""
    if state.current is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not logged in")
    return state.current
