# app/routers/health.py
"""
System health check endpoint.
Returns status of backend + local storage.
"""

from fastapi import APIRouter, Depends
from app.config import settings
from app.dependencies import get_kv_store
from datetime import datetime

router = APIRouter()


@router.get("/health", summary="System health check")
def health_check(kv=Depends(get_kv_store)):
    result = {
        "status": "ok",
        "timestamp": datetime.utcnow().isoformat(),
        "backend": "ok",
        "storage": "unknown",
        "storage_backend": settings.STORAGE_BACKEND,
    }

    try:
        kv.get(settings.DATA_KEY)
        result["storage"] = "ok"
    except Exception as e:
        result["storage"] = f"error: {str(e)}"
        result["status"] = "degraded"

    return result
