from fastapi import APIRouter
from typing import Dict, Any

from ..config import settings

router = APIRouter()


@router.get("/healthz")
async def health_check() -> Dict[str, Any]:
    """Health check endpoint that reports which upstream settings are present"""

    checks = {
        "backend_url": settings.has_backend_url,
        "backend_jwt_secret": settings.has_jwt_secret,
        "session_secret": bool(settings.session_secret.strip()),
    }

    return {
        "status": "healthy" if checks["backend_url"] and checks["backend_jwt_secret"] else "degraded",
        "checks": checks,
        "chain_id": settings.chain_id,
    }
