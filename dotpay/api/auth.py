"""
Backend token endpoint.

Browser clients cannot hold the backend secret, so they ask this endpoint
for a short-lived token bound to their session wallet.
"""

from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from ..auth import BackendTokenError, get_session_address, sign_backend_token
from ..config import settings


router = APIRouter(prefix="/api/auth", tags=["auth"])


class BackendTokenData(BaseModel):
    token: str
    token_type: str = Field("Bearer", serialization_alias="tokenType")
    expires_in: int = Field(..., serialization_alias="expiresIn")


class BackendTokenResponse(BaseModel):
    success: bool = True
    data: BackendTokenData


@router.get("/backend-token")
async def backend_token(address: Optional[str] = Depends(get_session_address)):
    """Mint a backend token for the signed-in wallet."""
    if not address:
        return JSONResponse({"success": False, "message": "Unauthorized."}, status_code=401)

    ttl = settings.backend_token_ttl_seconds
    try:
        token = sign_backend_token(address, ttl)
    except BackendTokenError as e:
        return JSONResponse({"success": False, "message": e.message}, status_code=500)

    response = BackendTokenResponse(data=BackendTokenData(token=token, expires_in=ttl))
    return JSONResponse(response.model_dump(by_alias=True))
