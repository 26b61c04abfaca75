"""
Bearer-token authentication for the discovery endpoints.

Tokens are issued by the identity service; this module only verifies them
and extracts the caller's user id from the `sub` claim.
"""
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from discovery_service.config import settings

security = HTTPBearer(auto_error=False)


def decode_access_token(token: str) -> Optional[dict]:
    """Verified payload, or None if the token is invalid or expired."""
    try:
        return jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return None


async def get_current_user_id(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> str:
    payload = decode_access_token(credentials.credentials) if credentials else None
    user_id = payload.get("sub") if payload else None
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return str(user_id)
