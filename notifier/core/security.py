"""
Security utilities for authentication
Bearer tokens are issued by the surrounding application; this service only
decodes them to obtain the user id
"""

from typing import Dict, Any, Optional
from jose import JWTError, jwt
from fastapi import Depends, Header
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
import hmac

from .config import settings
from .exceptions import UnauthorizedException, ForbiddenException

# Security scheme
security = HTTPBearer(auto_error=False)

class SecurityUtils:
    """Security utility functions"""

    @staticmethod
    def create_access_token(data: Dict[str, Any]) -> str:
        """Create JWT access token (used by tests and tooling)"""
        to_encode = data.copy()
        to_encode.update({"type": "access"})
        return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)

    @staticmethod
    def decode_token(token: str) -> Dict[str, Any]:
        """Decode and validate JWT token"""
        try:
            return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
        except JWTError:
            raise UnauthorizedException("Could not validate credentials")

async def get_current_user_id(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> str:
    """Resolve the calling user's id from the bearer token"""
    if not credentials:
        raise UnauthorizedException()

    payload = SecurityUtils.decode_token(credentials.credentials)
    user_id = payload.get("sub")
    if not user_id:
        raise UnauthorizedException("Token has no subject")
    return str(user_id)

async def require_api_key(x_api_key: Optional[str] = Header(None)) -> None:
    """Guard for collaborator endpoints (notification submission, subscriptions)"""
    if not x_api_key or not hmac.compare_digest(x_api_key, settings.INTERNAL_API_KEY):
        raise ForbiddenException("Invalid API key")
