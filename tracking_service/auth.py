"""
Authentication module for the tracking service.

Handles JWT validation and permission checks for the tracking routes.
"""
from typing import Any, Callable, Dict

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import jwt, JWTError

from tracking_service.config import settings


def get_jwt_public_key() -> str:
    with open(settings.jwt_public_key_path, "r") as f:
        return f.read().replace('\r\n', '\n').replace('\r', '\n')


security = HTTPBearer()


class CredentialsError(Exception):
    """Raised when a token is valid but lacks the expected claims."""
    def __init__(self, message: str, status_code: int = 401):
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)


async def get_current_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials = Depends(security)
) -> Dict[str, Any]:
    """
    Decode the bearer token and return its claims.

    Args:
        request: FastAPI request object
        credentials: JWT credentials from Authorization header

    Returns:
        The token claims; ``sub`` identifies the user

    Raises:
        HTTPException: If the token is invalid or has no subject
    """
    try:
        payload = jwt.decode(
            credentials.credentials,
            get_jwt_public_key(),
            algorithms=["RS256"],
            options={"verify_aud": False}
        )
        if not payload.get("sub"):
            raise CredentialsError("Token missing sub claim")

        request.state.user_id = payload["sub"]
        return payload

    except JWTError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Invalid authentication token: {str(e)}",
            headers={"WWW-Authenticate": "Bearer"},
        )
    except CredentialsError as e:
        raise HTTPException(
            status_code=e.status_code,
            detail=e.message,
            headers={"WWW-Authenticate": "Bearer"},
        )


def require_permission(resource: str, action: str) -> Callable:
    """Dependency factory checking a ``resource:action`` permission claim."""
    needed = f"{resource}:{action}"

    async def check(user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
        permissions = user.get("permissions") or []
        if needed not in permissions and f"{resource}:*" not in permissions:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Missing permission {needed}",
            )
        return user

    return check
