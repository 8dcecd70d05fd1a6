# pulse_backend/utils/jwt_deps.py
"""
JWT Dependencies for FastAPI routes.
"""
from dataclasses import dataclass
from typing import Optional

from fastapi import HTTPException, Request, status

from ..middleware.jwt_auth import decode_bearer


@dataclass(frozen=True)
class AuthenticatedUser:
    id: str
    email: Optional[str] = None


async def get_current_user_dep(request: Request) -> AuthenticatedUser:
    """
    FastAPI dependency returning the caller from the JWT token.

    Use this in route handlers:
        @router.get("/endpoint")
        async def my_endpoint(user: AuthenticatedUser = Depends(get_current_user_dep)):
            ...

    Raises:
        HTTPException: 401 if JWT token is missing or invalid
    """
    payload = decode_bearer(request, request.app.state.jwt_service)
    if not payload or not payload.get("sub"):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required. Please provide a valid JWT token in the Authorization header.",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return AuthenticatedUser(id=str(payload["sub"]), email=payload.get("email"))
