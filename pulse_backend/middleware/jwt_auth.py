# pulse_backend/middleware/jwt_auth.py
"""
JWT Authentication Middleware.
Puts the caller's user id on request.state so rate limiting can key on it.
"""
from typing import Optional, Dict, Any

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from ..services.jwt_service import JWTService


def decode_bearer(request: Request, jwt_service: JWTService) -> Optional[Dict[str, Any]]:
    """Return the JWT payload from "Authorization: Bearer <token>", or None."""
    authorization = request.headers.get("Authorization")
    if not authorization or not authorization.startswith("Bearer "):
        return None
    return jwt_service.verify_token(authorization[7:])


class JWTAuthMiddleware(BaseHTTPMiddleware):
    """
    Middleware to extract and validate JWT tokens.
    Adds user_id to request.state for easy access.
    """

    def __init__(self, app, jwt_service: JWTService):
        super().__init__(app)
        self.jwt_service = jwt_service

    async def dispatch(self, request: Request, call_next):
        # Skip JWT extraction for OPTIONS requests (CORS preflight)
        if request.method == "OPTIONS":
            return await call_next(request)

        payload = decode_bearer(request, self.jwt_service)
        request.state.user_id = payload.get("sub") if payload else None
        return await call_next(request)
