"""
API Dependencies

FastAPI dependency injection for authentication and the service container.

Security: bearer tokens are HS256 JWTs issued by the auth service and are
verified cryptographically with the shared JWT secret. Never decode without
verification.
"""

import logging
from typing import Annotated, Optional

import jwt
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from assist.config.settings import Settings
from assist.infrastructure.container import ServiceContainer


logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)


def get_container(request: Request) -> ServiceContainer:
    """The container built by the application lifespan."""
    return request.app.state.container


ContainerDep = Annotated[ServiceContainer, Depends(get_container)]


def get_app_settings(container: ContainerDep) -> Settings:
    return container.settings


def _decode_token(token: str, settings: Settings) -> dict:
    """Verify JWT using the HS256 symmetric secret."""
    required = ["exp", "sub"]
    if settings.jwt_issuer:
        required.append("iss")
    return jwt.decode(
        token,
        settings.jwt_secret,
        algorithms=["HS256"],
        issuer=settings.jwt_issuer,
        audience=settings.jwt_audience,
        options={"require": required},
    )


async def get_token_claims(
    settings: Annotated[Settings, Depends(get_app_settings)],
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> dict:
    """
    Verify the bearer token and return its claims.

    Raises:
        HTTPException 401: token missing, expired, or invalid.
        HTTPException 503: JWT_SECRET not configured.
    """
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing authorization token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not settings.jwt_secret:
        logger.error("JWT_SECRET environment variable not set")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Authentication not configured",
        )

    try:
        payload = _decode_token(credentials.credentials, settings)
    except jwt.ExpiredSignatureError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has expired",
        )
    except jwt.InvalidTokenError as e:
        logger.warning("JWT verification failed: %s", e)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or unverifiable token",
        )

    if not payload.get("sub"):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token: missing account ID",
        )

    return payload


ClaimsDep = Annotated[dict, Depends(get_token_claims)]


async def get_current_account_id(request: Request, claims: ClaimsDep) -> str:
    """Authenticated account ID (``sub`` claim), also kept on the request for rate limiting."""
    request.state.account_id = claims["sub"]
    return claims["sub"]


CurrentAccountDep = Annotated[str, Depends(get_current_account_id)]


async def require_admin(claims: ClaimsDep) -> str:
    """Allow only tokens carrying ``admin: true``."""
    if claims.get("admin") is not True:
        logger.warning(f"Non-admin account {claims['sub']} attempted an admin operation")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin privileges required",
        )
    return claims["sub"]
