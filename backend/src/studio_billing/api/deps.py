"""FastAPI dependencies for database sessions, gateway clients and authentication."""
from typing import AsyncGenerator, Optional
import structlog

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession
import jwt

from studio_billing.adapters.stripe_adapter import StripeAdapter
from studio_billing.auth.jwt import JWTAuth
from studio_billing.auth.rbac import Role, ensure_role
from studio_billing.integrations.notification_service import NotificationService

logger = structlog.get_logger(__name__)

# HTTP Bearer token security scheme; missing credentials are reported as 401 below
security = HTTPBearer(auto_error=False)


async def get_db(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """
    Database session dependency.

    Uses the Database created at startup and stored on the application state.

    Yields:
        AsyncSession: Database session for the request lifecycle
    """
    async for session in request.app.state.database.session():
        yield session


def get_stripe_adapter(request: Request) -> StripeAdapter:
    """Get the Stripe adapter created at startup."""
    return request.app.state.stripe_adapter


def get_notification_service(request: Request) -> NotificationService:
    """Get the notification service created at startup."""
    return request.app.state.notification_service


def get_jwt_auth(request: Request) -> JWTAuth:
    """Get the token verifier built from the application settings."""
    return request.app.state.jwt_auth


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    jwt_auth: JWTAuth = Depends(get_jwt_auth),
) -> dict[str, str]:
    """
    Get current authenticated user from JWT token.

    Args:
        credentials: HTTP Bearer token from request header
        jwt_auth: Token verifier configured for this application

    Returns:
        dict: User information from decoded JWT (sub, email, role)

    Raises:
        HTTPException: If token is invalid, expired, or missing
    """
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )

    token = credentials.credentials

    try:
        payload = jwt_auth.verify_access_token(token)
    except jwt.ExpiredSignatureError:
        logger.warning("token_expired")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has expired",
            headers={"WWW-Authenticate": "Bearer"},
        )
    except jwt.InvalidTokenError as e:
        logger.warning("invalid_token", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Invalid authentication token: {str(e)}",
            headers={"WWW-Authenticate": "Bearer"},
        )

    structlog.contextvars.bind_contextvars(user_id=payload.get("sub"))
    return payload


async def require_admin(current_user: dict = Depends(get_current_user)) -> dict[str, str]:
    """
    Require an authenticated admin user.

    Raises:
        HTTPException: 401 without a valid token, 403 for non-admin roles
    """
    ensure_role(current_user, Role.ADMIN)
    return current_user
