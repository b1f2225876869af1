"""Bearer tokens for the admin API.

The admin frontend signs in against the identity provider and receives an
HS256 token signed with the shared ``JWT_SECRET_KEY``; this service only
verifies it. ``create_access_token`` exists for scripts and tests.
"""
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

import jwt

from studio_billing.config import Settings, settings

ACCESS_TOKEN_TYPE = "access"


class JWTAuth:
    """Issues and verifies signed access tokens."""

    def __init__(self, config: Settings = settings):
        self.secret_key = config.jwt_secret_key
        self.algorithm = config.jwt_algorithm
        self.ttl = timedelta(minutes=config.access_token_expire_minutes)

    def create_access_token(
        self,
        user_id: UUID | str,
        email: str,
        role: str,
        additional_claims: dict[str, Any] | None = None,
    ) -> str:
        """
        Sign an access token for a user.

        Args:
            user_id: Identity provider user id (``sub`` claim)
            email: User email
            role: ``admin`` or ``client``
            additional_claims: Extra claims merged into the payload

        Returns:
            Encoded token
        """
        issued_at = datetime.utcnow()
        claims = {
            "sub": str(user_id),
            "email": email,
            "role": role,
            "type": ACCESS_TOKEN_TYPE,
            "iat": issued_at,
            "exp": issued_at + self.ttl,
            **(additional_claims or {}),
        }
        return jwt.encode(claims, self.secret_key, algorithm=self.algorithm)

    def verify_access_token(self, token: str) -> dict[str, Any]:
        """
        Decode a token and check that it is an access token.

        Raises:
            jwt.ExpiredSignatureError: If the token has expired
            jwt.InvalidTokenError: If the token is malformed, forged or of another type
        """
        claims = jwt.decode(token, self.secret_key, algorithms=[self.algorithm], options={"require": ["exp", "sub"]})
        if claims.get("type") != ACCESS_TOKEN_TYPE:
            raise jwt.InvalidTokenError("Not an access token")
        return claims

