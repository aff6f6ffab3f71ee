"""
Credential issuance and verification for delivery hub actors.

This module provides JWT-backed credentials that bind a user id to a role.
Credentials are issued for a user and verified into an ``Actor``; password
handling and login flows live outside this service.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional
from uuid import UUID

from jose import ExpiredSignatureError, JWTError, jwt

from deliveryhub.core.config import Settings, get_settings
from deliveryhub.core.errors import AuthError
from deliveryhub.core.logging import get_logger
from deliveryhub.services.orders.enums import Role

logger = get_logger(__name__)

TOKEN_TYPE = "access"


@dataclass(frozen=True)
class Actor:
    """Authenticated user performing an operation."""

    id: UUID
    role: Role
    name: Optional[str] = None


class CredentialService:
    """
    Issues and verifies signed credentials.

    Tokens are HS256 JWTs carrying ``sub`` (user id), ``role``, ``type``,
    ``iat`` and ``exp`` claims.
    """

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()

    def issue_credential(
        self,
        user_id: UUID,
        role: Role,
        expires_delta: Optional[timedelta] = None,
    ) -> str:
        """
        Create a signed credential for a user.

        Args:
            user_id: User the credential identifies
            role: Role of the user
            expires_delta: Optional custom lifetime

        Returns:
            Encoded JWT string
        """
        now = datetime.now(timezone.utc)
        expire = now + (
            expires_delta
            or timedelta(minutes=self.settings.jwt_access_token_expire_minutes)
        )

        claims: Dict[str, Any] = {
            "sub": str(user_id),
            "role": Role(role).value,
            "type": TOKEN_TYPE,
            "iat": now,
            "exp": expire,
        }

        token = jwt.encode(
            claims,
            self.settings.secret_key,
            algorithm=self.settings.jwt_algorithm,
        )

        logger.info(
            "Credential issued",
            subject=str(user_id),
            role=Role(role).value,
            expires_at=expire.isoformat(),
        )

        return token

    def verify_credential(self, token: Optional[str]) -> Actor:
        """
        Decode and validate a credential.

        Args:
            token: Encoded JWT string

        Returns:
            Actor identified by the credential

        Raises:
            AuthError: If the credential is empty, malformed, expired or
                carries unexpected claims
        """
        if not token:
            logger.warning("Attempted to verify empty credential")
            raise AuthError("Authentication token is required")

        try:
            payload = jwt.decode(
                token,
                self.settings.secret_key,
                algorithms=[self.settings.jwt_algorithm],
            )
        except ExpiredSignatureError as e:
            logger.warning("Credential has expired", error=str(e))
            raise AuthError("Token has expired") from e
        except JWTError as e:
            logger.warning(
                "Invalid credential",
                error=str(e),
                error_type=type(e).__name__,
            )
            raise AuthError("Invalid token") from e

        if payload.get("type") != TOKEN_TYPE:
            logger.warning("Credential has wrong type", token_type=payload.get("type"))
            raise AuthError("Invalid token type")

        try:
            user_id = UUID(str(payload.get("sub")))
            role = Role(payload.get("role"))
        except ValueError as e:
            logger.warning("Credential claims are malformed", error=str(e))
            raise AuthError("Invalid token claims") from e

        logger.debug("Credential verified", subject=str(user_id), role=role.value)
        return Actor(id=user_id, role=role)


def get_credential_service() -> CredentialService:
    """Build a credential service bound to the application settings."""
    return CredentialService(get_settings())
