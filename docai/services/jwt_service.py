"""
JWT token service.

Bearer tokens are issued by the external identity provider; this service
only verifies them. The `sub` claim is the owner id. `create_token` exists
for development tooling and tests.
"""
from datetime import datetime, timedelta, timezone
from jose import JWTError, jwt
from docai.config import settings


class JWTService:
    """Service for creating and verifying JWT tokens."""

    def __init__(self, secret_key: str | None = None, algorithm: str | None = None):
        self.secret_key = secret_key or settings.JWT_SECRET_KEY
        self.algorithm = algorithm or settings.JWT_ALGORITHM

    def create_token(self, owner_id: str, email: str | None = None, expires_minutes: int | None = None) -> str:
        """
        Create a JWT token for an owner.

        Args:
            owner_id: Identity of the principal (becomes `sub`)
            email: Optional email claim
            expires_minutes: Lifetime, defaults to JWT_EXPIRATION_MINUTES

        Returns:
            Encoded JWT token string
        """
        minutes = expires_minutes if expires_minutes is not None else settings.JWT_EXPIRATION_MINUTES
        payload = {
            "sub": owner_id,
            "exp": datetime.now(timezone.utc) + timedelta(minutes=minutes),
        }
        if email:
            payload["email"] = email

        return jwt.encode(payload, self.secret_key, algorithm=self.algorithm)

    def verify_token(self, token: str) -> dict | None:
        """
        Verify and decode a JWT token.

        Returns:
            Decoded payload dict, or None if invalid, expired or missing `sub`
        """
        try:
            payload = jwt.decode(token, self.secret_key, algorithms=[self.algorithm])
        except JWTError:
            return None

        if not payload.get("sub"):
            return None
        return payload
