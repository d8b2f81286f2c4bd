"""Bearer-token verification.

Access tokens are issued by the identity service and signed with the shared
``JWT_SECRET``.  This module only decodes them and extracts the owner id; it
never issues tokens or touches passwords.
"""
from __future__ import annotations

from dataclasses import dataclass

from jose import JWTError, jwt


class InvalidTokenError(ValueError):
    """Raised when a bearer token is missing, malformed, expired or unsigned."""


@dataclass(slots=True)
class TokenVerifier:
    secret: str
    algorithm: str = "HS256"

    def decode(self, token: str) -> dict:
        try:
            return jwt.decode(token, self.secret, algorithms=[self.algorithm])
        except JWTError as exc:
            raise InvalidTokenError(str(exc)) from exc

    def owner_id(self, token: str) -> str:
        """Return the owner id carried by *token* (``id`` claim, else ``sub``)."""
        payload = self.decode(token)
        owner = payload.get("id", payload.get("sub"))
        if owner is None or str(owner).strip() == "":
            raise InvalidTokenError("Token carries no owner id")
        return str(owner)


def extract_bearer_token(authorization: str | None) -> str | None:
    if not authorization:
        return None

    parts = authorization.split()
    if len(parts) == 2 and parts[0].lower() == "bearer":
        return parts[1]
    if len(parts) == 1:
        return parts[0]
    return None
