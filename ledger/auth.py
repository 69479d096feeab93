"""
Bearer token authentication of school operators.
"""

import logging
from typing import Optional

import jwt
from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from config.settings import Settings, get_settings

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


class TokenAuthenticator:
    """Decodes operator JWTs signed with the shared secret."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()

    def issuer_id(self, token: str) -> str:
        """
        Returns the operator id carried by a token.

        The id is the ``user_id`` claim, or ``sub`` when ``user_id`` is absent.

        Raises:
            HTTPException: 401 for invalid or expired tokens
        """
        try:
            claims = jwt.decode(
                token,
                self.settings.jwt_secret,
                algorithms=[self.settings.jwt_algorithm],
            )
        except jwt.ExpiredSignatureError:
            raise HTTPException(status_code=401, detail="Token sudah kedaluwarsa")
        except jwt.InvalidTokenError as e:
            logger.warning(f"Rejected token: {e}")
            raise HTTPException(status_code=401, detail="Token tidak valid")

        user_id = claims.get("user_id") or claims.get("sub")
        if not user_id:
            raise HTTPException(status_code=401, detail="Token tidak valid")
        return str(user_id)

    def __call__(self, credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme)) -> str:
        if credentials is None or credentials.scheme.lower() != "bearer":
            raise HTTPException(status_code=401, detail="Token tidak ditemukan")
        return self.issuer_id(credentials.credentials)


def create_access_token(user_id: str, settings: Optional[Settings] = None, **claims) -> str:
    """Signs an operator token with the configured secret."""
    settings = settings or get_settings()
    payload = {"user_id": str(user_id), **claims}
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)
