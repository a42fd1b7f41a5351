"""
Token authentication for the relay.

Validates access tokens against the statically configured token list and maps
them to users.
"""

import hmac
import logging
from dataclasses import dataclass
from typing import Dict, Optional

from termrelay.config import AuthenticationConfig

logger = logging.getLogger(__name__)

ROLE_ADMIN = "admin"


@dataclass(frozen=True)
class User:
    """Authenticated caller."""

    id: int
    username: str
    role: str = "user"

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN


class TokenAuthenticator:
    """Resolves bearer tokens to users."""

    def __init__(self, config: AuthenticationConfig):
        """
        Initialize the authenticator.

        Args:
            config: Authentication configuration
        """
        self.config = config
        self._tokens: Dict[str, User] = {
            entry.token: User(id=entry.user_id, username=entry.username, role=entry.role)
            for entry in config.tokens
        }
        logger.info(f"Loaded {len(self._tokens)} access tokens")

    def authenticate(self, token: Optional[str]) -> Optional[User]:
        """
        Look up the user a token belongs to.

        Returns:
            The user, or None for a missing or unknown token
        """
        if not token:
            return None
        for known, user in self._tokens.items():
            if hmac.compare_digest(known, token):
                return user
        logger.warning("Rejected unknown access token")
        return None

    @staticmethod
    def token_from_header(authorization: Optional[str]) -> Optional[str]:
        """Extract the token from an ``Authorization: Bearer ...`` header."""
        if not authorization:
            return None
        scheme, _, value = authorization.partition(" ")
        if scheme.lower() != "bearer" or not value.strip():
            return None
        return value.strip()
