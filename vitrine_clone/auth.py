"""Authorization strategies injected at the clone entry points."""

import hmac
import logging
from typing import Any

from vitrine_clone.api.client import APIError
from vitrine_clone.errors import AuthorizationError, ConfigurationError, ForbiddenError

logger = logging.getLogger(__name__)

ADMIN_ROLE = "admin"


class AdminSessionAuth:
    """Caller must hold a valid session belonging to an admin account."""

    def __init__(self, access_token: str | None):
        self.access_token = access_token
        self.user_id: str | None = None

    async def authorize(self, db: Any) -> None:
        if not self.access_token:
            raise AuthorizationError("Missing authorization header")

        try:
            user = await db.get_session_user(self.access_token)
        except APIError as e:
            logger.warning("Session validation failed: %s", e.status_code)
            raise AuthorizationError("Invalid or expired session") from e

        user_id = user["id"]
        try:
            profile = await db.select_one("users", "role", {"id": user_id})
        except APIError as e:
            raise ForbiddenError("Could not verify account role") from e

        if not profile or profile.get("role") != ADMIN_ROLE:
            logger.warning("Clone refused for non-admin user %s", user_id)
            raise ForbiddenError("Insufficient permissions. Only admins can clone data between users.")

        self.user_id = user_id
        logger.info("Admin permissions verified for %s", user_id)


class SharedSecretAuth:
    """Caller must present the server-held shared secret.

    Neither key is ever included in error messages or log records.
    """

    def __init__(self, provided_key: str | None, expected_key: str | None):
        self.provided_key = provided_key
        self.expected_key = expected_key

    async def authorize(self, db: Any) -> None:
        if not self.provided_key:
            raise AuthorizationError("Missing X-API-Key header")

        if not self.expected_key:
            logger.error("Shared clone secret is not configured")
            raise ConfigurationError("Server configuration error")

        if not hmac.compare_digest(self.provided_key.encode(), self.expected_key.encode()):
            logger.warning("Invalid API key presented")
            raise ForbiddenError("Invalid API Key")

        logger.info("API key validated")
