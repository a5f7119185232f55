"""
Admin authentication and identifier generation.
"""

import hmac
import secrets
import string
from typing import Optional

from fastapi import Request

from shared.errors import AdminAuthError
from shared.logging import get_logger


_ALPHABET = string.ascii_letters + string.digits

API_KEY_PREFIX = "apk_"
ID_LENGTH = 24


def random_token(length: int = ID_LENGTH) -> str:
    return "".join(secrets.choice(_ALPHABET) for _ in range(length))


def generate_api_key() -> str:
    """``apk_`` followed by 24 random alphanumerics."""
    return API_KEY_PREFIX + random_token()


def generate_client_id() -> str:
    return random_token()


class AdminAuthenticator:
    """Checks the shared admin secret on admin requests.

    Accepts ``Authorization: Bearer <secret>`` or ``X-Admin-Key: <secret>``.
    With no secret configured every admin request is rejected.
    """

    def __init__(self, admin_auth_key: Optional[str]):
        self._secret = admin_auth_key
        self.logger = get_logger("gateway.admin_auth")
        if not admin_auth_key:
            self.logger.warning("Admin auth key not configured; admin API disabled")

    def _presented_secret(self, request: Request) -> Optional[str]:
        authorization = request.headers.get("Authorization")
        if authorization and authorization.startswith("Bearer "):
            return authorization[len("Bearer "):].strip()
        return request.headers.get("X-Admin-Key")

    def verify(self, request: Request) -> None:
        presented = self._presented_secret(request)
        if not presented:
            raise AdminAuthError()

        if not self._secret:
            raise AdminAuthError(details={"reason": "not_configured"})

        if not hmac.compare_digest(presented.encode("utf-8"), self._secret.encode("utf-8")):
            self.logger.warning("Invalid admin credentials", path=request.url.path)
            raise AdminAuthError(details={"reason": "invalid"})
