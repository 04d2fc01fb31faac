"""
Identity Gate

Verifies the caller's bearer token against the identity provider's user
endpoint. Every business operation runs only for an authenticated caller.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import requests

logger = logging.getLogger(__name__)

BEARER_PREFIX = "Bearer "


@dataclass(frozen=True)
class AuthResult:
    """Outcome of a token check"""
    is_authenticated: bool
    user_id: Optional[str] = None


UNAUTHENTICATED = AuthResult(is_authenticated=False)


class IdentityGate:
    """Resolves ``Authorization`` headers to user ids via the identity provider"""

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.session = session or requests.Session()
        self._setup_session()

    def _setup_session(self):
        self.session.headers.update({
            "Accept": "application/json",
            "User-Agent": "juice-backoffice/identity-gate",
        })
        if self.api_key:
            self.session.headers["apikey"] = self.api_key

    @property
    def user_url(self) -> str:
        return f"{self.base_url}/auth/v1/user"

    def verify(self, authorization: Optional[str]) -> AuthResult:
        """
        Check an ``Authorization`` header value.

        Missing headers, non-Bearer schemes, rejected tokens and transport
        failures all yield an unauthenticated result.
        """
        if not authorization or not authorization.startswith(BEARER_PREFIX):
            return UNAUTHENTICATED

        token = authorization[len(BEARER_PREFIX):].strip()
        if not token:
            return UNAUTHENTICATED

        try:
            response = self.session.get(
                self.user_url,
                headers={"Authorization": f"Bearer {token}"},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.error(f"Token verification failed: {e}")
            return UNAUTHENTICATED

        if response.status_code != 200:
            logger.debug(f"Token rejected by identity provider (status {response.status_code})")
            return UNAUTHENTICATED

        try:
            user = response.json()
        except ValueError:
            logger.warning("Identity provider returned a non-JSON user body")
            return UNAUTHENTICATED

        user_id = user.get("id") if isinstance(user, dict) else None
        if not user_id:
            return UNAUTHENTICATED
        return AuthResult(is_authenticated=True, user_id=str(user_id))
