"""
Bearer token verification for the profile endpoints.

Tokens are issued by the identity provider and checked against the
signing keys it publishes at /.well-known/jwks.json.
"""

import time
from typing import Any, Dict, List, Optional, Sequence

import requests
from jose import JWTError, jwt

from storybridge.utils import logger

JWKS_CACHE_SECONDS = 3600


class AuthError(Exception):
    """Raised when a request carries no usable access token."""

    def __init__(self, status: int, message: str):
        super().__init__(message)
        self.status = status
        self.message = message


def bearer_token(header: Optional[str]) -> Optional[str]:
    """Extract the token from an 'Authorization: Bearer <token>' header."""
    if not header:
        return None
    parts = header.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return None
    return parts[1]


class TokenVerifier:
    """
    Verify identity-provider access tokens.

    Signing keys come from the provider's JWKS document unless a static
    key is supplied.
    """

    def __init__(
        self,
        domain: Optional[str] = None,
        audience: Optional[str] = None,
        algorithms: Sequence[str] = ("RS256",),
        key: Optional[Any] = None,
        issuer: Optional[str] = None,
        timeout: float = 5,
    ):
        """
        Initialize the verifier.

        Args:
            domain: Identity provider domain, e.g. "example.auth0.com"
            audience: Expected audience (default: https://<domain>/api/v2/)
            algorithms: Accepted signing algorithms
            key: Static verification key, bypassing JWKS lookup
            issuer: Expected issuer (default: https://<domain>/)
            timeout: JWKS request timeout in seconds
        """
        if domain is None and key is None:
            raise ValueError("TokenVerifier needs an identity provider domain or a key")

        self.domain = domain
        self.audience = audience or (f"https://{domain}/api/v2/" if domain else None)
        self.issuer = issuer or (f"https://{domain}/" if domain else None)
        self.algorithms = list(algorithms)
        self.key = key
        self.timeout = timeout
        self._jwks: List[Dict[str, Any]] = []
        self._jwks_time = 0.0

    @property
    def jwks_url(self) -> str:
        return f"https://{self.domain}/.well-known/jwks.json"

    def _keys(self) -> List[Dict[str, Any]]:
        if self._jwks and (time.time() - self._jwks_time) < JWKS_CACHE_SECONDS:
            return self._jwks
        try:
            res = requests.get(self.jwks_url, timeout=self.timeout)
            res.raise_for_status()
            self._jwks = res.json().get("keys", [])
            self._jwks_time = time.time()
        except (requests.RequestException, ValueError) as e:
            # Stale keys are still better than none
            logger.warning(f"Could not fetch signing keys from {self.jwks_url}: {e}")
        return self._jwks

    def _signing_key(self, token: str) -> Any:
        if self.key is not None:
            return self.key
        kid = jwt.get_unverified_header(token).get("kid")
        for candidate in self._keys():
            if candidate.get("kid") == kid:
                return candidate
        raise JWTError(f"No signing key matches kid {kid!r}")

    def verify(self, authorization: Optional[str]) -> Dict[str, Any]:
        """
        Verify the Authorization header of a request.

        Returns:
            Decoded token claims
        """
        token = bearer_token(authorization)
        if not token:
            raise AuthError(401, "Access token required")

        try:
            return jwt.decode(
                token,
                self._signing_key(token),
                algorithms=self.algorithms,
                audience=self.audience,
                issuer=self.issuer,
                options={"require_sub": True},
            )
        except JWTError as e:
            logger.warning(f"Rejected access token: {e}")
            raise AuthError(403, "Invalid token") from e
