"""
Authentication dependencies for API endpoints.

Two kinds of caller reach the API:

- Integrations, identified by their API key (``X-API-Key`` header, or the
  ``api_key`` field of the request body)
- Owners, identified by a bearer token from the identity provider; the
  token's ``sub`` claim is the owner identity
"""

import logging
from typing import Optional

import jwt
from fastapi import Depends, Header, Request

from jsonoracle.config import Settings
from jsonoracle.container import ServiceContainer
from jsonoracle.exceptions import AuthError

logger = logging.getLogger(__name__)

ASYMMETRIC_ALGORITHMS = ["RS256", "ES256"]


class IdentityVerifier:
    """
    Verifies identity-provider tokens with PyJWT.

    Uses the provider's JWKS endpoint when configured, otherwise an HS256
    shared secret (development only).
    """

    def __init__(
        self,
        jwks_url: str = "",
        shared_secret: str = "",
        audience: str = "",
        issuer: str = "",
    ):
        self.shared_secret = shared_secret
        self.audience = audience or None
        self.issuer = issuer or None
        self._jwks_client = jwt.PyJWKClient(jwks_url) if jwks_url else None

    @classmethod
    def from_settings(cls, settings: Settings) -> "IdentityVerifier":
        return cls(
            jwks_url=settings.identity_jwks_url,
            shared_secret=settings.identity_shared_secret,
            audience=settings.identity_audience,
            issuer=settings.identity_issuer,
        )

    @property
    def configured(self) -> bool:
        return self._jwks_client is not None or bool(self.shared_secret)

    def verify(self, token: str) -> str:
        """
        Validate a token and return its subject.

        Raises:
            AuthError: If the token is invalid, expired or has no subject
        """
        if not self.configured:
            raise AuthError("Identity provider is not configured")

        options = {"verify_aud": self.audience is not None}
        try:
            if self._jwks_client is not None:
                signing_key = self._jwks_client.get_signing_key_from_jwt(token)
                claims = jwt.decode(
                    token,
                    signing_key.key,
                    algorithms=ASYMMETRIC_ALGORITHMS,
                    audience=self.audience,
                    issuer=self.issuer,
                    options=options,
                )
            else:
                claims = jwt.decode(
                    token,
                    self.shared_secret,
                    algorithms=["HS256"],
                    audience=self.audience,
                    issuer=self.issuer,
                    options=options,
                )
        except jwt.ExpiredSignatureError:
            raise AuthError("Identity token has expired")
        except jwt.PyJWTError as e:
            logger.debug(f"Rejected identity token: {e}")
            raise AuthError("Invalid identity token")

        subject = claims.get("sub")
        if not subject:
            raise AuthError("Identity token has no subject")
        return str(subject)


def get_container(request: Request) -> ServiceContainer:
    """FastAPI dependency returning the container built by the lifespan."""
    return request.app.state.container


def get_api_key(
    x_api_key: Optional[str] = Header(
        None,
        description="Integration API key",
        alias="X-API-Key",
    ),
) -> Optional[str]:
    """API key from the header. Endpoints with a body may also accept it there."""
    return x_api_key


def require_api_key(api_key: Optional[str] = Depends(get_api_key)) -> str:
    if not api_key:
        raise AuthError("X-API-Key header is required")
    return api_key


def get_owner(
    request: Request,
    authorization: Optional[str] = Header(
        None,
        description="Identity provider bearer token",
    ),
) -> str:
    """
    FastAPI dependency resolving the owner identity from a bearer token.

    Raises:
        AuthError: If the header is missing, malformed or the token is invalid
    """
    if not authorization:
        raise AuthError("Authorization header is required")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise AuthError("Authorization header must be 'Bearer <token>'")

    verifier: IdentityVerifier = request.app.state.identity
    return verifier.verify(token.strip())
