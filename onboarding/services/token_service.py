"""JWT access token validation (ES256).

Tokens are issued by the identity provider; this service only checks
them.  sub carries the user's UUID and roles the platform roles
(admin, moderator, buddy, user).

Dev/test: an ephemeral EC key pair is generated on import and
create_access_token() signs with it, so tests and local tooling can
mint tokens.  Production: set JWT_PUBLIC_KEY_PEM to the provider's
public key and only decode_access_token() is used.
"""

from __future__ import annotations

import os
import uuid
from datetime import UTC, datetime, timedelta

import jwt
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.serialization import load_pem_public_key

ALGORITHM = "ES256"
ISSUER = "onboarding-idp"
AUDIENCE = "onboarding-service"
ACCESS_TOKEN_TTL_MIN = 15

_private_key = ec.generate_private_key(ec.SECP256R1())
_public_pem = os.getenv("JWT_PUBLIC_KEY_PEM")
_public_key = (
    load_pem_public_key(_public_pem.encode()) if _public_pem else _private_key.public_key()
)


def create_access_token(
    *,
    sub: str,
    roles: list[str] | None = None,
    ttl_minutes: int = ACCESS_TOKEN_TTL_MIN,
) -> str:
    now = datetime.now(UTC)
    payload = {
        "sub": sub,
        "iss": ISSUER,
        "aud": AUDIENCE,
        "exp": now + timedelta(minutes=ttl_minutes),
        "iat": now,
        "jti": str(uuid.uuid4()),
        "roles": roles or ["user"],
    }
    return jwt.encode(payload, _private_key, algorithm=ALGORITHM)


def decode_access_token(token: str) -> dict:
    """Verify signature and claims, return the payload.

    The algorithm is pinned to ES256 (no alg:none, no HS/ES switching).
    Raises jwt.ExpiredSignatureError or jwt.InvalidTokenError.
    """
    return jwt.decode(
        token,
        _public_key,
        algorithms=[ALGORITHM],
        issuer=ISSUER,
        audience=AUDIENCE,
        options={"require": ["sub", "exp", "iat", "jti"]},
    )
