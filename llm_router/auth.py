"""Bearer API key authentication against the loaded key policies."""

from __future__ import annotations

from dataclasses import dataclass

from .config import DEV_POLICY, KeyPolicy
from .errors import AuthenticationError, AuthorizationError


@dataclass(frozen=True)
class AuthContext:
    key_policy: KeyPolicy


def bearer_token(authorization: str | None) -> str | None:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def require_api_key(
    policies: dict[str, KeyPolicy],
    authorization: str | None,
    *,
    disable_auth: bool = False,
) -> AuthContext:
    if disable_auth:
        return AuthContext(key_policy=DEV_POLICY)

    key = bearer_token(authorization)
    if not key:
        raise AuthenticationError("Missing or malformed Authorization header")

    pol = policies.get(key)
    if not pol:
        raise AuthorizationError("Invalid API key")

    return AuthContext(key_policy=pol)
