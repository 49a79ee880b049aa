"""Signed bearer tokens (HS256 via PyJWT) and their session registry.

Every issued token is registered under its subject. Invalidating a subject
drops its registrations, so tokens issued before that point stop verifying
even though their signature and expiry are still valid.

Usage:
    tokens = JwtTokenService(secret_key, issuer="crud-backend", access_token_expiration=86400)
    token = tokens.create_token(UserDetails.from_user(user))
    principal = tokens.principal_from_claims(tokens.verify_token(token))
    tokens.invalidate_subject(user.username)
"""
from __future__ import annotations
import datetime
import hashlib
import logging
import threading
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

import jwt
from jwt.exceptions import (
    DecodeError,
    ExpiredSignatureError,
    InvalidIssuerError,
    InvalidSignatureError,
    InvalidTokenError,
)

from .exceptions import TokenValidationError
from .models import UserDetails

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"

DEFAULT_CLAIMS = frozenset({
    "sub", "uid", "given_name", "family_name", "roles", "rights",
    "typ", "iss", "iat", "exp", "jti", "nonce",
})


class SessionTokenType(str, Enum):
    ACCESS = "ACCESS"
    API = "API"


@dataclass(frozen=True)
class SessionToken:
    """Registry entry of one issued token."""
    id: str
    username: str
    type: SessionTokenType
    issued_at: datetime.datetime
    expiration: datetime.datetime


def token_fingerprint(token: str) -> str:
    """Short SHA-256 fingerprint used in logs instead of the token itself."""
    return hashlib.sha256(token.encode()).hexdigest()[:12]


class JwtTokenService:
    """Issues and verifies tokens for users and API tokens.

    Args:
        secret_key: HMAC signing key
        issuer: Value of the ``iss`` claim, checked on verification
        access_token_expiration: Lifetime of ACCESS tokens in seconds
        clock: Returns the current UTC time (tests inject a fixed clock)
    """

    def __init__(
        self,
        secret_key: str,
        issuer: str,
        access_token_expiration: int = 86400,
        clock: Optional[Callable[[], datetime.datetime]] = None,
    ):
        if not secret_key:
            raise ValueError("JWT signing key must not be empty")
        self._secret_key = secret_key
        self.issuer = issuer
        self.access_token_expiration = access_token_expiration
        self._clock = clock or (lambda: datetime.datetime.now(datetime.timezone.utc))
        self._sessions: Dict[str, Dict[str, SessionToken]] = {}
        self._lock = threading.Lock()

    # ─────────────────────────────────────────────────────────────────────────
    # Issue
    # ─────────────────────────────────────────────────────────────────────────

    def create_token(
        self,
        principal: UserDetails,
        token_type: SessionTokenType = SessionTokenType.ACCESS,
        expires_at: Optional[datetime.datetime] = None,
        nonce: Optional[str] = None,
    ) -> str:
        """Sign a token for ``principal`` and register it under its username.

        Args:
            principal: Subject of the token
            token_type: ACCESS for interactive logins, API for API tokens
            expires_at: Explicit expiry; ACCESS tokens default to now + access_token_expiration
            nonce: User nonce; a changed nonce (password change) invalidates old tokens

        Returns:
            Encoded JWT
        """
        now = self._clock()
        if expires_at is None:
            expires_at = now + datetime.timedelta(seconds=self.access_token_expiration)
        if expires_at <= now:
            raise ValueError("Token expiry must lie in the future")

        jti = str(uuid.uuid4())
        claims: Dict[str, Any] = {
            key: value for key, value in principal.additional_claims.items() if key not in DEFAULT_CLAIMS
        }
        claims.update(
            sub=principal.username,
            uid=principal.id if isinstance(principal.id, (int, str)) else str(principal.id),
            given_name=principal.first_name,
            family_name=principal.last_name,
            roles=sorted(principal.roles),
            rights=sorted(principal.rights),
            typ=token_type.value,
            iss=self.issuer,
            iat=now,
            exp=expires_at,
            jti=jti,
        )
        if nonce:
            claims["nonce"] = nonce

        token = jwt.encode(claims, self._secret_key, algorithm=ALGORITHM)
        with self._lock:
            self._purge_expired(now)
            self._sessions.setdefault(principal.username.lower(), {})[jti] = SessionToken(
                jti, principal.username, token_type, now, expires_at
            )
        logger.info(
            f"Issued {token_type.value} token for {principal.username} "
            f"(fingerprint={token_fingerprint(token)}, exp={expires_at.isoformat()})"
        )
        return token

    # ─────────────────────────────────────────────────────────────────────────
    # Verify
    # ─────────────────────────────────────────────────────────────────────────

    def verify_token(self, token: str) -> Dict[str, Any]:
        """Validate signature, issuer, expiry and registration of ``token``.

        Returns:
            dict: Validated claims

        Raises:
            TokenValidationError: If any check fails
        """
        try:
            claims = jwt.decode(
                token,
                self._secret_key,
                algorithms=[ALGORITHM],
                issuer=self.issuer,
                options={
                    "require": ["exp", "iat", "sub", "jti"],
                    "verify_aud": False,
                },
                leeway=5,
            )
        except ExpiredSignatureError:
            raise TokenValidationError("Token expired (exp claim)")
        except InvalidIssuerError as e:
            raise TokenValidationError(f"Invalid issuer: {e}")
        except InvalidSignatureError:
            raise TokenValidationError("Invalid signature (token tampered or wrong key)")
        except DecodeError as e:
            raise TokenValidationError(f"Token decode error (malformed JWT): {e}")
        except InvalidTokenError as e:
            raise TokenValidationError(f"Token validation failed: {e}")

        with self._lock:
            registered = self._sessions.get(claims["sub"].lower(), {})
            if claims["jti"] not in registered:
                raise TokenValidationError("Token has been invalidated")
        return claims

    @staticmethod
    def principal_from_claims(claims: Dict[str, Any]) -> UserDetails:
        return UserDetails(
            id=claims.get("uid"),
            username=claims["sub"],
            first_name=claims.get("given_name", ""),
            last_name=claims.get("family_name", ""),
            roles=frozenset(claims.get("roles", [])),
            rights=frozenset(claims.get("rights", [])),
            additional_claims={k: v for k, v in claims.items() if k not in DEFAULT_CLAIMS},
        )

    # ─────────────────────────────────────────────────────────────────────────
    # Sessions
    # ─────────────────────────────────────────────────────────────────────────

    def get_tokens(self, username: str) -> List[SessionToken]:
        with self._lock:
            self._purge_expired(self._clock())
            tokens = list(self._sessions.get(username.lower(), {}).values())
        return sorted(tokens, key=lambda t: t.issued_at)

    def delete_token(self, username: str, token_id: str) -> bool:
        """Invalidate a single token of ``username``; False if it was not registered."""
        with self._lock:
            removed = self._sessions.get(username.lower(), {}).pop(token_id, None)
        return removed is not None

    def invalidate_subject(self, username: str) -> int:
        """Invalidate every token issued for ``username``.

        Returns:
            Number of invalidated tokens
        """
        with self._lock:
            removed = self._sessions.pop(username.lower(), {})
        if removed:
            logger.info(f"Invalidated {len(removed)} token(s) of {username}")
        return len(removed)

    def _purge_expired(self, now: datetime.datetime) -> None:
        for username in list(self._sessions):
            active = {jti: s for jti, s in self._sessions[username].items() if s.expiration > now}
            if active:
                self._sessions[username] = active
            else:
                del self._sessions[username]
