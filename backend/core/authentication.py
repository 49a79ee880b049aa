"""Login flows and bearer token resolution, independent of Flask.

- ``login``: local username/password → ACCESS token
- ``oauth2_login``: verified identity provider userinfo → ACCESS token
- ``authenticate_bearer``: token → ``UserDetails`` principal
"""
from __future__ import annotations
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .exceptions import AuthenticationError, TokenValidationError, UserNotFoundError
from .models import PLACEHOLDER_FIRST_NAME, PLACEHOLDER_LAST_NAME, Role, User, UserDetails
from .services import ApiTokenService, RoleService, UserInfoEssentials, UserService
from .tokens import JwtTokenService, SessionTokenType

logger = logging.getLogger(__name__)

OIDC_FIRST_NAME_ATTR = "given_name"
OIDC_LAST_NAME_ATTR = "family_name"
OIDC_NAME_ATTR = "name"
OIDC_EMAIL_ATTR = "email"

_EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


@dataclass
class OAuth2Options:
    """Provisioning behaviour for OAuth2 logins.

    Attributes:
        allow_signup: Create unknown users on first login
        update_role: Re-map the user's roles from the provider on every login
        roles_claim: Userinfo attribute carrying provider roles
        role_mappings: Provider role → local role name
    """
    allow_signup: bool = False
    update_role: bool = False
    roles_claim: Optional[str] = None
    role_mappings: Dict[str, str] = field(default_factory=dict)


def parse_first_last_name(full_name: Optional[str]) -> tuple[str, str]:
    """Split "First Middle Last" into ("First Middle", "Last")."""
    parts = (full_name or "").split()
    if not parts:
        return PLACEHOLDER_FIRST_NAME, PLACEHOLDER_LAST_NAME
    if len(parts) == 1:
        return parts[0], PLACEHOLDER_LAST_NAME
    return " ".join(parts[:-1]), parts[-1]


class AuthenticationService:
    """Issues ACCESS tokens and resolves bearer tokens into principals."""

    def __init__(
        self,
        user_service: UserService,
        role_service: RoleService,
        api_token_service: ApiTokenService,
        token_service: JwtTokenService,
        oauth2_options: Optional[OAuth2Options] = None,
    ):
        self.user_service = user_service
        self.role_service = role_service
        self.api_token_service = api_token_service
        self.token_service = token_service
        self.oauth2_options = oauth2_options or OAuth2Options()

    def issue_access_token(self, user: User) -> str:
        return self.token_service.create_token(
            UserDetails.from_user(user), SessionTokenType.ACCESS, nonce=user.nonce
        )

    def login(self, username: str, password: str) -> str:
        """Local login.

        Raises:
            AuthenticationError: Bad credentials or login disabled
        """
        user = self.user_service.authenticate(username, password)
        logger.info(f"Successful login for {user.username}")
        return self.issue_access_token(user)

    def renew(self, token: str) -> str:
        """Exchange a valid ACCESS token for a fresh one and invalidate the old one.

        Raises:
            TokenValidationError: If the token is invalid or not an ACCESS token
        """
        claims = self.token_service.verify_token(token)
        if claims.get("typ") != SessionTokenType.ACCESS.value:
            raise TokenValidationError("Only ACCESS tokens can be renewed")
        principal = self.authenticate_bearer(token)
        user = self.user_service.load_user_by_username(principal.username)
        renewed = self.issue_access_token(user)
        self.token_service.delete_token(principal.username, claims["jti"])
        logger.info(f"Renewed ACCESS token of {user.username}")
        return renewed

    # ─────────────────────────────────────────────────────────────────────────
    # Bearer tokens
    # ─────────────────────────────────────────────────────────────────────────

    def authenticate_bearer(self, token: str) -> UserDetails:
        """Resolve a bearer token into the caller's principal.

        ACCESS tokens are re-checked against the stored user so role changes
        and disabled logins apply immediately. API tokens must still be ACTIVE.

        Raises:
            TokenValidationError: If the token or its subject is no longer valid
        """
        claims = self.token_service.verify_token(token)
        principal = self.token_service.principal_from_claims(claims)

        if claims.get("typ") == SessionTokenType.API.value:
            if not self.api_token_service.is_usable(claims.get("uid")):
                raise TokenValidationError("API token is not active")
            return principal

        try:
            user = self.user_service.load_user_by_username(principal.username)
        except UserNotFoundError:
            raise TokenValidationError("Token subject no longer exists") from None
        if not user.can_login:
            raise TokenValidationError("User login is disabled")
        if claims.get("nonce") != user.nonce:
            raise TokenValidationError("Token nonce does not match (credentials changed)")

        fresh = UserDetails.from_user(user)
        return UserDetails(
            id=fresh.id,
            username=fresh.username,
            first_name=fresh.first_name,
            last_name=fresh.last_name,
            roles=fresh.roles,
            rights=fresh.rights,
            additional_claims=principal.additional_claims,
        )

    # ─────────────────────────────────────────────────────────────────────────
    # OAuth2
    # ─────────────────────────────────────────────────────────────────────────

    def extract_user_info(self, userinfo: Dict[str, Any], subject_name: Optional[str] = None) -> UserInfoEssentials:
        """Map provider userinfo to the local identity fields.

        Raises:
            AuthenticationError: If no username (email) can be determined
        """
        username = userinfo.get(OIDC_EMAIL_ATTR)
        first_name = userinfo.get(OIDC_FIRST_NAME_ATTR)
        last_name = userinfo.get(OIDC_LAST_NAME_ATTR)
        if not first_name or not last_name:
            logger.debug("attempting to parse first- and last name from combined name field")
            first_name, last_name = parse_first_last_name(userinfo.get(OIDC_NAME_ATTR))

        if not username:
            if subject_name and _EMAIL_PATTERN.match(subject_name):
                username = subject_name
            else:
                raise AuthenticationError("failed to extract username from authentication information")

        info = UserInfoEssentials(
            username=username.lower(),
            first_name=first_name or PLACEHOLDER_FIRST_NAME,
            last_name=last_name or PLACEHOLDER_LAST_NAME,
        )
        role = self.extract_user_role(userinfo)
        if role is not None:
            info.roles = {role}
        else:
            logger.warning(f"no appropriate role found for user '{info.username}'")
        return info

    def extract_user_role(self, userinfo: Dict[str, Any]) -> Optional[Role]:
        options = self.oauth2_options
        if not options.roles_claim or not options.role_mappings:
            return None
        raw = userinfo.get(options.roles_claim)
        provider_roles: List[Any] = [raw] if isinstance(raw, str) else list(raw or [])
        for source, target in options.role_mappings.items():
            if source in provider_roles:
                role = self.role_service.get_role(target)
                if role is not None:
                    return role
        return None

    def oauth2_login(self, provider: str, userinfo: Dict[str, Any], subject_name: Optional[str] = None) -> Optional[str]:
        """Log in (or provision) the user behind a verified provider identity.

        Returns:
            ACCESS token, or None if the user is unknown and signup is disabled

        Raises:
            AuthenticationError: If userinfo lacks a usable username
        """
        info = self.extract_user_info(userinfo, subject_name)
        logger.info(f"attempting to log in oauth2 user '{info.username}' using provider '{provider}'")

        try:
            user = self.user_service.load_user_by_username(info.username)
        except UserNotFoundError:
            logger.info(f"user {info.username} not found locally")
            if not self.oauth2_options.allow_signup:
                return None
            user = self.user_service.create_default_user(info, provider)
            return self.issue_access_token(user)

        if not user.can_login:
            raise AuthenticationError("User login is disabled")

        updates: Dict[str, Any] = {}
        if info.first_name != user.first_name:
            updates["first_name"] = info.first_name
        if info.last_name != user.last_name:
            updates["last_name"] = info.last_name
        if self.oauth2_options.update_role:
            desired = info.roles or {r for r in [self.role_service.get_default_role()] if r is not None}
            if desired and {r.name for r in desired} != user.role_names:
                logger.info(
                    f"updating {user.username}'s roles from {sorted(user.role_names)} "
                    f"to {sorted(r.name for r in desired)} based on oauth mapping"
                )
                updates["roles"] = [r.name for r in desired]
        if updates:
            user = self.user_service.patch(user.id, updates)
        return self.issue_access_token(user)
