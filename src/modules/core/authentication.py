"""Stateless JWT authentication producing a trade ``Principal``.

Identity is owned by an external service.  It issues bearer tokens whose
claims carry the user id (``user_id``) and the trade role (``role``).  The
core never looks up a local ``User`` row: the validated claims *are* the
principal.

Security decisions
------------------
* **Fail Closed**: a token without a known role is rejected with 401.
* Signature, expiry and algorithm are validated by SimpleJWT using the
  ``SIMPLE_JWT`` settings; nothing is derived from the incoming token.
"""

from __future__ import annotations

from dataclasses import dataclass

import structlog
from django.db import models
from rest_framework.exceptions import AuthenticationFailed
from rest_framework_simplejwt.authentication import JWTStatelessUserAuthentication
from rest_framework_simplejwt.settings import api_settings
from rest_framework_simplejwt.tokens import AccessToken

logger = structlog.get_logger(__name__)

ROLE_CLAIM = "role"


class ActorRole(models.TextChoices):
    RETAILER = "retailer", "Retailer"
    WHOLESALER = "wholesaler", "Wholesaler"
    TRANSPORTER = "transporter", "Transporter"
    ADMIN = "admin", "Admin"


@dataclass(frozen=True)
class Principal:
    """Authenticated actor: an external user id plus its trade role.

    Exposes the attributes DRF and its throttles read from ``request.user``.
    """

    user_id: str
    role: str

    is_authenticated = True
    is_active = True
    is_anonymous = False

    @property
    def pk(self) -> str:
        return self.user_id

    @property
    def id(self) -> str:
        return self.user_id

    def __str__(self) -> str:
        return f"{self.role}:{self.user_id}"


class PrincipalJWTAuthentication(JWTStatelessUserAuthentication):
    """DRF authentication class turning validated JWT claims into a Principal."""

    def get_user(self, validated_token) -> Principal:
        try:
            user_id = validated_token[api_settings.USER_ID_CLAIM]
        except KeyError as exc:
            raise AuthenticationFailed("Token contained no recognizable user id.") from exc

        role = validated_token.get(ROLE_CLAIM)
        if role not in ActorRole.values:
            logger.warning("jwt_unknown_role", user_id=str(user_id), role=role)
            raise AuthenticationFailed("Token contained no recognizable role.")

        principal = Principal(user_id=str(user_id), role=role)
        structlog.contextvars.bind_contextvars(actor_id=principal.user_id, actor_role=role)
        return principal


def issue_access_token(user_id: str, role: str) -> str:
    """Mint an access token for *user_id* acting as *role*.

    Used by local tooling and tests; production tokens come from the
    identity service.
    """
    token = AccessToken()
    token[api_settings.USER_ID_CLAIM] = str(user_id)
    token[ROLE_CLAIM] = role
    return str(token)
