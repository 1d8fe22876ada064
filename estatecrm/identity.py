"""
estatecrm/identity.py

Hosted identity provider integration: profile fetch over the provider's admin API
and local user sync.

The provider owns sign-in; this service only mirrors the fields it needs
(provider user id, email, display name) into the users table.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import requests
from sqlalchemy.orm import Session

from estatecrm.config import IDP_API_KEY, IDP_API_URL, IDP_TIMEOUT_SECONDS
from estatecrm.errors import Conflict, InternalError, NotFound, ValidationFailed
from estatecrm.models import User, UserRole, UserStatus
from estatecrm.tenant import TenantScopedAccessor

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProviderProfile:
    provider_user_id: str
    email: Optional[str]
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    username: Optional[str] = None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "ProviderProfile":
        addresses = data.get("email_addresses") or []
        email = data.get("email") or (addresses[0].get("email_address") if addresses else None)
        return cls(
            provider_user_id=str(data.get("id") or ""),
            email=email,
            first_name=data.get("first_name"),
            last_name=data.get("last_name"),
            username=data.get("username"),
        )

    @property
    def display_name(self) -> str:
        """first last -> first -> last -> username -> email local part -> "User"."""
        if self.first_name and self.last_name:
            return f"{self.first_name} {self.last_name}"
        if self.first_name or self.last_name:
            return self.first_name or self.last_name
        if self.username:
            return self.username
        if self.email:
            return self.email.split("@")[0]
        return "User"


class IdentityProviderClient:
    """Thin client for the identity provider's admin API."""

    def __init__(
        self,
        base_url: str = IDP_API_URL,
        api_key: str = IDP_API_KEY,
        timeout: float = IDP_TIMEOUT_SECONDS,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.http = session or requests.Session()

    def fetch_profile(self, provider_user_id: str) -> ProviderProfile:
        """
        Fetch a user profile by provider user id.

        Raises:
            NotFound: provider has no such user
            InternalError: provider unreachable or answered unexpectedly
        """
        url = f"{self.base_url}/users/{provider_user_id}"
        headers = {"Accept": "application/json", "Authorization": f"Bearer {self.api_key}"}

        try:
            resp = self.http.get(url, headers=headers, timeout=self.timeout)
        except requests.exceptions.Timeout:
            logger.warning(f"[IDP] Timeout fetching profile after {self.timeout}s")
            raise InternalError("Identity provider timeout")
        except requests.exceptions.RequestException as e:
            # Never include headers in the log line
            logger.warning(f"[IDP] Connection error fetching profile: {type(e).__name__}")
            raise InternalError("Identity provider unavailable")

        if resp.status_code == 404:
            logger.info("[IDP] Profile not found at provider")
            raise NotFound("Identity provider user not found")
        if resp.status_code != 200:
            logger.warning(f"[IDP] Unexpected status {resp.status_code} fetching profile")
            raise InternalError("Identity provider error")

        try:
            return ProviderProfile.from_api(resp.json())
        except ValueError:
            raise InternalError("Identity provider returned invalid JSON")


def sync_user(db: Session, organization_id: str, profile: ProviderProfile) -> User:
    """
    Create or update the local user mirroring a provider profile.

    New users start PENDING with the member role; existing users keep role and
    status. A provider identity already bound to another organization is a Conflict.
    Caller controls the transaction.
    """
    if not profile.provider_user_id:
        raise ValidationFailed("provider_user_id", "required")
    if not profile.email:
        raise ValidationFailed("email", "required", "Identity provider user has no email address")

    existing = db.query(User).filter(User.provider_user_id == profile.provider_user_id).first()
    if existing is not None and existing.organization_id != organization_id:
        logger.warning("[IDP] Provider identity belongs to another organization")
        raise Conflict("identity_in_use")

    accessor = TenantScopedAccessor(db, organization_id)
    if existing is not None:
        accessor.update(existing, email=profile.email, name=profile.display_name)
        logger.info(f"[IDP] Synced existing user: user_id={existing.id}")
        return existing

    user = accessor.create(
        User,
        provider_user_id=profile.provider_user_id,
        email=profile.email,
        name=profile.display_name,
        role=UserRole.member.value,
        status=UserStatus.PENDING.value,
    )
    logger.info(f"[IDP] Created user from provider profile: user_id={user.id}")
    return user
