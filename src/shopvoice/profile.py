"""
User profile record and the store interface the dialogue writes to.

Persistence belongs to the surrounding application; this module only ships an
in-memory store with an optional change listener.
"""

from typing import Any, Callable, Dict, Mapping, Optional, Protocol

import structlog
from pydantic import BaseModel, Field

logger = structlog.get_logger(__name__)


class UserProfile(BaseModel):
    """Shopper details collected by voice."""

    name: Optional[str] = Field(default=None, description="Shopper's full name")
    email: Optional[str] = Field(default=None, description="Contact email address")
    address: Optional[str] = Field(default=None, description="Shipping address")
    phone: Optional[str] = Field(default=None, description="Phone number, (XXX) XXX-XXXX")
    card_name: Optional[str] = Field(default=None, description="Name printed on the card")
    card_number: Optional[str] = Field(default=None, description="Card number in groups of 4")
    expiry_date: Optional[str] = Field(default=None, description="Card expiry, MM/YY")
    cvv: Optional[str] = Field(default=None, description="Card security code")

    def merged(self, partial: Mapping[str, Any]) -> "UserProfile":
        """Return a copy with the known, non-null fields of `partial` applied."""
        updates = {
            key: value
            for key, value in partial.items()
            if key in type(self).model_fields and value is not None
        }
        return self.model_copy(update=updates)


class ProfileStore(Protocol):
    def get(self) -> UserProfile:
        ...

    def update(self, partial: Mapping[str, Any]) -> None:
        ...


class InMemoryProfileStore:
    """Profile store kept for the lifetime of one conversation."""

    def __init__(
        self,
        initial: Optional[UserProfile] = None,
        on_change: Optional[Callable[[UserProfile, Dict[str, Any]], None]] = None,
    ):
        self._profile = initial or UserProfile()
        self._on_change = on_change

    def get(self) -> UserProfile:
        return self._profile

    def update(self, partial: Mapping[str, Any]) -> None:
        before = self._profile
        self._profile = before.merged(partial)
        changed = {
            key: value
            for key, value in self._profile.model_dump().items()
            if getattr(before, key) != value
        }
        if not changed:
            return

        logger.info("Profile updated", fields=sorted(changed))
        if self._on_change:
            self._on_change(self._profile, changed)
