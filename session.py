from __future__ import annotations
from dataclasses import dataclass
from typing import Optional

from motor.motor_asyncio import AsyncIOMotorDatabase

from errors import Forbidden, LoginRequired
from notifications import Notifier


@dataclass(frozen=True)
class Identity:
    uid: str
    email: Optional[str] = None
    display_name: Optional[str] = None


@dataclass
class ShopSession:
    """Per-request context handed to every storefront operation."""
    db: AsyncIOMotorDatabase
    notifier: Notifier
    user: Optional[Identity] = None
    is_admin: bool = False

    def require_user(self) -> Identity:
        if self.user is None:
            raise LoginRequired()
        return self.user

    def require_admin(self) -> Identity:
        user = self.require_user()
        if not self.is_admin:
            raise Forbidden()
        return user
