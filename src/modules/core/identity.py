"""Actor identity resolved from the authenticated Django user.

Authentication itself is handled by SimpleJWT; this module only maps a
verified user onto the marketplace roles the order subsystem reasons
about.  Staff and superusers act as admins, members of the ``seller``
group act as sellers, everybody else is a buyer.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from django.db import models

SELLER_GROUP = "seller"


class Role(models.TextChoices):
    BUYER = "buyer", "Buyer"
    SELLER = "seller", "Seller"
    ADMIN = "admin", "Admin"


@dataclass(frozen=True)
class Actor:
    """Authenticated caller as seen by the service layer."""

    user_id: int
    role: str = Role.BUYER

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN

    @property
    def is_seller(self) -> bool:
        return self.role == Role.SELLER

    @property
    def is_buyer(self) -> bool:
        return self.role == Role.BUYER


def role_for_user(user: Any) -> str:
    if user.is_staff or user.is_superuser:
        return Role.ADMIN
    if user.groups.filter(name=SELLER_GROUP).exists():
        return Role.SELLER
    return Role.BUYER


def actor_from_user(user: Any) -> Actor:
    return Actor(user_id=user.pk, role=role_for_user(user))


def actor_from_request(request: Any) -> Actor:
    """Resolve (and memoise on the request) the actor for *request*."""
    actor = getattr(request, "_marketplace_actor", None)
    if actor is None:
        actor = actor_from_user(request.user)
        request._marketplace_actor = actor
    return actor
