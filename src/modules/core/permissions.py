"""Role-based DRF permission classes."""

from rest_framework.permissions import BasePermission

from modules.core.identity import Role, actor_from_request


class _RolePermission(BasePermission):
    allowed_roles: frozenset = frozenset()
    message = "You do not have permission to perform this action."

    def has_permission(self, request, view) -> bool:
        user = request.user
        if not (user and user.is_authenticated):
            return False
        return actor_from_request(request).role in self.allowed_roles


class IsBuyer(_RolePermission):
    """Checkout and payment endpoints are for buyers only."""

    allowed_roles = frozenset({Role.BUYER})
    message = "Only buyers can perform this action."


class IsSeller(_RolePermission):
    allowed_roles = frozenset({Role.SELLER})
    message = "Only sellers can perform this action."


class IsSellerOrAdmin(_RolePermission):
    allowed_roles = frozenset({Role.SELLER, Role.ADMIN})
    message = "Only sellers or admins can perform this action."
