"""
Role based access control.

Roles are ordered (see :class:`dispatch.models.RoleLevel`), so every check
is a single "at least this role" comparison.
"""
from rest_framework.permissions import BasePermission

from .models import RoleLevel


def has_min_role(user, minimum: RoleLevel) -> bool:
    if user is None or not getattr(user, 'is_authenticated', False):
        return False
    return getattr(user, 'role_level', 0) >= minimum


class _MinRole(BasePermission):
    minimum: RoleLevel = RoleLevel.transporter
    message = 'Insufficient role for this action.'

    def has_permission(self, request, view) -> bool:  # type: ignore[override]
        return has_min_role(getattr(request, 'user', None), self.minimum)


class IsDispatcher(_MinRole):
    """Dispatcher, supervisor or manager."""
    minimum = RoleLevel.dispatcher


class IsSupervisor(_MinRole):
    """Supervisor or manager."""
    minimum = RoleLevel.supervisor


class IsManager(_MinRole):
    minimum = RoleLevel.manager
