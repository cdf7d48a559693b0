"""
auth/roles.py -- The closed, deployment-defined role set.

Role is data, not code: one SessionIssuer/RefreshRotator pair serves every
role, and RoleRegistry decides which (role, tenant) combinations are valid.
"""

from __future__ import annotations

from auth.errors import UnknownRole
from auth.models import RoleNamespace


class RoleRegistry:
    def __init__(self, namespaces: list[RoleNamespace], registration_roles: set[str] | None = None) -> None:
        self._namespaces = {ns.name: ns for ns in namespaces}
        # Roles open to self-service join. None = every role.
        self.registration_roles = set(self._namespaces) if registration_roles is None else set(registration_roles)

    @classmethod
    def from_settings(cls, settings) -> RoleRegistry:
        global_roles = set(settings.global_roles)
        return cls(
            [RoleNamespace(name, tenant_scoped=name not in global_roles) for name in settings.roles],
            registration_roles=set(settings.registration_roles),
        )

    @property
    def names(self) -> list[str]:
        return list(self._namespaces)

    def resolve(self, role: str, tenant_id: str | None) -> RoleNamespace:
        """Return the namespace for role, checking that tenant scoping matches.

        Raises UnknownRole for an undeclared role, a tenant-scoped role without
        a tenant, or a platform-global role with one.
        """
        namespace = self._namespaces.get(role)
        if namespace is None:
            raise UnknownRole()
        if namespace.tenant_scoped != bool(tenant_id):
            raise UnknownRole()
        return namespace

    def is_open_for_registration(self, role: str) -> bool:
        return role in self.registration_roles
