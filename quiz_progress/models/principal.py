from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class Principal:
    """Verified caller identity, extracted from the bearer token.

    Passed explicitly into the ingestion gateway and aggregator; nothing
    below the API layer reads "the current user" from ambient state.
    """

    user_id: str
    roles: frozenset[str]

    def has_role(self, role: str) -> bool:
        return role in self.roles

    def is_admin(self) -> bool:
        return "admin" in self.roles

    def can_act_for(self, user_id: str) -> bool:
        """Owner of the data, or an admin acting on someone else's."""
        return self.user_id == user_id or self.is_admin()
