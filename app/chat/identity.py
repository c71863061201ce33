"""
Identity providers for the chat services.

Providers:
    StaticIdentityProvider: Fixed user id (tasks, tests, scripts)
    ScopeIdentityProvider: User from a Channels connection scope

Usage:
    identity = ScopeIdentityProvider(self.scope)
    directory = ChatDirectory(store, identity)
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from typing import Any


class StaticIdentityProvider:
    """Identity provider returning a fixed user id (None = signed out)."""

    def __init__(self, user_id: int | None = None):
        self.user_id = user_id

    def current_user_id(self) -> int | None:
        return self.user_id


class ScopeIdentityProvider:
    """
    Identity provider backed by a Channels scope.

    Reads scope["user"] as populated by AuthMiddlewareStack; anonymous
    users resolve to None.
    """

    def __init__(self, scope: dict[str, Any]):
        self.scope = scope

    def current_user_id(self) -> int | None:
        user = self.scope.get("user")
        if user is None or not getattr(user, "is_authenticated", False):
            return None
        return user.pk
