"""Capability scopes and the scope matcher.

A scope is a ``(resource, actions)`` grant. ``resource`` is a concrete
resource name or ``*``; ``actions`` is a non-empty list of action names,
where ``*`` stands for every action. The same matcher authorizes API keys
(whose scopes are stored with the key) and session principals (whose scopes
are derived from their role).
"""

from collections.abc import Iterable

from pydantic import BaseModel, Field, field_validator

WILDCARD = "*"


class Scope(BaseModel):
    """A single capability grant."""

    resource: str = Field(..., min_length=1, max_length=50)
    actions: list[str] = Field(..., min_length=1)

    @field_validator("actions")
    @classmethod
    def actions_not_blank(cls, value: list[str]) -> list[str]:
        """Reject blank action names and drop duplicates, keeping order."""
        cleaned: list[str] = []
        for action in value:
            action = action.strip()
            if not action:
                raise ValueError("Action names cannot be empty")
            if action not in cleaned:
                cleaned.append(action)
        return cleaned

    def grants(self, resource: str, action: str) -> bool:
        """Whether this scope permits ``action`` on ``resource``."""
        resource_ok = self.resource == WILDCARD or self.resource == resource
        action_ok = WILDCARD in self.actions or action in self.actions
        return resource_ok and action_ok

    def __str__(self) -> str:
        return f"{self.resource}:{','.join(self.actions)}"


def scopes_allow(scopes: Iterable[Scope], resource: str, action: str) -> bool:
    """Return True if any scope in ``scopes`` grants ``action`` on ``resource``.

    An empty scope set grants nothing.
    """
    return any(scope.grants(resource, action) for scope in scopes)


def parse_scopes(raw: Iterable[dict] | None) -> list[Scope]:
    """Build scopes from stored JSON; malformed entries grant nothing."""
    scopes: list[Scope] = []
    for item in raw or []:
        try:
            scopes.append(Scope.model_validate(item))
        except ValueError:
            continue
    return scopes


class ScopeDescription(BaseModel):
    """Catalogue entry describing a resource and its actions."""

    resource: str
    actions: list[str]
    description: str


AVAILABLE_SCOPES: list[ScopeDescription] = [
    ScopeDescription(resource="*", actions=["*"], description="Full access to all resources and actions"),
    ScopeDescription(
        resource="users", actions=["read", "create", "update", "delete"], description="User management operations"
    ),
    ScopeDescription(
        resource="lists",
        actions=["read", "create", "update", "delete", "sync"],
        description="Import list curation and sync",
    ),
    ScopeDescription(
        resource="sources", actions=["read", "create", "update", "delete"], description="External catalog sources"
    ),
    ScopeDescription(
        resource="indexers", actions=["read", "create", "update", "delete"], description="Indexer configuration"
    ),
    ScopeDescription(
        resource="media", actions=["read", "create", "update", "delete", "scan"], description="Media library operations"
    ),
    ScopeDescription(resource="plex", actions=["read", "sync", "auth"], description="Plex integration operations"),
    ScopeDescription(resource="settings", actions=["read", "update"], description="System settings operations"),
    ScopeDescription(resource="stats", actions=["read"], description="System statistics and analytics"),
    ScopeDescription(
        resource="api_keys", actions=["read", "create", "update", "delete"], description="API key management"
    ),
]


def known_actions(resource: str) -> set[str] | None:
    """Actions catalogued for ``resource`` (None if the resource is unknown)."""
    for entry in AVAILABLE_SCOPES:
        if entry.resource == resource:
            return set(entry.actions)
    return None


def validate_scope_catalogue(scopes: Iterable[Scope]) -> list[Scope]:
    """Check that every scope names a catalogued resource and actions.

    Raises:
        ValueError: On an unknown resource or action

    """
    validated = list(scopes)
    if not validated:
        raise ValueError("At least one scope is required")
    for scope in validated:
        actions = known_actions(scope.resource)
        if actions is None:
            raise ValueError(f"Unknown scope resource: {scope.resource}")
        unknown = [a for a in scope.actions if a != WILDCARD and a not in actions and WILDCARD not in actions]
        if unknown:
            raise ValueError(f"Unknown action(s) for {scope.resource}: {', '.join(unknown)}")
    return validated
