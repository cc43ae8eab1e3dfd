"""
Override maps stored on boards and columns.

Wire shape (JSON):

    {
        "<action>": true | false | {"<userId or role>": true | false, ...},
        "roles": {"<userId>": "owner" | "editor" | "viewer"}   # columns only
    }

An action key that is absent means "inherit from the parent level".
Raw JSON is parsed into an OverrideMap once, at the storage boundary;
malformed entries are dropped with a warning instead of being trusted.
"""
import copy
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Union

from workspace_acl.features.boards.models import ColumnRole
from workspace_acl.features.permissions.errors import InvalidRequestError
from workspace_acl.features.permissions.types import Action
from workspace_acl.features.workspaces.models import WorkspaceRole
from workspace_acl.utils import get_logger


log = get_logger(__name__)

ROLES_KEY = "roles"

# Boolean(bool) | ByIdentity({identity: bool})
OverrideEntry = Union[bool, Dict[str, bool]]


@dataclass(frozen=True)
class OverrideMap:
    entries: Dict[str, OverrideEntry] = field(default_factory=dict)
    roles: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def parse(cls, raw: Any) -> "OverrideMap":
        """Validate a stored JSON blob. None or non-object means no overrides."""
        if not isinstance(raw, Mapping):
            if raw is not None:
                log.warning("Ignoring non-object override map: %r", raw)
            return cls()

        entries: Dict[str, OverrideEntry] = {}
        roles: Dict[str, str] = {}
        for key, value in raw.items():
            if key == ROLES_KEY:
                if isinstance(value, Mapping):
                    roles = {str(k): str(v) for k, v in value.items() if isinstance(v, str)}
                else:
                    log.warning("Ignoring malformed column roles map: %r", value)
            elif isinstance(value, bool):
                entries[key] = value
            elif isinstance(value, Mapping):
                by_identity = {str(k): v for k, v in value.items() if isinstance(v, bool)}
                if len(by_identity) != len(value):
                    log.warning("Dropped non-boolean identities from override %r", key)
                entries[key] = by_identity
            else:
                log.warning("Ignoring malformed override for action %r: %r", key, value)
        return cls(entries=entries, roles=roles)

    def resolve(self, action: str, user_id: str, role: Optional[str] = None) -> Optional[bool]:
        """
        Resolve one action for a user.

        Precedence: user-specific entry, then role-specific entry. Returns None
        when neither applies, meaning the caller inherits its parent's result.
        """
        entry = self.entries.get(action)
        if entry is None:
            return None
        if isinstance(entry, bool):
            return entry
        if user_id in entry:
            return entry[user_id]
        if role is not None and role in entry:
            return entry[role]
        return None

    def user_overrides(self, user_id: str) -> Dict[str, bool]:
        """Actions overridden specifically for this user."""
        return {
            action: entry[user_id]
            for action, entry in self.entries.items()
            if isinstance(entry, dict) and user_id in entry
        }

    def column_role(self, user_id: str) -> Optional[str]:
        return self.roles.get(user_id)


def merge_identity(raw: Any, identity: str, permissions: Mapping[str, bool]) -> Dict[str, Any]:
    """
    Return a copy of `raw` with `identity` set for each action in `permissions`.

    Other actions and other identities are left untouched. A blanket `true`
    is equivalent to inheriting, so it becomes a map holding just the new
    entry. A blanket `false` becomes a map denying every workspace role, so
    everyone but `identity` stays denied.
    """
    merged: Dict[str, Any] = copy.deepcopy(dict(raw)) if isinstance(raw, Mapping) else {}
    for action, allowed in permissions.items():
        current = merged.get(action)
        if current is False:
            current = {role.value: False for role in WorkspaceRole}
        elif not isinstance(current, dict):
            current = {}
        current[identity] = bool(allowed)
        merged[action] = current
    return merged


def merge_column_role(raw: Any, user_id: str, role: str) -> Dict[str, Any]:
    """Return a copy of `raw` with roles[user_id] = role."""
    merged: Dict[str, Any] = copy.deepcopy(dict(raw)) if isinstance(raw, Mapping) else {}
    roles = merged.get(ROLES_KEY)
    if not isinstance(roles, dict):
        roles = {}
    roles[user_id] = role
    merged[ROLES_KEY] = roles
    return merged


def validate_override_map(raw: Any, allow_column_roles: bool = False) -> Dict[str, Any]:
    """
    Check a complete override map supplied by a caller and return a clean copy.

    Unlike OverrideMap.parse, which tolerates bad stored data, anything
    malformed here is rejected. None clears every override.
    """
    if raw is None:
        return {}
    if not isinstance(raw, Mapping):
        raise InvalidRequestError("Permissions must be an object")

    actions = {action.value for action in Action}
    column_roles = {role.value for role in ColumnRole}
    cleaned: Dict[str, Any] = {}
    for key, value in raw.items():
        if key == ROLES_KEY:
            if not allow_column_roles:
                raise InvalidRequestError("Column roles can only be set on columns")
            if not isinstance(value, Mapping) or not all(
                isinstance(role, str) and role in column_roles for role in value.values()
            ):
                raise InvalidRequestError(f"roles must map user ids to one of {sorted(column_roles)}")
            cleaned[key] = {str(user_id): role for user_id, role in value.items()}
        elif key not in actions:
            raise InvalidRequestError(f"Unknown action '{key}'")
        elif isinstance(value, bool):
            cleaned[key] = value
        elif isinstance(value, Mapping) and all(isinstance(v, bool) for v in value.values()):
            cleaned[key] = {str(identity): v for identity, v in value.items()}
        else:
            raise InvalidRequestError(f"Override for '{key}' must be a boolean or a map of booleans")

    return cleaned
