"""
Group and role type registry.

Group types and the role types they allow are defined in code. A role type key
is always `<group type key>.<role>`; the role table only stores that key.
"""
from __future__ import annotations

from dataclasses import dataclass, field

PERMISSIONS = (
    "admin",
    "layer_and_below_full",
    "layer_and_below_read",
    "layer_full",
    "layer_read",
    "group_and_below_full",
    "group_full",
    "group_read",
)

# Attributes a role form may change for every role type.
ROLE_ATTRIBUTES = ("label", "created_at", "delete_on", "deleted_at")


class RoleTypeNotFound(LookupError):
    def __init__(self, group_type: str, role_type: str | None) -> None:
        super().__init__(f"Role type {role_type!r} is not defined for group type {group_type!r}")
        self.group_type = group_type
        self.role_type = role_type


class GroupTypeNotFound(LookupError):
    pass


@dataclass(frozen=True)
class RoleType:
    key: str
    label: str
    permissions: tuple[str, ...] = ()
    description: str = ""
    used_attributes: tuple[str, ...] = ROLE_ATTRIBUTES

    @property
    def group_type_key(self) -> str:
        return self.key.split(".", 1)[0]

    def __str__(self) -> str:
        return self.label


@dataclass(frozen=True)
class GroupType:
    key: str
    label: str
    layer: bool = False
    child_types: tuple[str, ...] = ()
    role_types: tuple[RoleType, ...] = field(default_factory=tuple)
    default_role: str | None = None

    def find_role_type(self, key: str | None) -> RoleType | None:
        for rt in self.role_types:
            if rt.key == key:
                return rt
        return None

    def find_role_type_or_raise(self, key: str | None) -> RoleType:
        rt = self.find_role_type(key)
        if rt is None:
            raise RoleTypeNotFound(self.key, key)
        return rt

    @property
    def default_role_type(self) -> RoleType | None:
        if self.default_role:
            return self.find_role_type(self.default_role)
        return self.role_types[0] if self.role_types else None

    def __str__(self) -> str:
        return self.label


def _rt(key: str, label: str, *permissions: str, description: str = "") -> RoleType:
    return RoleType(key=key, label=label, permissions=tuple(permissions), description=description)


GROUP_TYPES: dict[str, GroupType] = {
    gt.key: gt
    for gt in (
        GroupType(
            key="top_layer",
            label="Federation",
            layer=True,
            child_types=("top_group", "bottom_layer"),
            role_types=(
                _rt("top_layer.administrator", "Administrator", "admin", "layer_and_below_full",
                    description="Full access to the whole organization."),
            ),
            default_role="top_layer.administrator",
        ),
        GroupType(
            key="top_group",
            label="Board",
            child_types=("top_group",),
            role_types=(
                _rt("top_group.leader", "Leader", "admin", "layer_and_below_full",
                    description="Manages the federation and every layer below it."),
                _rt("top_group.secretary", "Secretary", "layer_and_below_read", "group_full"),
                _rt("top_group.member", "Member", "group_read"),
            ),
            default_role="top_group.member",
        ),
        GroupType(
            key="bottom_layer",
            label="Region",
            layer=True,
            child_types=("bottom_group",),
            role_types=(
                _rt("bottom_layer.leader", "Leader", "layer_and_below_full",
                    description="Manages the region and its groups."),
                _rt("bottom_layer.member", "Member", "layer_read"),
            ),
            default_role="bottom_layer.member",
        ),
        GroupType(
            key="bottom_group",
            label="Local group",
            child_types=("bottom_group",),
            role_types=(
                _rt("bottom_group.leader", "Leader", "group_and_below_full"),
                _rt("bottom_group.member", "Member", "group_read"),
            ),
            default_role="bottom_group.member",
        ),
    )
}


def group_type(key: str) -> GroupType:
    try:
        return GROUP_TYPES[key]
    except KeyError as e:
        raise GroupTypeNotFound(f"Unknown group type {key!r}") from e


def role_type(key: str | None) -> RoleType | None:
    """Look up a role type across all group types."""
    if not key or "." not in key:
        return None
    gt = GROUP_TYPES.get(key.split(".", 1)[0])
    return gt.find_role_type(key) if gt else None
