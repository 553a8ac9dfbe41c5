"""
scope.py — Roles, capabilities and the hierarchical scope predicate.

Every record read in the analytics core goes through a ScopePredicate
built once per request from the acting user. Non-administrators only
ever see rows whose owning-hierarchy id matches their assigned entity.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, FrozenSet, Optional, Tuple

import pandas as pd

from core.errors import AccessDeniedError, InvalidArgumentError


class Role(str, Enum):
    ADMINISTRATOR = "Administrator"
    ZONE = "Zone"
    PROVINCIAL = "Provincial"
    DEPARTMENT = "Department"
    CLUSTER = "Cluster"
    DIRECTOR = "Director"
    TEACHER = "Teacher"


class HierarchyLevel(str, Enum):
    ZONE = "zone"
    PROVINCE = "province"
    DEPARTMENT = "department"
    CLUSTER = "cluster"
    SCHOOL = "school"
    TEACHER = "teacher"

    @property
    def column(self) -> str:
        return f"{self.value}_id"


GEOGRAPHIC_LEVELS: Tuple[HierarchyLevel, ...] = (
    HierarchyLevel.ZONE,
    HierarchyLevel.PROVINCE,
    HierarchyLevel.DEPARTMENT,
    HierarchyLevel.CLUSTER,
    HierarchyLevel.SCHOOL,
)
GEOGRAPHIC_TYPES = [lvl.value for lvl in GEOGRAPHIC_LEVELS]

REPORT_TEMPLATE_IDS = ("summary", "detailed", "trend", "comparison")


def parse_entity_type(value: Any) -> HierarchyLevel:
    """Validate a geographic entity type name."""
    if isinstance(value, HierarchyLevel) and value in GEOGRAPHIC_LEVELS:
        return value
    name = str(value or "").strip().lower()
    if name not in GEOGRAPHIC_TYPES:
        raise InvalidArgumentError("entity type", value, GEOGRAPHIC_TYPES)
    return HierarchyLevel(name)


def parse_role(value: Any) -> Role:
    if isinstance(value, Role):
        return value
    name = str(value or "").strip()
    for role in Role:
        if role.value.lower() == name.lower() or role.name.lower() == name.lower():
            return role
    raise InvalidArgumentError("role", value, [r.value for r in Role])


# ── Capability table ────────────────────────────────────────────────

@dataclass(frozen=True)
class Capability:
    scope_level: Optional[HierarchyLevel]
    visible_levels: FrozenSet[HierarchyLevel]
    report_templates: FrozenSet[str]
    custom_reports: bool
    report_entity_type: HierarchyLevel
    scope_label: str
    scope_label_kh: str


def _levels_from(level: HierarchyLevel) -> FrozenSet[HierarchyLevel]:
    idx = GEOGRAPHIC_LEVELS.index(level)
    return frozenset(GEOGRAPHIC_LEVELS[idx:])


_ALL_TEMPLATES = frozenset(REPORT_TEMPLATE_IDS)

CAPABILITIES: Dict[Role, Capability] = {
    Role.ADMINISTRATOR: Capability(
        None, frozenset(GEOGRAPHIC_LEVELS), _ALL_TEMPLATES, True,
        HierarchyLevel.PROVINCE, "National Level", "កម្រិតជាតិ",
    ),
    Role.ZONE: Capability(
        HierarchyLevel.ZONE, _levels_from(HierarchyLevel.ZONE), _ALL_TEMPLATES, True,
        HierarchyLevel.PROVINCE, "Zone Level", "កម្រិតតំបន់",
    ),
    Role.PROVINCIAL: Capability(
        HierarchyLevel.PROVINCE, _levels_from(HierarchyLevel.PROVINCE), _ALL_TEMPLATES, True,
        HierarchyLevel.DEPARTMENT, "Provincial Level", "កម្រិតខេត្ត",
    ),
    Role.DEPARTMENT: Capability(
        HierarchyLevel.DEPARTMENT, _levels_from(HierarchyLevel.DEPARTMENT),
        frozenset({"summary", "detailed"}), True,
        HierarchyLevel.CLUSTER, "Department Level", "កម្រិតនាយកដ្ឋាន",
    ),
    Role.CLUSTER: Capability(
        HierarchyLevel.CLUSTER, _levels_from(HierarchyLevel.CLUSTER),
        frozenset({"summary"}), False,
        HierarchyLevel.SCHOOL, "Cluster Level", "កម្រិតចង្កោម",
    ),
    Role.DIRECTOR: Capability(
        HierarchyLevel.SCHOOL, _levels_from(HierarchyLevel.SCHOOL),
        frozenset({"summary"}), False,
        HierarchyLevel.SCHOOL, "School Level", "កម្រិតសាលារៀន",
    ),
    Role.TEACHER: Capability(
        HierarchyLevel.TEACHER, frozenset(),
        frozenset({"summary"}), False,
        HierarchyLevel.SCHOOL, "Individual Level", "កម្រិតបុគ្គល",
    ),
}


# ── Actor ───────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Actor:
    id: str
    role: Role
    full_name: str = ""
    zone_id: Optional[str] = None
    province_id: Optional[str] = None
    department_id: Optional[str] = None
    cluster_id: Optional[str] = None
    school_id: Optional[str] = None

    @property
    def capability(self) -> Capability:
        return CAPABILITIES[self.role]

    def assigned_id(self, level: HierarchyLevel) -> Optional[str]:
        if level == HierarchyLevel.TEACHER:
            return self.id
        return getattr(self, level.column, None)

    @classmethod
    def from_payload(cls, data: Optional[Dict[str, Any]]) -> "Actor":
        if not data or not isinstance(data, dict):
            raise InvalidArgumentError("actor", data)
        actor_id = data.get("id")
        if actor_id in (None, ""):
            raise InvalidArgumentError("actor id", actor_id)

        def _opt(key):
            v = data.get(key)
            return None if v in (None, "") else str(v)

        return cls(
            id=str(actor_id),
            role=parse_role(data.get("role")),
            full_name=str(data.get("full_name") or data.get("name") or ""),
            zone_id=_opt("zone_id"),
            province_id=_opt("province_id"),
            department_id=_opt("department_id"),
            cluster_id=_opt("cluster_id"),
            school_id=_opt("school_id"),
        )


def can_view_level(actor: Actor, level: HierarchyLevel) -> bool:
    return level in actor.capability.visible_levels


def require_visible(actor: Actor, level: HierarchyLevel) -> None:
    if not can_view_level(actor, level):
        raise AccessDeniedError(
            f"Role '{actor.role.value}' cannot view {level.value} breakdowns."
        )


def can_use_template(actor: Actor, template_id: str) -> bool:
    return template_id in actor.capability.report_templates


# ── Scope predicate ─────────────────────────────────────────────────

@dataclass(frozen=True)
class ScopePredicate:
    """Row filter for one actor's subtree of the hierarchy."""

    unrestricted: bool
    level: Optional[HierarchyLevel] = None
    entity_id: Optional[str] = None

    def mask(self, frame: pd.DataFrame, kind: str = "sessions") -> pd.Series:
        """Boolean mask selecting the rows of `frame` this scope admits.

        `kind` is "sessions" or "users". A restricted scope that lacks an
        assigned id, or a frame missing the owning column, admits nothing.
        """
        if self.unrestricted:
            return pd.Series(True, index=frame.index)
        deny = pd.Series(False, index=frame.index)
        if self.level is None or self.entity_id is None:
            return deny

        if self.level == HierarchyLevel.TEACHER:
            cols = ["observer_id", "teacher_id"] if kind == "sessions" else ["id"]
            present = [c for c in cols if c in frame.columns]
            if not present:
                return deny
            result = deny
            for c in present:
                result = result | (frame[c].astype(str) == self.entity_id)
            return result

        col = self.level.column
        if col not in frame.columns:
            return deny
        return frame[col].astype(str) == self.entity_id

    def apply(self, frame: pd.DataFrame, kind: str = "sessions") -> pd.DataFrame:
        if frame.empty:
            return frame
        return frame[self.mask(frame, kind)]

    def describe(self) -> str:
        if self.unrestricted:
            return "all"
        return f"{self.level.value if self.level else '?'}={self.entity_id}"


def build_scope(actor: Actor) -> ScopePredicate:
    cap = actor.capability
    if cap.scope_level is None:
        return ScopePredicate(unrestricted=True)
    return ScopePredicate(
        unrestricted=False,
        level=cap.scope_level,
        entity_id=actor.assigned_id(cap.scope_level),
    )
