"""
Tests for core/scope.py — roles, capabilities, visibility and the scope predicate.
"""

import os
import sys
import pytest
import pandas as pd

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from core.errors import AccessDeniedError, InvalidArgumentError
from core.scope import (
    Actor,
    HierarchyLevel,
    Role,
    ScopePredicate,
    build_scope,
    can_use_template,
    parse_entity_type,
    parse_role,
    require_visible,
)


@pytest.fixture
def sessions():
    return pd.DataFrame({
        "id": ["a", "b", "c"],
        "school_id": ["s1", "s2", "s1"],
        "province_id": ["p1", "p1", "p2"],
        "teacher_id": ["t1", "t2", "t3"],
        "observer_id": ["o1", "t1", "o2"],
    })


class TestParsing:

    def test_entity_type_case_insensitive(self):
        assert parse_entity_type(" School ") == HierarchyLevel.SCHOOL

    def test_unknown_entity_type_lists_allowed_values(self):
        with pytest.raises(InvalidArgumentError) as exc:
            parse_entity_type("blimp")
        assert "zone, province, department, cluster, school" in str(exc.value)

    def test_teacher_is_not_a_geographic_type(self):
        with pytest.raises(InvalidArgumentError):
            parse_entity_type("teacher")

    def test_unknown_role(self):
        with pytest.raises(InvalidArgumentError):
            parse_role("Janitor")

    def test_actor_from_payload(self):
        actor = Actor.from_payload({"id": 7, "role": "Director", "school_id": "s1", "cluster_id": ""})
        assert actor.id == "7"
        assert actor.role == Role.DIRECTOR
        assert actor.school_id == "s1"
        assert actor.cluster_id is None

    def test_actor_requires_id(self):
        with pytest.raises(InvalidArgumentError):
            Actor.from_payload({"role": "Teacher"})

    def test_actor_must_be_an_object(self):
        for bad in ("admin", ["admin"], 3):
            with pytest.raises(InvalidArgumentError):
                Actor.from_payload(bad)


class TestCapabilities:

    def test_admin_sees_every_level(self, admin):
        for level in ("zone", "province", "department", "cluster", "school"):
            require_visible(admin, parse_entity_type(level))

    def test_cluster_cannot_view_provinces(self, cluster):
        with pytest.raises(AccessDeniedError):
            require_visible(cluster, HierarchyLevel.PROVINCE)
        require_visible(cluster, HierarchyLevel.SCHOOL)

    def test_teacher_sees_no_breakdowns(self, teacher):
        with pytest.raises(AccessDeniedError):
            require_visible(teacher, HierarchyLevel.SCHOOL)

    def test_report_templates_by_role(self, admin, department, director):
        assert can_use_template(admin, "comparison")
        assert can_use_template(department, "detailed")
        assert not can_use_template(department, "trend")
        assert can_use_template(director, "summary")
        assert not can_use_template(director, "detailed")

    def test_default_breakdown_level(self, admin, provincial, cluster, teacher):
        assert admin.capability.report_entity_type == HierarchyLevel.PROVINCE
        assert provincial.capability.report_entity_type == HierarchyLevel.DEPARTMENT
        assert cluster.capability.report_entity_type == HierarchyLevel.SCHOOL
        assert teacher.capability.report_entity_type == HierarchyLevel.SCHOOL


class TestScopePredicate:

    def test_admin_is_unrestricted(self, admin, sessions):
        scope = build_scope(admin)
        assert scope.unrestricted
        assert scope.mask(sessions).all()

    def test_director_limited_to_school(self, director, sessions):
        result = build_scope(director).apply(sessions)
        assert list(result["id"]) == ["a", "c"]

    def test_teacher_matches_teacher_or_observer(self, teacher, sessions):
        result = build_scope(teacher).apply(sessions)
        assert list(result["id"]) == ["a", "b"]

    def test_missing_assignment_denies_everything(self, sessions):
        orphan = Actor(id="x", role=Role.DIRECTOR)
        assert not build_scope(orphan).mask(sessions).any()

    def test_missing_column_denies_everything(self, sessions):
        scope = ScopePredicate(unrestricted=False, level=HierarchyLevel.CLUSTER, entity_id="c1")
        assert not scope.mask(sessions).any()

    def test_users_scoped_by_id_for_teacher(self, teacher):
        users = pd.DataFrame({"id": ["t1", "t2"], "school_id": ["s1", "s1"]})
        result = build_scope(teacher).apply(users, "users")
        assert list(result["id"]) == ["t1"]

    def test_describe(self, director):
        assert build_scope(director).describe() == "school=s1"
