"""
Shared fixtures: a small observation dataset spanning one zone, two
provinces and three schools, plus actors at several hierarchy levels.

School s1 always scores 3, s2 scores 2 and s3 scores 1. Each school has
two completed sessions per month from January to March 2024.
"""

import os
import sys
from datetime import datetime

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from core.clock import FixedClock
from core.records import FrameRecordSource
from core.scope import Actor, Role

SCHOOLS = {
    # school: (cluster, department, province, teacher, observer, score)
    "s1": ("c1", "d1", "p1", "t1", "o1", 3),
    "s2": ("c2", "d1", "p1", "t2", "o1", 2),
    "s3": ("c3", "d2", "p2", "t3", "o2", 1),
}
DAYS = ["2024-01-10", "2024-01-20", "2024-02-10", "2024-02-20", "2024-03-10", "2024-03-20"]


def build_payload():
    sessions, responses, plans = [], [], []
    for school, (cluster, dept, prov, teacher, observer, score) in SCHOOLS.items():
        for i, day in enumerate(DAYS):
            sid = f"{school}-{i}"
            sessions.append({
                "id": sid,
                "zone_id": "z1",
                "province_id": prov,
                "department_id": dept,
                "cluster_id": cluster,
                "school_id": school,
                "teacher_id": teacher,
                "observer_id": observer,
                "subject": "Mathematics" if i % 2 == 0 else "Khmer",
                "grade": "4",
                "date_observed": day,
                "status": "completed",
                "start_time": f"{day}T08:00:00",
                "end_time": f"{day}T08:45:00",
            })
            for indicator in ("i1", "i2"):
                responses.append({
                    "session_id": sid,
                    "indicator_id": indicator,
                    "indicator_name": f"Indicator {indicator}",
                    "score": score,
                })
            if school == "s3" and day.startswith("2024-03"):
                plans.append({"id": f"plan-{sid}", "session_id": sid, "created_at": day})

    users = [
        {"id": "t1", "role": "Teacher", "school_id": "s1", "cluster_id": "c1",
         "department_id": "d1", "province_id": "p1", "zone_id": "z1", "is_active": True},
        {"id": "t2", "role": "Teacher", "school_id": "s2", "cluster_id": "c2",
         "department_id": "d1", "province_id": "p1", "zone_id": "z1", "is_active": True},
        {"id": "t3", "role": "Teacher", "school_id": "s3", "cluster_id": "c3",
         "department_id": "d2", "province_id": "p2", "zone_id": "z1", "is_active": False},
        {"id": "dir1", "role": "Director", "school_id": "s1", "cluster_id": "c1",
         "department_id": "d1", "province_id": "p1", "zone_id": "z1", "is_active": True},
        {"id": "admin", "role": "Administrator", "is_active": True},
    ]

    entities = [
        {"id": "z1", "type": "zone", "name": "Southern Zone", "name_kh": "តំបន់ខាងត្បូង"},
        {"id": "p1", "type": "province", "name": "Kampot", "name_kh": "កំពត"},
        {"id": "p2", "type": "province", "name": "Takeo", "name_kh": "តាកែវ"},
        {"id": "s1", "type": "school", "name": "Riverside Primary", "name_kh": "សាលាបឋមសិក្សាមាត់ទន្លេ"},
        {"id": "s2", "type": "school", "name": "Hillview Primary", "name_kh": "សាលាបឋមសិក្សាភ្នំ"},
        {"id": "s3", "type": "school", "name": "Lakeside Primary", "name_kh": "សាលាបឋមសិក្សាបឹង"},
    ]

    return {
        "sessions": sessions,
        "responses": responses,
        "plans": plans,
        "users": users,
        "entities": entities,
    }


@pytest.fixture
def payload():
    return build_payload()


@pytest.fixture
def source(payload):
    return FrameRecordSource.from_payload(payload)


@pytest.fixture
def clock():
    return FixedClock(datetime(2024, 3, 31, 12, 0, 0))


@pytest.fixture
def admin():
    return Actor(id="admin", role=Role.ADMINISTRATOR, full_name="National Admin")


@pytest.fixture
def provincial():
    return Actor(id="prov1", role=Role.PROVINCIAL, full_name="Kampot Office",
                 zone_id="z1", province_id="p1")


@pytest.fixture
def department():
    return Actor(id="dept1", role=Role.DEPARTMENT, full_name="District One",
                 zone_id="z1", province_id="p1", department_id="d1")


@pytest.fixture
def cluster():
    return Actor(id="cl1", role=Role.CLUSTER, full_name="Cluster One",
                 zone_id="z1", province_id="p1", department_id="d1", cluster_id="c1")


@pytest.fixture
def director():
    return Actor(id="dir1", role=Role.DIRECTOR, full_name="Riverside Director",
                 zone_id="z1", province_id="p1", department_id="d1",
                 cluster_id="c1", school_id="s1")


@pytest.fixture
def teacher():
    return Actor(id="t1", role=Role.TEACHER, full_name="Sok Dara", school_id="s1")
