"""
records.py — Record sources, column normalization and the metric filter.

Supports:
- Observation sessions, indicator responses, improvement plans, users
  and geographic entity names as pandas DataFrames
- Loading from JSON payloads ({table: [rows]}) or CSV/Excel uploads
- Fuzzy column name mapping onto the canonical schema
- MetricFilter validation and application
- Scoped reads: the scope predicate is always applied before the filter
"""

import abc
import logging
from dataclasses import dataclass, field, replace
from datetime import date
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import numpy as np
import pandas as pd

from core.errors import DataSourceError, InvalidArgumentError
from core.scope import GEOGRAPHIC_TYPES, HierarchyLevel, ScopePredicate, parse_entity_type

logger = logging.getLogger(__name__)

TABLES = ("sessions", "responses", "plans", "users", "entities")

HIERARCHY_COLUMNS = ["zone_id", "province_id", "department_id", "cluster_id", "school_id"]

# Canonical column → accepted spellings (case-insensitive)
COLUMN_ALIASES: Dict[str, Dict[str, List[str]]] = {
    "sessions": {
        "id": ["id", "session_id", "sessionid", "observation_id"],
        "zone_id": ["zone_id", "zoneid", "zone"],
        "province_id": ["province_id", "provinceid", "province"],
        "department_id": ["department_id", "departmentid", "department", "dept_id"],
        "cluster_id": ["cluster_id", "clusterid", "cluster"],
        "school_id": ["school_id", "schoolid", "school"],
        "teacher_id": ["teacher_id", "teacherid", "teacher"],
        "observer_id": ["observer_id", "observerid", "observer"],
        "subject": ["subject", "subject_name", "course"],
        "grade": ["grade", "grade_level", "class", "level"],
        "date_observed": ["date_observed", "dateobserved", "observed_on", "date", "observation_date"],
        "status": ["status", "session_status", "state"],
        "start_time": ["start_time", "starttime", "started_at"],
        "end_time": ["end_time", "endtime", "ended_at"],
    },
    "responses": {
        "session_id": ["session_id", "sessionid", "observation_id"],
        "indicator_id": ["indicator_id", "indicatorid", "indicator"],
        "indicator_name": ["indicator_name", "indicatorname", "name"],
        "indicator_name_kh": ["indicator_name_kh", "indicatornamekh", "name_kh"],
        "score": ["score", "selected_score", "selectedscore", "value"],
    },
    "plans": {
        "id": ["id", "plan_id", "planid"],
        "session_id": ["session_id", "sessionid", "observation_id"],
        "created_at": ["created_at", "createdat", "created", "date"],
    },
    "users": {
        "id": ["id", "user_id", "userid"],
        "role": ["role", "user_role"],
        "zone_id": ["zone_id", "zoneid", "zone"],
        "province_id": ["province_id", "provinceid", "province"],
        "department_id": ["department_id", "departmentid", "department"],
        "cluster_id": ["cluster_id", "clusterid", "cluster"],
        "school_id": ["school_id", "schoolid", "school"],
        "is_active": ["is_active", "isactive", "active"],
    },
    "entities": {
        "id": ["id", "entity_id", "entityid"],
        "type": ["type", "entity_type", "level"],
        "name": ["name", "entity_name", "name_en"],
        "name_kh": ["name_kh", "namekh", "entity_name_kh"],
    },
}

ID_COLUMNS = {
    "sessions": ["id", "teacher_id", "observer_id", *HIERARCHY_COLUMNS],
    "responses": ["session_id", "indicator_id"],
    "plans": ["id", "session_id"],
    "users": ["id", *HIERARCHY_COLUMNS],
    "entities": ["id"],
}

_TRUTHY = {"1", "true", "yes", "y", "active", "t"}


class Granularity(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"


class SessionStatus(str, Enum):
    DRAFT = "draft"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    APPROVED = "approved"


GRANULARITIES = [g.value for g in Granularity]
STATUSES = [s.value for s in SessionStatus]


def parse_granularity(value: Any) -> Granularity:
    if isinstance(value, Granularity):
        return value
    name = str(value or "").strip().lower()
    if name not in GRANULARITIES:
        raise InvalidArgumentError("granularity", value, GRANULARITIES)
    return Granularity(name)


# ── Helpers ─────────────────────────────────────────────────────────

def _find_col(df: pd.DataFrame, aliases: List[str]) -> Optional[str]:
    """Find the first column matching any alias (case-insensitive)."""
    cols_lower = {str(c).lower().strip(): c for c in df.columns}
    for a in aliases:
        if a.lower() in cols_lower:
            return cols_lower[a.lower()]
    return None


def _id_series(s: pd.Series) -> pd.Series:
    """Ids as strings; blanks and NaN become None. 12.0 → '12'."""
    def _one(v):
        if v is None or (isinstance(v, float) and np.isnan(v)):
            return None
        if isinstance(v, float) and v.is_integer():
            v = int(v)
        text = str(v).strip()
        return text or None
    return s.map(_one).astype(object)


def parse_flag(value: Any) -> bool:
    """JSON bool, number or truthy string such as "yes"; anything else is False."""
    if isinstance(value, (bool, np.bool_)):
        return bool(value)
    if value is None or (isinstance(value, float) and np.isnan(value)):
        return False
    return str(value).strip().lower() in _TRUTHY


def safe_float(val) -> float:
    """Round to 2 dp; NaN, inf and junk become 0."""
    try:
        v = float(val)
        return 0.0 if (np.isnan(v) or np.isinf(v)) else round(v, 2)
    except (TypeError, ValueError):
        return 0.0


def _bool_series(s: pd.Series) -> pd.Series:
    return s.map(parse_flag).astype(bool)


def _datetime_series(s: pd.Series) -> pd.Series:
    """Parse mixed date strings to naive UTC timestamps; bad values → NaT."""
    parsed = pd.to_datetime(s, errors="coerce", utc=True, format="mixed")
    return parsed.dt.tz_localize(None)


def _text(value: Any) -> Optional[str]:
    if value is None or (isinstance(value, float) and np.isnan(value)):
        return None
    text = str(value).strip()
    return text or None


def parse_date(value: Any, field_name: str) -> Optional[date]:
    if value in (None, ""):
        return None
    if isinstance(value, date):
        return value
    try:
        return pd.Timestamp(str(value)).date()
    except (TypeError, ValueError):
        raise InvalidArgumentError(field_name, value, ["YYYY-MM-DD"])


def normalize_frame(df: Optional[pd.DataFrame], table: str) -> pd.DataFrame:
    """Rename aliased columns to canonical names and coerce dtypes.

    Missing canonical columns are added empty so downstream code can
    rely on the schema.
    """
    aliases = COLUMN_ALIASES[table]
    if df is None:
        df = pd.DataFrame()
    df = df.copy()
    df.columns = [str(c).strip() for c in df.columns]

    rename_map = {}
    for canonical, names in aliases.items():
        if canonical in df.columns:
            continue
        src = _find_col(df, names)
        if src and src not in rename_map and src not in aliases:
            rename_map[src] = canonical
    df = df.rename(columns=rename_map)

    for canonical in aliases:
        if canonical not in df.columns:
            df[canonical] = None

    for col in ID_COLUMNS[table]:
        df[col] = _id_series(df[col])

    if table == "sessions":
        df["date_observed"] = _datetime_series(df["date_observed"]).dt.normalize()
        df["start_time"] = _datetime_series(df["start_time"])
        df["end_time"] = _datetime_series(df["end_time"])
        df["status"] = df["status"].fillna("").astype(str).str.strip().str.lower().str.replace(" ", "_")
        df["subject"] = df["subject"].where(df["subject"].notna(), None)
        df["grade"] = _id_series(df["grade"])
    elif table == "responses":
        df["score"] = pd.to_numeric(df["score"], errors="coerce")
        df["indicator_name"] = df["indicator_name"].fillna(df["indicator_id"])
        df["indicator_name_kh"] = df["indicator_name_kh"].fillna(df["indicator_name"])
    elif table == "plans":
        df["created_at"] = _datetime_series(df["created_at"])
    elif table == "users":
        if df["is_active"].isna().all():
            df["is_active"] = True
        df["is_active"] = _bool_series(df["is_active"])
    elif table == "entities":
        df["type"] = df["type"].fillna("").astype(str).str.strip().str.lower()
        df["name_kh"] = df["name_kh"].fillna(df["name"])

    return df.reset_index(drop=True)


# ── Record sources ──────────────────────────────────────────────────

class RecordSource(abc.ABC):
    """Read-only access to the observation records."""

    @abc.abstractmethod
    async def sessions(self) -> pd.DataFrame: ...

    @abc.abstractmethod
    async def responses(self) -> pd.DataFrame: ...

    @abc.abstractmethod
    async def plans(self) -> pd.DataFrame: ...

    @abc.abstractmethod
    async def users(self) -> pd.DataFrame: ...

    async def entities(self) -> pd.DataFrame:
        return normalize_frame(None, "entities")


class FrameRecordSource(RecordSource):
    """Serves normalized in-memory DataFrames."""

    def __init__(self, frames: Optional[Dict[str, pd.DataFrame]] = None):
        frames = frames or {}
        unknown = set(frames) - set(TABLES)
        if unknown:
            raise InvalidArgumentError("table", sorted(unknown)[0], TABLES)
        self._frames = {t: normalize_frame(frames.get(t), t) for t in TABLES}

    @classmethod
    def from_payload(cls, data: Dict[str, Any]) -> "FrameRecordSource":
        """Build from {"sessions": [...], "responses": [...], ...}."""
        if not isinstance(data, dict):
            raise DataSourceError("Dataset must be an object keyed by table name.")
        frames = {}
        for table in TABLES:
            rows = data.get(table)
            if rows is None:
                continue
            if not isinstance(rows, list):
                raise DataSourceError(f"Table '{table}' must be a list of records.")
            frames[table] = pd.DataFrame(rows)
        return cls(frames)

    @classmethod
    def from_sheets(cls, sheets: Dict[str, pd.DataFrame]) -> "FrameRecordSource":
        """Map workbook sheets onto tables by sheet name."""
        frames = {}
        for sheet_name, df in sheets.items():
            key = str(sheet_name).strip().lower()
            if key in TABLES:
                frames[key] = df
            else:
                logger.info("Ignoring sheet '%s': not one of %s", sheet_name, ", ".join(TABLES))
        if "sessions" not in frames and len(sheets) == 1:
            frames["sessions"] = next(iter(sheets.values()))
        if "sessions" not in frames:
            raise DataSourceError("No 'sessions' sheet found in the upload.")
        return cls(frames)

    def frame(self, table: str) -> pd.DataFrame:
        return self._frames[table].copy()

    def row_counts(self) -> Dict[str, int]:
        return {t: len(df) for t, df in self._frames.items()}

    async def sessions(self) -> pd.DataFrame:
        return self.frame("sessions")

    async def responses(self) -> pd.DataFrame:
        return self.frame("responses")

    async def plans(self) -> pd.DataFrame:
        return self.frame("plans")

    async def users(self) -> pd.DataFrame:
        return self.frame("users")

    async def entities(self) -> pd.DataFrame:
        return self.frame("entities")


def parse_upload(file_path: str) -> Dict[str, pd.DataFrame]:
    """
    Parse an uploaded file and return a dict of {sheet_name: DataFrame}.
    For CSV files, returns {"sessions": df}.
    """
    path = Path(file_path)
    ext = path.suffix.lower()

    if ext == ".csv":
        df = pd.read_csv(file_path, dtype=str)
        return {"sessions": df}

    elif ext == ".xlsx":
        xls = pd.ExcelFile(file_path, engine="openpyxl")
        sheets = {}
        for sheet_name in xls.sheet_names:
            df = pd.read_excel(xls, sheet_name=sheet_name, dtype=str)
            # Skip empty sheets
            if not df.empty and len(df.columns) > 1:
                sheets[sheet_name] = df
        if not sheets:
            raise ValueError("No valid sheets found in the Excel file.")
        return sheets

    else:
        raise ValueError(f"Unsupported file type: {ext}")


# ── Metric filter ───────────────────────────────────────────────────

def _str_tuple(value: Any, field_name: str) -> Tuple[str, ...]:
    if value in (None, ""):
        return ()
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, (list, tuple)):
        raise InvalidArgumentError(field_name, value)
    return tuple(str(v).strip() for v in value if str(v).strip())


@dataclass(frozen=True)
class MetricFilter:
    """Optional restrictions on sessions. Empty fields mean no restriction."""

    start_date: Optional[date] = None
    end_date: Optional[date] = None
    grades: Tuple[str, ...] = ()
    subjects: Tuple[str, ...] = ()
    statuses: Tuple[str, ...] = ()
    observer_ids: Tuple[str, ...] = ()
    entity_ids: Dict[str, str] = field(default_factory=dict)
    aggregation_level: Granularity = Granularity.MONTHLY

    @classmethod
    def from_payload(cls, data: Optional[Dict[str, Any]]) -> "MetricFilter":
        data = data or {}
        start = parse_date(data.get("start_date"), "start_date")
        end = parse_date(data.get("end_date"), "end_date")
        if start and end and start > end:
            raise InvalidArgumentError("date range", f"{start} > {end}")

        statuses = tuple(s.lower() for s in _str_tuple(data.get("statuses"), "statuses"))
        for s in statuses:
            if s not in STATUSES:
                raise InvalidArgumentError("status", s, STATUSES)

        entity_ids = {}
        for key, value in (data.get("entity_ids") or {}).items():
            level = parse_entity_type(key)
            if value not in (None, ""):
                entity_ids[level.value] = str(value)
        # flat form: {"school_id": "..."}
        for level_name in GEOGRAPHIC_TYPES:
            value = data.get(f"{level_name}_id")
            if value not in (None, ""):
                entity_ids[level_name] = str(value)

        return cls(
            start_date=start,
            end_date=end,
            grades=_str_tuple(data.get("grades"), "grades"),
            subjects=_str_tuple(data.get("subjects"), "subjects"),
            statuses=statuses,
            observer_ids=_str_tuple(data.get("observer_ids"), "observer_ids"),
            entity_ids=entity_ids,
            aggregation_level=parse_granularity(data.get("aggregation_level") or "monthly"),
        )

    def with_dates(self, start: Optional[date], end: Optional[date]) -> "MetricFilter":
        return replace(self, start_date=start, end_date=end)

    def with_entity(self, level: HierarchyLevel, entity_id: str) -> "MetricFilter":
        ids = dict(self.entity_ids)
        ids[level.value] = str(entity_id)
        return replace(self, entity_ids=ids)

    def apply(self, sessions: pd.DataFrame) -> pd.DataFrame:
        """Restrict a normalized sessions frame to this filter."""
        if sessions.empty:
            return sessions
        mask = pd.Series(True, index=sessions.index)
        if self.start_date is not None:
            mask &= sessions["date_observed"] >= pd.Timestamp(self.start_date)
        if self.end_date is not None:
            mask &= sessions["date_observed"] <= pd.Timestamp(self.end_date)
        if self.grades:
            mask &= sessions["grade"].isin(self.grades)
        if self.subjects:
            mask &= sessions["subject"].isin(self.subjects)
        if self.statuses:
            mask &= sessions["status"].isin(self.statuses)
        if self.observer_ids:
            mask &= sessions["observer_id"].isin(self.observer_ids)
        for level_name, entity_id in self.entity_ids.items():
            mask &= sessions[f"{level_name}_id"] == entity_id
        return sessions[mask]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "end_date": self.end_date.isoformat() if self.end_date else None,
            "grades": list(self.grades),
            "subjects": list(self.subjects),
            "statuses": list(self.statuses),
            "observer_ids": list(self.observer_ids),
            "entity_ids": dict(self.entity_ids),
            "aggregation_level": self.aggregation_level.value,
        }


# ── Scoped reads ────────────────────────────────────────────────────

async def scoped_sessions(
    source: RecordSource, scope: ScopePredicate, filt: MetricFilter
) -> pd.DataFrame:
    frame = await source.sessions()
    return filt.apply(scope.apply(frame, "sessions"))


async def scoped_responses(source: RecordSource, sessions: pd.DataFrame) -> pd.DataFrame:
    """Responses belonging to already-scoped sessions."""
    frame = await source.responses()
    if sessions.empty or frame.empty:
        return frame.iloc[0:0]
    return frame[frame["session_id"].isin(sessions["id"].dropna())]


async def scoped_plans(source: RecordSource, sessions: pd.DataFrame) -> pd.DataFrame:
    """Improvement plans attached to already-scoped sessions."""
    frame = await source.plans()
    if sessions.empty or frame.empty:
        return frame.iloc[0:0]
    return frame[frame["session_id"].isin(sessions["id"].dropna())]


async def scoped_users(source: RecordSource, scope: ScopePredicate) -> pd.DataFrame:
    frame = await source.users()
    return scope.apply(frame, "users")


async def entity_names(source: RecordSource, level: HierarchyLevel) -> Dict[str, Tuple[str, str]]:
    """Map entity id → (name, name_kh) for one geographic level."""
    frame = await source.entities()
    if frame.empty:
        return {}
    rows = frame[(frame["type"] == level.value) & frame["id"].notna()]
    names = {}
    for _, r in rows.iterrows():
        name = _text(r["name"]) or r["id"]
        names[r["id"]] = (name, _text(r["name_kh"]) or name)
    return names
