"""
Tests for core/records.py — normalization, record sources, uploads and the metric filter.
"""

import asyncio
import os
import sys
from datetime import date

import pytest
import pandas as pd

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from core.errors import DataSourceError, InvalidArgumentError
from core.records import (
    FrameRecordSource,
    Granularity,
    MetricFilter,
    normalize_frame,
    parse_flag,
    parse_upload,
    safe_float,
    scoped_responses,
    scoped_sessions,
)
from core.scope import build_scope


class TestNormalizeFrame:

    def test_aliases_are_renamed(self):
        raw = pd.DataFrame({
            "Session_ID": [1.0, 2.0],
            "School": ["s1", "s1"],
            "Observation_Date": ["2024-01-05", "2024-02-06T10:00:00+07:00"],
            "Status": ["Completed", "In Progress"],
        })
        df = normalize_frame(raw, "sessions")
        assert list(df["id"]) == ["1", "2"]
        assert list(df["school_id"]) == ["s1", "s1"]
        assert list(df["status"]) == ["completed", "in_progress"]
        assert df["date_observed"].iloc[1] == pd.Timestamp("2024-02-06")

    def test_missing_columns_added(self):
        df = normalize_frame(pd.DataFrame({"id": ["a"]}), "sessions")
        for col in ("zone_id", "subject", "grade", "start_time"):
            assert col in df.columns
        assert df["school_id"].iloc[0] is None

    def test_bad_dates_become_nat(self):
        df = normalize_frame(pd.DataFrame({"id": ["a"], "date": ["not a date"]}), "sessions")
        assert pd.isna(df["date_observed"].iloc[0])

    def test_users_default_active(self):
        df = normalize_frame(pd.DataFrame({"id": ["u1", "u2"]}), "users")
        assert df["is_active"].all()

    def test_scores_numeric(self):
        df = normalize_frame(pd.DataFrame({"session_id": ["a"], "indicator_id": ["i"], "score": ["2"]}), "responses")
        assert df["score"].iloc[0] == 2.0
        assert df["indicator_name"].iloc[0] == "i"


class TestFrameRecordSource:

    def test_row_counts(self, source):
        counts = source.row_counts()
        assert counts["sessions"] == 18
        assert counts["responses"] == 36
        assert counts["plans"] == 2

    def test_unknown_table_rejected(self):
        with pytest.raises(InvalidArgumentError):
            FrameRecordSource({"lessons": pd.DataFrame()})

    def test_payload_must_be_lists(self):
        with pytest.raises(DataSourceError):
            FrameRecordSource.from_payload({"sessions": {"id": 1}})

    def test_single_sheet_is_sessions(self):
        src = FrameRecordSource.from_sheets({"Sheet1": pd.DataFrame({"id": ["a"]})})
        assert src.row_counts()["sessions"] == 1

    def test_workbook_without_sessions(self):
        with pytest.raises(DataSourceError):
            FrameRecordSource.from_sheets({
                "users": pd.DataFrame({"id": ["u"]}),
                "notes": pd.DataFrame({"x": [1]}),
            })

    def test_accessors_return_copies(self, source):
        frame = asyncio.run(source.sessions())
        frame.drop(frame.index, inplace=True)
        assert len(asyncio.run(source.sessions())) == 18


class TestParseUpload:

    def test_csv_is_sessions(self, tmp_path):
        path = tmp_path / "obs.csv"
        path.write_text("id,school_id,date_observed,status\na,s1,2024-01-01,completed\n")
        sheets = parse_upload(str(path))
        assert list(sheets) == ["sessions"]
        assert len(sheets["sessions"]) == 1

    def test_xlsx_sheets(self, tmp_path):
        path = tmp_path / "obs.xlsx"
        with pd.ExcelWriter(path, engine="openpyxl") as writer:
            pd.DataFrame({"id": ["a"], "school_id": ["s1"]}).to_excel(writer, sheet_name="sessions", index=False)
            pd.DataFrame({"session_id": ["a"], "score": [3]}).to_excel(writer, sheet_name="responses", index=False)
        sheets = parse_upload(str(path))
        assert set(sheets) == {"sessions", "responses"}

    def test_unsupported_extension(self, tmp_path):
        path = tmp_path / "obs.txt"
        path.write_text("x")
        with pytest.raises(ValueError):
            parse_upload(str(path))


class TestMetricFilter:

    def test_from_payload(self):
        filt = MetricFilter.from_payload({
            "start_date": "2024-01-01",
            "end_date": "2024-01-31",
            "statuses": ["Completed"],
            "school_id": "s1",
            "aggregation_level": "weekly",
        })
        assert filt.start_date == date(2024, 1, 1)
        assert filt.statuses == ("completed",)
        assert filt.entity_ids == {"school": "s1"}
        assert filt.aggregation_level == Granularity.WEEKLY

    def test_reversed_dates_rejected(self):
        with pytest.raises(InvalidArgumentError):
            MetricFilter.from_payload({"start_date": "2024-02-01", "end_date": "2024-01-01"})

    def test_unknown_status_rejected(self):
        with pytest.raises(InvalidArgumentError):
            MetricFilter.from_payload({"statuses": ["archived"]})

    def test_unknown_granularity_rejected(self):
        with pytest.raises(InvalidArgumentError):
            MetricFilter.from_payload({"aggregation_level": "hourly"})

    def test_dates_inclusive(self, source, admin):
        filt = MetricFilter(start_date=date(2024, 1, 10), end_date=date(2024, 1, 20))
        sessions = asyncio.run(scoped_sessions(source, build_scope(admin), filt))
        assert len(sessions) == 6

    def test_to_dict_round_trips_dates(self):
        filt = MetricFilter(start_date=date(2024, 1, 1))
        assert filt.to_dict()["start_date"] == "2024-01-01"
        assert filt.to_dict()["end_date"] is None


class TestScopedReads:

    def test_scope_applied_before_filter(self, source, director):
        # filtering on another school cannot widen a director's view
        filt = MetricFilter(entity_ids={"school": "s2"})
        sessions = asyncio.run(scoped_sessions(source, build_scope(director), filt))
        assert sessions.empty

    def test_responses_follow_sessions(self, source, director):
        scope = build_scope(director)
        sessions = asyncio.run(scoped_sessions(source, scope, MetricFilter()))
        responses = asyncio.run(scoped_responses(source, sessions))
        assert len(responses) == 12
        assert set(responses["score"]) == {3.0}


class TestValueHelpers:

    def test_parse_flag(self):
        assert parse_flag(True) is True
        assert parse_flag("Yes") is True
        assert parse_flag(1) is True
        assert parse_flag("false") is False
        assert parse_flag("0") is False
        assert parse_flag(None) is False
        assert parse_flag(float("nan")) is False

    def test_safe_float(self):
        assert safe_float(2.345678) == 2.35
        assert safe_float(float("nan")) == 0.0
        assert safe_float(float("inf")) == 0.0
        assert safe_float("n/a") == 0.0
        assert safe_float(None) == 0.0
