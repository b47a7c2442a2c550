import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import HTTPException
from pymongo.errors import ServerSelectionTimeoutError

from interviewdesk import database
from interviewdesk.csv_export import csv_response, to_csv


class TestToCsv:
    def test_empty_rows(self):
        assert to_csv([]) == ""

    def test_headers_from_first_row_and_no_trailing_newline(self):
        assert to_csv([{"a": 1, "b": 2}, {"a": 3, "b": 4}]) == "a,b\n1,2\n3,4"

    def test_quoting_and_none(self):
        out = to_csv([{"name": 'Say "hi", ok', "score": None, "note": "line1\nline2"}])
        assert out == 'name,score,note\n"Say ""hi"", ok",,"line1\nline2"'

    def test_booleans_and_whole_floats(self):
        assert to_csv([{"used": True, "sent": False, "score": 7.0, "avg": 6.5}]) == \
            "used,sent,score,avg\ntrue,false,7,6.5"

    def test_explicit_headers_ignore_extra_keys(self):
        assert to_csv([{"a": 1, "b": 2, "c": 3}], headers=["c", "a"]) == "c,a\n3,1"

    def test_missing_keys_render_empty(self):
        assert to_csv([{"a": 1}], headers=["a", "b"]) == "a,b\n1,"


class TestCsvResponse:
    def test_no_rows_is_400(self):
        with pytest.raises(HTTPException) as exc:
            csv_response([], "x.csv")
        assert exc.value.status_code == 400
        assert exc.value.detail == "No data to export"

    def test_attachment_headers(self):
        response = csv_response([{"a": 1}], "report.csv", extra_headers={"Cache-Control": "no-cache"})
        assert response.media_type == "text/csv"
        assert response.headers["content-disposition"] == 'attachment; filename="report.csv"'
        assert response.headers["cache-control"] == "no-cache"


class TestColumnExists:
    """Schema check used by /api/db/meta"""

    def test_field_present(self, monkeypatch):
        fake_db = MagicMock()
        fake_db.__getitem__.return_value.find_one = AsyncMock(return_value={"_id": 1})
        monkeypatch.setattr(database, "db", fake_db)
        assert asyncio.run(database.column_exists("users", "onboarding_completed")) is True

    def test_field_absent(self, monkeypatch):
        fake_db = MagicMock()
        fake_db.__getitem__.return_value.find_one = AsyncMock(return_value=None)
        monkeypatch.setattr(database, "db", fake_db)
        assert asyncio.run(database.column_exists("users", "onboarding_completed")) is False

    def test_database_error_reports_false(self, monkeypatch):
        fake_db = MagicMock()
        fake_db.__getitem__.return_value.find_one = AsyncMock(side_effect=ServerSelectionTimeoutError("down"))
        monkeypatch.setattr(database, "db", fake_db)
        assert asyncio.run(database.column_exists("users", "onboarding_completed")) is False
