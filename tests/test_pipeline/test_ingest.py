"""
Tests for form submission ingest.
"""

from datetime import datetime, timezone

import pytest
from sqlalchemy import select

from conftest import raw_submission
from reviewsync.clients.stub_client import StubFormsClient
from reviewsync.models.tables import Submission
from reviewsync.pipeline.errors import UpstreamError
from reviewsync.pipeline.ingest import (
    InvalidSubmission,
    SubmissionRecord,
    build_fetch_filter,
    format_submission,
    ingest_new_submissions,
)


class TestFormatSubmission:
    def test_maps_answers_to_columns(self):
        record = format_submission(raw_submission("1001"))

        assert isinstance(record, SubmissionRecord)
        assert record.submission_id == "1001"
        assert record.reviewer == "Alice Smith"
        assert record.select_product == "Wilsons of Sharrow | Best Brown Snuff"
        assert record.tobacco == "Virginia\nBurley"
        assert record.cure == "Fire"
        assert record.tasting_notes == "Smoky\nSweet"
        assert record.ease_of_use == "Expert"
        assert record.star_rating == 4
        assert record.rating_boost == 1
        assert record.artisan is True
        assert record.fermented is False
        assert record.created_at == datetime(2024, 3, 1, 10, 0, tzinfo=timezone.utc)
        assert record.raw_json["id"] == "1001"

    def test_missing_answers_default_blank(self):
        raw = {"id": "1002", "created_at": "2024-03-01 10:00:00", "answers": {}}
        record = format_submission(raw)
        assert record.reviewer == ""
        assert record.star_rating == 0
        assert record.oral_tobacco is False

    def test_rating_with_trailing_text(self):
        record = format_submission(raw_submission("1003", **{"36": "5 stars"}))
        assert record.star_rating == 5

    @pytest.mark.parametrize("raw", [{}, {"id": ""}, "not a dict", None])
    def test_missing_id_is_invalid(self, raw):
        result = format_submission(raw)
        assert isinstance(result, InvalidSubmission)
        assert result.reason == "missing_id"

    def test_unparseable_timestamp_uses_now(self):
        before = datetime.now(timezone.utc)
        record = format_submission(raw_submission("1004", created_at="sometime"))
        assert record.created_at >= before


class TestBuildFetchFilter:
    def test_empty_table_starts_previous_year(self):
        now = datetime(2025, 6, 1, tzinfo=timezone.utc)
        assert build_fetch_filter(None, now=now) == {"created_at:gt": "2024-01-01 00:00:00"}

    def test_after_latest_excluding_its_id(self):
        latest = ("1001", datetime(2024, 3, 1, 10, 0, 5))
        assert build_fetch_filter(latest) == {
            "id:ne": "1001",
            "created_at:gt": "2024-03-01 10:00:05",
        }


class TestIngestNewSubmissions:
    async def test_saves_and_skips(self, session_factory):
        forms = StubFormsClient([
            raw_submission("1001"),
            {"answers": {}},
            raw_submission("1002", "2024-03-02 10:00:00"),
        ])
        async with session_factory() as session:
            result = await ingest_new_submissions(session, forms)
            await session.commit()

        assert result.fetched == 3
        assert result.saved == 2
        assert result.skipped_invalid == 1
        assert result.invalid_reasons == {"missing_id": 1}
        assert sorted(result.saved_ids) == ["1001", "1002"]
        assert "Downloaded 2 new submissions." in result.message

        async with session_factory() as session:
            rows = (await session.execute(select(Submission))).scalars().all()
        assert {r.status for r in rows} == {"fetched"}
        assert {r.submission_id for r in rows} == {"1001", "1002"}

    async def test_existing_ids_skipped(self, session_factory):
        async with session_factory() as session:
            await ingest_new_submissions(session, StubFormsClient([raw_submission("1001")]))
            await session.commit()

        forms = StubFormsClient([raw_submission("1001"), raw_submission("1005", "2024-04-01 08:00:00")])
        async with session_factory() as session:
            result = await ingest_new_submissions(session, forms)
            await session.commit()

        assert result.saved == 1
        assert result.skipped_existing == 1
        assert forms.calls[0][0] == {"id:ne": "1001", "created_at:gt": "2024-03-01 10:00:00"}

    async def test_nothing_new(self, session_factory):
        async with session_factory() as session:
            result = await ingest_new_submissions(session, StubFormsClient([]))
        assert result.saved == 0
        assert result.message == "No new submissions available from Jotform."

    async def test_upstream_error_propagates(self, session_factory):
        forms = StubFormsClient([raw_submission("1001")], error="HTTP 500")
        async with session_factory() as session:
            with pytest.raises(UpstreamError) as exc_info:
                await ingest_new_submissions(session, forms)
        assert exc_info.value.message == "[stub-forms] HTTP 500"
