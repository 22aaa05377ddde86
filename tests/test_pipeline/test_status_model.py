"""
Tests for the submission state machine.
"""

import pytest
from sqlalchemy import select

from reviewsync.models.enums import ErrorCode, SubmissionStatus
from reviewsync.models.tables import Submission
from reviewsync.pipeline.status_model import (
    attempt_transition,
    bulk_transition,
    check_transition,
    count_by_status,
    list_by_status,
)


async def _status(session_factory, submission_id):
    async with session_factory() as session:
        row = (await session.execute(
            select(Submission).where(Submission.submission_id == submission_id)
        )).scalar_one()
        return row.status, row.error_message


class TestCheckTransition:
    """The transition table, evaluated without a database."""

    @pytest.mark.parametrize("current,target", [
        ("fetched", "title_cleaned"),
        ("title_cleaned", "shopify_mapped"),
        ("shopify_mapped", "specification_generated"),
    ])
    def test_forward_chain_allowed(self, current, target):
        assert check_transition(current, target).allowed

    def test_skipping_a_state_rejected(self):
        check = check_transition("fetched", "shopify_mapped")
        assert not check.allowed
        assert check.required == "title_cleaned"
        assert check.reason == (
            "Invalid state transition: fetched -> shopify_mapped. "
            "Submission must be in one of these states: title_cleaned"
        )

    def test_backwards_rejected(self):
        assert not check_transition("specification_generated", "title_cleaned").allowed

    def test_same_state_rejected(self):
        assert not check_transition("title_cleaned", "title_cleaned").allowed

    @pytest.mark.parametrize("current", [s.value for s in SubmissionStatus] + [None])
    def test_error_always_allowed(self, current):
        assert check_transition(current, SubmissionStatus.ERROR).allowed

    def test_fetched_only_through_ingest(self):
        check = check_transition("error", "fetched")
        assert not check.allowed
        assert "ingest" in check.reason

    def test_ignore_requires_override(self):
        assert not check_transition("fetched", "ignore").allowed

    def test_unknown_target_raises(self):
        with pytest.raises(ValueError):
            check_transition("fetched", "archived")


class TestAttemptTransition:
    async def test_success_persists_state(self, session_factory, add_submission):
        await add_submission("s1", SubmissionStatus.FETCHED, match=False)

        async with session_factory() as session:
            result = await attempt_transition(session, "s1", SubmissionStatus.TITLE_CLEANED)
            await session.commit()

        assert result.success
        assert result.previous_status == "fetched"
        assert result.status == "title_cleaned"
        assert result.status_updated_at is not None
        assert (await _status(session_factory, "s1"))[0] == "title_cleaned"

    async def test_rejection_leaves_row_untouched(self, session_factory, add_submission):
        await add_submission("s1", SubmissionStatus.FETCHED, match=False)

        async with session_factory() as session:
            result = await attempt_transition(session, "s1", SubmissionStatus.SPECIFICATION_GENERATED)
            await session.commit()

        assert not result.success
        assert result.error_code == ErrorCode.STATE_VIOLATION.value
        assert result.required_status == "shopify_mapped"
        assert (await _status(session_factory, "s1"))[0] == "fetched"

    async def test_missing_submission(self, session_factory):
        async with session_factory() as session:
            result = await attempt_transition(session, "nope", SubmissionStatus.TITLE_CLEANED)

        assert not result.success
        assert result.error_code == ErrorCode.NOT_FOUND.value
        assert result.status is None

    async def test_error_message_set_then_cleared(self, session_factory, add_submission):
        await add_submission("s1", SubmissionStatus.FETCHED, match=False)

        async with session_factory() as session:
            await attempt_transition(session, "s1", SubmissionStatus.ERROR, error_message="bad data")
            await session.commit()
        assert await _status(session_factory, "s1") == ("error", "bad data")

        async with session_factory() as session:
            await attempt_transition(
                session, "s1", SubmissionStatus.FETCHED, skip_validation=True
            )
            await session.commit()
        assert await _status(session_factory, "s1") == ("fetched", None)

    async def test_override_reaches_ignore(self, session_factory, add_submission):
        await add_submission("s1", SubmissionStatus.SHOPIFY_MAPPED)

        async with session_factory() as session:
            result = await attempt_transition(
                session, "s1", SubmissionStatus.IGNORE, skip_validation=True
            )
            await session.commit()

        assert result.success
        assert (await _status(session_factory, "s1"))[0] == "ignore"


class TestBulkTransition:
    async def test_partitions_like_single_attempts(self, session_factory, add_submission):
        await add_submission("a", SubmissionStatus.FETCHED, match=False)
        await add_submission("b", SubmissionStatus.FETCHED, match=False)
        await add_submission("c", SubmissionStatus.SHOPIFY_MAPPED)

        async with session_factory() as session:
            result = await bulk_transition(
                session, ["a", "b", "c", "missing"], SubmissionStatus.TITLE_CLEANED
            )
            await session.commit()

        assert result.updated == ["a", "b"]
        assert result.updated_count == 2
        rejected = {r.submission_id: r for r in result.rejected}
        assert rejected["c"].error_code == ErrorCode.STATE_VIOLATION.value
        assert rejected["c"].current_status == "shopify_mapped"
        assert rejected["missing"].error_code == ErrorCode.NOT_FOUND.value

        assert (await _status(session_factory, "a"))[0] == "title_cleaned"
        assert (await _status(session_factory, "c"))[0] == "shopify_mapped"

    async def test_duplicates_collapsed(self, session_factory, add_submission):
        await add_submission("a", SubmissionStatus.FETCHED, match=False)

        async with session_factory() as session:
            result = await bulk_transition(session, ["a", "a"], SubmissionStatus.TITLE_CLEANED)

        assert result.updated == ["a"]
        assert result.rejected == []

    async def test_empty_input(self, session_factory):
        async with session_factory() as session:
            result = await bulk_transition(session, [], SubmissionStatus.TITLE_CLEANED)
        assert result.updated == [] and result.rejected == []


class TestStatusQueries:
    async def test_counts_exclude_ignored(self, session_factory, add_submission):
        await add_submission("a", SubmissionStatus.FETCHED, match=False)
        await add_submission("b", SubmissionStatus.FETCHED, match=False)
        await add_submission("c", SubmissionStatus.SHOPIFY_MAPPED)
        await add_submission("d", SubmissionStatus.IGNORE, match=False)

        async with session_factory() as session:
            counts = await count_by_status(session)

        assert counts["fetched"] == 2
        assert counts["shopify_mapped"] == 1
        assert counts["specification_generated"] == 0
        assert counts["total"] == 3
        assert "ignore" not in counts

    async def test_list_newest_first(self, session_factory, add_submission):
        await add_submission("old", SubmissionStatus.FETCHED, match=False)
        await add_submission("new", SubmissionStatus.FETCHED, match=False)
        await add_submission("hidden", SubmissionStatus.IGNORE, match=False)

        async with session_factory() as session:
            rows = await list_by_status(session)
            filtered = await list_by_status(session, statuses=["ignore"])

        assert [r.submission_id for r in rows] == ["new", "old"]
        assert [r.submission_id for r in filtered] == ["hidden"]
