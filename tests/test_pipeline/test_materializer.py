"""
Tests for specification materialization.
"""

import pytest
from sqlalchemy import func, select, update

from reviewsync.models.enums import ErrorCode, LookupTable, SubmissionStatus
from reviewsync.models.tables import (
    SpecCure,
    Specification,
    SpecTastingNote,
    SpecTobaccoType,
    Submission,
)
from reviewsync.pipeline.enum_resolver import EnumResolver
from reviewsync.pipeline.errors import (
    LookupValueNotFound,
    NotFoundError,
    StateViolationError,
    SubmissionValidationError,
)
from reviewsync.pipeline.materializer import (
    SpecificationMaterializer,
    has_consecutive_delimiters,
    split_multi_value,
)


@pytest.fixture
def materializer():
    return SpecificationMaterializer(EnumResolver())


async def _materialize(session_factory, materializer, submission_id):
    async with session_factory() as session:
        result = await materializer.materialize(session, submission_id)
        await session.commit()
        return result


async def _materialize_failing(session_factory, materializer, submission_id, exc_type):
    async with session_factory() as session:
        with pytest.raises(exc_type) as exc_info:
            await materializer.materialize(session, submission_id)
        await session.rollback()
    return exc_info.value


async def _spec_count(session_factory) -> int:
    async with session_factory() as session:
        return (await session.execute(select(func.count(Specification.id)))).scalar_one()


async def _junction_ids(session_factory, model, column, spec_id) -> set[int]:
    async with session_factory() as session:
        result = await session.execute(
            select(getattr(model, column)).where(model.specification_id == spec_id)
        )
        return set(result.scalars().all())


async def _status(session_factory, submission_id) -> str:
    async with session_factory() as session:
        return (await session.execute(
            select(Submission.status).where(Submission.submission_id == submission_id)
        )).scalar_one()


class TestMultiValueHelpers:
    def test_split_trims_and_drops_blanks(self):
        assert split_multi_value(" Virginia \r\nBurley\n ") == ["Virginia", "Burley"]
        assert split_multi_value("") == []
        assert split_multi_value(None) == []

    def test_consecutive_delimiters(self):
        assert has_consecutive_delimiters("Virginia\n\nBurley")
        assert has_consecutive_delimiters("Virginia\n  \nBurley")
        assert not has_consecutive_delimiters("Virginia\nBurley")
        assert not has_consecutive_delimiters("Virginia\nBurley\n\n")
        assert not has_consecutive_delimiters(None)


class TestMaterialize:
    async def test_inserts_specification_with_junctions(
        self, session_factory, lookup_ids, add_submission, materializer
    ):
        await add_submission("s1")
        result = await _materialize(session_factory, materializer, "s1")

        assert result.operation == "inserted"
        assert result.previous_status == "shopify_mapped"
        assert result.status == "specification_generated"
        assert await _status(session_factory, "s1") == "specification_generated"

        async with session_factory() as session:
            spec = (await session.execute(
                select(Specification).where(Specification.submission_id == "s1")
            )).scalar_one()

        assert spec.id == result.specification_id
        assert spec.shopify_handle == "handle-s1"
        assert spec.product_type_id == lookup_ids[LookupTable.PRODUCT_TYPES]["Nasal Snuff"]
        assert spec.product_brand_id == lookup_ids[LookupTable.PRODUCT_BRANDS]["Wilsons of Sharrow"]
        assert spec.moisture_level_id == lookup_ids[LookupTable.MOISTURE_LEVELS]["Medium"]
        assert spec.grind_id == lookup_ids[LookupTable.GRINDS]["Fine"]
        assert spec.nicotine_level_id == lookup_ids[LookupTable.NICOTINE_LEVELS]["High"]
        # "Expert" on the form is stored as "Advanced"
        assert spec.experience_level_id == lookup_ids[LookupTable.EXPERIENCE_LEVELS]["Advanced"]
        assert spec.is_artisan is True
        assert spec.is_fermented is False
        assert spec.star_rating == 4
        assert spec.review == "Rich and smoky."

        tobacco = lookup_ids[LookupTable.TOBACCO_TYPES]
        notes = lookup_ids[LookupTable.TASTING_NOTES]
        assert await _junction_ids(session_factory, SpecTobaccoType, "enum_tobacco_type_id", spec.id) == \
            {tobacco["Virginia"], tobacco["Burley"]}
        assert await _junction_ids(session_factory, SpecCure, "enum_cure_id", spec.id) == \
            {lookup_ids[LookupTable.CURES]["Fire"]}
        assert await _junction_ids(session_factory, SpecTastingNote, "enum_tasting_note_id", spec.id) == \
            {notes["Smoky"], notes["Sweet"]}

    async def test_regeneration_updates_in_place(
        self, session_factory, lookup_ids, add_submission, materializer
    ):
        await add_submission("s1")
        first = await _materialize(session_factory, materializer, "s1")

        async with session_factory() as session:
            await session.execute(
                update(Submission)
                .where(Submission.submission_id == "s1")
                .values(tobacco="Kentucky", review="Changed my mind.")
            )
            await session.commit()

        second = await _materialize(session_factory, materializer, "s1")

        assert second.operation == "updated"
        assert second.specification_id == first.specification_id
        assert second.previous_status == "specification_generated"
        assert await _spec_count(session_factory) == 1
        assert await _junction_ids(
            session_factory, SpecTobaccoType, "enum_tobacco_type_id", first.specification_id
        ) == {lookup_ids[LookupTable.TOBACCO_TYPES]["Kentucky"]}
        # Untouched multi-value fields keep their rows
        assert len(await _junction_ids(
            session_factory, SpecTastingNote, "enum_tasting_note_id", first.specification_id
        )) == 2

        async with session_factory() as session:
            spec = await session.get(Specification, first.specification_id)
        assert spec.review == "Changed my mind."

    async def test_repeated_values_produce_one_junction_row(
        self, session_factory, lookup_ids, add_submission, materializer
    ):
        await add_submission("s1", tasting_notes="Smoky\nsmoky\nSMOKY")
        result = await _materialize(session_factory, materializer, "s1")
        assert result.junctions["tasting_notes"] == [lookup_ids[LookupTable.TASTING_NOTES]["Smoky"]]

    async def test_optional_blanks_stored_as_null(
        self, session_factory, lookup_ids, add_submission, materializer
    ):
        await add_submission(
            "s1", moisture="", grind=None, nicotine="  ", ease_of_use="",
            tasting_notes="", cure=None, product_brand=None,
        )
        result = await _materialize(session_factory, materializer, "s1")

        async with session_factory() as session:
            spec = await session.get(Specification, result.specification_id)
        assert spec.moisture_level_id is None
        assert spec.grind_id is None
        assert spec.nicotine_level_id is None
        assert spec.experience_level_id is None
        assert spec.product_brand_id is None
        assert "tasting_notes" not in result.junctions
        assert await _junction_ids(
            session_factory, SpecTastingNote, "enum_tasting_note_id", spec.id
        ) == set()

    async def test_unknown_reviewer_writes_nothing(
        self, session_factory, lookup_ids, add_submission, materializer
    ):
        await add_submission("s1", reviewer="Charlie Unknown")
        err = await _materialize_failing(session_factory, materializer, "s1", NotFoundError)

        assert err.field == "reviewer"
        assert err.value == "Charlie Unknown"
        assert err.message == "No user found with jotform_name matching reviewer: Charlie Unknown"
        assert await _spec_count(session_factory) == 0
        assert await _status(session_factory, "s1") == "shopify_mapped"

    async def test_reviewer_match_is_case_insensitive(
        self, session_factory, lookup_ids, add_submission, materializer
    ):
        await add_submission("s1", reviewer="BOB JONES")
        result = await _materialize(session_factory, materializer, "s1")
        assert result.operation == "inserted"

    async def test_blank_reviewer(self, session_factory, lookup_ids, add_submission, materializer):
        await add_submission("s1", reviewer=" ")
        err = await _materialize_failing(
            session_factory, materializer, "s1", SubmissionValidationError
        )
        assert err.field == "reviewer"

    async def test_unknown_multi_value_rolls_back_everything(
        self, session_factory, lookup_ids, add_submission, materializer
    ):
        await add_submission("s1", tasting_notes="Smoky\nBubblegum")
        err = await _materialize_failing(session_factory, materializer, "s1", LookupValueNotFound)

        assert err.error_code == ErrorCode.LOOKUP_VALUE.value
        assert err.table == "enum_tasting_notes"
        assert err.field == "tasting_notes"
        assert err.value == "Bubblegum"
        assert await _spec_count(session_factory) == 0
        assert await _status(session_factory, "s1") == "shopify_mapped"

    async def test_consecutive_line_breaks_rejected(
        self, session_factory, lookup_ids, add_submission, materializer
    ):
        await add_submission("s1", tobacco="Virginia\n\nBurley")
        err = await _materialize_failing(
            session_factory, materializer, "s1", SubmissionValidationError
        )
        assert err.field == "tobacco"
        assert await _spec_count(session_factory) == 0

    async def test_missing_catalog_match(self, session_factory, lookup_ids, add_submission, materializer):
        await add_submission("s1", match=False)
        err = await _materialize_failing(
            session_factory, materializer, "s1", SubmissionValidationError
        )
        assert err.field == "shopify_handle"

    async def test_missing_product_type(self, session_factory, lookup_ids, add_submission, materializer):
        await add_submission("s1", product_type="")
        err = await _materialize_failing(
            session_factory, materializer, "s1", SubmissionValidationError
        )
        assert err.field == "product_type"

    async def test_wrong_state(self, session_factory, lookup_ids, add_submission, materializer):
        await add_submission("s1", SubmissionStatus.TITLE_CLEANED)
        err = await _materialize_failing(session_factory, materializer, "s1", StateViolationError)
        assert "title_cleaned -> specification_generated" in err.message

    @pytest.mark.parametrize("status", [SubmissionStatus.IGNORE, None])
    async def test_ignored_or_missing_is_not_found(
        self, session_factory, lookup_ids, add_submission, materializer, status
    ):
        if status is not None:
            await add_submission("s1", status)
        err = await _materialize_failing(session_factory, materializer, "s1", NotFoundError)
        assert err.error_code == ErrorCode.NOT_FOUND.value
