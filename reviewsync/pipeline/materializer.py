"""
Specification materializer.

Turns one fully enriched submission (status shopify_mapped, with a catalog
match) into exactly one specifications row plus its junction rows. Upserts by
submission_id; never creates a duplicate.

Everything runs inside the caller's unit of work. Every lookup, including the
multi-value fields, is resolved before the first write, and any failure
propagates so the caller's rollback discards the whole submission.
"""

import re
from datetime import datetime, timezone
from typing import NamedTuple, Optional, Type

import structlog
from pydantic import BaseModel, Field
from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from reviewsync.models.database import Base, dialect_insert
from reviewsync.models.enums import LookupTable, SubmissionStatus
from reviewsync.models.tables import (
    CatalogMatch,
    SpecCure,
    Specification,
    SpecTastingNote,
    SpecTobaccoType,
    Submission,
    User,
)
from reviewsync.observability.metrics import specifications_upserted_total
from reviewsync.pipeline.enum_resolver import EnumResolver
from reviewsync.pipeline.errors import (
    NotFoundError,
    StateViolationError,
    SubmissionValidationError,
)
from reviewsync.pipeline.status_model import attempt_transition, check_transition

logger = structlog.get_logger(__name__)


class MultiValueField(NamedTuple):
    field: str
    table: LookupTable
    junction: Type[Base]
    enum_column: str


MULTI_VALUE_FIELDS = (
    MultiValueField(field="tobacco", table=LookupTable.TOBACCO_TYPES,
                    junction=SpecTobaccoType, enum_column="enum_tobacco_type_id"),
    MultiValueField(field="cure", table=LookupTable.CURES,
                    junction=SpecCure, enum_column="enum_cure_id"),
    MultiValueField(field="tasting_notes", table=LookupTable.TASTING_NOTES,
                    junction=SpecTastingNote, enum_column="enum_tasting_note_id"),
)

_CONSECUTIVE_DELIMITERS_RE = re.compile(r"\n[ \t]*\n")


class MaterializationResult(BaseModel):
    submission_id: str
    specification_id: int
    operation: str  # inserted | updated
    previous_status: str
    status: str
    junctions: dict[str, list[int]] = Field(default_factory=dict)


def split_multi_value(raw: Optional[str]) -> list[str]:
    """Newline-delimited field -> trimmed, non-empty values."""
    if not raw:
        return []
    return [part.strip() for part in raw.replace("\r\n", "\n").split("\n") if part.strip()]


def has_consecutive_delimiters(raw: Optional[str]) -> bool:
    if not raw:
        return False
    return bool(_CONSECUTIVE_DELIMITERS_RE.search(raw.replace("\r\n", "\n").strip()))


def _blank(value: Optional[str]) -> bool:
    return value is None or not value.strip()


class SpecificationMaterializer:
    def __init__(self, resolver: EnumResolver):
        self.resolver = resolver

    async def materialize(self, session: AsyncSession, submission_id: str) -> MaterializationResult:
        submission = await self._load_submission(session, submission_id)
        match = await session.get(CatalogMatch, submission_id)
        if match is None or _blank(match.shopify_handle):
            raise SubmissionValidationError(
                "Submission has no matched Shopify product",
                field="shopify_handle",
            )

        for mv in MULTI_VALUE_FIELDS:
            raw = getattr(submission, mv.field)
            if has_consecutive_delimiters(raw):
                raise SubmissionValidationError(
                    f"Field {mv.field} contains consecutive line breaks",
                    field=mv.field,
                    value=raw,
                )

        # ── Resolve everything before writing ──
        user_id = await self._resolve_user(session, submission.reviewer)
        values = await self._resolve_columns(session, submission, match)
        values["user_id"] = user_id

        junction_ids: dict[str, list[int]] = {}
        for mv in MULTI_VALUE_FIELDS:
            raw = getattr(submission, mv.field)
            if _blank(raw):
                continue
            junction_ids[mv.field] = await self.resolver.resolve_many(
                session, mv.table, split_multi_value(raw)
            )

        # ── Upsert ──
        result = await session.execute(
            select(Specification).where(Specification.submission_id == submission_id)
        )
        spec = result.scalar_one_or_none()

        if spec is not None:
            operation = "updated"
            for key, value in values.items():
                setattr(spec, key, value)
            spec.updated_at = datetime.now(timezone.utc)
            for mv in MULTI_VALUE_FIELDS:
                if mv.field in junction_ids:
                    await session.execute(
                        delete(mv.junction).where(mv.junction.specification_id == spec.id)
                    )
        else:
            operation = "inserted"
            spec = Specification(submission_id=submission_id, **values)
            session.add(spec)
        await session.flush()

        for mv in MULTI_VALUE_FIELDS:
            ids = junction_ids.get(mv.field)
            if not ids:
                continue
            stmt = dialect_insert(session, mv.junction).values(
                [{"specification_id": spec.id, mv.enum_column: enum_id} for enum_id in ids]
            ).on_conflict_do_nothing()
            await session.execute(stmt)

        previous_status = submission.status
        if previous_status != SubmissionStatus.SPECIFICATION_GENERATED.value:
            transition = await attempt_transition(
                session, submission_id, SubmissionStatus.SPECIFICATION_GENERATED
            )
            if not transition.success:
                raise StateViolationError(
                    transition.error_message or "State transition rejected",
                    field="status",
                    value=previous_status,
                )

        specifications_upserted_total.labels(operation=operation).inc()
        logger.info(
            "specification_materialized",
            submission_id=submission_id,
            specification_id=spec.id,
            operation=operation,
        )
        return MaterializationResult(
            submission_id=submission_id,
            specification_id=spec.id,
            operation=operation,
            previous_status=previous_status,
            status=SubmissionStatus.SPECIFICATION_GENERATED.value,
            junctions=junction_ids,
        )

    async def _load_submission(self, session: AsyncSession, submission_id: str) -> Submission:
        result = await session.execute(
            select(Submission)
            .where(Submission.submission_id == submission_id)
            .with_for_update()
        )
        submission = result.scalar_one_or_none()
        if submission is None or submission.status == SubmissionStatus.IGNORE.value:
            raise NotFoundError(
                f"Submission {submission_id} not found",
                field="submission_id",
                value=submission_id,
            )

        # Re-generation of an already generated submission refreshes data only
        if submission.status != SubmissionStatus.SPECIFICATION_GENERATED.value:
            check = check_transition(submission.status, SubmissionStatus.SPECIFICATION_GENERATED)
            if not check.allowed:
                raise StateViolationError(check.reason, field="status", value=submission.status)
        return submission

    async def _resolve_user(self, session: AsyncSession, reviewer: Optional[str]) -> int:
        if _blank(reviewer):
            raise SubmissionValidationError("Reviewer is required", field="reviewer")
        result = await session.execute(
            select(User.id)
            .where(func.lower(User.jotform_name) == reviewer.strip().lower())
            .order_by(User.id)
            .limit(1)
        )
        user_id = result.scalar_one_or_none()
        if user_id is None:
            raise NotFoundError(
                f"No user found with jotform_name matching reviewer: {reviewer}",
                field="reviewer",
                value=reviewer,
            )
        return user_id

    async def _resolve_columns(
        self, session: AsyncSession, submission: Submission, match: CatalogMatch
    ) -> dict:
        if _blank(match.product_type):
            raise SubmissionValidationError(
                "Matched Shopify product has no product type",
                field="product_type",
            )
        resolve = self.resolver.resolve_optional
        return {
            "shopify_handle": match.shopify_handle,
            "product_type_id": await self.resolver.resolve(
                session, LookupTable.PRODUCT_TYPES, match.product_type
            ),
            "product_brand_id": await resolve(session, LookupTable.PRODUCT_BRANDS, match.product_brand),
            "moisture_level_id": await resolve(session, LookupTable.MOISTURE_LEVELS, submission.moisture),
            "grind_id": await resolve(session, LookupTable.GRINDS, submission.grind),
            "nicotine_level_id": await resolve(session, LookupTable.NICOTINE_LEVELS, submission.nicotine),
            "experience_level_id": await resolve(
                session, LookupTable.EXPERIENCE_LEVELS, submission.ease_of_use
            ),
            "is_fermented": bool(submission.fermented),
            "is_oral_tobacco": bool(submission.oral_tobacco),
            "is_artisan": bool(submission.artisan),
            "review": submission.review,
            "star_rating": submission.star_rating,
            "rating_boost": submission.rating_boost,
        }
