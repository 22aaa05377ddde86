"""
Pipeline orchestrator: drives batches of submissions through one stage.

Stages: fetch -> clean-titles -> fetch-shopify-data -> generate-specifications

Each submission runs in its own session and transaction. A failure rolls back
that submission only, is itemized in the summary, and is appended to the
transform log in a separate transaction. Items run strictly one at a time.
"""

import time
from typing import Any, Awaitable, Callable, Optional

import structlog
from pydantic import BaseModel, Field, computed_field
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from reviewsync.clients.base import CatalogClient, FormsClient
from reviewsync.config import settings
from reviewsync.models.enums import (
    STAGE_TARGET_STATUS,
    PipelineStage,
    SubmissionStatus,
)
from reviewsync.models.tables import CatalogMatch, Specification, Submission
from reviewsync.observability.logging import bind_run_context, clear_run_context
from reviewsync.observability.metrics import (
    pipeline_stage_duration_seconds,
    stage_failures_total,
    stage_items_total,
)
from reviewsync.observability.transform_log import record_failures
from reviewsync.pipeline.catalog_matcher import (
    choose_best_match,
    save_catalog_match,
    vendor_hint_from_title,
)
from reviewsync.pipeline.enum_resolver import EnumCache, EnumResolver
from reviewsync.pipeline.errors import (
    FailureEntry,
    LookupValueNotFound,
    NotFoundError,
    StateViolationError,
    SubmissionValidationError,
    UnmatchedProductError,
    UpstreamError,
)
from reviewsync.pipeline.ingest import ingest_new_submissions
from reviewsync.pipeline.materializer import SpecificationMaterializer
from reviewsync.pipeline.progress import ProgressSink, ProgressTracker
from reviewsync.pipeline.status_model import (
    REQUIRED_PREDECESSOR,
    attempt_transition,
    check_transition,
)
from reviewsync.pipeline.title_cleaner import CleaningRuleSet, clean_product_name, load_rule_set

logger = structlog.get_logger(__name__)

StageHandler = Callable[[AsyncSession, Submission, bool], Awaitable[dict[str, Any]]]


def submission_label(submission: Submission) -> str:
    """Display name for a submission in failure listings."""
    for title in (submission.cleaned_product_title, submission.select_product):
        if title and title.strip():
            return title.strip()
    return "Unknown"


class StageSummary(BaseModel):
    stage: str
    attempted: int = 0
    succeeded: int = 0
    failures: list[FailureEntry] = Field(default_factory=list)
    failure_counts: dict[str, int] = Field(default_factory=dict)
    duration_ms: int = 0
    dry_run: bool = False
    details: dict[str, Any] = Field(default_factory=dict)

    @computed_field
    @property
    def failed(self) -> int:
        return len(self.failures)

    @computed_field
    @property
    def message(self) -> str:
        if self.attempted == 0:
            return f"No submissions eligible for {self.stage}."
        text = f"{self.stage}: {self.succeeded} of {self.attempted} succeeded"
        if self.failures:
            tally = ", ".join(f"{code} x{n}" for code, n in sorted(self.failure_counts.items()))
            text += f"; {self.failed} failed ({tally})"
        if self.dry_run:
            text += " (dry run, nothing committed)"
        return text + "."

    def add_failure(self, entry: FailureEntry) -> None:
        self.failures.append(entry)
        self.failure_counts[entry.error_code] = self.failure_counts.get(entry.error_code, 0) + 1


class SingleRunResult(BaseModel):
    success: bool
    submission_id: str
    stage: str
    status: Optional[str] = None
    message: str
    failure: Optional[FailureEntry] = None
    details: dict[str, Any] = Field(default_factory=dict)


class PipelineOrchestrator:
    """
    Owns one run's collaborators, including its enum cache.
    Build a new instance (or call run_full_pipeline) per run.
    """

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker] = None,
        forms: Optional[FormsClient] = None,
        catalog: Optional[CatalogClient] = None,
        rules: Optional[CleaningRuleSet] = None,
        progress: Optional[ProgressSink] = None,
        enum_cache: Optional[EnumCache] = None,
        batch_size: Optional[int] = None,
        progress_interval: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        if session_factory is None:
            from reviewsync.models.database import async_session_factory
            session_factory = async_session_factory
        self.session_factory = session_factory
        self.forms = forms
        self.catalog = catalog
        self.rules = rules if rules is not None else load_rule_set()
        self.progress = progress
        self.enum_cache = (
            enum_cache if enum_cache is not None else EnumCache(ttl_seconds=settings.ENUM_CACHE_TTL_SECONDS)
        )
        self.resolver = EnumResolver(self.enum_cache)
        self.materializer = SpecificationMaterializer(self.resolver)
        self.batch_size = batch_size or settings.STAGE_BATCH_SIZE
        self.progress_interval = (
            progress_interval if progress_interval is not None else settings.PROGRESS_INTERVAL_SECONDS
        )
        self._clock = clock

        self._handlers: dict[PipelineStage, StageHandler] = {
            PipelineStage.CLEAN_TITLES: self._clean_title,
            PipelineStage.FETCH_SHOPIFY_DATA: self._match_product,
            PipelineStage.GENERATE_SPECIFICATIONS: self._generate_specification,
        }

    # ── Batch operations ────────────────────────────────────

    async def run_full_pipeline(self, *, dry_run: bool = False) -> list[StageSummary]:
        """Clear the run's lookup cache, then run every stage in order."""
        self.enum_cache.clear()
        summaries = []
        for stage in PipelineStage:
            summaries.append(await self.run_stage(stage, dry_run=dry_run))
        return summaries

    async def run_stage(self, stage: PipelineStage | str, *, dry_run: bool = False) -> StageSummary:
        """
        Run `stage` over every eligible submission (up to batch_size).
        Returns a summary; per-item failures never raise.
        """
        stage = PipelineStage(stage)
        bind_run_context(stage.value)
        started = time.perf_counter()
        summary = StageSummary(stage=stage.value, dry_run=dry_run)
        logger.info("stage_started", dry_run=dry_run)

        try:
            if stage is PipelineStage.FETCH:
                await self._run_fetch(summary)
            else:
                await self._run_batch(stage, summary, dry_run=dry_run)
        finally:
            elapsed = time.perf_counter() - started
            summary.duration_ms = round(elapsed * 1000)
            pipeline_stage_duration_seconds.labels(stage=stage.value).observe(elapsed)
            logger.info(
                "stage_completed",
                attempted=summary.attempted,
                succeeded=summary.succeeded,
                failed=summary.failed,
                failure_counts=summary.failure_counts,
                duration_ms=summary.duration_ms,
            )
            clear_run_context()

        if summary.failures:
            await record_failures(self.session_factory, summary.failures, stage=stage.value)
        return summary

    async def _run_fetch(self, summary: StageSummary) -> None:
        if self.forms is None:
            raise RuntimeError("No forms client configured for the fetch stage")
        try:
            async with self.session_factory() as session:
                try:
                    result = await ingest_new_submissions(
                        session, self.forms, limit=settings.JOTFORM_PAGE_SIZE
                    )
                    await session.commit()
                except Exception:
                    await session.rollback()
                    raise
        except UpstreamError as e:
            entry = FailureEntry.from_exception(e)
            await record_failures(self.session_factory, [entry], stage=PipelineStage.FETCH.value)
            stage_failures_total.labels(stage=PipelineStage.FETCH.value, error_code=entry.error_code).inc()
            logger.error("fetch_aborted", error=e.message)
            raise

        summary.attempted = result.fetched
        summary.succeeded = result.saved
        summary.details = result.model_dump(exclude={"saved_ids"})
        summary.details["message"] = result.message
        stage_items_total.labels(stage=PipelineStage.FETCH.value, outcome="saved").inc(result.saved)

    async def _run_batch(self, stage: PipelineStage, summary: StageSummary, *, dry_run: bool) -> None:
        async with self.session_factory() as session:
            submission_ids = await self._select_eligible(session, stage)

        summary.attempted = len(submission_ids)
        tracker = None
        if stage is PipelineStage.GENERATE_SPECIFICATIONS:
            tracker = ProgressTracker(
                self.progress,
                stage.value,
                total=len(submission_ids),
                interval_seconds=self.progress_interval,
                clock=self._clock,
            )
            await tracker.start()

        for submission_id in submission_ids:
            failure, _ = await self._process_item(stage, submission_id, dry_run=dry_run)
            if failure is None:
                summary.succeeded += 1
            else:
                summary.add_failure(failure)
            if tracker is not None:
                await tracker.advance()

        if tracker is not None:
            await tracker.finish()

    async def _select_eligible(self, session: AsyncSession, stage: PipelineStage) -> list[str]:
        required = REQUIRED_PREDECESSOR[STAGE_TARGET_STATUS[stage]]
        query = select(Submission.submission_id).where(Submission.status == required.value)

        if stage is PipelineStage.CLEAN_TITLES:
            query = query.where(func.trim(func.coalesce(Submission.select_product, "")) != "")
        elif stage is PipelineStage.FETCH_SHOPIFY_DATA:
            title = func.coalesce(
                func.nullif(func.trim(func.coalesce(Submission.cleaned_product_title, "")), ""),
                func.trim(func.coalesce(Submission.select_product, "")),
            )
            query = query.where(title != "")
        elif stage is PipelineStage.GENERATE_SPECIFICATIONS:
            query = (
                query.join(CatalogMatch, CatalogMatch.submission_id == Submission.submission_id)
                .outerjoin(Specification, Specification.submission_id == Submission.submission_id)
                .where(Specification.id.is_(None))
            )

        result = await session.execute(
            query.order_by(Submission.created_at, Submission.submission_id).limit(self.batch_size)
        )
        return list(result.scalars().all())

    # ── Per-item unit of work ───────────────────────────────

    async def _process_item(
        self,
        stage: PipelineStage,
        submission_id: str,
        *,
        dry_run: bool = False,
        advance: bool = True,
    ) -> tuple[Optional[FailureEntry], dict[str, Any]]:
        """Run one stage for one submission in its own transaction."""
        handler = self._handlers[stage]
        label = None
        async with self.session_factory() as session:
            try:
                submission = await self._lock_submission(session, submission_id)
                label = submission_label(submission)
                details = await handler(session, submission, advance)
                if dry_run:
                    await session.rollback()
                else:
                    await session.commit()
            except Exception as e:
                await session.rollback()
                entry = await self._to_failure(session, submission_id, e, label)
                stage_items_total.labels(stage=stage.value, outcome="failed").inc()
                stage_failures_total.labels(stage=stage.value, error_code=entry.error_code).inc()
                log = logger.warning if isinstance(e, (NotFoundError, SubmissionValidationError)) else logger.error
                log(
                    "submission_failed",
                    submission_id=submission_id,
                    error_code=entry.error_code,
                    field=entry.field,
                    error=entry.error,
                    exc_info=not isinstance(e, (NotFoundError, SubmissionValidationError, StateViolationError)),
                )
                return entry, {}

        stage_items_total.labels(stage=stage.value, outcome="succeeded").inc()
        return None, details

    async def _lock_submission(self, session: AsyncSession, submission_id: str) -> Submission:
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
        return submission

    async def _to_failure(
        self, session: AsyncSession, submission_id: str, exc: Exception, label: Optional[str] = None
    ) -> FailureEntry:
        entry = FailureEntry.from_exception(exc, submission_id=submission_id, label=label)
        if isinstance(exc, LookupValueNotFound):
            try:
                entry.suggestions = await self.resolver.suggest(session, exc.table, exc.value)
                await session.rollback()
            except SQLAlchemyError as e:
                logger.warning("suggestions_unavailable", table=exc.table, error=str(e))
        return entry

    async def _advance(self, session: AsyncSession, submission: Submission, target: SubmissionStatus) -> None:
        result = await attempt_transition(session, submission.submission_id, target)
        if not result.success:
            raise StateViolationError(
                result.error_message or "State transition rejected",
                field="status",
                value=result.previous_status,
            )

    # ── Stage handlers ──────────────────────────────────────

    async def _clean_title(self, session: AsyncSession, submission: Submission, advance: bool) -> dict[str, Any]:
        cleaned = clean_product_name(submission.select_product, self.rules)
        if cleaned is None:
            raise SubmissionValidationError("Product title is empty", field="select_product")
        submission.cleaned_product_title = cleaned
        if advance:
            await self._advance(session, submission, SubmissionStatus.TITLE_CLEANED)
        return {"cleaned_product_title": cleaned}

    async def _match_product(self, session: AsyncSession, submission: Submission, advance: bool) -> dict[str, Any]:
        if self.catalog is None:
            raise RuntimeError("No catalog client configured for the matching stage")
        title = (submission.cleaned_product_title or "").strip() or (submission.select_product or "").strip()
        if not title:
            raise SubmissionValidationError("Product title is empty", field="select_product")

        candidates = await self.catalog.search_products(title, limit=settings.SHOPIFY_SEARCH_LIMIT)
        product = choose_best_match(title, candidates, vendor_hint=vendor_hint_from_title(title))
        if product is None:
            raise UnmatchedProductError(
                f'No matching Shopify product for "{title}" ({len(candidates)} candidates)',
                field="select_product",
                value=title,
            )

        await save_catalog_match(session, submission.submission_id, product)
        if advance:
            await self._advance(session, submission, SubmissionStatus.SHOPIFY_MAPPED)
        return {"shopify_handle": product.handle, "shopify_title": product.title}

    async def _generate_specification(
        self, session: AsyncSession, submission: Submission, advance: bool
    ) -> dict[str, Any]:
        # The materializer performs its own transition (or refresh)
        result = await self.materializer.materialize(session, submission.submission_id)
        return result.model_dump()

    # ── Single-submission operations ────────────────────────

    async def generate_for_submission(self, submission_id: str) -> SingleRunResult:
        """Materialize one named submission, with field-level error detail."""
        return await self._run_single(PipelineStage.GENERATE_SPECIFICATIONS, submission_id, advance=True)

    async def rerun_stage(self, submission_id: str, stage: PipelineStage | str) -> SingleRunResult:
        """
        Re-run one stage for one submission.

        Allowed when the submission sits in the stage's required predecessor
        (a normal forward transition) or already in the stage's target state
        (data refresh, no state change).
        """
        stage = PipelineStage(stage)
        if stage is PipelineStage.FETCH:
            return SingleRunResult(
                success=False,
                submission_id=submission_id,
                stage=stage.value,
                message="The fetch stage cannot be re-run for a single submission",
            )

        target = STAGE_TARGET_STATUS[stage]
        async with self.session_factory() as session:
            submission = (await session.execute(
                select(Submission).where(Submission.submission_id == submission_id)
            )).scalar_one_or_none()
            current = submission.status if submission is not None else None
            label = submission_label(submission) if submission is not None else None

        if current is None or current == SubmissionStatus.IGNORE.value:
            entry = FailureEntry.from_exception(NotFoundError(
                f"Submission {submission_id} not found", field="submission_id", value=submission_id,
            ), submission_id=submission_id)
            return SingleRunResult(
                success=False, submission_id=submission_id, stage=stage.value,
                message=entry.error, failure=entry,
            )

        if current == target.value:
            return await self._run_single(stage, submission_id, advance=False)

        check = check_transition(current, target)
        if not check.allowed:
            entry = FailureEntry.from_exception(
                StateViolationError(check.reason, field="status", value=current),
                submission_id=submission_id,
                label=label,
            )
            return SingleRunResult(
                success=False, submission_id=submission_id, stage=stage.value,
                status=current, message=entry.error, failure=entry,
            )
        return await self._run_single(stage, submission_id, advance=True)

    async def _run_single(self, stage: PipelineStage, submission_id: str, *, advance: bool) -> SingleRunResult:
        bind_run_context(stage.value)
        try:
            failure, details = await self._process_item(stage, submission_id, advance=advance)
        finally:
            clear_run_context()

        if failure is not None:
            await record_failures(self.session_factory, [failure], stage=stage.value)
            return SingleRunResult(
                success=False,
                submission_id=submission_id,
                stage=stage.value,
                message=failure.error,
                failure=failure,
            )

        async with self.session_factory() as session:
            status = (await session.execute(
                select(Submission.status).where(Submission.submission_id == submission_id)
            )).scalar_one_or_none()
        return SingleRunResult(
            success=True,
            submission_id=submission_id,
            stage=stage.value,
            status=status,
            message=f"{stage.value} completed for submission {submission_id}",
            details=details,
        )
