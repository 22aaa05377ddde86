"""
Ingest: pull new form submissions and store them in the fetched state.

The fetch filter asks for rows created after the newest stored submission,
excluding that submission's id so the boundary row is not fetched again.
"""

from datetime import datetime, timezone
from typing import Any, Optional

import structlog
from dateutil import parser as dateutil_parser
from pydantic import BaseModel, Field, computed_field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from reviewsync.clients.base import FormsClient
from reviewsync.models.database import dialect_insert
from reviewsync.models.enums import SubmissionStatus
from reviewsync.models.tables import Submission

logger = structlog.get_logger(__name__)

FETCH_LIMIT = 1000
JOTFORM_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Jotform question id -> submissions column
TEXT_ANSWERS = {
    "4": "reviewer",
    "10": "select_product",
    "18": "snuff_type",
    "20": "tobacco",
    "26": "moisture",
    "27": "grind",
    "28": "nicotine",
    "29": "ease_of_use",
    "35": "review",
    "38": "cure",
    "40": "tasting_notes",
}
NUMBER_ANSWERS = {"36": "star_rating", "46": "rating_boost"}
YES_NO_ANSWERS = {"41": "fermented", "42": "oral_tobacco", "43": "artisan"}


class SubmissionRecord(BaseModel):
    submission_id: str
    reviewer: str = ""
    select_product: str = ""
    snuff_type: str = ""
    tobacco: str = ""
    moisture: str = ""
    grind: str = ""
    nicotine: str = ""
    ease_of_use: str = ""
    review: str = ""
    cure: str = ""
    tasting_notes: str = ""
    star_rating: int = 0
    rating_boost: int = 0
    fermented: bool = False
    oral_tobacco: bool = False
    artisan: bool = False
    created_at: datetime
    raw_json: dict[str, Any] = Field(default_factory=dict)


class InvalidSubmission(BaseModel):
    reason: str
    submission_id: Optional[str] = None
    error: Optional[str] = None


class IngestResult(BaseModel):
    fetched: int = 0
    saved: int = 0
    skipped_existing: int = 0
    skipped_invalid: int = 0
    invalid_reasons: dict[str, int] = Field(default_factory=dict)
    saved_ids: list[str] = Field(default_factory=list)

    @computed_field
    @property
    def message(self) -> str:
        if self.fetched == 0:
            return "No new submissions available from Jotform."
        parts = [f"Downloaded {self.saved} new submission{'s' if self.saved != 1 else ''}."]
        if self.skipped_existing:
            parts.append(f"Skipped {self.skipped_existing} already stored.")
        if self.skipped_invalid:
            parts.append(f"Skipped {self.skipped_invalid} invalid.")
        return " ".join(parts)


def _answer_text(answer: Any) -> str:
    """Flatten a Jotform answer value into text; lists become newline-delimited."""
    if answer is None:
        return ""
    if isinstance(answer, list):
        return "\n".join(str(a).strip() for a in answer if str(a).strip())
    if isinstance(answer, dict):
        return " ".join(str(v).strip() for v in answer.values() if str(v).strip())
    return str(answer).strip()


def _parse_int(value: str) -> int:
    digits = ""
    for ch in value.strip():
        if ch.isdigit() or (ch == "-" and not digits):
            digits += ch
        else:
            break
    try:
        return int(digits)
    except ValueError:
        return 0


def _parse_created_at(value: Any) -> datetime:
    if isinstance(value, str) and value.strip():
        try:
            parsed = dateutil_parser.parse(value.strip())
        except (ValueError, OverflowError):
            parsed = None
        if parsed is not None:
            return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return datetime.now(timezone.utc)


def format_submission(raw: Any) -> SubmissionRecord | InvalidSubmission:
    """Map a raw Jotform submission onto submissions columns."""
    if not isinstance(raw, dict) or not raw.get("id"):
        return InvalidSubmission(reason="missing_id")

    answers: dict[str, Any] = {}
    for qid, answer in (raw.get("answers") or {}).items():
        if isinstance(answer, dict):
            answers[str(qid)] = answer.get("answer")

    fields: dict[str, Any] = {}
    for qid, column in TEXT_ANSWERS.items():
        fields[column] = _answer_text(answers.get(qid))
    for qid, column in NUMBER_ANSWERS.items():
        fields[column] = _parse_int(_answer_text(answers.get(qid)))
    for qid, column in YES_NO_ANSWERS.items():
        fields[column] = _answer_text(answers.get(qid)).lower() == "yes"

    return SubmissionRecord(
        submission_id=str(raw["id"]),
        created_at=_parse_created_at(raw.get("created_at")),
        raw_json=raw,
        **fields,
    )


def build_fetch_filter(
    latest: Optional[tuple[str, datetime]],
    now: Optional[datetime] = None,
) -> dict[str, str]:
    """Jotform filter for submissions newer than `latest` (id, created_at)."""
    if latest is None:
        now = now or datetime.now(timezone.utc)
        start = datetime(now.year - 1, 1, 1)
        return {"created_at:gt": start.strftime(JOTFORM_DATE_FORMAT)}
    latest_id, latest_created = latest
    return {
        "id:ne": latest_id,
        "created_at:gt": latest_created.strftime(JOTFORM_DATE_FORMAT),
    }


async def latest_submission(session: AsyncSession) -> Optional[tuple[str, datetime]]:
    result = await session.execute(
        select(Submission.submission_id, Submission.created_at)
        .order_by(Submission.created_at.desc())
        .limit(1)
    )
    row = result.first()
    return (row.submission_id, row.created_at) if row else None


async def ingest_new_submissions(
    session: AsyncSession,
    forms: FormsClient,
    limit: int = FETCH_LIMIT,
) -> IngestResult:
    """
    Fetch and store new submissions inside the caller's transaction.

    UpstreamError from the client propagates untouched: nothing is written
    for a failed fetch.
    """
    filters = build_fetch_filter(await latest_submission(session))
    raw_submissions = await forms.fetch_submissions(filters, limit=limit)

    outcome = IngestResult(fetched=len(raw_submissions))
    if not raw_submissions:
        return outcome

    records: list[SubmissionRecord] = []
    for raw in raw_submissions:
        formatted = format_submission(raw)
        if isinstance(formatted, InvalidSubmission):
            outcome.skipped_invalid += 1
            outcome.invalid_reasons[formatted.reason] = outcome.invalid_reasons.get(formatted.reason, 0) + 1
            logger.warning("invalid_submission_skipped", reason=formatted.reason)
            continue
        records.append(formatted)

    # Last occurrence wins for ids repeated within one page
    by_id = {r.submission_id: r for r in records}
    existing = set()
    if by_id:
        result = await session.execute(
            select(Submission.submission_id).where(Submission.submission_id.in_(list(by_id)))
        )
        existing = set(result.scalars().all())
    outcome.skipped_existing = len(existing)

    new_rows = []
    for record in by_id.values():
        if record.submission_id in existing:
            continue
        row = record.model_dump()
        row["status"] = SubmissionStatus.FETCHED.value
        new_rows.append(row)

    if new_rows:
        stmt = dialect_insert(session, Submission).on_conflict_do_nothing(
            index_elements=[Submission.submission_id]
        )
        await session.execute(stmt, new_rows)

    outcome.saved = len(new_rows)
    outcome.saved_ids = [r["submission_id"] for r in new_rows]
    logger.info(
        "submissions_ingested",
        fetched=outcome.fetched,
        saved=outcome.saved,
        skipped_existing=outcome.skipped_existing,
        skipped_invalid=outcome.skipped_invalid,
    )
    return outcome
