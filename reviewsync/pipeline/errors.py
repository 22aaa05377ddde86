"""
Pipeline error taxonomy and the structured failure entries built from it.

Taxonomy:
- not-found        submission, user or lookup value absent
- state-violation  submission is not in the stage's required predecessor state
- validation       required field missing or malformed
- upstream         external API failed or returned an unexpected shape
- infra            database connection / transaction failure (SQLAlchemyError)
"""

from typing import Optional

from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError

from reviewsync.models.enums import ErrorCode, LookupTable


class PipelineError(Exception):
    """Base class for expected, per-submission pipeline failures."""

    error_code: str = ErrorCode.INTERNAL.value
    category: str = "Pipeline error"

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        field: Optional[str] = None,
        value: Optional[str] = None,
    ):
        self.message = message
        if error_code is not None:
            self.error_code = error_code
        self.field = field
        self.value = value
        super().__init__(message)


class NotFoundError(PipelineError):
    error_code = ErrorCode.NOT_FOUND.value
    category = "Not found"


class LookupValueNotFound(NotFoundError):
    """A free-text value has no case-insensitive match in its lookup table."""

    error_code = ErrorCode.LOOKUP_VALUE.value
    category = "Unknown lookup value"

    def __init__(self, table: str, value: str, field: Optional[str] = None):
        self.table = table
        super().__init__(
            f'Value "{value}" not found in {table}',
            field=field or LOOKUP_TABLE_FIELDS.get(table),
            value=value,
        )


class UnmatchedProductError(NotFoundError):
    """No catalog product could be chosen for a submission's title."""

    error_code = ErrorCode.UNMATCHED.value
    category = "No Shopify match"


class StateViolationError(PipelineError):
    error_code = ErrorCode.STATE_VIOLATION.value
    category = "Invalid state"


class SubmissionValidationError(PipelineError):
    error_code = ErrorCode.VALIDATION.value
    category = "Validation failed"


class UpstreamError(PipelineError):
    error_code = ErrorCode.UPSTREAM.value
    category = "Upstream API error"

    def __init__(self, service: str, message: str, status_code: Optional[int] = None):
        self.service = service
        self.status_code = status_code
        super().__init__(f"[{service}] {message}")


# Submission field that feeds each lookup table
LOOKUP_TABLE_FIELDS: dict[str, str] = {
    LookupTable.PRODUCT_TYPES.value: "product_type",
    LookupTable.PRODUCT_BRANDS.value: "product_brand",
    LookupTable.MOISTURE_LEVELS.value: "moisture",
    LookupTable.GRINDS.value: "grind",
    LookupTable.NICOTINE_LEVELS.value: "nicotine",
    LookupTable.EXPERIENCE_LEVELS.value: "ease_of_use",
    LookupTable.TOBACCO_TYPES.value: "tobacco",
    LookupTable.CURES.value: "cure",
    LookupTable.TASTING_NOTES.value: "tasting_notes",
}


class FailureEntry(BaseModel):
    """One itemized, display-ready failure. `label` names the submission."""
    submission_id: Optional[str] = None
    label: str = "Unknown"
    category: str
    error: str
    error_code: str
    field: Optional[str] = None
    value: Optional[str] = None
    table: Optional[str] = None
    suggestions: list[str] = Field(default_factory=list)

    @classmethod
    def from_exception(
        cls,
        exc: BaseException,
        submission_id: Optional[str] = None,
        label: Optional[str] = None,
    ) -> "FailureEntry":
        label = label or "Unknown"
        if isinstance(exc, PipelineError):
            return cls(
                submission_id=submission_id,
                label=label,
                category=exc.category,
                error=exc.message,
                error_code=exc.error_code,
                field=exc.field,
                value=exc.value,
                table=getattr(exc, "table", None),
            )
        if isinstance(exc, SQLAlchemyError):
            return cls(
                submission_id=submission_id,
                label=label,
                category="Database error",
                error=str(exc),
                error_code=ErrorCode.INFRA.value,
            )
        return cls(
            submission_id=submission_id,
            label=label,
            category="Unexpected error",
            error=str(exc) or exc.__class__.__name__,
            error_code=ErrorCode.INTERNAL.value,
        )


# HTTP status for each error code at the API boundary
HTTP_STATUS_BY_ERROR_CODE: dict[str, int] = {
    ErrorCode.NOT_FOUND.value: 404,
    ErrorCode.LOOKUP_VALUE.value: 400,
    ErrorCode.STATE_VIOLATION.value: 400,
    ErrorCode.VALIDATION.value: 400,
    ErrorCode.UNMATCHED.value: 400,
    ErrorCode.UPSTREAM.value: 502,
    ErrorCode.INFRA.value: 503,
}


def http_status_for(error_code: Optional[str]) -> int:
    return HTTP_STATUS_BY_ERROR_CODE.get(error_code or "", 500)
