"""
Python enums matching the values stored in the database.
Values MUST match the CHECK constraints in tables.py exactly.
"""

from enum import Enum


class SubmissionStatus(str, Enum):
    FETCHED = "fetched"
    TITLE_CLEANED = "title_cleaned"
    SHOPIFY_MAPPED = "shopify_mapped"
    SPECIFICATION_GENERATED = "specification_generated"
    ERROR = "error"
    # Excluded from every pipeline; only reachable by admin override
    IGNORE = "ignore"


class PipelineStage(str, Enum):
    """Named stage operations, in pipeline order."""
    FETCH = "fetch"
    CLEAN_TITLES = "clean-titles"
    FETCH_SHOPIFY_DATA = "fetch-shopify-data"
    GENERATE_SPECIFICATIONS = "generate-specifications"


class ErrorCode(str, Enum):
    NOT_FOUND = "ERR_NOT_FOUND"
    LOOKUP_VALUE = "ERR_LOOKUP_VALUE"
    STATE_VIOLATION = "ERR_STATE_VIOLATION"
    VALIDATION = "ERR_VALIDATION"
    UPSTREAM = "ERR_UPSTREAM"
    INFRA = "ERR_INFRA"
    UNMATCHED = "ERR_UNMATCHED"
    INTERNAL = "ERR_INTERNAL"


class LookupTable(str, Enum):
    PRODUCT_TYPES = "enum_product_types"
    PRODUCT_BRANDS = "enum_product_brands"
    MOISTURE_LEVELS = "enum_moisture_levels"
    GRINDS = "enum_grinds"
    NICOTINE_LEVELS = "enum_nicotine_levels"
    EXPERIENCE_LEVELS = "enum_experience_levels"
    TOBACCO_TYPES = "enum_tobacco_types"
    CURES = "enum_cures"
    TASTING_NOTES = "enum_tasting_notes"


STAGE_TARGET_STATUS = {
    PipelineStage.FETCH: SubmissionStatus.FETCHED,
    PipelineStage.CLEAN_TITLES: SubmissionStatus.TITLE_CLEANED,
    PipelineStage.FETCH_SHOPIFY_DATA: SubmissionStatus.SHOPIFY_MAPPED,
    PipelineStage.GENERATE_SPECIFICATIONS: SubmissionStatus.SPECIFICATION_GENERATED,
}
