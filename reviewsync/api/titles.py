"""
/api/v1/titles endpoints.
Debugging aid for the product title cleaning rules.
"""

from fastapi import APIRouter, Depends, Query

from reviewsync.dependencies import verify_api_key
from reviewsync.pipeline.title_cleaner import explain_title_cleaning, load_rule_set

router = APIRouter(prefix="/api/v1/titles", tags=["titles"], dependencies=[Depends(verify_api_key)])


@router.get("/explain")
async def explain_title(title: str = Query(..., min_length=1)):
    """Per-rule trace of how a title is cleaned."""
    explanation = explain_title_cleaning(title, load_rule_set())
    return {
        **explanation.model_dump(),
        "applied_rules": [r.id for r in explanation.applied_rules],
        "skipped_rules": [r.id for r in explanation.skipped_rules],
    }


@router.get("/rules")
async def list_rules():
    """The active cleaning rules and exceptions, in evaluation order."""
    rule_set = load_rule_set()
    return {
        "generalRules": [r.model_dump(by_alias=True) for r in rule_set.rules],
        "exceptions": [e.model_dump(by_alias=True) for e in rule_set.exceptions],
    }
