"""
Shared test fixtures.

Every test gets a fresh in-memory SQLite database with the full schema,
seeded reviewers and lookup values, plus helpers to add submissions.
"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from reviewsync.clients.base import CatalogProduct
from reviewsync.models.database import Base
from reviewsync.models.enums import LookupTable, SubmissionStatus
from reviewsync.models.tables import (
    CatalogMatch,
    Submission,
    User,
)
from reviewsync.pipeline.enum_resolver import LOOKUP_MODELS

LOOKUP_VALUES = {
    LookupTable.PRODUCT_TYPES: ["Nasal Snuff", "Snus"],
    LookupTable.PRODUCT_BRANDS: ["Wilsons of Sharrow", "Poschl", "Samuel Gawith"],
    LookupTable.MOISTURE_LEVELS: ["Dry", "Medium", "Moist"],
    LookupTable.GRINDS: ["Fine", "Medium", "Coarse"],
    LookupTable.NICOTINE_LEVELS: ["Low", "Medium", "High"],
    LookupTable.EXPERIENCE_LEVELS: ["Beginner", "Intermediate", "Advanced"],
    LookupTable.TOBACCO_TYPES: ["Virginia", "Burley", "Kentucky"],
    LookupTable.CURES: ["Air", "Fire", "Flue"],
    LookupTable.TASTING_NOTES: ["Citrus", "Menthol", "Smoky", "Sweet"],
}

BASE_TIME = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 0.0, step: float = 0.0):
        self.now = start
        self.step = step

    def __call__(self) -> float:
        current = self.now
        self.now += self.step
        return current

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def lookup_ids(session_factory):
    """Seed reviewers and lookup tables; returns {table: {name: id}}."""
    async with session_factory() as session:
        session.add_all([
            User(name="Alice Smith", jotform_name="Alice Smith"),
            User(name="Bob Jones", jotform_name="bob jones"),
        ])
        created = {}
        for table, names in LOOKUP_VALUES.items():
            model = LOOKUP_MODELS[table]
            created[table] = [model(name=name) for name in names]
            session.add_all(created[table])
        await session.commit()
        return {
            table: {row.name: row.id for row in rows}
            for table, rows in created.items()
        }


@pytest.fixture
def add_submission(session_factory):
    """
    Insert a submission (and by default its catalog match).
    Fields default to a complete, resolvable review.
    """
    counter = {"n": 0}

    async def _add(
        submission_id: str,
        status: SubmissionStatus | str = SubmissionStatus.SHOPIFY_MAPPED,
        *,
        match: bool = True,
        product_type: str = "Nasal Snuff",
        product_brand: str = "Wilsons of Sharrow",
        **fields,
    ) -> None:
        counter["n"] += 1
        values = {
            "reviewer": "Alice Smith",
            "select_product": "Wilsons of Sharrow | Best Brown Snuff",
            "cleaned_product_title": "Wilsons of Sharrow - Best Brown",
            "snuff_type": "Moist",
            "tobacco": "Virginia\nBurley",
            "cure": "Fire",
            "tasting_notes": "Smoky\nSweet",
            "moisture": "Medium",
            "grind": "Fine",
            "nicotine": "High",
            "ease_of_use": "Expert",
            "review": "Rich and smoky.",
            "star_rating": 4,
            "rating_boost": 1,
            "fermented": False,
            "oral_tobacco": False,
            "artisan": True,
            "created_at": BASE_TIME + timedelta(minutes=counter["n"]),
        }
        values.update(fields)
        async with session_factory() as session:
            session.add(Submission(
                submission_id=submission_id,
                status=SubmissionStatus(status).value,
                **values,
            ))
            await session.flush()
            if match:
                session.add(CatalogMatch(
                    submission_id=submission_id,
                    shopify_handle=f"handle-{submission_id}",
                    shopify_title="Wilsons of Sharrow - Best Brown",
                    product_type=product_type,
                    product_brand=product_brand,
                ))
            await session.commit()

    return _add


@pytest.fixture
def catalog_products():
    return [
        CatalogProduct(
            handle="wos-best-brown",
            title="Wilsons of Sharrow - Best Brown",
            product_type="Nasal Snuff",
            vendor="Wilsons of Sharrow",
        ),
        CatalogProduct(
            handle="wos-best-brown-sample",
            title="Wilsons of Sharrow - Best Brown Sample",
            product_type="Nasal Snuff",
            vendor="Wilsons of Sharrow",
        ),
        CatalogProduct(
            handle="sg-kendal-brown",
            title="Samuel Gawith Kendal Brown",
            product_type="Nasal Snuff",
            vendor="Samuel Gawith",
        ),
    ]


def raw_submission(submission_id: str, created_at: str = "2024-03-01 10:00:00", **answers) -> dict:
    """A raw form submission in the forms API shape."""
    defaults = {
        "4": "Alice Smith",
        "10": "Wilsons of Sharrow | Best Brown Snuff",
        "18": "Moist",
        "20": ["Virginia", "Burley"],
        "26": "Medium",
        "27": "Fine",
        "28": "High",
        "29": "Expert",
        "35": "Rich and smoky.",
        "36": "4",
        "38": ["Fire"],
        "40": ["Smoky", "Sweet"],
        "41": "No",
        "42": "No",
        "43": "Yes",
        "46": "1",
    }
    defaults.update(answers)
    return {
        "id": submission_id,
        "created_at": created_at,
        "answers": {qid: {"answer": value} for qid, value in defaults.items()},
    }
