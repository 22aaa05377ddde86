"""
SQLAlchemy ORM models.
Portable between PostgreSQL (production) and SQLite (tests): no native ENUM
types, JSON stored as JSONB only on PostgreSQL.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from reviewsync.models.database import Base
from reviewsync.models.enums import SubmissionStatus

JsonType = JSON().with_variant(JSONB(), "postgresql")

_STATUS_VALUES = ", ".join(f"'{s.value}'" for s in SubmissionStatus)


# ────────────────────────────────────────────────────────────
# SUBMISSIONS
# ────────────────────────────────────────────────────────────
class Submission(Base):
    __tablename__ = "submissions"

    submission_id: Mapped[str] = mapped_column(Text, primary_key=True)
    reviewer: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    select_product: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    cleaned_product_title: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    snuff_type: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    # Newline-delimited multi-value fields
    tobacco: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    cure: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    tasting_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    moisture: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    grind: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    nicotine: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    ease_of_use: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    review: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    star_rating: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    rating_boost: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    fermented: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    oral_tobacco: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    artisan: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    raw_json: Mapped[Optional[dict]] = mapped_column(JsonType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    status: Mapped[str] = mapped_column(
        String(32), nullable=False,
        default=SubmissionStatus.FETCHED.value,
        server_default=SubmissionStatus.FETCHED.value,
    )
    status_updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    last_updated: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (
        CheckConstraint(f"status IN ({_STATUS_VALUES})", name="ck_submissions_status"),
        Index("idx_submissions_status", "status"),
        Index("idx_submissions_created", "created_at"),
    )


# ────────────────────────────────────────────────────────────
# MATCHED CATALOG RECORDS (one-to-one with submissions)
# ────────────────────────────────────────────────────────────
class CatalogMatch(Base):
    __tablename__ = "catalog_matches"

    submission_id: Mapped[str] = mapped_column(
        Text, ForeignKey("submissions.submission_id", ondelete="CASCADE"), primary_key=True
    )
    shopify_handle: Mapped[str] = mapped_column(Text, nullable=False)
    shopify_title: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    product_type: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    product_brand: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )


# ────────────────────────────────────────────────────────────
# USERS
# ────────────────────────────────────────────────────────────
class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    jotform_name: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    __table_args__ = (
        Index("idx_users_jotform_name", "jotform_name"),
    )


# ────────────────────────────────────────────────────────────
# LOOKUP TABLES
# ────────────────────────────────────────────────────────────
class LookupColumns:
    """Shared (id, name) shape of every lookup table."""

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(Text, nullable=False, unique=True)


class ProductType(LookupColumns, Base):
    __tablename__ = "enum_product_types"


class ProductBrand(LookupColumns, Base):
    __tablename__ = "enum_product_brands"


class MoistureLevel(LookupColumns, Base):
    __tablename__ = "enum_moisture_levels"


class Grind(LookupColumns, Base):
    __tablename__ = "enum_grinds"


class NicotineLevel(LookupColumns, Base):
    __tablename__ = "enum_nicotine_levels"


class ExperienceLevel(LookupColumns, Base):
    __tablename__ = "enum_experience_levels"


class TobaccoType(LookupColumns, Base):
    __tablename__ = "enum_tobacco_types"


class Cure(LookupColumns, Base):
    __tablename__ = "enum_cures"


class TastingNote(LookupColumns, Base):
    __tablename__ = "enum_tasting_notes"


# ────────────────────────────────────────────────────────────
# SPECIFICATIONS
# ────────────────────────────────────────────────────────────
class Specification(Base):
    __tablename__ = "specifications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    submission_id: Mapped[str] = mapped_column(
        Text, ForeignKey("submissions.submission_id"), nullable=False, unique=True
    )
    shopify_handle: Mapped[str] = mapped_column(Text, nullable=False)
    product_type_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("enum_product_types.id"), nullable=False
    )
    product_brand_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("enum_product_brands.id"), nullable=True
    )
    moisture_level_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("enum_moisture_levels.id"), nullable=True
    )
    grind_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("enum_grinds.id"), nullable=True
    )
    nicotine_level_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("enum_nicotine_levels.id"), nullable=True
    )
    experience_level_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("enum_experience_levels.id"), nullable=True
    )
    is_fermented: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_oral_tobacco: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_artisan: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    review: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    star_rating: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    rating_boost: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (
        Index("idx_specifications_handle", "shopify_handle"),
    )


# ────────────────────────────────────────────────────────────
# JUNCTIONS
# ────────────────────────────────────────────────────────────
class SpecTobaccoType(Base):
    __tablename__ = "spec_tobacco_types"

    specification_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("specifications.id", ondelete="CASCADE"), primary_key=True
    )
    enum_tobacco_type_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("enum_tobacco_types.id"), primary_key=True
    )


class SpecCure(Base):
    __tablename__ = "spec_cures"

    specification_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("specifications.id", ondelete="CASCADE"), primary_key=True
    )
    enum_cure_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("enum_cures.id"), primary_key=True
    )


class SpecTastingNote(Base):
    __tablename__ = "spec_tasting_notes"

    specification_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("specifications.id", ondelete="CASCADE"), primary_key=True
    )
    enum_tasting_note_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("enum_tasting_notes.id"), primary_key=True
    )


# ────────────────────────────────────────────────────────────
# TRANSFORM LOG (append-only failure/event log)
# ────────────────────────────────────────────────────────────
class TransformLog(Base):
    __tablename__ = "transform_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    # No FK: failures not attributable to one submission are allowed
    submission_id: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    stage: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    error_code: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    details_json: Mapped[Optional[dict]] = mapped_column(JsonType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (
        Index("idx_transform_log_submission", "submission_id"),
        Index("idx_transform_log_created", "created_at"),
    )
