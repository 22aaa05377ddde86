"""
Free-text label -> lookup-table id resolution with a TTL cache.

Matching is exact and case-insensitive. The only rewriting is the alias
table below, applied before lookup.
"""

import difflib
import time
from typing import Callable, Mapping, Optional, Type

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from reviewsync.models.enums import LookupTable
from reviewsync.models.tables import (
    Cure,
    ExperienceLevel,
    Grind,
    LookupColumns,
    MoistureLevel,
    NicotineLevel,
    ProductBrand,
    ProductType,
    TastingNote,
    TobaccoType,
)
from reviewsync.observability.metrics import enum_cache_lookups_total
from reviewsync.pipeline.errors import LookupValueNotFound

logger = structlog.get_logger(__name__)


LOOKUP_MODELS: dict[LookupTable, Type[LookupColumns]] = {
    LookupTable.PRODUCT_TYPES: ProductType,
    LookupTable.PRODUCT_BRANDS: ProductBrand,
    LookupTable.MOISTURE_LEVELS: MoistureLevel,
    LookupTable.GRINDS: Grind,
    LookupTable.NICOTINE_LEVELS: NicotineLevel,
    LookupTable.EXPERIENCE_LEVELS: ExperienceLevel,
    LookupTable.TOBACCO_TYPES: TobaccoType,
    LookupTable.CURES: Cure,
    LookupTable.TASTING_NOTES: TastingNote,
}

# Surface labels the form uses that differ from the stored name.
# Keys are lowercased.
LOOKUP_ALIASES: dict[LookupTable, dict[str, str]] = {
    LookupTable.EXPERIENCE_LEVELS: {"expert": "Advanced"},
}


class EnumCache:
    """
    (table, lowercased name) -> id, with per-entry expiry.

    One instance per pipeline run; never shared as a module global.
    """

    def __init__(self, ttl_seconds: float = 600.0, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[tuple[str, str], tuple[int, float]] = {}

    @staticmethod
    def _key(table: LookupTable | str, name: str) -> tuple[str, str]:
        return LookupTable(table).value, name.lower()

    def get(self, table: LookupTable | str, name: str) -> Optional[int]:
        key = self._key(table, name)
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        return value

    def set(self, table: LookupTable | str, name: str, value: int) -> None:
        self._entries[self._key(table, name)] = (value, self._clock() + self.ttl_seconds)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


class EnumResolver:
    def __init__(
        self,
        cache: Optional[EnumCache] = None,
        aliases: Optional[Mapping[LookupTable | str, Mapping[str, str]]] = None,
    ):
        self.cache = cache if cache is not None else EnumCache()
        self.aliases: dict[LookupTable, dict[str, str]] = {
            table: dict(mapping) for table, mapping in LOOKUP_ALIASES.items()
        }
        for table, mapping in (aliases or {}).items():
            self.aliases.setdefault(LookupTable(table), {}).update(
                {k.lower(): v for k, v in mapping.items()}
            )

    def apply_alias(self, table: LookupTable | str, name: str) -> str:
        table = LookupTable(table)
        return self.aliases.get(table, {}).get(name.strip().lower(), name.strip())

    async def resolve(self, session: AsyncSession, table: LookupTable | str, name: str) -> int:
        """
        Id of the row in `table` whose name matches `name` case-insensitively.

        Raises LookupValueNotFound carrying the post-alias value.
        """
        table = LookupTable(table)
        value = self.apply_alias(table, name)

        cached = self.cache.get(table, value)
        if cached is not None:
            enum_cache_lookups_total.labels(result="hit").inc()
            return cached
        enum_cache_lookups_total.labels(result="miss").inc()

        model = LOOKUP_MODELS[table]
        result = await session.execute(
            select(model.id).where(func.lower(model.name) == value.lower()).limit(1)
        )
        found = result.scalar_one_or_none()
        if found is None:
            logger.debug("lookup_value_not_found", table=table.value, value=value)
            raise LookupValueNotFound(table.value, value)

        self.cache.set(table, value, found)
        return found

    async def resolve_optional(
        self, session: AsyncSession, table: LookupTable | str, name: Optional[str]
    ) -> Optional[int]:
        """None for blank input; otherwise as resolve()."""
        if name is None or not name.strip():
            return None
        return await self.resolve(session, table, name)

    async def resolve_many(
        self, session: AsyncSession, table: LookupTable | str, names: list[str]
    ) -> list[int]:
        """Resolve each name, de-duplicating ids while keeping first-seen order."""
        ids: list[int] = []
        for name in names:
            resolved = await self.resolve(session, table, name)
            if resolved not in ids:
                ids.append(resolved)
        return ids

    async def suggest(
        self,
        session: AsyncSession,
        table: LookupTable | str,
        value: Optional[str],
        limit: int = 5,
    ) -> list[str]:
        """Up to `limit` valid names: closest matches first, then alphabetical."""
        model = LOOKUP_MODELS[LookupTable(table)]
        result = await session.execute(select(model.name).order_by(model.name))
        names = list(result.scalars().all())

        suggestions: list[str] = []
        if value:
            by_lower = {n.lower(): n for n in names}
            close = difflib.get_close_matches(value.lower(), list(by_lower), n=limit, cutoff=0.5)
            suggestions.extend(by_lower[c] for c in close)
        for name in names:
            if len(suggestions) >= limit:
                break
            if name not in suggestions:
                suggestions.append(name)
        return suggestions[:limit]
