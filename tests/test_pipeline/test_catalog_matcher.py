"""
Tests for catalog product matching.
"""

from reviewsync.clients.base import CatalogProduct
from reviewsync.models.enums import SubmissionStatus
from reviewsync.models.tables import CatalogMatch
from reviewsync.pipeline.catalog_matcher import (
    choose_best_match,
    normalize_title,
    save_catalog_match,
    vendor_hint_from_title,
)


def _product(handle, title, vendor=None):
    return CatalogProduct(handle=handle, title=title, product_type="Nasal Snuff", vendor=vendor)


class TestNormalizeTitle:
    def test_lowercases_and_strips_punctuation(self):
        assert normalize_title("Wilsons of Sharrow - Best Brown!") == "wilsons of sharrow best brown"

    def test_blank(self):
        assert normalize_title(None) == ""
        assert normalize_title("") == ""


class TestVendorHint:
    def test_brand_prefix(self):
        assert vendor_hint_from_title("Wilsons of Sharrow - Best Brown") == "Wilsons of Sharrow"

    def test_no_separator(self):
        assert vendor_hint_from_title("Samuel Gawith Kendal Brown") is None
        assert vendor_hint_from_title(None) is None


class TestChooseBestMatch:
    def test_exact_title_wins(self, catalog_products):
        chosen = choose_best_match("Wilsons of Sharrow - Best Brown", catalog_products)
        assert chosen.handle == "wos-best-brown"

    def test_exact_match_ignores_case_and_punctuation(self, catalog_products):
        chosen = choose_best_match("wilsons of sharrow best brown", catalog_products)
        assert chosen.handle == "wos-best-brown"

    def test_vendor_hint_breaks_ties(self):
        candidates = [
            _product("other-mint", "Toque Mint Extra", vendor="Toque"),
            _product("gh-mint", "Mint Extra Strong", vendor="Gawith Hoggarth"),
        ]
        chosen = choose_best_match("Mint Extra", candidates, vendor_hint="Gawith Hoggarth")
        assert chosen.handle == "gh-mint"

    def test_single_candidate_accepted(self):
        only = _product("kendal", "Samuel Gawith Kendal Brown 25g")
        assert choose_best_match("Kendal Brown", [only]) is only

    def test_ambiguous_is_unmatched(self):
        candidates = [_product("a", "Best Brown A"), _product("b", "Best Brown B")]
        assert choose_best_match("Best Brown", candidates) is None

    def test_no_candidates(self):
        assert choose_best_match("Best Brown", []) is None


class TestSaveCatalogMatch:
    async def test_upsert_replaces_existing(self, session_factory, add_submission):
        await add_submission("s1", SubmissionStatus.TITLE_CLEANED, match=False)

        async with session_factory() as session:
            await save_catalog_match(session, "s1", _product("first", "First", vendor="A"))
            await session.commit()
        async with session_factory() as session:
            await save_catalog_match(session, "s1", _product("second", "Second", vendor="B"))
            await session.commit()

        async with session_factory() as session:
            match = await session.get(CatalogMatch, "s1")
        assert match.shopify_handle == "second"
        assert match.product_brand == "B"
