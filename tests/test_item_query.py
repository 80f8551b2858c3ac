"""
Tests for the item query executor.

Tests cover:
- Light path insertion order and cursor chaining
- Heavy path total order under price, rarity and default sorts
- Sentinel ordering (unpriced last in both price directions)
- Rank fallback (unranked last / excluded) and rank windows
- Displayed listing choice across currencies
- Currency scenario: price-sort eligibility per currency and annotations
- Newest / oldest toggle
- Malformed cursor fallback, limit clamping
- Database error translation
"""

import pytest
from datetime import timedelta
from decimal import Decimal
from unittest.mock import patch
from sqlalchemy.exc import OperationalError
from sqlmodel import Session

from app.core.exceptions import QueryExecutionFailure, UpstreamTimeout
from app.models import Currency, CurrencyKind, ListingStatus
from app.services.currency import CurrencyMeta, native_currency
from app.services.filters import ItemFilters, PriceSort, RaritySort, RecencySort
from app.services.item_query import ItemQueryExecutor, ListingQuote, pick_listing

from conftest import ETH, make_auction, make_item, make_listing, make_rarity, utc

USDX = CurrencyMeta(id="usdx", symbol="USDX", decimals=6, kind=CurrencyKind.ERC20)


def paginate(session: Session, collection, filters: ItemFilters, currency=None, limit: int = 2):
    """Follow next cursors to the end; return the token ids of every page."""
    executor = ItemQueryExecutor(session, currency or native_currency())
    pages, cursor = [], None
    for _ in range(100):
        page = executor.fetch_page(collection, filters, cursor=cursor, limit=limit)
        pages.append([item.token_id for item in page.items])
        cursor = page.next_cursor
        if cursor is None:
            return pages
    raise AssertionError("pagination did not terminate")


def flat(pages):
    return [token for page in pages for token in page]


class TestLightPath:
    """Plain filtered read in insertion order."""

    def test_insertion_order_and_chaining(self, test_session, collection):
        for n in range(1, 6):
            make_item(test_session, collection, str(n))
        pages = paginate(test_session, collection, ItemFilters(), limit=2)
        assert pages == [["1", "2"], ["3", "4"], ["5"]]

    def test_exact_multiple_has_no_trailing_cursor(self, test_session, collection):
        for n in range(1, 5):
            make_item(test_session, collection, str(n))
        page = ItemQueryExecutor(test_session, native_currency()).fetch_page(collection, ItemFilters(), limit=4)
        assert len(page.items) == 4
        assert page.next_cursor is None
        assert page.path == "light"

    def test_malformed_cursor_restarts(self, test_session, collection):
        for n in range(1, 4):
            make_item(test_session, collection, str(n))
        executor = ItemQueryExecutor(test_session, native_currency())
        page = executor.fetch_page(collection, ItemFilters(), cursor="garbage!!", limit=2)
        assert [i.token_id for i in page.items] == ["1", "2"]

    def test_limit_is_clamped(self, test_session, collection):
        for n in range(1, 4):
            make_item(test_session, collection, str(n))
        executor = ItemQueryExecutor(test_session, native_currency())
        assert len(executor.fetch_page(collection, ItemFilters(), limit=0).items) == 1
        assert len(executor.fetch_page(collection, ItemFilters(), limit=-3).items) == 1

    def test_limit_upper_bound(self, test_session, collection):
        for n in range(1, 51):
            make_item(test_session, collection, str(n))
        page = ItemQueryExecutor(test_session, native_currency()).fetch_page(collection, ItemFilters(), limit=500)
        assert len(page.items) == 48
        assert page.next_cursor is not None

    def test_auction_flag(self, test_session, collection):
        auctioned = make_item(test_session, collection, "1")
        make_item(test_session, collection, "2")
        make_auction(test_session, auctioned)
        page = ItemQueryExecutor(test_session, native_currency()).fetch_page(collection, ItemFilters())
        assert [i.is_auctioned for i in page.items] == [True, False]


class TestPriceSort:
    """Heavy path ordered by cheapest price in the resolved currency."""

    @pytest.fixture
    def priced(self, test_session, collection):
        prices = {"1": 30, "2": 10, "3": None, "4": 20, "5": 10, "6": None, "7": 5}
        for token, price in prices.items():
            item = make_item(test_session, collection, token)
            if price is not None:
                make_listing(test_session, item, price * ETH)
                # A pricier second listing must not change the key
                make_listing(test_session, item, (price + 100) * ETH)
        return collection

    def test_low_to_high_total_order(self, test_session, priced):
        pages = paginate(test_session, priced, ItemFilters(price_sort=PriceSort.LOW_TO_HIGH), limit=2)
        # Equal prices (2, 5) and unpriced items (3, 6) tie-break by id = insertion order
        assert flat(pages) == ["7", "2", "5", "4", "1", "3", "6"]

    def test_high_to_low_keeps_unpriced_last(self, test_session, priced):
        pages = paginate(test_session, priced, ItemFilters(price_sort=PriceSort.HIGH_TO_LOW), limit=3)
        assert flat(pages) == ["1", "4", "2", "5", "7", "3", "6"]

    @pytest.mark.parametrize("limit", [1, 2, 3, 7, 48])
    def test_each_item_exactly_once(self, test_session, priced, limit):
        tokens = flat(paginate(test_session, priced, ItemFilters(price_sort=PriceSort.LOW_TO_HIGH), limit=limit))
        assert sorted(tokens) == sorted(["1", "2", "3", "4", "5", "6", "7"])

    def test_inactive_listing_is_unpriced(self, test_session, collection):
        cheap_cancelled = make_item(test_session, collection, "1")
        listed = make_item(test_session, collection, "2")
        make_listing(test_session, cheap_cancelled, 1 * ETH, status=ListingStatus.CANCELLED)
        make_listing(test_session, listed, 50 * ETH)
        pages = paginate(test_session, collection, ItemFilters(price_sort=PriceSort.LOW_TO_HIGH))
        assert flat(pages) == ["2", "1"]

    def test_sort_mode_is_echoed(self, test_session, priced):
        page = ItemQueryExecutor(test_session, native_currency()).fetch_page(
            priced, ItemFilters(price_sort=PriceSort.HIGH_TO_LOW)
        )
        assert page.sort_mode == "price_desc"
        assert page.path == "heavy"


class TestCurrencyScenario:
    """A: 10 native, B: 5 USDX (6 decimals), C: unlisted."""

    def test_native_sort_leaves_out_token_only_listings(self, test_session, market):
        filters = ItemFilters(price_sort=PriceSort.LOW_TO_HIGH)
        assert flat(paginate(test_session, market["collection"], filters)) == ["1", "3"]

    def test_token_sort_leaves_out_native_only_listings(self, test_session, market):
        filters = ItemFilters(price_sort=PriceSort.LOW_TO_HIGH)
        assert flat(paginate(test_session, market["collection"], filters, currency=USDX)) == ["2", "3"]

    def test_high_to_low_keeps_unlisted_last(self, test_session, market):
        filters = ItemFilters(price_sort=PriceSort.HIGH_TO_LOW)
        assert flat(paginate(test_session, market["collection"], filters, limit=1)) == ["1", "3"]

    def test_listed_in_both_currencies_takes_part(self, test_session, market):
        make_listing(test_session, market["A"], 7_500000, currency_id="usdx")
        filters = ItemFilters(price_sort=PriceSort.LOW_TO_HIGH)
        assert flat(paginate(test_session, market["collection"], filters, currency=USDX)) == ["2", "1", "3"]

    def test_no_price_sort_keeps_every_item(self, test_session, market):
        filters = ItemFilters(traits={"Background": frozenset({"Blue", "Red"})})
        assert sorted(flat(paginate(test_session, market["collection"], filters, currency=USDX))) == ["1", "2", "3"]

    def test_annotations(self, test_session, market):
        page = ItemQueryExecutor(test_session, native_currency()).fetch_page(market["collection"], ItemFilters())
        by_token = {i.token_id: i for i in page.items}

        assert by_token["1"].is_listed
        assert by_token["1"].listing_price == 10.0
        assert by_token["1"].listing_currency_symbol == "ETN"

        assert by_token["2"].is_listed
        assert by_token["2"].listing_price == 5.0
        assert by_token["2"].listing_currency_symbol == "USDX"

        assert not by_token["3"].is_listed
        assert by_token["3"].listing_price is None
        assert by_token["3"].listing_currency_symbol is None

    def test_native_listing_displayed_in_token_view(self, test_session, market):
        make_listing(test_session, market["A"], 7_500000, currency_id="usdx")
        native_page = ItemQueryExecutor(test_session, native_currency()).fetch_page(market["collection"], ItemFilters())
        token_page = ItemQueryExecutor(test_session, USDX).fetch_page(market["collection"], ItemFilters())
        for page in (native_page, token_page):
            assert page.items[0].listing_currency_symbol == "ETN"
            assert page.items[0].listing_price == 10.0

    def test_media_and_attributes(self, test_session, market):
        page = ItemQueryExecutor(test_session, native_currency()).fetch_page(market["collection"], ItemFilters())
        first = page.items[0]
        assert first.image.startswith("https://")
        assert first.media_type == "image"
        assert first.attributes == [
            {"trait_type": "Background", "value": "Blue"},
            {"trait_type": "Hat", "value": "Cap"},
        ]


class TestPickListing:
    """Tests for pick_listing."""

    def quote(self, price, currency_id=None, decimals=18, native=True, symbol="ETN"):
        return ListingQuote("i", Decimal(price), currency_id, symbol, decimals, native)

    def test_native_preferred_over_cheaper_token(self):
        native = self.quote(10 * ETH)
        token = self.quote(1_000000, "usdx", 6, False, "USDX")
        assert pick_listing([token, native]) is native

    def test_cheapest_token_by_display_price(self):
        six = self.quote(2_000000, "usdx", 6, False, "USDX")  # 2.0
        eight = self.quote(150000000, "abc", 8, False, "ABC")  # 1.5
        assert pick_listing([six, eight]) is eight

    def test_cheapest_native_among_several(self):
        low, high = self.quote(1 * ETH), self.quote(2 * ETH)
        assert pick_listing([high, low]) is low

    def test_token_listing_when_no_native(self):
        token = self.quote(3_000000, "usdx", 6, False, "USDX")
        assert pick_listing([token]) is token

    def test_token_tie_broken_by_currency_id(self):
        b = self.quote(1_000000, "bbb", 6, False, "BBB")
        a = self.quote(1_000000, "aaa", 6, False, "AAA")
        assert pick_listing([b, a]) is a

    def test_none_without_listings(self):
        assert pick_listing([]) is None


class TestRaritySort:
    """Rarity ordering, unranked fallback and rank windows."""

    @pytest.fixture
    def ranked(self, test_session, collection):
        ranks = {"1": 3, "2": None, "3": 1, "4": 2, "5": None, "6": 4}
        for token, rank in ranks.items():
            item = make_item(test_session, collection, token)
            make_rarity(test_session, item, rank, score=float(rank or 0) / 10)
        make_item(test_session, collection, "7")  # no rarity record at all
        return collection

    def test_best_first_unranked_last(self, test_session, ranked):
        tokens = flat(paginate(test_session, ranked, ItemFilters(rarity_sort=RaritySort.ASC)))
        assert tokens == ["3", "4", "1", "6", "2", "5", "7"]

    def test_worst_first_unranked_last(self, test_session, ranked):
        tokens = flat(paginate(test_session, ranked, ItemFilters(rarity_sort=RaritySort.DESC)))
        assert tokens == ["6", "1", "4", "3", "2", "5", "7"]

    def test_exclude_unranked(self, test_session, ranked):
        filters = ItemFilters(rarity_sort=RaritySort.ASC, include_unranked=False)
        assert flat(paginate(test_session, ranked, filters)) == ["3", "4", "1", "6"]

    def test_window_keeps_unranked_when_included(self, test_session, ranked):
        filters = ItemFilters(rank_min=2, rank_max=3)
        assert flat(paginate(test_session, ranked, filters)) == ["4", "1", "2", "5", "7"]

    def test_window_without_unranked(self, test_session, ranked):
        filters = ItemFilters(rank_min=2, rank_max=3, include_unranked=False)
        assert flat(paginate(test_session, ranked, filters)) == ["4", "1"]

    def test_rarity_annotations(self, test_session, ranked):
        page = ItemQueryExecutor(test_session, native_currency()).fetch_page(
            ranked, ItemFilters(rarity_sort=RaritySort.ASC), limit=1
        )
        item = page.items[0]
        assert item.rarity_rank == 1
        assert item.rarity_score == pytest.approx(0.1)
        assert item.population == 4

    def test_no_rarity_annotations_unless_requested(self, test_session, ranked):
        page = ItemQueryExecutor(test_session, native_currency()).fetch_page(ranked, ItemFilters(), limit=1)
        assert page.items[0].rarity_rank is None
        assert page.items[0].population is None


class TestDefaultHeavyOrder:
    """Trait filters alone use creation time, oldest first."""

    def test_creation_time_order(self, test_session, collection):
        make_item(test_session, collection, "1", attributes=[("Hat", "Cap")], created_at=utc(days=-1))
        make_item(test_session, collection, "2", attributes=[("Hat", "Cap")], created_at=utc(days=-3))
        make_item(test_session, collection, "3", attributes=[("Hat", "Cap")], created_at=utc(days=-2))
        make_item(test_session, collection, "4", attributes=[("Hat", "Crown")], created_at=utc(days=-4))
        filters = ItemFilters(traits={"Hat": frozenset({"Cap"})})
        assert flat(paginate(test_session, collection, filters, limit=1)) == ["2", "3", "1"]


class TestRecencySort:
    """Explicit newest / oldest toggle."""

    @pytest.fixture
    def dated(self, test_session, collection):
        now = utc().replace(microsecond=0)
        make_item(test_session, collection, "1", created_at=now - timedelta(days=2))
        make_item(test_session, collection, "2", created_at=now - timedelta(days=5))
        make_item(test_session, collection, "3", created_at=now - timedelta(days=1))
        make_item(test_session, collection, "4", created_at=now - timedelta(days=2))
        return collection

    def test_newest_first(self, test_session, dated):
        filters = ItemFilters(recency_sort=RecencySort.NEWEST)
        # Same creation time (1, 4) tie-breaks by id
        assert flat(paginate(test_session, dated, filters, limit=1)) == ["3", "1", "4", "2"]

    def test_newest_uses_heavy_path(self, test_session, dated):
        page = ItemQueryExecutor(test_session, native_currency()).fetch_page(
            dated, ItemFilters(recency_sort=RecencySort.NEWEST)
        )
        assert page.sort_mode == "created_desc"
        assert page.path == "heavy"

    def test_oldest_is_insertion_order(self, test_session, dated):
        page = ItemQueryExecutor(test_session, native_currency()).fetch_page(
            dated, ItemFilters(recency_sort=RecencySort.OLDEST)
        )
        assert page.path == "light"
        assert [i.token_id for i in page.items] == ["1", "2", "3", "4"]

    def test_price_sort_wins_over_recency(self, test_session, dated):
        filters = ItemFilters(price_sort=PriceSort.LOW_TO_HIGH, recency_sort=RecencySort.NEWEST)
        page = ItemQueryExecutor(test_session, native_currency()).fetch_page(dated, filters)
        assert page.sort_mode == "price_asc"


class TestErrorTranslation:
    """Database failures become domain errors, never partial results."""

    def test_timeout(self, test_session, collection):
        error = OperationalError("SELECT", {}, Exception("canceling statement due to statement timeout"))
        with patch.object(Session, "execute", side_effect=error):
            with pytest.raises(UpstreamTimeout) as exc_info:
                ItemQueryExecutor(test_session, native_currency()).fetch_page(collection, ItemFilters())
        assert exc_info.value.status_code == 504

    def test_generic_failure(self, test_session, collection):
        error = OperationalError("SELECT", {}, Exception("relation does not exist"))
        with patch.object(Session, "execute", side_effect=error):
            with pytest.raises(QueryExecutionFailure) as exc_info:
                ItemQueryExecutor(test_session, native_currency()).fetch_page(collection, ItemFilters())
        assert exc_info.value.status_code == 500
