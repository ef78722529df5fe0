"""Tests for item models and payload decoding."""

import pytest
from datetime import datetime, timezone
from decimal import Decimal

from market_mirror.data.errors import DecodingError
from market_mirror.data.models import (
    Item,
    FavoriteMark,
    decode_item,
    decode_items,
    sort_by_rank,
    parse_timestamp,
)


@pytest.fixture
def market_record():
    """A complete coins/markets record."""
    return {
        "id": "bitcoin",
        "symbol": "btc",
        "name": "Bitcoin",
        "image": "https://assets.coingecko.com/coins/images/1/large/bitcoin.png",
        "current_price": 67187.33,
        "market_cap": 1317802988326,
        "market_cap_rank": 1,
        "total_volume": 31260929299,
        "high_24h": 68000,
        "low_24h": 66000.5,
        "price_change_24h": -123.45,
        "market_cap_change_24h": 2049020255,
        "market_cap_change_percentage_24h": 0.15577,
        "total_supply": 21000000,
        "max_supply": 21000000,
        "ath": 73738,
        "ath_change_percentage": -8.99,
        "ath_date": "2024-03-14T07:10:36.635Z",
        "atl": 67.81,
        "atl_change_percentage": 98889.2,
        "atl_date": "2013-07-06T00:00:00.000Z",
        "last_updated": "2024-10-22T10:00:00.123Z",
    }


class TestItem:
    """Test the Item model."""

    def test_numbers_normalized_to_decimal(self):
        item = Item(id="bitcoin", symbol="btc", name="Bitcoin", current_price=50000.5, market_cap=10)

        assert item.current_price == Decimal("50000.5")
        assert isinstance(item.market_cap, Decimal)

    def test_naive_dates_assumed_utc(self):
        item = Item(id="bitcoin", symbol="btc", name="Bitcoin",
                    last_updated=datetime(2024, 1, 1, 12, 0))

        assert item.last_updated.tzinfo == timezone.utc

    def test_with_favorite_returns_copy(self):
        item = Item(id="bitcoin", symbol="btc", name="Bitcoin")
        favorited = item.with_favorite(True)

        assert favorited.is_favorite is True
        assert item.is_favorite is False
        assert favorited.snapshot_values() == item.snapshot_values()

    def test_dict_round_trip(self, market_record):
        item = decode_item(market_record).with_favorite(True)

        data = item.to_dict()
        assert data["current_price"] == pytest.approx(67187.33)
        assert data["is_favorite"] is True

        restored = Item.from_dict(data)
        assert restored.id == "bitcoin"
        assert restored.last_updated == item.last_updated
        assert restored.is_favorite is True


class TestFavoriteMark:
    """Test the FavoriteMark model."""

    def test_defaults_to_now_utc(self):
        mark = FavoriteMark(item_id="bitcoin")

        assert mark.date_added.tzinfo == timezone.utc
        assert (datetime.now(timezone.utc) - mark.date_added).total_seconds() < 5


class TestSorting:
    """Test rank ordering."""

    def test_missing_rank_sorts_last(self):
        items = [
            Item(id="unranked", symbol="unr", name="Unranked"),
            Item(id="second", symbol="sec", name="Second", rank=2),
            Item(id="first", symbol="fir", name="First", rank=1),
        ]

        assert [item.id for item in sort_by_rank(items)] == ["first", "second", "unranked"]

    def test_equal_ranks_ordered_by_id(self):
        items = [
            Item(id="zeta", symbol="z", name="Zeta", rank=5),
            Item(id="alpha", symbol="a", name="Alpha", rank=5),
        ]

        assert [item.id for item in sort_by_rank(items)] == ["alpha", "zeta"]


class TestParseTimestamp:
    """Test timestamp parsing."""

    def test_trailing_z(self):
        parsed = parse_timestamp("2024-10-22T10:00:00.123Z")

        assert parsed == datetime(2024, 10, 22, 10, 0, 0, 123000, tzinfo=timezone.utc)

    def test_explicit_offset(self):
        parsed = parse_timestamp("2024-10-22T12:00:00+02:00")

        assert parsed == datetime(2024, 10, 22, 10, 0, tzinfo=timezone.utc)


class TestDecodeItem:
    """Test decoding of market records."""

    def test_full_record(self, market_record):
        item = decode_item(market_record)

        assert item.id == "bitcoin"
        assert item.symbol == "btc"
        assert item.image_url.endswith("bitcoin.png")
        assert item.rank == 1
        assert item.current_price == Decimal("67187.33")
        assert item.price_change_24h == Decimal("-123.45")
        assert item.market_cap_change_percentage_24h == pytest.approx(0.15577)
        assert item.ath_date == datetime(2024, 3, 14, 7, 10, 36, 635000, tzinfo=timezone.utc)
        assert item.is_favorite is False

    def test_missing_and_null_fields_are_none(self):
        item = decode_item({
            "id": "newcoin",
            "symbol": "new",
            "name": "New Coin",
            "current_price": None,
            "market_cap_rank": None,
        })

        assert item.current_price is None
        assert item.rank is None
        assert item.max_supply is None
        assert item.image_url is None
        assert item.last_updated is None

    def test_zero_is_not_missing(self, market_record):
        market_record["price_change_24h"] = 0

        item = decode_item(market_record)

        assert item.price_change_24h == Decimal("0")

    def test_float_rank_accepted_when_integral(self, market_record):
        market_record["market_cap_rank"] = 3.0

        assert decode_item(market_record).rank == 3

    @pytest.mark.parametrize("field_name", ["id", "symbol", "name"])
    def test_missing_required_field(self, market_record, field_name):
        del market_record[field_name]

        with pytest.raises(DecodingError):
            decode_item(market_record)

    def test_blank_id_rejected(self, market_record):
        market_record["id"] = "  "

        with pytest.raises(DecodingError):
            decode_item(market_record)

    @pytest.mark.parametrize("field_name,value", [
        ("current_price", "not-a-number"),
        ("current_price", True),
        ("market_cap", float("nan")),
        ("market_cap_rank", 1.5),
        ("market_cap_rank", "1"),
        ("ath_change_percentage", "12"),
        ("ath_change_percentage", float("inf")),
        ("last_updated", 1700000000),
        ("last_updated", "yesterday"),
    ])
    def test_malformed_field(self, market_record, field_name, value):
        market_record[field_name] = value

        with pytest.raises(DecodingError):
            decode_item(market_record)

    def test_record_must_be_object(self):
        with pytest.raises(DecodingError):
            decode_item(["bitcoin"])


class TestDecodeItems:
    """Test decoding of full response bodies."""

    def test_list_of_records(self, market_record):
        second = dict(market_record, id="ethereum", symbol="eth", name="Ethereum", market_cap_rank=2)

        items = decode_items([market_record, second])

        assert [item.id for item in items] == ["bitcoin", "ethereum"]

    def test_empty_list(self):
        assert decode_items([]) == []

    def test_body_must_be_list(self):
        with pytest.raises(DecodingError):
            decode_items({"error": "rate limited"})

    def test_one_bad_record_fails_whole_body(self, market_record):
        with pytest.raises(DecodingError):
            decode_items([market_record, {"symbol": "eth"}])
