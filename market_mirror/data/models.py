"""Data models for mirrored market items and favorite marks."""

import math
from dataclasses import dataclass, field, fields, replace
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Optional, Dict, Any, List, Iterable, Tuple

from .errors import DecodingError


# Fields holding prices, volumes and supplies
DECIMAL_FIELDS = (
    'current_price',
    'market_cap',
    'total_volume',
    'high_24h',
    'low_24h',
    'price_change_24h',
    'market_cap_change_24h',
    'total_supply',
    'max_supply',
    'ath',
    'atl',
)

PERCENT_FIELDS = (
    'market_cap_change_percentage_24h',
    'ath_change_percentage',
    'atl_change_percentage',
)

DATE_FIELDS = ('ath_date', 'atl_date', 'last_updated')


@dataclass
class Item:
    """One tracked instrument as mirrored from the remote snapshot.

    Every snapshot field is optional; ``None`` means the source did not
    report a value. ``is_favorite`` is derived from the favorite marks when
    a view is built and is never persisted.
    """

    id: str
    symbol: str
    name: str
    image_url: Optional[str] = None
    rank: Optional[int] = None
    current_price: Optional[Decimal] = None
    market_cap: Optional[Decimal] = None
    total_volume: Optional[Decimal] = None
    high_24h: Optional[Decimal] = None
    low_24h: Optional[Decimal] = None
    price_change_24h: Optional[Decimal] = None
    market_cap_change_24h: Optional[Decimal] = None
    market_cap_change_percentage_24h: Optional[float] = None
    total_supply: Optional[Decimal] = None
    max_supply: Optional[Decimal] = None
    ath: Optional[Decimal] = None  # All-time high
    ath_change_percentage: Optional[float] = None
    ath_date: Optional[datetime] = None
    atl: Optional[Decimal] = None  # All-time low
    atl_change_percentage: Optional[float] = None
    atl_date: Optional[datetime] = None
    last_updated: Optional[datetime] = None
    is_favorite: bool = False

    def __post_init__(self):
        """Normalize numeric and date fields after initialization."""
        for name in DECIMAL_FIELDS:
            value = getattr(self, name)
            if isinstance(value, (int, float)) and not isinstance(value, bool):
                setattr(self, name, Decimal(str(value)))

        for name in DATE_FIELDS:
            value = getattr(self, name)
            if value is not None and value.tzinfo is None:
                setattr(self, name, value.replace(tzinfo=timezone.utc))

    def with_favorite(self, is_favorite: bool) -> 'Item':
        """Return a copy annotated with the given favorite state."""
        return replace(self, is_favorite=is_favorite)

    def snapshot_values(self) -> Dict[str, Any]:
        """Snapshot fields only, without the derived favorite flag."""
        return {f.name: getattr(self, f.name) for f in fields(self) if f.name != 'is_favorite'}

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        data: Dict[str, Any] = {}
        for name, value in self.snapshot_values().items():
            if isinstance(value, Decimal):
                data[name] = float(value)
            elif isinstance(value, datetime):
                data[name] = value.isoformat()
            else:
                data[name] = value
        data['is_favorite'] = self.is_favorite
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Item':
        """Create instance from dictionary produced by ``to_dict``."""
        data = dict(data)
        for name in DATE_FIELDS:
            if data.get(name):
                data[name] = datetime.fromisoformat(data[name])
        for name in DECIMAL_FIELDS:
            if data.get(name) is not None:
                data[name] = Decimal(str(data[name]))
        return cls(**data)


@dataclass
class FavoriteMark:
    """A user decision to favorite an item, independent of item rows."""

    item_id: str
    date_added: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self):
        if self.date_added.tzinfo is None:
            self.date_added = self.date_added.replace(tzinfo=timezone.utc)


def rank_sort_key(item: Item) -> Tuple[bool, int, str]:
    """Sort key ordering items by rank with unranked items last."""
    return (item.rank is None, item.rank if item.rank is not None else 0, item.id)


def sort_by_rank(items: Iterable[Item]) -> List[Item]:
    """Return items ordered by rank, missing ranks last."""
    return sorted(items, key=rank_sort_key)


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 timestamp such as ``2024-10-22T10:00:00.123Z``."""
    text = value.strip()
    if text.endswith('Z'):
        text = text[:-1] + '+00:00'
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _decode_decimal(key: str, value: Any) -> Optional[Decimal]:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        raise DecodingError(f"Field '{key}' is not numeric: {value!r}")
    try:
        result = Decimal(str(value))
    except InvalidOperation as e:
        raise DecodingError(f"Field '{key}' is not numeric: {value!r}", e)
    if not result.is_finite():
        raise DecodingError(f"Field '{key}' is not finite: {value!r}")
    return result


def _decode_float(key: str, value: Any) -> Optional[float]:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise DecodingError(f"Field '{key}' is not numeric: {value!r}")
    if not math.isfinite(value):
        raise DecodingError(f"Field '{key}' is not finite: {value!r}")
    return float(value)


def _decode_rank(value: Any) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise DecodingError(f"Field 'market_cap_rank' is not numeric: {value!r}")
    if isinstance(value, float):
        if not value.is_integer():
            raise DecodingError(f"Field 'market_cap_rank' is not an integer: {value!r}")
        value = int(value)
    return value


def _decode_date(key: str, value: Any) -> Optional[datetime]:
    if value is None:
        return None
    if not isinstance(value, str):
        raise DecodingError(f"Field '{key}' is not a timestamp: {value!r}")
    try:
        return parse_timestamp(value)
    except ValueError as e:
        raise DecodingError(f"Field '{key}' is not a timestamp: {value!r}", e)


def _decode_text(key: str, value: Any, required: bool) -> Optional[str]:
    if value is None:
        if required:
            raise DecodingError(f"Missing required field '{key}'")
        return None
    if not isinstance(value, str):
        raise DecodingError(f"Field '{key}' is not a string: {value!r}")
    return value


def decode_item(payload: Any) -> Item:
    """Decode one CoinGecko ``coins/markets`` record into an ``Item``.

    Args:
        payload: Parsed JSON object for a single market record

    Returns:
        Item with every absent or null field set to ``None``

    Raises:
        DecodingError: If the record is malformed
    """
    if not isinstance(payload, dict):
        raise DecodingError(f"Market record is not an object: {payload!r}")

    item_id = _decode_text('id', payload.get('id'), required=True)
    if not item_id.strip():
        raise DecodingError("Market record has a blank 'id'")

    values: Dict[str, Any] = {
        'id': item_id,
        'symbol': _decode_text('symbol', payload.get('symbol'), required=True),
        'name': _decode_text('name', payload.get('name'), required=True),
        'image_url': _decode_text('image', payload.get('image'), required=False),
        'rank': _decode_rank(payload.get('market_cap_rank')),
    }
    for name in DECIMAL_FIELDS:
        values[name] = _decode_decimal(name, payload.get(name))
    for name in PERCENT_FIELDS:
        values[name] = _decode_float(name, payload.get(name))
    for name in DATE_FIELDS:
        values[name] = _decode_date(name, payload.get(name))

    return Item(**values)


def decode_items(payload: Any) -> List[Item]:
    """Decode a full ``coins/markets`` response body.

    Raises:
        DecodingError: If the body is not a list or any record is malformed
    """
    if not isinstance(payload, list):
        raise DecodingError(f"Expected a list of market records, got {type(payload).__name__}")
    return [decode_item(record) for record in payload]
