"""Product search: query-string parsing and Mongo query construction.

Parameters arrive as untyped strings. ``parse_search_params`` turns them into a
``SearchFilter`` (absent means "do not filter") and rejects anything ambiguous;
``build_search_query`` turns the filter into a ``SearchQuery`` whose values are
always structured, never spliced into query text.
"""

import math
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Tuple

from .errors import ValidationError

DEFAULT_SEARCH_LIMIT = 1000
DEFAULT_SORT = "newest"

SORT_MAP: Dict[str, List[Tuple[str, int]]] = {
    "newest": [("created_at", -1)],
    "priceAsc": [("price", 1)],
    "priceDesc": [("price", -1)],
}


@dataclass(frozen=True)
class SearchFilter:
    category: Optional[str] = None
    manufacturer: Optional[str] = None
    is_sale: Optional[bool] = None
    in_stock: Optional[bool] = None
    min_discount: Optional[float] = None
    min_price: Optional[float] = None
    max_price: Optional[float] = None
    sort_by: str = DEFAULT_SORT
    limit: int = DEFAULT_SEARCH_LIMIT
    skip: int = 0


@dataclass(frozen=True)
class SearchQuery:
    filter: Dict
    sort: List[Tuple[str, int]]
    skip: int
    limit: int


def _text(args: Mapping[str, str], name: str) -> Optional[str]:
    value = args.get(name)
    if value is None:
        return None
    trimmed = str(value).strip()
    return trimmed or None


def _decimal(args: Mapping[str, str], name: str) -> Optional[float]:
    raw = _text(args, name)
    if raw is None:
        return None
    try:
        numeric = float(raw)
    except ValueError:
        raise ValidationError(f'"{name}" must be a number') from None
    if not math.isfinite(numeric):
        raise ValidationError(f'"{name}" must be a number')
    return numeric


def _count(args: Mapping[str, str], name: str, default: int) -> int:
    raw = _text(args, name)
    if raw is None:
        return default
    if not (raw.isascii() and raw.isdigit()):
        raise ValidationError(f'"{name}" must be a non-negative integer')
    return int(raw)


def _flag(args: Mapping[str, str], name: str) -> Optional[bool]:
    raw = _text(args, name)
    if raw is None:
        return None
    lowered = raw.lower()
    if lowered == "true":
        return True
    if lowered == "false":
        return False
    raise ValidationError(f'"{name}" must be true or false')


def parse_search_params(
    args: Mapping[str, str], default_limit: int = DEFAULT_SEARCH_LIMIT
) -> SearchFilter:
    min_price = _decimal(args, "minPrice")
    max_price = _decimal(args, "maxPrice")
    if min_price is not None and max_price is not None and min_price > max_price:
        raise ValidationError('"minPrice" must be less than or equal to "maxPrice"')

    sort_by = _text(args, "sortBy") or DEFAULT_SORT
    if sort_by not in SORT_MAP:
        sort_by = DEFAULT_SORT

    return SearchFilter(
        category=_text(args, "category"),
        manufacturer=_text(args, "manufacturer"),
        is_sale=_flag(args, "isSale"),
        in_stock=_flag(args, "inStock"),
        min_discount=_decimal(args, "minDiscount"),
        min_price=min_price,
        max_price=max_price,
        sort_by=sort_by,
        limit=_count(args, "limit", default_limit),
        skip=_count(args, "skip", 0),
    )


def build_search_query(search_filter: SearchFilter) -> SearchQuery:
    query: Dict = {}

    if search_filter.category is not None:
        query["category"] = search_filter.category
    if search_filter.manufacturer is not None:
        query["manufacturer"] = search_filter.manufacturer
    if search_filter.is_sale:
        query["sales.isSale"] = True
    if search_filter.in_stock:
        query["quantity_in_stock"] = {"$gt": 0}
    if search_filter.min_discount is not None:
        query["discount"] = {"$gte": search_filter.min_discount}

    price_range: Dict = {}
    if search_filter.min_price is not None:
        price_range["$gte"] = search_filter.min_price
    if search_filter.max_price is not None:
        price_range["$lte"] = search_filter.max_price
    if price_range:
        query["price"] = price_range

    sort = list(SORT_MAP[search_filter.sort_by]) + [("_id", -1)]
    return SearchQuery(
        filter=query, sort=sort, skip=search_filter.skip, limit=search_filter.limit
    )


def run_search(collection, search_query: SearchQuery) -> List[Dict]:
    cursor = collection.find(search_query.filter).sort(search_query.sort)
    if search_query.skip:
        cursor = cursor.skip(search_query.skip)
    if search_query.limit:
        cursor = cursor.limit(search_query.limit)
    return list(cursor)
