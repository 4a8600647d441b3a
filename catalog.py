"""
Catalog state derivation

Category selection over the parent/child category tree and the
search -> category -> sort pipeline used by the product listing.
Everything here is pure: inputs are never mutated, new lists are returned.
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Iterable, List, Optional, Sequence

ON_SALE = "on-sale"


class SortKey(str, Enum):
    DEFAULT = "default"
    TITLE_ASC = "title-asc"
    TITLE_DESC = "title-desc"
    CREATED_ASC = "created-asc"
    CREATED_DESC = "created-desc"
    PRICE_ASC = "price-asc"
    PRICE_DESC = "price-desc"


# ----- Category tree -----

def _find_category(categories: Sequence[dict], category_id: str) -> Optional[dict]:
    return next((c for c in categories if c.get("id") == category_id), None)


def get_subcategories(categories: Sequence[dict], parent_id: str) -> List[dict]:
    return [c for c in categories if c.get("parent_id") == parent_id]


def get_descendants(category_id: str, categories: Sequence[dict]) -> List[str]:
    """
    All category ids below `category_id`, children first then their children.
    """
    descendants: List[str] = []
    visited = {category_id}

    def walk(parent_id: str) -> None:
        for child in get_subcategories(categories, parent_id):
            child_id = child.get("id")
            if child_id in visited:
                continue
            visited.add(child_id)
            descendants.append(child_id)
            walk(child_id)

    walk(category_id)
    return descendants


def get_ancestors(category_id: str, categories: Sequence[dict]) -> List[str]:
    """
    Parent chain of `category_id`, nearest parent first.

    A parent id that points at no known category still counts as an ancestor,
    but the walk stops there.
    """
    ancestors: List[str] = []
    visited = {category_id}
    current = _find_category(categories, category_id)
    while current and current.get("parent_id"):
        parent_id = current["parent_id"]
        if parent_id in visited:
            break
        visited.add(parent_id)
        ancestors.append(parent_id)
        current = _find_category(categories, parent_id)
    return ancestors


def toggle_category(selected: Sequence[str], category_id: str, categories: Sequence[dict]) -> List[str]:
    """
    Check or uncheck `category_id` keeping parents and children consistent.

    Unchecking removes the category and all of its descendants.
    Checking a subcategory also checks every ancestor not already checked.
    """
    current = list(selected)
    if _find_category(categories, category_id) is None:
        return current

    if category_id in current:
        removed = {category_id, *get_descendants(category_id, categories)}
        return [cid for cid in current if cid not in removed]

    parents_to_check = [pid for pid in get_ancestors(category_id, categories) if pid not in current]
    return current + parents_to_check + [category_id]


def build_category_tree(categories: Sequence[dict]) -> List[dict]:
    """Parent categories sorted by name, each with its sorted subcategories."""
    def by_name(c: dict) -> str:
        return str(c.get("name") or "").lower()

    parents = sorted((c for c in categories if not c.get("parent_id")), key=by_name)
    return [
        {**parent, "subcategories": sorted(get_subcategories(categories, parent.get("id")), key=by_name)}
        for parent in parents
    ]


# ----- Sales -----

def _to_datetime(value) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    elif isinstance(value, dict) and isinstance(value.get("seconds"), (int, float)):
        return datetime.fromtimestamp(value["seconds"], tz=timezone.utc)
    elif isinstance(value, str):
        try:
            dt = datetime.fromisoformat(value.strip())
        except ValueError:
            return None
    else:
        return None
    # naive values (mongo, date-only strings) are treated as UTC
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _now(now: Optional[datetime]) -> datetime:
    return _to_datetime(now) if now is not None else datetime.now(timezone.utc)


def is_product_on_sale(product: dict, now: Optional[datetime] = None) -> bool:
    """True when the product has a sale price and now is inside its sale window."""
    if product.get("sale_price") is None:
        return False
    start = _to_datetime(product.get("sale_start"))
    end = _to_datetime(product.get("sale_end"))
    if start is None or end is None:
        return False
    return start <= _now(now) <= end


def is_upcoming_sale(product: dict, now: Optional[datetime] = None) -> bool:
    start = _to_datetime(product.get("sale_start"))
    return start is not None and _now(now) < start


def is_sale_ended(product: dict, now: Optional[datetime] = None) -> bool:
    end = _to_datetime(product.get("sale_end"))
    return end is not None and _now(now) > end


def has_products_on_sale(products: Iterable[dict], now: Optional[datetime] = None) -> bool:
    return any(p.get("is_active") and is_product_on_sale(p, now) for p in products)


# ----- Pipeline stages -----

def filter_by_query(products: Sequence[dict], query: Optional[str]) -> List[dict]:
    q = (query or "").strip().lower()
    if not q:
        return list(products)

    def matches(p: dict) -> bool:
        title = str(p.get("title") or "").lower()
        desc = str(p.get("description") or "").lower()
        keywords = p.get("search_keywords")
        keywords = " ".join(str(k) for k in keywords).lower() if isinstance(keywords, list) else ""
        return q in title or q in desc or q in keywords

    return [p for p in products if matches(p)]


def filter_by_categories(
    products: Sequence[dict],
    selected: Sequence[str],
    categories: Sequence[dict],
    now: Optional[datetime] = None,
) -> List[dict]:
    """
    Keep products matching the selected categories.

    Selected subcategories take precedence: parents are only matched when no
    subcategory is selected. The on-sale sentinel additionally requires an
    active sale.
    """
    if not selected:
        return list(products)

    on_sale_only = ON_SALE in selected
    regular = [cid for cid in selected if cid != ON_SALE]

    subcategories = []
    parent_only = []
    for cid in regular:
        cat = _find_category(categories, cid)
        if cat is None:
            continue
        if cat.get("parent_id"):
            subcategories.append(cid)
        else:
            parent_only.append(cid)
    filter_by = subcategories or parent_only

    def passes_category(p: dict) -> bool:
        cats = p.get("categories")
        if not cats:
            return False
        if isinstance(cats, str):
            return cats in filter_by
        if isinstance(cats, (list, tuple)):
            return any(cid in cats for cid in filter_by)
        return False

    out = []
    for p in products:
        if on_sale_only and not is_product_on_sale(p, now):
            continue
        if regular and not passes_category(p):
            continue
        out.append(p)
    return out


def created_timestamp(product: dict) -> float:
    """Creation time in epoch milliseconds, 0 when missing or unparseable."""
    value = product.get("created_at")
    if not value:
        return 0
    if isinstance(value, dict):
        seconds = value.get("seconds")
        return seconds * 1000 if isinstance(seconds, (int, float)) else 0
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return value
    dt = _to_datetime(value)
    return dt.timestamp() * 1000 if dt else 0


def product_price(product: dict) -> float:
    value = product.get("price")
    if value is None or isinstance(value, bool):
        return 0
    try:
        price = float(value)
    except (TypeError, ValueError):
        return 0
    return 0 if price != price else price


def sort_products(products: Sequence[dict], sort: Optional[str]) -> List[dict]:
    try:
        key = SortKey(sort) if sort else SortKey.DEFAULT
    except ValueError:
        key = SortKey.DEFAULT

    out = list(products)
    if key is SortKey.TITLE_ASC:
        out.sort(key=lambda p: str(p.get("title") or ""))
    elif key is SortKey.TITLE_DESC:
        out.sort(key=lambda p: str(p.get("title") or ""), reverse=True)
    elif key is SortKey.CREATED_ASC:
        out.sort(key=created_timestamp)
    elif key is SortKey.CREATED_DESC:
        out.sort(key=created_timestamp, reverse=True)
    elif key is SortKey.PRICE_ASC:
        out.sort(key=product_price)
    elif key is SortKey.PRICE_DESC:
        out.sort(key=product_price, reverse=True)
    return out


def derive_products(
    products: Sequence[dict],
    query: Optional[str] = None,
    selected: Sequence[str] = (),
    sort: Optional[str] = None,
    categories: Sequence[dict] = (),
    now: Optional[datetime] = None,
) -> List[dict]:
    """Search, then category filter, then sort."""
    out = filter_by_query(products, query)
    out = filter_by_categories(out, selected, categories, now)
    return sort_products(out, sort)
