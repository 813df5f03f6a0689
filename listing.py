"""
Filtered product listing.

Filters are collected as typed predicates. Product-level predicates compile
into a plain `find` filter. As soon as a variant-level predicate (size, color,
price range) is present the listing joins `product_variant` and keeps only
products with at least one active variant satisfying every variant predicate.
"""
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple, Union

from bson import ObjectId
from pymongo.database import Database

from database import sanitize
from errors import ValidationError

SORTABLE_FIELDS = ("createdAt", "updatedAt", "name", "totalStock")

VARIANTS_KEY = "variants"


def _lookup(doc: Dict[str, Any], path: str) -> Any:
    value: Any = doc
    for part in path.split("."):
        if not isinstance(value, dict):
            return None
        value = value.get(part)
    return value


@dataclass(frozen=True)
class TextMatch:
    field: str
    text: str

    def to_query(self) -> Dict[str, Any]:
        return {self.field: {"$regex": re.escape(self.text), "$options": "i"}}


@dataclass(frozen=True)
class RangeMatch:
    field: str
    low: Optional[float] = None
    high: Optional[float] = None
    low_inclusive: bool = True

    def to_query(self) -> Dict[str, Any]:
        cond: Dict[str, Any] = {}
        if self.low is not None:
            cond["$gte" if self.low_inclusive else "$gt"] = self.low
        if self.high is not None:
            cond["$lte"] = self.high
        return {self.field: cond}

    def matches(self, doc: Dict[str, Any]) -> bool:
        value = _lookup(doc, self.field)
        if value is None:
            return False
        if self.low is not None:
            if value < self.low or (value == self.low and not self.low_inclusive):
                return False
        if self.high is not None and value > self.high:
            return False
        return True


@dataclass(frozen=True)
class EqualityMatch:
    field: str
    value: Any

    def to_query(self) -> Dict[str, Any]:
        return {self.field: self.value}

    def matches(self, doc: Dict[str, Any]) -> bool:
        return _lookup(doc, self.field) == self.value


Predicate = Union[TextMatch, RangeMatch, EqualityMatch]
# Variant predicates are also checked in memory, so they must offer `matches`
VariantPredicate = Union[RangeMatch, EqualityMatch]


def _merge(predicates: List[Predicate]) -> Dict[str, Any]:
    query: Dict[str, Any] = {}
    for p in predicates:
        for key, cond in p.to_query().items():
            if isinstance(cond, dict) and isinstance(query.get(key), dict):
                query[key] = {**query[key], **cond}
            else:
                query[key] = cond
    return query


@dataclass
class ProductFilters:
    search: Optional[str] = None
    category: Optional[ObjectId] = None
    is_active: Optional[bool] = None
    in_stock: Optional[bool] = None
    size: Optional[str] = None
    color: Optional[str] = None
    min_price: Optional[float] = None
    max_price: Optional[float] = None


@dataclass
class ListingQuery:
    product_predicates: List[Predicate] = field(default_factory=list)
    variant_predicates: List[VariantPredicate] = field(default_factory=list)
    sort_field: str = "createdAt"
    sort_direction: int = -1

    @classmethod
    def build(cls, filters: ProductFilters, sort_by: str = "createdAt", sort_order: str = "desc") -> "ListingQuery":
        if sort_by not in SORTABLE_FIELDS:
            raise ValidationError(f"Cannot sort by '{sort_by}'")
        if sort_order not in ("asc", "desc"):
            raise ValidationError("sortOrder must be 'asc' or 'desc'")
        if filters.min_price is not None and filters.max_price is not None and filters.min_price > filters.max_price:
            raise ValidationError("minPrice cannot be greater than maxPrice")

        q = cls(sort_field=sort_by, sort_direction=1 if sort_order == "asc" else -1)
        if filters.search:
            q.product_predicates.append(TextMatch("name", filters.search))
        if filters.category is not None:
            q.product_predicates.append(EqualityMatch("category", filters.category))
        if filters.is_active is not None:
            q.product_predicates.append(EqualityMatch("isActive", filters.is_active))
        if filters.in_stock is True:
            q.product_predicates.append(RangeMatch("totalStock", low=0, low_inclusive=False))
        elif filters.in_stock is False:
            q.product_predicates.append(EqualityMatch("totalStock", 0))

        if filters.size:
            q.variant_predicates.append(EqualityMatch("size", filters.size))
        if filters.color:
            q.variant_predicates.append(EqualityMatch("color.name", filters.color))
        if filters.min_price is not None or filters.max_price is not None:
            q.variant_predicates.append(RangeMatch("price", low=filters.min_price, high=filters.max_price))
        # Variant filters only ever look at sellable variants
        if q.variant_predicates:
            q.variant_predicates.insert(0, EqualityMatch("isActive", True))
        return q

    @property
    def needs_variant_join(self) -> bool:
        return bool(self.variant_predicates)

    @property
    def sort_spec(self) -> List[Tuple[str, int]]:
        return [(self.sort_field, self.sort_direction), ("_id", self.sort_direction)]

    def compile_find(self) -> Dict[str, Any]:
        return _merge(self.product_predicates)

    def compile_pipeline(self, page: int, limit: int) -> Tuple[List[Dict[str, Any]], List[Dict[str, Any]]]:
        """Return (page pipeline, count pipeline) sharing one filter prefix."""
        prefix: List[Dict[str, Any]] = []
        product_match = self.compile_find()
        if product_match:
            prefix.append({"$match": product_match})
        prefix.append({"$lookup": {
            "from": "product_variant",
            "localField": "_id",
            "foreignField": "product",
            "as": VARIANTS_KEY,
        }})
        prefix.append({"$match": {VARIANTS_KEY: {"$elemMatch": _merge(self.variant_predicates)}}})

        page_pipeline = prefix + [
            {"$sort": dict(self.sort_spec)},
            {"$skip": (page - 1) * limit},
            {"$limit": limit},
        ]
        count_pipeline = prefix + [{"$group": {"_id": None, "total": {"$sum": 1}}}]
        return page_pipeline, count_pipeline

    def variant_matches(self, variant: Dict[str, Any]) -> bool:
        return all(p.matches(variant) for p in self.variant_predicates)


def _attach_categories(db: Database, products: List[Dict[str, Any]]) -> None:
    ids = list({p["category"] for p in products if p.get("category") is not None})
    categories = {c["_id"]: c for c in db["category"].find({"_id": {"$in": ids}}, {"name": 1, "slug": 1})} if ids else {}
    for p in products:
        cat = categories.get(p.get("category"))
        p["category"] = sanitize(cat) if cat else p.get("category")


def list_products(db: Database, query: ListingQuery, page: int, limit: int) -> Tuple[List[Dict[str, Any]], int]:
    if page < 1 or limit < 1:
        raise ValidationError("page and limit must be positive")

    if query.needs_variant_join:
        page_pipeline, count_pipeline = query.compile_pipeline(page, limit)
        counted = list(db["product"].aggregate(count_pipeline))
        total = counted[0]["total"] if counted else 0
        products = list(db["product"].aggregate(page_pipeline))
        for p in products:
            p[VARIANTS_KEY] = [v for v in p.get(VARIANTS_KEY, []) if query.variant_matches(v)]
    else:
        filt = query.compile_find()
        total = db["product"].count_documents(filt)
        products = list(
            db["product"].find(filt).sort(query.sort_spec).skip((page - 1) * limit).limit(limit)
        )
        ids = [p["_id"] for p in products]
        by_product: Dict[ObjectId, List[Dict[str, Any]]] = {pid: [] for pid in ids}
        if ids:
            for v in db["product_variant"].find({"product": {"$in": ids}}).sort([("size", 1), ("color.name", 1)]):
                by_product[v["product"]].append(v)
        for p in products:
            p[VARIANTS_KEY] = by_product.get(p["_id"], [])

    _attach_categories(db, products)
    return [sanitize(p) for p in products], total
