from .categories import CategoryTable, get_category_table, load_category_table
from .errors import (
    ClassificationError,
    MalformedResponse,
    NotJsonResponse,
    STORE_ERRORS,
    PersistenceError,
    RateLimited,
    TransportError,
)
from .merger import find_existing_match
from .normalizer import canonical_categories, normalize_category

__all__ = [
    "CategoryTable",
    "ClassificationError",
    "MalformedResponse",
    "NotJsonResponse",
    "PersistenceError",
    "RateLimited",
    "STORE_ERRORS",
    "TransportError",
    "canonical_categories",
    "find_existing_match",
    "get_category_table",
    "load_category_table",
    "normalize_category",
]
