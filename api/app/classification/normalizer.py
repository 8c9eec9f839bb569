from typing import Optional

from .categories import CategoryTable, get_category_table


def _exact_index(candidate: str, table: CategoryTable) -> Optional[int]:
    lowered = candidate.lower()
    for names in table.locales.values():
        for index, name in enumerate(names):
            if name.lower() == lowered:
                return index
    return None


def _rule_index(candidate: str, table: CategoryTable) -> Optional[int]:
    lowered = candidate.lower()
    for rule in table.rules:
        if rule.pattern.search(lowered):
            return rule.category
    return None


def normalize_category(
    name: Optional[str],
    locale: str = "zh",
    table: Optional[CategoryTable] = None,
) -> str:
    """Map a free-text category suggestion onto a canonical category name.

    Exact (case-insensitive) names in any locale win, then the ordered keyword
    rules, then the fallback bucket. The result is always in ``locale``.
    """
    table = table or get_category_table()
    names = table.names(locale)
    candidate = str(name or "").strip()
    if not candidate:
        return names[table.fallback_index]

    index = _exact_index(candidate, table)
    if index is None:
        index = _rule_index(candidate, table)
    if index is None:
        index = table.fallback_index
    return names[index]


def canonical_categories(locale: str = "zh", table: Optional[CategoryTable] = None) -> list[str]:
    table = table or get_category_table()
    return list(table.names(locale))
