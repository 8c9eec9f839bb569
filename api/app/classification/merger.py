import re
from typing import Optional, Sequence

from ..models import ListInfo
from .categories import CategoryTable, get_category_table


def _keyword_match(keyword: str, text: str) -> bool:
    token = str(keyword or "").strip().lower()
    if not token:
        return False
    if re.fullmatch(r"[a-z0-9_\- ./+]+", token):
        pattern = r"(?<![a-z0-9])" + re.escape(token) + r"(?![a-z0-9])"
        return bool(re.search(pattern, text))
    return token in text


def _shares_keyword_group(left: str, right: str, table: CategoryTable) -> bool:
    for group in table.keyword_groups:
        if any(_keyword_match(k, left) for k in group) and any(
            _keyword_match(k, right) for k in group
        ):
            return True
    return False


def find_existing_match(
    proposed_name: Optional[str],
    lists: Sequence[ListInfo],
    table: Optional[CategoryTable] = None,
) -> Optional[ListInfo]:
    """Return the existing list a proposed list name duplicates, if any.

    Stages run in order over all lists: exact name, substring containment in
    either direction, then co-membership in a keyword group.
    """
    proposed = str(proposed_name or "").strip().lower()
    if not proposed or not lists:
        return None
    table = table or get_category_table()
    named = [(item, item.name.strip().lower()) for item in lists if item.name.strip()]

    for item, existing in named:
        if existing == proposed:
            return item
    for item, existing in named:
        if existing in proposed or proposed in existing:
            return item
    for item, existing in named:
        if _shares_keyword_group(proposed, existing, table):
            return item
    return None
