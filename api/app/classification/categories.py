import re
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml

from ..config import get_settings


@dataclass(frozen=True)
class CategoryRule:
    name: str
    pattern: re.Pattern
    category: int


@dataclass(frozen=True)
class CategoryTable:
    locales: Dict[str, Tuple[str, ...]]
    rules: Tuple[CategoryRule, ...]
    keyword_groups: Tuple[Tuple[str, ...], ...]

    @property
    def size(self) -> int:
        return len(next(iter(self.locales.values())))

    @property
    def fallback_index(self) -> int:
        return self.size - 1

    def names(self, locale: str) -> Tuple[str, ...]:
        try:
            return self.locales[locale]
        except KeyError:
            raise ValueError(f"Unsupported locale: {locale}") from None


def build_category_table(raw: Dict[str, Any]) -> CategoryTable:
    locales_raw = raw.get("locales") or {}
    rules_raw = raw.get("rules") or []
    groups_raw = raw.get("keyword_groups") or []

    if not isinstance(locales_raw, dict) or not locales_raw:
        raise ValueError("Category locales must be a non-empty map")
    if not isinstance(rules_raw, list):
        raise ValueError("Category rules must be a list")
    if not isinstance(groups_raw, list):
        raise ValueError("Category keyword_groups must be a list")

    locales: Dict[str, Tuple[str, ...]] = {}
    for locale, names in locales_raw.items():
        if not isinstance(names, list) or not names:
            raise ValueError(f"Locale {locale} must list category names")
        locales[str(locale).strip().lower()] = tuple(str(name).strip() for name in names)
    sizes = {len(names) for names in locales.values()}
    if len(sizes) != 1:
        raise ValueError("Every locale must list the same number of categories")
    size = sizes.pop()

    rules: List[CategoryRule] = []
    for index, item in enumerate(rules_raw):
        if not isinstance(item, dict):
            raise ValueError(f"Category rule #{index} must be a map")
        pattern = str(item.get("pattern") or "")
        if not pattern:
            raise ValueError(f"Category rule #{index} has no pattern")
        try:
            category = int(item.get("category"))
        except (TypeError, ValueError):
            raise ValueError(f"Category rule #{index} has an invalid category index") from None
        if category < 0 or category >= size:
            raise ValueError(f"Category rule #{index} points outside the category list")
        try:
            compiled = re.compile(pattern, re.IGNORECASE)
        except re.error as exc:
            raise ValueError(f"Category rule #{index} has an invalid pattern: {exc}") from exc
        rules.append(CategoryRule(str(item.get("name") or f"rule{index}"), compiled, category))

    groups: List[Tuple[str, ...]] = []
    for group in groups_raw:
        if not isinstance(group, list):
            raise ValueError("Each keyword group must be a list")
        keywords = tuple(str(k).strip().lower() for k in group if str(k).strip())
        if keywords:
            groups.append(keywords)

    return CategoryTable(locales=locales, rules=tuple(rules), keyword_groups=tuple(groups))


def load_category_table(path: str) -> CategoryTable:
    if not path:
        raise ValueError("CATEGORIES_PATH is not set")
    file_path = Path(path)
    if not file_path.exists():
        raise FileNotFoundError(f"Category file not found: {file_path}")
    data = yaml.safe_load(file_path.read_text(encoding="utf-8")) or {}
    return build_category_table(data)


@lru_cache(maxsize=4)
def _cached_table(path: str) -> CategoryTable:
    return load_category_table(path)


def get_category_table(path: Optional[str] = None) -> CategoryTable:
    return _cached_table(path or get_settings().categories_path)
