# catalog_sync/sync/components/category_grammar.py
from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from catalog_sync.sync.components.util import comma_list, is_numeric, slug

DEFAULT_ROOT_PATH_KEY = "%RP:base%"
ESCAPED_TREE_SEPARATOR = "---"
OPTION_SEPARATOR = "::"
ROOT_CATEGORY_IDS = (1, 2)

# [Root Name] not preceded by '::' (that form is a translation)
EXPLICIT_ROOT_RE = re.compile(r"(?<!::)\[(.*?)\]")
_STORE_ROOT_KEY_RE = re.compile(r"^%RP:(\d+)%$")


@dataclass
class CategoryLevel:
    """One level of a category path, with its inline options already parsed."""
    name: str
    is_active: int = 1
    is_anchor: int = 1
    include_in_menu: int = 1
    position: int = 0
    url_key: str = ""
    url_path: str = ""
    translated_name: Optional[str] = None
    translated_url_key: Optional[str] = None
    translated_url_path: Optional[str] = None

    @property
    def has_translation(self) -> bool:
        return self.translated_name is not None


@dataclass
class CategoryPath:
    root_key: str = DEFAULT_ROOT_PATH_KEY
    levels: List[CategoryLevel] = field(default_factory=list)
    root_only: bool = False


def store_root_key(store_id: int) -> str:
    return f"%RP:{store_id}%"


def store_id_from_root_key(key: str) -> Optional[int]:
    m = _STORE_ROOT_KEY_RE.match(key or "")
    return int(m.group(1)) if m else None


def explicit_root_names(value: str) -> List[str]:
    return EXPLICIT_ROOT_RE.findall(value or "")


def replace_explicit_root(value: str, root_name: str, key: str) -> str:
    """Swap every '[root_name]' reference for the store root key."""
    return value.replace(f"[{root_name}]", key)


def split_category_paths(value: str, delimiter: str) -> List[str]:
    if not delimiter:
        return [value]
    return value.split(delimiter)


def _option_int(raw: str) -> int:
    return int(float(raw.strip()))


def unescape_name(name: str, tree_delimiter: str) -> str:
    return name.replace(ESCAPED_TREE_SEPARATOR, tree_delimiter)


def parse_level(part: str, tree_delimiter: str = "|") -> CategoryLevel:
    """
    'Shoes'                      -> defaults, position 0
    'Shoes::3'                   -> position 3
    'Shoes::1::0::1'             -> is_active, is_anchor, include_in_menu
    'Shoes::1::0::1::5'          -> same, position 5
    'Schuhe::[Shoes]'            -> default name 'Shoes', store name 'Schuhe'
    """
    parts = part.split(OPTION_SEPARATOR)
    store_name = parts[0].strip()
    extras = [p.strip() for p in parts[1:]]

    name = store_name
    translation = None
    if extras and extras[-1].startswith("["):
        translation = extras.pop()
        name = translation.strip("[]").strip()

    options = [p for p in extras if is_numeric(p)]
    position = 0
    if len(options) in (1, 4):
        position = _option_int(options.pop())

    level = CategoryLevel(
        name=unescape_name(name, tree_delimiter),
        is_active=_option_int(options[0]) if len(options) > 0 else 1,
        is_anchor=_option_int(options[1]) if len(options) > 1 else 1,
        include_in_menu=_option_int(options[2]) if len(options) > 2 else 1,
        position=position,
    )
    if translation is not None and name != store_name:
        level.translated_name = unescape_name(store_name, tree_delimiter)
    return level


def _fill_url_fields(levels: Sequence[CategoryLevel]) -> None:
    names: List[str] = []
    store_names: List[str] = []
    for level in levels:
        names.append(level.name)
        store_names.append(level.translated_name or level.name)
        level.url_key = slug(level.name)
        level.url_path = slug("/".join(names), allow_slash=True)
        if level.has_translation:
            level.translated_url_key = slug(level.translated_name)
            level.translated_url_path = slug("/".join(store_names), allow_slash=True)


def parse_path(path_string: str, tree_delimiter: str, root_keys: Sequence[str]) -> CategoryPath:
    """
    Parse one category path. `root_keys` are the known store root keys in lookup
    order; a path starting with one of them is anchored to that root.
    """
    value = path_string.strip()
    root_key = DEFAULT_ROOT_PATH_KEY
    for key in root_keys:
        if value == key:
            return CategoryPath(root_key=key, root_only=True)
        if value.startswith(key):
            root_key = key
            break

    value = value.replace(root_key + tree_delimiter, "")
    parts = [p.strip() for p in value.split(tree_delimiter)]
    levels = [parse_level(p, tree_delimiter) for p in parts if p]
    _fill_url_fields(levels)
    return CategoryPath(root_key=root_key, levels=levels)


def parse_category_ids(value) -> Dict[int, int]:
    """'5::2, 7' -> {5: 2, 7: 0}; root ids and non-numeric entries are dropped."""
    out: Dict[int, int] = {}
    for item in comma_list(value):
        parts = item.split(OPTION_SEPARATOR)
        if not is_numeric(parts[0]):
            continue
        category_id = int(float(parts[0]))
        if category_id in ROOT_CATEGORY_IDS:
            continue
        position = _option_int(parts[1]) if len(parts) > 1 and is_numeric(parts[1]) else 0
        out[category_id] = position
    return out
