# catalog_sync/sync/components/util.py
from __future__ import annotations

import os
import re
from typing import Any, Iterable, List
from urllib.parse import quote, urlparse

_SLUG_RE = re.compile(r"[^a-z0-9-]")
_SLUG_PATH_RE = re.compile(r"[^a-z0-9/-]")
_DASHES_RE = re.compile(r"-+")
_PCT_RE = re.compile(r"%[0-9A-F][0-9A-F]")


def slug(s: str | None, allow_slash: bool = False) -> str:
    """
    Lowercase, replace disallowed characters with '-', collapse repeated '-'
    and strip the trailing '-'. With allow_slash, '/' is kept (full paths).
    """
    s = (s or "").strip().lower()
    s = (_SLUG_PATH_RE if allow_slash else _SLUG_RE).sub("-", s)
    s = _DASHES_RE.sub("-", s)
    return s.rstrip("-")


def comma_list(value: Any) -> List[str]:
    """'a, b,,c' -> ['a', 'b', 'c']; lists are trimmed the same way."""
    if value is None:
        return []
    parts: Iterable[Any] = value if isinstance(value, (list, tuple)) else str(value).split(",")
    return [str(p).strip() for p in parts if str(p).strip()]


def unique(items: Iterable[Any]) -> List[Any]:
    seen = set()
    out = []
    for i in items:
        if i not in seen:
            seen.add(i)
            out.append(i)
    return out


def is_numeric(v: Any) -> bool:
    if isinstance(v, bool):
        return False
    if isinstance(v, (int, float)):
        return True
    try:
        float(str(v).strip())
        return True
    except ValueError:
        return False


def is_remote(path: str) -> bool:
    return bool(urlparse(path).netloc)


def basename(url_or_path: str) -> str:
    if is_remote(url_or_path):
        return os.path.basename(urlparse(url_or_path).path)
    return os.path.basename(url_or_path)


def media_target_name(name: str) -> str:
    """File name as stored under the media folder: url-unsafe characters become '_'."""
    return _PCT_RE.sub("_", quote(basename(name), safe="-_.~")).lower()


def ensure_suffix(path: str, suffix: str) -> str:
    if not suffix or path.endswith(suffix):
        return path
    return path + suffix
