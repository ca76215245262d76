# catalog_sync/sync/components/values.py
from __future__ import annotations

import enum
from typing import Any, Dict, Iterator, Mapping, Optional


class Sentinel(enum.Enum):
    """Markers decoded from the reserved string values of an incoming record."""
    DELETE = "__DELETE__"
    NULL = "__NULL__"

    def __repr__(self) -> str:
        return f"<{self.name}>"


DELETE = Sentinel.DELETE
NULL = Sentinel.NULL

_SENTINELS = {s.value: s for s in Sentinel}


def _decode_value(v: Any) -> Any:
    if isinstance(v, str) and v in _SENTINELS:
        return _SENTINELS[v]
    return v


def as_text(v: Any) -> str:
    """String form of a scalar input value (1 -> "1", 61.99 -> "61.99", True -> "1")."""
    if isinstance(v, bool):
        return "1" if v else "0"
    if isinstance(v, float) and v.is_integer():
        return str(int(v))
    return str(v)


class ProductRecord:
    """
    One denormalized product row: attribute code -> value.

    Values are plain strings/numbers/lists, or DELETE / NULL. A JSON null is the
    same as the key being absent.
    """

    def __init__(self, data: Optional[Mapping[str, Any]] = None):
        self._data: Dict[str, Any] = dict(data or {})

    # mapping-ish API
    def __contains__(self, code: object) -> bool:
        return code in self._data

    def __getitem__(self, code: str) -> Any:
        return self._data[code]

    def __setitem__(self, code: str, value: Any) -> None:
        if value is None:
            self._data.pop(code, None)
        else:
            self._data[code] = _decode_value(value)

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __repr__(self) -> str:
        return f"ProductRecord({self._data!r})"

    def get(self, code: str, default: Any = None) -> Any:
        return self._data.get(code, default)

    def keys(self):
        return self._data.keys()

    def items(self):
        return self._data.items()

    def copy(self) -> "ProductRecord":
        return ProductRecord(self._data)

    # typed access
    @property
    def sku(self) -> str:
        return as_text(self._data.get("sku", ""))

    def is_delete(self, code: str) -> bool:
        return self._data.get(code) is DELETE

    def is_null(self, code: str) -> bool:
        return self._data.get(code) is NULL

    def text(self, code: str, default: Optional[str] = None) -> Optional[str]:
        """Scalar value as a string; None when absent or a sentinel."""
        v = self._data.get(code)
        if v is None or isinstance(v, Sentinel):
            return default
        if isinstance(v, (list, tuple)):
            return ",".join(as_text(x) for x in v)
        return as_text(v)

    def to_dict(self) -> Dict[str, Any]:
        return {k: (v.value if isinstance(v, Sentinel) else v) for k, v in self._data.items()}


def decode_record(data: Mapping[str, Any]) -> ProductRecord:
    """Decode sentinels once at ingestion and drop null-valued keys."""
    rec = ProductRecord()
    for k, v in (data or {}).items():
        rec[str(k)] = v
    return rec


def db_value(v: Any) -> Any:
    """Value as written to a column: NULL -> None, lists -> comma list."""
    if v is NULL or v is None:
        return None
    if isinstance(v, (list, tuple)):
        return ",".join(as_text(x) for x in v)
    if isinstance(v, bool):
        return 1 if v else 0
    return v
