# catalog_sync/models/import_log.py
from __future__ import annotations

import threading
import time
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

SYNC_OPERATION_INSERT = "insert"
SYNC_OPERATION_UPDATE = "update"
SYNC_OPERATION_UPSERT = "upsert"


@dataclass
class ImportLogEntry:
    sync_operation: str
    count_in: int = 0
    count_out: int = 0
    warning_count: int = 0
    error_count: int = 0
    duration: float = 0.0
    transform_id: Optional[str] = None
    created_at: str = field(default_factory=lambda: time.strftime("%Y-%m-%d %H:%M:%S"))


import_log: List[ImportLogEntry] = []
lock = threading.Lock()


def add_import_entry(entry: ImportLogEntry) -> None:
    with lock:
        import_log.append(entry)


def get_import_log() -> List[Dict[str, Any]]:
    with lock:
        return [asdict(e) for e in import_log]


def clear_import_log() -> None:
    with lock:
        import_log.clear()
