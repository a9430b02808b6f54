# stocksync/models/run_log.py
from collections import deque
from typing import Deque, List, Dict, Any, Optional
import time
import threading

MAX_ENTRIES = 1000

run_log: Deque[Dict[str, Any]] = deque(maxlen=MAX_ENTRIES)
lock = threading.Lock()

def add_run_entry(level: str, source: str, message: str, batch_id: Optional[str] = None, **extra: Any):
    entry = {
        "level": level,
        "source": source,
        "message": message,
        "batch_id": batch_id,
        "timestamp": time.strftime("%Y-%m-%d %H:%M:%S"),
    }
    if extra:
        entry["extra"] = extra
    with lock:
        run_log.append(entry)

def get_run_log(limit: int = 200, batch_id: Optional[str] = None) -> List[Dict[str, Any]]:
    """Newest entries last; optionally only those of one batch."""
    with lock:
        entries = list(run_log)
    if batch_id:
        entries = [e for e in entries if e.get("batch_id") == batch_id]
    return entries[-limit:] if limit > 0 else entries

def clear_run_log() -> None:
    with lock:
        run_log.clear()
