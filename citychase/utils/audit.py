import json
import os
from datetime import datetime, timezone
from typing import Any, Dict

# Maintain per-match filename base so all writes go to the same timestamped file
_MATCH_FILE_BASE: Dict[str, str] = {}


def _ensure_dir(path: str) -> None:
    os.makedirs(path, exist_ok=True)


def _log_dir() -> str:
    override = os.getenv("CITYCHASE_LOG_DIR")
    if override:
        return os.path.abspath(override)
    # Resolve logs dir relative to this file: ../../logs/matches
    return os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "..", "logs", "matches"))


def _file_base_for(log_id: str) -> str:
    """Return a stable '<timestamp>_<log_id>' base for this process."""
    if log_id in _MATCH_FILE_BASE:
        return _MATCH_FILE_BASE[log_id]
    ts = datetime.now().strftime("%Y%m%d-%H%M%S")
    base = f"{ts}_{log_id}"
    _MATCH_FILE_BASE[log_id] = base
    return base


def match_write(log_id: str | None, record: Dict[str, Any]) -> None:
    """Append a structured JSON line to the per-match audit log.

    The file is stored under logs/matches/<timestamp>_<log_id>.log relative to repo root
    (or under $CITYCHASE_LOG_DIR). A None log_id disables writing.
    """
    if not log_id:
        return
    base_dir = _log_dir()
    record = dict(record)
    record.setdefault("ts", datetime.now(timezone.utc).isoformat())
    record.setdefault("match_id", log_id)
    log_path = os.path.join(base_dir, f"{_file_base_for(log_id)}.log")
    try:
        _ensure_dir(base_dir)
        with open(log_path, "a", encoding="utf-8") as f:
            f.write(json.dumps(record, ensure_ascii=False, default=str) + "\n")
    except OSError:
        # Never raise from audit logging; it's best-effort.
        pass
