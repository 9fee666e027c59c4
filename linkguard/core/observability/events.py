from __future__ import annotations

import json
import logging
import logging.handlers
import threading
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional


EventType = Literal[
    "RunStarted",
    "NodeBuildStarted",
    "NodeBuilt",
    "NodeFailed",
    "NodeStale",
    "NodeBlocked",
    "VerificationFailed",
    "GroupConsolidated",
    "GroupFailed",
    "RunCompleted",
]

# 10MB per file, 5 backups
_MAX_BYTES = 10 * 1024 * 1024
_BACKUP_COUNT = 5

_handler_cache: Dict[str, logging.Handler] = {}
_handler_lock = threading.Lock()


def now_utc_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


@dataclass(frozen=True)
class BuildEvent:
    event_type: EventType
    ts: str
    run_id: str
    node_id: Optional[str] = None
    group: Optional[str] = None
    payload: Dict[str, Any] = field(default_factory=dict)

    @staticmethod
    def mk(
        event_type: EventType,
        run_id: str,
        node_id: Optional[str] = None,
        group: Optional[str] = None,
        payload: Optional[Dict[str, Any]] = None,
    ) -> "BuildEvent":
        return BuildEvent(
            event_type=event_type,
            ts=now_utc_iso(),
            run_id=run_id,
            node_id=node_id,
            group=group,
            payload=payload or {},
        )


def _get_rotating_handler(log_path: Path) -> logging.Handler:
    key = str(log_path.resolve())
    with _handler_lock:
        if key not in _handler_cache:
            log_path.parent.mkdir(parents=True, exist_ok=True)
            h = logging.handlers.RotatingFileHandler(
                str(log_path),
                maxBytes=_MAX_BYTES,
                backupCount=_BACKUP_COUNT,
                encoding="utf-8",
            )
            h.setFormatter(logging.Formatter("%(message)s"))
            _handler_cache[key] = h
        return _handler_cache[key]


def close_event_logs() -> None:
    with _handler_lock:
        for h in _handler_cache.values():
            h.close()
        _handler_cache.clear()


def emit_event(event: BuildEvent, log_path: Path) -> None:
    line = json.dumps(asdict(event), separators=(",", ":"), ensure_ascii=False, default=str)

    handler = _get_rotating_handler(log_path)
    record = logging.LogRecord(
        name="linkguard.events",
        level=logging.INFO,
        pathname="",
        lineno=0,
        msg=line,
        args=(),
        exc_info=None,
    )
    handler.handle(record)


def tail_events(log_path: Path, limit: int = 200) -> List[Dict[str, Any]]:
    """
    Return last N JSONL events (best-effort).
    """
    if not log_path.exists():
        return []
    lines = log_path.read_text(encoding="utf-8", errors="replace").splitlines()
    lines = lines[-max(1, min(limit, 2000)):]
    out: List[Dict[str, Any]] = []
    for ln in lines:
        try:
            out.append(json.loads(ln))
        except ValueError:
            continue
    return out
