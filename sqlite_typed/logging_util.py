"""Lightweight structured logging helper.

Emits JSON lines to stderr, no external deps. Level comes from LOG_LEVEL and is
re-read on every call so tests and operators can flip it at runtime.
"""
from __future__ import annotations
import os, sys, json, time, threading

_lock = threading.Lock()
LEVEL_ORDER = ["DEBUG", "INFO", "WARN", "ERROR"]
_ALIASES = {"WARNING": "WARN", "CRITICAL": "ERROR"}
SQL_PREVIEW_CHARS = 120

def _threshold() -> str:
    raw = os.environ.get("LOG_LEVEL", "INFO").upper()
    return _ALIASES.get(raw, raw)

def _should(level: str) -> bool:
    try:
        return LEVEL_ORDER.index(level) >= LEVEL_ORDER.index(_threshold())
    except ValueError:
        return True

def sql_preview(sql: str, limit: int = SQL_PREVIEW_CHARS) -> str:
    """Collapse whitespace and cut long SQL so log lines stay one-liners."""
    flat = " ".join(sql.split())
    if len(flat) <= limit:
        return flat
    return flat[:limit - 3] + "..."

def log(level: str, event: str, **fields):
    level = _ALIASES.get(level.upper(), level.upper())
    if not _should(level):
        return
    record = {
        "ts": time.strftime('%Y-%m-%dT%H:%M:%SZ', time.gmtime()),
        "level": level,
        "event": event,
    }
    record.update(fields)
    line = json.dumps(record, separators=(',', ':'), default=str)
    with _lock:
        sys.stderr.write(line + "\n")
        sys.stderr.flush()

def debug(event: str, **fields): log("DEBUG", event, **fields)
def info(event: str, **fields): log("INFO", event, **fields)
def warn(event: str, **fields): log("WARN", event, **fields)
def error(event: str, **fields): log("ERROR", event, **fields)
