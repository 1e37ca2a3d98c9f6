"""
JSONL event logger for the real-time layer.

- One JSON object per line on stdout
- Flushed immediately
- Never raises: a record that cannot be serialized is replaced by a
  LOGGER_SERIALIZATION_ERROR record
"""

from __future__ import annotations

import json
import sys
import time
from typing import Any, Mapping, Callable


# ------------------------------------------------------------------
# Output sink (patchable in tests)
# ------------------------------------------------------------------

def _stdout_print(line: str) -> None:
    sys.stdout.write(line + "\n")
    sys.stdout.flush()

_print: Callable[[str], None] = _stdout_print


def log_event(event: Mapping[str, Any]) -> None:
    """
    Write a single JSONL record.

    Callers supply a complete record; by convention every record carries
    `event_type` and `ts_ms`.
    """
    try:
        line = json.dumps(event, ensure_ascii=False, separators=(",", ":"))
    except (TypeError, ValueError) as e:
        fallback: dict[str, Any] = {
            "ts_ms": event.get("ts_ms"),
            "event_type": "LOGGER_SERIALIZATION_ERROR",
            "error": str(e),
            "original_event_repr": repr(event),
        }
        line = json.dumps(fallback, ensure_ascii=False, separators=(",", ":"))

    _print(line)


def exception_fields(exc: BaseException) -> dict[str, str]:
    """Standard fields describing a caught exception."""
    return {
        "exception": type(exc).__name__,
        "message": str(exc),
    }


def wall_ms() -> int:
    """Wall-clock milliseconds, used for record timestamps."""
    return time.time_ns() // 1_000_000
