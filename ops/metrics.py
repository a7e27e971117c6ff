from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator


@dataclass
class Timer:
    start: float = field(default_factory=time.time)

    def ms(self) -> int:
        return int((time.time() - self.start) * 1000)


@contextmanager
def timed(log: logging.Logger, event: str, **fields: Any) -> Iterator[Dict[str, Any]]:
    """Log `event` with duration_ms on exit; callers may add fields to the yielded dict."""
    t = Timer()
    extra: Dict[str, Any] = dict(fields)
    try:
        yield extra
    except Exception as e:
        extra.update({"error_type": type(e).__name__, "duration_ms": t.ms()})
        log.error(f"{event}_failed", extra={"extra": extra})
        raise
    extra["duration_ms"] = t.ms()
    log.info(event, extra={"extra": extra})
