"""Structured JSON event logging shared by core components."""

from __future__ import annotations

import json
import logging
import time
from typing import Any


def log_event(logger: logging.Logger, level: int, event: str, **fields: Any) -> None:
    """Emit one compact JSON payload through ``logger``."""

    if not logger.isEnabledFor(level):
        return
    payload = {"event": event, **fields}
    logger.log(level, dump_json(payload))


def dump_json(payload: dict[str, Any]) -> str:
    return json.dumps(payload, ensure_ascii=False, separators=(",", ":"), default=str)


def elapsed_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)
