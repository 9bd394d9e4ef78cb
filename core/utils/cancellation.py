"""Cooperative cancellation signal for batch and extraction work."""

from __future__ import annotations

import threading

from core.utils.errors import OperationCancelledError


class CancellationToken:
    """Thread-safe flag checked by long-running operations at checkpoints."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self, stage: str) -> None:
        if self._event.is_set():
            raise OperationCancelledError(f"Operation cancelled before {stage}")
