from __future__ import annotations

import logging
from typing import Callable

from chat_stream.application.exceptions import CancellationError

logger = logging.getLogger(__name__)


class CancellationToken:
    """One per outbound generation request. ``cancel()`` is idempotent."""

    def __init__(self, label: str = "") -> None:
        self._label = label
        self._cancelled = False
        self._callbacks: list[Callable[[], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def add_callback(self, callback: Callable[[], None]) -> None:
        if self._cancelled:
            callback()
            return
        self._callbacks.append(callback)

    def cancel(self) -> bool:
        """Return True on the first call, False on repeats."""
        if self._cancelled:
            return False
        self._cancelled = True
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            try:
                callback()
            except Exception:
                logger.exception("Cancellation callback failed (%s)", self._label)
        return True

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise CancellationError(f"Request cancelled {self._label}".strip())
