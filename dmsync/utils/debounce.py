"""Trailing-edge debounce on the running event loop."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Optional, Tuple

logger = logging.getLogger(__name__)


class Debouncer:
    """
    Run `func` once, `delay` seconds after the last call().

    Each call() replaces the pending arguments and restarts the timer.
    cancel() drops the pending call; dispose() also rejects future calls.
    """

    def __init__(self, func: Callable[..., Any], delay: float) -> None:
        self._func = func
        self.delay = delay
        self._handle: Optional[asyncio.TimerHandle] = None
        self._pending: Optional[Tuple[tuple, dict]] = None
        self._disposed = False

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def call(self, *args: Any, **kwargs: Any) -> None:
        if self._disposed:
            raise RuntimeError("Debouncer has been disposed")
        self.cancel()
        loop = asyncio.get_running_loop()
        self._pending = (args, kwargs)
        self._handle = loop.call_later(self.delay, self._fire)

    def _fire(self) -> None:
        pending = self._pending
        self._handle = None
        self._pending = None
        if pending is None:
            return
        args, kwargs = pending
        try:
            self._func(*args, **kwargs)
        except Exception:
            logger.exception("Debounced call failed")

    def flush(self) -> None:
        """Run the pending call now, if any."""
        if self._handle is None:
            return
        self._handle.cancel()
        self._fire()

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        self._pending = None

    def dispose(self) -> None:
        self.cancel()
        self._disposed = True
