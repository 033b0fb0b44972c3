"""Debounced search input.

Each keystroke supersedes the pending search; only the last term within the
delay window reaches the callback. The timer is an event-loop callback, not a
thread.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable

logger = logging.getLogger("datagrid.search")

SearchCallback = Callable[[str], None]


class SearchDebouncer:
    def __init__(self, callback: SearchCallback, delay_ms: int = 300, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._callback = callback
        self.delay_ms = max(0, int(delay_ms))
        self._loop = loop
        self._handle: asyncio.TimerHandle | None = None
        self._pending_term: str | None = None

    @property
    def pending(self) -> bool:
        return self._handle is not None

    @property
    def pending_term(self) -> str | None:
        return self._pending_term

    def schedule(self, term: str) -> None:
        loop = self._loop or asyncio.get_running_loop()
        if self._handle is not None:
            self._handle.cancel()
            logger.debug("search_superseded term=%r", self._pending_term)
        self._pending_term = term
        self._handle = loop.call_later(self.delay_ms / 1000.0, self._fire)

    def _fire(self) -> None:
        term = self._pending_term or ""
        self._handle = None
        self._pending_term = None
        self._callback(term)

    def flush(self) -> bool:
        """Run the pending search now (Enter key); returns False when nothing is pending."""
        if self._handle is None:
            return False
        self._handle.cancel()
        self._fire()
        return True

    def cancel(self) -> bool:
        if self._handle is None:
            return False
        self._handle.cancel()
        self._handle = None
        self._pending_term = None
        return True
