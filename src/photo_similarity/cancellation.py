"""Cooperative cancellation shared between the event loop and worker threads."""

import asyncio
import threading


class CancelToken:
    """Cancellation flag checked at chunk boundaries and inside clustering.

    Cancelling surfaces as ``asyncio.CancelledError`` so callers see it
    separately from both results and failures.
    """

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise asyncio.CancelledError("Detection cancelled")
