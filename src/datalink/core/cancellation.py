"""Cooperative cancellation signal checked at every backend suspension point."""

import asyncio
from typing import Optional

from .errors import OperationCancelledError


class CancellationToken:
    """A one-shot cancellation signal shared between a caller and an operation."""

    def __init__(self):
        self._event = asyncio.Event()
        self.reason: Optional[str] = None

    def cancel(self, reason: Optional[str] = None):
        self.reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self, path: Optional[str] = None):
        if self._event.is_set():
            raise OperationCancelledError(self.reason or "Operation was cancelled", path=path)

    async def wait(self):
        await self._event.wait()


def is_cancelled(token: Optional[CancellationToken]) -> bool:
    return token is not None and token.cancelled


def check_cancelled(token: Optional[CancellationToken], path: Optional[str] = None):
    if token is not None:
        token.raise_if_cancelled(path)
