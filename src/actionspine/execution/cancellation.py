"""Cancellation tokens for dispatches.

A token is created by the caller, passed in ``DispatchOptions``, and
cancelled from anywhere on the same event loop.  The engine checks it before
a run starts and at every sequential handler boundary; handlers can observe
it through ``controller.cancellation_token`` and stop voluntarily.  Nothing
is interrupted mid-handler.

Example::

    token = CancellationToken()
    task = asyncio.create_task(
        register.dispatch_with_result("search", query, DispatchOptions(cancellation_token=token))
    )
    token.cancel("user navigated away")
"""

from __future__ import annotations

import asyncio

from actionspine.core.errors import DispatchCancelledError

DEFAULT_CANCEL_REASON = "Dispatch cancelled"


class CancellationToken:
    """Cooperative, one-way cancellation flag."""

    def __init__(self) -> None:
        self._cancelled = False
        self._reason: str | None = None
        self._event: asyncio.Event | None = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def reason(self) -> str:
        return self._reason or DEFAULT_CANCEL_REASON

    def cancel(self, reason: str | None = None) -> None:
        """Cancel the token. Later calls are ignored."""
        if self._cancelled:
            return
        self._cancelled = True
        self._reason = reason
        if self._event is not None:
            self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise DispatchCancelledError(self.reason)

    async def wait(self) -> None:
        """Block until the token is cancelled."""
        if self._cancelled:
            return
        if self._event is None:
            self._event = asyncio.Event()
        await self._event.wait()

    def __repr__(self) -> str:
        return f"CancellationToken(cancelled={self._cancelled}, reason={self._reason!r})"
