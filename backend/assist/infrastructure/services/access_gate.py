"""
Access Gate

Read side of the reconciliation engine: answers "may this account use
premium features?" from the denormalized access flag, failing closed.

AccessWatch polls the gate on an explicit asyncio task and reports changes
to a callback; the SSE endpoint builds on it.
"""

import asyncio
import inspect
import logging
from typing import Awaitable, Callable, Optional, Union

from assist.domain.interfaces import AccountStore


logger = logging.getLogger(__name__)

AccessCallback = Callable[[bool], Union[None, Awaitable[None]]]


class AccessGate:

    def __init__(self, accounts: AccountStore, *, poll_interval: float = 300.0):
        self._accounts = accounts
        self._poll_interval = poll_interval

    async def has_active_access(self, account_id: str) -> bool:
        """
        Whether ``account_id`` currently has premium access.

        Missing records and lookup failures both answer False.
        """
        try:
            flag = await self._accounts.get_access_flag(account_id)
        except Exception as e:
            logger.error(f"Access lookup failed for account {account_id}, denying: {e}")
            return False
        return bool(flag and flag.has_active_access)

    def watch(
        self,
        account_id: str,
        on_change: AccessCallback,
        interval: Optional[float] = None,
        *,
        initial: bool = False,
    ) -> "AccessWatch":
        """Start polling ``account_id``; the returned watch must be stopped by the caller."""
        watch = AccessWatch(
            self,
            account_id,
            on_change,
            interval if interval is not None else self._poll_interval,
            initial=initial,
        )
        watch.start()
        return watch


class AccessWatch:
    """
    Periodic access check for one account.

    Starts from ``initial`` (False unless told otherwise) and invokes
    ``on_change`` only when the observed value differs from the last one.
    A failing callback is logged and polling continues.
    """

    def __init__(
        self,
        gate: AccessGate,
        account_id: str,
        on_change: AccessCallback,
        interval: float,
        *,
        initial: bool = False,
    ):
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.account_id = account_id
        self._gate = gate
        self._on_change = on_change
        self._interval = interval
        self._current = initial
        self._task: Optional[asyncio.Task] = None

    @property
    def current(self) -> bool:
        return self._current

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(
            self._run(),
            name=f"access-watch:{self.account_id}",
        )

    async def stop(self) -> None:
        """Cancel the polling task and wait for it to finish."""
        if self._task is None:
            return
        task, self._task = self._task, None
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _run(self) -> None:
        while True:
            value = await self._gate.has_active_access(self.account_id)
            if value != self._current:
                self._current = value
                await self._notify(value)
            await asyncio.sleep(self._interval)

    async def _notify(self, value: bool) -> None:
        try:
            result = self._on_change(value)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(f"Access watch callback failed for account {self.account_id}: {e}")
