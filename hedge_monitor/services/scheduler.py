"""Polling tasks, session scoping and in-flight write guards."""
from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterator

from ..errors import ActionBlocked

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionToken:
    account: str
    generation: int


class SessionContext:
    """The account (and position) the current poll results belong to.

    Pollers take a token before awaiting a read and check it afterwards; a
    response that arrives after an account switch is discarded instead of
    being attributed to the new account.
    """

    def __init__(self, account: str = "") -> None:
        self.account = account
        self.position_address: str | None = None
        self.generation = 0

    def token(self) -> SessionToken:
        return SessionToken(self.account, self.generation)

    def is_current(self, token: SessionToken) -> bool:
        return token.generation == self.generation

    def switch_account(self, account: str) -> None:
        if account.lower() == self.account.lower():
            return
        logger.info("Account switched to %s", account)
        self.account = account
        self.position_address = None
        self.generation += 1

    def set_position(self, position_address: str | None) -> None:
        if position_address != self.position_address:
            self.position_address = position_address
            self.generation += 1


class PollingTask:
    """Run ``func`` every ``interval`` seconds until stopped.

    A run never overlaps the previous one: the next sleep starts only after
    ``func`` returns. Errors are logged and the loop carries on.
    """

    def __init__(
        self,
        name: str,
        interval: float,
        func: Callable[[], Awaitable[Any]],
    ) -> None:
        self.name = name
        self.interval = interval
        self._func = func
        self._task: asyncio.Task | None = None
        self._wake = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._loop(), name=f"poll:{self.name}")

    def trigger(self) -> None:
        """Skip the remaining wait and poll now."""
        self._wake.set()

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None

    async def run_once(self) -> None:
        try:
            await self._func()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning("Poll '%s' failed: %s", self.name, e)

    async def _loop(self) -> None:
        while True:
            self._wake.clear()
            await self.run_once()
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(self._wake.wait(), timeout=self.interval)


class Scheduler:
    """Owns a set of polling tasks; stops all of them on exit."""

    def __init__(self) -> None:
        self.tasks: dict[str, PollingTask] = {}

    def every(
        self, name: str, interval: float, func: Callable[[], Awaitable[Any]]
    ) -> PollingTask:
        if name in self.tasks:
            raise ValueError(f"Polling task '{name}' already scheduled")
        task = PollingTask(name, interval, func)
        self.tasks[name] = task
        return task

    def start(self) -> None:
        for task in self.tasks.values():
            task.start()

    async def stop(self) -> None:
        for task in self.tasks.values():
            await task.stop()

    async def __aenter__(self) -> "Scheduler":
        self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.stop()


class InFlightGuard:
    """At most one in-flight mutating call per (position, action)."""

    def __init__(self) -> None:
        self._pending: set[tuple[str, str]] = set()

    def is_pending(self, key: str, action: str) -> bool:
        return (key.lower(), action) in self._pending

    @contextlib.contextmanager
    def hold(self, key: str, action: str) -> Iterator[None]:
        slot = (key.lower(), action)
        if slot in self._pending:
            raise ActionBlocked(f"A {action} transaction is already pending")
        self._pending.add(slot)
        try:
            yield
        finally:
            self._pending.discard(slot)
