# Portfolio Guard - AI Access-Control & Context-Assembly Engine
# Copyright (c) 2026 George Scott Foley
# ORCID: 0009-0006-4957-0540
# Email: Georgescottfoley@proton.me
# Licensed under the MIT License - see LICENSE file for details

"""
Async Infrastructure Primitives

Provides:
- UTC clock helpers (injectable for tests)
- Paired startup/shutdown hooks for the gateway lifespan
- Background task tracking with periodic jobs
"""

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from datetime import UTC, datetime

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]
Hook = Callable[[], Awaitable[None]]


def utcnow() -> datetime:
    return datetime.now(UTC)


class Lifecycle:
    """
    Ordered startup hooks with matching shutdown hooks.

    Startup runs hooks in registration order. If one fails, the
    shutdown hooks registered so far are run in reverse before the
    error propagates, so a half-started app releases what it opened.

    Usage:
        lifecycle = Lifecycle()

        @lifecycle.on_startup
        async def open_store(): ...

        @lifecycle.on_shutdown
        async def close_store(): ...

        async with lifecycle.run():
            ...
    """

    def __init__(self):
        self._startup: list[Hook] = []
        self._shutdown: list[Hook] = []
        self._running = False

    def on_startup(self, hook: Hook) -> Hook:
        self._startup.append(hook)
        return hook

    def on_shutdown(self, hook: Hook) -> Hook:
        self._shutdown.append(hook)
        return hook

    async def startup(self) -> None:
        for hook in self._startup:
            try:
                await hook()
            except Exception:
                logger.exception(f"Startup hook {hook.__name__} failed")
                self._running = True
                await self.shutdown()
                raise
        self._running = True
        logger.info(f"Started ({len(self._startup)} startup hooks)")

    async def shutdown(self) -> None:
        """Run shutdown hooks newest first; a failing hook does not stop the rest."""
        if not self._running:
            return
        self._running = False
        for hook in reversed(self._shutdown):
            try:
                await hook()
            except Exception:
                logger.exception(f"Shutdown hook {hook.__name__} failed")
        logger.info("Stopped")

    @asynccontextmanager
    async def run(self) -> AsyncIterator["Lifecycle"]:
        await self.startup()
        try:
            yield self
        finally:
            await self.shutdown()

    @property
    def is_running(self) -> bool:
        return self._running


class BackgroundTasks:
    """Tracks fire-and-forget tasks so shutdown can cancel them."""

    def __init__(self):
        self._tasks: set[asyncio.Task] = set()

    def create_task(self, coro: Awaitable, name: str | None = None) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        if name:
            task.set_name(name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def run_periodic(
        self, interval_seconds: float, job: Callable[[], Awaitable[object]], name: str
    ) -> asyncio.Task:
        """
        Run job every interval_seconds until cancelled.

        A failed run is logged and retried on the next tick.
        """

        async def _loop() -> None:
            while True:
                await asyncio.sleep(interval_seconds)
                try:
                    await job()
                except Exception:
                    logger.exception(f"Periodic job {name} failed")

        return self.create_task(_loop(), name=name)

    async def cancel_all(self, timeout: float = 5.0) -> None:
        if not self._tasks:
            return
        pending = list(self._tasks)
        for task in pending:
            task.cancel()
        await asyncio.wait(pending, timeout=timeout)

    @property
    def count(self) -> int:
        return len(self._tasks)


__all__ = ["Clock", "utcnow", "Lifecycle", "BackgroundTasks"]
