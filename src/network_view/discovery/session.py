"""
A single discovery run bound to one interface.
"""
import asyncio
import socket
import uuid
from collections.abc import Coroutine
from typing import Any

import structlog  # type: ignore[import-not-found]

from ..models.discovery import DiscoveryEvent, ServiceRecord
from .cache import DeduplicationCache
from .hub import BroadcastHub

logger = structlog.get_logger(__name__)


class Session:
    """
    Live state of one discovery run: the bound interface, the cancellation
    token observed by its loops, and the tasks running them.

    A session stops admitting records the moment it is told to stop, so a
    superseded session can never reach the hub after its successor starts.
    """

    def __init__(self, interface: str, interface_address: str | None, cache: DeduplicationCache, hub: BroadcastHub):
        self.session_id = uuid.uuid4().hex[:8]
        self.interface = interface
        self.interface_address = interface_address
        self.cache = cache
        self.hub = hub
        self.stop_event = asyncio.Event()
        self._tasks: set[asyncio.Task] = set()
        self._sockets: list[socket.socket] = []
        self.logger = logger.bind(session_id=self.session_id, interface=interface)

    @property
    def active(self) -> bool:
        return not self.stop_event.is_set()

    def spawn(self, coro: Coroutine[Any, Any, Any], name: str) -> asyncio.Task:
        task = asyncio.create_task(coro, name=f"{name}-{self.session_id}")
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def own(self, sock: socket.socket) -> socket.socket:
        """Tie `sock` to the session; it is closed when the session stops."""
        self._sockets.append(sock)
        return sock

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            self.logger.error("Session task failed", task=task.get_name(), error=str(task.exception()))

    def offer(self, record: ServiceRecord) -> bool:
        """Publish `record` if the session is active and its identity is new."""
        if not self.active:
            return False
        if not self.cache.try_admit(record.identity_key):
            return False
        delivered = self.hub.publish(DiscoveryEvent(record=record, removed=False))
        self.logger.info(
            "Discovered service",
            service_name=record.name,
            category=record.category,
            address=record.address,
            port=record.port,
            subscribers=delivered,
        )
        return True

    async def wait_stopped(self, timeout: float) -> bool:
        """Sleep up to `timeout` seconds; True if the session was stopped meanwhile."""
        try:
            await asyncio.wait_for(self.stop_event.wait(), timeout=timeout)
        except TimeoutError:
            return False
        return True

    async def stop(self, grace_seconds: float = 2.0) -> None:
        """Signal cancellation and wait for the session's loops to exit."""
        self.stop_event.set()
        tasks = list(self._tasks)
        if not tasks:
            self._close_sockets()
            return
        self.logger.info("Stopping session", tasks=len(tasks))
        pending = set(tasks)
        if grace_seconds > 0:
            _, pending = await asyncio.wait(tasks, timeout=grace_seconds)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._close_sockets()
        self.logger.info("Session stopped", forced=len(pending))

    def _close_sockets(self) -> None:
        while self._sockets:
            self._sockets.pop().close()
