"""Online/offline signal sources."""
from __future__ import annotations

import asyncio
import logging
from typing import Callable, Optional

from core.settings import OFFLINE
from services.signals import Signal


logger = logging.getLogger("comedor.offline.connectivity")


class ConnectivityMonitor:
    """Connectivity state that emits only on ``online``/``offline`` edges.

    The base class is driven by ``set_online``; subclasses feed it from a probe.
    """

    def __init__(self, online: bool = True) -> None:
        self._online = bool(online)
        self._changed: Signal[bool] = Signal("connectivity", logger)

    @property
    def is_online(self) -> bool:
        return self._online

    def subscribe(self, callback: Callable[[bool], None]) -> Callable[[], None]:
        return self._changed.connect(callback)

    @property
    def subscriber_count(self) -> int:
        return len(self._changed)

    def set_online(self, online: bool) -> bool:
        """Update the state; returns True when it changed and listeners were told."""

        online = bool(online)
        if online == self._online:
            return False
        self._online = online
        logger.info("Connectivity changed: %s", "online" if online else "offline")
        self._changed.emit(online)
        return True


class ProbeConnectivityMonitor(ConnectivityMonitor):
    """Polls a TCP endpoint (the Firestore frontend by default) to detect the link state."""

    def __init__(
        self,
        host: str = OFFLINE.probe_host,
        port: int = OFFLINE.probe_port,
        *,
        interval_sec: float = OFFLINE.probe_interval_sec,
        timeout_sec: float = OFFLINE.probe_timeout_sec,
        online: bool = False,
    ) -> None:
        super().__init__(online=online)
        self.host = host
        self.port = port
        self.interval_sec = interval_sec
        self.timeout_sec = timeout_sec
        self._task: Optional[asyncio.Task] = None

    async def probe(self) -> bool:
        try:
            _reader, writer = await asyncio.wait_for(
                asyncio.open_connection(self.host, self.port), timeout=self.timeout_sec
            )
        except (OSError, asyncio.TimeoutError) as exc:
            logger.debug("Probe %s:%s failed: %s", self.host, self.port, exc)
            return False
        writer.close()
        try:
            await writer.wait_closed()
        except OSError:
            pass
        return True

    async def check(self) -> bool:
        self.set_online(await self.probe())
        return self.is_online

    async def run(self) -> None:
        while True:
            await self.check()
            await asyncio.sleep(self.interval_sec)

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._task = asyncio.get_running_loop().create_task(self.run())
        return self._task

    def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None


__all__ = ["ConnectivityMonitor", "ProbeConnectivityMonitor"]
