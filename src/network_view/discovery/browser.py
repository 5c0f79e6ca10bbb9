"""
Library-level DNS-SD browsing with zeroconf, run alongside the raw listener.
"""
import asyncio
from collections.abc import Sequence

import structlog  # type: ignore[import-not-found]
from zeroconf import InterfaceChoice, IPVersion, ServiceStateChange, Zeroconf  # type: ignore[import-not-found]
from zeroconf.asyncio import AsyncServiceBrowser, AsyncServiceInfo, AsyncZeroconf  # type: ignore[import-not-found]

from ..models.discovery import ServiceRecord
from .session import Session
from .wire import instance_label

logger = structlog.get_logger(__name__)


class ZeroconfBrowser:
    """
    Browses the service catalog with zeroconf's AsyncServiceBrowser and feeds
    every added service through the session's admission path.
    """

    def __init__(self, session: Session, categories: Sequence[str], *, request_timeout_ms: int = 3000):
        self.session = session
        self.categories = list(categories)
        self.request_timeout_ms = request_timeout_ms
        self._pending: set[asyncio.Task] = set()
        self.logger = session.logger.bind(component="ZeroconfBrowser")

    async def run(self) -> None:
        interfaces = [self.session.interface_address] if self.session.interface_address else InterfaceChoice.All
        browser = None
        try:
            async with AsyncZeroconf(interfaces=interfaces) as aiozc:
                def on_service_state_change(
                    zeroconf: Zeroconf, service_type: str, name: str, state_change: ServiceStateChange
                ) -> None:
                    if state_change is not ServiceStateChange.Added or not self.session.active:
                        return
                    task = asyncio.create_task(self.process_service_info(aiozc.zeroconf, service_type, name))
                    self._pending.add(task)
                    task.add_done_callback(self._pending.discard)

                browser = AsyncServiceBrowser(aiozc.zeroconf, self.categories, handlers=[on_service_state_change])
                self.logger.info("zeroconf browser started", categories=len(self.categories))
                await self.session.stop_event.wait()
                await browser.async_cancel()
                for task in list(self._pending):
                    task.cancel()
                await asyncio.gather(*self._pending, return_exceptions=True)
        except OSError as e:
            self.logger.warning("zeroconf browser could not start", error=str(e))
        finally:
            self.logger.info("zeroconf browser stopped")

    async def process_service_info(self, zc: Zeroconf, service_type: str, name: str) -> ServiceRecord | None:
        """Resolve one browsed instance and offer it to the session."""
        log = self.logger.bind(instance=name, category=service_type)
        info = AsyncServiceInfo(service_type, name)
        try:
            if not await info.async_request(zc, self.request_timeout_ms):
                log.debug("Service info request timed out")
                return None
        except Exception as e:
            log.debug("Service info request failed", error=str(e))
            return None

        addresses = info.parsed_addresses(IPVersion.V4Only) or info.parsed_addresses(IPVersion.V6Only)
        if not addresses or not info.server or info.port is None:
            log.debug("Service info incomplete, dropping candidate", server=info.server, port=info.port)
            return None

        record = ServiceRecord(
            name=instance_label(name),
            category=service_type,
            host=info.server,
            address=addresses[0],
            port=info.port,
        )
        return record if self.session.offer(record) else None
