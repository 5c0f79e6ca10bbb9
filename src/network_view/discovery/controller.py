"""
Lifecycle owner of discovery sessions and the selected network interface.
"""
import asyncio
import socket
from collections.abc import Callable
from enum import Enum

import structlog  # type: ignore[import-not-found]

from ..config import DiscoveryConfig
from ..models.discovery import InterfaceDescriptor
from . import network
from .browser import ZeroconfBrowser
from .cache import DeduplicationCache
from .exceptions import SessionStartError, UnknownInterfaceError
from .hub import BroadcastHub
from .listener import MulticastListener
from .resolver import Exchanger, RecordResolver
from .scheduler import ActiveQueryScheduler
from .session import Session
from .transport import QueryClient, open_multicast_socket

logger = structlog.get_logger(__name__)

SocketFactory = Callable[[str, int, str | None], socket.socket]
ClientFactory = Callable[[str | None], Exchanger]


class ControllerState(str, Enum):
    STOPPED = "stopped"
    RUNNING = "running"


class DiscoveryController:
    """
    Starts, restarts and stops discovery sessions as a unit.

    Every start, restart or interface switch builds a fresh session: the
    multicast socket for the new session is opened first, so a bind failure
    leaves the current session running. The previous session is then
    stopped and awaited, the deduplication cache is cleared, and the new
    session's loops are spawned. Lifecycle operations are serialised by a
    lock; `current_interface` is only written while holding it.
    """

    def __init__(
        self,
        config: DiscoveryConfig,
        hub: BroadcastHub | None = None,
        *,
        socket_factory: SocketFactory = open_multicast_socket,
        client_factory: ClientFactory | None = None,
        interface_lister: Callable[[], list[InterfaceDescriptor]] = network.list_interfaces,
        address_lookup: Callable[[str], str | None] = network.get_interface_ipv4,
    ):
        self.config = config
        self.hub = hub if hub is not None else BroadcastHub(config.subscriber_queue_size)
        self.cache = DeduplicationCache(ttl_seconds=config.dedup_ttl_seconds)
        self._socket_factory = socket_factory
        self._client_factory = client_factory or self._default_client
        self._interface_lister = interface_lister
        self._address_lookup = address_lookup
        self._lifecycle_lock = asyncio.Lock()
        self._session: Session | None = None
        self._current_interface: str | None = config.interface
        self.logger = logger.bind(component="DiscoveryController")

    def _default_client(self, interface_address: str | None) -> QueryClient:
        return QueryClient(
            self.config.multicast_group,
            self.config.multicast_port,
            interface_address,
            default_timeout=self.config.resolve_timeout_seconds,
        )

    @property
    def state(self) -> ControllerState:
        return ControllerState.RUNNING if self._session is not None else ControllerState.STOPPED

    @property
    def current_interface(self) -> str | None:
        return self._current_interface

    @property
    def session_id(self) -> str | None:
        return self._session.session_id if self._session is not None else None

    def list_interfaces(self) -> list[InterfaceDescriptor]:
        """Interfaces currently up. Recomputed on every call."""
        return self._interface_lister()

    async def start(self, interface: str | None = None) -> str:
        """Start (or replace) the session on `interface`. Returns the bound interface."""
        async with self._lifecycle_lock:
            target = interface or self._current_interface or network.default_interface()
            if not target:
                raise SessionStartError("<none>", "no usable network interface")
            await self._replace_session(target)
            return target

    async def restart(self) -> str:
        """Supersede the running session with a fresh one on the same interface."""
        self.logger.info("Restart requested", interface=self._current_interface)
        return await self.start()

    async def set_interface(self, name: str) -> str:
        """Switch discovery to interface `name`.

        Raises:
            UnknownInterfaceError: `name` is not among the current interfaces.
            SessionStartError: the new session could not be started; the
                previous binding stays in place.
        """
        if not any(descriptor.name == name for descriptor in self.list_interfaces()):
            self.logger.warning("Unknown interface requested", interface=name)
            raise UnknownInterfaceError(name)
        return await self.start(name)

    async def stop(self) -> None:
        async with self._lifecycle_lock:
            if self._session is None:
                return
            await self._session.stop(self.config.shutdown_grace_seconds)
            self._session = None
            self.logger.info("Discovery stopped")

    async def _replace_session(self, interface: str) -> None:
        log = self.logger.bind(interface=interface)
        address = self._address_lookup(interface)
        if address is None:
            log.warning("Interface has no IPv4 address, joining group on any interface")

        sock = None
        if self.config.enable_listener:
            try:
                sock = self._socket_factory(self.config.multicast_group, self.config.multicast_port, address)
            except OSError as e:
                log.error("Failed to join mDNS multicast group", error=str(e))
                raise SessionStartError(interface, str(e)) from e

        try:
            client = self._client_factory(address)
        except Exception as e:
            if sock is not None:
                sock.close()
            log.error("Failed to create query client", error=str(e))
            raise SessionStartError(interface, str(e)) from e

        if self._session is not None:
            await self._session.stop(self.config.shutdown_grace_seconds)
            self._session = None
        self.cache.reset()

        session = Session(interface, address, self.cache, self.hub)
        if sock is not None:
            session.own(sock)
        try:
            self._launch(session, sock, client)
        except Exception:
            log.exception("Failed to launch discovery session", session_id=session.session_id)
            await session.stop(grace_seconds=0)
            raise
        self._session = session
        self._current_interface = interface
        log.info("Discovery session started", session_id=session.session_id, interface_address=address)

    def _launch(self, session: Session, sock: socket.socket | None, client: Exchanger) -> None:
        cfg = self.config
        resolver = RecordResolver(
            client,
            resolve_timeout=cfg.resolve_timeout_seconds,
            unicast_lookup_timeout=cfg.unicast_lookup_timeout_seconds,
        )
        if sock is not None:
            listener = MulticastListener(
                session,
                resolver,
                sock,
                read_timeout=cfg.read_timeout_seconds,
                buffer_size=cfg.receive_buffer_size,
                max_concurrency=cfg.max_concurrent_resolutions,
            )
            session.spawn(listener.run(), name="listener")
        if cfg.enable_scheduler:
            scheduler = ActiveQueryScheduler(
                session,
                resolver,
                client,
                cfg.service_categories,
                interval=cfg.query_interval_seconds,
                pointer_timeout=cfg.pointer_timeout_seconds,
            )
            session.spawn(scheduler.run(), name="scheduler")
        if cfg.enable_browser:
            browser = ZeroconfBrowser(session, cfg.service_categories, request_timeout_ms=cfg.browser_request_timeout_ms)
            session.spawn(browser.run(), name="browser")
