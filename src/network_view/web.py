"""
HTTP surface of Network View: the server-sent event feed and control endpoints.
"""
import asyncio
import json

import structlog  # type: ignore[import-not-found]
from aiohttp import web

from .config import Config
from .discovery.controller import DiscoveryController
from .discovery.exceptions import DiscoveryError, SessionStartError, SubscriberClosed, UnknownInterfaceError
from .discovery.hub import BroadcastHub

logger = structlog.get_logger(__name__)

CONFIG_KEY = web.AppKey("config", Config)
CONTROLLER_KEY = web.AppKey("controller", DiscoveryController)
HUB_KEY = web.AppKey("hub", BroadcastHub)
BACKGROUND_TASKS_KEY = web.AppKey("background_tasks", set)


def _json_error(status: int, message: str) -> web.Response:
    return web.json_response({"error": message}, status=status)


def cors_middleware(allow_origin: str):
    @web.middleware
    async def middleware(request: web.Request, handler):
        if request.method == "OPTIONS":
            response = web.Response(status=200)
        else:
            response = await handler(request)
        if response.prepared:
            return response
        response.headers["Access-Control-Allow-Origin"] = allow_origin
        response.headers["Access-Control-Allow-Methods"] = "GET, POST, OPTIONS"
        response.headers["Access-Control-Allow-Headers"] = "Content-Type"
        return response
    return middleware


async def health(request: web.Request) -> web.Response:
    return web.json_response({"status": "ok"})


async def discover(request: web.Request) -> web.StreamResponse:
    """Stream every newly discovered service as a server-sent event."""
    hub = request.app[HUB_KEY]
    keepalive = request.app[CONFIG_KEY].server.sse_keepalive_seconds
    response = web.StreamResponse(
        status=200,
        headers={
            "Content-Type": "text/event-stream",
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
        },
    )
    # CORS headers must be on the response before it is prepared.
    response.headers["Access-Control-Allow-Origin"] = request.app[CONFIG_KEY].server.cors_allow_origin

    async with hub.subscribe() as subscriber:
        log = logger.bind(subscriber_id=subscriber.id, peer=request.remote)
        await response.prepare(request)
        log.info("Event stream opened")
        try:
            while True:
                try:
                    event = await asyncio.wait_for(subscriber.get(), timeout=keepalive)
                except TimeoutError:
                    await response.write(b": keepalive\n\n")
                    continue
                await response.write(event.to_sse().encode("utf-8"))
        except ConnectionResetError:
            log.info("Event stream closed by peer")
        except SubscriberClosed:
            log.info("Event stream detached")
        except asyncio.CancelledError:
            log.info("Event stream cancelled")
            raise
    return response


async def list_interfaces(request: web.Request) -> web.Response:
    controller = request.app[CONTROLLER_KEY]
    interfaces = await asyncio.to_thread(controller.list_interfaces)
    return web.json_response({
        "interfaces": [descriptor.to_wire() for descriptor in interfaces],
        "current": controller.current_interface,
    })


async def set_interface(request: web.Request) -> web.Response:
    controller = request.app[CONTROLLER_KEY]
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        return _json_error(400, str(e))
    if not isinstance(body, dict):
        return _json_error(400, "request body must be a JSON object")

    name = body.get("interface")
    if not isinstance(name, str) or not name:
        return _json_error(400, "interface name required")

    try:
        bound = await controller.set_interface(name)
    except UnknownInterfaceError as e:
        return _json_error(404, str(e))
    except SessionStartError as e:
        return _json_error(503, str(e))
    return web.json_response({"status": "ok", "interface": bound})


async def restart(request: web.Request) -> web.Response:
    controller = request.app[CONTROLLER_KEY]
    tasks = request.app[BACKGROUND_TASKS_KEY]

    async def run_restart() -> None:
        try:
            await controller.restart()
        except DiscoveryError as e:
            logger.error("Background restart failed", error=str(e))

    task = asyncio.create_task(run_restart())
    tasks.add(task)
    task.add_done_callback(tasks.discard)
    return web.json_response({"status": "restarting"}, status=202)


async def _start_discovery(app: web.Application) -> None:
    controller = app[CONTROLLER_KEY]
    try:
        await controller.start()
    except DiscoveryError as e:
        # The HTTP surface stays up so an interface can still be selected.
        logger.error("Discovery did not start", error=str(e))


async def _stop_discovery(app: web.Application) -> None:
    tasks = app[BACKGROUND_TASKS_KEY]
    for task in list(tasks):
        task.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)
    await app[CONTROLLER_KEY].stop()


def create_app(
    config: Config,
    controller: DiscoveryController | None = None,
    hub: BroadcastHub | None = None,
    *,
    start_discovery: bool = True,
) -> web.Application:
    """Build the aiohttp application around a discovery controller."""
    if controller is None:
        hub = hub or BroadcastHub(config.discovery.subscriber_queue_size)
        controller = DiscoveryController(config.discovery, hub)
    hub = controller.hub

    app = web.Application(middlewares=[cors_middleware(config.server.cors_allow_origin)])
    app[CONFIG_KEY] = config
    app[CONTROLLER_KEY] = controller
    app[HUB_KEY] = hub
    app[BACKGROUND_TASKS_KEY] = set()

    app.router.add_get("/health", health)
    app.router.add_get("/discover", discover)
    app.router.add_get("/api/interfaces", list_interfaces)
    app.router.add_post("/api/interfaces/set", set_interface)
    app.router.add_post("/api/restart", restart)

    if start_discovery:
        app.on_startup.append(_start_discovery)
    app.on_cleanup.append(_stop_discovery)
    return app
