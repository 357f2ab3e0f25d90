"""
Development server: serves the output tree, watches the source tree and
tells open pages to reload after every successful rebuild.

Pieces:
- Debouncer collapses bursts of change notifications into one rebuild
- LiveReloadHub keeps the open event-stream connections and broadcasts to them
- create_preview_app serves the output tree plus the event-stream endpoint
- SourceWatcher forwards watchdog notifications onto the event loop
- DevServer ties them together around compile_site
"""

from __future__ import annotations

import asyncio
import errno
import logging
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from aiohttp import web
from watchdog.events import (
    EVENT_TYPE_CREATED,
    EVENT_TYPE_DELETED,
    EVENT_TYPE_MODIFIED,
    EVENT_TYPE_MOVED,
    FileSystemEvent,
    FileSystemEventHandler,
)
from watchdog.observers import Observer

from .build import BuildReport, compile_site
from .config import EXIT_PORT_IN_USE, LIVERELOAD_PATH, RELOAD_MESSAGE, SiteConfig
from .utils import display_path

logger = logging.getLogger(__name__)

HEARTBEAT_SECONDS = 15.0
RETRY_MS = 1000
SHUTDOWN_TIMEOUT = 1.0

CONTENT_TYPES = {
    ".html": "text/html",
    ".css": "text/css",
    ".js": "application/javascript",
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".svg": "image/svg+xml",
    ".webp": "image/webp",
}
DEFAULT_CONTENT_TYPE = "application/octet-stream"

# opened/closed notifications come from our own reads during a build
WATCHED_EVENT_TYPES = {EVENT_TYPE_CREATED, EVENT_TYPE_MODIFIED, EVENT_TYPE_DELETED, EVENT_TYPE_MOVED}


# -- debouncing --
class Debouncer:
    """Run an async function once per burst of trigger() calls.

    States are idle and pending: trigger() (re)starts the timer and returns a
    future. When the timer fires, every future collected since the last firing
    resolves with the result of a single call. Calls never overlap; a firing
    that lands while a call is running queues one follow-up call, and later
    firings join that queued call instead of adding another.
    """

    def __init__(self, func: Callable[[], Awaitable[Any]], wait: float):
        self._func = func
        self.wait = wait
        self._timer: Optional[asyncio.TimerHandle] = None
        self._pending: List[asyncio.Future] = []
        self._queued: Optional[List[asyncio.Future]] = None
        self._lock = asyncio.Lock()
        self._tasks: Set[asyncio.Task] = set()

    @property
    def is_pending(self) -> bool:
        return self._timer is not None

    def trigger(self) -> asyncio.Future:
        loop = asyncio.get_running_loop()
        if self._timer is not None:
            self._timer.cancel()
        future = loop.create_future()
        self._pending.append(future)
        self._timer = loop.call_later(self.wait, self._fire)
        return future

    def _fire(self) -> None:
        self._timer = None
        callers, self._pending = self._pending, []
        if self._queued is not None:
            self._queued.extend(callers)
            return
        self._queued = callers
        task = asyncio.ensure_future(self._run())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run(self) -> None:
        async with self._lock:
            callers, self._queued = self._queued or [], None
            try:
                result = await self._func()
            except asyncio.CancelledError:
                for future in callers:
                    future.cancel()
                raise
            except Exception as exc:
                for future in callers:
                    if not future.done():
                        future.set_exception(exc)
            else:
                for future in callers:
                    if not future.done():
                        future.set_result(result)

    def cancel(self) -> None:
        """Drop the pending timer and any queued or running call."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        for future in self._pending:
            future.cancel()
        self._pending = []
        for task in list(self._tasks):
            task.cancel()


# -- live reload --
class LiveReloadHub:
    """Registry of open event-stream responses."""

    def __init__(self, heartbeat: float = HEARTBEAT_SECONDS):
        self.heartbeat = heartbeat
        self._clients: Dict[web.StreamResponse, web.Request] = {}

    def __len__(self) -> int:
        return len(self._clients)

    async def handle(self, request: web.Request) -> web.StreamResponse:
        """Hold a server-sent events connection open until the client leaves."""
        response = web.StreamResponse(
            headers={"Content-Type": "text/event-stream", "Cache-Control": "no-cache"}
        )
        await response.prepare(request)
        self._clients[response] = request
        try:
            await response.write(f"retry: {RETRY_MS}\n\n".encode())
            while True:
                await asyncio.sleep(self.heartbeat)
                await response.write(b": keep-alive\n\n")
        except ConnectionResetError:
            logger.debug("Live reload client disconnected")
        finally:
            self._clients.pop(response, None)
        return response

    async def broadcast(self, message: str = RELOAD_MESSAGE) -> int:
        """Send message to every open client; returns how many received it."""
        frame = f"data: {message}\n\n".encode()
        delivered = 0
        for response, request in list(self._clients.items()):
            transport = request.transport
            if transport is None or transport.is_closing():
                self._clients.pop(response, None)
                continue
            try:
                await response.write(frame)
            except ConnectionResetError:
                self._clients.pop(response, None)
                continue
            delivered += 1
        return delivered


# -- static files --
def resolve_output_file(output_root: Path, rel_path: str) -> Optional[Path]:
    """Map a request path onto a file under output_root, or None."""
    root = output_root.resolve()
    target = (root / rel_path.lstrip("/")).resolve()
    try:
        target.relative_to(root)
    except ValueError:
        return None
    if target.is_dir():
        target = target / "index.html"
    return target if target.is_file() else None


def create_preview_app(output_root: Path, hub: LiveReloadHub) -> web.Application:
    async def serve_file(request: web.Request) -> web.Response:
        path = resolve_output_file(output_root, request.match_info["tail"])
        if path is None:
            return web.Response(status=404, text="404 Not Found")
        content_type = CONTENT_TYPES.get(path.suffix.lower(), DEFAULT_CONTENT_TYPE)
        return web.Response(body=path.read_bytes(), content_type=content_type)

    app = web.Application()
    app.router.add_get(LIVERELOAD_PATH, hub.handle)
    app.router.add_get("/{tail:.*}", serve_file)
    return app


# -- watching --
class _ChangeHandler(FileSystemEventHandler):
    def __init__(self, callback: Callable[[], Any], loop: asyncio.AbstractEventLoop):
        super().__init__()
        self._callback = callback
        self._loop = loop

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.event_type not in WATCHED_EVENT_TYPES:
            return
        logger.debug("Change: %s %s", event.event_type, event.src_path)
        self._loop.call_soon_threadsafe(self._callback)


class SourceWatcher:
    """Watches a directory tree on a watchdog thread; callback runs on the loop."""

    def __init__(self, root: Path, callback: Callable[[], Any], loop: asyncio.AbstractEventLoop):
        self.root = root
        self._handler = _ChangeHandler(callback, loop)
        self._observer: Optional[Any] = None

    def start(self) -> None:
        if self._observer is not None:
            return
        self._observer = Observer()
        self._observer.schedule(self._handler, str(self.root), recursive=True)
        self._observer.start()

    def stop(self) -> None:
        if self._observer is None:
            return
        self._observer.stop()
        self._observer.join(timeout=2)
        self._observer = None


# -- dev loop --
class DevServer:
    """Build, serve, watch, rebuild, reload."""

    def __init__(
        self,
        config: SiteConfig,
        build: Callable[..., Awaitable[BuildReport]] = compile_site,
        hub: Optional[LiveReloadHub] = None,
    ):
        self.config = config
        self.hub = hub if hub is not None else LiveReloadHub()
        self._build = build
        self.debouncer = Debouncer(self.rebuild, config.debounce_ms / 1000.0)
        self._runner: Optional[web.AppRunner] = None
        self._watcher: Optional[SourceWatcher] = None

    async def rebuild(self) -> bool:
        """One live build; reload clients only when it succeeds."""
        logger.info("\nChanges detected, rebuilding...")
        try:
            await self._build(self.config, live_reload=True)
        except Exception:
            logger.exception("Build failed")
            return False
        await self.hub.broadcast(RELOAD_MESSAGE)
        return True

    def on_change(self) -> asyncio.Future:
        return self.debouncer.trigger()

    async def start(self) -> None:
        """Start serving the output root and watching the source root."""
        app = create_preview_app(self.config.output_root, self.hub)
        runner = web.AppRunner(
            app, handler_cancellation=True, access_log=None, shutdown_timeout=SHUTDOWN_TIMEOUT
        )
        await runner.setup()
        site = web.TCPSite(runner, self.config.host, self.config.port)
        try:
            await site.start()
        except OSError as exc:
            await runner.cleanup()
            if exc.errno != errno.EADDRINUSE:
                raise
            logger.error("Error: Port %s is already in use.", self.config.port)
            raise SystemExit(EXIT_PORT_IN_USE) from exc
        self._runner = runner
        logger.info("\nDevelopment server running at %s", self.config.preview_url)

        if self.config.source_root.is_dir():
            self._watcher = SourceWatcher(
                self.config.source_root, self.on_change, asyncio.get_running_loop()
            )
            self._watcher.start()
            logger.info("Watching for changes in %s...", display_path(self.config.source_root))

    async def stop(self) -> None:
        if self._watcher is not None:
            self._watcher.stop()
            self._watcher = None
        self.debouncer.cancel()
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None

    async def run(self) -> None:
        """Initial build, then serve until cancelled."""
        await self._build(self.config, live_reload=True)
        await self.start()
        try:
            await asyncio.Event().wait()
        finally:
            await self.stop()
