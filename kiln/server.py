"""Development server for Kiln.

Builds the site once, serves the destination over HTTP and pushes reload
messages to open browser tabs over a websocket. HTML responses get a small
script that listens for those messages. Directory listings are never shown;
unknown paths answer 404 with the site's own 404.html when it has one.

With watching enabled, source changes go through the incremental Watcher and
browsers reload only when a rebuild actually changed output files.
"""

from __future__ import annotations

import asyncio
import functools
import json
import threading
import time
from http.server import SimpleHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path

import click
import websockets

from .build import BuildResult, Site
from .config import BuildOptions
from .watcher import Watcher

RELOAD_SCRIPT_TEMPLATE = """
<script>
(() => {{
  const ws = new WebSocket('ws://' + location.hostname + ':{ws_port}');
  ws.onmessage = (event) => {{
    const data = JSON.parse(event.data || '{{}}');
    if (data.type === 'reload') location.reload();
  }};
}})();
</script>
"""


def inject_reload_script(content: str, script: str) -> str:
    """Insert the live reload script before ``</body>``, or append it."""
    if "</body>" in content:
        return content.replace("</body>", f"{script}</body>", 1)
    return content + script


class _ReloadHandler(SimpleHTTPRequestHandler):
    """Serves the destination directory with the reload script injected."""

    reload_script = RELOAD_SCRIPT_TEMPLATE.format(ws_port=4001)

    def end_headers(self):
        self.send_header("Cache-Control", "no-cache, no-store, must-revalidate")
        super().end_headers()

    def log_message(self, format, *args):
        pass

    def list_directory(self, path):  # pragma: no cover - exercised via send_head
        return self._serve_404()

    def _send_html(self, status: int, content: str) -> None:
        encoded = inject_reload_script(content, self.reload_script).encode("utf-8")
        self.send_response(status)
        self.send_header("Content-type", "text/html; charset=utf-8")
        self.send_header("Content-Length", str(len(encoded)))
        self.end_headers()
        self.wfile.write(encoded)

    def _serve_404(self):
        error_page = Path(self.directory) / "404.html"
        if error_page.exists():
            self._send_html(404, error_page.read_text(encoding="utf-8"))
            return None
        self.send_error(404, "File not found")
        return None

    def send_head(self):
        path_obj = Path(self.translate_path(self.path))
        if path_obj.is_dir():
            index_path = path_obj / "index.html"
            if not index_path.exists():
                return self._serve_404()
            path_obj = index_path
        elif not path_obj.exists():
            # Extensionless permalinks resolve to their .html file.
            html_path = path_obj.with_name(path_obj.name + ".html")
            if not html_path.is_file():
                return self._serve_404()
            path_obj = html_path

        if path_obj.suffix in (".html", ".htm"):
            self._send_html(200, path_obj.read_text(encoding="utf-8"))
            return None
        return super().send_head()


class DevServer:
    """Serves a Site with live reload.

    Attributes:
        site: The Site being served and rebuilt.
        http_port: HTTP listening port.
        ws_port: Websocket port for reload messages (HTTP port + 1 by default).
        watch: Whether source changes trigger incremental rebuilds.
    """

    def __init__(
        self,
        source: Path,
        http_port: int = 4000,
        ws_port: int | None = None,
        watch: bool = True,
        options: BuildOptions | None = None,
    ):
        self.site = Site(source, options)
        self.http_port = http_port
        self.ws_port = ws_port if ws_port is not None else http_port + 1
        self.watch = watch
        self._reload_script = RELOAD_SCRIPT_TEMPLATE.format(ws_port=self.ws_port)
        self._watcher: Watcher | None = None
        self._httpd: ThreadingHTTPServer | None = None
        self._ws_clients: set = set()
        self._loop = asyncio.new_event_loop()

    @property
    def output_dir(self) -> Path:
        graph = self.site.graph
        if graph is None:
            raise RuntimeError("The site has not been built yet")
        return self.site.destination_for(graph.config)

    def start(self) -> None:  # pragma: no cover - integration path
        result = self.site.build()
        click.echo(f"Built {len(result.documents)} documents into {result.output_dir}")
        threading.Thread(target=self._start_http, daemon=True).start()
        threading.Thread(target=self._start_ws, daemon=True).start()
        if self.watch:
            self._watcher = Watcher(self.site, on_rebuild=self.handle_rebuild)
            self._watcher.start()
        try:
            while True:
                time.sleep(1)
        except KeyboardInterrupt:
            self.stop()

    def stop(self) -> None:
        if self._watcher:
            self._watcher.stop()
        if self._httpd:
            self._httpd.shutdown()
        self._loop.call_soon_threadsafe(self._loop.stop)

    def handler_class(self) -> functools.partial:
        handler_cls = type(
            "_ReloadHandlerWithPort",
            (_ReloadHandler,),
            {"reload_script": self._reload_script},
        )
        return functools.partial(handler_cls, directory=str(self.output_dir))

    def handle_rebuild(self, result: BuildResult) -> None:
        """Report a finished rebuild and reload browsers if any output changed."""
        if not (result.report.written or result.report.removed):
            return
        kind = "Full rebuild" if result.full else "Rebuilt"
        click.echo(f"{kind}: {len(result.rendered)} documents, {len(result.report.written)} files written")
        self._broadcast_reload()

    def _start_http(self) -> None:  # pragma: no cover - integration path
        self._httpd = ThreadingHTTPServer(("", self.http_port), self.handler_class())
        click.echo(f"Serving {self.output_dir} at http://localhost:{self.http_port}")
        self._httpd.serve_forever()

    def _start_ws(self) -> None:  # pragma: no cover - integration path
        asyncio.set_event_loop(self._loop)
        try:
            self._loop.run_until_complete(self._run_ws_server())
        except OSError as exc:
            click.echo(f"WebSocket server failed to start (port {self.ws_port}): {exc}", err=True)

    async def _run_ws_server(self) -> None:  # pragma: no cover - integration path
        async with websockets.serve(self._ws_handler, "0.0.0.0", self.ws_port):
            await asyncio.Future()

    async def _ws_handler(self, websocket):
        self._ws_clients.add(websocket)
        try:
            await websocket.wait_closed()
        finally:
            self._ws_clients.discard(websocket)

    def _broadcast_reload(self) -> None:
        if not self._loop.is_running():
            return
        message = json.dumps({"type": "reload"})
        asyncio.run_coroutine_threadsafe(self._async_broadcast(message), self._loop)

    async def _async_broadcast(self, message: str) -> None:
        stale = set()
        for ws in list(self._ws_clients):
            try:
                await ws.send(message)
            except websockets.ConnectionClosed:
                stale.add(ws)
        for ws in stale:
            self._ws_clients.discard(ws)
