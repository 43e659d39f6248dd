"""Incremental rebuild watcher for Kiln.

Filesystem events are collected into a coalescing queue. A single worker
thread drains the queue and hands the accumulated paths to
``Site.rebuild``; events that arrive while a rebuild runs are merged into the
next cycle instead of piling up.

States: IDLE -> DETECTING -> REBUILDING -> IDLE.

Key classes:
- RebuildQueue: Thread-safe set of pending paths.
- Watcher: Runs the observer and the rebuild worker.
"""

from __future__ import annotations

import enum
import logging
import threading
from collections.abc import Callable
from pathlib import Path

import click
from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from .build import BuildResult, Site
from .errors import BuildError

logger = logging.getLogger(__name__)


class WatchState(enum.Enum):
    IDLE = "idle"
    DETECTING = "detecting"
    REBUILDING = "rebuilding"


class RebuildQueue:
    """Pending changed paths; duplicate paths collapse into one entry."""

    def __init__(self) -> None:
        self._paths: set[Path] = set()
        self._condition = threading.Condition()
        self._closed = False

    def __len__(self) -> int:
        with self._condition:
            return len(self._paths)

    def put(self, path: Path) -> None:
        with self._condition:
            self._paths.add(path)
            self._condition.notify_all()

    def close(self) -> None:
        with self._condition:
            self._closed = True
            self._condition.notify_all()

    def drain(self, timeout: float | None = None, settle: float = 0.0) -> set[Path]:
        """Wait for changes and take all of them.

        Args:
            timeout: Longest time to wait for the first change.
            settle: Quiet period that must pass without new changes before
                the batch is taken, so an editor's burst of writes is one
                rebuild.

        Returns:
            The pending paths; empty on timeout or after ``close``.
        """
        with self._condition:
            if not self._paths and not self._closed:
                self._condition.wait(timeout)
            while settle and self._paths and not self._closed:
                size = len(self._paths)
                self._condition.wait(settle)
                if len(self._paths) == size:
                    break
            paths, self._paths = self._paths, set()
            return paths


class _ChangeHandler(FileSystemEventHandler):
    def __init__(self, watcher: Watcher):
        super().__init__()
        self.watcher = watcher

    def on_any_event(self, event):
        if event.event_type in ("opened", "closed", "closed_no_write"):
            return
        paths = [event.src_path, getattr(event, "dest_path", "")]
        for raw in paths:
            if raw:
                self.watcher.notify(Path(raw), is_directory=event.is_directory)


class Watcher:
    """Watches a site's source tree and applies incremental rebuilds.

    Attributes:
        site: The Site whose graph is kept current.
        state: Current WatchState.
        debounce: Quiet period before a batch of changes is rebuilt.
    """

    def __init__(
        self,
        site: Site,
        on_rebuild: Callable[[BuildResult], None] | None = None,
        on_error: Callable[[BuildError], None] | None = None,
        debounce: float = 0.1,
    ):
        self.site = site
        self.on_rebuild = on_rebuild
        self.on_error = on_error or _report_error
        self.debounce = debounce
        self.state = WatchState.IDLE
        self.queue = RebuildQueue()
        self._observer: Observer | None = None
        self._worker: threading.Thread | None = None
        self._stopping = threading.Event()

    @property
    def ignored_roots(self) -> list[Path]:
        graph = self.site.graph
        if graph is None:
            return []
        return [self.site.destination_for(graph.config).resolve()]

    def notify(self, path: Path, is_directory: bool = False) -> None:
        """Record a changed path unless it can never affect the build."""
        source = self.site.source.resolve()
        absolute = path.resolve()
        try:
            rel = absolute.relative_to(source)
        except ValueError:
            return
        if any(part.startswith(".") for part in rel.parts):
            return
        for root in self.ignored_roots:
            try:
                absolute.relative_to(root)
                return
            except ValueError:
                pass
        if is_directory and absolute.exists():
            return
        if self.state is WatchState.IDLE:
            self.state = WatchState.DETECTING
        self.queue.put(absolute)

    def run_once(self, timeout: float | None = 0) -> BuildResult | None:
        """Rebuild for whatever changes are pending.

        Returns:
            The rebuild result, or None when nothing was pending, no output
            was affected, or the rebuild failed.
        """
        paths = self.queue.drain(timeout=timeout, settle=0 if timeout == 0 else self.debounce)
        if not paths:
            self.state = WatchState.IDLE
            return None
        self.state = WatchState.REBUILDING
        logger.debug("Rebuilding for %d changed paths", len(paths))
        try:
            result = self.site.rebuild(paths)
        except BuildError as exc:
            self.on_error(exc)
            return None
        finally:
            self.state = WatchState.DETECTING if len(self.queue) else WatchState.IDLE
        if result is not None and self.on_rebuild is not None:
            self.on_rebuild(result)
        return result

    def start(self) -> None:
        handler = _ChangeHandler(self)
        observer = Observer()
        observer.schedule(handler, str(self.site.source), recursive=True)
        observer.start()
        self._observer = observer
        self._worker = threading.Thread(target=self._run, name="kiln-watcher", daemon=True)
        self._worker.start()
        logger.info("Watching %s for changes", self.site.source)

    def stop(self) -> None:
        self._stopping.set()
        self.queue.close()
        if self._observer:
            self._observer.stop()
            self._observer.join()
        if self._worker:
            self._worker.join(timeout=5)

    def _run(self) -> None:
        while not self._stopping.is_set():
            try:
                self.run_once(timeout=0.5)
            except Exception:
                logger.exception("Unexpected error while rebuilding; still watching")
                click.echo(click.style("Rebuild failed unexpectedly, see the log above.", fg="red"), err=True)


def _report_error(exc: BuildError) -> None:
    logger.debug("Rebuild failed", exc_info=exc)
    click.echo(click.style("Rebuild failed:", fg="red", bold=True), err=True)
    click.echo(click.style(f"  {exc}", fg="yellow"), err=True)
    click.echo("  Keeping the previous build.", err=True)

