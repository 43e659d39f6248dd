"""Site building functionality for Kiln.

This module drives the pipeline: configuration, site graph, rendering and
output. ``build_site`` runs one full build. ``Site`` keeps the live graph of a
long-running process (the dev server) and applies incremental rebuilds to it.

Data flow:
    load_config -> SiteGraphBuilder.build -> TemplateEngine.render_document
    -> OutputWriter.publish (+ feeds)

Nothing is published until every document of the build has rendered, so a
failed build leaves the destination exactly as it was.

Key functions and classes:
- build_site: Build the entire site once.
- Site: Owner of the current graph generation; full and incremental rebuilds.
- BuildResult: What a build produced.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable, Mapping
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Any

from .config import CONFIG_FILENAME, DATA_DIRNAME, BuildOptions, SiteConfig, load_config
from .errors import ConfigurationError, DuplicateOutputPathError
from .feeds import create_feed_registry
from .graph import Document, SiteGraph, SiteGraphBuilder, StaticFile
from .layouts import LAYOUTS_DIRNAME, LayoutRegistry
from .templates import INCLUDES_DIRNAME, TemplateDependencies, TemplateEngine
from .writer import OutputWriter, WriteReport, read_source_bytes

logger = logging.getLogger(__name__)


@dataclass
class BuildResult:
    """Result of a site build operation.

    Attributes:
        graph: The graph generation that was published.
        output_dir: Directory where the site was built.
        report: Files written, left unchanged and removed.
        rendered: Source paths of the documents rendered by this build.
        full: Whether this was a full build.
    """

    graph: SiteGraph
    output_dir: Path
    report: WriteReport = field(default_factory=WriteReport)
    rendered: list[PurePosixPath] = field(default_factory=list)
    full: bool = True

    @property
    def documents(self) -> list[Document]:
        return self.graph.sorted_documents()


def render_documents(
    engine: TemplateEngine,
    graph: SiteGraph,
    documents: Iterable[Document],
    workers: int = 1,
) -> dict[PurePosixPath, str]:
    """Render documents, optionally on a thread pool.

    The graph must be fully linked first. Results and the first reported
    error follow source-path order regardless of completion order.

    Returns:
        Rendered markup keyed by source path.
    """
    ordered = sorted(documents, key=lambda d: d.source_path.as_posix())
    if workers <= 1 or len(ordered) <= 1:
        return {d.source_path: engine.render_document(d, graph) for d in ordered}
    with ThreadPoolExecutor(max_workers=workers) as pool:
        futures = [(d, pool.submit(engine.render_document, d, graph)) for d in ordered]
        return {d.source_path: future.result() for d, future in futures}


def _collect_outputs(
    graph: SiteGraph,
    rendered: Mapping[PurePosixPath, str],
    static_files: Iterable[StaticFile],
) -> dict[PurePosixPath, bytes]:
    outputs: dict[PurePosixPath, bytes] = {}
    for source_path, markup in rendered.items():
        outputs[graph.documents[source_path].output_path] = markup.encode("utf-8")
    for static in static_files:
        outputs[static.output_path] = read_source_bytes(graph.config.source / static.source_path)
    return outputs


def _add_feeds(graph: SiteGraph, outputs: dict[PurePosixPath, bytes]) -> None:
    taken = graph.output_paths()
    for output_path, content in create_feed_registry(graph.config).generate_all(graph).items():
        if output_path in taken:
            raise DuplicateOutputPathError(
                output_path.as_posix(),
                graph.config.source / taken[output_path],
                Path(f"<generated {output_path.as_posix()}>"),
            )
        outputs[output_path] = content.encode("utf-8")


class Site:
    """Owns the live site graph of a build process.

    Rebuilds are serialized; each publishes a complete new graph generation
    by swapping a single reference, so ``graph`` never exposes a partially
    patched state.

    Attributes:
        source: Site source root.
        options: Build switches (drafts, future, destination override).
    """

    def __init__(
        self,
        source: Path,
        options: BuildOptions | None = None,
        overrides: Mapping[str, Any] | None = None,
    ):
        self.source = source
        self.options = options or BuildOptions()
        self._overrides = dict(overrides or {})
        self._graph: SiteGraph | None = None
        self._rebuild_lock = threading.Lock()

    @property
    def graph(self) -> SiteGraph | None:
        """The last successfully published graph generation."""
        return self._graph

    def destination_for(self, config: SiteConfig) -> Path:
        return self.options.destination or config.destination

    def build(self) -> BuildResult:
        """Run a full build and publish it as the next generation."""
        with self._rebuild_lock:
            return self._full_build()

    def rebuild(self, changed: Iterable[Path]) -> BuildResult | None:
        """Rebuild only what the changed source paths invalidate.

        Args:
            changed: Absolute or source-relative paths reported as changed.

        Returns:
            BuildResult of the rebuild, or None when no change affects output.

        Raises:
            BuildError: When the rebuild fails. The previous generation and
                its output stay in place.
        """
        with self._rebuild_lock:
            current = self._graph
            if current is None:
                return self._full_build()
            rels = self._relevant_paths(changed, current)
            if not rels:
                return None
            if any(rel.as_posix() == CONFIG_FILENAME or rel.parts[0] == DATA_DIRNAME for rel in rels):
                logger.info("Configuration or data changed; running a full build")
                return self._full_build()
            return self._incremental_build(current, rels)

    def _full_build(self) -> BuildResult:
        config = load_config(self.source, self._overrides)
        destination = self.destination_for(config)
        if destination.resolve() == self.source.resolve():
            raise ConfigurationError(config.config_path, "Destination must differ from the source directory")
        graph = SiteGraphBuilder(config, self.options).build()
        engine = TemplateEngine(self.source)
        rendered = render_documents(engine, graph, graph.documents.values(), config.workers)
        outputs = _collect_outputs(graph, rendered, graph.static_files.values())
        _add_feeds(graph, outputs)

        for source_path, markup in rendered.items():
            graph.documents[source_path].rendered = markup
        report = OutputWriter(destination).publish(outputs, prune=True)
        previous = self._graph
        graph.generation = previous.generation + 1 if previous else 1
        self._graph = graph
        logger.info(
            "Built %d documents into %s (%d written, %d unchanged, %d removed)",
            len(rendered),
            destination,
            len(report.written),
            len(report.unchanged),
            len(report.removed),
        )
        return BuildResult(graph, destination, report, sorted(rendered, key=lambda p: p.as_posix()))

    def _relevant_paths(self, changed: Iterable[Path], graph: SiteGraph) -> set[PurePosixPath]:
        destination = self.destination_for(graph.config).resolve()
        source = self.source.resolve()
        rels: set[PurePosixPath] = set()
        for path in changed:
            path = Path(path)
            absolute = (path if path.is_absolute() else source / path).resolve()
            try:
                absolute.relative_to(destination)
                continue
            except ValueError:
                pass
            try:
                rel = PurePosixPath(absolute.relative_to(source).as_posix())
            except ValueError:
                continue
            if not rel.parts or any(part.startswith(".") for part in rel.parts):
                continue
            rels.add(rel)
        return rels

    def _incremental_build(self, current: SiteGraph, rels: set[PurePosixPath]) -> BuildResult:
        graph = current.copy()
        builder = SiteGraphBuilder(current.config, self.options)
        destination = self.destination_for(current.config)

        changed_docs: set[PurePosixPath] = set()
        removed_docs: set[PurePosixPath] = set()
        changed_static: dict[PurePosixPath, StaticFile] = {}
        removed_outputs: set[PurePosixPath] = set()
        layouts_touched = False
        includes_changed: set[str] = set()

        for rel in sorted(self._expand_directories(rels, current), key=lambda p: p.as_posix()):
            if rel.parts[0] == LAYOUTS_DIRNAME:
                layouts_touched = True
                continue
            if rel.parts[0] == INCLUDES_DIRNAME:
                includes_changed.add(PurePosixPath(*rel.parts[1:]).as_posix())
                continue
            item = builder.load_source(rel) if (self.source / rel).is_file() else None
            old_doc = current.documents.get(rel)
            old_static = current.static_files.get(rel)
            graph.documents.pop(rel, None)
            graph.static_files.pop(rel, None)
            if isinstance(item, Document):
                graph.documents[rel] = item
                if old_doc is None or not old_doc.same_source(item) or old_doc.output_path != item.output_path:
                    changed_docs.add(rel)
                else:
                    item.rendered = old_doc.rendered
            elif isinstance(item, StaticFile):
                graph.static_files[rel] = item
                changed_static[rel] = item
            elif old_doc is not None:
                removed_docs.add(rel)
            for old in (old_doc, old_static):
                if old is not None and (item is None or old.output_path != item.output_path):
                    removed_outputs.add(old.output_path)

        layouts_changed: set[str] = set()
        if layouts_touched:
            graph.layouts = LayoutRegistry.load(self.source / LAYOUTS_DIRNAME)
            names = set(current.layouts.layouts) | set(graph.layouts.layouts)
            layouts_changed = {
                name for name in names
                if current.layouts.get(name) != graph.layouts.get(name)
            }

        builder.link(graph)

        touched = changed_docs | removed_docs
        was_post = {rel for rel in touched if rel in current.documents and current.documents[rel].is_post}
        is_post = {rel for rel in changed_docs if graph.documents[rel].is_post}
        posts_changed = bool(was_post or is_post) or (
            current.posts.source_paths() != graph.posts.source_paths()
        )
        # Every document belongs to either collections.posts or collections.pages.
        collection_changed = posts_changed or bool(touched)

        engine = TemplateEngine(self.source)
        invalid = set(changed_docs)
        dependencies: dict[PurePosixPath, TemplateDependencies] = {}

        def deps(document: Document) -> TemplateDependencies:
            if document.source_path not in dependencies:
                dependencies[document.source_path] = engine.dependencies(document, graph)
            return dependencies[document.source_path]

        for document in graph.sorted_documents():
            rel = document.source_path
            if rel in invalid:
                continue
            previous = current.documents.get(rel)
            if previous is None or previous.layout_chain != document.layout_chain:
                invalid.add(rel)
            elif layouts_changed & set(document.layout_chain):
                invalid.add(rel)
            elif includes_changed and any(deps(document).depends_on_include(n) for n in includes_changed):
                invalid.add(rel)
            elif posts_changed and document.is_post:
                invalid.add(rel)
            elif collection_changed and deps(document).uses_collections:
                invalid.add(rel)

        if not invalid and not changed_static and not removed_outputs:
            logger.debug("Change did not affect any output")
            return BuildResult(graph=current, output_dir=destination, full=False)

        to_render = [graph.documents[rel] for rel in invalid]
        rendered = render_documents(engine, graph, to_render, current.config.workers)
        outputs = _collect_outputs(graph, rendered, changed_static.values())
        if invalid or removed_docs:
            _add_feeds(graph, outputs)

        for source_path, markup in rendered.items():
            graph.documents[source_path].rendered = markup
        report = OutputWriter(destination).publish(outputs, remove=removed_outputs)
        self._graph = graph
        logger.info(
            "Rebuilt %d documents (%d files written, %d removed)",
            len(rendered),
            len(report.written),
            len(report.removed),
        )
        return BuildResult(
            graph, destination, report, sorted(rendered, key=lambda p: p.as_posix()), full=False
        )

    def _expand_directories(self, rels: set[PurePosixPath], graph: SiteGraph) -> set[PurePosixPath]:
        """Treat a changed directory as a change of every file under it, known or new."""
        expanded = set(rels)
        known = list(graph.documents) + list(graph.static_files)
        for rel in rels:
            directory = self.source / rel
            if directory.is_dir():
                expanded.update(
                    PurePosixPath(p.relative_to(self.source).as_posix())
                    for p in directory.rglob("*")
                    if p.is_file()
                )
            prefix = rel.as_posix() + "/"
            expanded.update(k for k in known if k.as_posix().startswith(prefix))
        return expanded


def build_site(
    source: Path,
    include_drafts: bool = False,
    include_future: bool = False,
    destination: Path | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> BuildResult:
    """Build the entire static site once.

    Args:
        source: Root directory of the site sources.
        include_drafts: Whether to include drafts and unpublished documents.
        include_future: Whether to include documents dated in the future.
        destination: Optional output directory instead of the configured one.
        overrides: Configuration values that win over ``_config.yml``.

    Returns:
        BuildResult containing the graph, output directory and write report.

    Raises:
        BuildError: On any fatal error; nothing is published in that case.
    """
    options = BuildOptions(drafts=include_drafts, future=include_future, destination=destination)
    return Site(source, options, overrides).build()
