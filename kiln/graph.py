"""Site graph construction for Kiln.

This module turns the source tree into a SiteGraph: every document with its
parsed front matter, output path and layout chain, the static files that are
copied verbatim, the layouts, and the derived collections (posts, pages,
tags) with their cross references.

Key classes:
- Document: A page or post with its metadata and, once rendered, its output.
- StaticFile: A file copied to the destination unchanged.
- SiteGraph: Everything one build generation knows about the site.
- ContentLoader: Discovers source files.
- PermalinkRule: Computes output paths.
- SiteGraphBuilder: Builds and links the graph.
"""

from __future__ import annotations

import fnmatch
import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from datetime import datetime
from pathlib import Path, PurePosixPath
from typing import Any

from .collections import DocumentCollection, TagCollection, chronological
from .config import BuildOptions, SiteConfig, load_data
from .errors import DuplicateOutputPathError, FilesystemError
from .extractors import CompositeMetadataExtractor, default_metadata_extractor
from .frontmatter import parse_front_matter
from .layouts import LAYOUTS_DIRNAME, NO_LAYOUT, LayoutRegistry
from .utils import (
    build_tags_index,
    is_document,
    is_hidden,
    is_markdown,
    slugify,
    url_for_output,
)

logger = logging.getLogger(__name__)

POSTS_DIRNAME = "_posts"
DRAFTS_DIRNAME = "_drafts"
COLLECTION_DIRS = (POSTS_DIRNAME, DRAFTS_DIRNAME)


@dataclass(eq=False)
class Document:
    """A source document (page or post).

    Front matter fields are reachable as items, so templates can write
    ``page.author`` for a custom ``author:`` key.

    Attributes:
        source_path: Path relative to the source root; the document identity.
        body: Raw body text without front matter.
        front_matter: Parsed front matter.
        kind: "page" or "post".
        title: Title from front matter, first heading or filename.
        date: Publication date, if any.
        tags: Tags from front matter.
        excerpt: Plain-text summary.
        slug: URL-friendly name derived from the filename.
        draft: Whether the document is unpublished.
        output_path: Destination path relative to the output root.
        url: Public URL derived from the output path.
        layout: Effective layout name, None when rendered bare.
        layout_chain: Resolved layout names, outermost first.
        previous: Older neighbouring post.
        next: Newer neighbouring post.
        related: Posts sharing tags with this one.
        rendered: Final markup, attached by the renderer.
    """

    source_path: PurePosixPath
    body: str
    front_matter: dict[str, Any]
    kind: str
    title: str
    date: datetime | None
    tags: list[str]
    excerpt: str
    slug: str
    draft: bool = False
    output_path: PurePosixPath = PurePosixPath("index.html")
    url: str = "/"
    layout: str | None = None
    layout_chain: tuple[str, ...] = ()
    previous: Document | None = field(default=None, repr=False)
    next: Document | None = field(default=None, repr=False)
    related: list[Document] = field(default_factory=list, repr=False)
    rendered: str | None = field(default=None, repr=False)

    def __getitem__(self, key: str) -> Any:
        return self.front_matter[key]

    def __contains__(self, key: object) -> bool:
        return key in self.front_matter

    @property
    def path(self) -> str:
        return self.source_path.as_posix()

    @property
    def is_markdown(self) -> bool:
        return is_markdown(self.source_path)

    @property
    def is_post(self) -> bool:
        return self.kind == "post"

    def same_source(self, other: Document) -> bool:
        """Whether two loads of this document carry identical inputs."""
        return (
            self.body == other.body
            and self.front_matter == other.front_matter
            and self.kind == other.kind
            and self.draft == other.draft
            and self.date == other.date
        )


@dataclass(frozen=True)
class StaticFile:
    """A non-document file copied to the destination unchanged."""

    source_path: PurePosixPath
    output_path: PurePosixPath

    @property
    def url(self) -> str:
        return url_for_output(self.output_path)


@dataclass
class SiteGraph:
    """All documents, layouts, collections and configuration of one build.

    Attributes:
        config: Configuration for this generation.
        data: Contents of the _data directory.
        layouts: Layout registry.
        documents: Documents keyed by source path.
        static_files: Static files keyed by source path.
        collections: Named collections ("posts", "pages").
        tags: Tag index over posts.
        generation: Monotonic build generation counter.
    """

    config: SiteConfig
    data: Mapping[str, Any]
    layouts: LayoutRegistry
    documents: dict[PurePosixPath, Document] = field(default_factory=dict)
    static_files: dict[PurePosixPath, StaticFile] = field(default_factory=dict)
    collections: dict[str, DocumentCollection] = field(default_factory=dict)
    tags: TagCollection = field(default_factory=lambda: TagCollection({}))
    generation: int = 0

    @property
    def posts(self) -> DocumentCollection:
        return self.collections.get("posts") or DocumentCollection("posts", [])

    def sorted_documents(self) -> list[Document]:
        return [self.documents[k] for k in sorted(self.documents, key=lambda p: p.as_posix())]

    def output_paths(self) -> dict[PurePosixPath, PurePosixPath]:
        """Map every output path to the source that produces it."""
        outputs = {d.output_path: d.source_path for d in self.documents.values()}
        outputs.update({s.output_path: s.source_path for s in self.static_files.values()})
        return outputs

    def copy(self) -> SiteGraph:
        """Return a new generation that can be patched without touching this one.

        Documents are shallow-copied so relinking cross references on the copy
        leaves this graph's documents as they were.
        """
        return replace(
            self,
            documents={k: replace(d) for k, d in self.documents.items()},
            static_files=dict(self.static_files),
            collections=dict(self.collections),
            generation=self.generation + 1,
        )


class ContentLoader:
    """Discovers source files under a source root.

    Skips the destination directory, hidden paths, paths starting with ``_``
    (other than the posts and drafts directories) and configured excludes.
    """

    def __init__(self, source: Path, destination: Path, exclude: tuple[str, ...] = ()):
        self.source = source
        self.destination = destination
        self.exclude = exclude

    def is_candidate(self, rel: PurePosixPath) -> bool:
        """Check whether a source-relative file path takes part in the build."""
        if not rel.parts or is_hidden(rel):
            return False
        for index, part in enumerate(rel.parts):
            if part.startswith("_") and not (index == 0 and part in COLLECTION_DIRS and len(rel.parts) > 1):
                return False
        if self._is_destination(rel):
            return False
        posix = rel.as_posix()
        for pattern in self.exclude:
            pattern = pattern.strip("/")
            if fnmatch.fnmatch(posix, pattern) or fnmatch.fnmatch(rel.parts[0], pattern):
                return False
        return True

    def _is_destination(self, rel: PurePosixPath) -> bool:
        try:
            (self.source / rel).relative_to(self.destination)
        except ValueError:
            return False
        return True

    def iter_files(self) -> list[PurePosixPath]:
        """Return every candidate file, sorted by source path."""
        files: list[PurePosixPath] = []
        for root, dirs, names in os.walk(self.source):
            root_path = Path(root)
            dirs[:] = sorted(
                d
                for d in dirs
                if not d.startswith(".") and root_path / d != self.destination
            )
            for name in names:
                rel = PurePosixPath((root_path / name).relative_to(self.source).as_posix())
                if self.is_candidate(rel):
                    files.append(rel)
        return sorted(files, key=lambda p: p.as_posix())


class PermalinkRule:
    """Computes output paths for documents.

    Pages mirror their source path with Markdown extensions rewritten to
    ``.html``. Posts use the configured permalink pattern. A ``permalink``
    front matter key overrides both.

    Supported placeholders: ``:year``, ``:month``, ``:day``, ``:title``,
    ``:slug`` and ``:categories``.
    """

    def __init__(self, post_pattern: str):
        self.post_pattern = post_pattern

    def output_path(self, document: Document) -> PurePosixPath:
        pattern = document.front_matter.get("permalink")
        if pattern is None and document.is_post:
            pattern = self.post_pattern
        if pattern is None:
            return self._mirror(document.source_path)
        return self._expand(str(pattern), document)

    @staticmethod
    def _mirror(rel: PurePosixPath) -> PurePosixPath:
        if is_markdown(rel):
            return rel.with_suffix(".html")
        return rel

    def _expand(self, pattern: str, document: Document) -> PurePosixPath:
        date = document.date or datetime(1970, 1, 1)
        categories = document.front_matter.get("categories", [])
        if isinstance(categories, str):
            categories = categories.split()
        values = {
            ":categories": "/".join(slugify(str(c)) for c in categories),
            ":year": f"{date.year:04d}",
            ":month": f"{date.month:02d}",
            ":day": f"{date.day:02d}",
            ":title": document.slug,
            ":slug": document.slug,
        }
        expanded = pattern
        for placeholder, value in values.items():
            expanded = expanded.replace(placeholder, value)
        trailing_slash = expanded.endswith("/")
        parts = [p for p in expanded.split("/") if p and p != "."]
        if trailing_slash or not parts:
            parts.append("index.html")
        elif "." not in parts[-1]:
            parts[-1] += ".html"
        return PurePosixPath(*parts)


class SiteGraphBuilder:
    """Builds a SiteGraph from a source tree.

    Attributes:
        config: Site configuration.
        options: Per-invocation build switches.
        loader: Source file discovery.
        permalinks: Output path computation.
    """

    def __init__(
        self,
        config: SiteConfig,
        options: BuildOptions | None = None,
        metadata_extractor: CompositeMetadataExtractor | None = None,
    ):
        self.config = config
        self.options = options or BuildOptions()
        self.destination = self.options.destination or config.destination
        self.loader = ContentLoader(config.source, self.destination, config.exclude)
        self.permalinks = PermalinkRule(str(config.get("permalink")))
        self.metadata_extractor = metadata_extractor or default_metadata_extractor
        self._now = self.options.reference_time()

    @property
    def source(self) -> Path:
        return self.config.source

    def build(self) -> SiteGraph:
        """Enumerate every source file once and return a linked graph."""
        graph = SiteGraph(
            config=self.config,
            data=load_data(self.source),
            layouts=LayoutRegistry.load(self.source / LAYOUTS_DIRNAME),
        )
        for rel in self.loader.iter_files():
            item = self.load_source(rel)
            if isinstance(item, Document):
                graph.documents[rel] = item
            elif isinstance(item, StaticFile):
                graph.static_files[rel] = item
        self.link(graph)
        logger.info(
            "Loaded %d documents and %d static files",
            len(graph.documents),
            len(graph.static_files),
        )
        return graph

    def load_source(self, rel: PurePosixPath) -> Document | StaticFile | None:
        """Load one source file; None when it is filtered out of this build."""
        if not self.loader.is_candidate(rel):
            return None
        if not is_document(rel):
            if rel.parts[0] in COLLECTION_DIRS:
                return None
            return StaticFile(rel, rel)
        return self.load_document(rel)

    def load_document(self, rel: PurePosixPath) -> Document | None:
        """Parse a document and compute its output path.

        Returns:
            The Document, or None when it is a draft or future document that
            this build excludes.
        """
        path = self.source / rel
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as exc:
            raise FilesystemError(path, f"Cannot read document: {exc}", exc) from exc
        except UnicodeDecodeError as exc:
            raise FilesystemError(path, f"Document is not valid UTF-8: {exc}", exc) from exc
        front_matter, body = parse_front_matter(text, path)
        metadata = self.metadata_extractor.extract(front_matter, body, rel)

        section = rel.parts[0] if len(rel.parts) > 1 else ""
        kind = "post" if section in COLLECTION_DIRS else "page"
        draft = section == DRAFTS_DIRNAME or front_matter.get("published") is False
        if draft and not self.options.drafts:
            return None

        date = metadata.get("date")
        if date is None and kind == "post":
            stat = path.stat()
            date = datetime.fromtimestamp(stat.st_mtime)
        if date is not None and date > self._now and not self.options.future:
            logger.debug("Skipping future document %s (%s)", rel, date.isoformat())
            return None

        document = Document(
            source_path=rel,
            body=body,
            front_matter=front_matter,
            kind=kind,
            title=metadata["title"],
            date=date,
            tags=metadata.get("tags", []),
            excerpt=metadata.get("excerpt", ""),
            slug=slugify(rel.stem),
            draft=draft,
        )
        document.output_path = self.permalinks.output_path(document)
        document.url = url_for_output(document.output_path)
        return document

    def link(self, graph: SiteGraph) -> None:
        """Resolve layouts, check output paths and rebuild derived collections.

        Deterministic: the same set of documents always yields the same
        collections, orderings and cross references.

        Raises:
            DuplicateOutputPathError: If two sources share an output path.
            UnknownLayoutError: If a declared layout does not exist.
            LayoutCycleError: If a layout chain loops.
        """
        graph.layouts.validate()
        self._check_output_paths(graph)
        documents = graph.sorted_documents()
        for document in documents:
            document.layout = self.effective_layout(document, graph.layouts)
            chain = graph.layouts.resolve_chain(document.layout, self.source / document.source_path)
            document.layout_chain = tuple(layout.name for layout in chain)

        posts = DocumentCollection.by_date("posts", (d for d in documents if d.is_post))
        pages = DocumentCollection.by_path("pages", (d for d in documents if not d.is_post))
        graph.collections = {"posts": posts, "pages": pages}
        graph.tags = TagCollection(build_tags_index(posts))

        limit = self.config.get_int("related_posts")
        for index, post in enumerate(posts):
            post.next = posts[index - 1] if index > 0 else None
            post.previous = posts[index + 1] if index + 1 < len(posts) else None
            post.related = related_posts(post, posts, limit)
        for page in pages:
            page.next = page.previous = None
            page.related = []

    def effective_layout(self, document: Document, layouts: LayoutRegistry) -> str | None:
        """Return the declared layout, or the configured default when it exists."""
        declared = document.front_matter.get("layout")
        if declared is not None:
            if declared is False or str(declared).lower() in NO_LAYOUT:
                return None
            return str(declared)
        candidates = []
        if document.is_post:
            candidates.append(str(self.config.get("post_layout") or ""))
        candidates.append(str(self.config.get("default_layout") or ""))
        for name in candidates:
            if name and name in layouts:
                return name
        return None

    def _check_output_paths(self, graph: SiteGraph) -> None:
        seen: dict[PurePosixPath, PurePosixPath] = {}
        items = list(graph.documents.values()) + list(graph.static_files.values())
        for item in sorted(items, key=lambda i: i.source_path.as_posix()):
            first = seen.get(item.output_path)
            if first is not None:
                raise DuplicateOutputPathError(
                    item.output_path.as_posix(),
                    self.source / first,
                    self.source / item.source_path,
                )
            seen[item.output_path] = item.source_path


def related_posts(post: Document, posts: DocumentCollection, limit: int) -> list[Document]:
    """Return up to ``limit`` posts sharing the most tags with ``post``.

    Ties are broken by recency, then source path. Posts without any shared tag
    fall back to the most recent ones.
    """
    if limit <= 0:
        return []
    others = [p for p in posts if p is not post]
    shared = {p.source_path: len(set(p.tags) & set(post.tags)) for p in others}
    ordered = chronological(others)
    ordered.sort(key=lambda p: shared[p.source_path], reverse=True)
    return ordered[:limit]
