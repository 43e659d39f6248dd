"""Feed generation for Kiln.

This module produces the auxiliary files derived from the post collection:
an Atom or RSS 2.0 feed of the most recent posts and an optional sitemap.
Generators only produce content; the OutputWriter decides where and whether
to write it.

Timestamps come from post dates, never from the wall clock, so rebuilding an
unchanged site yields byte-identical feeds.

Classes:
    FeedGenerator: Base class for feed generators.
    AtomFeedGenerator: Atom 1.0 feed of recent posts.
    RSSFeedGenerator: RSS 2.0 feed of recent posts.
    SitemapGenerator: sitemap.xml listing every document.
    FeedRegistry: Runs every enabled generator.

Functions:
    create_feed_registry: Registry configured from a SiteConfig.
    validate_feed: Check a generated feed against its element schema.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import PurePosixPath
from typing import TYPE_CHECKING
from xml.etree.ElementTree import Element, SubElement, register_namespace, tostring

from .errors import BuildError
from .utils import join_root_url

if TYPE_CHECKING:
    from .config import FeedSettings, SiteConfig
    from .graph import Document, SiteGraph

logger = logging.getLogger(__name__)

ATOM_NS = "http://www.w3.org/2005/Atom"
SITEMAP_NS = "http://www.sitemaps.org/schemas/sitemap/0.9"
XML_DECLARATION = "<?xml version='1.0' encoding='UTF-8'?>\n"
_EPOCH = datetime(1970, 1, 1)

ATOM_ENTRY_SCHEMA = ("id", "title", "link", "published", "updated", "summary")
RSS_ITEM_SCHEMA = ("title", "link", "guid", "pubDate", "description")


def _rfc3339(value: datetime | None) -> str:
    return (value or _EPOCH).strftime("%Y-%m-%dT%H:%M:%SZ")


def _rfc822(value: datetime | None) -> str:
    return (value or _EPOCH).strftime("%a, %d %b %Y %H:%M:%S +0000")


def _summary(document: Document) -> str:
    return document.excerpt or document.title


class FeedGenerator(ABC):
    """Base class for feed generators.

    New formats are added by subclassing; the registry runs whatever is
    registered.
    """

    @property
    @abstractmethod
    def output_path(self) -> PurePosixPath:
        """Path of the generated file relative to the destination."""
        ...

    @abstractmethod
    def generate(self, graph: SiteGraph) -> str | None:
        """Generate feed content, or None when it cannot be generated.

        Args:
            graph: Linked site graph.
        """
        ...


class AtomFeedGenerator(FeedGenerator):
    """Generates an Atom 1.0 feed of the N most recent posts.

    Requires ``url`` in the configuration for absolute links.
    """

    def __init__(self, settings: FeedSettings):
        self.settings = settings

    @property
    def output_path(self) -> PurePosixPath:
        return PurePosixPath(self.settings.path)

    def generate(self, graph: SiteGraph) -> str | None:
        base_url = graph.config.url
        if not base_url:
            logger.warning("Feed skipped: 'url' is not configured")
            return None
        posts = list(graph.posts.published().latest(self.settings.limit))
        register_namespace("", ATOM_NS)
        root = Element(f"{{{ATOM_NS}}}feed")
        SubElement(root, f"{{{ATOM_NS}}}id").text = f"{base_url}/"
        SubElement(root, f"{{{ATOM_NS}}}title").text = graph.config.title or base_url
        description = graph.config.get("description")
        if description:
            SubElement(root, f"{{{ATOM_NS}}}subtitle").text = str(description)
        SubElement(
            root,
            f"{{{ATOM_NS}}}link",
            attrib={"href": join_root_url(base_url, f"/{self.settings.path}"), "rel": "self"},
        )
        SubElement(root, f"{{{ATOM_NS}}}link", attrib={"href": f"{base_url}/", "rel": "alternate"})
        SubElement(root, f"{{{ATOM_NS}}}updated").text = _rfc3339(posts[0].date if posts else None)

        for post in posts:
            link = join_root_url(base_url, post.url)
            entry = SubElement(root, f"{{{ATOM_NS}}}entry")
            SubElement(entry, f"{{{ATOM_NS}}}id").text = link
            SubElement(entry, f"{{{ATOM_NS}}}title").text = post.title
            SubElement(entry, f"{{{ATOM_NS}}}link", attrib={"href": link, "rel": "alternate"})
            SubElement(entry, f"{{{ATOM_NS}}}published").text = _rfc3339(post.date)
            SubElement(entry, f"{{{ATOM_NS}}}updated").text = _rfc3339(post.date)
            author = post.front_matter.get("author")
            if author:
                author_el = SubElement(entry, f"{{{ATOM_NS}}}author")
                SubElement(author_el, f"{{{ATOM_NS}}}name").text = str(author)
            for tag in post.tags:
                SubElement(entry, f"{{{ATOM_NS}}}category", attrib={"term": tag})
            SubElement(entry, f"{{{ATOM_NS}}}summary").text = _summary(post)

        validate_feed(root, "atom")
        return XML_DECLARATION + tostring(root, encoding="unicode")


class RSSFeedGenerator(FeedGenerator):
    """Generates an RSS 2.0 feed of the N most recent posts.

    Requires ``url`` in the configuration; uses ``title`` for the channel.
    """

    def __init__(self, settings: FeedSettings):
        self.settings = settings

    @property
    def output_path(self) -> PurePosixPath:
        return PurePosixPath(self.settings.path)

    def generate(self, graph: SiteGraph) -> str | None:
        base_url = graph.config.url
        if not base_url:
            logger.warning("Feed skipped: 'url' is not configured")
            return None
        posts = list(graph.posts.published().latest(self.settings.limit))
        root = Element("rss", attrib={"version": "2.0"})
        channel = SubElement(root, "channel")
        SubElement(channel, "title").text = graph.config.title or base_url
        SubElement(channel, "link").text = f"{base_url}/"
        SubElement(channel, "description").text = str(graph.config.get("description") or "")
        SubElement(channel, "lastBuildDate").text = _rfc822(posts[0].date if posts else None)
        for post in posts:
            link = join_root_url(base_url, post.url)
            item = SubElement(channel, "item")
            SubElement(item, "title").text = post.title
            SubElement(item, "link").text = link
            SubElement(item, "guid", attrib={"isPermaLink": "true"}).text = link
            SubElement(item, "pubDate").text = _rfc822(post.date)
            SubElement(item, "description").text = _summary(post)
        validate_feed(root, "rss")
        return XML_DECLARATION + tostring(root, encoding="unicode")


class SitemapGenerator(FeedGenerator):
    """Generates sitemap.xml listing every document.

    Requires ``url`` in the configuration to generate absolute URLs.
    """

    @property
    def output_path(self) -> PurePosixPath:
        return PurePosixPath("sitemap.xml")

    def generate(self, graph: SiteGraph) -> str | None:
        base_url = graph.config.url
        if not base_url:
            logger.warning("Sitemap skipped: 'url' is not configured")
            return None
        register_namespace("", SITEMAP_NS)
        root = Element(f"{{{SITEMAP_NS}}}urlset")
        for document in graph.sorted_documents():
            if document.draft or document.front_matter.get("sitemap") is False:
                continue
            url = SubElement(root, f"{{{SITEMAP_NS}}}url")
            SubElement(url, f"{{{SITEMAP_NS}}}loc").text = join_root_url(base_url, document.url)
            if document.date is not None:
                SubElement(url, f"{{{SITEMAP_NS}}}lastmod").text = document.date.strftime("%Y-%m-%d")
        return XML_DECLARATION + tostring(root, encoding="unicode")


def validate_feed(root: Element, feed_format: str) -> None:
    """Check that every entry of a feed carries the fixed set of elements.

    Raises:
        BuildError: If an entry misses a required element or has it empty.
    """
    if feed_format == "atom":
        entries = root.findall(f"{{{ATOM_NS}}}entry")
        required = [f"{{{ATOM_NS}}}{name}" for name in ATOM_ENTRY_SCHEMA]
        for name in ("id", "title", "updated"):
            if root.find(f"{{{ATOM_NS}}}{name}") is None:
                raise BuildError(None, f"Atom feed is missing <{name}>")
    else:
        channel = root.find("channel")
        if channel is None:
            raise BuildError(None, "RSS feed is missing <channel>")
        entries = channel.findall("item")
        required = list(RSS_ITEM_SCHEMA)
    for entry in entries:
        for tag in required:
            child = entry.find(tag)
            if child is None:
                raise BuildError(None, f"Feed entry is missing <{tag.split('}')[-1]}>")
            if not (child.text or child.get("href")):
                raise BuildError(None, f"Feed entry has an empty <{tag.split('}')[-1]}>")


class FeedRegistry:
    """Registry for feed generators.

    Attributes:
        _generators: Registered generators, run in registration order.
    """

    def __init__(self) -> None:
        self._generators: list[FeedGenerator] = []

    def __len__(self) -> int:
        return len(self._generators)

    def register(self, generator: FeedGenerator) -> None:
        self._generators.append(generator)

    def generate_all(self, graph: SiteGraph) -> dict[PurePosixPath, str]:
        """Run every generator.

        Returns:
            Mapping of output path to content for every generated feed.
        """
        generated: dict[PurePosixPath, str] = {}
        for generator in self._generators:
            content = generator.generate(graph)
            if content is not None:
                generated[generator.output_path] = content
        return generated


def create_feed_registry(config: SiteConfig) -> FeedRegistry:
    """Create a registry with the generators enabled in the configuration."""
    registry = FeedRegistry()
    feed = config.feed
    if feed is not None:
        if feed.format == "rss":
            registry.register(RSSFeedGenerator(feed))
        else:
            registry.register(AtomFeedGenerator(feed))
    if config.get("sitemap"):
        registry.register(SitemapGenerator())
    return registry
