from xml.etree.ElementTree import Element, SubElement, fromstring

import pytest

from kiln.config import FeedSettings, load_config
from kiln.errors import BuildError, ConfigurationError
from kiln.feeds import (
    ATOM_NS,
    SITEMAP_NS,
    AtomFeedGenerator,
    RSSFeedGenerator,
    SitemapGenerator,
    create_feed_registry,
    validate_feed,
)
from kiln.graph import SiteGraphBuilder

A = f"{{{ATOM_NS}}}"


def graph_for(site):
    return SiteGraphBuilder(load_config(site)).build()


def test_registry_follows_configuration(make_site):
    site = make_site({"_config.yml": "feed: true\nsitemap: true\n"})
    assert len(create_feed_registry(load_config(site))) == 2
    site.joinpath("_config.yml").write_text("feed: false\n", encoding="utf-8")
    assert len(create_feed_registry(load_config(site))) == 0


def test_feed_mapping_configuration(make_site):
    site = make_site({"_config.yml": "feed:\n  path: /blog/atom.xml\n  limit: 2\n  format: rss\n"})
    feed = load_config(site).feed
    assert (feed.path, feed.limit, feed.format) == ("blog/atom.xml", 2, "rss")


def test_invalid_feed_format(make_site):
    site = make_site({"_config.yml": "feed:\n  format: json\n"})
    with pytest.raises(ConfigurationError, match="Unknown feed format"):
        load_config(site).feed


def test_atom_feed_lists_recent_posts(blog):
    graph = graph_for(blog)
    generator = AtomFeedGenerator(FeedSettings(limit=2))
    xml = generator.generate(graph)
    root = fromstring(xml.split("\n", 1)[1])
    entries = root.findall(f"{A}entry")
    assert [e.find(f"{A}title").text for e in entries] == ["Third", "Second"]
    first = entries[0]
    assert first.find(f"{A}id").text == "https://example.com/2020/05/23/third.html"
    assert first.find(f"{A}published").text == "2020-05-23T00:00:00Z"
    assert first.find(f"{A}summary").text == "Third post."
    assert [c.get("term") for c in first.findall(f"{A}category")] == ["python", "web"]
    assert root.find(f"{A}updated").text == "2020-05-23T00:00:00Z"


def test_feed_is_reproducible(blog):
    graph = graph_for(blog)
    generator = AtomFeedGenerator(FeedSettings())
    assert generator.generate(graph) == generator.generate(graph_for(blog))


def test_rss_feed(blog):
    graph = graph_for(blog)
    xml = RSSFeedGenerator(FeedSettings(format="rss")).generate(graph)
    root = fromstring(xml.split("\n", 1)[1])
    items = root.find("channel").findall("item")
    assert len(items) == 3
    assert items[0].find("pubDate").text == "Sat, 23 May 2020 00:00:00 +0000"
    assert items[0].find("link").text == "https://example.com/2020/05/23/third.html"


def test_feeds_skipped_without_url(make_site, caplog):
    site = make_site({"_posts/2020-01-01-a.md": "x"})
    graph = graph_for(site)
    assert AtomFeedGenerator(FeedSettings()).generate(graph) is None
    assert SitemapGenerator().generate(graph) is None
    assert "url" in caplog.text


def test_sitemap_lists_documents(blog):
    graph = graph_for(blog)
    xml = SitemapGenerator().generate(graph)
    root = fromstring(xml.split("\n", 1)[1])
    locs = [u.find(f"{{{SITEMAP_NS}}}loc").text for u in root]
    assert "https://example.com/" in locs
    assert "https://example.com/about.html" in locs
    assert len(locs) == 6


def test_validate_feed_rejects_incomplete_entries():
    root = Element(f"{A}feed")
    for name in ("id", "title", "updated"):
        SubElement(root, f"{A}{name}").text = "x"
    entry = SubElement(root, f"{A}entry")
    SubElement(entry, f"{A}title").text = "No id"
    with pytest.raises(BuildError, match="missing <id>"):
        validate_feed(root, "atom")

