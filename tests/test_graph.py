from datetime import datetime
from pathlib import PurePosixPath

import pytest

from kiln.config import BuildOptions, load_config
from kiln.errors import DuplicateOutputPathError, LayoutCycleError, UnknownLayoutError
from kiln.graph import ContentLoader, PermalinkRule, SiteGraphBuilder, related_posts

P = PurePosixPath


def build_graph(site, **options):
    return SiteGraphBuilder(load_config(site), BuildOptions(**options)).build()


def test_documents_static_files_and_kinds(blog):
    graph = build_graph(blog)
    assert set(graph.documents) == {
        P("index.md"),
        P("about.md"),
        P("contact.html"),
        P("_posts/2019-01-01-first.md"),
        P("_posts/2019-09-09-second.md"),
        P("_posts/2020-05-23-third.md"),
    }
    assert set(graph.static_files) == {P("css/site.css")}
    assert graph.documents[P("about.md")].kind == "page"
    assert graph.documents[P("_posts/2019-01-01-first.md")].is_post


def test_posts_are_newest_first(blog):
    graph = build_graph(blog)
    assert [p.date for p in graph.posts] == [
        datetime(2020, 5, 23),
        datetime(2019, 9, 9),
        datetime(2019, 1, 1),
    ]


def test_posts_with_equal_dates_order_by_path(make_site):
    site = make_site(
        {
            "_posts/2021-01-01-b.md": "b",
            "_posts/2021-01-01-a.md": "a",
            "_posts/2021-01-01-c.md": "c",
        }
    )
    graph = build_graph(site)
    assert [p.slug for p in graph.posts] == ["a", "b", "c"]


def test_output_paths_and_urls(blog):
    graph = build_graph(blog)
    assert graph.documents[P("index.md")].output_path == P("index.html")
    assert graph.documents[P("index.md")].url == "/"
    assert graph.documents[P("about.md")].output_path == P("about.html")
    post = graph.documents[P("_posts/2020-05-23-third.md")]
    assert post.output_path == P("2020/05/23/third.html")
    assert post.url == "/2020/05/23/third.html"
    assert post.slug == "third"


def test_permalink_front_matter_and_patterns(make_site):
    site = make_site(
        {
            "_config.yml": "permalink: /blog/:categories/:slug/\n",
            "_posts/2020-01-02-hello-world.md": "---\ncategories: [Python Tips]\n---\nx",
            "docs/guide.md": "---\npermalink: /guide/\n---\nx",
            "docs/raw.md": "---\npermalink: /raw-page\n---\nx",
        }
    )
    graph = build_graph(site)
    assert graph.documents[P("_posts/2020-01-02-hello-world.md")].output_path == P(
        "blog/python-tips/hello-world/index.html"
    )
    assert graph.documents[P("docs/guide.md")].url == "/guide/"
    assert graph.documents[P("docs/raw.md")].output_path == P("raw-page.html")


def test_permalink_rule_mirrors_pages():
    assert PermalinkRule._mirror(P("docs/intro.markdown")) == P("docs/intro.html")
    assert PermalinkRule._mirror(P("contact.html")) == P("contact.html")


def test_drafts_only_with_flag(blog):
    assert P("_drafts/upcoming.md") not in build_graph(blog).documents
    graph = build_graph(blog, drafts=True)
    draft = graph.documents[P("_drafts/upcoming.md")]
    assert draft.draft and draft.is_post


def test_unpublished_pages_are_drafts(make_site):
    site = make_site({"secret.md": "---\npublished: false\n---\nx", "open.md": "x"})
    assert set(build_graph(site).documents) == {P("open.md")}
    assert build_graph(site, drafts=True).documents[P("secret.md")].draft


def test_future_documents_need_flag(make_site):
    site = make_site({"_posts/2030-01-01-later.md": "x", "_posts/2020-01-01-now.md": "x"})
    now = datetime(2025, 1, 1)
    assert [p.slug for p in build_graph(site, now=now).posts] == ["now"]
    assert [p.slug for p in build_graph(site, now=now, future=True).posts] == ["later", "now"]


def test_undated_post_falls_back_to_file_time(make_site):
    site = make_site({"_posts/undated.md": "x"})
    post = build_graph(site).documents[P("_posts/undated.md")]
    assert post.date is not None


def test_previous_next_and_related(blog):
    graph = build_graph(blog)
    third, second, first = graph.posts
    assert third.next is None and third.previous is second
    assert second.next is third and second.previous is first
    assert first.previous is None
    assert third.related[0] is second or third.related[0] is first
    assert [p.slug for p in related_posts(first, graph.posts, 1)] == ["third"]
    assert graph.tags["web"].source_paths() == [
        "_posts/2020-05-23-third.md",
        "_posts/2019-09-09-second.md",
    ]
    assert list(graph.tags) == ["python", "web"]


def test_default_layouts(blog):
    graph = build_graph(blog)
    assert graph.documents[P("about.md")].layout_chain == ("base", "default")
    assert graph.documents[P("_posts/2019-01-01-first.md")].layout_chain == ("base", "post")


def test_missing_default_layout_means_no_layout(make_site):
    site = make_site({"page.md": "x"})
    document = build_graph(site).documents[P("page.md")]
    assert document.layout is None
    assert document.layout_chain == ()


def test_declared_unknown_layout_fails(make_site):
    site = make_site({"page.md": "---\nlayout: fancy\n---\nx"})
    with pytest.raises(UnknownLayoutError) as excinfo:
        build_graph(site)
    assert excinfo.value.source_path == site / "page.md"


def test_layout_cycle_fails_even_when_unused(make_site):
    site = make_site(
        {
            "_layouts/a.html": "---\nlayout: b\n---\nA",
            "_layouts/b.html": "---\nlayout: a\n---\nB",
            "page.html": "---\nlayout: none\n---\nx",
        }
    )
    with pytest.raises(LayoutCycleError):
        build_graph(site)


def test_duplicate_output_paths_name_both_sources(make_site):
    site = make_site(
        {
            "about.md": "x",
            "about.html": "y",
        }
    )
    with pytest.raises(DuplicateOutputPathError) as excinfo:
        build_graph(site)
    assert excinfo.value.first == site / "about.html"
    assert excinfo.value.second == site / "about.md"


def test_content_loader_skips_special_paths(make_site, tmp_path):
    site = make_site(
        {
            "_config.yml": "exclude: [vendor, '*.log']\n",
            ".git/config": "x",
            "_layouts/x.html": "x",
            "_private/notes.md": "x",
            "docs/_partial.md": "x",
            "vendor/lib.js": "x",
            "debug.log": "x",
            "_site/old.html": "x",
            "_posts/2020-01-01-a.md": "x",
            "page.md": "x",
        }
    )
    config = load_config(site)
    loader = ContentLoader(site, config.destination, config.exclude)
    assert loader.iter_files() == [P("_posts/2020-01-01-a.md"), P("page.md")]


def test_static_files_in_posts_are_ignored(make_site):
    site = make_site({"_posts/2020-01-01-a.md": "x", "_posts/image.png": "png"})
    graph = build_graph(site)
    assert graph.static_files == {}


def test_copy_does_not_share_documents(blog):
    graph = build_graph(blog)
    clone = graph.copy()
    assert clone.generation == graph.generation + 1
    rel = P("about.md")
    assert clone.documents[rel] is not graph.documents[rel]
    clone.documents[rel].title = "Changed"
    assert graph.documents[rel].title == "About"
