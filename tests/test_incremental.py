from pathlib import PurePosixPath

import pytest

from kiln.build import Site
from kiln.errors import FilesystemError, TemplateEvaluationError

P = PurePosixPath


@pytest.fixture
def site(blog):
    (blog / "_config.yml").write_text(
        "title: Demo\nurl: https://example.com\nfeed: true\n", encoding="utf-8"
    )
    site = Site(blog)
    site.build()
    return site


def test_editing_one_page_rewrites_only_that_file(site, blog):
    (blog / "contact.html").write_text("---\ntitle: Contact\n---\n<p>Call us</p>\n", encoding="utf-8")
    result = site.rebuild([blog / "contact.html"])
    # index.md lists collections, so it is re-rendered but its bytes do not change.
    assert result.rendered == [P("contact.html"), P("index.md")]
    assert result.report.written == [P("contact.html")]
    assert "Call us" in (blog / "_site" / "contact.html").read_text(encoding="utf-8")
    assert site.graph is result.graph


def test_unchanged_save_renders_nothing(site, blog):
    generation = site.graph.generation
    (blog / "about.md").touch()
    result = site.rebuild([blog / "about.md"])
    assert result.rendered == []
    assert site.graph.generation == generation


def test_post_change_rerenders_posts_and_collection_readers(site, blog):
    (blog / "_posts" / "2019-09-09-second.md").write_text(
        "---\ntitle: Second edited\ntags: [web]\n---\nSecond post.\n", encoding="utf-8"
    )
    result = site.rebuild([blog / "_posts" / "2019-09-09-second.md"])
    assert set(result.rendered) == {
        P("_posts/2019-01-01-first.md"),
        P("_posts/2019-09-09-second.md"),
        P("_posts/2020-05-23-third.md"),
        P("index.md"),
    }
    assert P("feed.xml") in result.report.written
    assert "Second edited" in (blog / "_site" / "index.html").read_text(encoding="utf-8")


def test_page_change_rerenders_pages_listing(site, blog):
    (blog / "list.html").write_text(
        "---\ntitle: List\n---\n{% for p in collections.pages %}[{{ p.title }}]{% endfor %}", encoding="utf-8"
    )
    site.rebuild([blog / "list.html"])
    (blog / "contact.html").write_text("---\ntitle: Reach us\n---\n<p>Hi</p>\n", encoding="utf-8")
    result = site.rebuild([blog / "contact.html"])
    assert P("list.html") in result.rendered
    assert "[Reach us]" in (blog / "_site" / "list.html").read_text(encoding="utf-8")

    (blog / "contact.html").unlink()
    site.rebuild([blog / "contact.html"])
    assert "[Reach us]" not in (blog / "_site" / "list.html").read_text(encoding="utf-8")


def test_new_post_updates_neighbours(site, blog):
    path = blog / "_posts" / "2021-01-01-fourth.md"
    path.write_text("---\ntitle: Fourth\n---\nNewest.\n", encoding="utf-8")
    site.rebuild([path])
    assert site.graph.posts[0].title == "Fourth"
    third = (blog / "_site" / "2020" / "05" / "23" / "third.html").read_text(encoding="utf-8")
    assert third == site.graph.documents[P("_posts/2020-05-23-third.md")].rendered
    assert (blog / "_site" / "2021" / "01" / "01" / "fourth.html").exists()


def test_deleting_a_document_removes_its_output(site, blog):
    (blog / "contact.html").unlink()
    result = site.rebuild([blog / "contact.html"])
    assert P("contact.html") in result.report.removed
    assert not (blog / "_site" / "contact.html").exists()
    assert P("contact.html") not in site.graph.documents


def test_layout_change_rerenders_dependents_only(site, blog):
    (blog / "_layouts" / "default.html").write_text(
        "---\nlayout: base\n---\n<section>{{ content }}</section>\n", encoding="utf-8"
    )
    result = site.rebuild([blog / "_layouts" / "default.html"])
    assert set(result.rendered) == {P("index.md"), P("about.md"), P("contact.html")}
    assert "<section>" in (blog / "_site" / "about.html").read_text(encoding="utf-8")


def test_include_change_rerenders_includers(site, blog):
    (blog / "_includes" / "footer.html").write_text("<footer>new</footer>\n", encoding="utf-8")
    result = site.rebuild([blog / "_includes" / "footer.html"])
    assert result.rendered == [P("about.md")]


def test_static_file_change_copies_only_that_file(site, blog):
    (blog / "css" / "site.css").write_text("body { color: red; }\n", encoding="utf-8")
    result = site.rebuild([blog / "css" / "site.css"])
    assert result.rendered == []
    assert result.report.written == [P("css/site.css")]


def test_config_change_triggers_full_rebuild(site, blog):
    (blog / "_config.yml").write_text("title: Renamed\nurl: https://example.com\n", encoding="utf-8")
    result = site.rebuild([blog / "_config.yml"])
    assert result.full
    assert site.graph.config.title == "Renamed"
    assert not (blog / "_site" / "feed.xml").exists()


def test_failed_rebuild_keeps_previous_generation(site, blog):
    graph = site.graph
    before = (blog / "_site" / "about.html").read_text(encoding="utf-8")
    (blog / "about.md").write_text("{{ broken", encoding="utf-8")
    with pytest.raises(TemplateEvaluationError):
        site.rebuild([blog / "about.md"])
    assert site.graph is graph
    assert (blog / "_site" / "about.html").read_text(encoding="utf-8") == before


def test_changes_outside_the_source_are_ignored(site, blog, tmp_path):
    assert site.rebuild([tmp_path / "elsewhere.md"]) is None
    assert site.rebuild([blog / "_site" / "index.html"]) is None
    assert site.rebuild([blog / ".git" / "HEAD"]) is None


def test_incremental_matches_full_build(site, blog):
    (blog / "_posts" / "2019-01-01-first.md").write_text(
        "---\ntitle: First!\ntags: [python, web]\n---\nEdited.\n", encoding="utf-8"
    )
    site.rebuild([blog / "_posts" / "2019-01-01-first.md"])
    incremental = {
        p.relative_to(blog / "_site").as_posix(): p.read_bytes()
        for p in (blog / "_site").rglob("*")
        if p.is_file()
    }
    fresh = Site(blog)
    fresh.build()
    full = {
        p.relative_to(blog / "_site").as_posix(): p.read_bytes()
        for p in (blog / "_site").rglob("*")
        if p.is_file()
    }
    assert incremental == full


def test_undecodable_document_fails_rebuild_cleanly(site, blog):
    graph = site.graph
    (blog / "about.md").write_bytes(b"\xff\xfe not utf-8")
    with pytest.raises(FilesystemError, match="not valid UTF-8"):
        site.rebuild([blog / "about.md"])
    assert site.graph is graph
