from pathlib import Path

import pytest


def write_files(root: Path, files: dict[str, str]) -> Path:
    for rel, content in files.items():
        path = root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
    return root


@pytest.fixture
def make_site(tmp_path):
    """Return a factory that writes a source tree under tmp_path/site."""

    def factory(files: dict[str, str]) -> Path:
        return write_files(tmp_path / "site", files)

    return factory


@pytest.fixture
def blog(make_site):
    return make_site(
        {
            "_config.yml": "title: Demo\nurl: https://example.com\n",
            "_layouts/base.html": "<html><body>{{ content }}</body></html>\n",
            "_layouts/default.html": "---\nlayout: base\n---\n<main>{{ content }}</main>\n",
            "_layouts/post.html": (
                "---\nlayout: base\n---\n<article><h1>{{ page.title }}</h1>{{ content }}"
                "{% if page.previous %}<a rel=\"prev\" href=\"{{ page.previous.url }}\">prev</a>{% endif %}"
                "</article>\n"
            ),
            "_includes/footer.html": "<footer>{{ site.title }}</footer>\n",
            "index.md": (
                "---\ntitle: Home\n---\n"
                "{% for post in collections.posts %}- [{{ post.title }}]({{ post.url }})\n{% endfor %}"
            ),
            "about.md": "---\ntitle: About\n---\nAbout us.\n\n{% include \"footer.html\" %}\n",
            "contact.html": "---\ntitle: Contact\n---\n<p>Mail us</p>\n",
            "_posts/2019-01-01-first.md": "---\ntitle: First\ntags: [python]\n---\nFirst post.\n",
            "_posts/2020-05-23-third.md": "---\ntitle: Third\ntags: [python, web]\n---\nThird post.\n",
            "_posts/2019-09-09-second.md": "---\ntitle: Second\ntags: [web]\n---\nSecond post.\n",
            "_drafts/upcoming.md": "---\ntitle: Upcoming\n---\nNot yet.\n",
            "css/site.css": "body { color: black; }\n",
        }
    )
