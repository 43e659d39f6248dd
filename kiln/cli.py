"""Command-line interface for Kiln.

This module defines the CLI commands using Click framework.
It provides commands for creating new projects, building sites, and running the development server.

Commands:
- new: Scaffold a new Kiln project.
- build: Build the site into the destination directory.
- serve: Run development server with live reload.
- post: Create a new post interactively.
"""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path

import click
import questionary

from . import __version__
from .errors import BuildError
from .graph import DRAFTS_DIRNAME, POSTS_DIRNAME
from .utils import slugify

_SCAFFOLD_FILES = {
    "_config.yml": """\
title: {title}
url: ""
description: A site built with Kiln.
permalink: /:year/:month/:day/:title.html
feed: false
""",
    "_layouts/base.html": """\
<!doctype html>
<html lang="en">
<head>
  <meta charset="utf-8">
  <title>{{{{ page.title }}}} | {{{{ site.title }}}}</title>
</head>
<body>
{{% include "header.html" %}}
<main>
{{{{ content }}}}
</main>
</body>
</html>
""",
    "_layouts/default.html": """\
---
layout: base
---
<article>
{{{{ content }}}}
</article>
""",
    "_layouts/post.html": """\
---
layout: base
---
<article>
  <h1>{{{{ page.title }}}}</h1>
  <time>{{{{ page.date.strftime("%Y-%m-%d") }}}}</time>
  {{{{ content }}}}
</article>
<nav>
  {{% if page.previous %}}<a href="{{{{ page.previous.url }}}}">Older</a>{{% endif %}}
  {{% if page.next %}}<a href="{{{{ page.next.url }}}}">Newer</a>{{% endif %}}
</nav>
""",
    "_includes/header.html": """\
<header><a href="{{{{ url_for('/') }}}}">{{{{ site.title }}}}</a></header>
""",
    "index.md": """\
---
title: Home
---
# {{{{ site.title }}}}

{{% for post in collections.posts.latest(5) %}}
- [{{{{ post.title }}}}]({{{{ post.url }}}})
{{% endfor %}}
""",
    "_posts/{date}-welcome.md": """\
---
title: Welcome
tags: [kiln]
---
This is your first post. Edit or delete it, then run `kiln build`.
""",
}


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


def _enable_debug(ctx, param, value):
    if value:
        logging.getLogger().setLevel(logging.DEBUG)


def verbose_option(func):
    """Accept ``-v`` after a subcommand as well as before it."""
    return click.option(
        "-v",
        "--verbose",
        is_flag=True,
        expose_value=False,
        callback=_enable_debug,
        help="Enable debug logging",
    )(func)


def _report_build_error(exc: BuildError, source: Path) -> None:
    """Print a build failure the way users read it."""
    click.echo(click.style("Build failed:", fg="red", bold=True), err=True)
    if exc.source_path is not None:
        path = Path(exc.source_path)
        try:
            path = path.resolve().relative_to(source.resolve())
        except ValueError:
            pass
        click.echo(click.style(f"  File: {path}", fg="yellow"), err=True)
    click.echo(click.style(f"  Error: {exc.message}", fg="white"), err=True)


@click.group()
@click.version_option(version=__version__, prog_name="kiln")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
def cli(verbose: bool):
    """Kiln static site build pipeline."""
    _configure_logging(verbose)


@cli.command()
@click.argument("name")
@verbose_option
def new(name: str):
    """Scaffold a new Kiln project."""
    target = Path(name).resolve()
    if target.exists() and any(target.iterdir()):
        raise click.ClickException(
            f"Refusing to initialize into non-empty directory: {target}"
        )
    _scaffold(target)
    click.echo(f"New Kiln site created at {target}")


@cli.command()
@click.option(
    "--source",
    type=click.Path(file_okay=False, path_type=Path),
    default=".",
    help="Site source directory",
)
@click.option(
    "--destination",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Output directory (overrides _config.yml)",
)
@click.option("--drafts", is_flag=True, help="Include draft content")
@verbose_option
@click.option("--future", is_flag=True, help="Include documents dated in the future")
def build(source: Path, destination: Path | None, drafts: bool, future: bool):
    """Build the site into the destination directory."""
    from .build import build_site

    source = source.resolve()
    try:
        result = build_site(
            source,
            include_drafts=drafts,
            include_future=future,
            destination=destination.resolve() if destination else None,
        )
    except BuildError as exc:
        _report_build_error(exc, source)
        raise SystemExit(1) from None
    click.echo(
        f"Built {len(result.documents)} documents into {result.output_dir} "
        f"({len(result.report.written)} written, {len(result.report.removed)} removed)"
    )


@cli.command()
@click.option(
    "--source",
    type=click.Path(file_okay=False, path_type=Path),
    default=".",
    help="Site source directory",
)
@click.option("--port", type=int, default=4000, show_default=True, help="Port for the HTTP server")
@click.option(
    "--ws-port",
    type=int,
    required=False,
    help="Port for the live reload websocket server (defaults to --port + 1)",
)
@click.option("--watch/--no-watch", default=True, help="Rebuild when sources change")
@click.option("--drafts", is_flag=True, help="Include draft content")
@verbose_option
@click.option("--future", is_flag=True, help="Include documents dated in the future")
def serve(source: Path, port: int, ws_port: int | None, watch: bool, drafts: bool, future: bool):
    """Run dev server with live reload."""
    from .config import BuildOptions
    from .server import DevServer

    source = source.resolve()
    server = DevServer(
        source,
        http_port=port,
        ws_port=ws_port,
        watch=watch,
        options=BuildOptions(drafts=drafts, future=future),
    )
    try:
        server.start()
    except BuildError as exc:
        _report_build_error(exc, source)
        raise SystemExit(1) from None


@cli.command()
@click.option(
    "--source",
    type=click.Path(file_okay=False, path_type=Path),
    default=".",
    help="Site source directory",
)
@verbose_option
def post(source: Path):
    """Create a new post interactively."""
    source = source.resolve()
    if not (source / "_config.yml").exists():
        raise click.ClickException(
            "No _config.yml found. Run this command from a Kiln project root."
        )

    title = questionary.text(
        "Title:",
        validate=lambda x: len(x.strip()) > 0 or "Title cannot be empty",
        style=_questionary_style(),
    ).ask()
    if title is None:
        raise click.Abort()
    title = title.strip()

    tags = questionary.text(
        "Tags (space separated):",
        style=_questionary_style(),
    ).ask()
    if tags is None:
        raise click.Abort()

    draft = questionary.confirm(
        "Save as draft?",
        default=False,
        style=_questionary_style(),
    ).ask()
    if draft is None:
        raise click.Abort()

    slug = slugify(title)
    conflicting = _find_slug(source, slug)
    if conflicting is not None:
        raise click.ClickException(
            f"A post with slug '{slug}' already exists: {conflicting.relative_to(source)}"
        )

    now = datetime.now()
    if draft:
        target = source / DRAFTS_DIRNAME / f"{slug}.md"
    else:
        target = source / POSTS_DIRNAME / f"{now:%Y-%m-%d}-{slug}.md"
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(_post_template(title, tags.split(), now), encoding="utf-8")
    click.echo(f"Created {target.relative_to(source)}")


def _find_slug(source: Path, slug: str) -> Path | None:
    """Return an existing post or draft whose file name yields ``slug``."""
    for dirname in (POSTS_DIRNAME, DRAFTS_DIRNAME):
        folder = source / dirname
        if not folder.exists():
            continue
        for path in sorted(folder.iterdir()):
            if path.is_file() and slugify(path.stem) == slug:
                return path
    return None


def _post_template(title: str, tags: list[str], now: datetime) -> str:
    escaped = title.replace('"', '\\"')
    lines = ["---", f'title: "{escaped}"', f"date: {now:%Y-%m-%d %H:%M:%S}"]
    if tags:
        lines.append(f"tags: [{', '.join(tags)}]")
    lines.extend(["---", "", ""])
    return "\n".join(lines)


def _questionary_style():
    """Return consistent questionary style."""
    return questionary.Style(
        [
            ("qmark", "fg:cyan bold"),
            ("question", "bold"),
            ("answer", "fg:cyan"),
            ("pointer", "fg:cyan bold"),
            ("highlighted", "fg:cyan bold"),
            ("selected", "fg:cyan"),
        ]
    )


def main():
    """Entry point for the CLI application."""
    cli()


def _scaffold(root: Path) -> None:
    """Write the starter files of a new project.

    Args:
        root: Root directory for the new project.
    """
    today = datetime.now().strftime("%Y-%m-%d")
    title = root.name.replace("-", " ").replace("_", " ").title()
    for rel_path, template in _SCAFFOLD_FILES.items():
        dest_path = root / rel_path.format(date=today)
        dest_path.parent.mkdir(parents=True, exist_ok=True)
        dest_path.write_text(template.format(title=title), encoding="utf-8")
