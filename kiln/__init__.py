"""Kiln static site build pipeline.

Kiln turns a directory of Markdown and HTML documents, layouts and static files
into a static website. Documents carry YAML front matter, are evaluated as
Jinja2 templates, wrapped in chains of layouts and written atomically into a
destination directory. A watcher applies incremental rebuilds for local
authoring, and the dev server reloads the browser when output changes.

The main entry point is the CLI module, which provides commands for scaffolding new projects,
building sites, creating posts and running the development server.
"""

__all__ = ["__version__"]
__version__ = "0.1.0"
