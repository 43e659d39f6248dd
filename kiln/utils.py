"""Utility functions for Kiln.

This module contains small helpers used throughout the Kiln codebase:
string processing, path classification, date extraction and URL joining.

Key functions:
    slugify: Convert filenames to URL slugs.
    titleize: Convert filenames to human-readable titles.
    extract_date_from_name: Extract date from filename prefix.
    normalize_date: Coerce YAML dates into naive UTC datetimes.
    first_paragraph: Plain-text summary of a document body.
    is_markdown: Check if a path is a Markdown file.
    is_html: Check if a path is an HTML file.
    join_root_url: Join a base URL with a path.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from datetime import date, datetime, timezone
from pathlib import Path, PurePosixPath
from typing import Any

MARKDOWN_EXTENSIONS = (".md", ".markdown")
DATE_PREFIX_RE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})-")
DATE_NAME_RE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})(?:-|$)")


def strip_date_prefix(name: str) -> str:
    """Remove a leading ``YYYY-MM-DD-`` from a filename stem."""
    return DATE_PREFIX_RE.sub("", name, count=1)


def slugify(name: str) -> str:
    """Convert filename (without extension) to slug, dropping date prefix.

    Args:
        name: Filename stem.

    Returns:
        URL-friendly slug.
    """
    cleaned = strip_date_prefix(name)
    cleaned = re.sub(r"[^a-zA-Z0-9]+", "-", cleaned)
    cleaned = cleaned.strip("-").lower()
    return cleaned or "index"


def titleize(filename: str) -> str:
    """Convert a filename to a human-readable title.

    Removes date prefixes (YYYY-MM-DD), replaces hyphens and underscores
    with spaces, and capitalizes each word.

    Examples:
        >>> titleize("2024-01-15-hello-world.md")
        'Hello World'
    """
    base = strip_date_prefix(Path(filename).stem)
    words = re.split(r"[\s\-_]+", base)
    return " ".join(word.capitalize() for word in words if word) or "Untitled"


def extract_date_from_name(name: str) -> datetime | None:
    """Extract a date from a filename with YYYY-MM-DD prefix.

    Args:
        name: Filename stem (without extension).

    Returns:
        datetime object if a valid date prefix is found, None otherwise.
    """
    match = DATE_NAME_RE.match(name)
    if not match:
        return None
    try:
        return datetime(int(match.group(1)), int(match.group(2)), int(match.group(3)))
    except ValueError:
        return None


def normalize_date(value: Any) -> datetime:
    """Coerce a front matter date into a naive datetime.

    Timezone-aware values are converted to UTC first so that ordering does not
    depend on the machine running the build.

    Raises:
        ValueError: If a string value is not an ISO 8601 date.
        TypeError: If the value is not a date at all.
    """
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, str):
        return normalize_date(datetime.fromisoformat(value.strip()))
    raise TypeError(f"Not a date: {value!r}")


def first_paragraph(text: str, limit: int = 300) -> str:
    """Extract and clean the first prose paragraph from text.

    Skips headings, images, code fences and rules. Strips HTML tags and
    template syntax, collapses whitespace and truncates to ``limit``.
    """
    paragraphs = [p.strip() for p in text.split("\n\n") if p.strip()]
    for para in paragraphs:
        if para.startswith(("#", "![", "```", "---", "{%")):
            continue
        para = re.sub(r"<[^>]+>", "", para)
        para = re.sub(r"\{[%#{].*?[%#}]\}", "", para, flags=re.DOTALL)
        collapsed = " ".join(para.split())
        if collapsed:
            return collapsed[:limit]
    return ""


def is_markdown(path: PurePosixPath | Path) -> bool:
    """Check if a path is a Markdown file (.md or .markdown, case-insensitive)."""
    return path.suffix.lower() in MARKDOWN_EXTENSIONS


def is_html(path: PurePosixPath | Path) -> bool:
    """Check if a path is an HTML file."""
    return path.suffix.lower() in (".html", ".htm")


def is_document(path: PurePosixPath | Path) -> bool:
    """Check if a path is rendered as a document rather than copied."""
    return is_markdown(path) or is_html(path)


def is_hidden(rel: PurePosixPath) -> bool:
    """Check if any component of a relative path starts with ``.``."""
    return any(part.startswith(".") for part in rel.parts)


def join_root_url(base: str, path: str) -> str:
    """Join a base URL with a path, avoiding doubled slashes."""
    if not base:
        return path
    if not path.startswith("/"):
        path = f"/{path}"
    return base.rstrip("/") + path


def url_for_output(output_path: PurePosixPath) -> str:
    """Return the public URL for an output path (``index.html`` maps to its folder)."""
    posix = output_path.as_posix()
    if output_path.name == "index.html":
        parent = output_path.parent.as_posix()
        return "/" if parent in ("", ".") else f"/{parent}/"
    return f"/{posix}"


def build_tags_index(documents: Iterable) -> dict[str, list]:
    """Build an index mapping tags to lists of documents carrying that tag.

    Documents keep the order they are given in.
    """
    tags: dict[str, list] = {}
    for document in documents:
        for tag in document.tags:
            tags.setdefault(tag, []).append(document)
    return tags
