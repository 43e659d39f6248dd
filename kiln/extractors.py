"""Metadata extractors for Kiln.

Each extractor derives one kind of document metadata from the parsed front
matter, the body and the source path. Front matter always wins over values
inferred from the body or the filename.

Key classes:
- TitleExtractor: Title from front matter, first heading or filename.
- DateExtractor: Date from front matter or ``YYYY-MM-DD-`` filename prefix.
- TagExtractor: Tags from front matter.
- ExcerptExtractor: Summary text for listings and feeds.
- CompositeMetadataExtractor: Runs all of the above.
"""

from __future__ import annotations

from pathlib import PurePosixPath
from typing import Any

from .errors import MalformedFrontMatter
from .protocols import MetadataExtractor
from .utils import (
    extract_date_from_name,
    first_paragraph,
    is_markdown,
    normalize_date,
    titleize,
)


class TitleExtractor:
    """Extracts title from front matter, content or filename.

    Looks for a ``title`` key, then a level-1 heading (# Title) in Markdown
    content, falling back to titleizing the filename.
    """

    def extract(self, front_matter: dict[str, Any], body: str, path: PurePosixPath) -> dict[str, Any]:
        if "title" in front_matter:
            return {"title": str(front_matter["title"])}
        if is_markdown(path):
            for line in body.splitlines():
                stripped = line.strip()
                if stripped.startswith("# "):
                    return {"title": stripped[2:].strip()}
        return {"title": titleize(path.name)}


class DateExtractor:
    """Extracts date from front matter or filename prefix.

    Returns ``None`` when neither is present; callers decide on a fallback.
    """

    def extract(self, front_matter: dict[str, Any], body: str, path: PurePosixPath) -> dict[str, Any]:
        if "date" in front_matter:
            try:
                return {"date": normalize_date(front_matter["date"])}
            except (TypeError, ValueError) as exc:
                raise MalformedFrontMatter(
                    path, f"Invalid date {front_matter['date']!r}", exc
                ) from exc
        return {"date": extract_date_from_name(path.stem)}


class TagExtractor:
    """Extracts tags from front matter.

    Accepts either a list (``tags: [a, b]``) or a space separated string
    (``tags: a b``). Duplicates are dropped, first occurrence wins.
    """

    def extract(self, front_matter: dict[str, Any], body: str, path: PurePosixPath) -> dict[str, Any]:
        raw = front_matter.get("tags", [])
        if isinstance(raw, str):
            items = raw.split()
        elif isinstance(raw, list):
            items = [str(t) for t in raw]
        else:
            items = [str(raw)]
        tags: list[str] = []
        for tag in items:
            if tag not in tags:
                tags.append(tag)
        return {"tags": tags}


class ExcerptExtractor:
    """Extracts a plain-text summary.

    Uses ``excerpt``, then ``description`` from front matter, falling back to
    the first prose paragraph of the body.
    """

    def extract(self, front_matter: dict[str, Any], body: str, path: PurePosixPath) -> dict[str, Any]:
        for key in ("excerpt", "description"):
            if key in front_matter:
                return {"excerpt": str(front_matter[key])}
        return {"excerpt": first_paragraph(body)}


class CompositeMetadataExtractor:
    """Combines multiple metadata extractors.

    Runs every registered extractor and merges their results; later
    extractors override earlier ones.
    """

    def __init__(self, extractors: list[MetadataExtractor] | None = None):
        if extractors is None:
            self._extractors = [
                TitleExtractor(),
                DateExtractor(),
                TagExtractor(),
                ExcerptExtractor(),
            ]
        else:
            self._extractors = list(extractors)

    def add_extractor(self, extractor: MetadataExtractor) -> None:
        self._extractors.append(extractor)

    def extract(self, front_matter: dict[str, Any], body: str, path: PurePosixPath) -> dict[str, Any]:
        result: dict[str, Any] = {}
        for extractor in self._extractors:
            result.update(extractor.extract(front_matter, body, path))
        return result


default_metadata_extractor = CompositeMetadataExtractor()
