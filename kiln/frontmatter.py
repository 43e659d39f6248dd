"""Front matter parsing for Kiln.

A document may start with a YAML block fenced by ``---`` lines::

    ---
    layout: post
    title: Hello
    tags: [python, web]
    ---
    Body text...

Values are restricted to a closed set of shapes (strings, numbers, booleans,
dates and flat sequences of those) so templates never receive arbitrary
nested structures from document headers.
"""

from __future__ import annotations

from datetime import date
from pathlib import Path
from typing import Any, Union

import yaml

from .errors import MalformedFrontMatter

Scalar = Union[str, int, float, bool, date]
FrontMatterValue = Union[Scalar, "list[Scalar]"]

OPEN_DELIMITER = "---"
CLOSE_DELIMITERS = ("---", "...")

_SCALAR_TYPES = (str, int, float, bool, date)


def split_front_matter(text: str, source_path: Path | None = None) -> tuple[str | None, str]:
    """Split raw text into the front matter block and the body.

    Returns:
        Tuple of (YAML block or None when the text has no front matter, body).

    Raises:
        MalformedFrontMatter: If the opening delimiter is never closed.
    """
    lines = text.lstrip("\ufeff").splitlines(keepends=True)
    if not lines or lines[0].rstrip() != OPEN_DELIMITER:
        return None, text
    for index in range(1, len(lines)):
        if lines[index].rstrip() in CLOSE_DELIMITERS:
            block = "".join(lines[1:index])
            body = "".join(lines[index + 1 :])
            return block, body
    raise MalformedFrontMatter(
        source_path, "Front matter opened with '---' but never closed"
    )


def parse_front_matter(
    text: str, source_path: Path | None = None
) -> tuple[dict[str, FrontMatterValue], str]:
    """Extract YAML front matter from document text.

    Args:
        text: Raw file content.
        source_path: Path used in error messages.

    Returns:
        Tuple of (front matter mapping, remaining body). Documents without a
        front matter block yield an empty mapping and the full text.

    Raises:
        MalformedFrontMatter: On an unclosed block, invalid YAML, a non-mapping
            block or a value outside the supported shapes.
    """
    block, body = split_front_matter(text, source_path)
    if block is None:
        return {}, body
    try:
        data = yaml.safe_load(block)
    except yaml.YAMLError as exc:
        raise MalformedFrontMatter(source_path, f"Invalid YAML: {exc}", exc) from exc
    if data is None:
        return {}, body
    if not isinstance(data, dict):
        raise MalformedFrontMatter(
            source_path,
            f"Front matter must be a mapping, got {type(data).__name__}",
        )
    return validate_front_matter(data, source_path), body


def validate_front_matter(
    data: dict[Any, Any], source_path: Path | None = None
) -> dict[str, FrontMatterValue]:
    """Check every value against the supported shapes; drop null values."""
    result: dict[str, FrontMatterValue] = {}
    for key, value in data.items():
        if not isinstance(key, str):
            raise MalformedFrontMatter(
                source_path, f"Front matter key {key!r} must be a string"
            )
        if value is None:
            continue
        if isinstance(value, _SCALAR_TYPES):
            result[key] = value
        elif isinstance(value, list):
            for item in value:
                if not isinstance(item, _SCALAR_TYPES):
                    raise MalformedFrontMatter(
                        source_path,
                        f"Front matter key '{key}' may only hold a list of scalars",
                    )
            result[key] = list(value)
        else:
            raise MalformedFrontMatter(
                source_path,
                f"Front matter key '{key}' has unsupported type {type(value).__name__}",
            )
    return result
