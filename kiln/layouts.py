"""Layout resolution for Kiln.

Layouts live in ``_layouts/`` and are addressed by file stem. A layout may
declare a parent in its own front matter (``layout: base``), which makes the
layouts a set of chains. Resolution follows parents until a layout without a
parent is reached and refuses chains that loop back on themselves.

Key classes:
- Layout: A named template body with an optional parent.
- LayoutRegistry: Loads layouts and resolves chains.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .errors import FilesystemError, LayoutCycleError, UnknownLayoutError
from .frontmatter import parse_front_matter

logger = logging.getLogger(__name__)

LAYOUTS_DIRNAME = "_layouts"
NO_LAYOUT = ("none", "null", "false")


@dataclass(frozen=True)
class Layout:
    """A reusable template that wraps document content.

    Attributes:
        name: Layout identity (file stem).
        body: Template source without its front matter.
        parent: Name of the enclosing layout, if any.
        front_matter: Remaining front matter, exposed as ``layout`` in templates.
        path: Source file of the layout.
    """

    name: str
    body: str
    parent: str | None = None
    front_matter: dict[str, Any] = field(default_factory=dict)
    path: Path | None = None


class LayoutRegistry:
    """Holds every known layout and resolves layout chains.

    Attributes:
        layouts: Mapping of layout name to Layout.
    """

    def __init__(self, layouts: dict[str, Layout] | None = None):
        self.layouts: dict[str, Layout] = dict(layouts or {})

    @classmethod
    def load(cls, layouts_dir: Path) -> LayoutRegistry:
        """Load every file in a layouts directory.

        Args:
            layouts_dir: Directory holding layout templates.

        Returns:
            A registry keyed by file stem (``post.html`` becomes ``post``).
        """
        layouts: dict[str, Layout] = {}
        if not layouts_dir.exists():
            return cls(layouts)
        for path in sorted(layouts_dir.rglob("*")):
            if path.is_dir() or path.name.startswith("."):
                continue
            layout = load_layout(path, layouts_dir)
            layouts[layout.name] = layout
        logger.debug("Loaded %d layouts from %s", len(layouts), layouts_dir)
        return cls(layouts)

    def __contains__(self, name: object) -> bool:
        return name in self.layouts

    def __iter__(self) -> Iterator[Layout]:
        return iter(self.layouts.values())

    def __len__(self) -> int:
        return len(self.layouts)

    def get(self, name: str) -> Layout | None:
        return self.layouts.get(name)

    def resolve_chain(self, name: str | None, referenced_by: Path | None = None) -> list[Layout]:
        """Resolve the full chain of layouts for a layout name.

        Args:
            name: Layout declared by a document, or None for no layout.
            referenced_by: Document path used in error messages.

        Returns:
            Layouts ordered from outermost to innermost. The innermost layout
            is ``name`` itself; an empty list means no layout.

        Raises:
            UnknownLayoutError: If any name in the chain has no definition.
            LayoutCycleError: If a name reappears before a terminal layout.
        """
        chain: list[Layout] = []
        visited: list[str] = []
        current = name
        while current is not None:
            if current in visited:
                raise LayoutCycleError(visited + [current], referenced_by)
            layout = self.layouts.get(current)
            if layout is None:
                source = chain[-1].path if chain else referenced_by
                raise UnknownLayoutError(current, source)
            visited.append(current)
            chain.append(layout)
            current = layout.parent
        chain.reverse()
        return chain

    def validate(self) -> None:
        """Resolve every layout once so broken chains fail early."""
        for name in sorted(self.layouts):
            self.resolve_chain(name)


def load_layout(path: Path, layouts_dir: Path) -> Layout:
    """Read a single layout file."""
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise FilesystemError(path, f"Cannot read layout: {exc}", exc) from exc
    except UnicodeDecodeError as exc:
        raise FilesystemError(path, f"Layout is not valid UTF-8: {exc}", exc) from exc
    front_matter, body = parse_front_matter(text, path)
    parent = front_matter.pop("layout", None)
    if parent is not None and str(parent).lower() in NO_LAYOUT:
        parent = None
    rel = path.relative_to(layouts_dir)
    name = rel.with_suffix("").as_posix()
    return Layout(
        name=name,
        body=body,
        parent=str(parent) if parent is not None else None,
        front_matter=front_matter,
        path=path,
    )
