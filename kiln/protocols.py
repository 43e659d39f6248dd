"""Protocol definitions for Kiln.

These interfaces keep the pipeline stages replaceable: a body converter, a
metadata extractor or a template engine can be swapped for any object with the
same shape, which is also how tests substitute fakes.
"""

from __future__ import annotations

from abc import abstractmethod
from collections.abc import Mapping
from pathlib import PurePath
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from .graph import Document, SiteGraph


@runtime_checkable
class ContentRenderer(Protocol):
    """Converts an evaluated document body to HTML.

    Implementations handle one source type each (Markdown, HTML).
    """

    @abstractmethod
    def can_render(self, path: PurePath) -> bool:
        """Check if this renderer handles documents with the given path."""
        ...

    @abstractmethod
    def render(self, content: str) -> str:
        """Convert body text (already template-evaluated) to HTML."""
        ...

    @property
    @abstractmethod
    def source_type(self) -> str:
        """Return the source type identifier (e.g., 'markdown', 'html')."""
        ...


@runtime_checkable
class MetadataExtractor(Protocol):
    """Derives document metadata (title, date, tags, excerpt).

    Extractors see the parsed front matter and the raw body and return only
    the keys they are responsible for.
    """

    @abstractmethod
    def extract(self, front_matter: Mapping[str, Any], body: str, path: PurePath) -> dict[str, Any]:
        """Extract metadata.

        Args:
            front_matter: Parsed front matter of the document.
            body: Document body without front matter.
            path: Source-relative path of the document.

        Returns:
            Dictionary of extracted metadata.
        """
        ...


@runtime_checkable
class TemplateRenderer(Protocol):
    """Renders documents through their layout chain."""

    @abstractmethod
    def render_document(self, document: Document, graph: SiteGraph) -> str:
        """Render a linked document with its layouts."""
        ...

    @abstractmethod
    def render_string(self, template: str, context: Mapping[str, Any]) -> str:
        """Render a template string with the given variables."""
        ...
