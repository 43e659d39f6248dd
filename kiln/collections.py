from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping, Sequence
from datetime import datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .graph import Document

_EPOCH = datetime(1970, 1, 1)


def chronological(documents: Iterable[Document], reverse: bool = True) -> list[Document]:
    """Order documents by date (newest first by default), ties by source path ascending."""
    by_path = sorted(documents, key=lambda d: d.source_path.as_posix())
    return sorted(by_path, key=lambda d: d.date or _EPOCH, reverse=reverse)


class DocumentCollection(Sequence["Document"]):
    """Ordered, read-only list of Documents used by templates and the feed writer."""

    def __init__(self, name: str, documents: Iterable[Document]):
        self.name = name
        self._documents = list(documents)

    @classmethod
    def by_date(cls, name: str, documents: Iterable[Document]) -> DocumentCollection:
        return cls(name, chronological(documents))

    @classmethod
    def by_path(cls, name: str, documents: Iterable[Document]) -> DocumentCollection:
        return cls(name, sorted(documents, key=lambda d: d.source_path.as_posix()))

    def __iter__(self) -> Iterator[Document]:
        return iter(self._documents)

    def __len__(self) -> int:
        return len(self._documents)

    def __getitem__(self, item):
        return self._documents[item]

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, DocumentCollection):
            return NotImplemented
        return self.name == other.name and self.source_paths() == other.source_paths()

    __hash__ = None  # type: ignore[assignment]

    def source_paths(self) -> list[str]:
        return [d.source_path.as_posix() for d in self._documents]

    def with_tag(self, tag: str) -> DocumentCollection:
        return DocumentCollection(self.name, (d for d in self._documents if tag in d.tags))

    def drafts(self) -> DocumentCollection:
        return DocumentCollection(self.name, (d for d in self._documents if d.draft))

    def published(self) -> DocumentCollection:
        return DocumentCollection(self.name, (d for d in self._documents if not d.draft))

    def latest(self, count: int = 5) -> DocumentCollection:
        return DocumentCollection(self.name, self._documents[:count])

    def __repr__(self) -> str:  # pragma: no cover - for debugging
        return f"DocumentCollection({self.name!r}, {len(self._documents)} documents)"


class TagCollection(Mapping[str, DocumentCollection]):
    """Mapping of tag name to DocumentCollection, tags in sorted order."""

    def __init__(self, mapping: Mapping[str, Iterable[Document]]):
        self._mapping = {
            k: DocumentCollection(k, mapping[k]) for k in sorted(mapping)
        }

    def __getitem__(self, key: str) -> DocumentCollection:
        return self._mapping[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._mapping)

    def __len__(self) -> int:
        return len(self._mapping)

    def __repr__(self) -> str:  # pragma: no cover - for debugging
        return f"TagCollection({len(self._mapping)} tags)"
