"""Output writing for Kiln.

The OutputWriter owns the destination directory. Each file is written to a
temporary sibling and moved into place with ``os.replace``, so readers never
see a half-written page, and files whose bytes did not change are left
untouched.

Key classes:
- WriteReport: What a publish call changed.
- OutputWriter: Writes, copies and prunes destination files.
"""

from __future__ import annotations

import logging
import os
import tempfile
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath

from .errors import FilesystemError

logger = logging.getLogger(__name__)


@dataclass
class WriteReport:
    """Outcome of publishing outputs.

    Attributes:
        written: Output paths whose content changed (or were created).
        unchanged: Output paths that already held identical bytes.
        removed: Output paths deleted from the destination.
    """

    written: list[PurePosixPath] = field(default_factory=list)
    unchanged: list[PurePosixPath] = field(default_factory=list)
    removed: list[PurePosixPath] = field(default_factory=list)

    def merge(self, other: WriteReport) -> None:
        self.written.extend(other.written)
        self.unchanged.extend(other.unchanged)
        self.removed.extend(other.removed)


class OutputWriter:
    """Writes build outputs into a destination directory.

    Attributes:
        destination: Root of the generated site.
    """

    def __init__(self, destination: Path):
        self.destination = destination

    def target(self, output_path: PurePosixPath) -> Path:
        return self.destination.joinpath(*output_path.parts)

    def write(self, output_path: PurePosixPath, content: bytes) -> bool:
        """Atomically write one output file.

        Returns:
            True if the file was written, False if it already held ``content``.

        Raises:
            FilesystemError: On any OS-level failure.
        """
        target = self.target(output_path)
        try:
            if target.is_file() and target.read_bytes() == content:
                return False
            target.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{target.name}.", suffix=".tmp", dir=target.parent
            )
            try:
                with os.fdopen(fd, "wb") as f:
                    f.write(content)
                os.chmod(tmp_name, 0o644)
                os.replace(tmp_name, target)
            except BaseException:
                if os.path.exists(tmp_name):
                    os.unlink(tmp_name)
                raise
        except OSError as exc:
            raise FilesystemError(target, f"Cannot write output: {exc}", exc) from exc
        return True

    def remove(self, output_path: PurePosixPath) -> bool:
        """Delete an output file and any directories it leaves empty."""
        target = self.target(output_path)
        try:
            if not target.is_file():
                return False
            target.unlink()
            parent = target.parent
            while parent != self.destination and parent.is_dir() and not any(parent.iterdir()):
                parent.rmdir()
                parent = parent.parent
        except OSError as exc:
            raise FilesystemError(target, f"Cannot remove output: {exc}", exc) from exc
        return True

    def existing_outputs(self) -> set[PurePosixPath]:
        """List every file currently in the destination."""
        if not self.destination.exists():
            return set()
        return {
            PurePosixPath(path.relative_to(self.destination).as_posix())
            for path in self.destination.rglob("*")
            if path.is_file()
        }

    def publish(
        self,
        outputs: Mapping[PurePosixPath, bytes],
        remove: Iterable[PurePosixPath] = (),
        prune: bool = False,
    ) -> WriteReport:
        """Write a batch of outputs.

        Args:
            outputs: Content keyed by output path.
            remove: Output paths to delete.
            prune: Delete every existing file not listed in ``outputs``
                (used by full builds).

        Returns:
            WriteReport describing the changes.
        """
        report = WriteReport()
        for output_path in sorted(outputs, key=lambda p: p.as_posix()):
            if self.write(output_path, outputs[output_path]):
                report.written.append(output_path)
            else:
                report.unchanged.append(output_path)
        stale = set(remove)
        if prune:
            stale |= self.existing_outputs() - set(outputs)
        for output_path in sorted(stale, key=lambda p: p.as_posix()):
            if output_path in outputs:
                continue
            if self.remove(output_path):
                report.removed.append(output_path)
        logger.debug(
            "Published %d files (%d unchanged, %d removed)",
            len(report.written),
            len(report.unchanged),
            len(report.removed),
        )
        return report


def read_source_bytes(path: Path) -> bytes:
    """Read a static file for copying."""
    try:
        return path.read_bytes()
    except OSError as exc:
        raise FilesystemError(path, f"Cannot read static file: {exc}", exc) from exc
