"""Build errors for Kiln.

Every failure that aborts a build derives from BuildError, which carries the
source file the failure belongs to and a human-readable message. The CLI and
the watcher only need to catch BuildError to report any of them.

Classes:
    BuildError: Base class with file context.
    ConfigurationError: Unreadable or invalid _config.yml.
    MalformedFrontMatter: Front matter block that cannot be parsed.
    UnknownLayoutError: Layout name without a definition.
    LayoutCycleError: Layout chain that loops back on itself.
    TemplateEvaluationError: Failure while evaluating a template.
    DuplicateOutputPathError: Two sources mapped to the same output path.
    FilesystemError: Read, write or permission failure.
"""

from __future__ import annotations

from pathlib import Path


class BuildError(Exception):
    """Error during site build with file context.

    Attributes:
        source_path: Path to the source file that caused the error.
        message: Human-readable error message.
        original_error: The original exception that was caught.
    """

    def __init__(
        self,
        source_path: Path | None,
        message: str,
        original_error: Exception | None = None,
    ):
        self.source_path = source_path
        self.message = message
        self.original_error = original_error
        if source_path is None:
            super().__init__(message)
        else:
            super().__init__(f"{source_path}: {message}")


class ConfigurationError(BuildError):
    """The site configuration file is unreadable or not a mapping."""


class MalformedFrontMatter(BuildError):
    """Front matter was opened but never closed, or holds an unsupported value."""


class UnknownLayoutError(BuildError):
    """A document or layout references a layout that does not exist."""

    def __init__(self, name: str, referenced_by: Path | None = None):
        self.name = name
        super().__init__(referenced_by, f"Unknown layout '{name}'")


class LayoutCycleError(BuildError):
    """Following layout parents revisits a layout before reaching a terminal one."""

    def __init__(self, chain: list[str], source_path: Path | None = None):
        self.chain = list(chain)
        super().__init__(source_path, f"Layout cycle: {' -> '.join(self.chain)}")


class TemplateEvaluationError(BuildError):
    """Evaluation of a document body or layout failed.

    Attributes:
        template: Name of the template that failed ("body" or "layout NAME").
        directive: The offending source line, when it could be located.
    """

    def __init__(
        self,
        source_path: Path | None,
        template: str,
        message: str,
        directive: str | None = None,
        original_error: Exception | None = None,
    ):
        self.template = template
        self.directive = directive
        detail = f"{template}: {message}"
        if directive:
            detail += f" (in `{directive}`)"
        super().__init__(source_path, detail, original_error)


class DuplicateOutputPathError(BuildError):
    """Two sources resolve to the same output path."""

    def __init__(self, output_path: str, first: Path, second: Path):
        self.output_path = output_path
        self.first = first
        self.second = second
        super().__init__(
            second,
            f"Output path '{output_path}' is produced by both {first} and {second}",
        )


class FilesystemError(BuildError):
    """Writing to or reading from the filesystem failed."""
