"""Template rendering engine for Kiln.

This module uses Jinja2 to evaluate document bodies and layouts. Rendering a
document is a pure function of the document, the configuration, the
collections and the layout/include sources, which is what lets the watcher
re-render only part of a site.

Rendering order:
1. The document body is evaluated as a template.
2. Markdown documents are converted to HTML.
3. The result becomes ``content`` of the innermost layout, whose output becomes
   ``content`` of the next layout outwards, up the resolved chain.

Template variables: ``site``, ``page``, ``content``, ``layout``,
``collections`` (``posts``, ``pages``, ``tags``), ``data`` and ``url_for``.

Key class:
- TemplateEngine: Evaluates templates and reports template dependencies.
"""

from __future__ import annotations

import threading
import traceback
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any

from jinja2 import (
    Environment,
    FileSystemLoader,
    StrictUndefined,
    Template,
    TemplateNotFound,
    TemplateSyntaxError,
    UndefinedError,
    meta,
    pass_context,
    select_autoescape,
)
from markupsafe import Markup

from .errors import TemplateEvaluationError
from .renderers import RendererRegistry, default_renderer_registry
from .utils import join_root_url

if TYPE_CHECKING:
    from .graph import Document, SiteGraph

INCLUDES_DIRNAME = "_includes"
_STRING_TEMPLATE = "<template>"

__all__ = ["TemplateDependencies", "TemplateEngine"]


@dataclass(frozen=True)
class TemplateDependencies:
    """What a document's templates read besides the document itself.

    Attributes:
        variables: Top-level template variables referenced anywhere in the
            body, the layout chain or included fragments.
        includes: Names of every fragment reachable through ``include``.
        dynamic_includes: True when an include name is computed at render time.
    """

    variables: frozenset[str]
    includes: frozenset[str]
    dynamic_includes: bool = False

    @property
    def uses_collections(self) -> bool:
        return "collections" in self.variables

    @property
    def uses_data(self) -> bool:
        return "data" in self.variables

    def depends_on_include(self, name: str) -> bool:
        return self.dynamic_includes or name in self.includes


def _url_for(path: str) -> str:
    """Return a site-relative URL for a path."""
    if path.startswith(("http://", "https://", "//")):
        return path
    return path if path.startswith("/") else f"/{path}"


@pass_context
def _absolute_url(context, path: str) -> str:
    """Jinja filter: prefix a path with the configured site ``url``."""
    if path.startswith(("http://", "https://", "//")):
        return path
    site = context.get("site") or {}
    return join_root_url(str(site.get("url") or ""), _url_for(path))


def _directive_at(source: str, lineno: int | None) -> str | None:
    if not lineno:
        return None
    lines = source.splitlines()
    if 0 < lineno <= len(lines):
        return lines[lineno - 1].strip()
    return None


def _failing_line(exc: BaseException) -> int | None:
    """Find the template line an exception was raised from.

    Jinja rewrites tracebacks so frames executing template code carry the
    template's filename and line number.
    """
    lineno = None
    for frame in traceback.extract_tb(exc.__traceback__):
        if frame.filename == _STRING_TEMPLATE:
            lineno = frame.lineno
    return lineno


class TemplateEngine:
    """Template rendering engine using Jinja2.

    Attributes:
        source: Site source root.
        env: Jinja2 environment; includes load from ``_includes``.
        renderer_registry: Converters applied to document bodies.
    """

    def __init__(self, source: Path, renderer_registry: RendererRegistry | None = None):
        self.source = source
        self.renderer_registry = renderer_registry or default_renderer_registry
        self.env = Environment(
            loader=FileSystemLoader(str(source / INCLUDES_DIRNAME)),
            autoescape=select_autoescape(["html", "htm", "xml"], default_for_string=True),
            undefined=StrictUndefined,
            keep_trailing_newline=True,
        )
        self.env.globals["url_for"] = _url_for
        self.env.filters["absolute_url"] = _absolute_url
        self.env.filters["relative_url"] = _url_for
        self._compiled: dict[str, Template] = {}
        self._lock = threading.Lock()

    def context_for(self, document: Document, graph: SiteGraph) -> dict[str, Any]:
        """Build the template context for a document."""
        return {
            "site": graph.config.settings,
            "page": document,
            "collections": {
                "posts": graph.posts,
                "pages": graph.collections.get("pages", ()),
                "tags": graph.tags,
            },
            "data": graph.data,
        }

    def render_document(self, document: Document, graph: SiteGraph) -> str:
        """Render a document with its layout chain.

        Args:
            document: Linked document to render.
            graph: The graph the document belongs to.

        Returns:
            Final markup.

        Raises:
            TemplateEvaluationError: On syntax errors, undefined variables or
                fields, missing includes or any other evaluation failure.
        """
        context = self.context_for(document, graph)
        output = self._evaluate(document.body, context, document, "body")
        renderer = self.renderer_registry.get_renderer(document.source_path)
        if renderer is not None:
            output = renderer.render(output)
        for name in reversed(document.layout_chain):
            layout = graph.layouts.layouts[name]
            layout_context = {**context, "content": Markup(output), "layout": layout.front_matter}
            output = self._evaluate(layout.body, layout_context, document, f"layout '{name}'")
        return output

    def render_string(self, template: str, context: Mapping[str, Any]) -> str:
        """Render a template string outside of any document."""
        return self._compile(template).render(**context)

    def _compile(self, source: str) -> Template:
        with self._lock:
            template = self._compiled.get(source)
            if template is None:
                template = self.env.from_string(source)
                self._compiled[source] = template
            return template

    def _evaluate(
        self,
        source: str,
        context: Mapping[str, Any],
        document: Document,
        template_name: str,
    ) -> str:
        source_path = self.source / document.source_path
        try:
            return self._compile(source).render(**context)
        except TemplateSyntaxError as exc:
            origin = exc.source if exc.name else source
            where = f" in include '{exc.name}'" if exc.name else ""
            raise TemplateEvaluationError(
                source_path,
                template_name,
                f"Template syntax error{where} on line {exc.lineno}: {exc.message}",
                directive=_directive_at(origin or "", exc.lineno),
                original_error=exc,
            ) from exc
        except TemplateNotFound as exc:
            raise TemplateEvaluationError(
                source_path,
                template_name,
                f"Include not found: {exc.name}",
                directive=_directive_at(source, _failing_line(exc)),
                original_error=exc,
            ) from exc
        except UndefinedError as exc:
            raise TemplateEvaluationError(
                source_path,
                template_name,
                f"Undefined variable: {exc.message}",
                directive=_directive_at(source, _failing_line(exc)),
                original_error=exc,
            ) from exc
        except Exception as exc:
            raise TemplateEvaluationError(
                source_path,
                template_name,
                f"{type(exc).__name__}: {exc}",
                directive=_directive_at(source, _failing_line(exc)),
                original_error=exc,
            ) from exc

    def dependencies(self, document: Document, graph: SiteGraph) -> TemplateDependencies:
        """Collect variables and includes used by a document's templates.

        Sources that fail to parse are skipped; rendering reports them.
        """
        pending = [document.body]
        pending.extend(
            graph.layouts.layouts[name].body
            for name in document.layout_chain
            if name in graph.layouts
        )
        variables: set[str] = set()
        includes: set[str] = set()
        dynamic = False
        while pending:
            source = pending.pop()
            try:
                ast = self.env.parse(source)
            except TemplateSyntaxError:
                continue
            variables |= meta.find_undeclared_variables(ast)
            for name in meta.find_referenced_templates(ast):
                if name is None:
                    dynamic = True
                    continue
                if name in includes:
                    continue
                includes.add(name)
                try:
                    include_source, _, _ = self.env.loader.get_source(self.env, name)
                except (TemplateNotFound, UnicodeDecodeError):
                    continue
                pending.append(include_source)
        return TemplateDependencies(
            variables=frozenset(variables),
            includes=frozenset(includes),
            dynamic_includes=dynamic,
        )
