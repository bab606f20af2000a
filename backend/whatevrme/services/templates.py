"""
WhatevrMe Site — Template Composition Engine
==============================================

What:  Assembles one page's full template dependency set from a view and
       the includes directory, then executes it against a render context.
How:   The view is parsed into a Jinja2 syntax tree and registered as
       `__page__`. A fixed-point loop then scans every registered tree for
       named references (include / extends / import) that are not yet
       registered; the first one found is fetched from the includes
       directory, parsed, registered, and the scan restarts from scratch
       over the now-larger registry. A scan that finds nothing new ends
       resolution.
Who:   Called by the Dispatcher for every view request.
When:  Per request. Nothing is cached between requests.

Resolution example (header.html includes nav.html, nav.html includes header.html):

    registry = {__page__}
    pass 1: __page__ → "header.html" unregistered → fetch, register, restart
    pass 2: __page__ ok; header.html → "nav.html" unregistered → fetch, register, restart
    pass 3: __page__ ok; header.html ok; nav.html → "header.html" registered → skip
    done:   {__page__, header.html, nav.html}

A reference may list several candidates (`{% include ["a.html", "b.html"] %}`)
and may be optional (`ignore missing`). Candidates are tried in order: a
registered one satisfies the reference, a missing one is remembered and
the next is tried. A required reference whose candidates are all missing
fails resolution; an optional one renders nothing.

Termination: every restart adds one name to the registry or to the
missing set, and names come from a finite set of sources, so the loop
ends. Both sets are checked before any fetch, so a name is fetched at
most once even when templates reference themselves or each other.

Node shapes walked (everything else is inert):
    Sequence       Template, Block, Macro, CallBlock, FilterBlock,
                   AssignBlock, Scope, ScopedEvalContextModifier  → body
    Conditional    If    → body, elif branches, else
    Iteration      For   → body, else
    ScopedRebind   With  → body (Jinja2 has no else branch here)
    NamedReference Include, Extends, Import, FromImport with a constant
                   name or a constant list / tuple of names
"""

import enum
import itertools
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, List, Optional, Protocol, Sequence, Set, Tuple

from jinja2 import Environment, FunctionLoader, Template, nodes
from jinja2.exceptions import TemplateSyntaxError
from starlette.concurrency import run_in_threadpool

from whatevrme.error_reporting import log_error
from whatevrme.exceptions import (
    TemplateExecutionError,
    TemplateParseError,
    TemplateResolutionError,
)

logger = logging.getLogger(__name__)

# Registry name of the view being rendered
PAGE_TEMPLATE_NAME = "__page__"


# ══════════════════════════════════════════════════════════════════════════
# Node Shapes
# ══════════════════════════════════════════════════════════════════════════


class NodeShape(enum.Enum):
    """Closed set of syntax-node shapes relevant to composition."""

    SEQUENCE = "sequence"
    CONDITIONAL = "conditional"
    ITERATION = "iteration"
    SCOPED_REBIND = "scoped_rebind"
    NAMED_REFERENCE = "named_reference"
    OTHER = "other"


SEQUENCE_NODES = (
    nodes.Template,
    nodes.Block,
    nodes.Macro,
    nodes.CallBlock,
    nodes.FilterBlock,
    nodes.AssignBlock,
    nodes.Scope,
    nodes.ScopedEvalContextModifier,
)

REFERENCE_NODES = (nodes.Include, nodes.Extends, nodes.Import, nodes.FromImport)


@dataclass(frozen=True)
class TemplateReference:
    """
    One named reference found in a syntax tree.

    `names` lists the candidates in the order Jinja2 tries them; a single
    name for `{% include "a.html" %}`, several for `{% include ["a.html",
    "b.html"] %}`. `optional` is set by `ignore missing`: when no
    candidate exists the reference renders nothing instead of failing.
    """

    names: Tuple[str, ...]
    optional: bool = False


def _constant_names(target: Optional[nodes.Node]) -> Tuple[str, ...]:
    if isinstance(target, nodes.Const) and isinstance(target.value, str):
        return (target.value,)
    if isinstance(target, (nodes.List, nodes.Tuple)):
        names = tuple(item.value for item in target.items
                      if isinstance(item, nodes.Const) and isinstance(item.value, str))
        # a list with any computed entry is resolved at runtime
        if names and len(names) == len(target.items):
            return names
    return ()


def reference_of(node: nodes.Node) -> Optional[TemplateReference]:
    """Constant reference of a reference node, None if computed at runtime."""
    names = _constant_names(getattr(node, "template", None))
    if not names:
        return None
    return TemplateReference(names, optional=bool(getattr(node, "ignore_missing", False)))


def classify(node: nodes.Node) -> NodeShape:
    if isinstance(node, nodes.If):
        return NodeShape.CONDITIONAL
    if isinstance(node, nodes.For):
        return NodeShape.ITERATION
    if isinstance(node, nodes.With):
        return NodeShape.SCOPED_REBIND
    if isinstance(node, REFERENCE_NODES):
        # {% include some_variable %} cannot be resolved ahead of time
        if reference_of(node) is not None:
            return NodeShape.NAMED_REFERENCE
        return NodeShape.OTHER
    if isinstance(node, SEQUENCE_NODES):
        return NodeShape.SEQUENCE
    return NodeShape.OTHER


# Child lists to descend into, per shape. The elif_ list of an If holds
# further If nodes, which are classified as conditionals in turn.
_BRANCHES: Dict[NodeShape, Callable[[Any], Sequence[List[nodes.Node]]]] = {
    NodeShape.SEQUENCE: lambda node: (node.body,),
    NodeShape.CONDITIONAL: lambda node: (node.body, node.elif_, node.else_),
    NodeShape.ITERATION: lambda node: (node.body, node.else_),
    NodeShape.SCOPED_REBIND: lambda node: (node.body, []),
    NodeShape.NAMED_REFERENCE: lambda node: (),
    NodeShape.OTHER: lambda node: (),
}

_unhandled = set(NodeShape) - set(_BRANCHES)
if _unhandled:
    raise RuntimeError(f"node shapes without a branch rule: {sorted(s.name for s in _unhandled)}")


def references(tree: nodes.Node) -> Iterator[TemplateReference]:
    """
    Yield every constant reference reachable from `tree`, in source order.

    Uses an explicit stack, so deeply nested templates cannot exhaust the
    interpreter's recursion limit.
    """
    stack: List[nodes.Node] = [tree]
    while stack:
        node = stack.pop()
        shape = classify(node)
        if shape is NodeShape.NAMED_REFERENCE:
            yield reference_of(node)
            continue
        children = [child for branch in _BRANCHES[shape](node) for child in branch]
        stack.extend(reversed(children))


# ══════════════════════════════════════════════════════════════════════════
# Registry
# ══════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class ParsedTemplate:
    name: str
    source: str
    tree: nodes.Template


class TemplateRegistry:
    """
    Name → parsed template, scoped to one request.

    A name is registered at most once; registering a known name is a no-op.
    Iteration follows registration order.
    """

    def __init__(self) -> None:
        self._templates: Dict[str, ParsedTemplate] = {}

    def __contains__(self, name: object) -> bool:
        return name in self._templates

    def __len__(self) -> int:
        return len(self._templates)

    def __iter__(self) -> Iterator[ParsedTemplate]:
        return iter(list(self._templates.values()))

    def names(self) -> List[str]:
        return list(self._templates)

    def get(self, name: str) -> Optional[ParsedTemplate]:
        return self._templates.get(name)

    def register(self, parsed: ParsedTemplate) -> bool:
        """Add a template. Returns False if the name was already registered."""
        if parsed.name in self._templates:
            return False
        self._templates[parsed.name] = parsed
        return True

    def source(self, name: str) -> Optional[str]:
        """Loader hook: registered source text, None for unknown names."""
        parsed = self._templates.get(name)
        return parsed.source if parsed is not None else None


# ══════════════════════════════════════════════════════════════════════════
# Render Context
# ══════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class RenderContext:
    """
    Per-request values handed to template execution.

    Templates see `note_id`, `path` and the context itself as `ctx`.
    """

    path: str = "/"
    note_id: Optional[str] = None

    def template_vars(self) -> Dict[str, Any]:
        return {"ctx": self, "note_id": self.note_id, "path": self.path}


# ══════════════════════════════════════════════════════════════════════════
# Composer
# ══════════════════════════════════════════════════════════════════════════


class IncludesSource(Protocol):
    async def read_text(self, path: str) -> str: ...


@dataclass
class ComposedPage:
    """A view whose registry holds every template it transitively needs."""

    view: str
    environment: Environment
    registry: TemplateRegistry

    def template(self) -> Template:
        page = self.registry.get(PAGE_TEMPLATE_NAME)
        try:
            return self.environment.from_string(page.tree)
        except TemplateSyntaxError as e:
            raise TemplateParseError(self.view, e.message or str(e), e.lineno)


class TemplateComposer:
    """
    Builds ComposedPage objects from view sources.

    Args:
        includes: Where named references are fetched from (a FileTree in
                  production; anything with `async read_text(name)` in tests).
    """

    def __init__(self, includes: IncludesSource):
        self.includes = includes

    @staticmethod
    def new_environment(registry: TemplateRegistry) -> Environment:
        # Execution reads only from the registry; it never touches disk.
        return Environment(
            loader=FunctionLoader(registry.source),
            autoescape=True,
            keep_trailing_newline=True,
        )

    @staticmethod
    def parse(environment: Environment, name: str, source: str, label: Optional[str] = None) -> ParsedTemplate:
        """Parse one source. `label` names the template in errors (defaults to name)."""
        try:
            tree = environment.parse(source, name=name)
        except TemplateSyntaxError as e:
            raise TemplateParseError(label or name, e.message or str(e), e.lineno)
        return ParsedTemplate(name=name, source=source, tree=tree)

    async def compose(self, view: str, source: str) -> ComposedPage:
        """
        Parse a view and resolve everything it references.

        Raises:
            TemplateParseError:      the view or a fetched include fails to parse
            TemplateResolutionError: a required include has no existing candidate
        """
        registry = TemplateRegistry()
        environment = self.new_environment(registry)
        registry.register(self.parse(environment, PAGE_TEMPLATE_NAME, source, label=view))
        await self.resolve(environment, registry)
        return ComposedPage(view=view, environment=environment, registry=registry)

    async def resolve(self, environment: Environment, registry: TemplateRegistry) -> TemplateRegistry:
        """Grow `registry` to its fixed point (see module docstring)."""
        missing: Set[str] = set()
        passes = 0
        while True:
            passes += 1
            name = self._next_to_fetch(registry, missing)
            if name is None:
                logger.debug(
                    "Resolved %d template(s) in %d pass(es), %d missing",
                    len(registry), passes, len(missing),
                )
                return registry

            source = await self._fetch(name)
            if source is None:
                missing.add(name)
                continue
            registry.register(self.parse(environment, name, source))

    @staticmethod
    def _next_to_fetch(registry: TemplateRegistry, missing: Set[str]) -> Optional[str]:
        """
        First name some reference still needs fetched, None at the fixed point.

        Candidates of a reference are tried in order, as Jinja2 does: a
        registered one satisfies it, a missing one defers to the next.

        Raises:
            TemplateResolutionError: every candidate of a required reference is missing
        """
        for parsed in registry:
            for ref in references(parsed.tree):
                for name in ref.names:
                    if name in registry:
                        break
                    if name not in missing:
                        return name
                else:
                    if not ref.optional:
                        label = ", ".join(ref.names)
                        raise TemplateResolutionError(
                            label,
                            message=f"no include named {label!r}",
                            context={"referenced_from": parsed.name},
                        )
        return None

    async def _fetch(self, name: str) -> Optional[str]:
        """Source of an include, None when there is no such file."""
        try:
            return await self.includes.read_text(name)
        except (FileNotFoundError, IsADirectoryError, NotADirectoryError):
            return None
        except UnicodeDecodeError as e:
            raise TemplateParseError(name, f"source is not UTF-8: {e}")
        except OSError as e:
            raise TemplateResolutionError(
                name,
                message=f"reading include {name!r} failed: {e}",
                context={"os_error": str(e)},
            )


# ══════════════════════════════════════════════════════════════════════════
# Execution
# ══════════════════════════════════════════════════════════════════════════


def _stream_guard(view: str, chunks: Iterator[str]) -> Iterator[str]:
    """
    Pass chunks through; a failure after output has started is logged via
    Error Reporting and ends the stream early (the status line is already sent).
    """
    try:
        yield from chunks
    except Exception as e:
        error_id = log_error(e)
        logger.warning("Response for view %s truncated (error id %s)", view, error_id)


async def execute(page: ComposedPage, ctx: RenderContext) -> Iterator[str]:
    """
    Start executing a composed page and return its output stream.

    The first chunk is produced before returning, so a failure at the start
    surfaces as TemplateExecutionError while the response can still become
    a clean 500.
    """
    template = page.template()
    try:
        chunks = template.generate(**ctx.template_vars())
        first = await run_in_threadpool(next, chunks, None)
    except Exception as e:
        raise TemplateExecutionError(
            message=f"executing view {page.view!r} failed: {type(e).__name__}: {e}",
            context={"view": page.view, "templates": page.registry.names()},
        ) from e

    if first is None:
        return iter(())
    return _stream_guard(page.view, itertools.chain([first], chunks))
