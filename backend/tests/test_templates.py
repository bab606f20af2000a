"""
WhatevrMe Site — Template Composition Engine Unit Tests
=========================================================

What:  Tests for node classification, reference discovery, fixed-point
       resolution and execution.
How:   Includes come from an in-memory source that records every fetch.

Test Strategy:
    ✅ every composite node shape is walked, other shapes are inert
    ✅ self and mutual references terminate, each name fetched once
    ✅ resolution is idempotent regardless of include enumeration order
    ✅ missing / unparsable includes fail naming the template
    ✅ `ignore missing` and candidate-list includes resolve the way Jinja2 renders them
    ✅ execution failures before and after the first chunk
"""

import logging

import pytest
from jinja2 import Environment, nodes

from whatevrme.exceptions import (
    TemplateExecutionError,
    TemplateParseError,
    TemplateResolutionError,
)
from whatevrme.services.templates import (
    PAGE_TEMPLATE_NAME,
    NodeShape,
    RenderContext,
    TemplateComposer,
    TemplateReference,
    classify,
    execute,
    references,
)


class MemoryIncludes:
    """Includes collaborator backed by a dict; records fetch order."""

    def __init__(self, sources):
        self.sources = dict(sources)
        self.fetched = []

    async def read_text(self, path):
        self.fetched.append(path)
        try:
            return self.sources[path]
        except KeyError:
            raise FileNotFoundError(path)


def parse(source):
    return Environment().parse(source)


def referenced_names(tree):
    return [name for ref in references(tree) for name in ref.names]


async def render(page, ctx=None):
    chunks = await execute(page, ctx or RenderContext())
    return "".join(chunks)


class TestReferencedNames:
    """Tests for the syntax-tree walk."""

    def test_all_branch_shapes_are_walked_in_source_order(self):
        tree = parse(
            '{% if a %}{% include "if.html" %}'
            '{% elif b %}{% include "elif.html" %}'
            '{% else %}{% include "else.html" %}{% endif %}'
            '{% for x in y %}{% include "for.html" %}{% else %}{% include "forelse.html" %}{% endfor %}'
            '{% with z = 1 %}{% include "with.html" %}{% endwith %}'
            '{% block content %}{% include "block.html" %}{% endblock %}'
            '{% macro m() %}{% include "macro.html" %}{% endmacro %}'
            '{% import "macros.html" as lib %}'
            '{% from "forms.html" import field %}'
        )
        assert list(referenced_names(tree)) == [
            "if.html",
            "elif.html",
            "else.html",
            "for.html",
            "forelse.html",
            "with.html",
            "block.html",
            "macro.html",
            "macros.html",
            "forms.html",
        ]

    def test_nested_references(self):
        tree = parse(
            '{% for x in y %}{% if x %}{% with a = x %}'
            '{% include "deep.html" %}'
            '{% endwith %}{% endif %}{% endfor %}'
        )
        assert list(referenced_names(tree)) == ["deep.html"]

    def test_dynamic_and_expression_names_are_ignored(self):
        tree = parse('{% include page_name %}{{ "looks-like.html" }}<p>text</p>')
        assert list(referenced_names(tree)) == []

    def test_extends_is_a_reference(self):
        tree = parse('{% extends "base.html" %}{% block body %}x{% endblock %}')
        assert list(referenced_names(tree)) == ["base.html"]

    def test_deep_nesting_does_not_recurse(self):
        # built by hand: the Jinja2 parser itself would recurse this deep
        node = nodes.Include(nodes.Const("bottom.html"), True, False)
        for _ in range(5000):
            node = nodes.If(nodes.Name("a", "load"), [node], [], [])
        tree = nodes.Template([node])
        assert list(referenced_names(tree)) == ["bottom.html"]

    def test_candidate_lists_and_ignore_missing(self):
        tree = parse(
            '{% include ["a.html", "b.html"] %}'
            '{% include ("c.html", "d.html") ignore missing %}'
            '{% include "e.html" ignore missing %}'
        )
        assert list(references(tree)) == [
            TemplateReference(("a.html", "b.html")),
            TemplateReference(("c.html", "d.html"), optional=True),
            TemplateReference(("e.html",), optional=True),
        ]

    def test_list_with_computed_entry_is_inert(self):
        tree = parse('{% include ["a.html", other] %}')
        assert list(references(tree)) == []
        assert classify(tree.body[0]) is NodeShape.OTHER

    def test_classify(self):
        tree = parse('{% if a %}{% endif %}{% for x in y %}{% endfor %}{% with q = 1 %}{% endwith %}'
                     '{% include "x.html" %}{% include dyn %}text')
        shapes = [classify(node) for node in tree.body]
        assert shapes == [
            NodeShape.CONDITIONAL,
            NodeShape.ITERATION,
            NodeShape.SCOPED_REBIND,
            NodeShape.NAMED_REFERENCE,
            NodeShape.OTHER,
            NodeShape.OTHER,
        ]
        assert classify(tree) is NodeShape.SEQUENCE


class TestResolution:
    """Tests for fixed-point resolution against an includes collaborator."""

    @pytest.mark.asyncio
    async def test_resolves_transitive_includes(self):
        includes = MemoryIncludes({
            "a.html": '{% include "b.html" %}',
            "b.html": '{% if x %}{% include "c.html" %}{% endif %}',
            "c.html": "c",
        })
        page = await TemplateComposer(includes).compose("/page.html", '{% include "a.html" %}')

        assert page.registry.names() == [PAGE_TEMPLATE_NAME, "a.html", "b.html", "c.html"]
        assert includes.fetched == ["a.html", "b.html", "c.html"]

    @pytest.mark.asyncio
    async def test_self_reference_terminates(self):
        includes = MemoryIncludes({"loop.html": '{% if deep %}{% include "loop.html" %}{% endif %}'})
        page = await TemplateComposer(includes).compose("/page.html", '{% include "loop.html" %}')

        assert set(page.registry.names()) == {PAGE_TEMPLATE_NAME, "loop.html"}
        assert includes.fetched == ["loop.html"]

    @pytest.mark.asyncio
    async def test_mutual_cycle_terminates(self):
        includes = MemoryIncludes({
            "one.html": '{% include "two.html" %}',
            "two.html": '{% include "three.html" %}',
            "three.html": '{% include "one.html" %}{% include "two.html" %}',
        })
        page = await TemplateComposer(includes).compose("/page.html", '{% include "one.html" %}')

        assert set(page.registry.names()) == {PAGE_TEMPLATE_NAME, "one.html", "two.html", "three.html"}
        assert sorted(includes.fetched) == ["one.html", "three.html", "two.html"]

    @pytest.mark.asyncio
    async def test_page_referencing_itself_by_page_name(self):
        includes = MemoryIncludes({})
        page = await TemplateComposer(includes).compose(
            "/page.html", '{% if false %}{% include "__page__" %}{% endif %}ok'
        )
        assert page.registry.names() == [PAGE_TEMPLATE_NAME]
        assert includes.fetched == []

    @pytest.mark.asyncio
    async def test_idempotent_regardless_of_enumeration_order(self):
        sources = {
            "a.html": '{% include "c.html" %}{% include "b.html" %}',
            "b.html": '{% include "a.html" %}',
            "c.html": '{% for i in x %}{% include "d.html" %}{% endfor %}',
            "d.html": "d",
        }
        root = '{% include "b.html" %}{% include "a.html" %}'

        forward = MemoryIncludes(sources)
        backward = MemoryIncludes(dict(reversed(list(sources.items()))))

        first = await TemplateComposer(forward).compose("/p.html", root)
        second = await TemplateComposer(backward).compose("/p.html", root)
        again = await TemplateComposer(forward).compose("/p.html", root)

        assert set(first.registry.names()) == set(second.registry.names()) == set(again.registry.names())
        assert len(forward.fetched) == 2 * len(set(forward.fetched))

    @pytest.mark.asyncio
    async def test_missing_include_names_the_template(self):
        includes = MemoryIncludes({"a.html": '{% include "gone.html" %}'})

        with pytest.raises(TemplateResolutionError) as exc_info:
            await TemplateComposer(includes).compose("/p.html", '{% include "a.html" %}')

        assert exc_info.value.template_name == "gone.html"
        assert not isinstance(exc_info.value, TemplateParseError)

    @pytest.mark.asyncio
    async def test_ignore_missing_include_that_does_not_exist(self):
        includes = MemoryIncludes({})
        page = await TemplateComposer(includes).compose("/p.html", '{% include "opt.html" ignore missing %}ok')

        assert page.registry.names() == [PAGE_TEMPLATE_NAME]
        assert includes.fetched == ["opt.html"]
        assert await render(page) == "ok"

    @pytest.mark.asyncio
    async def test_ignore_missing_include_that_exists(self):
        includes = MemoryIncludes({"opt.html": "here "})
        page = await TemplateComposer(includes).compose("/p.html", '{% include "opt.html" ignore missing %}ok')
        assert await render(page) == "here ok"

    @pytest.mark.asyncio
    async def test_candidate_list_falls_back_to_later_name(self):
        includes = MemoryIncludes({"b.html": "B"})
        page = await TemplateComposer(includes).compose("/p.html", '{% include ["a.html", "b.html"] %}')

        assert includes.fetched == ["a.html", "b.html"]
        assert await render(page) == "B"

    @pytest.mark.asyncio
    async def test_candidate_list_stops_at_first_existing_name(self):
        includes = MemoryIncludes({"a.html": "A", "b.html": "B"})
        page = await TemplateComposer(includes).compose("/p.html", '{% include ("a.html", "b.html") %}')

        assert includes.fetched == ["a.html"]
        assert await render(page) == "A"

    @pytest.mark.asyncio
    async def test_candidate_order_wins_over_registration_order(self):
        includes = MemoryIncludes({"a.html": "A", "b.html": "B"})
        page = await TemplateComposer(includes).compose(
            "/p.html", '{% include "b.html" %}{% include ["a.html", "b.html"] %}'
        )

        assert includes.fetched == ["b.html", "a.html"]
        assert await render(page) == "BA"

    @pytest.mark.asyncio
    async def test_candidate_list_with_nothing_found(self):
        includes = MemoryIncludes({})

        with pytest.raises(TemplateResolutionError) as exc_info:
            await TemplateComposer(includes).compose("/p.html", '{% include ["a.html", "b.html"] %}')

        assert exc_info.value.template_name == "a.html, b.html"
        assert includes.fetched == ["a.html", "b.html"]

    @pytest.mark.asyncio
    async def test_optional_candidate_list_with_nothing_found(self):
        page = await TemplateComposer(MemoryIncludes({})).compose(
            "/p.html", '{% include ["a.html", "b.html"] ignore missing %}done'
        )
        assert await render(page) == "done"

    @pytest.mark.asyncio
    async def test_name_optional_in_one_place_is_still_required_in_another(self):
        includes = MemoryIncludes({})

        with pytest.raises(TemplateResolutionError) as exc_info:
            await TemplateComposer(includes).compose(
                "/p.html", '{% include "x.html" ignore missing %}{% include "x.html" %}'
            )

        assert exc_info.value.template_name == "x.html"
        assert includes.fetched == ["x.html"]

    @pytest.mark.asyncio
    async def test_unparsable_include_names_the_template(self):
        includes = MemoryIncludes({"bad.html": "{% if %}"})

        with pytest.raises(TemplateParseError) as exc_info:
            await TemplateComposer(includes).compose("/p.html", '{% include "bad.html" %}')

        assert exc_info.value.template_name == "bad.html"

    @pytest.mark.asyncio
    async def test_unparsable_view_names_the_view(self):
        with pytest.raises(TemplateParseError) as exc_info:
            await TemplateComposer(MemoryIncludes({})).compose("/p.html", "{% for %}")

        assert exc_info.value.template_name == "/p.html"


class TestExecution:
    """Tests for executing a composed page."""

    @pytest.mark.asyncio
    async def test_renders_includes_and_context(self):
        includes = MemoryIncludes({"head.html": "<h1>{{ note_id }}</h1>"})
        page = await TemplateComposer(includes).compose(
            "/note.html", '{% include "head.html" %}<p>{{ path }}</p>'
        )

        html = await render(page, RenderContext(path="/abcde", note_id="abcde"))
        assert html == "<h1>abcde</h1><p>/abcde</p>"

    @pytest.mark.asyncio
    async def test_output_is_autoescaped(self):
        page = await TemplateComposer(MemoryIncludes({})).compose("/p.html", "{{ path }}")
        assert await render(page, RenderContext(path="/<b>")) == "/&lt;b&gt;"

    @pytest.mark.asyncio
    async def test_extends_renders_from_registry(self):
        includes = MemoryIncludes({"base.html": "[{% block body %}{% endblock %}]"})
        page = await TemplateComposer(includes).compose(
            "/p.html", '{% extends "base.html" %}{% block body %}hi{% endblock %}'
        )
        assert await render(page) == "[hi]"

    @pytest.mark.asyncio
    async def test_execution_never_fetches(self):
        includes = MemoryIncludes({"a.html": "a"})
        page = await TemplateComposer(includes).compose("/p.html", '{% include "a.html" %}{% include "a.html" %}')
        await render(page)
        assert includes.fetched == ["a.html"]

    @pytest.mark.asyncio
    async def test_failure_before_output_raises(self):
        page = await TemplateComposer(MemoryIncludes({})).compose("/p.html", "{{ 1 // nothing }}after")

        with pytest.raises(TemplateExecutionError):
            await execute(page, RenderContext())

    @pytest.mark.asyncio
    async def test_dynamic_include_of_unknown_name_is_execution_failure(self):
        page = await TemplateComposer(MemoryIncludes({})).compose("/p.html", "{% include path %}")

        with pytest.raises(TemplateExecutionError):
            await execute(page, RenderContext(path="elsewhere.html"))

    @pytest.mark.asyncio
    async def test_failure_mid_stream_truncates_and_logs(self, caplog):
        page = await TemplateComposer(MemoryIncludes({})).compose("/p.html", "before{{ 1 // nothing }}after")

        chunks = await execute(page, RenderContext())
        with caplog.at_level(logging.ERROR, logger="whatevrme.errors"):
            output = "".join(chunks)

        assert output == "before"
        assert any("HTTPError" in record.getMessage() for record in caplog.records)

    @pytest.mark.asyncio
    async def test_empty_template(self):
        page = await TemplateComposer(MemoryIncludes({})).compose("/p.html", "")
        assert await render(page) == ""
