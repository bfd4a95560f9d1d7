"""
Tests for the configuration rewrite primitives.
"""

from __future__ import annotations

import pytest

from tf_migrate import config_toolkit as ct
from tf_migrate.context import MigrationContext
from tf_migrate.hcl import (
    Block,
    Literal,
    ObjectExpression,
    RawExpression,
    Trivia,
    TupleExpression,
    format_block,
    format_body,
    parse,
)


def _context() -> MigrationContext:
    return MigrationContext(source_version=4, target_version=5, filename="main.tf")


def _placeholders(body: object) -> list[str]:
    return [item.text for item in body if isinstance(item, Trivia) and item.text]  # type: ignore[attr-defined]


@pytest.mark.unit
class TestAttributes:
    """Test attribute level primitives."""

    def test_rename_attribute_keeps_expression(self) -> None:
        """The expression text moves unchanged to the new name."""
        body = parse('value = "${var.prefix}.example.com" # keep\n')
        assert ct.rename_attribute(body, "value", "content")
        attribute = body.get_attribute("content")
        assert attribute.text == '"${var.prefix}.example.com"'
        assert attribute.comment == "# keep"
        assert not body.has_attribute("value")

    def test_rename_missing_attribute(self) -> None:
        body = parse("name = 1\n")
        assert not ct.rename_attribute(body, "value", "content")
        assert body.attribute_names() == ["name"]

    def test_rename_onto_existing_attribute(self) -> None:
        """An existing target wins and the old attribute is dropped."""
        body = parse('value = "old"\ncontent = "new"\n')
        assert ct.rename_attribute(body, "value", "content")
        assert body.attribute_names() == ["content"]
        assert body.get_attribute("content").text == '"new"'

    def test_rename_updates_ignore_changes(self) -> None:
        """lifecycle.ignore_changes follows the rename."""
        body = parse('value = "x"\nlifecycle {\n  ignore_changes = [value, values]\n}\n')
        ct.rename_attribute(body, "value", "content")
        lifecycle = ct.find_block(body, "lifecycle")
        assert lifecycle is not None
        assert lifecycle.body.get_attribute("ignore_changes").text == "[content, values]"

    def test_remove_attributes(self) -> None:
        body = parse("a = 1\nb = 2\n")
        assert ct.remove_attributes(body, "a", "c") == ["a"]
        assert body.attribute_names() == ["b"]

    def test_ensure_attribute(self) -> None:
        """Only absent attributes are added."""
        body = parse("ttl = 300\n")
        assert not ct.ensure_attribute(body, "ttl", 1)
        assert ct.ensure_attribute(body, "proxied", False)
        assert format_body(body) == "ttl     = 300\nproxied = false\n"

    def test_get_literal(self) -> None:
        body = parse('type = "MX"\nname = var.name\n')
        assert ct.get_literal(body, "type") == "MX"
        assert ct.get_literal(body, "name") is None
        assert ct.get_literal(body, "missing", "default") == "default"

    def test_hoist_attributes_removes_emptied_block(self) -> None:
        """The nested block goes away once nothing is left in it."""
        body = parse("name = 1\ndata {\n  priority = 10\n}\n")
        assert ct.hoist_attributes(body, "data", "priority") == ["priority"]
        assert body.attribute_names() == ["name", "priority"]
        assert ct.find_block(body, "data") is None

    def test_hoist_attributes_keeps_remaining_content(self) -> None:
        body = parse('data {\n  priority = 10\n  target   = "sip.example.com"\n}\n')
        ct.hoist_attributes(body, "data", "priority")
        data = ct.find_block(body, "data")
        assert data is not None
        assert data.body.attribute_names() == ["target"]


@pytest.mark.unit
class TestBlocksToAttributes:
    """Test re-expressing blocks as attribute values."""

    def test_block_to_object_nested(self) -> None:
        """Nested blocks become nested objects, repeated ones a tuple."""
        block = parse("settings {\n  a = 1\n  inner {\n    b = 2\n  }\n  rep {\n  }\n  rep {\n  }\n}\n").blocks()[0]
        obj = ct.block_to_object(block)
        assert obj is not None
        assert obj.keys() == ["a", "inner", "rep"]
        assert isinstance(obj.get("inner"), ObjectExpression)
        rep = obj.get("rep")
        assert isinstance(rep, TupleExpression)
        assert len(rep.elements) == 2

    def test_block_to_attribute(self) -> None:
        """A single block becomes an object attribute."""
        body = parse('name = "x"\nrule_settings {\n  block_reason = "no"\n}\n')
        assert ct.block_to_attribute(body, "rule_settings")
        assert ct.find_block(body, "rule_settings") is None
        assert format_body(body) == 'name          = "x"\nrule_settings = {\n  block_reason = "no"\n}\n'

    def test_block_to_attribute_without_block(self) -> None:
        """Already migrated input is left alone."""
        body = parse("rule_settings = {\n  block_reason = \"no\"\n}\n")
        before = format_body(body)
        assert not ct.block_to_attribute(body, "rule_settings")
        assert format_body(body) == before

    def test_block_to_attribute_with_several_blocks(self) -> None:
        body = parse("data {\n  a = 1\n}\ndata {\n  a = 2\n}\n")
        assert not ct.block_to_attribute(body, "data")
        assert len(ct.find_blocks(body, "data")) == 2

    def test_blocks_to_array_attribute_keeps_order(self) -> None:
        """Elements follow the source order of the blocks."""
        body = parse('item {\n  ip = "192.0.2.1"\n}\nitem {\n  ip = "192.0.2.2"\n}\n')
        assert ct.blocks_to_array_attribute(body, "item", "items") == 2
        items = body.get_attribute("items")
        assert isinstance(items.expression, TupleExpression)
        rendered = items.text
        assert rendered.index("192.0.2.1") < rendered.index("192.0.2.2")
        assert not ct.find_blocks(body, "item")

    def test_blocks_to_array_attribute_emit_empty(self) -> None:
        body = parse("name = 1\n")
        assert ct.blocks_to_array_attribute(body, "item", "items", emit_empty=True) == 0
        assert body.get_attribute("items").text == "[]"


@pytest.mark.unit
class TestDynamicBlocks:
    """Test conversion of dynamic blocks into comprehensions."""

    def test_convert_dynamic_block(self) -> None:
        """The iterator value reference collapses to the bound name."""
        block = parse('dynamic "item" {\n  for_each = var.ips\n  content {\n    ip = item.value\n  }\n}\n').blocks()[0]
        conversion = ct.convert_dynamic_block(block)
        assert conversion.ok
        assert conversion.expression == "[for item in var.ips : { ip = item }]"

    def test_convert_dynamic_block_with_key_and_fields(self) -> None:
        """Key references add a key binding; field access is kept."""
        text = 'dynamic "item" {\n  for_each = var.ips\n  content {\n    ip      = item.value.ip\n    comment = item.key\n  }\n}\n'
        conversion = ct.convert_dynamic_block(parse(text).blocks()[0])
        assert conversion.ok
        assert conversion.expression == "[for item_key, item in var.ips : { ip = item.ip, comment = item_key }]"

    def test_custom_iterator(self) -> None:
        text = 'dynamic "item" {\n  for_each = var.ips\n  iterator = entry\n  content {\n    ip = entry.value\n  }\n}\n'
        conversion = ct.convert_dynamic_block(parse(text).blocks()[0])
        assert conversion.expression == "[for entry in var.ips : { ip = entry }]"

    def test_dynamic_block_without_content(self) -> None:
        conversion = ct.convert_dynamic_block(parse('dynamic "item" {\n  for_each = var.ips\n}\n').blocks()[0])
        assert not conversion.ok
        assert "content" in conversion.reason

    def test_static_and_dynamic_blocks_are_concatenated(self) -> None:
        """Static blocks first, then comprehensions, in one concat."""
        text = (
            'item {\n  ip = "192.0.2.1"\n}\n'
            'dynamic "item" {\n  for_each = var.ips\n  content {\n    ip = item.value\n  }\n}\n'
        )
        body = parse(text)
        assert ct.dynamic_blocks_to_attribute(_context(), body, "item", "items") == 2
        items = body.get_attribute("items")
        assert isinstance(items.expression, RawExpression)
        assert items.text.startswith("concat([")
        assert items.text.endswith('[for item in var.ips : { ip = item }])')
        assert not body.blocks()

    def test_unconvertible_dynamic_block_leaves_placeholder(self) -> None:
        """A failed conversion leaves a commented copy and a warning, never invalid code."""
        ctx = _context()
        body = parse('name = "x"\ndynamic "item" {\n  for_each = var.ips\n}\n')
        assert ct.dynamic_blocks_to_attribute(ctx, body, "item", "items") == 0
        assert len(ctx.warnings) == 1
        comments = _placeholders(body)
        assert comments[0].startswith(ct.WARNING_PREFIX)
        assert comments[1] == '# Original: dynamic "item" {'
        assert parse(format_body(body)).attribute_names() == ["name"]

    def test_invalid_comprehension_placeholder(self) -> None:
        """A comprehension that was built but does not parse is shown as the attempt."""
        ctx = _context()
        text = 'dynamic "item" {\n  for_each = var.ips\n  iterator = 1\n  content {\n    ip = item.value\n  }\n}\n'
        body = parse(text)
        assert ct.dynamic_blocks_to_attribute(ctx, body, "item", "items") == 0
        assert len(ctx.warnings) == 1
        comments = _placeholders(body)
        assert comments[1] == "# Attempted: items = [for 1 in var.ips : { ip = item.value }]"
        assert not body.blocks()

    def test_render_inline(self) -> None:
        obj = ObjectExpression([("ip", RawExpression("v")), ("comment", Literal("x"))])
        assert ct.render_inline(obj) == '{ ip = v, comment = "x" }'
        assert ct.render_inline(ObjectExpression()) == "{}"

    def test_replace_references_skips_strings(self) -> None:
        text = '{ ip = each.value, note = "each.value", id = each.value_id }'
        assert ct.replace_references(text, {"each.value": "v"}) == '{ ip = v, note = "each.value", id = each.value_id }'


@pytest.mark.unit
class TestRawExpressions:
    """Test injection of unparsed expression text."""

    def test_valid_expression(self) -> None:
        ctx = _context()
        body = parse("name = 1\n")
        assert ct.set_raw_expression(ctx, body, "items", "concat(var.a, var.b)")
        assert body.get_attribute("items").text == "concat(var.a, var.b)"
        assert not ctx.diagnostics

    def test_invalid_expression_becomes_placeholder(self) -> None:
        ctx = _context()
        body = parse("name = 1\n")
        assert not ct.set_raw_expression(ctx, body, "items", "[1, 2")
        assert not body.has_attribute("items")
        assert len(ctx.warnings) == 1
        comments = _placeholders(body)
        assert comments[0].startswith(ct.WARNING_PREFIX)
        assert comments[1] == "# Attempted: items = [1, 2"

    @pytest.mark.parametrize("text", ["1 +", "foo bar baz", "[for x in : x]", "var.enabled ? 1", "{ a = 1 b = 2 }"])
    def test_malformed_expression_becomes_placeholder(self, text: str) -> None:
        """Balanced but malformed text is rejected like unbalanced text."""
        ctx = _context()
        body = parse("name = 1\n")
        assert not ct.set_raw_expression(ctx, body, "items", text)
        assert not body.has_attribute("items")
        assert len(ctx.warnings) == 1
        assert _placeholders(body)[1] == f"# Attempted: items = {text}"
        assert parse(format_body(body)).attribute_names() == ["name"]


@pytest.mark.unit
class TestConcatExpressions:
    """Test joining list expressions with concat."""

    def test_single_part_is_kept(self) -> None:
        assert ct.concat_expressions(["concat(var.a, var.b)"]) == "concat(var.a, var.b)"

    def test_existing_concat_is_flattened(self) -> None:
        """Arguments of a whole concat call are spliced into the new one."""
        assert ct.concat_expressions(["concat([1], var.a)", "[2]"]) == "concat([1], var.a, [2])"

    def test_indexed_concat_is_an_argument(self) -> None:
        """A concat call followed by more code is not a whole call."""
        parts = ["concat(var.a, var.b)[0]", "[2]"]
        assert ct.concat_expressions(parts) == "concat(concat(var.a, var.b)[0], [2])"

    def test_parentheses_in_strings_are_ignored(self) -> None:
        assert ct.concat_expressions(['concat([")"], var.a)', "var.b"]) == 'concat([")"], var.a, var.b)'


@pytest.mark.unit
class TestResourceIdentity:
    """Test meta-arguments, type renames and moved blocks."""

    def test_copy_meta_arguments(self) -> None:
        """Meta-arguments missing on the target are copied."""
        source = parse(
            'resource "a" "b" {\n  count = 2\n  name  = "x"\n  lifecycle {\n    prevent_destroy = true\n  }\n}\n'
        ).blocks()[0]
        target = Block("resource", ["c", "b"])
        assert ct.copy_meta_arguments(source, target) == ["count", "lifecycle"]
        assert target.body.get_attribute("count").text == "2"
        assert not target.body.has_attribute("name")

    def test_rename_resource_type(self) -> None:
        block = parse('resource "cloudflare_record" "www" {}\n').blocks()[0]
        assert ct.rename_resource_type(block, "cloudflare_dns_record")
        assert not ct.rename_resource_type(block, "cloudflare_dns_record")
        assert block.address == "cloudflare_dns_record.www"

    def test_moved_block(self) -> None:
        block = ct.moved_block("cloudflare_record.www", "cloudflare_dns_record.www")
        assert format_block(block) == "moved {\n  from = cloudflare_record.www\n  to   = cloudflare_dns_record.www\n}"
        assert ct.is_moved_block(block, "cloudflare_record.www", "cloudflare_dns_record.www")
        assert not ct.is_moved_block(block, "cloudflare_record.api", "cloudflare_dns_record.api")


@pytest.mark.unit
class TestRewriteReferences:
    """Test cross-reference rewriting."""

    def test_type_rename(self) -> None:
        """References follow the new type; moved blocks and strings do not."""
        body = parse(
            'output "host" {\n  value = cloudflare_record.www.hostname\n}\n'
            'output "label" {\n  value = "cloudflare_record.www"\n}\n'
            "moved {\n  from = cloudflare_record.www\n  to   = cloudflare_dns_record.www\n}\n"
        )
        assert ct.rewrite_references(body, {"cloudflare_record": "cloudflare_dns_record"}, {}) == 1
        text = format_body(body)
        assert "value = cloudflare_dns_record.www.hostname" in text
        assert 'value = "cloudflare_record.www"' in text
        assert "from = cloudflare_record.www" in text

    def test_attribute_rename(self) -> None:
        """Attribute references are rewritten after index expressions too."""
        body = parse('output "zone" {\n  value = data.cloudflare_zones.all.zones[0].id\n}\n')
        ct.rewrite_references(body, {}, {("data.cloudflare_zones", "zones"): "result"})
        assert "data.cloudflare_zones.all.result[0].id" in format_body(body)

    def test_attribute_rename_with_type_rename(self) -> None:
        """Attribute renames match the old and the new type name."""
        body = parse("a = cloudflare_record.x.value\nb = cloudflare_record.y[0].value\n")
        ct.rewrite_references(
            body, {"cloudflare_record": "cloudflare_dns_record"}, {("cloudflare_record", "value"): "content"}
        )
        assert body.get_attribute("a").text == "cloudflare_dns_record.x.content"
        assert body.get_attribute("b").text == "cloudflare_dns_record.y[0].content"

    def test_interpolation_is_rewritten(self) -> None:
        body = parse('a = "https://${cloudflare_record.www.hostname}/"\n')
        ct.rewrite_references(body, {"cloudflare_record": "cloudflare_dns_record"}, {})
        assert body.get_attribute("a").text == '"https://${cloudflare_dns_record.www.hostname}/"'

    def test_similar_names_are_untouched(self) -> None:
        body = parse("a = cloudflare_record_set.x.id\nb = my_cloudflare_record.x.id\n")
        assert ct.rewrite_references(body, {"cloudflare_record": "cloudflare_dns_record"}, {}) == 0
