"""
Structural rewrite primitives for parsed configuration trees.

Every primitive is a plain function over a ``Body`` or ``Block``. The ones that
can degrade (dynamic block conversion, raw expression injection) take the
``MigrationContext`` only to attach a warning and leave a commented
placeholder; they never raise for bad input and never leave an invalid tree.
"""

from __future__ import annotations

import copy
import logging
import re
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from .hcl import (
    NOT_LITERAL,
    Attribute,
    Block,
    Body,
    ObjectExpression,
    RawExpression,
    Trivia,
    TupleExpression,
    format_block,
    literal_value,
    mask_literals,
    render_key,
    substitute_in_code,
    to_expression,
    validate_expression,
)

if TYPE_CHECKING:
    from collections.abc import Mapping

    from .context import MigrationContext
    from .hcl import Expression

logger: logging.Logger = logging.getLogger(__name__)

META_ARGUMENTS = ("count", "for_each", "provider", "depends_on")
META_BLOCKS = ("lifecycle", "timeouts")
WARNING_PREFIX = "# MIGRATION WARNING:"


# Discovery


def find_blocks(body: Body, block_type: str) -> list[Block]:
    """Immediate child blocks of ``block_type`` in source order."""
    return body.blocks(block_type)


def find_block(body: Body, block_type: str) -> Block | None:
    blocks = body.blocks(block_type)
    return blocks[0] if blocks else None


def find_dynamic_blocks(body: Body, block_type: str) -> list[Block]:
    """``dynamic "<block_type>"`` children in source order."""
    return [block for block in body.blocks("dynamic") if block.labels and block.labels[0] == block_type]


def remove_blocks(body: Body, block_type: str) -> int:
    blocks = body.blocks(block_type)
    for block in blocks:
        body.remove(block)
    return len(blocks)


# Attributes


def rename_attribute(body: Body, old: str, new: str) -> bool:
    """Move the expression of ``old`` to ``new``, keeping its text verbatim.

    When ``new`` already exists it wins and ``old`` is dropped. References in
    ``lifecycle.ignore_changes`` are renamed as well.

    Returns:
        True if ``old`` was present.
    """
    attribute = body.get_attribute(old)
    if attribute is None or old == new:
        return attribute is not None
    if body.has_attribute(new):
        body.remove(attribute)
    else:
        attribute.name = new
    _rename_ignore_changes(body, old, new)
    return True


def _rename_ignore_changes(body: Body, old: str, new: str) -> None:
    pattern = re.compile(rf"(?<![\w.-]){re.escape(old)}(?![\w-])")
    for lifecycle in body.blocks("lifecycle"):
        attribute = lifecycle.body.get_attribute("ignore_changes")
        if attribute is None or not isinstance(attribute.expression, RawExpression):
            continue
        attribute.expression = RawExpression(substitute_in_code(pattern, attribute.expression.text, lambda _m, _t: new))


def remove_attributes(body: Body, *names: str) -> list[str]:
    """Remove the named attributes; returns the names that were present."""
    return [name for name in names if body.remove_attribute(name) is not None]


def ensure_attribute(body: Body, name: str, value: Any) -> bool:
    """Set ``name`` only when it is absent; returns True if it was added."""
    if body.has_attribute(name):
        return False
    body.set_attribute(name, to_expression(value))
    return True


def set_literal(body: Body, name: str, value: Any) -> Attribute:
    return body.set_attribute(name, to_expression(value))


def get_literal(body: Body, name: str, default: Any = None) -> Any:
    """Decoded literal value of ``name``; ``default`` when absent or not a literal."""
    attribute = body.get_attribute(name)
    if attribute is None:
        return default
    value = literal_value(attribute.expression)
    return default if value is NOT_LITERAL else value


def hoist_attributes(body: Body, block_type: str, *names: str) -> list[str]:
    """Move attributes out of a nested block into ``body``.

    The nested block is removed once nothing but comments is left in it.
    """
    block = find_block(body, block_type)
    if block is None:
        return []
    hoisted = []
    for name in names:
        attribute = block.body.get_attribute(name)
        if attribute is None or body.has_attribute(name):
            continue
        block.body.remove(attribute)
        body.set_attribute(name, attribute.expression, comment=attribute.comment)
        hoisted.append(name)
    if not any(isinstance(item, Attribute | Block) for item in block.body):
        body.remove(block)
    return hoisted


# Blocks to attributes


def block_to_object(block: Block) -> ObjectExpression | None:
    """Express a block's body as an object, converting nested blocks recursively.

    One nested block of a type becomes an object, several become a tuple of
    objects in source order, nested ``dynamic`` blocks become comprehensions.
    Comments are dropped. Returns ``None`` when a nested dynamic block cannot
    be converted.
    """
    items: list[tuple[str, Expression]] = []
    statics: dict[str, list[ObjectExpression]] = {}
    dynamics: dict[str, list[str]] = {}
    for item in block.body:
        if isinstance(item, Attribute):
            items.append((item.name, item.expression))
        elif isinstance(item, Block) and item.type == "dynamic":
            conversion = convert_dynamic_block(item)
            if not conversion.ok:
                return None
            dynamics.setdefault(item.labels[0], []).append(conversion.expression)
        elif isinstance(item, Block):
            converted = block_to_object(item)
            if converted is None:
                return None
            statics.setdefault(item.type, []).append(converted)

    for key in dict.fromkeys([*statics, *dynamics]):
        objects = statics.get(key, [])
        comprehensions = dynamics.get(key, [])
        if not comprehensions:
            value: Expression = objects[0] if len(objects) == 1 else TupleExpression(list(objects))
        else:
            value = RawExpression(_concat_parts(objects, comprehensions))
        items.append((key, value))
    return ObjectExpression(items)


def _concat_parts(objects: list[ObjectExpression], comprehensions: list[str]) -> str:
    parts = [TupleExpression(list(objects)).render()] if objects else []
    return concat_expressions([*parts, *comprehensions])


def concat_expressions(parts: list[str]) -> str:
    """Join list expressions into one ``concat(...)``.

    Parts that are themselves a whole ``concat(...)`` call contribute their
    arguments, so repeated merges never nest ``concat`` calls.
    """
    if len(parts) == 1:
        return parts[0]
    arguments = []
    for part in parts:
        inner = _concat_arguments(part)
        if inner is None:
            arguments.append(part.strip())
        elif inner:
            arguments.append(inner)
    return f"concat({', '.join(arguments)})"


def _concat_arguments(text: str) -> str | None:
    """Argument text of ``concat(...)`` when ``text`` is exactly one such call."""
    text = text.strip()
    if not text.startswith("concat("):
        return None
    depth = 0
    for index, char in enumerate(mask_literals(text)):
        if char in "([{":
            depth += 1
        elif char in ")]}":
            depth -= 1
            if depth == 0:
                if index != len(text) - 1:
                    return None
                return text[len("concat(") : -1].strip().rstrip(",").rstrip()
    return None


def block_to_attribute(body: Body, block_type: str, attribute_name: str | None = None) -> bool:
    """Re-express the single ``block_type`` block as ``name = { ... }``.

    No block (for example on already-migrated input) is a no-op. More than one
    block, or a block that cannot be reduced, leaves the body untouched.

    Returns:
        True if a block was converted.
    """
    blocks = find_blocks(body, block_type)
    if len(blocks) != 1:
        if len(blocks) > 1:
            logger.debug(f"Not converting {len(blocks)} '{block_type}' blocks to a single attribute")
        return False
    converted = block_to_object(blocks[0])
    if converted is None:
        return False
    body.remove(blocks[0])
    body.set_attribute(attribute_name or block_type, converted)
    return True


def blocks_to_array_attribute(
    body: Body, block_type: str, attribute_name: str, *, emit_empty: bool = False
) -> int:
    """Re-express all ``block_type`` blocks as ``name = [{...}, ...]``.

    Element order is the blocks' source order. With no blocks the attribute is
    omitted, or set to ``[]`` when ``emit_empty`` is given and it does not
    exist yet. Blocks are appended to an existing tuple attribute.

    Returns:
        Number of blocks converted.
    """
    blocks = find_blocks(body, block_type)
    if not blocks:
        if emit_empty and not body.has_attribute(attribute_name):
            body.set_attribute(attribute_name, TupleExpression([]))
        return 0
    objects = [block_to_object(block) for block in blocks]
    if any(obj is None for obj in objects):
        return 0
    for block in blocks:
        body.remove(block)
    elements: list[Expression] = [obj for obj in objects if obj is not None]
    existing = body.get_attribute(attribute_name)
    if existing is None:
        body.set_attribute(attribute_name, TupleExpression(elements))
    elif isinstance(existing.expression, TupleExpression):
        existing.expression.elements.extend(elements)
    else:
        existing.expression = RawExpression(concat_expressions([existing.text, TupleExpression(elements).render()]))
    return len(blocks)


# Dynamic blocks


@dataclass
class DynamicConversion:
    """Outcome of ``convert_dynamic_block``.

    On failure ``reason`` explains what went wrong. ``expression`` holds the
    synthesized comprehension when one was built, and is empty when the block
    could not even be read; ``original`` is always the block's source.
    """

    ok: bool
    expression: str
    reason: str = ""
    original: str = ""


def convert_dynamic_block(block: Block) -> DynamicConversion:
    """Turn ``dynamic "x" { for_each = E  content { ... } }`` into ``[for x in E : { ... }]``.

    References to the bound name are substituted: ``x.value`` becomes ``x``,
    ``x.value.field`` becomes ``x.field`` and ``x.key`` becomes ``x_key``
    (which adds a key binding to the comprehension). A custom ``iterator``
    replaces the label as the bound name.
    """
    original = format_block(block)

    def failed(reason: str, expression: str = "") -> DynamicConversion:
        return DynamicConversion(ok=False, expression=expression, reason=reason, original=original)

    if block.type != "dynamic" or not block.labels:
        return failed("not a dynamic block")
    body = block.body
    for_each = body.get_attribute("for_each")
    if for_each is None:
        return failed("dynamic block has no for_each")
    if body.has_attribute("labels"):
        return failed("labelled dynamic blocks cannot become values")
    content = find_block(body, "content")
    if content is None:
        return failed("dynamic block has no content block")
    if _contains_dynamic(content.body):
        return failed("content contains nested dynamic blocks")

    iterator = block.labels[0]
    iterator_attribute = body.get_attribute("iterator")
    if iterator_attribute is not None:
        iterator = iterator_attribute.text.strip().strip('"')

    converted = block_to_object(content)
    if converted is None:
        return failed("content cannot be reduced to an object")
    object_text = render_inline(converted)
    object_text, uses_key = _substitute_iterator(object_text, iterator)
    bound = f"{iterator}_key, {iterator}" if uses_key else iterator
    expression = f"[for {bound} in {for_each.text} : {object_text}]"
    if not validate_expression(expression):
        return failed("synthesized expression does not parse", expression)
    return DynamicConversion(ok=True, expression=expression, original=original)


def _contains_dynamic(body: Body) -> bool:
    for block in body.blocks():
        if block.type == "dynamic" or _contains_dynamic(block.body):
            return True
    return False


def render_inline(obj: ObjectExpression) -> str:
    """``{ a = 1, b = x }`` on one line when every value fits on one line."""
    if not obj.items:
        return "{}"
    rendered = [(render_key(key), value.render()) for key, value in obj.items]
    if any("\n" in text for _, text in rendered):
        return obj.render()
    return "{ " + ", ".join(f"{key} = {text}" for key, text in rendered) + " }"


def _substitute_iterator(text: str, iterator: str) -> tuple[str, bool]:
    name = re.escape(iterator)
    value_pattern = re.compile(rf"(?<![\w.-]){name}\.value(?![\w-])")
    key_pattern = re.compile(rf"(?<![\w.-]){name}\.key(?![\w-])")
    uses_key = key_pattern.search(mask_literals(text)) is not None
    text = substitute_in_code(value_pattern, text, lambda _m, _t: iterator)
    text = substitute_in_code(key_pattern, text, lambda _m, _t: f"{iterator}_key")
    return text, uses_key


def replace_references(text: str, replacements: Mapping[str, str]) -> str:
    """Replace whole references (``each.value`` -> ``v``) in the code parts of ``text``."""
    for old, new in replacements.items():
        pattern = re.compile(rf"(?<![\w.-]){re.escape(old)}(?![\w-])")
        text = substitute_in_code(pattern, text, lambda _m, _t, replacement=new: replacement)
    return text


def dynamic_blocks_to_attribute(ctx: MigrationContext, body: Body, block_type: str, attribute_name: str) -> int:
    """Convert static and dynamic ``block_type`` blocks into one list attribute.

    Static blocks alone give a tuple, dynamic blocks a comprehension, both
    together ``concat(...)``. A dynamic block that cannot be converted is
    replaced by a commented copy of the attempt and a warning.

    Returns:
        Number of blocks converted.
    """
    dynamics = find_dynamic_blocks(body, block_type)
    if not dynamics:
        return blocks_to_array_attribute(body, block_type, attribute_name)

    statics = find_blocks(body, block_type)
    objects = [block_to_object(block) for block in statics]
    if any(obj is None for obj in objects):
        ctx.add_warning(f"Could not convert '{block_type}' blocks to '{attribute_name}'", "nested dynamic blocks")
        return 0

    comprehensions = []
    for block in dynamics:
        conversion = convert_dynamic_block(block)
        if conversion.ok:
            comprehensions.append(conversion.expression)
            body.remove(block)
            continue
        if conversion.expression:
            lines = _placeholder_lines(f"{attribute_name} = {conversion.expression}", conversion.reason)
        else:
            lines = _placeholder_lines(conversion.original, conversion.reason, label="Original")
        _replace_with_placeholder(body, block, lines)
        ctx.add_warning(
            f"Could not convert dynamic \"{block_type}\" block to '{attribute_name}'",
            f"{conversion.reason}; left a commented copy for manual conversion",
        )
    for block in statics:
        body.remove(block)

    if not statics and not comprehensions:
        return 0
    set_raw_expression(
        ctx, body, attribute_name, _concat_parts([obj for obj in objects if obj is not None], comprehensions)
    )
    return len(statics) + len(comprehensions)


# Raw expressions


def set_raw_expression(ctx: MigrationContext, body: Body, name: str, text: str) -> bool:
    """Set ``name`` from unparsed expression text.

    Invalid text never reaches the tree: a commented placeholder and a warning
    are left instead.

    Returns:
        True if the attribute was set.
    """
    if validate_expression(text):
        body.set_attribute(name, RawExpression(text.strip()))
        return True
    existing = body.get_attribute(name)
    index = body.index(existing) + 1 if existing is not None else body.attribute_insert_index()
    comments = _placeholder_lines(f"{name} = {text}", "could not parse expression")
    body.insert(index, *comments)
    ctx.add_warning(f"Could not set '{name}' from expression", "the expression does not parse; left a commented placeholder")
    return False


def _placeholder_lines(text: str, reason: str, *, label: str = "Attempted") -> list[Trivia]:
    lines = [Trivia(f"{WARNING_PREFIX} {reason}. Manual conversion needed.")]
    for number, line in enumerate(text.strip().splitlines()):
        prefix = f"# {label}: " if number == 0 else "#   "
        lines.append(Trivia(f"{prefix}{line}".rstrip()))
    return lines


def _replace_with_placeholder(body: Body, block: Block, lines: list[Trivia]) -> None:
    index = body.index(block)
    body.remove(block)
    body.insert(index, *lines)


# Meta-arguments and resource identity


def extract_meta_arguments(block: Block) -> list[Attribute | Block]:
    """Deep copies of the block's meta-arguments (``count``, ``lifecycle``...)."""
    extracted: list[Attribute | Block] = []
    for item in block.body:
        if isinstance(item, Attribute) and item.name in META_ARGUMENTS:
            extracted.append(copy.deepcopy(item))
        elif isinstance(item, Block) and item.type in META_BLOCKS:
            extracted.append(copy.deepcopy(item))
    return extracted


def copy_meta_arguments(source: Block, target: Block) -> list[str]:
    """Copy meta-arguments missing on ``target``; used when a rule splits a block."""
    copied = []
    for item in extract_meta_arguments(source):
        if isinstance(item, Attribute):
            if target.body.has_attribute(item.name):
                continue
            target.body.set_attribute(item.name, item.expression, comment=item.comment)
            copied.append(item.name)
        elif not target.body.blocks(item.type):
            target.body.append(item)
            copied.append(item.type)
    return copied


def rename_resource_type(block: Block, new_type: str) -> bool:
    if not block.labels or block.labels[0] == new_type:
        return False
    block.labels[0] = new_type
    return True


def moved_block(old_address: str, new_address: str) -> Block:
    """``moved { from = <old>  to = <new> }``."""
    return Block(
        "moved",
        [],
        Body([Attribute("from", RawExpression(old_address)), Attribute("to", RawExpression(new_address))]),
    )


def is_moved_block(block: Block, old_address: str, new_address: str) -> bool:
    if block.type != "moved":
        return False
    source = block.body.get_attribute("from")
    target = block.body.get_attribute("to")
    return (
        source is not None
        and target is not None
        and source.text.strip() == old_address
        and target.text.strip() == new_address
    )


# Cross-reference rewriting

Rewriter = tuple[re.Pattern[str], Callable[[re.Match[str], str], str]]


def build_rewriters(type_renames: Mapping[str, str], attribute_renames: Mapping[tuple[str, str], str]) -> list[Rewriter]:
    """Compile the substitutions for resource-type and attribute renames.

    Type renames come first so attribute renames can match either spelling
    of the type.
    """
    rewriters: list[Rewriter] = []
    for old_type, new_type in type_renames.items():
        pattern = re.compile(rf"(?<![\w.-]){re.escape(old_type)}(?=\.[A-Za-z_])")
        rewriters.append((pattern, lambda _m, _t, replacement=new_type: replacement))
    for (resource_type, old_attribute), new_attribute in attribute_renames.items():
        spellings = [resource_type]
        if resource_type in type_renames:
            spellings.append(type_renames[resource_type])
        types = "|".join(re.escape(spelling) for spelling in spellings)
        pattern = re.compile(
            rf"(?<![\w.-])(?:{types})\.[A-Za-z_][\w-]*(?:\[[^\]\n]*\])*\.{re.escape(old_attribute)}(?![\w-])"
        )

        def replace(match: re.Match[str], text: str, old: str = old_attribute, new: str = new_attribute) -> str:
            return text[match.start() : match.end() - len(old)] + new

        rewriters.append((pattern, replace))
    return rewriters


def rewrite_expression(expression: Expression, rewriters: list[Rewriter]) -> Expression:
    """Apply ``rewriters`` to an expression; string literals are never touched."""
    if isinstance(expression, RawExpression):
        text = expression.text
        for pattern, replace in rewriters:
            text = substitute_in_code(pattern, text, replace)
        return expression if text == expression.text else RawExpression(text)
    if isinstance(expression, ObjectExpression):
        expression.items = [(key, rewrite_expression(value, rewriters)) for key, value in expression.items]
    elif isinstance(expression, TupleExpression):
        expression.elements = [rewrite_expression(element, rewriters) for element in expression.elements]
    return expression


def rewrite_references(
    body: Body, type_renames: Mapping[str, str], attribute_renames: Mapping[tuple[str, str], str]
) -> int:
    """Rewrite references to renamed types and attributes everywhere in ``body``.

    ``moved`` blocks are skipped: their ``from`` address must keep the old
    name.

    Returns:
        Number of attributes whose expression changed.
    """
    if not type_renames and not attribute_renames:
        return 0
    rewriters = build_rewriters(type_renames, attribute_renames)
    changed = 0
    for attribute in body.walk_attributes(skip_block_types=("moved",)):
        before = attribute.expression.render()
        attribute.expression = rewrite_expression(attribute.expression, rewriters)
        if attribute.expression.render() != before:
            changed += 1
    return changed
