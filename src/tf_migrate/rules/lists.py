"""
cloudflare_list and cloudflare_list_item.

Lists used to hold their entries as repeated ``item { value { ... } }``
blocks, or as separate ``cloudflare_list_item`` resources. Both become the
single ``items`` attribute of the list. In configuration the item resources
are absorbed after every file has been transformed, so an item may live in
another file than its list; in state the item instances are folded into their
list through a ``StateMerge``.
"""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING, Any

from .. import config_toolkit as ct
from .. import state_toolkit as st
from ..exceptions import CoercionError
from ..hcl import Attribute, Block, Body, TupleExpression
from ..models import StateMerge, TransformResult
from ..rule import Rule

if TYPE_CHECKING:
    from collections.abc import Sequence

    from ..context import MigrationContext
    from ..hcl import ObjectExpression

logger: logging.Logger = logging.getLogger(__name__)

LIST_TYPE = "cloudflare_list"
ITEM_TYPE = "cloudflare_list_item"

VALUE_ATTRIBUTES = ("ip", "asn")
VALUE_BLOCKS = ("hostname", "redirect")
REDIRECT_FLAGS = ("include_subdomains", "subpath_matching", "preserve_query_string", "preserve_path_suffix")

_PARENT_RE = re.compile(rf"^{LIST_TYPE}\.([A-Za-z_][\w-]*)\.id$")


# Configuration


def _redirect_booleans(body: Body) -> None:
    for name in REDIRECT_FLAGS:
        value = ct.get_literal(body, name)
        if value in ("enabled", "disabled"):
            ct.set_literal(body, name, value == "enabled")


def _flatten_value(body: Body) -> None:
    """Lift the contents of the legacy ``value`` block into the item itself."""
    for value in ct.find_blocks(body, "value"):
        for item in list(value.body):
            if isinstance(item, Attribute) and not body.has_attribute(item.name):
                body.set_attribute(item.name, item.expression, comment=item.comment)
            elif isinstance(item, Block) and item.type in VALUE_BLOCKS:
                body.append(item)
        body.remove(value)
    for redirect in ct.find_blocks(body, "redirect"):
        _redirect_booleans(redirect.body)


def parent_list_name(block: Block) -> str | None:
    """Name of the list a ``cloudflare_list_item`` block points at, if it is a plain reference."""
    list_id = block.body.get_attribute("list_id")
    if list_id is None:
        return None
    match = _PARENT_RE.match(list_id.text.strip())
    return match.group(1) if match else None


def _item_object(item: Block) -> ObjectExpression | None:
    """Express a ``cloudflare_list_item`` as an ``items`` element."""
    body = Body()
    for name in (*VALUE_ATTRIBUTES, "comment"):
        attribute = item.body.get_attribute(name)
        if attribute is not None:
            body.set_attribute(name, attribute.expression)
    for nested in item.body.blocks():
        if nested.type in VALUE_BLOCKS:
            body.append(nested)
    for redirect in ct.find_blocks(body, "redirect"):
        _redirect_booleans(redirect.body)
    return ct.block_to_object(Block("item", [], body))


def _absorb_list_items(ctx: MigrationContext, block: Block, children: list[tuple[Body, Block]]) -> int:
    """Move item resources into the list's ``items``; each child is removed from the body holding it."""
    statics: list[ObjectExpression] = []
    comprehensions: list[str] = []
    for owner, child in children:
        obj = _item_object(child)
        if obj is None:
            ctx.add_warning(f"Could not merge {child.address} into {block.address}", "convert it manually")
            continue
        for_each = child.body.get_attribute("for_each")
        count = child.body.get_attribute("count")
        if for_each is not None:
            text = ct.replace_references(ct.render_inline(obj), {"each.value": "v", "each.key": "k"})
            comprehensions.append(f"[for k, v in {for_each.text} : {text}]")
        elif count is not None:
            text = ct.replace_references(ct.render_inline(obj), {"count.index": "i"})
            comprehensions.append(f"[for i in range({count.text}) : {text}]")
        else:
            statics.append(obj)
        owner.remove(child)
    if not statics and not comprehensions:
        return 0

    body = block.body
    existing = body.get_attribute("items")
    if not comprehensions and (existing is None or isinstance(existing.expression, TupleExpression)):
        if existing is None:
            body.set_attribute("items", TupleExpression(list(statics)))
        else:
            existing.expression.elements.extend(statics)  # type: ignore[union-attr]
    else:
        parts = [existing.text] if existing is not None else []
        if statics:
            parts.append(TupleExpression(list(statics)).render())
        parts.extend(comprehensions)
        ct.set_raw_expression(ctx, body, "items", ct.concat_expressions(parts))
    logger.debug(f"Merged {len(statics) + len(comprehensions)} list item resource(s) into {block.address}")
    return len(statics) + len(comprehensions)


def transform_list_config(ctx: MigrationContext, block: Block) -> TransformResult:
    body = block.body
    for item in ct.find_blocks(body, "item"):
        _flatten_value(item.body)
    for dynamic in ct.find_dynamic_blocks(body, "item"):
        for content in ct.find_blocks(dynamic.body, "content"):
            _flatten_value(content.body)
    ct.dynamic_blocks_to_attribute(ctx, body, "item", "items")
    return TransformResult.in_place(block)


def merge_list_items(contexts: Sequence[MigrationContext]) -> None:
    """Absorb every ``cloudflare_list_item`` into its list, whichever file either lives in.

    Items without a list in the configuration stay where they are, with a
    warning on their own file.
    """
    parents: dict[str, tuple[MigrationContext, Block]] = {}
    for ctx in contexts:
        if ctx.tree is None or not ctx.allows(LIST_TYPE):
            continue
        for block in ctx.tree.blocks("resource"):
            if block.resource_type == LIST_TYPE:
                parents.setdefault(block.name, (ctx, block))

    children: dict[str, list[tuple[Body, Block]]] = {}
    for ctx in contexts:
        if ctx.tree is None:
            continue
        for block in ctx.tree.blocks("resource"):
            if block.resource_type != ITEM_TYPE:
                continue
            parent = parent_list_name(block)
            if parent is None or parent not in parents:
                ctx.add_warning(
                    f"Could not merge {block.address} into its list",
                    f"no {LIST_TYPE} it refers to is part of the configuration; "
                    "move the entry into the list's 'items' manually",
                )
                continue
            children.setdefault(parent, []).append((ctx.tree, block))

    for name, items in children.items():
        list_ctx, list_block = parents[name]
        _absorb_list_items(list_ctx, list_block, items)


# State


def _redirect_state(redirect: dict[str, Any]) -> dict[str, Any]:
    converted = {}
    for key, value in redirect.items():
        if value is None:
            continue
        if key in REDIRECT_FLAGS:
            try:
                value = st.to_bool(value)
            except CoercionError:
                continue
        elif key == "status_code":
            try:
                value = st.to_int(value)
            except CoercionError:
                continue
        converted[key] = value
    return converted


def _element(values: dict[str, Any], comment: Any) -> dict[str, Any] | None:
    """One v5 ``items`` element from the legacy value fields and comment."""
    element: dict[str, Any] = {}
    if values.get("ip"):
        element["ip"] = values["ip"]
    if values.get("asn") is not None:
        try:
            element["asn"] = st.to_int(values["asn"])
        except CoercionError:
            element["asn"] = values["asn"]
    hostname = st.array_to_object(values.get("hostname"))
    if isinstance(hostname, dict) and hostname.get("url_hostname"):
        element["hostname"] = {"url_hostname": hostname["url_hostname"]}
    redirect = st.array_to_object(values.get("redirect"))
    if isinstance(redirect, dict) and redirect:
        element["redirect"] = _redirect_state(redirect)
    if comment:
        element["comment"] = comment
    return element or None


def build_item_element(attributes: dict[str, Any]) -> dict[str, Any] | None:
    """Element for a merged ``cloudflare_list_item`` instance."""
    return _element(attributes, attributes.get("comment"))


def transform_list_state(ctx: MigrationContext, instance: dict[str, Any], resource_name: str) -> dict[str, Any] | None:
    attributes = instance.get("attributes")
    if not isinstance(attributes, dict):
        return instance

    legacy = attributes.pop("item", None)
    if isinstance(legacy, list):
        converted = []
        for entry in legacy:
            values = st.array_to_object(entry.get("value")) if isinstance(entry, dict) else None
            element = _element(values, entry.get("comment")) if isinstance(values, dict) else None
            if element is None:
                ctx.add_warning(f"Dropped an empty item of {resource_name}", repr(entry))
                continue
            converted.append(element)
        merged = attributes.get("items") if isinstance(attributes.get("items"), list) else []
        items = converted + [element for element in merged if element not in converted]
        if items:
            attributes["items"] = items

    if isinstance(attributes.get("items"), list):
        attributes["num_items"] = len(attributes["items"])
    else:
        st.coerce_field(ctx, attributes, "num_items", st.to_int, label=f"{resource_name}.num_items")
    return instance


LIST_RULE = Rule(
    resource_type=LIST_TYPE,
    transform_config=transform_list_config,
    transform_state=transform_list_state,
    description="Lists: item blocks and cloudflare_list_item resources become the items attribute",
)

LIST_ITEM_RULE = Rule(
    resource_type=ITEM_TYPE,
    transform_project=merge_list_items,
    state_merge=StateMerge(
        child_type=ITEM_TYPE,
        parent_type=LIST_TYPE,
        collection_attribute="items",
        parent_reference="list_id",
        build_element=build_item_element,
        count_attribute="num_items",
    ),
    description="List items: folded into their cloudflare_list",
)
