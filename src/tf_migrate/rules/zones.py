"""
data.cloudflare_zones: the ``filter`` block is flattened and the ``zones``
output becomes ``result``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from .. import config_toolkit as ct
from .. import state_toolkit as st
from ..hcl import ObjectExpression
from ..models import AttributeRename, TransformResult
from ..rule import Rule

if TYPE_CHECKING:
    from ..context import MigrationContext
    from ..hcl import Block

LOOKUP_KEY = "data.cloudflare_zones"

UNSUPPORTED_FILTERS = {
    "lookup_type": "use name filter operators in 'name' instead (e.g. 'contains:example')",
    "match": "the client-side regex filter has no equivalent; filter the result instead",
    "paused": "filter paused zones on the result instead",
}


def transform_config(ctx: MigrationContext, block: Block) -> TransformResult:
    body = block.body
    filter_block = ct.find_block(body, "filter")
    if filter_block is None:
        return TransformResult.in_place(block)

    filters = filter_block.body
    account_id = filters.get_attribute("account_id")
    if account_id is not None:
        body.set_attribute("account", ObjectExpression([("id", account_id.expression)]))
    for name in ("name", "status"):
        attribute = filters.get_attribute(name)
        if attribute is not None:
            body.set_attribute(name, attribute.expression, comment=attribute.comment)
    for name, hint in UNSUPPORTED_FILTERS.items():
        if filters.has_attribute(name):
            ctx.add_warning(f"Dropped 'filter.{name}' from {block.address}", hint)

    ct.remove_blocks(body, "filter")
    return TransformResult.in_place(block)


def transform_state(ctx: MigrationContext, instance: dict[str, Any], resource_name: str) -> dict[str, Any] | None:
    attributes = instance.get("attributes")
    if not isinstance(attributes, dict):
        return instance
    if isinstance(attributes.get("zones"), list):
        st.rename_field(attributes, "zones", "result")
    else:
        st.remove_fields(attributes, "zones")
    return instance


RULE = Rule(
    resource_type=LOOKUP_KEY,
    transform_config=transform_config,
    transform_state=transform_state,
    attribute_renames=(AttributeRename(LOOKUP_KEY, "zones", "result"),),
    description="Zones data source: filter block flattened, zones renamed to result",
)
