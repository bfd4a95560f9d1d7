"""
cloudflare_record -> cloudflare_dns_record.

The record value moves from ``value`` to ``content``, the ``data`` block
becomes an attribute, and a few legacy attributes disappear. In state the
``data`` list collapses to an object and the pieces of structured records
are folded back into ``content`` and ``priority``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from .. import config_toolkit as ct
from .. import state_toolkit as st
from ..exceptions import CoercionError
from ..models import ResourceRename, TransformResult
from ..rule import Rule

if TYPE_CHECKING:
    from ..context import MigrationContext
    from ..hcl import Block

OLD_TYPE = "cloudflare_record"
NEW_TYPE = "cloudflare_dns_record"

SIMPLE_RECORD_TYPES = frozenset({"A", "AAAA", "CNAME", "MX", "NS", "PTR", "TXT", "OPENPGPKEY"})
PRIORITY_RECORD_TYPES = frozenset({"SRV", "MX", "URI"})
DROPPED_ATTRIBUTES = ("allow_overwrite", "hostname")
DROPPED_STATE_FIELDS = ("hostname", "allow_overwrite", "timeouts")
DEFAULT_TIMESTAMP = "2024-01-01T00:00:00Z"

NUMERIC_DATA_FIELDS = (
    "algorithm",
    "key_tag",
    "type",
    "usage",
    "selector",
    "matching_type",
    "weight",
    "priority",
    "port",
    "protocol",
    "digest_type",
    "order",
    "preference",
    "altitude",
    "lat_degrees",
    "lat_minutes",
    "lat_seconds",
    "long_degrees",
    "long_minutes",
    "long_seconds",
    "precision_horz",
    "precision_vert",
    "size",
)


def _record_type(value: Any) -> str:
    return value.upper() if isinstance(value, str) else ""


def transform_config(ctx: MigrationContext, block: Block) -> TransformResult:
    body = block.body
    ct.ensure_attribute(body, "ttl", 1)

    record_type = _record_type(ct.get_literal(body, "type"))
    if not record_type or record_type in SIMPLE_RECORD_TYPES:
        ct.rename_attribute(body, "value", "content")

    dropped = ct.remove_attributes(body, *DROPPED_ATTRIBUTES)
    if dropped:
        ctx.add_warning(
            f"Removed {', '.join(dropped)} from {block.address}",
            f"{NEW_TYPE} has no such attribute",
        )

    if record_type in PRIORITY_RECORD_TYPES:
        ct.hoist_attributes(body, "data", "priority")
    if record_type == "CAA":
        for data in ct.find_blocks(body, "data"):
            ct.rename_attribute(data.body, "content", "value")
    if len(ct.find_blocks(body, "data")) > 1:
        ctx.add_warning(f"{block.address} has more than one data block", "only a single data object is supported")
    ct.block_to_attribute(body, "data")
    return TransformResult.in_place(block)


def _flags_value(value: Any) -> Any:
    """CAA flags are a dynamic value in the new schema."""
    if value is None or value == "":
        return None
    if isinstance(value, dict):
        return value
    try:
        return {"value": st.to_number(value), "type": "number"}
    except CoercionError:
        return {"value": value, "type": "string"}


def _transform_data(ctx: MigrationContext, attributes: dict[str, Any], record_type: str) -> None:
    data = attributes.get("data")
    if record_type in SIMPLE_RECORD_TYPES and not (record_type == "MX" and isinstance(data, list) and data):
        attributes.pop("data", None)
        return

    legacy = isinstance(data, list)
    st.normalize_singleton(attributes, "data", ctx=ctx)
    data = attributes.get("data")
    if not isinstance(data, dict):
        return

    st.remove_fields(data, "name", "proto")
    for name in NUMERIC_DATA_FIELDS:
        st.coerce_field(ctx, data, name, st.to_number, label=f"data.{name}")

    if record_type == "CAA":
        st.rename_field(data, "content", "value")
        data["flags"] = _flags_value(data.get("flags"))
        if legacy and data.get("tag") and data.get("value") is not None:
            flags = data["flags"]["value"] if isinstance(data["flags"], dict) else 0
            attributes["content"] = f"{flags} {data['tag']} {data['value']}"

    if record_type in PRIORITY_RECORD_TYPES and "priority" in data:
        priority = data.pop("priority")
        attributes["priority"] = priority
        target = data.get("target")
        if record_type == "MX" and target is not None:
            attributes["content"] = f"{priority} {target}"
        elif record_type == "URI" and target is not None and data.get("weight") is not None:
            attributes["content"] = f"{priority} {data['weight']} {target}"


def transform_state(ctx: MigrationContext, instance: dict[str, Any], resource_name: str) -> dict[str, Any] | None:
    attributes = instance.get("attributes")
    if not isinstance(attributes, dict):
        return instance
    record_type = _record_type(attributes.get("type"))

    st.rename_field(attributes, "value", "content")
    st.ensure_field(attributes, "ttl", 1)
    st.remove_fields(attributes, *DROPPED_STATE_FIELDS)
    if st.is_empty_value(attributes.get("meta")) or attributes.get("meta") == "{}":
        attributes.pop("meta", None)
    for name in ("created_on", "modified_on"):
        value = attributes.get(name)
        attributes[name] = st.normalize_rfc3339(value) if isinstance(value, str) and value else DEFAULT_TIMESTAMP

    _transform_data(ctx, attributes, record_type)
    st.coerce_field(ctx, attributes, "priority", st.to_number, label=f"{resource_name}.priority")
    return instance


RULE = Rule(
    resource_type=OLD_TYPE,
    aliases=(NEW_TYPE,),
    transform_config=transform_config,
    transform_state=transform_state,
    rename=ResourceRename(OLD_TYPE, NEW_TYPE),
    description="DNS records: value becomes content, the data block becomes an attribute",
)
