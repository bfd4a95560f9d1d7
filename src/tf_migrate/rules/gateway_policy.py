"""
cloudflare_teams_rule -> cloudflare_zero_trust_gateway_policy.

``rule_settings`` and its nested blocks become object attributes and several
settings are renamed. In state the legacy provider stored ``precedence``
mixed with a hash of the rule name; the original value is recovered with
``reverse_hash_mixed``.

Only the legacy type is registered: migrated state still holds the mixed-in
precedence otherwise, and reversing it twice would corrupt it.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING, Any

from .. import config_toolkit as ct
from .. import state_toolkit as st
from ..exceptions import CoercionError
from ..hcl import substitute_in_code
from ..models import ResourceRename, TransformResult
from ..rule import Rule

if TYPE_CHECKING:
    from ..context import MigrationContext
    from ..hcl import Block

OLD_TYPE = "cloudflare_teams_rule"
NEW_TYPE = "cloudflare_zero_trust_gateway_policy"

SETTINGS_BLOCKS = (
    "audit_ssh",
    "biso_admin_controls",
    "block_page",
    "check_session",
    "dns_resolvers",
    "egress",
    "l4override",
    "notification_settings",
    "payload_log",
    "untrusted_cert",
)
BISO_RENAMES = {
    "disable_printing": "dp",
    "disable_copy_paste": "dcp",
    "disable_download": "dd",
    "disable_keyboard": "dk",
    "disable_upload": "du",
}
BISO_DROPPED = "disable_clipboard_redirection"

_BLOCK_REASON_RE = re.compile(r"(?<![\w.-])block_page_reason(?=[ \t]*=(?!=))")


def preprocess(content: str) -> str:
    """Rename ``block_page_reason`` assignments before parsing."""
    return substitute_in_code(_BLOCK_REASON_RE, content, lambda _m, _t: "block_reason")


def transform_config(ctx: MigrationContext, block: Block) -> TransformResult:
    settings = ct.find_block(block.body, "rule_settings")
    if settings is None:
        return TransformResult.in_place(block)

    for biso in ct.find_blocks(settings.body, "biso_admin_controls"):
        for old, new in BISO_RENAMES.items():
            ct.rename_attribute(biso.body, old, new)
        if ct.remove_attributes(biso.body, BISO_DROPPED):
            ctx.add_warning(f"Dropped 'biso_admin_controls.{BISO_DROPPED}' from {block.address}", "no longer supported")
    for notification in ct.find_blocks(settings.body, "notification_settings"):
        ct.rename_attribute(notification.body, "message", "msg")

    if not ct.block_to_attribute(block.body, "rule_settings"):
        ctx.add_warning(f"Could not convert rule_settings of {block.address}", "convert it to an attribute manually")
    return TransformResult.in_place(block)


def _reverse_precedence(ctx: MigrationContext, attributes: dict[str, Any], resource_name: str) -> None:
    value = attributes.get("precedence")
    if value is None:
        return
    try:
        stored = st.to_int(value)
    except CoercionError as e:
        ctx.add_warning(f"Could not read precedence of {resource_name}", str(e))
        return
    reversal = st.reverse_hash_mixed(stored, str(attributes.get("name") or ""))
    if not reversal.exact:
        ctx.add_warning(
            f"Precedence of {resource_name} could not be recovered exactly",
            f"stored value {stored} became {reversal.value}; check the precedence in the configuration",
        )
    attributes["precedence"] = reversal.value


def _transform_settings(ctx: MigrationContext, attributes: dict[str, Any]) -> None:
    if not st.has_path(attributes, "rule_settings"):
        return
    st.normalize_singleton(attributes, "rule_settings", empty="object", ctx=ctx)
    settings = attributes.get("rule_settings")
    if not isinstance(settings, dict):
        return
    for name in SETTINGS_BLOCKS:
        st.normalize_singleton(settings, name, empty="drop", ctx=ctx)

    st.rename_field(settings, "block_page_reason", "block_reason")
    st.rename_field(settings, "notification_settings.message", "notification_settings.msg")
    for old, new in BISO_RENAMES.items():
        st.rename_field(settings, f"biso_admin_controls.{old}", f"biso_admin_controls.{new}")
    st.remove_fields(settings, f"biso_admin_controls.{BISO_DROPPED}")

    st.coerce_field(ctx, settings, "l4override.port", st.to_int, label="rule_settings.l4override.port")
    for family in ("ipv4", "ipv6"):
        for index in range(len(st.get_path(settings, f"dns_resolvers.{family}", None) or [])):
            st.coerce_field(ctx, settings, f"dns_resolvers.{family}.{index}.port", st.to_int)
    duration = st.get_path(settings, "check_session.duration")
    if isinstance(duration, str):
        st.set_path(settings, "check_session.duration", st.normalize_duration(duration))


def transform_state(ctx: MigrationContext, instance: dict[str, Any], resource_name: str) -> dict[str, Any] | None:
    attributes = instance.get("attributes")
    if not isinstance(attributes, dict):
        return instance
    _reverse_precedence(ctx, attributes, resource_name)
    st.coerce_field(ctx, attributes, "version", st.to_int, label=f"{resource_name}.version")
    _transform_settings(ctx, attributes)
    return instance


RULE = Rule(
    resource_type=OLD_TYPE,
    preprocess=preprocess,
    transform_config=transform_config,
    transform_state=transform_state,
    rename=ResourceRename(OLD_TYPE, NEW_TYPE),
    description="Gateway rules: rule_settings becomes an attribute, precedence hash removed from state",
)
