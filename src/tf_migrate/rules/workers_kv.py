"""
cloudflare_workers_kv_namespace: configuration is unchanged and the state is
upgraded by the provider itself.
"""

from __future__ import annotations

from ..rule import Rule

RULE = Rule(
    resource_type="cloudflare_workers_kv_namespace",
    defers_state=True,
    description="Workers KV namespaces: state upgraded by the provider",
)
