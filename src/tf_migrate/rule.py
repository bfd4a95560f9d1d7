"""
The migration rule record.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from .models import AttributeRename, ResourceRename, StateMerge, TransformResult

if TYPE_CHECKING:
    from .context import MigrationContext
    from .hcl import Block
    from .protocols import ConfigTransformer, Preprocessor, ProjectTransformer, StateTransformer

DATA_PREFIX = "data."


@dataclass(frozen=True, eq=False)
class Rule:
    """Migration logic for one resource type and one version pair.

    A rule is a flat record of optional behaviours. Missing behaviours fall
    back to pass-through: no ``transform_config`` leaves the block untouched,
    no ``transform_state`` keeps the instance attributes (the pipeline still
    normalizes the schema version). ``transform_project`` runs once per
    configuration after every file has been transformed.

    Rules compare by identity, so registering the same instance under
    several aliases is fine while two distinct instances for one key are a
    registration error.
    """

    resource_type: str
    aliases: tuple[str, ...] = ()
    preprocess: Preprocessor | None = None
    transform_config: ConfigTransformer | None = None
    transform_state: StateTransformer | None = None
    transform_project: ProjectTransformer | None = None
    rename: ResourceRename | None = None
    attribute_renames: tuple[AttributeRename, ...] = ()
    defers_state: bool = False
    state_merge: StateMerge | None = None
    schema_version: int = 0
    description: str = ""

    @property
    def type_names(self) -> tuple[str, ...]:
        """All lookup keys this rule answers to, primary first."""
        return (self.resource_type, *self.aliases)

    @property
    def target_type(self) -> str:
        """The lookup key of the migrated resource type."""
        if self.rename is not None:
            return self.rename.new_type
        return self.resource_type

    @property
    def is_data_source(self) -> bool:
        return self.resource_type.startswith(DATA_PREFIX)

    def handles(self, resource_type: str) -> bool:
        return resource_type in self.type_names

    def apply_config(self, ctx: MigrationContext, block: Block) -> TransformResult:
        if self.transform_config is None:
            return TransformResult.in_place(block)
        return self.transform_config(ctx, block)

    def apply_state(self, ctx: MigrationContext, instance: dict[str, Any], resource_name: str) -> dict[str, Any] | None:
        if self.transform_state is None:
            return instance
        return self.transform_state(ctx, instance, resource_name)


def strip_data_prefix(resource_type: str) -> str:
    """``data.foo`` -> ``foo``; other names are returned unchanged."""
    return resource_type.removeprefix(DATA_PREFIX)
