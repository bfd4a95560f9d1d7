"""Protocols describing the callables a rule is made of.

A rule is a flat record of behaviours (see ``rule.Rule``). Each behaviour is
an ordinary function matching one of the protocols below, so rules never
need to subclass anything:

1. Preprocessor: whole-text rewrite applied before the file is parsed
2. ConfigTransformer: rewrites one parsed ``resource``/``data`` block
3. StateTransformer: rewrites one state instance
4. ElementBuilder: turns a merged child instance into a collection element
5. ProjectTransformer: rewrites the parsed trees of all files together

Rules receive the per-file ``MigrationContext`` explicitly and report
information loss through it instead of raising.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from collections.abc import Sequence

    from .context import MigrationContext
    from .hcl import Block
    from .models import TransformResult


class Preprocessor(Protocol):
    """Rewrite raw configuration text before parsing.

    Only invoked when one of the rule's type names appears in the text. Must
    return the (possibly unchanged) text and must be idempotent.
    """

    def __call__(self, content: str) -> str: ...


class ConfigTransformer(Protocol):
    """Transform one parsed resource or data block.

    The block may be mutated in place. Implementations must recognise an
    already-migrated block and leave it alone, so that running the pipeline
    twice is a no-op.

    Returns:
        TransformResult describing the output blocks and whether the input
        block has to be removed from the tree.
    """

    def __call__(self, ctx: MigrationContext, block: Block) -> TransformResult: ...


class StateTransformer(Protocol):
    """Transform one state instance.

    ``instance`` is a private deep copy of the instance document (with
    ``attributes`` and ``schema_version``) and may be modified freely.
    ``resource_name`` is the local name of the owning resource entry.

    Returns:
        The new instance document, or ``None`` to delete the instance.
    """

    def __call__(
        self, ctx: MigrationContext, instance: dict[str, Any], resource_name: str
    ) -> dict[str, Any] | None: ...


class ProjectTransformer(Protocol):
    """Rewrite across files once every file has been transformed.

    Receives the per-file contexts of the whole configuration (files that
    failed to parse have no ``tree``). Used when one file's blocks have to
    move into a block defined in another file. Diagnostics go to the context
    of the file they concern.
    """

    def __call__(self, contexts: Sequence[MigrationContext]) -> None: ...


class ElementBuilder(Protocol):
    """Build the parent collection element for one merged child instance.

    Returns ``None`` to skip the child (it is still removed).
    """

    def __call__(self, attributes: dict[str, Any]) -> dict[str, Any] | None: ...
