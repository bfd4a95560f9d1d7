"""Data models shared by the rules, the pipelines and the registry.

These are plain records: rules build them, pipelines consume them. None of
them carries behaviour beyond small convenience constructors.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .hcl import Block
    from .protocols import ElementBuilder


@dataclass
class TransformResult:
    """Output of a per-block config transform.

    ``blocks`` is the ordered list of output blocks (zero, one or many). When
    ``remove_original`` is set the input block is excised and ``blocks`` are
    spliced in its place; otherwise the input block stays where it is and any
    other returned blocks are inserted right after it.
    """

    blocks: list[Block] = field(default_factory=list)
    remove_original: bool = False

    @classmethod
    def in_place(cls, block: Block) -> TransformResult:
        """The block was modified (or left alone) where it is."""
        return cls(blocks=[block])

    @classmethod
    def replace(cls, *blocks: Block) -> TransformResult:
        """Replace the input block with ``blocks`` (none deletes it)."""
        return cls(blocks=list(blocks), remove_original=True)

    @classmethod
    def remove(cls) -> TransformResult:
        return cls(blocks=[], remove_original=True)


@dataclass(frozen=True)
class AttributeRename:
    """Directive to rewrite ``<type>.<name>.<old>`` references to ``<new>``.

    ``resource_type`` is a lookup key, so data sources are spelled
    ``data.<type>``.
    """

    resource_type: str
    old_attribute: str
    new_attribute: str


@dataclass(frozen=True)
class ResourceRename:
    """Resource type rename reported by a rule."""

    old_type: str
    new_type: str


@dataclass(frozen=True)
class StateMerge:
    """Declares that a legacy child resource type is folded into its parent.

    Every instance of ``child_type`` whose ``parent_reference`` attribute
    matches the ``parent_key`` attribute of a ``parent_type`` instance is
    converted with ``build_element`` and appended to the parent's
    ``collection_attribute``. When ``count_attribute`` is set it is refreshed
    with the new collection length.
    """

    child_type: str
    parent_type: str
    collection_attribute: str
    parent_reference: str
    parent_key: str = "id"
    build_element: ElementBuilder | None = None
    count_attribute: str | None = None
