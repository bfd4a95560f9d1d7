"""
Structural rewrite primitives for state documents.

State instances are plain JSON values (dicts, lists, strings, numbers, booleans
and None). Values are addressed by dotted paths where list indices are either
dotted (``rule_settings.0.redirect``) or bracketed (``rule_settings[0].redirect``).

The coercions are strict and raise ``CoercionError`` on input that is not valid
for the source representation. ``coerce_field`` is the lenient wrapper rules
normally use: the value passes through unchanged and a warning diagnostic is
attached to the context.
"""

from __future__ import annotations

import logging
import re
import zlib
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING, Any, Literal

from .exceptions import CoercionError

if TYPE_CHECKING:
    from collections.abc import Callable

    from .context import MigrationContext

logger: logging.Logger = logging.getLogger(__name__)

EmptyPolicy = Literal["null", "object", "drop"]

_MISSING: Any = object()
_INDEX_RE = re.compile(r"\[(\d+)\]")
_DURATION_PART_RE = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|μs|ms|s|m|h)")
_NANOSECONDS = {
    "ns": 1,
    "us": 1_000,
    "µs": 1_000,
    "μs": 1_000,
    "ms": 1_000_000,
    "s": 1_000_000_000,
    "m": 60 * 1_000_000_000,
    "h": 3600 * 1_000_000_000,
}
_TRUE_STRINGS = frozenset({"enabled", "true", "on", "yes"})
_FALSE_STRINGS = frozenset({"disabled", "false", "off", "no"})


# Paths


def split_path(path: str) -> list[str]:
    """``"a.b[0].c"`` -> ``["a", "b", "0", "c"]``."""
    return [part for part in _INDEX_RE.sub(r".\1", path).split(".") if part]


def _child(container: Any, key: str) -> Any:
    if isinstance(container, dict):
        return container.get(key, _MISSING)
    if isinstance(container, list) and key.isdigit():
        index = int(key)
        return container[index] if index < len(container) else _MISSING
    return _MISSING


def _parent(obj: Any, path: str) -> tuple[Any, str]:
    parts = split_path(path)
    if not parts:
        msg = "Empty state path"
        raise KeyError(msg)
    container = obj
    for part in parts[:-1]:
        container = _child(container, part)
        if container is _MISSING:
            return _MISSING, parts[-1]
    return container, parts[-1]


def get_path(obj: Any, path: str, default: Any = None) -> Any:
    value = obj
    for part in split_path(path):
        value = _child(value, part)
        if value is _MISSING:
            return default
    return value


def has_path(obj: Any, path: str) -> bool:
    return get_path(obj, path, _MISSING) is not _MISSING


def set_path(obj: Any, path: str, value: Any) -> None:
    """Set ``value`` at ``path``, creating intermediate objects as needed.

    Raises:
        KeyError: If the path runs through a scalar or past the end of a list.
    """
    parts = split_path(path)
    container = obj
    for part in parts[:-1]:
        child = _child(container, part)
        if child is _MISSING:
            if not isinstance(container, dict):
                msg = f"Cannot create '{part}' in path '{path}'"
                raise KeyError(msg)
            child = container[part] = {}
        container = child
    last = parts[-1]
    if isinstance(container, dict):
        container[last] = value
    elif isinstance(container, list) and last.isdigit() and int(last) < len(container):
        container[int(last)] = value
    else:
        msg = f"Cannot set '{last}' in path '{path}'"
        raise KeyError(msg)


def delete_path(obj: Any, path: str) -> bool:
    container, last = _parent(obj, path)
    if isinstance(container, dict) and last in container:
        del container[last]
        return True
    if isinstance(container, list) and last.isdigit() and int(last) < len(container):
        del container[int(last)]
        return True
    return False


# Fields


def rename_field(obj: Any, old_path: str, new_path: str) -> bool:
    """Move the value at ``old_path`` to ``new_path``; no-op when absent.

    If ``new_path`` already holds a value it is kept and the old one dropped.
    """
    if not has_path(obj, old_path):
        return False
    value = get_path(obj, old_path)
    delete_path(obj, old_path)
    if not has_path(obj, new_path):
        set_path(obj, new_path, value)
    return True


def rename_fields(obj: Any, renames: dict[str, str]) -> list[str]:
    return [old for old, new in renames.items() if rename_field(obj, old, new)]


def remove_fields(obj: Any, *paths: str) -> list[str]:
    """Delete the given paths; returns the ones that existed."""
    return [path for path in paths if delete_path(obj, path)]


def ensure_field(obj: Any, path: str, default: Any) -> bool:
    if has_path(obj, path):
        return False
    set_path(obj, path, default)
    return True


def is_empty_value(value: Any) -> bool:
    return value is None or value == "" or value == [] or value == {}


def empty_values_to_null(attributes: dict[str, Any], *fields: str) -> list[str]:
    """Replace ``""``, ``[]`` and ``{}`` with ``None`` (all fields when none are named)."""
    changed = []
    for name in fields or tuple(attributes):
        value = attributes.get(name, _MISSING)
        if value is not _MISSING and value is not None and is_empty_value(value):
            attributes[name] = None
            changed.append(name)
    return changed


def set_schema_version(instance: dict[str, Any], version: int) -> None:
    instance["schema_version"] = version


# Arrays and objects


def array_to_object(value: Any, *, empty: EmptyPolicy = "null") -> Any:
    """Collapse a legacy ``MaxItems: 1`` array into its element.

    An empty array becomes ``None`` (policy ``"null"`` or ``"drop"``) or ``{}``
    (policy ``"object"``). Objects and other values are returned unchanged.
    Arrays with several elements keep the first one.
    """
    if not isinstance(value, list):
        return value
    if not value:
        return {} if empty == "object" else None
    return value[0]


def object_to_array(value: Any) -> list[Any]:
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]


def normalize_singleton(
    obj: Any, path: str, *, empty: EmptyPolicy = "null", ctx: MigrationContext | None = None
) -> bool:
    """Apply ``array_to_object`` to the value at ``path`` in place.

    With the ``"drop"`` policy an empty array removes the field. Arrays with
    more than one element lose the extra elements; a warning is attached when
    a context is given.

    Returns:
        True if the value changed.
    """
    value = get_path(obj, path, _MISSING)
    if not isinstance(value, list):
        return False
    if len(value) > 1 and ctx is not None:
        ctx.add_warning(f"Dropped {len(value) - 1} extra element(s) of '{path}'", "the field holds at most one object")
    if not value and empty == "drop":
        delete_path(obj, path)
        return True
    set_path(obj, path, array_to_object(value, empty=empty))
    return True


# Coercions


def to_number(value: Any) -> int | float:
    """Coerce a number or numeric string; integral strings become ints."""
    if isinstance(value, bool):
        msg = f"Boolean {value!r} is not a number"
        raise CoercionError(msg)
    if isinstance(value, int | float):
        return value
    if isinstance(value, str):
        text = value.strip()
        try:
            return int(text)
        except ValueError:
            pass
        try:
            number = Decimal(text)
        except InvalidOperation:
            number = None
        if number is not None and number.is_finite():
            return float(number)
    msg = f"{value!r} is not a number"
    raise CoercionError(msg)


def to_int(value: Any) -> int:
    number = to_number(value)
    if isinstance(number, float):
        if not number.is_integer():
            msg = f"{value!r} is not an integer"
            raise CoercionError(msg)
        return int(number)
    return number


def to_float(value: Any) -> float:
    return float(to_number(value))


def to_bool(value: Any) -> bool:
    """Coerce ``"enabled"``/``"disabled"`` (and true/false, on/off, yes/no) to a boolean."""
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        text = value.strip().lower()
        if text in _TRUE_STRINGS:
            return True
        if text in _FALSE_STRINGS:
            return False
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    msg = f"{value!r} is not a boolean"
    raise CoercionError(msg)


def parse_duration(value: Any, unit: str = "s") -> int:
    """Parse a duration such as ``"1h30m"`` or ``"250ms"`` into whole ``unit``s.

    Supported units are ``ns``, ``us``/``µs``, ``ms``, ``s``, ``m`` and ``h``;
    amounts may be fractional and the whole value may carry a sign. Numbers
    are assumed to be in ``unit`` already. The result is truncated toward zero.
    """
    if unit not in _NANOSECONDS:
        msg = f"Unsupported duration unit '{unit}'"
        raise ValueError(msg)
    if isinstance(value, bool):
        msg = f"Boolean {value!r} is not a duration"
        raise CoercionError(msg)
    if isinstance(value, int | float):
        return int(value)
    if not isinstance(value, str):
        msg = f"{value!r} is not a duration"
        raise CoercionError(msg)

    text = value.strip()
    sign = -1 if text.startswith("-") else 1
    text = text.lstrip("+-")
    if text == "0":
        return 0
    if not text:
        msg = f"Empty duration {value!r}"
        raise CoercionError(msg)

    total = Decimal(0)
    position = 0
    while position < len(text):
        match = _DURATION_PART_RE.match(text, position)
        if match is None:
            msg = f"Invalid duration {value!r}"
            raise CoercionError(msg)
        total += Decimal(match.group(1)) * _NANOSECONDS[match.group(2)]
        position = match.end()
    return sign * int(total / _NANOSECONDS[unit])


def coerce_field(
    ctx: MigrationContext | None,
    obj: Any,
    path: str,
    converter: Callable[[Any], Any],
    *,
    label: str = "",
) -> bool:
    """Convert the value at ``path`` in place.

    Missing and null values are left alone. Invalid values pass through
    unchanged and produce a warning diagnostic.

    Returns:
        True if the value was converted.
    """
    value = get_path(obj, path, None)
    if value is None:
        return False
    try:
        converted = converter(value)
    except CoercionError as e:
        logger.debug(f"Leaving {path} unchanged: {e}")
        if ctx is not None:
            ctx.add_warning(f"Could not convert '{label or path}'", f"{e}; value kept as is")
        return False
    set_path(obj, path, converted)
    return True


# Times


def normalize_duration(duration: str) -> str:
    """Drop redundant zero components: ``"24h0m0s"`` -> ``"24h"``, ``"45m0s"`` -> ``"45m"``."""
    return duration.replace("h0m0s", "h").replace("m0s", "m")


def _format_rfc3339(moment: datetime) -> str:
    text = moment.replace(microsecond=0).isoformat()
    return text.removesuffix("+00:00") + "Z" if text.endswith("+00:00") else text


def normalize_rfc3339(value: str) -> str:
    """Normalize a date or timestamp to RFC 3339 in UTC; unparseable input is returned as is."""
    text = value.strip()
    try:
        moment = datetime.fromisoformat(text)
    except ValueError:
        return value
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=UTC)
    return _format_rfc3339(moment.astimezone(UTC))


def rfc1123z_to_rfc3339(value: str) -> str:
    """``"Tue, 04 Nov 2025 21:52:44 +0000"`` -> ``"2025-11-04T21:52:44Z"``.

    The original offset is kept; unparseable input is returned as is.
    """
    for layout in ("%a, %d %b %Y %H:%M:%S %z", "%a, %d %b %Y %H:%M:%S %Z"):
        try:
            moment = datetime.strptime(value.strip(), layout)  # noqa: DTZ007
        except ValueError:
            continue
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=UTC)
        return _format_rfc3339(moment)
    return value


# Hash reversal


def hash_code_string(value: str) -> int:
    """Non-negative CRC-32 (IEEE) checksum of the UTF-8 bytes of ``value``.

    This is the checksum the legacy provider mixed into derived values; it
    must match it bit for bit.
    """
    return zlib.crc32(value.encode("utf-8")) & 0xFFFFFFFF


@dataclass(frozen=True)
class HashReversal:
    """Result of ``reverse_hash_mixed``; ``exact`` is False for best-effort values."""

    value: int
    exact: bool


def reverse_hash_mixed(stored: int, seed: str, *, multiplier: int = 1000, modulus: int = 1000) -> HashReversal:
    """Undo ``stored = original * multiplier + hash_code_string(seed) % modulus``.

    Values that were never mixed (non-positive, or no seed) are returned
    unchanged and count as exact. When the hash part does not divide away
    cleanly the result is ``stored // multiplier`` flagged as inexact.
    """
    if stored <= 0 or not seed:
        return HashReversal(stored, exact=True)
    remainder = stored - hash_code_string(seed) % modulus
    if remainder >= 0 and remainder % multiplier == 0:
        return HashReversal(remainder // multiplier, exact=True)
    return HashReversal(stored // multiplier, exact=False)
