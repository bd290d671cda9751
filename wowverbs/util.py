from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from typing import Any, Callable, Union

from wowverbs.errors import UnresolvedTableError, WowVerbsUserError

logger = logging.getLogger(__name__)

_RE_IDENT = re.compile(r"[A-Za-z_][A-Za-z0-9_]*\Z")

KEYWORDS = frozenset({"and", "or", "not", "true", "false", "null"})

Catalog = Union[Callable[[str], Any], Mapping]


def _is_identifier(s: Any) -> bool:
    """True for strings usable as a bare column reference in expression source."""
    return isinstance(s, str) and bool(_RE_IDENT.match(s)) and s.lower() not in KEYWORDS


def _is_json_safe(value: Any) -> bool:
    if value is None or isinstance(value, (bool, int, float, str)):
        return True
    if isinstance(value, (list, tuple)):
        return all(_is_json_safe(v) for v in value)
    if isinstance(value, Mapping):
        return all(isinstance(k, str) and _is_json_safe(v) for k, v in value.items())
    return False


def _plain(value: Any, *, where: str) -> Any:
    """Return a JSON-safe copy of `value` (tuples become lists) or raise."""
    if not _is_json_safe(value):
        raise WowVerbsUserError(
            "E_OBJECT_NOT_JSON",
            f"Value for {where!r} is not JSON-safe: {type(value).__name__}.",
            hint="Plain parameters may only contain None, bool, numbers, strings, lists and string-keyed dicts.",
        )
    if isinstance(value, (list, tuple)):
        return [_plain(v, where=where) for v in value]
    if isinstance(value, Mapping):
        return {k: _plain(v, where=where) for k, v in value.items()}
    return value


def _table_name(ref: Any) -> str:
    """Name of a table reference: either the string itself or a handle's `name`."""
    if isinstance(ref, str):
        return ref
    name = getattr(ref, "name", None)
    if isinstance(name, str) and name:
        return name
    raise WowVerbsUserError(
        "E_TABLE_REF_NAME",
        f"Table reference {type(ref).__name__} has no name and cannot be serialized.",
        hint="Pass the table by catalog name, or give the table a name, e.g. PetlTable(t, name='orders').",
    )


def _get_table(catalog: Catalog, ref: Any) -> Any:
    """Resolve a table reference against the catalog.

    String references are looked up; live table handles are already resolved.
    """
    if not isinstance(ref, str):
        if ref is None:
            raise UnresolvedTableError(ref, hint="A table reference is missing.")
        return ref
    if catalog is None:
        raise UnresolvedTableError(ref, hint="No catalog was supplied to evaluate().")
    if isinstance(catalog, Mapping):
        table = catalog.get(ref)
    else:
        try:
            table = catalog(ref)
        except LookupError as e:
            raise UnresolvedTableError(ref, hint=f"The catalog raised {type(e).__name__}: {e}") from e
    if table is None:
        raise UnresolvedTableError(ref)
    logger.debug("resolved table %r from catalog", ref)
    return table
