"""
Ordering of query results.

``order_by`` mirrors the record shape, with "asc" or "desc" at the leaves:

    {"name": "asc"}
    {"address": {"city": "desc"}, "id": "asc"}

Keys are applied in declaration order; later keys break ties of earlier
ones. Sorting is stable, so fully tied records keep storage order. None
sorts after every value ascending and before every value descending.
"""

from __future__ import annotations

from collections.abc import Mapping
from enum import Enum
from functools import cmp_to_key
from typing import Any, List, Sequence, Tuple

from .errors import QueryError
from .record import MISSING, Path, get_at_path


class SortDirection(str, Enum):
    ASC = "asc"
    DESC = "desc"


def flatten_order_by(order_by: Mapping, prefix: Path = ()) -> List[Tuple[Path, SortDirection]]:
    """Flatten a nested order_by mapping into (path, direction) pairs.

    Raises:
        QueryError: If a leaf is not "asc" or "desc"
    """
    criteria: List[Tuple[Path, SortDirection]] = []
    for key, value in order_by.items():
        path = prefix + (key,)
        if isinstance(value, Mapping):
            criteria.extend(flatten_order_by(value, path))
            continue
        try:
            criteria.append((path, SortDirection(value)))
        except ValueError:
            raise QueryError(
                f'Invalid sort direction {value!r} at "{".".join(path)}" (expected "asc" or "desc")',
                details={"path": ".".join(path)},
            ) from None
    return criteria


def _compare(left: Any, right: Any) -> int:
    if left is None or left is MISSING:
        return 0 if right is None or right is MISSING else 1
    if right is None or right is MISSING:
        return -1
    if left < right:
        return -1
    if left > right:
        return 1
    return 0


def sort_records(records: Sequence[Any], order_by: Mapping) -> List[Any]:
    """Return records sorted by order_by."""
    criteria = flatten_order_by(order_by)
    if not criteria:
        return list(records)

    def compare(left: Any, right: Any) -> int:
        for path, direction in criteria:
            result = _compare(get_at_path(left, path, MISSING), get_at_path(right, path, MISSING))
            if result:
                return -result if direction == SortDirection.DESC else result
        return 0

    return sorted(records, key=cmp_to_key(compare))
