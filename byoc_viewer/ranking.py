"""Precomputed sort ranks and page membership for scriptless tables.

The rendered table cannot sort or paginate at view time, so every ordering
the user can pick is computed here up front: for each column and direction,
the position of every row and the page that position falls on.
"""

import locale
import math
from dataclasses import dataclass
from functools import cmp_to_key
from typing import Any, Callable, List, Optional, Sequence, TypeVar

from .model import Comparator

PAGE_SIZE = 10

# Marker the views use for an LSN the control plane did not report.
UNKNOWN_LSN = "-"

T = TypeVar("T")

ASC = "asc"
DESC = "desc"
DIRECTIONS = (ASC, DESC)


def compare_text(a: Any, b: Any) -> int:
    """Locale-aware string comparison; the default for columns without one."""
    return locale.strcoll("" if a is None else str(a), "" if b is None else str(b))


def compare_numbers(a: Optional[float], b: Optional[float]) -> int:
    """Numeric comparison with missing values first."""
    if a is None or b is None:
        return (a is not None) - (b is not None)
    return (a > b) - (a < b)


def compare_lsn(a: Any, b: Any) -> int:
    """Like compare_numbers but the unknown-LSN marker is always smallest."""
    a = None if a in (None, UNKNOWN_LSN) else a
    b = None if b in (None, UNKNOWN_LSN) else b
    return compare_numbers(a, b)


@dataclass(frozen=True)
class Ranking:
    """``asc[i]`` and ``desc[i]`` are row i's positions under either order."""
    asc: List[int]
    desc: List[int]

    def positions(self, direction: str) -> List[int]:
        return self.asc if direction == ASC else self.desc


def rank(rows: Sequence[T], extract: Callable[[T], Any], compare: Optional[Comparator] = None) -> Ranking:
    """Rank rows under both directions of one comparator.

    Sorting is stable in both directions: tied rows keep their input order
    whether the column is ascending or descending.
    """
    compare = compare or compare_text
    values = [extract(row) for row in rows]
    indices = list(range(len(rows)))

    ascending = sorted(indices, key=cmp_to_key(lambda i, j: compare(values[i], values[j])))
    descending = sorted(indices, key=cmp_to_key(lambda i, j: compare(values[j], values[i])))

    asc = [0] * len(rows)
    desc = [0] * len(rows)
    for position, index in enumerate(ascending):
        asc[index] = position
    for position, index in enumerate(descending):
        desc[index] = position
    return Ranking(asc=asc, desc=desc)


def rank_columns(rows: Sequence[T], extractors: Sequence[Callable[[T], Any]], comparators: Sequence[Optional[Comparator]]) -> List[Ranking]:
    """One Ranking per column, computed for every column up front."""
    return [rank(rows, extract, compare) for extract, compare in zip(extractors, comparators)]


def page_of(position: int, page_size: int = PAGE_SIZE) -> int:
    return position // page_size


def page_count(total: int, page_size: int = PAGE_SIZE) -> int:
    """Number of pages, at least one even for an empty table."""
    if total <= 0:
        return 1
    return math.ceil(total / page_size)


def visible_rows(ranking: Ranking, direction: str, page: int, page_size: int = PAGE_SIZE) -> List[int]:
    """Row indices shown on ``page``, in display order."""
    positions = ranking.positions(direction)
    shown = [index for index, position in enumerate(positions) if page_of(position, page_size) == page]
    return sorted(shown, key=lambda index: positions[index])
