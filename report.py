from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Dict, Iterator, Mapping, Optional, Tuple

Count = Optional[int]


@dataclass(frozen=True)
class PerftReport:
    """One backend's answer to one perft query.

    ``moves`` maps each legal move at the queried position to the node count
    of its subtree. ``total`` is the count the backend reported, which is not
    checked against the sum of the rows.
    """

    total: int
    moves: Mapping[str, int] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "moves", MappingProxyType(dict(self.moves)))

    def __hash__(self) -> int:
        return hash((self.total, frozenset(self.moves.items())))


@dataclass(frozen=True)
class Diff:
    total: Tuple[int, int]
    rows: Dict[str, Tuple[Count, Count]]

    def __iter__(self) -> Iterator[Tuple[str, Count, Count]]:
        for move, (lhs, rhs) in self.rows.items():
            yield move, lhs, rhs

    def mismatches(self) -> Dict[str, Tuple[Count, Count]]:
        """Rows where the two sides disagree, including moves only one side reported."""
        return {m: pair for m, pair in self.rows.items() if pair[0] != pair[1]}


def merge(lhs: PerftReport, rhs: PerftReport) -> Diff:
    """Merge two reports into one table keyed by move, sorted by move name."""
    pairs: Dict[str, list] = {}
    for move, count in lhs.moves.items():
        pairs.setdefault(move, [None, None])[0] = count
    for move, count in rhs.moves.items():
        pairs.setdefault(move, [None, None])[1] = count
    rows = {move: (pairs[move][0], pairs[move][1]) for move in sorted(pairs)}
    return Diff(total=(lhs.total, rhs.total), rows=rows)
