from __future__ import annotations

from typing import Iterable, List

from engine import Engine
from report import Diff, merge

INITIAL_FEN = "rnbqkbnr/pppppppp/8/8/8/8/PPPPPPPP/RNBQKBNR w KQkq - 0 1"


class DepthError(ValueError):
    """Raised when a depth cannot be searched from the current position."""


class State:
    """The position under inspection and the two backends that count it.

    ``depth`` is measured from ``fen``, not from the end of ``moves``. The
    backends are owned by the caller and only borrowed here.
    """

    def __init__(
        self,
        script: Engine,
        reference: Engine,
        fen: str = INITIAL_FEN,
        depth: int = 1,
    ) -> None:
        self.script = script
        self.reference = reference
        self._fen = fen
        self._moves: List[str] = []
        self._depth = 0
        self._chess960 = bool(reference.chess960)
        self.set_depth(depth)

    @property
    def fen(self) -> str:
        return self._fen

    def set_fen(self, fen: str) -> None:
        self._fen = fen
        self._moves.clear()

    @property
    def moves(self) -> List[str]:
        return list(self._moves)

    def set_moves(self, moves: Iterable[str]) -> None:
        self._moves = list(moves)

    @property
    def depth(self) -> int:
        return self._depth

    def set_depth(self, depth: int) -> None:
        if depth < 0:
            raise DepthError(f"depth must be non-negative, got {depth}")
        self._depth = depth

    @property
    def chess960(self) -> bool:
        return self._chess960

    def set_chess960(self, chess960: bool) -> None:
        self._chess960 = chess960
        self.reference.chess960 = chess960

    def goto_root(self) -> None:
        self._moves.clear()

    def goto_parent(self) -> None:
        if self._moves:
            self._moves.pop()

    def goto_child(self, move: str) -> None:
        self._moves.append(move)

    def relative_depth(self) -> int:
        """Depth left to search below the end of the move path."""
        remaining = self._depth - len(self._moves)
        if remaining < 0:
            raise DepthError(
                f"navigated path ({len(self._moves)} moves) is already deeper "
                f"than the requested depth {self._depth}"
            )
        return remaining

    def diff(self) -> Diff:
        depth = self.relative_depth()
        moves = list(self._moves)
        lhs = self.script.query(self._fen, moves, depth)
        rhs = self.reference.query(self._fen, moves, depth)
        return merge(lhs, rhs)
