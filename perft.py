"""Reference perft divide on python-chess, speaking the script protocol.

Usage: ``python perft.py <depth> <fen> ["<move> <move> ..."]``
"""

import argparse
import sys
from typing import Dict, List, Optional

import chess


def perft(board: chess.Board, depth: int) -> int:
    if depth == 0:
        return 1
    total = 0
    for move in board.legal_moves:
        board.push(move)
        total += perft(board, depth - 1)
        board.pop()
    return total


def divide(board: chess.Board, depth: int) -> Dict[str, int]:
    """Node count below each legal move, keyed by UCI move."""
    if depth == 0:
        return {}
    out: Dict[str, int] = {}
    for move in board.legal_moves:
        uci = board.uci(move)
        board.push(move)
        out[uci] = perft(board, depth - 1)
        board.pop()
    return out


def load_position(fen: str, moves: List[str], chess960: bool = False) -> chess.Board:
    try:
        board = chess.Board(fen, chess960=chess960)
    except ValueError as exc:
        raise ValueError(f"Invalid FEN string: {fen}") from exc
    for uci in moves:
        try:
            board.push_uci(uci)
        except ValueError as exc:
            raise ValueError(f"Illegal move: {uci}") from exc
    return board


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Divided perft using python-chess")
    parser.add_argument("depth", type=int, help="search depth in plies")
    parser.add_argument("fen", help="position to search from")
    parser.add_argument("moves", nargs="?", default="", help="space separated UCI moves")
    parser.add_argument("--chess960", action="store_true", help="use Chess960 castling")
    args = parser.parse_args(argv)

    if args.depth < 0:
        parser.error("depth must be non-negative")
    try:
        board = load_position(args.fen, args.moves.split(), args.chess960)
    except ValueError as e:
        print(e, file=sys.stderr)
        return 1

    counts = divide(board, args.depth)
    for uci in sorted(counts):
        print(f"{uci} {counts[uci]}")
    print()
    print(sum(counts.values()) if args.depth else 1)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
