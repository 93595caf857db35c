from __future__ import annotations

from typing import TextIO

from report import Count, Diff

MISMATCH = "1;31"


def color_text(text: str, color_code: str) -> str:
    return f"\033[{color_code}m{text}\033[0m"


def _digits(count: int) -> int:
    return len(str(count))


def column_width(diff: Diff) -> int:
    """Width of the widest per-move count, zero when there are no counts."""
    width = 0
    for _, lhs, rhs in diff:
        for count in (lhs, rhs):
            if count is not None:
                width = max(width, _digits(count))
    return width


def _cell(count: Count, width: int) -> str:
    return f"{'' if count is None else count:>{width}}"


def format_row(move: str, lhs: Count, rhs: Count, width: int) -> str:
    return f"{move}  {_cell(lhs, width)}  {_cell(rhs, width)}"


def write_colored(diff: Diff, out: TextIO, color: bool = True) -> None:
    """Write one line per move, a blank line, then the totals.

    Rows whose sides differ (including a side that is missing) are shown in
    bold red when ``color`` is set.
    """
    width = column_width(diff)
    mismatched = diff.mismatches()

    def emit(line: str, mismatch: bool) -> None:
        if mismatch and color:
            line = color_text(line, MISMATCH)
        out.write(line + "\n")

    for move, lhs, rhs in diff:
        emit(format_row(move, lhs, rhs, width), move in mismatched)
    out.write("\n")
    lhs_total, rhs_total = diff.total
    emit(f"total  {lhs_total}  {rhs_total}", lhs_total != rhs_total)
    out.flush()

