"""Interactive perft comparison between a move generator script and Stockfish."""

import argparse
import logging
import os
import sys
from typing import List, Optional, TextIO

from engine import STOCKFISH, EngineError, ScriptEngine, StockfishEngine
from render import write_colored
from state import INITIAL_FEN, DepthError, State

logger = logging.getLogger(__name__)

LOG_LEVELS = [logging.WARNING, logging.INFO, logging.DEBUG]


class Prompt:
    """Line reader that only shows a prompt when a person is typing."""

    def __init__(
        self,
        stdin: Optional[TextIO] = None,
        stdout: Optional[TextIO] = None,
        stderr: Optional[TextIO] = None,
    ) -> None:
        self.stdin = stdin or sys.stdin
        self.stdout = stdout or sys.stdout
        self.stderr = stderr or sys.stderr

    def _prompt_stream(self) -> Optional[TextIO]:
        if not self.stdin.isatty():
            return None
        if self.stdout.isatty():
            return self.stdout
        if self.stderr.isatty():
            return self.stderr
        return None

    def prompt(self, ps: str = "> ") -> Optional[str]:
        stream = self._prompt_stream()
        if stream is not None:
            stream.write(ps)
            stream.flush()
        line = self.stdin.readline()
        if not line:
            return None
        return line


def handle_command(
    state: State,
    line: str,
    out: Optional[TextIO] = None,
    err: Optional[TextIO] = None,
    color: bool = False,
) -> bool:
    """Apply one command line to ``state``. Returns False when the session should end."""
    if out is None:
        out = sys.stdout
    if err is None:
        err = sys.stderr
    words = line.split()
    if not words:
        return True
    cmd, args = words[0], words[1:]

    if cmd == "fen":
        if args:
            state.set_fen(" ".join(args))
        else:
            print(state.fen, file=out)
    elif cmd == "moves":
        if args:
            state.set_moves(args)
        else:
            print(" ".join(state.moves), file=out)
    elif cmd == "depth":
        if not args:
            print(state.depth, file=out)
        else:
            try:
                state.set_depth(int(args[0]))
            except ValueError as e:
                print(f"cannot parse given depth: {e}", file=err)
    elif cmd == "root":
        state.goto_root()
    elif cmd in ("parent", "unmove"):
        state.goto_parent()
    elif cmd in ("child", "move"):
        if args:
            state.goto_child(args[0])
        else:
            print("missing argument, expected a child move", file=err)
    elif cmd == "diff":
        try:
            diff = state.diff()
        except (EngineError, DepthError) as e:
            print(f"cannot compute diff: {e}", file=err)
        except KeyboardInterrupt:
            print("diff cancelled", file=err)
        else:
            write_colored(diff, out, color=color)
    elif cmd == "chess960":
        state.set_chess960(True)
    elif cmd == "nochess960":
        state.set_chess960(False)
    elif cmd in ("exit", "quit"):
        return False
    else:
        print(f"unknown command {cmd!r}", file=err)
    return True


def run(state: State, prompt: Prompt, color: bool = False) -> None:
    while True:
        line = prompt.prompt()
        if line is None:
            break
        if not handle_command(state, line, prompt.stdout, prompt.stderr, color):
            break


def _depth(text: str) -> int:
    try:
        value = int(text)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid depth: {text!r}") from None
    if value < 0:
        raise argparse.ArgumentTypeError("depth must be non-negative")
    return value


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="perftree",
        description="Compare perft counts of a move generator script against Stockfish",
    )
    parser.add_argument(
        "script",
        help="program called as '<script> <depth> <fen> [<moves>]' for every diff",
    )
    parser.add_argument(
        "--engine",
        default=os.environ.get("PERFTREE_ENGINE", STOCKFISH),
        help="reference engine command (default: $PERFTREE_ENGINE or stockfish)",
    )
    parser.add_argument("--fen", default=INITIAL_FEN, help="initial position")
    parser.add_argument(
        "--depth",
        type=_depth,
        default=1,
        help="initial target depth in plies (default: 1)",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="seconds to wait for either backend before giving up (default: no limit)",
    )
    parser.add_argument(
        "--color",
        choices=("auto", "always", "never"),
        default="auto",
        help="highlight mismatches (default: auto)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="log engine traffic to stderr (repeat for more detail)",
    )
    return parser.parse_args(argv)


def use_color(choice: str, stream: TextIO) -> bool:
    if choice == "auto":
        return stream.isatty() and "NO_COLOR" not in os.environ
    return choice == "always"


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=LOG_LEVELS[min(args.verbose, len(LOG_LEVELS) - 1)],
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        script = ScriptEngine(args.script, timeout=args.timeout)
        reference = StockfishEngine(args.engine, timeout=args.timeout)
    except EngineError as e:
        print(f"perftree: {e}", file=sys.stderr)
        return 1

    with reference:
        state = State(script, reference, fen=args.fen, depth=args.depth)
        try:
            run(state, Prompt(), color=use_color(args.color, sys.stdout))
        except KeyboardInterrupt:
            logger.info("interrupted")
            return 130
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
