"""Perft backends: a one-shot script and a long-lived reference engine."""

from __future__ import annotations

import contextlib
import logging
import queue
import re
import shlex
import shutil
import subprocess
import sys
import threading
from abc import ABC, abstractmethod
from typing import IO, Dict, Iterable, Iterator, List, Optional, Sequence, Union

from report import PerftReport

logger = logging.getLogger(__name__)

STOCKFISH = "stockfish"
CHESS960_OPTION = "UCI_Chess960"

Command = Union[str, Sequence[str]]

_COUNT = re.compile(r"[0-9]+")


class EngineError(Exception):
    """Raised when a backend cannot answer a perft query."""


class EngineStartError(EngineError):
    """Raised when a backend program cannot be found or started."""


class TransportError(EngineError):
    """Raised when the backend process dies or its pipes break."""


class ProtocolError(EngineError):
    """Raised when backend output does not match the expected grammar."""


class EngineTimeout(TransportError):
    """Raised when the backend does not answer within the configured timeout."""


def _parse_count(text: str) -> int:
    text = text.strip()
    if not _COUNT.fullmatch(text):
        raise ProtocolError(f"invalid node count: {text!r}")
    return int(text)


def _add_row(moves: Dict[str, int], move: str, count: int) -> None:
    if move in moves:
        raise ProtocolError(f"move {move!r} reported twice")
    moves[move] = count


def _command(cmd: Command) -> List[str]:
    args = shlex.split(cmd) if isinstance(cmd, str) else list(cmd)
    if not args:
        raise EngineStartError("empty command")
    if shutil.which(args[0]) is None:
        raise EngineStartError(f"program not found: {args[0]}")
    return args


def parse_script_output(lines: Iterable[str]) -> PerftReport:
    """Parse ``<move> <count>`` rows, a blank line, then the total.

    Anything after the total line is ignored.
    """
    it = iter(lines)
    moves: Dict[str, int] = {}
    for line in it:
        if not line.strip():
            break
        parts = line.split()
        if len(parts) < 2:
            raise ProtocolError(
                f"expected move and count separated by spaces, got {line!r}"
            )
        _add_row(moves, parts[0], _parse_count(parts[1]))
    else:
        raise ProtocolError("unexpected end of script output while reading moves")

    total = next(it, None)
    if total is None:
        raise ProtocolError("unexpected end of script output; expected total count")
    return PerftReport(_parse_count(total), moves)


def _next_line(it: Iterator[str]) -> str:
    line = next(it, None)
    if line is None:
        raise ProtocolError("unexpected end of engine output")
    return line.strip()


def parse_perft_response(lines: Iterable[str]) -> PerftReport:
    """Parse a ``go perft`` answer in the reference engine's format.

    Consumes exactly the rows, the blank line, the ``<label>: <total>`` line
    and the trailing separator, so a lazily fed stream stays in sync.
    """
    it = iter(lines)
    moves: Dict[str, int] = {}
    while True:
        line = _next_line(it)
        if not line:
            break
        # engines may interleave "info string ..." chatter with the rows
        if line.startswith("info "):
            continue
        move, sep, count = line.partition(": ")
        if not sep or not move:
            raise ProtocolError(f"expected '<move>: <count>', got {line!r}")
        _add_row(moves, move, _parse_count(count))

    line = _next_line(it)
    fields = line.split(": ")
    if len(fields) < 2:
        raise ProtocolError(f"expected '<label>: <total>', got {line!r}")
    total = _parse_count(fields[-1])

    _next_line(it)
    return PerftReport(total, moves)


class Engine(ABC):
    """Anything that can answer ``perft`` for a position plus a move path."""

    chess960 = False

    @abstractmethod
    def query(self, fen: str, moves: Sequence[str], depth: int) -> PerftReport:
        """Return the divided perft of ``fen`` after ``moves`` at ``depth``.

        Raises :class:`EngineError` on failure.
        """

    def close(self) -> None:
        pass

    def __enter__(self) -> "Engine":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def _decode(data: bytes) -> str:
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise ProtocolError(f"script output is not valid UTF-8: {exc}") from exc


def _pass_through(data: bytes) -> None:
    sys.stderr.flush()
    buffer = getattr(sys.stderr, "buffer", None)
    if buffer is None:
        sys.stderr.write(data.decode("utf-8", errors="backslashreplace"))
    else:
        buffer.write(data)
        buffer.flush()


class ScriptEngine(Engine):
    """Runs a fresh process per query: ``<cmd> <depth> <fen> ["<moves>"]``.

    The variant flag is ignored; the script protocol has no way to carry it.
    """

    def __init__(self, cmd: Command, timeout: Optional[float] = None) -> None:
        self.args = _command(cmd)
        self.timeout = timeout

    def query(self, fen: str, moves: Sequence[str], depth: int) -> PerftReport:
        args = self.args + [str(depth), fen]
        if moves:
            args.append(" ".join(moves))
        logger.debug("running %s", shlex.join(args))
        try:
            proc = subprocess.run(args, capture_output=True, timeout=self.timeout)
        except subprocess.TimeoutExpired as exc:
            raise EngineTimeout(
                f"{self.args[0]} did not finish within {self.timeout}s"
            ) from exc
        except OSError as exc:
            raise TransportError(f"cannot run {self.args[0]}: {exc}") from exc

        _pass_through(proc.stderr)
        try:
            report = parse_script_output(_decode(proc.stdout).splitlines())
        except ProtocolError as exc:
            if proc.returncode != 0:
                raise TransportError(
                    f"{self.args[0]} exited with status {proc.returncode}"
                ) from exc
            raise
        if proc.returncode != 0:
            logger.warning("%s exited with status %d", self.args[0], proc.returncode)
        return report


def _pump(stream: IO[str], lines: "queue.Queue[Optional[str]]") -> None:
    with stream:
        for line in stream:
            lines.put(line)
    lines.put(None)


class StockfishEngine(Engine):
    """A long-lived reference engine spoken to over stdin/stdout.

    The child is spawned on construction and its banner line discarded. A
    query that fails for any reason kills the child, and the next query
    starts a fresh one. Use as a context manager, or call :meth:`close`.
    """

    def __init__(
        self,
        cmd: Command = STOCKFISH,
        timeout: Optional[float] = None,
        chess960: bool = False,
    ) -> None:
        self.args = _command(cmd)
        self.timeout = timeout
        self.chess960 = chess960
        self._lock = threading.Lock()
        self._proc: Optional[subprocess.Popen] = None
        self._lines: "queue.Queue[Optional[str]]" = queue.Queue()
        self._spawn()

    @property
    def alive(self) -> bool:
        return self._proc is not None and self._proc.poll() is None

    def _spawn(self) -> None:
        try:
            proc = subprocess.Popen(
                self.args,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="replace",
                bufsize=1,
            )
        except OSError as exc:
            raise EngineStartError(f"cannot start {self.args[0]}: {exc}") from exc

        self._proc = proc
        self._lines = queue.Queue()
        threading.Thread(
            target=_pump, args=(proc.stdout, self._lines), daemon=True
        ).start()
        logger.info("started %s (pid %d)", self.args[0], proc.pid)
        try:
            self._readline()
        except BaseException:
            self._kill()
            raise

    def _kill(self) -> None:
        proc, self._proc = self._proc, None
        if proc is None:
            return
        if proc.poll() is None:
            proc.kill()
        proc.wait()
        with contextlib.suppress(BrokenPipeError):
            proc.stdin.close()
        logger.info("terminated %s (pid %d)", self.args[0], proc.pid)

    def _readline(self) -> str:
        try:
            line = self._lines.get(timeout=self.timeout)
        except queue.Empty:
            raise EngineTimeout(
                f"{self.args[0]} did not answer within {self.timeout}s"
            ) from None
        if line is None:
            raise TransportError(
                f"{self.args[0]} exited unexpectedly (status {self._proc.poll()})"
            )
        logger.debug("< %s", line.rstrip("\n"))
        return line

    def _responses(self) -> Iterator[str]:
        while True:
            yield self._readline()

    def _send(self, *directives: str) -> None:
        try:
            for directive in directives:
                logger.debug("> %s", directive)
                self._proc.stdin.write(directive + "\n")
            self._proc.stdin.flush()
        except OSError as exc:
            raise TransportError(f"cannot write to {self.args[0]}: {exc}") from exc

    def query(self, fen: str, moves: Sequence[str], depth: int) -> PerftReport:
        with self._lock:
            if self._proc is None:
                logger.info("respawning %s", self.args[0])
                self._spawn()
            position = f"position fen {fen}"
            if moves:
                position += " moves " + " ".join(moves)
            try:
                self._send(
                    f"setoption name {CHESS960_OPTION} value {str(self.chess960).lower()}",
                    position,
                    f"go perft {depth}",
                )
                return parse_perft_response(self._responses())
            except BaseException:
                logger.warning("discarding %s after failed query", self.args[0])
                self._kill()
                raise

    def close(self) -> None:
        with self._lock:
            self._kill()
