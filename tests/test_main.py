import sys, os
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))
import io
import shlex

import pytest

from engine import Engine, ProtocolError
from main import Prompt, handle_command, main, parse_args, run
from report import PerftReport
from state import INITIAL_FEN, State

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
PERFT_SCRIPT = os.path.join(ROOT, "perft.py")
FAKE_STOCKFISH = os.path.join(os.path.dirname(__file__), "fixtures", "fake_stockfish.py")


class StaticEngine(Engine):
    def __init__(self, report, error=None):
        self.report = report
        self.error = error
        self.calls = []

    def query(self, fen, moves, depth):
        self.calls.append((fen, list(moves), depth))
        if self.error is not None:
            raise self.error
        return self.report


class Session:
    def __init__(self, lhs=None, rhs=None):
        report = PerftReport(20, {"e2e4": 20})
        self.state = State(StaticEngine(lhs or report), StaticEngine(rhs or report))
        self.out = io.StringIO()
        self.err = io.StringIO()

    def __call__(self, line):
        return handle_command(self.state, line, self.out, self.err)


@pytest.fixture
def session():
    return Session()


def test_fen_prints_and_sets(session):
    session("fen")
    assert session.out.getvalue() == INITIAL_FEN + "\n"
    session("child e2e4")
    session("fen 8/8/8/8/8/8/8/K6k   w - - 0 1")
    assert session.state.fen == "8/8/8/8/8/8/8/K6k w - - 0 1"
    assert session.state.moves == []


def test_moves_prints_and_sets(session):
    session("moves e2e4 e7e5")
    assert session.state.moves == ["e2e4", "e7e5"]
    session("moves")
    assert session.out.getvalue() == "e2e4 e7e5\n"


def test_depth_prints_and_sets(session):
    session("depth 4")
    assert session.state.depth == 4
    session("depth")
    assert session.out.getvalue() == "4\n"


@pytest.mark.parametrize("arg", ["four", "-2"])
def test_bad_depth_leaves_state(session, arg):
    session(f"depth {arg}")
    assert session.state.depth == 1
    assert "cannot parse given depth" in session.err.getvalue()


def test_navigation_commands(session):
    for line in ["move e2e4", "child e7e5", "child g1f3", "parent", "unmove"]:
        assert session(line)
    assert session.state.moves == ["e2e4"]
    session("root")
    assert session.state.moves == []
    session("parent")
    assert session.state.moves == []


def test_child_without_move(session):
    session("child")
    assert session.state.moves == []
    assert "missing argument" in session.err.getvalue()


def test_chess960_toggles(session):
    session("chess960")
    assert session.state.reference.chess960 is True
    session("nochess960")
    assert session.state.reference.chess960 is False


def test_blank_and_unknown_lines(session):
    assert session("   ")
    assert session("frobnicate 3")
    assert "unknown command 'frobnicate'" in session.err.getvalue()


@pytest.mark.parametrize("cmd", ["exit", "quit"])
def test_exit(session, cmd):
    assert session(cmd) is False


def test_diff_renders_table():
    s = Session(PerftReport(21, {"e2e4": 20, "e2e3": 1}), PerftReport(20, {"e2e4": 20}))
    s("depth 2")
    s("child d2d4")
    s("diff")
    assert s.out.getvalue() == "e2e3   1    \ne2e4  20  20\n\ntotal  21  20\n"
    assert s.state.script.calls == [(INITIAL_FEN, ["d2d4"], 1)]


def test_diff_failure_is_reported():
    s = Session()
    s.state.reference.error = ProtocolError("bad row")
    s("child e2e4")
    assert s("diff")
    assert "cannot compute diff: bad row" in s.err.getvalue()
    assert s.state.moves == ["e2e4"]
    assert s.out.getvalue() == ""


def test_diff_deeper_than_target_is_reported(session):
    session("moves e2e4 e7e5")
    session("diff")
    assert "already deeper" in session.err.getvalue()
    assert session.state.script.calls == []


def test_diff_cancelled(session):
    session.state.script.error = KeyboardInterrupt()
    assert session("diff")
    assert "diff cancelled" in session.err.getvalue()


def test_prompt_hidden_without_terminal():
    prompt = Prompt(io.StringIO("depth 3\n"), io.StringIO(), io.StringIO())
    assert prompt.prompt() == "depth 3\n"
    assert prompt.prompt() is None
    assert prompt.stdout.getvalue() == ""


def test_run_until_quit():
    s = Session()
    prompt = Prompt(io.StringIO("depth 3\nquit\ndepth 5\n"), s.out, s.err)
    run(s.state, prompt)
    assert s.state.depth == 3


def test_parse_args_requires_script(capsys):
    with pytest.raises(SystemExit) as exc:
        parse_args([])
    assert exc.value.code == 2


def test_parse_args_defaults(monkeypatch):
    monkeypatch.delenv("PERFTREE_ENGINE", raising=False)
    args = parse_args(["./movegen"])
    assert args.engine == "stockfish"
    assert args.depth == 1
    assert args.fen == INITIAL_FEN
    assert args.timeout is None


def test_main_missing_engine(capsys):
    script = f"{shlex.quote(sys.executable)} {shlex.quote(PERFT_SCRIPT)}"
    assert main([script, "--engine", "no-such-stockfish-binary"]) == 1
    assert "program not found" in capsys.readouterr().err


def test_end_to_end_session(monkeypatch, capsys):
    script = f"{shlex.quote(sys.executable)} {shlex.quote(PERFT_SCRIPT)}"
    engine = f"{shlex.quote(sys.executable)} {shlex.quote(FAKE_STOCKFISH)}"
    monkeypatch.setattr(sys, "stdin", io.StringIO("depth 2\nchild e2e4\ndiff\nquit\n"))
    assert main([script, "--engine", engine, "--color", "never", "--timeout", "60"]) == 0
    out = capsys.readouterr().out
    assert out.endswith("\ntotal  20  20\n")
    assert "\033[" not in out
