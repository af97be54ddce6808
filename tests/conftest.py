import ast
import subprocess
import sys
import threading
from collections import defaultdict
from pathlib import Path
from typing import Dict, Iterable, Set

import pytest

from archcrypt import executil, logsink
from archcrypt.executil import Result, Runner, render
from archcrypt.model import ExecutionMode

_ROOT_DIR = Path(__file__).absolute().parent.parent
_PACKAGE_DIR = (_ROOT_DIR / "archcrypt").absolute()

_EXECUTED_LINES: Dict[Path, Set[int]] = defaultdict(set)
_CANDIDATE_LINES: Dict[Path, Set[int]] = {}
_PREVIOUS_TRACE = None
_PREVIOUS_THREAD_TRACE = None
_TRACE_ACTIVE = False


class FakeRunner(Runner):
    """Runner that records commands instead of spawning them.

    ``outputs`` maps a program name to the stdout it should return,
    ``queries`` maps a full argv tuple to ``(rc, out)`` for read-only queries
    and ``fail_on`` names the program (or argv prefix) that exits non-zero.
    File writes still go through the real implementation, so point the plan's
    target at ``tmp_path``.
    """

    def __init__(self, mode=ExecutionMode.LIVE, outputs=None, queries=None, fail_on=None):
        super().__init__(mode)
        self.outputs = outputs or {}
        self.queries = queries or {}
        self.fail_on = fail_on
        self.commands = []
        self.queried = []

    def _fails(self, cmd) -> bool:
        if self.fail_on is None:
            return False
        if isinstance(self.fail_on, str):
            return cmd[0] == self.fail_on
        return list(cmd[: len(self.fail_on)]) == list(self.fail_on)

    def run(self, cmd, check=True, timeout=None, capture=True):
        self._record(render(cmd))
        if self.dry_run:
            return Result(0, "DRY-RUN: " + render(cmd), "", 0.0)
        self.commands.append(list(cmd))
        if self._fails(cmd):
            if check:
                raise subprocess.CalledProcessError(1, list(cmd), "", "boom")
            return Result(1, "", "boom", 0.0)
        return Result(0, self.outputs.get(cmd[0], ""), "", 0.0)

    def query(self, cmd, timeout=30.0):
        self.queried.append(list(cmd))
        rc, out = self.queries.get(tuple(cmd), (0, ""))
        return Result(rc, out, "", 0.0)

    def udev_settle(self):
        return None


@pytest.fixture
def fake_runner():
    return FakeRunner


@pytest.fixture
def scripted_input():
    """Build an ``input``-compatible callable that replays fixed answers."""

    def make(*answers):
        pending = list(answers)
        prompts = []

        def reader(prompt):
            prompts.append(prompt)
            if not pending:
                raise EOFError
            return pending.pop(0)

        reader.prompts = prompts
        return reader

    return make


@pytest.fixture(autouse=True)
def _isolated_logs(tmp_path, monkeypatch):
    monkeypatch.setenv("ARCHCRYPT_LOG_FILE", str(tmp_path / "logs" / "arch-install.log"))
    monkeypatch.setenv("ARCHCRYPT_TARGET", str(tmp_path / "mnt"))
    executil.set_trace_path(None)
    yield
    logsink.reset_logging()
    executil.set_trace_path(None)


def _iter_python_files(directory: Path) -> Iterable[Path]:
    for path in directory.rglob("*.py"):
        if path.is_file():
            yield path.absolute()


def _candidate_lines_for(path: Path) -> Set[int]:
    source = path.read_text(encoding="utf-8")
    try:
        tree = ast.parse(source, filename=str(path))
    except SyntaxError:
        return set()

    source_lines = source.splitlines()
    lines = set()
    for node in ast.walk(tree):
        lineno = getattr(node, "lineno", None)
        if lineno is None or lineno > len(source_lines):
            continue
        text = source_lines[lineno - 1].strip()
        if text and not text.startswith("#"):
            lines.add(lineno)
    return lines


for file_path in _iter_python_files(_PACKAGE_DIR):
    _CANDIDATE_LINES[file_path] = _candidate_lines_for(file_path)


def _trace(frame, event, arg):
    if event != "line":
        return _trace
    filename = Path(frame.f_code.co_filename)
    if filename in _CANDIDATE_LINES:
        _EXECUTED_LINES[filename].add(frame.f_lineno)
    return _trace


def pytest_sessionstart(session):
    global _PREVIOUS_TRACE, _PREVIOUS_THREAD_TRACE, _TRACE_ACTIVE
    if _TRACE_ACTIVE:
        return
    _TRACE_ACTIVE = True
    _EXECUTED_LINES.clear()
    _PREVIOUS_TRACE = sys.gettrace()
    _PREVIOUS_THREAD_TRACE = threading.gettrace()
    sys.settrace(_trace)
    threading.settrace(_trace)


def pytest_sessionfinish(session, exitstatus):
    global _TRACE_ACTIVE
    if not _TRACE_ACTIVE:
        return
    _TRACE_ACTIVE = False
    sys.settrace(_PREVIOUS_TRACE)
    threading.settrace(_PREVIOUS_THREAD_TRACE)
    _report_coverage(session)


def _report_coverage(session) -> None:
    terminal = session.config.pluginmanager.get_plugin("terminalreporter")
    write_line = terminal.write_line if terminal else print

    total, covered = 0, 0
    rows = []
    for path in sorted(_CANDIDATE_LINES):
        candidates = _CANDIDATE_LINES[path]
        if not candidates:
            continue
        hit = _EXECUTED_LINES.get(path, set()) & candidates
        total += len(candidates)
        covered += len(hit)
        rows.append((path.relative_to(_ROOT_DIR), len(candidates), len(candidates) - len(hit)))

    if not rows:
        return
    write_line("")
    write_line("Coverage summary for 'archcrypt':")
    header = f"{'Name':<40} {'Stmts':>6} {'Miss':>6} {'Cover':>7}"
    write_line(header)
    write_line("-" * len(header))
    for name, stmts, miss in rows:
        write_line(f"{str(name):<40} {stmts:>6} {miss:>6} {(stmts - miss) / stmts * 100.0:>6.1f}%")
    write_line("-" * len(header))
    write_line(f"{'TOTAL':<40} {total:>6} {total - covered:>6} {covered / total * 100.0:>6.1f}%")
