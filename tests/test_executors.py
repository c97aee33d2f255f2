"""
Executor tests.

Each backend runs real snippets inside a pytest ``tmp_path`` standing in for
the scratch directory.  Compile-then-run is exercised with a stand-in
compiler written in Python so that it runs without gcc; the real
toolchains are covered by tests that skip when the binary is missing.
"""

from __future__ import annotations

import ast
import asyncio
import sys
import time
from typing import List, Tuple

import pytest

from polyexec.errors import SpawnError
from polyexec.executor import (
    BashExecutor,
    CompiledExecutor,
    CppExecutor,
    JavaScriptExecutor,
    PythonExecutor,
    SandboxExecutor,
)
from polyexec.executor.sandbox_worker import SandboxPolicyError, check_policy
from polyexec.scratch import TemporaryArtifact

from conftest import requires


# Stand-in "compiler": turns a Python source file into an executable script.
FAKE_COMPILE = (
    "import sys\n"
    "src, out = sys.argv[1], sys.argv[2]\n"
    "body = open(src).read()\n"
    "if 'syntax error' in body:\n"
    "    sys.stderr.write(src + ':1: error: expected declaration')\n"
    "    sys.exit(1)\n"
    "open(out, 'w').write(body)\n"
)


class FakeCompiledExecutor(CompiledExecutor):
    source_suffix = ".fake"

    def __init__(self) -> None:
        super().__init__(sys.executable)

    def compile_args(self, pair: TemporaryArtifact) -> List[str]:
        return [sys.executable, "-c", FAKE_COMPILE, str(pair.source_path), str(pair.binary_path)]

    def run_args(self, pair: TemporaryArtifact) -> List[str]:
        return [sys.executable, str(pair.binary_path)]


def run(coro):
    return asyncio.run(coro)


class Recorder:
    def __init__(self) -> None:
        self.chunks: List[Tuple[str, str]] = []

    def __call__(self, stream: str, data: str) -> None:
        self.chunks.append((stream, data))

    def text(self, stream: str) -> str:
        return "".join(data for name, data in self.chunks if name == stream)


# --- sandbox -----------------------------------------------------------------


def sandbox(code: str, workdir, timeout_ms: int = 5000, sink=None, **kwargs):
    executor = SandboxExecutor(**kwargs)
    return run(executor.execute(workdir, code, timeout_ms, sink or Recorder()))


def test_sandbox_print_and_tail_expression(tmp_path):
    sink = Recorder()
    outcome = sandbox("print('a', 'b', sep='-')\n[1, 2][1] * 21", sink=sink, workdir=tmp_path)
    assert outcome.exit_code == 0
    assert outcome.stdout == "a-b\n42\n"
    assert sink.text("stdout") == "a-b\n42\n"


def test_sandbox_none_tail_is_not_echoed(tmp_path):
    outcome = sandbox("x = [3, 1, 2]\nx.sort()", workdir=tmp_path)
    assert outcome.exit_code == 0
    assert outcome.stdout == ""


def test_sandbox_allowed_import_and_classes(tmp_path):
    code = (
        "import math\n"
        "from collections import Counter\n"
        "class Point:\n"
        "    def __init__(self, x):\n"
        "        self.x = x\n"
        "print(math.sqrt(81), Counter('aab')['a'], Point(5).x)\n"
    )
    outcome = sandbox(code, workdir=tmp_path)
    assert outcome.stderr == ""
    assert outcome.stdout == "9.0 2 5\n"


def test_sandbox_output_is_utf8(tmp_path):
    outcome = sandbox("print('caf\\u00e9 \\u2713')", workdir=tmp_path)
    assert outcome.stdout == "café ✓\n"


def test_sandbox_blocks_imports_and_builtins(tmp_path):
    for code in ("import os", "import string", "from importlib import import_module"):
        outcome = sandbox(code, workdir=tmp_path)
        assert outcome.exit_code == 1
        assert "not allowed" in outcome.stderr

    no_open = sandbox("open('/etc/passwd')", workdir=tmp_path)
    assert no_open.exit_code == 1
    assert "NameError" in no_open.stderr


@pytest.mark.parametrize(
    "code",
    [
        "().__class__",
        "x = __builtins__",
        "g = (i for i in [1])\ng.gi_frame",
        "'{0.__class__}'.format(1)",
        "f = Formatter()\nsubs = f.get_field('0.__subclasses__', (object,), {})[0]()",
        "f = Formatter()\nf.vformat('{0.__class__}', (1,), {})",
        "f = Formatter()\nf.convert_field(1, 'r')",
    ],
)
def test_sandbox_policy_rejections(code):
    with pytest.raises(SandboxPolicyError):
        check_policy(ast.parse(code))


def test_sandbox_policy_error_is_reported(tmp_path):
    code = (
        "f = Formatter()\n"
        "hit = f.get_field('0.__init__.__globals__', (object,), {})[0]\n"
        "print('pid', hit['getpid']())"
    )
    sink = Recorder()
    outcome = sandbox(code, sink=sink, workdir=tmp_path)
    assert outcome.exit_code == 1
    assert outcome.stdout == ""
    assert outcome.stderr.startswith("PolicyError")
    assert "get_field" in outcome.stderr
    assert "(line 2)" in outcome.stderr


def test_sandbox_reports_exceptions_with_line(tmp_path):
    sink = Recorder()
    outcome = sandbox("print('before')\nx = 1\nraise ValueError('boom')", sink=sink, workdir=tmp_path)
    assert outcome.exit_code == 1
    assert outcome.stdout == "before\n"
    assert outcome.stderr == "ValueError: boom (line 3)"
    assert sink.text("stderr") == "ValueError: boom (line 3)"


def test_sandbox_syntax_error(tmp_path):
    outcome = sandbox("loop forever", workdir=tmp_path)
    assert outcome.exit_code == 1
    assert outcome.stderr.startswith("SyntaxError")


def test_sandbox_deadline_stops_infinite_loop(tmp_path):
    started = time.monotonic()
    outcome = sandbox("def spin():\n    while True:\n        pass\nspin()", timeout_ms=500, workdir=tmp_path)
    elapsed = time.monotonic() - started
    assert outcome.timed_out is True
    assert outcome.exit_code != 0
    assert "timed out after 500 ms" in outcome.stderr
    assert elapsed < 1.5


def test_sandbox_deadline_stops_long_c_calls_without_blocking_the_loop(tmp_path):
    async def scenario():
        gaps: List[float] = []
        done = asyncio.Event()

        async def heartbeat() -> None:
            last = time.monotonic()
            while not done.is_set():
                await asyncio.sleep(0.05)
                now = time.monotonic()
                gaps.append(now - last)
                last = now

        beat = asyncio.create_task(heartbeat())
        started = time.monotonic()
        outcome = await SandboxExecutor().execute(tmp_path, "sum(range(3 * 10 ** 8))", 500)
        elapsed = time.monotonic() - started
        done.set()
        await beat
        return outcome, elapsed, max(gaps)

    outcome, elapsed, worst_gap = run(scenario())
    assert outcome.timed_out is True
    assert elapsed < 1.5
    assert worst_gap < 0.5


def test_sandbox_output_is_capped(tmp_path):
    outcome = sandbox("print('x' * 100)", workdir=tmp_path, max_output_bytes=10)
    assert outcome.exit_code == 0
    assert outcome.stdout.startswith("x" * 10)
    assert "[output truncated]" in outcome.stdout


def test_sandbox_allowlist_is_configurable(tmp_path):
    outcome = sandbox("import math\nmath.pi", workdir=tmp_path, allowed_modules=["json"])
    assert outcome.exit_code == 1
    assert "Import 'math' is not allowed" in outcome.stderr


# --- interpreters --------------------------------------------------------------


def test_python_executor_streams_and_reports_exit_code(tmp_path):
    sink = Recorder()
    code = "import sys\nprint('hello')\nsys.stderr.write('warn\\n')\nsys.exit(2)"
    outcome = run(PythonExecutor(sys.executable).execute(tmp_path, code, 5000, sink))
    assert outcome.exit_code == 2
    assert outcome.stdout == "hello\n"
    assert outcome.stderr == "warn\n"
    assert sink.text("stdout") == "hello\n"
    assert outcome.duration_ms >= 0


def test_python_executor_uses_scratch_dir_as_cwd(tmp_path):
    code = "open('note.txt', 'w').write('x')\nimport os\nprint(os.getcwd())"
    outcome = run(PythonExecutor(sys.executable).execute(tmp_path, code, 5000))
    assert outcome.stdout.strip() == str(tmp_path)
    assert (tmp_path / "note.txt").exists()


def test_python_executor_kills_on_timeout(tmp_path):
    started = time.monotonic()
    outcome = run(PythonExecutor(sys.executable).execute(tmp_path, "import time\ntime.sleep(30)", 500))
    elapsed = time.monotonic() - started
    assert outcome.timed_out is True
    assert outcome.exit_code == -9
    assert "timed out after 500 ms" in outcome.stderr
    assert elapsed < 1.0 + 0.5


def test_python_executor_keeps_partial_output_on_timeout(tmp_path):
    code = "import time\nprint('tick')\ntime.sleep(30)"
    outcome = run(PythonExecutor(sys.executable).execute(tmp_path, code, 1000))
    assert outcome.timed_out is True
    assert outcome.stdout == "tick\n"


def test_missing_interpreter_raises_spawn_error(tmp_path):
    with pytest.raises(SpawnError) as excinfo:
        run(PythonExecutor("polyexec-missing-python").execute(tmp_path, "print(1)", 1000))
    assert excinfo.value.command == "polyexec-missing-python"


def test_interpreter_output_is_capped(tmp_path):
    executor = PythonExecutor(sys.executable, max_output_bytes=100)
    outcome = run(executor.execute(tmp_path, "print('y' * 100000)", 5000))
    assert outcome.exit_code == 0
    assert len(outcome.stdout) < 200
    assert outcome.stdout.endswith("[output truncated]\n")


@requires("bash")
def test_bash_executor(tmp_path):
    outcome = run(BashExecutor().execute(tmp_path, "echo 'test bash'\nexit 4", 5000))
    assert outcome.exit_code == 4
    assert "test bash" in outcome.stdout


@requires("bash")
def test_bash_timeout_kills_background_children(tmp_path):
    started = time.monotonic()
    outcome = run(BashExecutor().execute(tmp_path, "sleep 30 &\nsleep 30", 500))
    assert outcome.timed_out is True
    assert time.monotonic() - started < 2.0


@requires("node")
def test_javascript_executor(tmp_path):
    outcome = run(JavaScriptExecutor().execute(tmp_path, "console.log(6 * 7)", 10000))
    assert outcome.exit_code == 0
    assert outcome.stdout.strip() == "42"


# --- compile then run ------------------------------------------------------------


def test_compiled_executor_runs_binary(tmp_path):
    sink = Recorder()
    outcome = run(FakeCompiledExecutor().execute(tmp_path, "print('compiled ok')", 10000, sink))
    assert outcome.stage == "run"
    assert outcome.exit_code == 0
    assert outcome.stdout == "compiled ok\n"
    assert sink.text("stdout") == "compiled ok\n"
    assert not (tmp_path / "main.fake").exists()
    assert not (tmp_path / "main.bin").exists()


def test_compiled_executor_stops_on_compile_error(tmp_path, spawn_spy):
    sink = Recorder()
    outcome = run(FakeCompiledExecutor().execute(tmp_path, "syntax error !!!", 10000, sink))
    assert outcome.stage == "compile"
    assert outcome.exit_code != 0
    assert "expected declaration" in outcome.stderr
    assert "expected declaration" in sink.text("stderr")
    assert len(spawn_spy) == 1
    assert not (tmp_path / "main.fake").exists()


class SlowCompiledExecutor(FakeCompiledExecutor):
    def compile_args(self, pair: TemporaryArtifact) -> List[str]:
        return [sys.executable, "-c", "import time\ntime.sleep(30)"]


def test_compiler_gets_half_the_budget(tmp_path, spawn_spy):
    started = time.monotonic()
    outcome = run(SlowCompiledExecutor().execute(tmp_path, "print('never')", 1000))
    elapsed = time.monotonic() - started

    assert outcome.stage == "compile"
    assert outcome.timed_out is True
    assert "timed out after 500 ms" in outcome.stderr
    assert 0.4 <= elapsed < 0.9
    assert len(spawn_spy) == 1
    assert list(tmp_path.iterdir()) == []


def test_compiled_executor_cleans_up_after_run_timeout(tmp_path):
    outcome = run(FakeCompiledExecutor().execute(tmp_path, "import time\ntime.sleep(30)", 2000))
    assert outcome.timed_out is True
    assert outcome.stage == "run"
    assert list(tmp_path.iterdir()) == []


def test_compiled_executor_cleans_up_on_spawn_error(tmp_path):
    executor = CppExecutor("polyexec-missing-cxx")
    with pytest.raises(SpawnError):
        run(executor.execute(tmp_path, "int main() {}", 1000))
    assert list(tmp_path.iterdir()) == []


@requires("g++")
def test_cpp_executor(tmp_path):
    code = "#include <iostream>\nint main() { std::cout << \"hi from c++\" << std::endl; }\n"
    outcome = run(CppExecutor().execute(tmp_path, code, 30000))
    assert outcome.exit_code == 0
    assert outcome.stdout == "hi from c++\n"
