import sys

import pytest

from dbbackup.errors import CommandError
from dbbackup.runner import ProcessRunner

SESSION_SCRIPT = """
import sys
while True:
    line = sys.stdin.readline()
    if not line:
        break
    line = line.rstrip("\\n")
    if line.startswith("SELECT '"):
        print(line[len("SELECT '"):-2], flush=True)
    elif line.startswith("QUIT"):
        print("ERROR 2013: gone", flush=True)
        sys.exit(3)
    else:
        print("got " + line, flush=True)
"""


def test_run_captures_merged_output_and_status():
    result = ProcessRunner().run(["sh", "-c", "echo out; echo err >&2; exit 3"])

    assert result.returncode == 3
    assert result.output.splitlines() == ["out", "err"]
    assert not result.ok
    with pytest.raises(CommandError) as excinfo:
        result.check("demo")
    assert excinfo.value.returncode == 3
    assert "exit status 3" in str(excinfo.value)


def test_missing_binary_returns_127():
    result = ProcessRunner().run(["/nonexistent/dbbackup-tool", "--help"])

    assert result.returncode == 127
    assert not result.timed_out


def test_input_text_is_fed_to_stdin():
    result = ProcessRunner().run(["cat"], input_text="hello\nworld\n")

    assert result.ok
    assert result.output == "hello\nworld"


def test_timeout_kills_the_child():
    result = ProcessRunner(timeout_s=0.2).run(["sleep", "5"])

    assert result.timed_out
    assert not result.ok
    with pytest.raises(CommandError, match="timed out"):
        result.check("sleep")


def test_interactive_session_waits_for_marker():
    session = ProcessRunner().spawn([sys.executable, "-c", SESSION_SCRIPT])
    try:
        assert session.execute("FLUSH TABLES WITH READ LOCK", timeout=10) == ["got FLUSH TABLES WITH READ LOCK;"]
        assert session.execute("UNLOCK TABLES;", timeout=10) == ["got UNLOCK TABLES;"]
        assert session.alive
    finally:
        assert session.close() == 0
    assert not session.alive


def test_interactive_session_reports_exit():
    session = ProcessRunner().spawn([sys.executable, "-c", SESSION_SCRIPT])

    with pytest.raises(CommandError) as excinfo:
        session.execute("QUIT", timeout=10)

    assert excinfo.value.returncode == 3
    session.close()


def test_spawn_missing_binary_raises():
    with pytest.raises(CommandError):
        ProcessRunner().spawn(["/nonexistent/mysql"])
