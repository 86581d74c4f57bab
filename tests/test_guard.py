import os
import signal
import sys

import pytest

from conftest import run_child, spawn_child
from single_instance import (
    AlreadyEnteredError,
    IdentifierError,
    current_guard,
    enter_single_instance,
    exit_single_instance,
)
from single_instance import guard

ENTER_AND_REPORT = """
    import sys
    from single_instance import enter_single_instance, exit_single_instance
    try:
        print(enter_single_instance(sys.argv[1], lock_dir=sys.argv[2]))
    finally:
        exit_single_instance()
"""

ENTER_AND_WAIT = """
    import sys
    from single_instance import enter_single_instance
    print(enter_single_instance(sys.argv[1], lock_dir=sys.argv[2]), flush=True)
    sys.stdin.readline()
"""


def _enter_in_child(identifier, lock_dir):
    proc = run_child(ENTER_AND_REPORT, identifier, lock_dir)
    assert proc.returncode == 0, proc.stderr
    return proc.stdout.strip()


def test_enter_and_exit(lock_dir):
    assert enter_single_instance("job-42", lock_dir=lock_dir) is True
    assert current_guard().identifier == "job-42"
    exit_single_instance()
    assert current_guard() is None


def test_exit_without_enter_is_noop():
    exit_single_instance()
    exit_single_instance()
    assert current_guard() is None


def test_exit_twice_after_enter(lock_dir):
    assert enter_single_instance("job-42", lock_dir=lock_dir)
    exit_single_instance()
    exit_single_instance()
    assert enter_single_instance("job-42", lock_dir=lock_dir)


def test_second_enter_fails_fast(lock_dir):
    assert enter_single_instance("job-42", lock_dir=lock_dir)
    with pytest.raises(AlreadyEnteredError):
        enter_single_instance("job-42", lock_dir=lock_dir)
    with pytest.raises(AlreadyEnteredError):
        enter_single_instance("job-43", lock_dir=lock_dir)
    assert current_guard().identifier == "job-42"


def test_unresolvable_identifier_is_a_configuration_error(monkeypatch, lock_dir):
    monkeypatch.setattr(guard, "resolve_caller_identifier", lambda *a, **kw: None)
    with pytest.raises(IdentifierError):
        enter_single_instance(lock_dir=lock_dir)
    with pytest.raises(IdentifierError):
        enter_single_instance("", lock_dir=lock_dir)
    assert current_guard() is None
    assert not os.path.exists(lock_dir)


def test_identifier_defaults_to_calling_script(lock_dir):
    assert enter_single_instance(lock_dir=lock_dir)
    found = current_guard().identifier
    assert os.path.normcase(os.path.abspath(found)) == os.path.normcase(os.path.abspath(__file__))


def test_contention_across_processes(lock_dir):
    assert enter_single_instance("job-42", lock_dir=lock_dir)
    assert _enter_in_child("job-42", lock_dir) == "False"
    assert _enter_in_child("job-7", lock_dir) == "True"
    exit_single_instance()
    assert _enter_in_child("job-42", lock_dir) == "True"


def test_three_process_scenario(lock_dir):
    a = spawn_child(ENTER_AND_WAIT, "job-42", lock_dir)
    try:
        assert a.stdout.readline().strip() == "True"
        assert _enter_in_child("job-42", lock_dir) == "False"
        a.communicate(input="\n", timeout=30)
        assert a.returncode == 0
        assert _enter_in_child("job-42", lock_dir) == "True"
    finally:
        if a.poll() is None:
            a.kill()
            a.wait()


@pytest.mark.skipif(sys.platform == "win32", reason="SIGKILL")
def test_crashed_holder_is_reclaimed(lock_dir):
    a = spawn_child(ENTER_AND_WAIT, "job-42", lock_dir)
    try:
        assert a.stdout.readline().strip() == "True"
        assert not enter_single_instance("job-42", lock_dir=lock_dir)
        os.kill(a.pid, signal.SIGKILL)
        a.wait(timeout=30)
    finally:
        if a.poll() is None:
            a.kill()
            a.wait()
    assert enter_single_instance("job-42", lock_dir=lock_dir)


def test_script_without_identifier_in_subprocess(tmp_path, lock_dir):
    script = tmp_path / "job.py"
    script.write_text(
        "import sys\n"
        "from single_instance import current_guard, enter_single_instance\n"
        "print(enter_single_instance(lock_dir=sys.argv[1]))\n"
        "print(current_guard().identifier)\n"
    )
    proc = run_child(
        "import runpy, sys; sys.argv = sys.argv[1:]; runpy.run_path(sys.argv[0], run_name='__main__')",
        str(script), lock_dir,
    )
    assert proc.returncode == 0, proc.stderr
    acquired, identifier = proc.stdout.split()
    assert acquired == "True"
    assert os.path.samefile(identifier, str(script))


def test_relative_script_path_is_made_absolute(monkeypatch, lock_dir):
    monkeypatch.setattr(guard, "resolve_caller_identifier", lambda *a, **kw: "main.py")
    assert enter_single_instance(lock_dir=lock_dir)
    assert current_guard().identifier == os.path.abspath("main.py")


def test_no_script_frame_in_subprocess_is_a_configuration_error(lock_dir):
    proc = run_child(
        """
        import os, sys
        from single_instance import IdentifierError, enter_single_instance
        try:
            enter_single_instance(lock_dir=sys.argv[1])
        except IdentifierError:
            print("IdentifierError")
        print(os.path.exists(sys.argv[1]))
        """,
        lock_dir,
    )
    assert proc.returncode == 0, proc.stderr
    assert proc.stdout.split() == ["IdentifierError", "False"]
