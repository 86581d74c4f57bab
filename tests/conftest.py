import os
import subprocess
import sys
import textwrap
from types import SimpleNamespace

import pytest

from single_instance import exit_single_instance

REPO_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))


@pytest.fixture
def lock_dir(tmp_path):
    return str(tmp_path / "locks")


@pytest.fixture(autouse=True)
def _release_guard():
    yield
    exit_single_instance()


def make_stack(*filenames):
    """Build a fake frame chain; the first filename is the innermost frame."""
    frame = None
    for name in reversed(filenames):
        frame = SimpleNamespace(f_code=SimpleNamespace(co_filename=name), f_back=frame)
    return frame


def child_env():
    env = dict(os.environ)
    env["PYTHONPATH"] = os.pathsep.join(p for p in (REPO_ROOT, env.get("PYTHONPATH")) if p)
    return env


def run_child(code, *args, timeout=30):
    """Run a Python snippet in a fresh interpreter; returns CompletedProcess."""
    return subprocess.run(
        [sys.executable, "-c", textwrap.dedent(code), *args],
        capture_output=True, text=True, timeout=timeout, env=child_env(),
    )


def spawn_child(code, *args):
    return subprocess.Popen(
        [sys.executable, "-c", textwrap.dedent(code), *args],
        stdin=subprocess.PIPE, stdout=subprocess.PIPE, stderr=subprocess.PIPE,
        text=True, env=child_env(),
    )
