"""
Pytest configuration for MetaCC tests.

Features:
- Adds the repository root to the Python path so tests can import metacc
- Enables runtime type checking of public methods (METACC_TYPECHECK=1)
- Provides fake toolchains that report their tools as installed without
  spawning anything, and a recorder that stands in for subprocess.run

Tests that need a real compiler are marked `integration` and skipped when
none is on PATH.
"""
import os
import shutil
import subprocess
import sys
import time
from pathlib import Path
from unittest.mock import patch

import pytest

# Must be set before metacc is imported
os.environ["METACC_TYPECHECK"] = "1"

# Add parent directory to Python path so we can import metacc
parent_dir = Path(__file__).parent.parent
if str(parent_dir) not in sys.path:
    sys.path.insert(0, str(parent_dir))

from metacc import Driver, GNU, Clang, MSVC, ClangCL, TinyCC


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "pedantic: pedantic tests that verify edge cases (can be skipped with -m 'not pedantic')"
    )
    config.addinivalue_line(
        "markers", "regression_test: tests for previously fixed bugs"
    )
    config.addinivalue_line(
        "markers", "integration: tests that run a real compiler (skipped when none is installed)"
    )


SIMPLE_C_CODE = """
#include <stdio.h>

int main(void) {
    printf("Hello, World!\\n");
    return 0;
}
"""

SIMPLE_CPP_CODE = """
#include <iostream>

int main() {
    std::cout << "Hello, World!" << std::endl;
    return 0;
}
"""


class FakeToolsMixin:
    """Reports a tool as available when its name is in `installed`. Never spawns a process."""

    installed = frozenset()

    def command_available(self, command):
        return command is not None and Path(command).name in self.installed


class FakeGNU(FakeToolsMixin, GNU):
    installed = frozenset({"gcc", "g++", "ar", "ranlib"})


class FakeGNUWithoutRanlib(FakeToolsMixin, GNU):
    installed = frozenset({"gcc", "g++", "ar"})


class FakeGNUWithoutAr(FakeToolsMixin, GNU):
    installed = frozenset({"gcc", "g++"})


class FakeClang(FakeToolsMixin, Clang):
    installed = frozenset({"clang", "clang++", "ar", "ranlib"})


class FakeTinyCC(FakeToolsMixin, TinyCC):
    installed = frozenset({"tcc"})


class FakeMSVC(FakeToolsMixin, MSVC):
    installed = frozenset({"cl", "lib"})


class FakeClangCL(FakeToolsMixin, ClangCL):
    installed = frozenset({"clang-cl", "lib"})


class FakeRun:
    """Stands in for subprocess.run: records each command and returns a canned result.

    When create_outputs is set, a successful command creates the file named by
    -o / /Fo / /Fe / /OUT: (or the archive operand of `ar rcs`), like a real tool would.
    """

    def __init__(self, returncode: int = 0, stdout: str = "", stderr: str = "", create_outputs: bool = True):
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        self.create_outputs = create_outputs
        self.calls = []
        self.kwargs = []

    def __call__(self, cmd, **kwargs):
        self.calls.append(list(cmd))
        self.kwargs.append(kwargs)
        if self.create_outputs and self.returncode == 0:
            output = output_of(cmd)
            if output is not None:
                output.parent.mkdir(parents=True, exist_ok=True)
                output.touch()
        return subprocess.CompletedProcess(cmd, self.returncode, self.stdout, self.stderr)


def output_of(cmd):
    """Output file named in a command, or None."""
    if "-o" in cmd:
        return Path(cmd[cmd.index("-o") + 1])
    for arg in cmd:
        for prefix in ("/Fo", "/Fe", "/OUT:"):
            if arg.startswith(prefix):
                return Path(arg[len(prefix):])
    if "rcs" in cmd:
        return Path(cmd[cmd.index("rcs") + 1])
    return None


def write_source(path: Path, code: str = SIMPLE_C_CODE, age_seconds: float = 100) -> Path:
    """Write a source file with an mtime in the past, so anything built from it is newer."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(code)
    past = time.time() - age_seconds
    os.utime(path, (past, past))
    return path


@pytest.fixture
def fake_run():
    """Patch subprocess.run as seen by the Driver."""
    recorder = FakeRun()
    with patch("metacc._driver.subprocess.run", recorder):
        yield recorder


@pytest.fixture
def make_driver(tmp_path):
    """Factory for a Driver bound to one fake toolchain, writing under tmp_path/build."""
    def factory(toolchain=FakeGNU, **kwargs):
        kwargs.setdefault("output_dir", tmp_path / "build")
        return Driver(prefer=[toolchain], **kwargs)
    return factory


@pytest.fixture
def hello_c(tmp_path):
    return write_source(tmp_path / "hello.c")


@pytest.fixture
def hello_cpp(tmp_path):
    return write_source(tmp_path / "hello.cpp", SIMPLE_CPP_CODE)


def installed_compiler():
    """Name of a real C compiler on PATH, or None."""
    for name in ("clang", "gcc"):
        if shutil.which(name):
            return name
    return None


requires_compiler = pytest.mark.skipif(installed_compiler() is None, reason="No C compiler on PATH")
