"""MSVC environment bootstrap: locate Visual Studio and load vcvarsall.bat into the environment."""

import logging
import os
import subprocess
from abc import ABC, abstractmethod
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, MutableMapping, Optional

from ._type_check import typecheck_methods


# Default location of the Visual Studio Installer's vswhere utility.
VSWHERE_PATH = Path(
    os.environ.get("ProgramFiles(x86)", "C:\\Program Files (x86)"),
    "Microsoft Visual Studio", "Installer", "vswhere.exe",
)

# vswhere queries, tried in order until one reports a product path
VSWHERE_QUERIES = (
    ("-path", "-property", "productPath"),
    ("-latest", "-prerelease", "-property", "productPath"),
)

DEFAULT_MSVC_ARCH = "x64"


class BootstrapState(Enum):
    """Progress of an MSVC bootstrap. Terminal states are the last four."""

    NOT_PROBED = "not_probed"
    NEEDS_LOCATE = "needs_locate"
    LOCATED = "located"
    SCRIPT_RUN = "script_run"
    COMPILER_ALREADY_AVAILABLE = "compiler_already_available"
    COMPILER_AVAILABLE = "compiler_available"
    LOCATE_FAILED = "locate_failed"
    SCRIPT_FAILED = "script_failed"


class EnvironmentSink(ABC):
    """Destination for environment variables harvested from vcvarsall.bat."""

    @abstractmethod
    def merge(self, variables: Dict[str, str]) -> None:
        """Merge every pair into the environment."""


class ProcessEnvironmentSink(EnvironmentSink):
    """Writes into os.environ. The change lasts for the rest of the process."""

    def merge(self, variables: Dict[str, str]) -> None:
        for key, value in variables.items():
            os.environ[key] = value


class DictEnvironmentSink(EnvironmentSink):
    """Records merged variables in a plain dict instead of the process environment."""

    def __init__(self, target: Optional[MutableMapping[str, str]] = None):
        self.variables = target if target is not None else {}

    def merge(self, variables: Dict[str, str]) -> None:
        self.variables.update(variables)


def vcvarsall_command(vcvarsall: Path, arch: str = DEFAULT_MSVC_ARCH) -> str:
    """Build the cmd.exe command line that runs vcvarsall.bat and dumps the environment.
    The script runs through cmd.exe, so the path is quoted the cmd.exe way: wrapped in
    double quotes with embedded double quotes doubled. shlex quoting does not apply."""
    quoted = '"' + str(vcvarsall).replace('"', '""') + '"'
    return f"{quoted} {arch} >nul && set"


def parse_environment(output: str) -> Dict[str, str]:
    """Parse `set` output into a dict. Lines without '=' are skipped."""
    variables = {}
    for line in output.splitlines():
        key, sep, value = line.partition('=')
        if not sep:
            continue
        variables[key] = value
    return variables


def find_vcvarsall(product_path: Path) -> Optional[Path]:
    """Return vcvarsall.bat for a Visual Studio product path, or None if it is not on disk.
    devenv.exe lives at    <root>/Common7/IDE/devenv.exe
    vcvarsall.bat lives at <root>/VC/Auxiliary/Build/vcvarsall.bat"""
    install_root = Path(product_path).parent.parent.parent
    vcvarsall = install_root / "VC" / "Auxiliary" / "Build" / "vcvarsall.bat"
    return vcvarsall if vcvarsall.is_file() else None


@typecheck_methods
class MsvcBootstrap:
    """Makes an MSVC-style compiler reachable when it is not already on PATH.

    Runs at most once. Failure to locate Visual Studio or to run vcvarsall.bat is not
    an error: the bootstrap ends in a degraded state and the compiler stays unavailable.
    """

    def __init__(self, compiler_available: Callable[[], bool], env_sink: Optional[EnvironmentSink] = None,
                 arch: str = DEFAULT_MSVC_ARCH, vswhere_path: Path = VSWHERE_PATH, logger=None):
        self.compiler_available = compiler_available
        self.env_sink = env_sink if env_sink is not None else ProcessEnvironmentSink()
        self.arch = arch
        self.vswhere_path = Path(vswhere_path)
        self.logger = logger if logger is not None else logging.getLogger("metacc")
        self.state = BootstrapState.NOT_PROBED
        self.product_path: Optional[Path] = None
        self.vcvarsall: Optional[Path] = None
        self.patch: Dict[str, str] = {}

    def run(self) -> BootstrapState:
        """Drive the bootstrap to a terminal state and return it."""
        if self.state is not BootstrapState.NOT_PROBED:
            return self.state

        # Probing spawns processes, so a reachable compiler stops here
        if self.compiler_available():
            self.state = BootstrapState.COMPILER_ALREADY_AVAILABLE
            return self.state

        self.state = BootstrapState.NEEDS_LOCATE
        for query in VSWHERE_QUERIES:
            product = self.run_vswhere(*query)
            if product:
                self.product_path = Path(product)
                break
        if self.product_path is None:
            self.logger.warning("MSVC bootstrap: no Visual Studio installation found")
            self.state = BootstrapState.LOCATE_FAILED
            return self.state

        self.vcvarsall = find_vcvarsall(self.product_path)
        if self.vcvarsall is None:
            self.logger.warning(f"MSVC bootstrap: vcvarsall.bat not found for {self.product_path}")
            self.state = BootstrapState.LOCATE_FAILED
            return self.state
        self.state = BootstrapState.LOCATED
        self.logger.info(f"MSVC bootstrap: using {self.vcvarsall}")

        output = self.run_vcvarsall(self.vcvarsall)
        if output is None:
            self.logger.warning(f"MSVC bootstrap: {self.vcvarsall} failed")
            self.state = BootstrapState.SCRIPT_FAILED
            return self.state
        self.state = BootstrapState.SCRIPT_RUN

        self.patch = parse_environment(output)
        self.env_sink.merge(self.patch)
        self.state = BootstrapState.COMPILER_AVAILABLE
        self.logger.info(f"MSVC bootstrap: merged {len(self.patch)} environment variables")
        return self.state

    def run_vswhere(self, *args: str) -> Optional[str]:
        """Run vswhere.exe and return its trimmed stdout.
        Returns: None if vswhere is absent, fails to launch, exits non-zero, or prints nothing"""
        if not self.vswhere_path.is_file():
            return None
        try:
            result = subprocess.run(
                [str(self.vswhere_path), *args],
                capture_output=True,
                text=True,
                check=False
            )
        except OSError:
            return None
        if result.returncode != 0:
            return None
        path = result.stdout.strip()
        return path or None

    def run_vcvarsall(self, vcvarsall: Path) -> Optional[str]:
        """Run vcvarsall.bat through the shell (cmd.exe on Windows) and return the `set` output,
        or None on failure."""
        try:
            result = subprocess.run(
                vcvarsall_command(vcvarsall, self.arch),
                shell=True,
                capture_output=True,
                text=True,
                check=False
            )
        except OSError:
            return None
        if result.returncode != 0:
            return None
        return result.stdout
