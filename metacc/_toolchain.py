"""
Compiler toolchains for MetaCC.

Provides the Toolchain base class and one subclass per supported vendor. A
toolchain knows its executables, its flag table, and how to lay out the
argument vector for compiling, linking and archiving. Building a command is
pure: nothing is executed until the Driver runs it.
"""

import os
import subprocess
import sys
from abc import ABC, abstractmethod
from enum import Enum
from pathlib import Path
from typing import FrozenSet, List, Optional, Sequence, Union

from ._errors import ConfigurationError
from ._flags import FlagTable, GNU_FLAGS, CLANG_FLAGS, MSVC_FLAGS, CLANG_CL_FLAGS, TINYCC_FLAGS
from ._msvc import MsvcBootstrap, BootstrapState, EnvironmentSink, DEFAULT_MSVC_ARCH
from ._type_check import typecheck_methods

# A single argument vector for subprocess.run
Command = List[str]

PathLike = Union[str, os.PathLike]

_UNPROBED = object()

_CXX_EXTENSIONS = {".cc", ".cpp", ".cxx", ".c++", ".cp", ".mm"}


class Language(Enum):
    """Source language, selects the C or C++ compiler executable."""

    C = "c"
    CXX = "cxx"

    @classmethod
    def from_path(cls, path: PathLike) -> Optional["Language"]:
        """Guess the language from a source file extension. None if it is not a source file."""
        suffix = Path(path).suffix.lower()
        if suffix == ".c":
            return cls.C
        if suffix in _CXX_EXTENSIONS:
            return cls.CXX
        return None


class OutputKind(Enum):
    """What a build step produces."""

    OBJECTS = "objects"
    EXECUTABLE = "executable"
    SHARED = "shared"
    STATIC = "static"


@typecheck_methods
class Toolchain(ABC):
    """Base class for compiler toolchains.

    Subclasses set their executables in __init__ via resolve_command and
    provide the vendor-specific command layout.
    """

    kind = None  # e.g. "gnu", "msvc"; used as xflags key and in configuration
    flags: FlagTable = None

    def __init__(self, search_paths: Sequence[PathLike] = ()):
        self.search_paths = [Path(p) for p in search_paths]
        self.c: Optional[str] = None
        self.cxx: Optional[str] = None
        self._archiver_name: Optional[str] = None
        self._indexer_name: Optional[str] = None
        self._archiver = _UNPROBED
        self._indexer = _UNPROBED

    def __repr__(self):
        return f"{type(self).__name__}(c={self.c!r}, cxx={self.cxx!r})"

    @property
    def languages(self) -> FrozenSet[Language]:
        return frozenset({Language.C, Language.CXX})

    def available(self) -> bool:
        """True if the primary compiler can be launched."""
        return self.command_available(self.c)

    def command_available(self, command: Optional[str]) -> bool:
        """True if command can be launched. The exit status is ignored; only a
        launch failure (not found, not executable) counts as unavailable."""
        if command is None:
            return False
        try:
            subprocess.run(
                [command, "--version"],
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                check=False
            )
        except OSError:
            return False
        return True

    def version_banner(self) -> str:
        """Output of `<compiler> --version`."""
        result = subprocess.run(
            [self.c, "--version"],
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            check=False
        )
        return result.stdout

    def resolve_command(self, name: str) -> str:
        """Return the full path to name in the first search path that has it as an
        executable file, otherwise name unchanged so PATH is used at execution time."""
        for directory in self.search_paths:
            for candidate in (directory / name, directory / f"{name}.exe"):
                if candidate.is_file() and os.access(candidate, os.X_OK):
                    return str(candidate)
        return name

    @property
    def archiver(self) -> Optional[str]:
        """Static library tool, probed once on first use. None if it cannot be launched."""
        if self._archiver is _UNPROBED:
            available = self.command_available(self._archiver_name)
            self._archiver = self._archiver_name if available else None
        return self._archiver

    @property
    def indexer(self) -> Optional[str]:
        """Archive index tool (ranlib), probed once on first use. None if absent."""
        if self._indexer is _UNPROBED:
            available = self.command_available(self._indexer_name)
            self._indexer = self._indexer_name if available else None
        return self._indexer

    def compiler_for(self, language: Language) -> str:
        """Return the compiler executable for a language.
        Raises:  ConfigurationError if this toolchain does not support the language"""
        if language not in self.languages:
            raise ConfigurationError(f"{type(self).__name__} does not support {language.value} sources")
        return self.c if language is Language.C else self.cxx

    def default_extension(self, output_kind: OutputKind) -> str:
        """Conventional file extension (with leading dot, or '') for an output kind on this host."""
        windows = sys.platform in ("win32", "cygwin")
        if output_kind is OutputKind.OBJECTS:
            return ".o"
        if output_kind is OutputKind.STATIC:
            return ".a"
        if output_kind is OutputKind.SHARED:
            if windows:
                return ".dll"
            return ".dylib" if sys.platform == "darwin" else ".so"
        if output_kind is OutputKind.EXECUTABLE:
            return ".exe" if windows else ""
        raise ValueError(f"unknown output kind: {output_kind!r}")

    @abstractmethod
    def command(self, inputs: Sequence[PathLike], output: PathLike, native_flags: Sequence[str],
                include_paths: Sequence[PathLike] = (), definitions: Sequence[str] = (),
                libs: Sequence[str] = (), lib_paths: Sequence[PathLike] = (),
                language: Language = Language.C) -> Command:
        """Single compiler-driver invocation. Whether it compiles only or also links
        is decided by the already-translated native flags."""

    @abstractmethod
    def compile(self, inputs: Sequence[PathLike], output: PathLike, native_flags: Sequence[str],
                include_paths: Sequence[PathLike] = (), definitions: Sequence[str] = (),
                language: Language = Language.C) -> Command:
        """Compile-only command. Never carries library arguments."""

    @abstractmethod
    def link(self, objects: Sequence[PathLike], output: PathLike, native_flags: Sequence[str],
             libs: Sequence[str] = (), lib_paths: Sequence[PathLike] = (),
             language: Language = Language.C) -> Command:
        """Link command. Executable vs. shared library is decided by the native flags."""

    @abstractmethod
    def archive(self, objects: Sequence[PathLike], output: PathLike) -> List[Command]:
        """Commands that create (and, where supported, index) a static library."""


def _strs(paths: Sequence[PathLike]) -> List[str]:
    return [os.fspath(p) for p in paths]


@typecheck_methods
class GNU(Toolchain):
    """GNU-compatible toolchain (gcc)."""

    kind = "gnu"
    flags = GNU_FLAGS

    def __init__(self, search_paths: Sequence[PathLike] = ()):
        super().__init__(search_paths)
        self.c = self.resolve_command("gcc")
        self.cxx = self.resolve_command("g++")
        self._archiver_name = self.resolve_command("ar")
        self._indexer_name = self.resolve_command("ranlib")

    def command(self, inputs, output, native_flags, include_paths=(), definitions=(),
                libs=(), lib_paths=(), language=Language.C):
        cc = self.compiler_for(language)
        inc_flags = [f"-I{p}" for p in _strs(include_paths)]
        def_flags = [f"-D{d}" for d in definitions]
        link_mode = "-c" not in native_flags
        lib_path_flags = [f"-L{p}" for p in _strs(lib_paths)] if link_mode else []
        lib_flags = [f"-l{lib}" for lib in libs] if link_mode else []
        return [cc, *native_flags, *inc_flags, *def_flags, *_strs(inputs),
                *lib_path_flags, *lib_flags, "-o", os.fspath(output)]

    def compile(self, inputs, output, native_flags, include_paths=(), definitions=(), language=Language.C):
        flags = list(native_flags)
        if "-c" not in flags:
            flags.append("-c")
        return self.command(inputs, output, flags, include_paths, definitions, language=language)

    def link(self, objects, output, native_flags, libs=(), lib_paths=(), language=Language.C):
        flags = [f for f in native_flags if f != "-c"]
        return self.command(objects, output, flags, libs=libs, lib_paths=lib_paths, language=language)

    def archive(self, objects, output):
        archiver = self.archiver or self._archiver_name
        commands = [[archiver, "rcs", os.fspath(output), *_strs(objects)]]
        if self.indexer:
            commands.append([self.indexer, os.fspath(output)])
        return commands


@typecheck_methods
class Clang(GNU):
    """Clang toolchain. Same command layout as GNU, its own flag table."""

    kind = "clang"
    flags = CLANG_FLAGS

    def __init__(self, search_paths: Sequence[PathLike] = ()):
        super().__init__(search_paths)
        self.c = self.resolve_command("clang")
        self.cxx = self.resolve_command("clang++")


@typecheck_methods
class TinyCC(GNU):
    """TinyCC toolchain (tcc). Compiles C only and archives through `tcc -ar`."""

    kind = "tinycc"
    flags = TINYCC_FLAGS

    def __init__(self, search_paths: Sequence[PathLike] = ()):
        super().__init__(search_paths)
        self.c = self.resolve_command("tcc")
        self.cxx = None
        self._archiver_name = self.c
        self._indexer_name = None

    @property
    def languages(self):
        return frozenset({Language.C})

    def archive(self, objects, output):
        return [[self.c, "-ar", "rcs", os.fspath(output), *_strs(objects)]]


@typecheck_methods
class MSVC(Toolchain):
    """Microsoft Visual C++ toolchain.

    When cl is not reachable at construction time, MsvcBootstrap looks for a
    Visual Studio installation and loads its vcvarsall.bat environment.
    """

    kind = "msvc"
    flags = MSVC_FLAGS
    bootstrap_class = MsvcBootstrap

    def __init__(self, search_paths: Sequence[PathLike] = (), env_sink: Optional[EnvironmentSink] = None,
                 msvc_arch: str = DEFAULT_MSVC_ARCH, logger=None, cl_command: str = "cl"):
        super().__init__(search_paths)
        compiler = self.resolve_command(cl_command)
        self.c = compiler
        self.cxx = compiler
        self._archiver_name = self.resolve_command("lib")
        self.bootstrap = self.bootstrap_class(self.available, env_sink=env_sink, arch=msvc_arch, logger=logger)
        self.bootstrap.run()

    @property
    def bootstrap_state(self) -> BootstrapState:
        return self.bootstrap.state

    def version_banner(self) -> str:
        """cl prints its banner to stderr when invoked with no arguments."""
        result = subprocess.run(
            [self.c],
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            check=False
        )
        return result.stdout

    def default_extension(self, output_kind: OutputKind) -> str:
        """MSVC always targets Windows, whatever the host."""
        extensions = {
            OutputKind.OBJECTS: ".obj",
            OutputKind.STATIC: ".lib",
            OutputKind.SHARED: ".dll",
            OutputKind.EXECUTABLE: ".exe",
        }
        if output_kind not in extensions:
            raise ValueError(f"unknown output kind: {output_kind!r}")
        return extensions[output_kind]

    def command(self, inputs, output, native_flags, include_paths=(), definitions=(),
                libs=(), lib_paths=(), language=Language.C):
        cl = self.compiler_for(language)
        inc_flags = [f"/I{p}" for p in _strs(include_paths)]
        def_flags = [f"/D{d}" for d in definitions]

        if "/c" in native_flags:
            return [cl, *native_flags, *inc_flags, *def_flags, *_strs(inputs), f"/Fo{os.fspath(output)}"]

        lib_flags = [f"{lib}.lib" for lib in libs]
        lib_path_flags = [f"/LIBPATH:{p}" for p in _strs(lib_paths)]
        cmd = [cl, *native_flags, *inc_flags, *def_flags, *_strs(inputs), *lib_flags, f"/Fe{os.fspath(output)}"]
        # Some linkers reject an empty /link section
        if lib_path_flags:
            cmd += ["/link", *lib_path_flags]
        return cmd

    def compile(self, inputs, output, native_flags, include_paths=(), definitions=(), language=Language.C):
        flags = list(native_flags)
        if "/c" not in flags:
            flags.append("/c")
        return self.command(inputs, output, flags, include_paths, definitions, language=language)

    def link(self, objects, output, native_flags, libs=(), lib_paths=(), language=Language.C):
        flags = [f for f in native_flags if f != "/c"]
        return self.command(objects, output, flags, libs=libs, lib_paths=lib_paths, language=language)

    def archive(self, objects, output):
        archiver = self.archiver or self._archiver_name
        return [[archiver, f"/OUT:{os.fspath(output)}", *_strs(objects)]]


@typecheck_methods
class ClangCL(MSVC):
    """clang-cl toolchain: MSVC-compatible flags and environment, clang-cl compiler."""

    kind = "clang_cl"
    flags = CLANG_CL_FLAGS

    def __init__(self, search_paths: Sequence[PathLike] = (), env_sink: Optional[EnvironmentSink] = None,
                 msvc_arch: str = DEFAULT_MSVC_ARCH, logger=None):
        super().__init__(search_paths, env_sink=env_sink, msvc_arch=msvc_arch, logger=logger,
                         cl_command="clang-cl")

    def version_banner(self) -> str:
        return Toolchain.version_banner(self)
