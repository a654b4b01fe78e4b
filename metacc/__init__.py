"""MetaCC - Portable C/C++ compiler driver

MetaCC describes compile, link and archive steps with vendor-neutral flags,
detects which toolchain is installed (Clang, GCC, MSVC, clang-cl or TinyCC),
translates the flags into that toolchain's native arguments and runs it,
skipping steps whose output is already up to date.

Example usage:
    from metacc import Driver, UniversalFlag as F

    driver = Driver(output_dir="build")
    driver.compile("main.c", "main.o", flags=[F.O2, F.DEBUG])
    driver.link_executable(["build/main.o"], "app", libs=["m"])
"""

from ._config import MetaccConfig
from ._detector import ToolchainDetector, DEFAULT_CANDIDATES, ALL_CANDIDATES
from ._driver import Driver
from ._errors import MetaccError, ConfigurationError, UnknownFlagError, CompilerNotFoundError
from ._flags import UniversalFlag, FlagTable
from ._logger import MetaccLogger
from ._msvc import MsvcBootstrap, BootstrapState, EnvironmentSink, ProcessEnvironmentSink, DictEnvironmentSink
from ._request import BuildRequest, InvocationResult
from ._toolchain import Toolchain, GNU, Clang, MSVC, ClangCL, TinyCC, Language, OutputKind

__all__ = [
    'Driver', 'BuildRequest', 'InvocationResult', 'UniversalFlag', 'FlagTable',
    'Toolchain', 'GNU', 'Clang', 'MSVC', 'ClangCL', 'TinyCC', 'Language', 'OutputKind',
    'ToolchainDetector', 'DEFAULT_CANDIDATES', 'ALL_CANDIDATES',
    'MsvcBootstrap', 'BootstrapState', 'EnvironmentSink', 'ProcessEnvironmentSink', 'DictEnvironmentSink',
    'MetaccConfig', 'MetaccLogger',
    'MetaccError', 'ConfigurationError', 'UnknownFlagError', 'CompilerNotFoundError',
]
