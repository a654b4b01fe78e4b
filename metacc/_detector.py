"""Toolchain detection: pick the first candidate whose compiler can be launched."""

import logging
from typing import Dict, List, Optional, Sequence, Type

from ._errors import CompilerNotFoundError, ConfigurationError
from ._msvc import EnvironmentSink, DEFAULT_MSVC_ARCH
from ._toolchain import Toolchain, GNU, Clang, MSVC, ClangCL, TinyCC, PathLike
from ._type_check import typecheck_methods

DEFAULT_CANDIDATES = (Clang, GNU, MSVC)
ALL_CANDIDATES = (Clang, GNU, MSVC, ClangCL, TinyCC)

TOOLCHAINS: Dict[str, Type[Toolchain]] = {cls.kind: cls for cls in ALL_CANDIDATES}


def toolchain_class(kind: str) -> Type[Toolchain]:
    """Look up a toolchain class by kind name ("gnu", "clang", "msvc", "clang_cl", "tinycc").
    Raises:  ConfigurationError for unknown names"""
    try:
        return TOOLCHAINS[kind]
    except KeyError:
        raise ConfigurationError(
            f"Unknown toolchain {kind!r} (expected one of: {', '.join(TOOLCHAINS)})"
        ) from None


@typecheck_methods
class ToolchainDetector:
    """Probes candidate toolchains strictly in order.

    Candidates are constructed one at a time, so an MSVC-style candidate only
    bootstraps when every earlier candidate was unavailable.
    """

    def __init__(self, search_paths: Sequence[PathLike] = (), env_sink: Optional[EnvironmentSink] = None,
                 msvc_arch: str = DEFAULT_MSVC_ARCH, logger=None):
        self.search_paths = list(search_paths)
        self.env_sink = env_sink
        self.msvc_arch = msvc_arch
        self.logger = logger if logger is not None else logging.getLogger("metacc")

    def construct(self, candidate: Type[Toolchain]) -> Toolchain:
        """Build one candidate, handing MSVC-style toolchains their bootstrap settings."""
        if issubclass(candidate, MSVC):
            return candidate(self.search_paths, env_sink=self.env_sink, msvc_arch=self.msvc_arch,
                             logger=self.logger)
        return candidate(self.search_paths)

    def detect(self, candidates: Sequence[Type[Toolchain]] = DEFAULT_CANDIDATES) -> Toolchain:
        """Return the first candidate whose primary compiler responds.
        Raises:  CompilerNotFoundError when no candidate is available"""
        tried: List[str] = []
        for candidate in candidates:
            toolchain = self.construct(candidate)
            tried.append(toolchain.c or candidate.kind)
            if toolchain.available():
                self.logger.info(f"Selected toolchain {candidate.__name__}: {toolchain.c}")
                return toolchain
            self.logger.info(f"Toolchain {candidate.__name__} not available")
        raise CompilerNotFoundError(tried)
