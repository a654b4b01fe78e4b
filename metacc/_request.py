"""Build request and invocation result types."""

import os
from types import MappingProxyType
from typing import Any, List, Mapping, NamedTuple, Optional, Sequence, Tuple, Union

from ._errors import ConfigurationError
from ._flags import UniversalFlag, OUTPUT_KIND_FLAGS, parse_flags
from ._toolchain import Language, OutputKind, PathLike
from ._type_check import typecheck_methods


_EMPTY = MappingProxyType({})


class BuildRequest(NamedTuple):
    """One compile, link or archive step.

    xflags maps a toolchain class or kind name ("gnu", "msvc", ...) to extra native
    flags. Only the entry for the active toolchain is used, so one request can be
    reused across environments.
    """

    inputs: Tuple[PathLike, ...]
    output: Optional[PathLike] = None
    flags: Tuple[Union[UniversalFlag, str], ...] = ()
    xflags: Mapping[Any, Sequence[str]] = _EMPTY
    include_paths: Tuple[PathLike, ...] = ()
    definitions: Tuple[str, ...] = ()
    libs: Tuple[str, ...] = ()
    lib_paths: Tuple[PathLike, ...] = ()
    language: Optional[Language] = None
    force: bool = False
    env: Mapping[str, str] = _EMPTY
    working_dir: Optional[PathLike] = None

    @classmethod
    def create(cls, inputs: Union[PathLike, Sequence[PathLike]], output: Optional[PathLike] = None,
               **kwargs) -> "BuildRequest":
        """Build a request, accepting a single input and any sequences for list fields."""
        if isinstance(inputs, (str, os.PathLike)):
            inputs = [inputs]
        for field in ("flags", "include_paths", "definitions", "libs", "lib_paths"):
            if field in kwargs:
                kwargs[field] = tuple(kwargs[field])
        language = kwargs.get("language")
        if isinstance(language, str):
            kwargs["language"] = Language(language)
        return cls(tuple(inputs), output, **kwargs)

    @property
    def output_kind(self) -> OutputKind:
        """Output kind selected by the flags; executable when none is given.
        Raises:  UnknownFlagError, ConfigurationError if more than one kind is requested"""
        kinds = [flag for flag in parse_flags(self.flags) if flag in OUTPUT_KIND_FLAGS]
        if len(set(kinds)) > 1:
            names = ", ".join(sorted({k.value for k in kinds}))
            raise ConfigurationError(f"Conflicting output kinds requested: {names}")
        if not kinds:
            return OutputKind.EXECUTABLE
        return OutputKind(kinds[0].value)

    def effective_language(self) -> Language:
        """Explicit language, else sniffed from a single source input, else C."""
        if self.language is not None:
            return self.language
        if len(self.inputs) == 1:
            sniffed = Language.from_path(self.inputs[0])
            if sniffed is not None:
                return sniffed
        return Language.C


@typecheck_methods
class InvocationResult:
    """Command that was run and what it printed."""

    def __init__(self, command: List[str], stdout: str, stderr: str, returncode: int):
        self.command = command
        self.stdout = stdout
        self.stderr = stderr
        self.returncode = returncode

    @property
    def success(self) -> bool:
        return self.returncode == 0

    def __repr__(self):
        return f"InvocationResult(command={self.command!r}, returncode={self.returncode})"
